"""Run workspace helpers for HardenPipe."""

import logging
import os
import shutil
import sys
import tempfile

from rich.console import Console
from rich.markup import escape

from hardenpipe.constants import DIR_MODE


class FileSystemService:
    """Owns the per-run workspace: creation with private permissions and removal."""

    def __init__(self, logger: logging.Logger, console: Console):
        self.logger = logger
        self.console = console

    def create_workspace(self, run_id: str, base_dir: str = None) -> str:
        workspace = tempfile.mkdtemp(prefix=f"hardenpipe-{run_id}-", dir=base_dir)
        self.restrict(workspace)
        self.logger.debug("Created run workspace: %s", workspace)
        return workspace

    def ensure_private_dir(self, path: str) -> str:
        os.makedirs(path, exist_ok=True)
        self.restrict(path)
        return path

    def restrict(self, path: str, mode: int = DIR_MODE):
        if sys.platform == "win32":
            return
        try:
            os.chmod(path, mode)
        except OSError as exc:
            self.logger.warning("Could not restrict permissions on %s: %s", path, exc)

    def cleanup_dir(self, path: str):
        if not path or not os.path.exists(path):
            return
        try:
            shutil.rmtree(path)
        except OSError as exc:
            self.console.print(
                f"[yellow]Warning: could not remove workspace {escape(path)}: {escape(str(exc))}[/yellow]"
            )
            self.logger.warning("Could not remove workspace %s: %s", path, exc)
        else:
            self.logger.debug("Removed run workspace: %s", path)
