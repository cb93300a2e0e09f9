import stat
from pathlib import Path

from rich.console import Console

from hardenpipe.services.filesystem import FileSystemService


class DummyLogger:
    def debug(self, *_args, **_kwargs):
        return None

    def warning(self, *_args, **_kwargs):
        return None


def test_workspace_is_private_and_removed(tmp_path):
    service = FileSystemService(logger=DummyLogger(), console=Console(record=True))

    workspace = service.create_workspace("abc123", base_dir=str(tmp_path))
    docker_dir = service.ensure_private_dir(f"{workspace}/docker")

    assert workspace.startswith(str(tmp_path / "hardenpipe-abc123-"))
    assert stat.S_IMODE(Path(workspace).stat().st_mode) == 0o700
    assert stat.S_IMODE(Path(docker_dir).stat().st_mode) == 0o700

    service.cleanup_dir(workspace)

    assert not Path(workspace).exists()


def test_cleanup_ignores_missing_directory(tmp_path):
    service = FileSystemService(logger=DummyLogger(), console=Console(record=True))

    service.cleanup_dir(str(tmp_path / "missing"))
    service.cleanup_dir("")
