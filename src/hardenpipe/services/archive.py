"""Archive extraction helpers for HardenPipe."""

import shutil
import stat
import zipfile
from pathlib import Path, PurePosixPath
from typing import List, Tuple

from hardenpipe.errors import ToolError


class ArchiveService:
    """Extracts the embedding tool's output archive without escaping the target dir."""

    def safe_extract_zip(self, zip_path: str, destination_dir: str) -> List[str]:
        """Extracts every regular file and returns their archive names.

        All entries are checked before anything is written, so a rejected
        archive leaves the destination untouched.
        """
        base = Path(destination_dir).resolve()

        try:
            with zipfile.ZipFile(zip_path, "r") as archive:
                plan = [self._plan_entry(base, member) for member in archive.infolist()]

                base.mkdir(parents=True, exist_ok=True)
                extracted: List[str] = []
                for member, target in plan:
                    if member.is_dir():
                        target.mkdir(parents=True, exist_ok=True)
                        continue
                    target.parent.mkdir(parents=True, exist_ok=True)
                    with archive.open(member) as src, open(target, "wb") as dst:
                        shutil.copyfileobj(src, dst)
                    extracted.append(target.relative_to(base).as_posix())
        except zipfile.BadZipFile as exc:
            raise ToolError(f"Invalid archive produced by embedding tool: {zip_path}", kind="OutputMissing") from exc

        return extracted

    @staticmethod
    def _plan_entry(base: Path, member: zipfile.ZipInfo) -> Tuple[zipfile.ZipInfo, Path]:
        name = PurePosixPath(member.filename.replace("\\", "/"))
        target = base.joinpath(*name.parts).resolve()

        if name.is_absolute() or (target != base and base not in target.parents):
            raise ToolError(
                f"Unsafe archive entry `{member.filename}` points outside the extraction directory.",
                kind="OutputMissing",
            )
        if stat.S_ISLNK(member.external_attr >> 16):
            raise ToolError(f"Unsafe archive entry `{member.filename}` is a symbolic link.", kind="OutputMissing")
        return member, target
