import zipfile

import pytest

from hardenpipe.errors import ToolError
from hardenpipe.services.archive import ArchiveService


def test_archive_service_blocks_path_traversal(tmp_path):
    service = ArchiveService()

    zip_path = tmp_path / "malicious.zip"
    with zipfile.ZipFile(zip_path, "w") as zip_file:
        zip_file.writestr("../escape.txt", "malicious")

    destination = tmp_path / "extract"
    destination.mkdir()

    with pytest.raises(ToolError):
        service.safe_extract_zip(str(zip_path), str(destination))

    assert not (tmp_path / "escape.txt").exists()


def test_archive_service_extracts_tool_output(tmp_path):
    service = ArchiveService()

    zip_path = tmp_path / "app_embedded_embed_eks-app.zip"
    with zipfile.ZipFile(zip_path, "w") as zip_file:
        zip_file.writestr("Dockerfile", "FROM nginx:alpine\n")
        zip_file.writestr("twistlock_defender_app_embedded.tar.gz", b"agent")

    destination = tmp_path / "hardened"

    files = service.safe_extract_zip(str(zip_path), str(destination))

    assert sorted(files) == ["Dockerfile", "twistlock_defender_app_embedded.tar.gz"]
    assert (destination / "Dockerfile").read_text(encoding="utf-8") == "FROM nginx:alpine\n"


def test_archive_service_rejects_invalid_zip(tmp_path):
    broken = tmp_path / "broken.zip"
    broken.write_text("not a zip", encoding="utf-8")

    with pytest.raises(ToolError, match="Invalid archive") as error:
        ArchiveService().safe_extract_zip(str(broken), str(tmp_path / "out"))

    assert error.value.kind == "OutputMissing"
