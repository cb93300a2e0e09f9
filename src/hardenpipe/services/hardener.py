"""Security agent embedding service for HardenPipe."""

import os
from dataclasses import dataclass
from typing import Callable, List, Optional

from hardenpipe.constants import EMBED_OUTPUT_TEMPLATE, EMBED_TOOL_NAME
from hardenpipe.errors import CommandError, ToolError
from hardenpipe.errors_catalog import actionable_error
from hardenpipe.models import CredentialSet


@dataclass(frozen=True)
class HardenResult:
    context_dir: str
    archive_path: str
    files: List[str]


class ImageHardener:
    """Runs the embedding tool against the source build definition.

    The tool rewrites the build definition so the runtime security agent
    becomes the image's primary process, and ships the result as a zip
    archive. Any failure here must stop the run before an image exists.
    """

    DATA_FOLDER = "/tmp"

    def __init__(
        self,
        logger,
        console,
        run_cmd: Callable,
        downloader,
        archive_service,
        timeout: float = 600.0,
        register_secret: Optional[Callable[[str], None]] = None,
    ):
        self.logger = logger
        self.console = console
        self.run_cmd = run_cmd
        self.downloader = downloader
        self.archive_service = archive_service
        self.timeout = timeout
        self.register_secret = register_secret or (lambda value: None)

    def ensure_tool(
        self,
        workspace: str,
        console_url: str,
        credentials: CredentialSet,
        tool_path: Optional[str] = None,
    ) -> str:
        if tool_path:
            path = tool_path
        else:
            path = self.downloader.fetch(
                console_url,
                os.path.join(workspace, "bin", EMBED_TOOL_NAME),
                credentials["scanner_username"],
                credentials["scanner_password"],
            )

        if not os.path.isfile(path) or not os.access(path, os.X_OK):
            raise ToolError(
                actionable_error("EmbeddingToolUnavailable", detail=f"{path} is not an executable file"),
                kind="EmbeddingToolUnavailable",
            )
        return path

    def build_embed_command(
        self,
        tool_path: str,
        console_url: str,
        app_id: str,
        token: str,
        definition_path: str,
    ) -> List[str]:
        return [
            tool_path,
            "app-embedded",
            "embed",
            "--address",
            console_url,
            "--token",
            token,
            "--app-id",
            app_id,
            "--data-folder",
            self.DATA_FOLDER,
            definition_path,
        ]

    def harden(
        self,
        definition_path: str,
        workspace: str,
        console_url: str,
        app_id: str,
        credentials: CredentialSet,
        tool_path: Optional[str] = None,
    ) -> HardenResult:
        tool = self.ensure_tool(workspace, console_url, credentials, tool_path)

        embed_dir = os.path.join(workspace, "embed")
        os.makedirs(embed_dir, exist_ok=True)
        archive_path = os.path.join(embed_dir, EMBED_OUTPUT_TEMPLATE.format(app_id=app_id))

        token = self.downloader.issue_token(
            console_url, credentials["scanner_username"], credentials["scanner_password"]
        )
        self.register_secret(token)

        self.console.print(f"[blue]Embedding runtime security agent for app `{app_id}`...[/blue]")
        cmd = self.build_embed_command(tool, console_url, app_id, token, os.path.abspath(definition_path))
        try:
            self.run_cmd(cmd, capture_output=True, timeout=self.timeout, cwd=embed_dir)
        except CommandError as exc:
            if exc.not_found:
                raise ToolError(
                    actionable_error("EmbeddingToolUnavailable", detail=str(exc)),
                    kind="EmbeddingToolUnavailable",
                ) from exc
            detail = f"timed out after {self.timeout}s" if exc.timed_out else str(exc)
            raise ToolError(
                f"{actionable_error('EmbeddingRejected', app_id=app_id)} ({detail})",
                kind="EmbeddingRejected",
                output=exc.output,
            ) from exc

        if not os.path.isfile(archive_path):
            raise ToolError(
                actionable_error("OutputMissing", path=os.path.basename(archive_path)),
                kind="OutputMissing",
            )

        context_dir = os.path.join(workspace, "hardened")
        files = self.archive_service.safe_extract_zip(archive_path, context_dir)
        if not files:
            raise ToolError(
                actionable_error("OutputMissing", path=f"files in {os.path.basename(archive_path)}"),
                kind="OutputMissing",
            )

        self.logger.info("Hardened build context extracted to %s (%s files)", context_dir, len(files))
        self.console.print("[green]Security agent embedded.[/green]")
        return HardenResult(context_dir=context_dir, archive_path=archive_path, files=files)
