"""Embedding tool download service with progress reporting."""

import os
from typing import Optional
from urllib.parse import urlparse

from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

from hardenpipe.constants import EMBED_TOKEN_PATH, EMBED_TOOL_DOWNLOAD_PATH, EXECUTABLE_MODE
from hardenpipe.errors import ToolError
from hardenpipe.errors_catalog import actionable_error


class ToolDownloader:
    """Talks to the scanner console: downloads the embedding tool and issues API tokens."""

    def __init__(self, logger, console, requests_module, allow_insecure_http: bool = False, timeout: float = 60.0):
        self.logger = logger
        self.console = console
        self.requests = requests_module
        self.allow_insecure_http = allow_insecure_http
        self.timeout = timeout

    def tool_url(self, console_url: str) -> str:
        return console_url.rstrip("/") + EMBED_TOOL_DOWNLOAD_PATH

    def enforce_https_policy(self, url: str):
        scheme = urlparse(url).scheme.lower()
        if scheme == "https":
            return
        if scheme == "http" and self.allow_insecure_http:
            self.logger.warning("Insecure HTTP enabled for tool download: %s", url)
            self.console.print(
                "[yellow]Warning:[/yellow] Downloading the embedding tool over insecure HTTP."
            )
            return
        raise ToolError(
            actionable_error("EmbeddingToolUnavailable", detail=f"refusing insecure connection to {url}"),
            kind="EmbeddingToolUnavailable",
        )

    def fetch(self, console_url: str, dest_path: str, username: str, password: str) -> str:
        url = self.tool_url(console_url)
        self.enforce_https_policy(url)
        self.logger.info("Downloading embedding tool from %s", url)

        try:
            with self.requests.get(
                url,
                auth=(username, password),
                stream=True,
                timeout=self.timeout,
            ) as response:
                response.raise_for_status()
                total_size = int(response.headers.get("Content-Length", 0))

                os.makedirs(os.path.dirname(dest_path) or ".", exist_ok=True)

                with Progress(
                    SpinnerColumn(),
                    TextColumn("[progress.description]{task.description}"),
                    BarColumn(),
                    TaskProgressColumn(),
                    TimeElapsedColumn(),
                    console=self.console,
                ) as progress:
                    task = progress.add_task("[cyan]Downloading embedding tool...", total=total_size or None)
                    with open(dest_path, "wb") as file_obj:
                        for chunk in response.iter_content(chunk_size=8192):
                            if not chunk:
                                continue
                            file_obj.write(chunk)
                            progress.update(task, advance=len(chunk))
        except self.requests.RequestException as exc:
            self._discard(dest_path)
            raise ToolError(
                actionable_error("EmbeddingToolUnavailable", detail=f"download failed: {exc}"),
                kind="EmbeddingToolUnavailable",
            ) from exc

        if os.path.getsize(dest_path) == 0:
            self._discard(dest_path)
            raise ToolError(
                actionable_error("EmbeddingToolUnavailable", detail="the console returned an empty file"),
                kind="EmbeddingToolUnavailable",
            )

        os.chmod(dest_path, EXECUTABLE_MODE)
        return dest_path

    def issue_token(self, console_url: str, username: str, password: str) -> str:
        """Exchanges the scanner credentials for a short-lived console API token."""
        url = console_url.rstrip("/") + EMBED_TOKEN_PATH
        self.enforce_https_policy(url)

        try:
            response = self.requests.post(
                url,
                json={"username": username, "password": password},
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except (self.requests.RequestException, ValueError) as exc:
            raise ToolError(
                actionable_error("ScannerTokenRejected", url=url, detail=str(exc)),
                kind="ScannerTokenRejected",
            ) from exc

        token = payload.get("token") if isinstance(payload, dict) else None
        if not token:
            raise ToolError(
                actionable_error("ScannerTokenRejected", url=url, detail="the response carried no token"),
                kind="ScannerTokenRejected",
            )
        self.logger.info("Obtained scanner console token from %s", url)
        return token

    @staticmethod
    def _discard(path: Optional[str]):
        if path and os.path.exists(path):
            try:
                os.remove(path)
            except OSError:
                pass
