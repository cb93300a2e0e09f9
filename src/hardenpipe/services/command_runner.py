"""Subprocess execution service for HardenPipe."""

import os
import subprocess
from typing import Callable, Dict, List, Optional

from hardenpipe.errors import CommandError


def _no_redaction(text: str) -> str:
    return text


class CommandRunner:
    """Runs external commands with bounded time and masked logging.

    ``redactor`` is applied to the command line, captured output and error
    messages before they reach the logger or an exception. ``base_env`` is
    added to the environment of every child process.
    """

    def __init__(
        self,
        logger,
        default_timeout: Optional[float] = None,
        redactor: Optional[Callable[[str], str]] = None,
        base_env: Optional[Dict[str, str]] = None,
    ):
        self.logger = logger
        self.default_timeout = default_timeout
        self.redactor = redactor or _no_redaction
        self.base_env = dict(base_env or {})

    def run(
        self,
        cmd: List[str],
        check: bool = True,
        capture_output: bool = True,
        timeout: Optional[float] = None,
        input_text: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
        cwd: Optional[str] = None,
        log_output: bool = True,
    ) -> subprocess.CompletedProcess:
        cmd_str = self.redactor(" ".join(cmd))
        self.logger.debug("Executing: %s", cmd_str)

        effective_timeout = timeout if timeout is not None else self.default_timeout
        child_env = None
        if env or self.base_env:
            child_env = os.environ.copy()
            child_env.update(self.base_env)
            child_env.update(env or {})

        try:
            result = subprocess.run(
                cmd,
                text=True,
                capture_output=capture_output,
                timeout=effective_timeout,
                input=input_text,
                env=child_env,
                cwd=cwd,
            )
        except FileNotFoundError as exc:
            raise CommandError(
                f"Required command not found: {cmd[0]}. Please install it and try again.",
                not_found=True,
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise CommandError(
                f"Command timed out after {effective_timeout}s: {cmd_str}",
                output=self.redactor(self._decode(exc.stderr) or self._decode(exc.output)),
                timed_out=True,
            ) from exc
        except OSError as exc:
            raise CommandError(f"Failed to execute command: {cmd_str}. {exc}", not_found=True) from exc

        stdout = self.redactor((result.stdout or "").strip()) if capture_output else ""
        if stdout and log_output:
            self.logger.debug("Command output: %s", stdout)

        if result.returncode == 0 or not check:
            if result.returncode != 0:
                self.logger.warning("Command failed (%s): %s", result.returncode, cmd_str)
            return result

        stderr = self.redactor((result.stderr or "").strip()) if capture_output else ""
        message = f"Command failed ({result.returncode}): {cmd_str}"
        if stderr:
            message = f"{message}\n{stderr}"
        raise CommandError(
            message,
            returncode=result.returncode,
            output="\n".join(part for part in (stdout, stderr) if part),
        )

    @staticmethod
    def _decode(data) -> str:
        if data is None:
            return ""
        if isinstance(data, bytes):
            return data.decode("utf-8", errors="replace")
        return data
