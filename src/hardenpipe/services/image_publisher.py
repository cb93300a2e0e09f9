"""Image build and publish service for HardenPipe."""

import os
import re
from typing import Callable

from hardenpipe.constants import DEFAULT_DOCKERFILE
from hardenpipe.errors import BuildError, CommandError, ConfigurationError, PublishError
from hardenpipe.errors_catalog import actionable_error
from hardenpipe.models import ImageReference

REPOSITORY_PATTERN = re.compile(r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*(?:/[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*)*$")
TAG_PATTERN = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$")
REGISTRY_PATTERN = re.compile(r"^[A-Za-z0-9.-]+(?::[0-9]+)?$")


def image_reference(registry: str, repository: str, tag: str) -> ImageReference:
    """Builds a validated reference; the tag itself is treated as opaque."""
    for value, part, pattern in (
        (registry, "registry", REGISTRY_PATTERN),
        (repository, "repository", REPOSITORY_PATTERN),
        (tag, "tag", TAG_PATTERN),
    ):
        if not value or not pattern.match(value):
            raise ConfigurationError(
                actionable_error("InvalidReference", value=value, part=part), kind="InvalidReference"
            )
    return ImageReference(registry=registry, repository=repository, tag=tag)


class ImagePublisher:
    """Builds the hardened image and pushes its registry-qualified alias."""

    REJECTED_MARKERS = (
        "denied",
        "unauthorized",
        "forbidden",
        "no basic auth credentials",
        "quota",
        "limit exceeded",
        "toomanyrequests",
        "repository does not exist",
        "name unknown",
    )

    def __init__(self, logger, console, run_cmd: Callable, build_timeout: float = 1800.0, push_timeout: float = 900.0):
        self.logger = logger
        self.console = console
        self.run_cmd = run_cmd
        self.build_timeout = build_timeout
        self.push_timeout = push_timeout

    def build(self, context_dir: str, reference: ImageReference, definition_name: str = DEFAULT_DOCKERFILE):
        self.console.print(f"[blue]Building image {reference.local}...[/blue]")
        cmd = [
            "docker",
            "build",
            "-t",
            reference.local,
            "-f",
            os.path.join(context_dir, definition_name),
            context_dir,
        ]
        try:
            self.run_cmd(cmd, capture_output=True, timeout=self.build_timeout)
            self.run_cmd(
                ["docker", "tag", reference.local, reference.qualified],
                capture_output=True,
                timeout=self.build_timeout,
            )
        except CommandError as exc:
            detail = f" (timed out after {self.build_timeout}s)" if exc.timed_out else ""
            raise BuildError(
                f"{actionable_error('BuildFailed', image=reference.local)}{detail}",
                kind="BuildFailed",
                output=exc.output,
            ) from exc
        self.logger.info("Built %s and tagged %s", reference.local, reference.qualified)

    def push(self, reference: ImageReference):
        self.console.print(f"[blue]Pushing {reference.qualified}...[/blue]")
        try:
            self.run_cmd(["docker", "push", reference.qualified], capture_output=True, timeout=self.push_timeout)
        except CommandError as exc:
            raise self._classify_push(reference, exc) from exc
        self.console.print(f"[green]Published {reference.qualified}.[/green]")

    def publish(self, context_dir: str, reference: ImageReference, definition_name: str = DEFAULT_DOCKERFILE) -> ImageReference:
        self.build(context_dir, reference, definition_name)
        self.push(reference)
        return reference

    def _classify_push(self, reference: ImageReference, exc: CommandError) -> PublishError:
        if exc.timed_out:
            return PublishError(
                actionable_error("PushTimeout", image=reference.qualified, timeout=self.push_timeout),
                kind="PushTimeout",
                output=exc.output,
            )

        evidence = f"{exc}\n{exc.output}".lower()
        message = actionable_error("PushRejected", image=reference.qualified)
        if not any(marker in evidence for marker in self.REJECTED_MARKERS):
            message = f"{message} ({exc})"
        return PublishError(message, kind="PushRejected", output=exc.output)
