"""Manifest rendering and apply service for HardenPipe."""

import os
import time
from typing import Callable, Iterator, List, Sequence

import yaml

from hardenpipe.constants import DEFAULT_IMAGE_PLACEHOLDER
from hardenpipe.errors import CommandError, DeployError
from hardenpipe.errors_catalog import actionable_error
from hardenpipe.models import DeploymentIdentity

UNREACHABLE_MARKERS = (
    "unable to connect to the server",
    "connection refused",
    "no such host",
    "i/o timeout",
    "tls handshake timeout",
    "context deadline exceeded",
)


def iter_container_images(document) -> Iterator[str]:
    """Yields every ``image`` field found under a ``containers`` list."""
    if isinstance(document, dict):
        for key, value in document.items():
            if key in ("containers", "initContainers") and isinstance(value, list):
                for container in value:
                    if isinstance(container, dict) and "image" in container:
                        yield container["image"]
            yield from iter_container_images(value)
    elif isinstance(document, list):
        for item in document:
            yield from iter_container_images(item)


class ManifestDeployer:
    """Points the deployment manifest at the published image and applies everything.

    A failed apply is not rolled back; the cluster keeps whatever the apply
    tool managed to change.
    """

    def __init__(
        self,
        logger,
        console,
        run_cmd: Callable,
        timeout: float = 300.0,
        placeholder: str = DEFAULT_IMAGE_PLACEHOLDER,
        clock: Callable[[], float] = time.time,
    ):
        self.logger = logger
        self.console = console
        self.run_cmd = run_cmd
        self.timeout = timeout
        self.placeholder = placeholder
        self.clock = clock

    def render(self, templates: Sequence[str], image: str, output_dir: str) -> List[str]:
        os.makedirs(output_dir, exist_ok=True)
        rendered: List[str] = []
        substitutions = 0

        for index, template in enumerate(templates):
            with open(template, "r", encoding="utf-8") as file_obj:
                content = file_obj.read()
            substitutions += content.count(self.placeholder)
            content = content.replace(self.placeholder, image)

            try:
                list(yaml.safe_load_all(content))
            except yaml.YAMLError as exc:
                raise DeployError(
                    actionable_error("ApplyRejected", detail=f"{template} is not valid YAML: {exc}"),
                    kind="ApplyRejected",
                ) from exc

            target = os.path.join(output_dir, f"{index:02d}-{os.path.basename(template)}")
            with open(target, "w", encoding="utf-8", newline="\n") as file_obj:
                file_obj.write(content)
            rendered.append(target)

        if not substitutions:
            raise DeployError(
                actionable_error(
                    "ApplyRejected", detail=f"no manifest contains the image placeholder `{self.placeholder}`"
                ),
                kind="ApplyRejected",
            )
        self.verify_image(rendered, image)
        return rendered

    def verify_image(self, rendered: Sequence[str], image: str):
        images: List[str] = []
        for path in rendered:
            with open(path, "r", encoding="utf-8") as file_obj:
                for document in yaml.safe_load_all(file_obj):
                    images.extend(iter_container_images(document))

        if image not in images:
            raise DeployError(
                actionable_error("ApplyRejected", detail=f"no container image field equals {image}"),
                kind="ApplyRejected",
            )

    def apply(self, rendered: Sequence[str], identity: DeploymentIdentity):
        identity.ensure_valid(self.clock())

        cmd = ["kubectl", "apply"]
        for path in rendered:
            cmd += ["-f", path]

        self.console.print(f"[blue]Applying {len(rendered)} manifests to {identity.cluster_name}...[/blue]")
        try:
            result = self.run_cmd(
                cmd,
                capture_output=True,
                timeout=self.timeout,
                env={"KUBECONFIG": identity.kubeconfig_path},
            )
        except CommandError as exc:
            evidence = f"{exc}\n{exc.output}".lower()
            if exc.timed_out or exc.not_found or any(marker in evidence for marker in UNREACHABLE_MARKERS):
                raise DeployError(
                    actionable_error("ClusterUnreachable", cluster=identity.cluster_name),
                    kind="ClusterUnreachable",
                    output=exc.output,
                ) from exc
            raise DeployError(
                actionable_error("ApplyRejected", detail=exc.output or str(exc)),
                kind="ApplyRejected",
                output=exc.output,
            ) from exc

        for line in (result.stdout or "").splitlines():
            if line.strip():
                self.logger.info(line.strip())
        self.console.print("[green]Manifests applied.[/green]")

    def deploy(
        self,
        templates: Sequence[str],
        image: str,
        identity: DeploymentIdentity,
        output_dir: str,
    ) -> List[str]:
        rendered = self.render(templates, image, output_dir)
        self.apply(rendered, identity)
        return rendered
