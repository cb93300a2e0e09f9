import logging
import os
import time
import uuid
from typing import Callable, List, Optional

import requests
from rich.console import Console
from rich.markup import escape

from .constants import REDACTED
from .models import (
    BuildContext,
    CredentialSet,
    DeploymentIdentity,
    ImageReference,
    RunContext,
    RunResult,
    utc_now,
)
from .pipeline import PipelineExecutor, Step
from .services.archive import ArchiveService
from .services.cluster_auth import DeploymentAuthenticator
from .services.command_runner import CommandRunner
from .services.deployer import ManifestDeployer
from .services.download import ToolDownloader
from .services.filesystem import FileSystemService
from .services.hardener import ImageHardener
from .services.image_publisher import ImagePublisher, image_reference
from .services.patcher import BuildDefinitionPatcher
from .services.registry_auth import RegistryAuthenticator, RegistryTarget
from .services.run_log import RunLogService
from .services.secrets import CredentialResolver
from .settings import CREDENTIAL_SLOTS, PipelineSettings

console = Console()
logger = logging.getLogger("hardenpipe")


class HardenPipeline:
    """Builds, hardens, publishes and deploys one image per run.

    pre_build resolves credentials and logs into registries, build embeds
    the security agent and publishes the image, post_build obtains
    short-lived cluster access and applies the manifests.
    """

    def __init__(self, settings: PipelineSettings, clock: Callable[[], float] = time.time):
        self.settings = settings
        self.clock = clock

        self.run_context = self._build_run_context()
        self.build_context = BuildContext()
        self.credentials: Optional[CredentialSet] = None
        self.identity: Optional[DeploymentIdentity] = None
        self.session_secrets: List[str] = []
        self.reference: Optional[ImageReference] = None
        self.result: Optional[RunResult] = None

        self.filesystem_service = FileSystemService(logger=logger, console=console)
        self.run_log = RunLogService(log_file=settings.run_log, logger=logger)
        self.command_runner = CommandRunner(
            logger=logger,
            default_timeout=settings.tool_timeout,
            redactor=self.redact,
        )
        self.credential_resolver = CredentialResolver(
            logger=logger,
            run_cmd=self._run_cmd,
            region=settings.region,
            timeout=settings.secret_timeout,
        )
        self.registry_authenticator = RegistryAuthenticator(
            logger=logger,
            run_cmd=self._run_cmd,
            timeout=settings.login_timeout,
        )
        self.image_hardener = ImageHardener(
            logger=logger,
            console=console,
            run_cmd=self._run_cmd,
            downloader=ToolDownloader(
                logger=logger,
                console=console,
                requests_module=requests,
                allow_insecure_http=settings.allow_insecure_http,
                timeout=settings.tool_timeout,
            ),
            archive_service=ArchiveService(),
            timeout=settings.tool_timeout,
            register_secret=self.session_secrets.append,
        )
        self.patcher = BuildDefinitionPatcher(logger=logger, definition_name=settings.dockerfile)
        self.image_publisher = ImagePublisher(
            logger=logger,
            console=console,
            run_cmd=self._run_cmd,
            build_timeout=settings.build_timeout,
            push_timeout=settings.push_timeout,
        )
        self.deployment_authenticator = DeploymentAuthenticator(
            logger=logger,
            run_cmd=self._run_cmd,
            timeout=settings.cluster_timeout,
            token_ttl=settings.token_ttl,
            clock=clock,
        )
        self.manifest_deployer = ManifestDeployer(
            logger=logger,
            console=console,
            run_cmd=self._run_cmd,
            timeout=settings.apply_timeout,
            placeholder=settings.image_placeholder,
            clock=clock,
        )

        self.executor = PipelineExecutor(
            steps=self.build_steps(),
            logger=logger,
            console=console,
            run_log=self.run_log,
            redactor=self.redact,
        )

    def _build_run_context(self) -> RunContext:
        return RunContext(run_id=uuid.uuid4().hex[:10], workspace="", started_at=utc_now())

    def build_steps(self) -> List[Step]:
        return [
            Step("pre_build", "validate_settings", self.validate_settings),
            Step("pre_build", "resolve_credentials", self.resolve_credentials),
            Step("pre_build", "authenticate_registries", self.authenticate_registries),
            Step("build", "harden_image", self.harden_image),
            Step("build", "patch_build_definition", self.patch_build_definition),
            Step("build", "publish_image", self.publish_image),
            Step("post_build", "authenticate_cluster", self.authenticate_cluster),
            Step("post_build", "deploy_manifests", self.deploy_manifests),
        ]

    def redact(self, text: str) -> str:
        if not text:
            return text
        if self.credentials is not None:
            text = self.credentials.redact(text)
        if self.identity is not None and self.identity.token:
            text = text.replace(self.identity.token, REDACTED)
        for secret in self.session_secrets:
            text = text.replace(secret, REDACTED)
        return text

    def _run_cmd(self, cmd: List[str], **kwargs):
        return self.command_runner.run(cmd, **kwargs)

    def _workspace_path(self, *parts: str) -> str:
        return os.path.join(self.run_context.workspace, *parts)

    def cancel(self):
        self.executor.cancel()

    def validate_settings(self):
        self.settings.validate()
        self.reference = image_reference(
            self.settings.ecr_registry,
            self.settings.repository,
            self.settings.image_tag,
        )
        self.build_context.record(
            "source_definition",
            step="validate_settings",
            path=os.path.abspath(self.settings.dockerfile_path),
        )

    def resolve_credentials(self):
        console.print("[blue]Resolving credentials from the secret store...[/blue]")
        self.credentials = self.credential_resolver.resolve(
            self.settings.secret_references(),
            required=CREDENTIAL_SLOTS,
        )

    def registry_targets(self) -> List[RegistryTarget]:
        return [
            RegistryTarget(
                name="ecr",
                endpoint=self.settings.ecr_registry,
                kind="ecr",
                region=self.settings.region,
            ),
            RegistryTarget(
                name="docker-hub",
                endpoint=self.settings.docker_hub_registry,
                kind="basic",
                username=self.credentials["registry_username"],
                password=self.credentials["registry_password"],
            ),
        ]

    def authenticate_registries(self):
        console.print("[blue]Logging in to container registries...[/blue]")
        endpoints = self.registry_authenticator.authenticate(self.registry_targets())
        self.build_context.record("registry_sessions", step="authenticate_registries", value=tuple(endpoints))
        console.print("[green]Registries authenticated.[/green]")

    def harden_image(self):
        source = self.build_context.require("source_definition")
        result = self.image_hardener.harden(
            definition_path=source.path,
            workspace=self.run_context.workspace,
            console_url=self.settings.scanner_console,
            app_id=self.settings.app_id,
            credentials=self.credentials,
            tool_path=self.settings.embed_tool_path,
        )
        self.build_context.record("hardened_context", step="harden_image", path=result.context_dir)

    def patch_build_definition(self):
        hardened = self.build_context.require("hardened_context")
        source = self.build_context.require("source_definition")
        directive = self.settings.conflicting_directive
        if directive is None:
            directive = self.patcher.directive_from_source(source.path)
        assets = self.settings.static_assets
        if assets is None:
            assets = self.patcher.assets_from_source(source.path)

        revision = len(self.build_context.history("patched_context")) + 1
        report = self.patcher.patch(
            context_dir=hardened.path,
            output_dir=self._workspace_path(f"patched-r{revision}"),
            directive=directive,
            source_dir=self.settings.source_dir,
            assets=assets,
        )
        self.build_context.record(
            "patched_context",
            step="patch_build_definition",
            path=os.path.dirname(report.definition_path),
            value={"removed": report.removed, "copied_assets": report.copied_assets},
        )

    def publish_image(self):
        patched = self.build_context.require("patched_context")
        reference = self.image_publisher.publish(patched.path, self.reference, self.settings.dockerfile)
        self.build_context.record("image_reference", step="publish_image", value=reference.qualified)
        self.run_log.add_artifact("image_reference", reference.qualified)

    def authenticate_cluster(self):
        console.print(f"[blue]Authenticating to cluster {self.settings.cluster_name}...[/blue]")
        self.identity = self.deployment_authenticator.authenticate(
            cluster_name=self.settings.cluster_name,
            region=self.settings.region,
            workspace=self.run_context.workspace,
            service_identity=self.settings.service_identity,
            namespace=self.settings.namespace,
        )
        self.build_context.record(
            "cluster_access",
            step="authenticate_cluster",
            path=self.identity.kubeconfig_path,
            value={"cluster": self.identity.cluster_name, "expires_at": self.identity.expires_at},
        )

    def deploy_manifests(self):
        image = self.build_context.require("image_reference").value
        rendered = self.manifest_deployer.deploy(
            templates=self.settings.manifests,
            image=image,
            identity=self.identity,
            output_dir=self._workspace_path("manifests"),
        )
        self.build_context.record("rendered_manifests", step="deploy_manifests", value=tuple(rendered))

    def _run_metadata(self):
        return {
            "account_id": self.settings.account_id,
            "region": self.settings.region,
            "cluster_name": self.settings.cluster_name,
            "repository": self.settings.repository,
            "image_tag": self.settings.image_tag,
            "app_id": self.settings.app_id,
            "manifests": list(self.settings.manifests),
        }

    def cleanup(self):
        self.filesystem_service.cleanup_dir(self.run_context.workspace)

    def run(self) -> int:
        workspace = self.filesystem_service.create_workspace(self.run_context.run_id)
        self.run_context = RunContext(
            run_id=self.run_context.run_id,
            workspace=workspace,
            started_at=self.run_context.started_at,
        )
        # Registry logins land in the run workspace instead of the user's docker config.
        self.command_runner.base_env["DOCKER_CONFIG"] = self.filesystem_service.ensure_private_dir(
            self._workspace_path("docker")
        )

        logger.info("Starting HardenPipe run %s...", self.run_context.run_id)
        self.run_log.start_run(run_id=self.run_context.run_id, metadata=self._run_metadata())

        try:
            result = self.executor.run(self.run_context.run_id)
        finally:
            self.cleanup()
            self.credentials = None
            self.identity = None
            self.session_secrets.clear()

        self.result = result
        failure = None
        if not result.succeeded:
            failure = {
                "phase": result.failed_phase,
                "step": result.failed_step,
                "category": result.error_category,
                "kind": result.error_kind,
                "error": result.error,
            }
        produced = [f"{artifact.name}@r{artifact.revision}" for artifact in self.build_context]
        logger.debug("Build context holds %d artifacts.", len(self.build_context))
        self.run_log.finalize(result.status, failure=failure, produced=produced)

        if result.succeeded:
            console.print(f"[bold green]{escape(result.summary())}[/bold green]")
            logger.info(result.summary())
        else:
            console.print(f"[bold red]{escape(result.summary())}[/bold red]")
            logger.error(result.summary())
        return result.exit_code
