"""Run settings for HardenPipe."""

import os
from dataclasses import dataclass, field, fields
from typing import Dict, List, Optional, Tuple

from hardenpipe.constants import (
    DEFAULT_APP_ID,
    DEFAULT_DOCKER_HUB_REGISTRY,
    DEFAULT_DOCKERFILE,
    DEFAULT_IMAGE_PLACEHOLDER,
    DEFAULT_IMAGE_TAG,
    DEFAULT_NAMESPACE,
    DEFAULT_TOKEN_TTL_SECONDS,
)
from hardenpipe.errors import ConfigurationError
from hardenpipe.errors_catalog import actionable_error

# Variable names follow the CodeBuild project environment.
ENVIRONMENT_VARIABLES: Dict[str, str] = {
    "account_id": "AWS_ACCOUNT_ID",
    "region": "AWS_DEFAULT_REGION",
    "cluster_name": "EKS_CLUSTER_NAME",
    "repository": "IMAGE_REPO_NAME",
    "image_tag": "IMAGE_TAG",
    "scanner_console": "TL_CONSOLE",
    "scanner_username": "TL_USER_SECRET",
    "scanner_password": "TL_PASS_SECRET",
    "registry_username": "DOCKERHUB_USER_SECRET",
    "registry_password": "DOCKERHUB_PASS_SECRET",
}

CREDENTIAL_SLOTS: Tuple[str, ...] = (
    "scanner_username",
    "scanner_password",
    "registry_username",
    "registry_password",
)

REQUIRED_SETTINGS: Tuple[str, ...] = (
    "account_id",
    "region",
    "cluster_name",
    "repository",
    "image_tag",
    "scanner_console",
) + CREDENTIAL_SLOTS

TIMEOUT_SETTINGS: Tuple[str, ...] = (
    "secret_timeout",
    "login_timeout",
    "tool_timeout",
    "build_timeout",
    "push_timeout",
    "cluster_timeout",
    "apply_timeout",
    "token_ttl",
)


@dataclass
class PipelineSettings:
    """Everything one run needs. Credential slots hold secret references, never values."""

    account_id: Optional[str] = None
    region: Optional[str] = None
    cluster_name: Optional[str] = None
    repository: Optional[str] = None
    image_tag: str = DEFAULT_IMAGE_TAG
    scanner_console: Optional[str] = None
    scanner_username: Optional[str] = None
    scanner_password: Optional[str] = None
    registry_username: Optional[str] = None
    registry_password: Optional[str] = None
    source_dir: str = "."
    dockerfile: str = DEFAULT_DOCKERFILE
    static_assets: Optional[List[str]] = None
    manifests: List[str] = field(default_factory=list)
    image_placeholder: str = DEFAULT_IMAGE_PLACEHOLDER
    app_id: str = DEFAULT_APP_ID
    namespace: str = DEFAULT_NAMESPACE
    service_identity: Optional[str] = None
    docker_hub_registry: str = DEFAULT_DOCKER_HUB_REGISTRY
    registry_host: Optional[str] = None
    embed_tool_path: Optional[str] = None
    conflicting_directive: Optional[str] = None
    allow_insecure_http: bool = False
    run_log: Optional[str] = None
    verbose: bool = False
    log_file: Optional[str] = None
    secret_timeout: float = 30.0
    login_timeout: float = 60.0
    tool_timeout: float = 600.0
    build_timeout: float = 1800.0
    push_timeout: float = 900.0
    cluster_timeout: float = 60.0
    apply_timeout: float = 300.0
    token_ttl: float = float(DEFAULT_TOKEN_TTL_SECONDS)

    @classmethod
    def field_names(cls) -> List[str]:
        return [item.name for item in fields(cls)]

    @property
    def ecr_registry(self) -> str:
        if self.registry_host:
            return self.registry_host
        return f"{self.account_id}.dkr.ecr.{self.region}.amazonaws.com"

    @property
    def dockerfile_path(self) -> str:
        return os.path.join(self.source_dir, self.dockerfile)

    def secret_references(self) -> Dict[str, str]:
        return {slot: getattr(self, slot) for slot in CREDENTIAL_SLOTS}

    def validate(self):
        for name in REQUIRED_SETTINGS:
            value = getattr(self, name)
            if value is None or not str(value).strip():
                raise ConfigurationError(
                    actionable_error(
                        "MissingSetting",
                        name=name,
                        option=name.replace("_", "-"),
                        envvar=ENVIRONMENT_VARIABLES.get(name, "-"),
                    ),
                    kind="MissingSetting",
                )

        for name in TIMEOUT_SETTINGS:
            if getattr(self, name) <= 0:
                self._invalid(name, "must be a positive number of seconds.")

        if not self.scanner_console.startswith(("https://", "http://")):
            self._invalid("scanner_console", "must be an http(s) URL.")
        if self.scanner_console.startswith("http://") and not self.allow_insecure_http:
            self._invalid("scanner_console", "uses insecure HTTP; set allow_insecure_http to permit it.")

        if not os.path.isfile(self.dockerfile_path):
            self._invalid("dockerfile", f"{self.dockerfile_path} does not exist.")

        if not self.manifests:
            self._invalid("manifests", "at least one manifest template is required.")
        for manifest in self.manifests:
            if not os.path.isfile(manifest):
                self._invalid("manifests", f"{manifest} does not exist.")

        for asset in self.static_assets or ():
            asset_path = os.path.join(self.source_dir, asset)
            if not os.path.exists(asset_path):
                raise ConfigurationError(
                    actionable_error("AssetMissing", path=asset_path), kind="AssetMissing"
                )

    @staticmethod
    def _invalid(name: str, reason: str):
        raise ConfigurationError(
            actionable_error("InvalidSetting", name=name, reason=reason), kind="InvalidSetting"
        )
