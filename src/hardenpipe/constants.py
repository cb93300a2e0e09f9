"""Shared constants for HardenPipe."""

DIR_MODE = 0o700
SECRET_FILE_MODE = 0o600
EXECUTABLE_MODE = 0o755

PHASES = ("pre_build", "build", "post_build")

DEFAULT_CONFIG_FILE = ".hardenpipe.yml"
DEFAULT_DOCKERFILE = "Dockerfile"
DEFAULT_IMAGE_TAG = "latest"
DEFAULT_IMAGE_PLACEHOLDER = "CONTAINER_IMAGE"
DEFAULT_APP_ID = "eks-app"
DEFAULT_NAMESPACE = "default"
DEFAULT_DOCKER_HUB_REGISTRY = "docker.io"
DEFAULT_TOKEN_TTL_SECONDS = 600

EMBED_TOOL_NAME = "twistcli"
EMBED_TOOL_DOWNLOAD_PATH = "/api/v1/util/twistcli"
EMBED_TOKEN_PATH = "/api/v1/authenticate"
EMBED_OUTPUT_TEMPLATE = "app_embedded_embed_{app_id}.zip"

REDACTED = "***"

EXIT_CODES = {
    "ConfigurationError": 2,
    "CredentialError": 3,
    "ToolError": 4,
    "BuildError": 5,
    "PublishError": 6,
    "ClusterAuthError": 7,
    "DeployError": 8,
}
EXIT_ABORTED = 130
EXIT_UNEXPECTED = 1
