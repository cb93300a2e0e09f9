"""Domain errors for HardenPipe."""


class PipelineError(RuntimeError):
    """Raised when a pipeline step cannot continue safely."""

    category = "PipelineError"

    def __init__(self, message: str, kind: str = "Unknown", output: str = ""):
        super().__init__(message)
        self.kind = kind
        self.output = output


class ConfigurationError(PipelineError):
    """Missing or invalid input detected before any external call."""

    category = "ConfigurationError"


class CredentialError(PipelineError):
    """Secret resolution or registry authentication failed."""

    category = "CredentialError"


class ToolError(PipelineError):
    """The security-embedding tool could not produce a usable build context."""

    category = "ToolError"


class BuildError(PipelineError):
    category = "BuildError"


class PublishError(PipelineError):
    category = "PublishError"


class ClusterAuthError(PipelineError):
    """Cluster access could not be established or has expired."""

    category = "ClusterAuthError"


class DeployError(PipelineError):
    category = "DeployError"


class CommandError(PipelineError):
    """Low-level failure of an external command.

    Services translate it into one of the domain errors above.
    """

    category = "CommandError"

    def __init__(
        self,
        message: str,
        returncode=None,
        output: str = "",
        timed_out: bool = False,
        not_found: bool = False,
    ):
        super().__init__(message, kind="CommandFailed", output=output)
        self.returncode = returncode
        self.timed_out = timed_out
        self.not_found = not_found
