"""Shared domain models for HardenPipe."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from hardenpipe.constants import EXIT_ABORTED, EXIT_CODES, EXIT_UNEXPECTED, REDACTED
from hardenpipe.errors import ClusterAuthError, ConfigurationError, CredentialError
from hardenpipe.errors_catalog import actionable_error


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class RunContext:
    """Runtime identifiers isolated per execution."""

    run_id: str
    workspace: str
    started_at: str


@dataclass(frozen=True)
class Artifact:
    name: str
    revision: int
    step: str
    path: Optional[str] = None
    value: Any = None
    created_at: str = field(default_factory=utc_now)


class BuildContext:
    """Append-only record of the artifacts produced during one run.

    Recording an artifact under an existing name adds a new revision;
    earlier revisions stay available through ``history``.
    """

    def __init__(self):
        self._artifacts: List[Artifact] = []

    def record(self, name: str, step: str, path: Optional[str] = None, value: Any = None) -> Artifact:
        revision = len(self.history(name)) + 1
        artifact = Artifact(name=name, revision=revision, step=step, path=path, value=value)
        self._artifacts.append(artifact)
        return artifact

    def latest(self, name: str) -> Optional[Artifact]:
        for artifact in reversed(self._artifacts):
            if artifact.name == name:
                return artifact
        return None

    def require(self, name: str) -> Artifact:
        artifact = self.latest(name)
        if artifact is None:
            raise ConfigurationError(
                f"Artifact `{name}` has not been produced by an earlier step.",
                kind="ArtifactMissing",
            )
        return artifact

    def history(self, name: str) -> Tuple[Artifact, ...]:
        return tuple(artifact for artifact in self._artifacts if artifact.name == name)

    def __iter__(self) -> Iterator[Artifact]:
        return iter(tuple(self._artifacts))

    def __len__(self) -> int:
        return len(self._artifacts)


@dataclass(frozen=True)
class SecretReference:
    """Points at a secret, or one JSON field of it, in the secret store."""

    secret_id: str
    json_key: Optional[str] = None

    @classmethod
    def parse(cls, reference: str) -> "SecretReference":
        # An ARN carries six colons of its own; a JSON key follows the seventh.
        text = (reference or "").strip()
        if not text:
            raise ConfigurationError("Secret reference must not be empty.", kind="InvalidSetting")
        if text.startswith("arn:"):
            parts = text.split(":")
            if len(parts) > 7:
                return cls(secret_id=":".join(parts[:7]), json_key=":".join(parts[7:]) or None)
            return cls(secret_id=text)
        secret_id, sep, field_name = text.rpartition(":")
        if not sep:
            return cls(secret_id=text)
        return cls(secret_id=secret_id, json_key=field_name or None)

    def __str__(self) -> str:
        return f"{self.secret_id}:{self.json_key}" if self.json_key else self.secret_id


class CredentialSet(Mapping):
    """Read-only mapping of logical credential names to secret values."""

    def __init__(self, values: Dict[str, str]):
        self._values = MappingProxyType(dict(values))

    def __getitem__(self, name: str) -> str:
        return self._values[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"CredentialSet(names={sorted(self._values)})"

    def require(self, names: Iterable[str]):
        for name in names:
            if not (self._values.get(name) or "").strip():
                raise CredentialError(
                    actionable_error("CredentialMissing", name=name),
                    kind="CredentialMissing",
                )

    def redact(self, text: str) -> str:
        if not text:
            return text
        # Longest first so a secret containing another secret is fully masked.
        for value in sorted(self._values.values(), key=len, reverse=True):
            if value:
                text = text.replace(value, REDACTED)
        return text


@dataclass(frozen=True)
class DeploymentIdentity:
    """Short-lived cluster access: endpoint, CA data and bearer token."""

    cluster_name: str
    endpoint: str
    certificate_authority: str
    token: str = field(repr=False)
    issued_at: float
    expires_at: float
    kubeconfig_path: Optional[str] = None

    def remaining(self, now: float) -> float:
        return self.expires_at - now

    def ensure_valid(self, now: float):
        remaining = self.remaining(now)
        if remaining <= 0:
            raise ClusterAuthError(
                actionable_error("TokenExpired", seconds=int(-remaining)),
                kind="TokenExpired",
            )


@dataclass(frozen=True)
class ImageReference:
    registry: str
    repository: str
    tag: str

    @property
    def local(self) -> str:
        return f"{self.repository}:{self.tag}"

    @property
    def qualified(self) -> str:
        return f"{self.registry}/{self.repository}:{self.tag}"


@dataclass
class StepOutcome:
    phase: str
    step: str
    status: str
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    error_category: Optional[str] = None
    error_kind: Optional[str] = None
    error: Optional[str] = None


@dataclass
class RunResult:
    run_id: str
    status: str
    outcomes: List[StepOutcome] = field(default_factory=list)
    failed_phase: Optional[str] = None
    failed_step: Optional[str] = None
    error_category: Optional[str] = None
    error_kind: Optional[str] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == "success"

    @property
    def exit_code(self) -> int:
        if self.status == "success":
            return 0
        if self.status == "aborted":
            return EXIT_ABORTED
        return EXIT_CODES.get(self.error_category or "", EXIT_UNEXPECTED)

    def outcome(self, step: str) -> Optional[StepOutcome]:
        for outcome in self.outcomes:
            if outcome.step == step:
                return outcome
        return None

    def summary(self) -> str:
        if self.status == "success":
            return f"Run {self.run_id} succeeded."
        if self.status == "aborted":
            return f"Run {self.run_id} aborted before step `{self.failed_step}`."
        return (
            f"Run {self.run_id} failed at {self.failed_phase}/{self.failed_step} "
            f"[{self.error_category}:{self.error_kind}]: {self.error}"
        )

