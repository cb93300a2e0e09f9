"""Container registry login service."""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from hardenpipe.errors import CommandError, CredentialError
from hardenpipe.errors_catalog import actionable_error


@dataclass(frozen=True)
class RegistryTarget:
    """A registry to log into.

    ``kind`` is ``ecr`` (password exchanged through the AWS CLI) or
    ``basic`` (username/password from the credential set).
    """

    name: str
    endpoint: str
    kind: str = "basic"
    username: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)
    region: Optional[str] = None


class RegistryAuthenticator:
    """Logs the docker client into every registry later steps need."""

    REJECTED_MARKERS = (
        "unauthorized",
        "incorrect username or password",
        "denied",
        "authentication required",
        "forbidden",
        "401",
        "403",
    )

    def __init__(self, logger, run_cmd: Callable, timeout: float = 60.0):
        self.logger = logger
        self.run_cmd = run_cmd
        self.timeout = timeout

    def authenticate(self, targets: Sequence[RegistryTarget]) -> List[str]:
        """Logs into all targets concurrently; returns endpoints in target order.

        Every login runs to completion. The first failure in target order is
        raised afterwards so the outcome does not depend on scheduling.
        """
        if not targets:
            return []

        with ThreadPoolExecutor(max_workers=len(targets)) as pool:
            futures = [pool.submit(self.login, target) for target in targets]
            errors = [future.exception() for future in futures]

        for error in errors:
            if error is not None:
                raise error
        return [target.endpoint for target in targets]

    def login(self, target: RegistryTarget) -> str:
        self.logger.info("Logging in to %s registry %s", target.name, target.endpoint)
        username, password = self._login_pair(target)

        try:
            self.run_cmd(
                ["docker", "login", "--username", username, "--password-stdin", target.endpoint],
                capture_output=True,
                timeout=self.timeout,
                input_text=password,
            )
        except CommandError as exc:
            raise self._classify(target, exc) from exc

        self.logger.info("Authenticated with %s", target.endpoint)
        return target.endpoint

    def _login_pair(self, target: RegistryTarget):
        if target.kind == "ecr":
            cmd = ["aws", "ecr", "get-login-password"]
            if target.region:
                cmd += ["--region", target.region]
            try:
                result = self.run_cmd(cmd, capture_output=True, timeout=self.timeout, log_output=False)
            except CommandError as exc:
                raise self._classify(target, exc) from exc
            return "AWS", (result.stdout or "").strip()

        if not target.username or not target.password:
            raise CredentialError(
                f"Registry {target.endpoint} has no username/password configured.",
                kind="CredentialMissing",
            )
        return target.username, target.password

    def _classify(self, target: RegistryTarget, exc: CommandError) -> CredentialError:
        evidence = f"{exc}\n{exc.output}".lower()
        if not exc.timed_out and not exc.not_found and any(
            marker in evidence for marker in self.REJECTED_MARKERS
        ):
            kind = "AuthenticationRejected"
        else:
            kind = "RegistryUnreachable"
        return CredentialError(
            actionable_error(kind, registry=target.endpoint), kind=kind, output=exc.output
        )
