"""Credential resolution against the secret store."""

import json
from typing import Callable, Dict, Iterable, Optional

from hardenpipe.errors import CommandError, ConfigurationError, CredentialError
from hardenpipe.errors_catalog import actionable_error
from hardenpipe.models import CredentialSet, SecretReference


class CredentialResolver:
    """Resolves logical credential names to values held only in memory.

    Resolution is all-or-nothing: any failure raises before a
    ``CredentialSet`` exists.
    """

    NOT_FOUND_MARKERS = ("resourcenotfoundexception", "can't find the specified secret")
    ACCESS_DENIED_MARKERS = (
        "accessdeniedexception",
        "access denied",
        "not authorized",
        "unrecognizedclientexception",
        "expiredtokenexception",
        "invalidsignatureexception",
    )

    def __init__(self, logger, run_cmd: Callable, region: Optional[str] = None, timeout: float = 30.0):
        self.logger = logger
        self.run_cmd = run_cmd
        self.region = region
        self.timeout = timeout

    def resolve(self, references: Dict[str, str], required: Iterable[str] = ()) -> CredentialSet:
        parsed: Dict[str, SecretReference] = {}
        for name, reference in references.items():
            if not reference:
                raise ConfigurationError(
                    f"No secret reference configured for credential `{name}`.", kind="MissingSetting"
                )
            parsed[name] = SecretReference.parse(reference)

        fetched: Dict[str, str] = {}
        for secret_id in sorted({reference.secret_id for reference in parsed.values()}):
            self.logger.info("Reading secret %s", secret_id)
            fetched[secret_id] = self.fetch_secret(secret_id)

        values: Dict[str, str] = {}
        for name, reference in parsed.items():
            values[name] = self._extract(reference, fetched[reference.secret_id])

        credentials = CredentialSet(values)
        credentials.require(required or parsed.keys())
        self.logger.info("Resolved %s credentials from %s secrets.", len(values), len(fetched))
        return credentials

    def fetch_secret(self, secret_id: str) -> str:
        cmd = [
            "aws",
            "secretsmanager",
            "get-secret-value",
            "--secret-id",
            secret_id,
            "--query",
            "SecretString",
            "--output",
            "text",
        ]
        if self.region:
            cmd += ["--region", self.region]

        try:
            result = self.run_cmd(cmd, capture_output=True, timeout=self.timeout, log_output=False)
        except CommandError as exc:
            raise self._classify(secret_id, exc) from exc

        return (result.stdout or "").rstrip("\n")

    def _classify(self, secret_id: str, exc: CommandError) -> CredentialError:
        evidence = f"{exc}\n{exc.output}".lower()
        if exc.timed_out or exc.not_found:
            kind = "SecretStoreUnavailable"
        elif any(marker in evidence for marker in self.NOT_FOUND_MARKERS):
            kind = "SecretNotFound"
        elif any(marker in evidence for marker in self.ACCESS_DENIED_MARKERS):
            kind = "AccessDenied"
        else:
            kind = "SecretStoreUnavailable"
        return CredentialError(actionable_error(kind, reference=secret_id), kind=kind, output=exc.output)

    @staticmethod
    def _extract(reference: SecretReference, secret_string: str) -> str:
        if not reference.json_key:
            return secret_string

        try:
            document = json.loads(secret_string)
        except json.JSONDecodeError as exc:
            raise CredentialError(
                f"Secret `{reference.secret_id}` is not a JSON document; "
                f"cannot read key `{reference.json_key}`.",
                kind="SecretNotFound",
            ) from exc

        if not isinstance(document, dict) or reference.json_key not in document:
            raise CredentialError(
                actionable_error("SecretNotFound", reference=str(reference)), kind="SecretNotFound"
            )
        value = document[reference.json_key]
        return "" if value is None else str(value)
