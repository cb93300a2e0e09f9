import pytest

from hardenpipe.errors import ClusterAuthError, ConfigurationError, CredentialError
from hardenpipe.models import (
    BuildContext,
    CredentialSet,
    DeploymentIdentity,
    RunResult,
    SecretReference,
)


def test_build_context_keeps_every_revision():
    context = BuildContext()

    context.record("patched_context", step="patch_build_definition", path="/ws/patched-r1")
    second = context.record("patched_context", step="patch_build_definition", path="/ws/patched-r2")

    assert second.revision == 2
    assert context.latest("patched_context").path == "/ws/patched-r2"
    assert [item.path for item in context.history("patched_context")] == ["/ws/patched-r1", "/ws/patched-r2"]
    assert len(context) == 2
    assert [(item.name, item.revision) for item in context] == [("patched_context", 1), ("patched_context", 2)]


def test_build_context_require_reports_missing_artifact():
    with pytest.raises(ConfigurationError) as error:
        BuildContext().require("hardened_context")

    assert error.value.kind == "ArtifactMissing"


@pytest.mark.parametrize(
    "reference,secret_id,json_key",
    [
        ("dockerhub/user", "dockerhub/user", None),
        ("tl/console:password", "tl/console", "password"),
        (
            "arn:aws:secretsmanager:us-east-1:123456789012:secret:tl-AbCdEf",
            "arn:aws:secretsmanager:us-east-1:123456789012:secret:tl-AbCdEf",
            None,
        ),
        (
            "arn:aws:secretsmanager:us-east-1:123456789012:secret:tl-AbCdEf:username",
            "arn:aws:secretsmanager:us-east-1:123456789012:secret:tl-AbCdEf",
            "username",
        ),
    ],
)
def test_secret_reference_parse(reference, secret_id, json_key):
    parsed = SecretReference.parse(reference)

    assert parsed.secret_id == secret_id
    assert parsed.json_key == json_key
    assert str(parsed) == reference


def test_credential_set_is_read_only_and_hides_values():
    credentials = CredentialSet({"registry_password": "hubpass"})

    with pytest.raises(TypeError):
        credentials["registry_password"] = "other"
    assert "hubpass" not in repr(credentials)


def test_credential_set_require_rejects_blank_values():
    credentials = CredentialSet({"scanner_username": "scanner", "scanner_password": "   "})

    with pytest.raises(CredentialError) as error:
        credentials.require(["scanner_username", "scanner_password"])

    assert error.value.kind == "CredentialMissing"


def test_credential_set_redacts_longest_value_first():
    credentials = CredentialSet({"short": "abc", "long": "abcdef"})

    assert credentials.redact("token=abcdef other=abc") == "token=*** other=***"


def test_deployment_identity_expiry():
    identity = DeploymentIdentity(
        cluster_name="prod",
        endpoint="https://eks.example",
        certificate_authority="Q0E=",
        token="secret-token",
        issued_at=100.0,
        expires_at=700.0,
    )

    identity.ensure_valid(699.0)
    with pytest.raises(ClusterAuthError) as error:
        identity.ensure_valid(700.0)

    assert error.value.kind == "TokenExpired"
    assert "secret-token" not in repr(identity)


@pytest.mark.parametrize(
    "status,category,exit_code",
    [
        ("success", None, 0),
        ("aborted", None, 130),
        ("failed", "ConfigurationError", 2),
        ("failed", "ToolError", 4),
        ("failed", "DeployError", 8),
        ("failed", "UnexpectedError", 1),
    ],
)
def test_run_result_exit_codes(status, category, exit_code):
    assert RunResult(run_id="r", status=status, error_category=category).exit_code == exit_code
