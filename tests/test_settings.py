import pytest

from hardenpipe.errors import ConfigurationError
from hardenpipe.settings import PipelineSettings


@pytest.fixture
def project(tmp_path):
    (tmp_path / "Dockerfile").write_text("FROM nginx\n", encoding="utf-8")
    (tmp_path / "index.html").write_text("<h1>hi</h1>", encoding="utf-8")
    manifest = tmp_path / "deployment.yml"
    manifest.write_text("kind: Deployment\n", encoding="utf-8")
    return tmp_path


def make_settings(project, **overrides):
    values = dict(
        account_id="123456789012",
        region="us-east-1",
        cluster_name="prod",
        repository="nginx-app",
        scanner_console="https://console.example.com",
        scanner_username="tl/console:username",
        scanner_password="tl/console:password",
        registry_username="dockerhub/user",
        registry_password="dockerhub/pass",
        source_dir=str(project),
        static_assets=["index.html"],
        manifests=[str(project / "deployment.yml")],
    )
    values.update(overrides)
    return PipelineSettings(**values)


def test_valid_settings_pass(project):
    settings = make_settings(project)

    settings.validate()

    assert settings.ecr_registry == "123456789012.dkr.ecr.us-east-1.amazonaws.com"


def test_registry_host_overrides_ecr_registry(project):
    assert make_settings(project, registry_host="registry.local:5000").ecr_registry == "registry.local:5000"


def test_missing_setting_names_option_and_variable(project):
    with pytest.raises(ConfigurationError) as error:
        make_settings(project, cluster_name=None).validate()

    assert error.value.kind == "MissingSetting"
    assert "--cluster-name" in str(error.value)
    assert "EKS_CLUSTER_NAME" in str(error.value)


def test_blank_credential_reference_is_missing(project):
    with pytest.raises(ConfigurationError) as error:
        make_settings(project, registry_password="  ").validate()

    assert error.value.kind == "MissingSetting"


def test_http_console_requires_opt_in(project):
    with pytest.raises(ConfigurationError, match="insecure HTTP"):
        make_settings(project, scanner_console="http://console.local").validate()

    make_settings(project, scanner_console="http://console.local", allow_insecure_http=True).validate()


def test_missing_static_asset_is_reported(project):
    with pytest.raises(ConfigurationError) as error:
        make_settings(project, static_assets=["nginx.conf"]).validate()

    assert error.value.kind == "AssetMissing"


def test_manifests_are_required(project):
    with pytest.raises(ConfigurationError, match="manifest"):
        make_settings(project, manifests=[]).validate()


def test_non_positive_timeout_is_invalid(project):
    with pytest.raises(ConfigurationError, match="token_ttl"):
        make_settings(project, token_ttl=0).validate()


def test_unset_static_assets_skip_asset_check(project):
    make_settings(project, static_assets=None).validate()
