import logging
import os
import signal

import click
from rich.logging import RichHandler

from .constants import DEFAULT_CONFIG_FILE
from .core import HardenPipeline
from .errors import ConfigurationError
from .services.config_loader import ConfigLoader
from .settings import ENVIRONMENT_VARIABLES, PipelineSettings


def _resolve_option(cli_value, config, key, default=None):
    if cli_value is not None and cli_value != ():
        return cli_value
    envvar = ENVIRONMENT_VARIABLES.get(key)
    if envvar and os.environ.get(envvar):
        return os.environ[envvar]
    if key in config:
        return config[key]
    return default


logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True, show_level=False, show_path=False)],
)


@click.command()
@click.option(
    "--config",
    required=False,
    type=click.Path(),
    help=f"Path to a YAML configuration file. Defaults to {DEFAULT_CONFIG_FILE} if present.",
)
@click.option("--account-id", required=False, help="Registry account id (env AWS_ACCOUNT_ID).")
@click.option("--region", required=False, help="Cloud region (env AWS_DEFAULT_REGION).")
@click.option("--cluster-name", required=False, help="Target cluster name (env EKS_CLUSTER_NAME).")
@click.option("--repository", required=False, help="Image repository name (env IMAGE_REPO_NAME).")
@click.option("--image-tag", required=False, help="Image tag, used as given (env IMAGE_TAG).")
@click.option("--scanner-console", required=False, help="Security scanner console URL (env TL_CONSOLE).")
@click.option("--scanner-username", required=False, help="Secret reference holding the scanner username.")
@click.option("--scanner-password", required=False, help="Secret reference holding the scanner password.")
@click.option("--registry-username", required=False, help="Secret reference holding the Docker Hub username.")
@click.option("--registry-password", required=False, help="Secret reference holding the Docker Hub password.")
@click.option("--source-dir", required=False, type=click.Path(), help="Directory holding the build definition.")
@click.option("--dockerfile", required=False, help="Build definition file name inside --source-dir.")
@click.option(
    "--static-asset",
    "static_assets",
    multiple=True,
    help=(
        "Asset (relative to --source-dir) to carry into the hardened build context. Repeatable. "
        "Defaults to the local COPY/ADD sources of the build definition."
    ),
)
@click.option(
    "--manifest",
    "manifests",
    multiple=True,
    type=click.Path(),
    help="Manifest template to apply. Repeatable.",
)
@click.option("--image-placeholder", required=False, help="Placeholder replaced by the image reference.")
@click.option("--app-id", required=False, help="Application id passed to the embedding tool.")
@click.option("--namespace", required=False, help="Namespace checked for deploy permissions.")
@click.option("--service-identity", required=False, help="Role ARN of the pre-authorized deploy identity.")
@click.option("--docker-hub-registry", required=False, help="Docker Hub registry endpoint.")
@click.option("--registry-host", required=False, help="Override for the target registry host.")
@click.option("--embed-tool-path", required=False, type=click.Path(), help="Use an installed embedding tool.")
@click.option(
    "--conflicting-directive",
    required=False,
    help="Directive removed from the hardened build definition. Defaults to the source ENTRYPOINT.",
)
@click.option(
    "--allow-insecure-http",
    is_flag=True,
    default=None,
    help="Allow an HTTP scanner console (insecure). By default only HTTPS is accepted.",
)
@click.option("--run-log", required=False, type=click.Path(), help="Path of the JSON run log.")
@click.option("--verbose", is_flag=True, default=None, help="Enable verbose logging")
@click.option("--log-file", type=click.Path(), help="Path to log file")
@click.option("--tool-timeout", type=float, default=None, help="Embedding tool timeout in seconds.")
@click.option("--build-timeout", type=float, default=None, help="Image build timeout in seconds.")
@click.option("--push-timeout", type=float, default=None, help="Image push timeout in seconds.")
@click.option("--apply-timeout", type=float, default=None, help="Manifest apply timeout in seconds.")
@click.option("--token-ttl", type=float, default=None, help="Cluster token lifetime in seconds (default: 600).")
def main(config, **options):
    """Harden a container image with a runtime security agent and deploy it."""
    logger = logging.getLogger("hardenpipe")

    try:
        config_loader = ConfigLoader()
        resolved_config = config
        if resolved_config is None:
            default_config_path = os.path.join(os.getcwd(), DEFAULT_CONFIG_FILE)
            if os.path.exists(default_config_path):
                resolved_config = default_config_path

        config_values = config_loader.load(resolved_config)
    except ConfigurationError as exc:
        raise click.ClickException(str(exc)) from exc

    defaults = PipelineSettings()
    values = {}
    for name in PipelineSettings.field_names():
        values[name] = _resolve_option(options.get(name), config_values, name, default=getattr(defaults, name))

    try:
        values["manifests"] = _as_list(values["manifests"])
        if values["static_assets"] is not None:
            values["static_assets"] = _as_list(values["static_assets"])
        for name in ("allow_insecure_http", "verbose"):
            values[name] = bool(values[name])
        for name in (
            "secret_timeout",
            "login_timeout",
            "tool_timeout",
            "build_timeout",
            "push_timeout",
            "cluster_timeout",
            "apply_timeout",
            "token_ttl",
        ):
            values[name] = float(values[name])
        for name in ("image_tag", "account_id"):
            if values[name] is not None:
                values[name] = str(values[name])
    except (TypeError, ValueError) as exc:
        raise click.ClickException(f"Invalid configuration value: {exc}") from exc

    settings = PipelineSettings(**values)

    if settings.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(logging.INFO)

    if settings.log_file:
        file_handler = logging.FileHandler(settings.log_file)
        file_handler.setLevel(logging.DEBUG if settings.verbose else logging.INFO)
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        logger.addHandler(file_handler)

    pipeline = HardenPipeline(settings=settings)
    previous_handler = signal.signal(signal.SIGTERM, lambda *_: pipeline.cancel())
    try:
        exit_code = pipeline.run()
    finally:
        signal.signal(signal.SIGTERM, previous_handler)

    raise SystemExit(exit_code)


def _as_list(value):
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return list(value)


if __name__ == "__main__":
    main()
