"""Actionable error catalog for HardenPipe."""

from typing import Dict

_ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    "MissingSetting": {
        "what": "Required setting `{name}` is not configured.",
        "next": "Pass `--{option}`, export `{envvar}` or add `{name}` to the config file.",
    },
    "InvalidSetting": {
        "what": "Setting `{name}` is invalid: {reason}",
        "next": "Fix the value in the CLI options, environment or config file.",
    },
    "AssetMissing": {
        "what": "Static asset not found: {path}",
        "next": "Check `static_assets` paths; they are resolved relative to `source_dir`.",
    },
    "SecretNotFound": {
        "what": "Secret `{reference}` was not found in the secret store.",
        "next": "Check the secret id and JSON key, and the region of the secret store.",
    },
    "AccessDenied": {
        "what": "Access to secret `{reference}` was denied.",
        "next": "Grant `secretsmanager:GetSecretValue` on the secret to the build role.",
    },
    "SecretStoreUnavailable": {
        "what": "The secret store could not be reached while reading `{reference}`.",
        "next": "Check network access to the secret store and the AWS CLI installation.",
    },
    "CredentialMissing": {
        "what": "Credential `{name}` resolved to an empty value.",
        "next": "Populate the secret field referenced by `{name}`.",
    },
    "AuthenticationRejected": {
        "what": "Registry {registry} rejected the login.",
        "next": "Verify the registry credentials stored in the secret store.",
    },
    "RegistryUnreachable": {
        "what": "Registry {registry} is unreachable.",
        "next": "Check DNS and network egress from the build host.",
    },
    "EmbeddingToolUnavailable": {
        "what": "The embedding tool is unavailable: {detail}",
        "next": "Check the scanner console address or set `embed_tool_path` to an installed binary.",
    },
    "ScannerTokenRejected": {
        "what": "The scanner console at {url} did not issue an API token: {detail}",
        "next": "Verify the scanner credentials stored in the secret store and the console address.",
    },
    "EmbeddingRejected": {
        "what": "The embedding tool failed for app `{app_id}`.",
        "next": "Check scanner credentials, console reachability and base image support.",
    },
    "OutputMissing": {
        "what": "The embedding tool did not produce `{path}`.",
        "next": "Inspect the tool output; its archive naming may have changed.",
    },
    "PatchTargetMissing": {
        "what": "No usable build definition found in {path}.",
        "next": "The embedding tool output shape changed; review the hardened context manually.",
    },
    "InvalidReference": {
        "what": "`{value}` is not a valid image {part}.",
        "next": "Use lowercase repository names and tags of letters, digits, `_`, `.` and `-`.",
    },
    "BuildFailed": {
        "what": "Image build for {image} failed.",
        "next": "Review the build output above; the hardened definition is kept in the run log.",
    },
    "PushRejected": {
        "what": "Registry rejected push of {image}.",
        "next": "Check registry permissions, repository existence and quotas.",
    },
    "PushTimeout": {
        "what": "Push of {image} did not finish within {timeout}s.",
        "next": "Raise `push_timeout` or check registry connectivity.",
    },
    "ClusterUnreachable": {
        "what": "Cluster {cluster} is unreachable.",
        "next": "Check the cluster name, region and network access to its endpoint.",
    },
    "IdentityNotAuthorized": {
        "what": "Service identity is not authorized on cluster {cluster}.",
        "next": "Bind the service identity to a role that may create deployments in `{namespace}`.",
    },
    "TokenExpired": {
        "what": "Cluster token expired {seconds}s ago.",
        "next": "Re-run the pipeline; tokens are issued per run and never reused.",
    },
    "ApplyRejected": {
        "what": "The cluster rejected the manifests: {detail}",
        "next": "Validate the manifests and the RBAC permissions of the service identity.",
    },
}


def actionable_error(code: str, **kwargs) -> str:
    if code not in _ERROR_MESSAGES:
        raise KeyError(f"Unknown error catalog key: {code}")

    template = _ERROR_MESSAGES[code]
    what = template["what"].format(**kwargs)
    next_step = template["next"].format(**kwargs)
    return f"{what} Suggested action: {next_step}"
