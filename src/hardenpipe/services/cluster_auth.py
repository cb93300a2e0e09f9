"""Short-lived cluster access for the deploy phase."""

import json
import os
import time
from datetime import datetime
from typing import Callable, Optional

import yaml

from hardenpipe.constants import DEFAULT_NAMESPACE, DEFAULT_TOKEN_TTL_SECONDS, SECRET_FILE_MODE
from hardenpipe.errors import ClusterAuthError, CommandError
from hardenpipe.errors_catalog import actionable_error
from hardenpipe.models import DeploymentIdentity


class DeploymentAuthenticator:
    """Exchanges the service identity for a bounded token and ephemeral kubeconfig.

    Nothing is cached: every run describes the cluster, requests a fresh
    token and writes its own kubeconfig inside the run workspace.
    """

    UNAUTHORIZED_MARKERS = ("unauthorized", "forbidden", "must be logged in")

    def __init__(
        self,
        logger,
        run_cmd: Callable,
        timeout: float = 60.0,
        token_ttl: float = DEFAULT_TOKEN_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.logger = logger
        self.run_cmd = run_cmd
        self.timeout = timeout
        self.token_ttl = token_ttl
        self.clock = clock

    def authenticate(
        self,
        cluster_name: str,
        region: str,
        workspace: str,
        service_identity: Optional[str] = None,
        namespace: str = DEFAULT_NAMESPACE,
    ) -> DeploymentIdentity:
        endpoint, certificate_authority = self.describe_cluster(cluster_name, region)
        token, token_expiry = self.issue_token(cluster_name, region, service_identity)

        issued_at = self.clock()
        expires_at = issued_at + self.token_ttl
        if token_expiry is not None:
            expires_at = min(expires_at, token_expiry)

        kubeconfig_path = self.write_kubeconfig(
            os.path.join(workspace, "kube", "config"),
            cluster_name,
            endpoint,
            certificate_authority,
            token,
        )
        identity = DeploymentIdentity(
            cluster_name=cluster_name,
            endpoint=endpoint,
            certificate_authority=certificate_authority,
            token=token,
            issued_at=issued_at,
            expires_at=expires_at,
            kubeconfig_path=kubeconfig_path,
        )
        self.verify_access(identity, namespace)
        self.logger.info(
            "Cluster access for %s valid for %.0f seconds.", cluster_name, identity.remaining(self.clock())
        )
        return identity

    def describe_cluster(self, cluster_name: str, region: str):
        cmd = ["aws", "eks", "describe-cluster", "--name", cluster_name, "--region", region, "--output", "json"]
        result = self._aws(cmd, cluster_name)
        try:
            cluster = json.loads(result.stdout)["cluster"]
            endpoint = cluster["endpoint"]
            certificate_authority = cluster["certificateAuthority"]["data"]
        except (ValueError, KeyError, TypeError) as exc:
            raise self._unreachable(cluster_name, f"unexpected describe-cluster response: {exc}") from exc

        if not endpoint or not certificate_authority:
            raise self._unreachable(cluster_name, "cluster endpoint or CA data is empty")
        return endpoint, certificate_authority

    def issue_token(self, cluster_name: str, region: str, service_identity: Optional[str] = None):
        cmd = ["aws", "eks", "get-token", "--cluster-name", cluster_name, "--region", region, "--output", "json"]
        if service_identity:
            cmd += ["--role-arn", service_identity]

        result = self._aws(cmd, cluster_name, log_output=False)
        try:
            status = json.loads(result.stdout)["status"]
            token = status["token"]
        except (ValueError, KeyError, TypeError) as exc:
            raise self._unreachable(cluster_name, f"malformed token response: {type(exc).__name__}") from exc

        expiry = status.get("expirationTimestamp")
        return token, self._parse_timestamp(expiry) if expiry else None

    def write_kubeconfig(self, path: str, cluster_name: str, endpoint: str, certificate_authority: str, token: str) -> str:
        config = {
            "apiVersion": "v1",
            "kind": "Config",
            "clusters": [
                {
                    "name": cluster_name,
                    "cluster": {"server": endpoint, "certificate-authority-data": certificate_authority},
                }
            ],
            "users": [{"name": "pipeline", "user": {"token": token}}],
            "contexts": [{"name": "pipeline", "context": {"cluster": cluster_name, "user": "pipeline"}}],
            "current-context": "pipeline",
        }

        os.makedirs(os.path.dirname(path), exist_ok=True)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, SECRET_FILE_MODE)
        with os.fdopen(fd, "w", encoding="utf-8") as file_obj:
            yaml.safe_dump(config, file_obj, default_flow_style=False)
        return path

    def verify_access(self, identity: DeploymentIdentity, namespace: str):
        cmd = [
            "kubectl",
            "auth",
            "can-i",
            "create",
            "deployments",
            "--namespace",
            namespace,
        ]
        try:
            result = self.run_cmd(
                cmd,
                check=False,
                capture_output=True,
                timeout=self.timeout,
                env={"KUBECONFIG": identity.kubeconfig_path},
            )
        except CommandError as exc:
            raise self._unreachable(identity.cluster_name, str(exc)) from exc

        answer = (result.stdout or "").strip().lower()
        if result.returncode == 0 and answer.startswith("yes"):
            return

        evidence = f"{answer}\n{result.stderr or ''}".lower()
        if answer.startswith("no") or any(marker in evidence for marker in self.UNAUTHORIZED_MARKERS):
            raise ClusterAuthError(
                actionable_error("IdentityNotAuthorized", cluster=identity.cluster_name, namespace=namespace),
                kind="IdentityNotAuthorized",
                output=(result.stderr or "").strip(),
            )
        raise self._unreachable(identity.cluster_name, (result.stderr or "").strip())

    def _aws(self, cmd, cluster_name: str, log_output: bool = True):
        try:
            return self.run_cmd(cmd, capture_output=True, timeout=self.timeout, log_output=log_output)
        except CommandError as exc:
            evidence = f"{exc}\n{exc.output}".lower()
            if "accessdenied" in evidence or "not authorized" in evidence:
                raise ClusterAuthError(
                    f"AWS credentials of the build may not access cluster {cluster_name}: {exc}",
                    kind="AccessDenied",
                    output=exc.output,
                ) from exc
            raise self._unreachable(cluster_name, str(exc)) from exc

    @staticmethod
    def _unreachable(cluster_name: str, detail: str) -> ClusterAuthError:
        return ClusterAuthError(
            actionable_error("ClusterUnreachable", cluster=cluster_name), kind="ClusterUnreachable", output=detail
        )

    @staticmethod
    def _parse_timestamp(value: str) -> float:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
