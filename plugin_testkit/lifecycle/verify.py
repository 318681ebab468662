"""
Functional checks run against a deployed operator.

Each check raises ConditionNotMet (or lets the client's ExternalToolError
through) when the cluster is not in the expected state yet, so callers
wrap them in poll_until.
"""

import logging
from pathlib import Path

from plugin_testkit.kube.base import ClusterClient
from plugin_testkit.util.polling import ConditionNotMet, PollSettings, poll_for_output, poll_until

logger = logging.getLogger(__name__)

CONTROL_PLANE_LABEL = "controller-manager"

# Names of pods that are not being deleted, one per line
LIVE_POD_NAMES_TEMPLATE = (
    "go-template={{ range .items }}{{ if not .metadata.deletionTimestamp }}"
    '{{ .metadata.name }}{{ "\\n" }}{{ end }}{{ end }}'
)

CURL_POD = "curl"
CURL_IMAGE = "curlimages/curl:7.68.0"
METRICS_PORT = 8443
HTTP_OK_MARKER = "< HTTP/2 200"
PROBE_DONE_PHASES = ("Completed", "Succeeded")


def non_empty_lines(output: str) -> list[str]:
    return [line.strip() for line in output.splitlines() if line.strip()]


def ensure_operator_running(
    client: ClusterClient,
    expected_pods: int = 1,
    name_contains: str = "controller-manager",
    control_plane: str = CONTROL_PLANE_LABEL,
) -> str:
    """
    Check that the controller pod is up.

    Args:
        client: Cluster client scoped to the operator namespace
        expected_pods: Number of live controller pods expected
        name_contains: Substring the controller pod name must contain
        control_plane: Value of the ``control-plane`` label

    Returns:
        Name of the controller pod

    Raises:
        ConditionNotMet: If the pod count, name or phase is not as expected
    """
    output = client.get(
        "pods",
        "-l",
        f"control-plane={control_plane}",
        "-o",
        LIVE_POD_NAMES_TEMPLATE,
        namespaced=True,
    )
    pod_names = non_empty_lines(output)
    if len(pod_names) != expected_pods:
        raise ConditionNotMet(f"expecting {expected_pods} pod(s), have {len(pod_names)}")

    pod_name = pod_names[0]
    if name_contains not in pod_name:
        raise ConditionNotMet(f"expecting pod name {pod_name!r} to contain {name_contains!r}")

    phase = client.get("pods", pod_name, "-o", "jsonpath={.status.phase}", namespaced=True).strip()
    if phase != "Running":
        raise ConditionNotMet(f"controller pod in {phase or 'unknown'} status")
    return pod_name


def ensure_service_exists(client: ClusterClient, service: str) -> str:
    """Fetch a service in the client's namespace (ExternalToolError if absent)."""
    return client.get("Service", service, namespaced=True)


def create_custom_resource(client: ClusterClient, manifest: str | Path) -> str:
    """Apply a custom-resource manifest in the client's namespace."""
    return client.apply("-f", str(manifest), namespaced=True)


class MetricsProbe:
    """
    Reads the operator's metrics endpoint from inside the cluster.

    The probe binds the operator's metrics-reader cluster role to its
    service account, reads a bearer token for that account and runs a
    one-shot curl pod against the metrics service. Success means the pod
    completed and its verbose output shows an HTTP 200 status line.
    """

    def __init__(
        self,
        client: ClusterClient,
        sample: str,
        token_source: str = "secret",
        pod_settings: PollSettings = PollSettings(timeout=120, interval=1),
        logs_settings: PollSettings = PollSettings(timeout=60, interval=1),
        **poll_kwargs,
    ):
        """
        Initialize metrics probe.

        Args:
            client: Cluster client scoped to the operator namespace and
                service account
            sample: Sample name (prefix of the operator's resources)
            token_source: How to obtain the token ("secret" or "request")
            pod_settings: Polling for the curl pod to finish
            logs_settings: Polling for the success line in the pod logs
            **poll_kwargs: Passed to poll_until (clock, sleep)
        """
        self.client = client
        self.sample = sample
        self.token_source = token_source
        self.pod_settings = pod_settings
        self.logs_settings = logs_settings
        self.poll_kwargs = poll_kwargs

    @property
    def cluster_role_binding(self) -> str:
        return f"{self.sample}-metrics-reader"

    @property
    def metrics_url(self) -> str:
        service = f"{self.sample}-controller-manager-metrics-service"
        return f"https://{service}.{self.client.namespace}.svc:{METRICS_PORT}/metrics"

    def grant_access(self) -> None:
        self.client.command(
            "create",
            "clusterrolebinding",
            self.cluster_role_binding,
            f"--clusterrole={self.sample}-metrics-reader",
            f"--serviceaccount={self.client.namespace}:{self.client.service_account}",
        )

    def start_probe(self, token: str) -> None:
        self.client.command_in_namespace(
            "run",
            CURL_POD,
            f"--image={CURL_IMAGE}",
            "--restart=OnFailure",
            "--",
            "curl",
            "-v",
            "-k",
            "-H",
            f"Authorization: Bearer {token}",
            self.metrics_url,
        )

    def probe_phase(self) -> str:
        phase = self.client.get(
            "pods", CURL_POD, "-o", "jsonpath={.status.phase}", namespaced=True
        ).strip()
        if phase not in PROBE_DONE_PHASES:
            raise ConditionNotMet(f"curl pod in {phase or 'unknown'} status")
        return phase

    def run(self) -> str:
        """
        Run the probe end to end.

        Returns:
            Logs of the curl pod (verbose curl output plus metrics)

        Raises:
            ClusterConditionTimeoutError: If the pod never completes or the
                logs never show a successful response
            ClusterError: If no service-account token is available
            ExternalToolError: If granting access or starting the pod fails
        """
        logger.info("Granting metrics access to %s", self.client.service_account)
        self.grant_access()

        token = self.client.service_account_token(self.token_source)
        self.start_probe(token)

        poll_until(self.probe_phase, "curl pod to complete", self.pod_settings, **self.poll_kwargs)
        return poll_for_output(
            lambda: self.client.logs(CURL_POD, namespaced=True),
            lambda output: HTTP_OK_MARKER in output,
            "metrics endpoint to answer with HTTP 200",
            self.logs_settings,
            **self.poll_kwargs,
        )

    def cleanup(self) -> None:
        """Delete the curl pod and the cluster role binding."""
        self.client.delete("pod", CURL_POD, "--ignore-not-found", namespaced=True)
        self.client.delete("clusterrolebinding", self.cluster_role_binding, "--ignore-not-found")
