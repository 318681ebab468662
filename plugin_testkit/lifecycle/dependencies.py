"""
Cluster-wide dependency bundles installed before the operator is deployed.

Each bundle picks its manifest URL from the cluster's server version:
servers older than 1.16 cannot serve apiextensions.k8s.io/v1 CRDs, so
they get a legacy release.
"""

import logging
from dataclasses import dataclass

from plugin_testkit.kube.base import ClusterClient
from plugin_testkit.kube.version import (
    DEFAULT_THRESHOLD,
    ClusterVersion,
    select_by_server_version,
)

logger = logging.getLogger(__name__)

PROMETHEUS_OPERATOR_LEGACY_URL = (
    "https://raw.githubusercontent.com/coreos/prometheus-operator/release-{version}/bundle.yaml"
)
PROMETHEUS_OPERATOR_URL = (
    "https://raw.githubusercontent.com/prometheus-operator/"
    "prometheus-operator/release-{version}/bundle.yaml"
)
CERT_MANAGER_LEGACY_URL = (
    "https://github.com/jetstack/cert-manager/releases/download/{version}/cert-manager-legacy.yaml"
)
CERT_MANAGER_URL = (
    "https://github.com/jetstack/cert-manager/releases/download/{version}/cert-manager.yaml"
)

CERT_MANAGER_WEBHOOK = "deployment.apps/cert-manager-webhook"
CERT_MANAGER_NAMESPACE = "cert-manager"


@dataclass
class DependencyVersions:
    """Release versions of the dependency bundles."""

    prometheus_operator_legacy: str = "0.33"
    prometheus_operator: str = "0.51"
    cert_manager_legacy: str = "v1.0.4"
    cert_manager: str = "v1.5.3"
    cert_manager_v1beta1: str = "v0.11.0"

    @classmethod
    def from_config(cls, data: dict | None) -> "DependencyVersions":
        data = data or {}
        prometheus = data.get("prometheus_operator", {})
        cert_manager = data.get("cert_manager", {})
        defaults = cls()
        return cls(
            prometheus_operator_legacy=str(
                prometheus.get("legacy_version", defaults.prometheus_operator_legacy)
            ),
            prometheus_operator=str(prometheus.get("version", defaults.prometheus_operator)),
            cert_manager_legacy=str(
                cert_manager.get("legacy_version", defaults.cert_manager_legacy)
            ),
            cert_manager=str(cert_manager.get("version", defaults.cert_manager)),
            cert_manager_v1beta1=str(
                cert_manager.get("v1beta1_version", defaults.cert_manager_v1beta1)
            ),
        )


class DependencyBundle:
    """
    A manifest bundle applied to, and later deleted from, the whole cluster.

    Subclasses choose the URL; install() and uninstall() are shared.
    """

    name = "dependency"

    def __init__(
        self,
        client: ClusterClient,
        versions: DependencyVersions | None = None,
        threshold: tuple[int, int] = DEFAULT_THRESHOLD,
    ):
        self.client = client
        self.versions = versions or DependencyVersions()
        self.threshold = threshold
        self._url: str | None = None

    def select_url(self, version: ClusterVersion) -> str:
        raise NotImplementedError

    @property
    def url(self) -> str:
        """Manifest URL for the connected cluster (queried once)."""
        if self._url is None:
            self._url = self.select_url(self.client.version())
            logger.info("Selected %s bundle: %s", self.name, self._url)
        return self._url

    def apply_args(self) -> list[str]:
        return ["-f", self.url]

    def install(self) -> None:
        self.client.apply(*self.apply_args())

    def uninstall(self) -> None:
        self.client.delete("-f", self.url, "--ignore-not-found")


class PrometheusOperatorBundle(DependencyBundle):
    """Prometheus operator (ServiceMonitor CRDs for the metrics endpoint)."""

    name = "prometheus-operator"

    def select_url(self, version: ClusterVersion) -> str:
        return select_by_server_version(
            version,
            legacy=PROMETHEUS_OPERATOR_LEGACY_URL.format(
                version=self.versions.prometheus_operator_legacy
            ),
            current=PROMETHEUS_OPERATOR_URL.format(version=self.versions.prometheus_operator),
            threshold=self.threshold,
        )


class CertManagerBundle(DependencyBundle):
    """
    cert-manager (serving certificates for webhooks and metrics).

    Installing blocks until the cert-manager webhook deployment is
    available; it can take a while when cert-manager was just reinstalled.
    """

    name = "cert-manager"

    def __init__(
        self,
        client: ClusterClient,
        versions: DependencyVersions | None = None,
        threshold: tuple[int, int] = DEFAULT_THRESHOLD,
        v1beta1_crs: bool = False,
        wait_timeout: str = "5m",
    ):
        super().__init__(client, versions, threshold)
        self.v1beta1_crs = v1beta1_crs
        self.wait_timeout = wait_timeout

    def select_url(self, version: ClusterVersion) -> str:
        if self.v1beta1_crs:
            return CERT_MANAGER_URL.format(version=self.versions.cert_manager_v1beta1)
        return select_by_server_version(
            version,
            legacy=CERT_MANAGER_LEGACY_URL.format(version=self.versions.cert_manager_legacy),
            current=CERT_MANAGER_URL.format(version=self.versions.cert_manager),
            threshold=self.threshold,
        )

    def apply_args(self) -> list[str]:
        return ["-f", self.url, "--validate=false"]

    def install(self) -> None:
        super().install()
        self.client.wait(
            CERT_MANAGER_WEBHOOK,
            "--for",
            "condition=Available",
            "--namespace",
            CERT_MANAGER_NAMESPACE,
            "--timeout",
            self.wait_timeout,
        )
