"""
Abstract base class for cluster clients.
"""

import base64
import binascii
import logging
from abc import ABC, abstractmethod

from plugin_testkit.exceptions import ClusterError
from plugin_testkit.kube.version import ClusterVersion, parse_cluster_version

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "test-ns"
DEFAULT_SERVICE_ACCOUNT = "test-sa"


class ClusterClient(ABC):
    """
    Issues subcommands against the cluster control binary.

    Subclasses implement command(); the typed verb helpers and the version
    query are built on it. Each verb helper can be scoped to the client's
    namespace with ``namespaced=True``.
    """

    def __init__(
        self,
        namespace: str = DEFAULT_NAMESPACE,
        service_account: str = DEFAULT_SERVICE_ACCOUNT,
    ):
        """
        Initialize cluster client.

        Args:
            namespace: Namespace used for namespaced commands
            service_account: Service account used for metrics access
        """
        self.namespace = namespace
        self.service_account = service_account

    @abstractmethod
    def command(self, *args: str) -> str:
        """
        Run a raw subcommand and return its output.

        Raises:
            ExternalToolError: If the subcommand fails
        """
        pass

    def command_in_namespace(self, *args: str) -> str:
        """Run a raw subcommand scoped to the client's namespace."""
        return self.command("-n", self.namespace, *args)

    def _verb(self, verb: str, args: tuple[str, ...], namespaced: bool) -> str:
        if namespaced:
            return self.command_in_namespace(verb, *args)
        return self.command(verb, *args)

    def apply(self, *args: str, namespaced: bool = False) -> str:
        return self._verb("apply", args, namespaced)

    def get(self, *args: str, namespaced: bool = False) -> str:
        return self._verb("get", args, namespaced)

    def delete(self, *args: str, namespaced: bool = False) -> str:
        return self._verb("delete", args, namespaced)

    def logs(self, *args: str, namespaced: bool = False) -> str:
        return self._verb("logs", args, namespaced)

    def wait(self, *args: str, namespaced: bool = False) -> str:
        return self._verb("wait", args, namespaced)

    def version(self) -> ClusterVersion:
        """
        Query and parse client and server versions.

        Raises:
            ExternalToolError: If the version command fails
            VersionParseError: If the output cannot be parsed
        """
        return parse_cluster_version(self.command("version", "-o", "json"))

    def current_context(self) -> str:
        """Name of the active kubeconfig context."""
        return self.command("config", "current-context").strip()

    def is_kind_cluster(self) -> bool:
        """Whether the active context points at a local kind cluster."""
        return "kind" in self.current_context()

    def create_token(self) -> str:
        """Request a short-lived token for the client's service account."""
        return self.command_in_namespace("create", "token", self.service_account).strip()

    def service_account_token(self, source: str = "secret") -> str:
        """
        Read a bearer token for the client's service account.

        Args:
            source: "secret" reads the service-account token secret (clusters
                that still auto-create them); "request" asks the API server
                for a short-lived token.

        Returns:
            Decoded token

        Raises:
            ClusterError: If no usable token was found
        """
        if source == "request":
            token = self.create_token()
        elif source == "secret":
            query = (
                "{.items[?(@.metadata.annotations.kubernetes\\.io/service-account\\.name"
                f'=="{self.service_account}")].data.token}}'
            )
            encoded = self.get("secrets", f"-o=jsonpath={query}", namespaced=True).strip()
            try:
                token = base64.b64decode(encoded, validate=True).decode()
            except (binascii.Error, UnicodeDecodeError) as e:
                raise ClusterError(
                    f"Service account token for {self.service_account} is not valid base64"
                ) from e
        else:
            raise ValueError(f"Unsupported token source: {source}")

        if not token:
            raise ClusterError(
                f"No token found for service account {self.namespace}/{self.service_account}",
                "Set cluster.token_source to 'request' on clusters that no longer\n"
                "create service-account token secrets (Kubernetes 1.24+).",
            )
        return token
