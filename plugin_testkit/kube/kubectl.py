"""
ClusterClient implementation that shells out to kubectl.
"""

from plugin_testkit.command import CommandRunner, LocalCommandRunner
from plugin_testkit.kube.base import DEFAULT_NAMESPACE, DEFAULT_SERVICE_ACCOUNT, ClusterClient


class Kubectl(ClusterClient):
    """Runs ``kubectl [-n <ns>] <verb> [args...]`` through a CommandRunner."""

    def __init__(
        self,
        runner: CommandRunner | None = None,
        namespace: str = DEFAULT_NAMESPACE,
        service_account: str = DEFAULT_SERVICE_ACCOUNT,
        binary: str = "kubectl",
    ):
        """
        Initialize kubectl client.

        Args:
            runner: Runner used to execute kubectl (defaults to a local runner
                in the current directory)
            namespace: Namespace used for namespaced commands
            service_account: Service account used for metrics access
            binary: kubectl binary name or path
        """
        super().__init__(namespace=namespace, service_account=service_account)
        self.runner = runner or LocalCommandRunner()
        self.binary = binary

    def command(self, *args: str) -> str:
        return self.runner.run([self.binary, *args]).output
