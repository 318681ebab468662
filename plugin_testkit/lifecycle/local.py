"""
Local run check: run the operator against the cluster from the host.
"""

import logging
import time
from collections.abc import Callable

from plugin_testkit.exceptions import ExternalToolError
from plugin_testkit.samples.descriptor import SampleDescriptor

logger = logging.getLogger(__name__)


class LocalRunCheck:
    """
    Installs the CRDs, starts ``make run``, checks it stays up, kills it
    and uninstalls the CRDs again.

    The uninstall always runs once the install succeeded; if the run itself
    failed, an uninstall failure is logged and the run failure is raised.
    """

    def __init__(
        self,
        descriptor: SampleDescriptor,
        settle_seconds: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.descriptor = descriptor
        self.settle_seconds = settle_seconds
        self.sleep = sleep

    def _make(self, *targets: str):
        return self.descriptor.runner.run(["make", *targets], self.descriptor.name)

    def run_and_kill(self) -> None:
        """
        Start the manager and kill it after the settle delay.

        Raises:
            ExternalToolError: If the manager exited on its own
        """
        command = ["make", "run"]
        handle = self.descriptor.runner.start(command, self.descriptor.name)
        self.sleep(self.settle_seconds)

        returncode = handle.poll()
        if returncode is not None:
            raise ExternalToolError(
                command, returncode, "manager exited before it was stopped"
            )
        handle.kill()
        logger.info("Stopped local manager for %s", self.descriptor.name)

    def run(self) -> None:
        """
        Run the full local check.

        Raises:
            ExternalToolError: If install, run or uninstall fails
        """
        self._make("install")
        try:
            self.run_and_kill()
        except Exception:
            try:
                self._make("uninstall")
            except ExternalToolError as cleanup_error:
                logger.error("Uninstall after failed local run also failed: %s", cleanup_error)
            raise
        self._make("uninstall")
