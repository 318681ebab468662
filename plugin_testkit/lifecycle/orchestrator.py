"""
Cluster lifecycle orchestration for one sample.

Stages run in a fixed order, each moving the run's LifecycleTracker one
state forward:

    install-dependencies -> build-image -> deploy -> verify

The first failing stage stops the forward progression and marks the run
Failed. Teardown then runs unconditionally and undoes whatever the run
touched: the metrics probe, the operator deployment, the dependency
bundles (in reverse install order) and finally waits for the operator
namespace to disappear. A failing teardown step is recorded and the
remaining steps still run.
"""

import logging
import os
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from plugin_testkit.exceptions import (
    ExternalToolError,
    LifecycleError,
    LifecycleStageError,
    PluginTestkitError,
)
from plugin_testkit.kube.base import ClusterClient
from plugin_testkit.kube.version import DEFAULT_THRESHOLD
from plugin_testkit.lifecycle.dependencies import (
    CertManagerBundle,
    DependencyBundle,
    DependencyVersions,
    PrometheusOperatorBundle,
)
from plugin_testkit.lifecycle.state import LifecycleState, LifecycleTracker, StateChange
from plugin_testkit.lifecycle.verify import (
    MetricsProbe,
    create_custom_resource,
    ensure_operator_running,
    ensure_service_exists,
)
from plugin_testkit.samples.descriptor import SampleDescriptor
from plugin_testkit.samples.mutator import DEFAULT_IMAGE
from plugin_testkit.util.files import write_json
from plugin_testkit.util.polling import PollSettings, poll_until

logger = logging.getLogger(__name__)

KIND_CLUSTER_ENV = "KIND_CLUSTER"
DEFAULT_KIND_CLUSTER = "kind"


@dataclass
class LifecycleConfig:
    """
    Settings for one cluster run.

    Timeouts are in seconds unless they are passed through to kubectl
    (``cert_manager_wait`` and ``namespace_delete_wait`` are kubectl
    duration strings).
    """

    image: str = DEFAULT_IMAGE
    kind_cluster: str = DEFAULT_KIND_CLUSTER
    token_source: str = "secret"
    poll_interval: float = 1.0
    controller_timeout: float = 120.0
    service_timeout: float = 60.0
    custom_resource_timeout: float = 60.0
    probe_pod_timeout: float = 120.0
    probe_logs_timeout: float = 60.0
    cert_manager_wait: str = "5m"
    namespace_delete_wait: str = "2m"
    cert_manager_v1beta1: bool = False
    versions: DependencyVersions = field(default_factory=DependencyVersions)
    threshold: tuple[int, int] = DEFAULT_THRESHOLD

    def resolve_kind_cluster(self) -> str:
        """Local cluster name, ``KIND_CLUSTER`` taking precedence."""
        return os.environ.get(KIND_CLUSTER_ENV, self.kind_cluster)

    def poll(self, timeout: float) -> PollSettings:
        return PollSettings(timeout=timeout, interval=self.poll_interval)


@dataclass
class TeardownFailure:
    step: str
    error: Exception

    def to_dict(self) -> dict:
        return {"step": self.step, "error": getattr(self.error, "message", str(self.error))}


@dataclass
class LifecycleReport:
    """
    Outcome of one run.

    ``error`` is the first fatal stage error; teardown failures are kept
    separately so they never replace it.
    """

    sample: str
    state: LifecycleState = LifecycleState.NOT_STARTED
    reached: LifecycleState = LifecycleState.NOT_STARTED
    history: list[StateChange] = field(default_factory=list)
    error: LifecycleStageError | None = None
    teardown_failures: list[TeardownFailure] = field(default_factory=list)
    metrics_output: str = ""

    @property
    def verified(self) -> bool:
        return any(change.state is LifecycleState.VERIFIED for change in self.history)

    @property
    def succeeded(self) -> bool:
        return self.error is None and not self.teardown_failures

    def raise_for_failure(self) -> None:
        """
        Raise the first fatal error, or a LifecycleError for teardown failures.
        """
        if self.error is not None:
            raise self.error
        if self.teardown_failures:
            steps = ", ".join(failure.step for failure in self.teardown_failures)
            raise LifecycleError(
                f"Teardown failed for sample {self.sample} ({steps})",
                "Cluster resources may have leaked; check the cluster before the next run.",
            )

    def to_dict(self) -> dict:
        return {
            "sample": self.sample,
            "state": self.state.value,
            "reached": self.reached.value,
            "verified": self.verified,
            "history": [change.to_dict() for change in self.history],
            "error": self.error.message if self.error else None,
            "failed_stage": self.error.stage if self.error else None,
            "teardown_failures": [failure.to_dict() for failure in self.teardown_failures],
        }

    def write(self, path: str | Path) -> Path:
        """Write the report as JSON, creating parent directories."""
        return write_json(path, self.to_dict())


@dataclass
class LifecycleStage:
    name: str
    action: Callable[[], None]
    reaches: LifecycleState


class LifecycleOrchestrator:
    """
    Builds, deploys and verifies one sample on the connected cluster, then
    tears everything down.

    The cluster client must be scoped to the operator's namespace and
    service account (``<sample>-system`` / ``<sample>-controller-manager``).
    """

    def __init__(
        self,
        descriptor: SampleDescriptor,
        client: ClusterClient,
        config: LifecycleConfig | None = None,
        on_stage: Callable[[str], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize orchestrator.

        Args:
            descriptor: Sample to run (already generated and mutated)
            client: Cluster client scoped to the operator namespace
            config: Run settings
            on_stage: Optional callback invoked with each stage/teardown step name
            clock: Monotonic clock for polling (injectable for tests)
            sleep: Sleep function for polling (injectable for tests)
        """
        self.descriptor = descriptor
        self.client = client
        self.config = config or LifecycleConfig()
        self.on_stage = on_stage
        self.poll_kwargs = {"clock": clock, "sleep": sleep}

        self.bundles: list[DependencyBundle] = [
            PrometheusOperatorBundle(client, self.config.versions, self.config.threshold),
            CertManagerBundle(
                client,
                self.config.versions,
                self.config.threshold,
                v1beta1_crs=self.config.cert_manager_v1beta1,
                wait_timeout=self.config.cert_manager_wait,
            ),
        ]
        self.probe = MetricsProbe(
            client,
            descriptor.name,
            token_source=self.config.token_source,
            pod_settings=self.config.poll(self.config.probe_pod_timeout),
            logs_settings=self.config.poll(self.config.probe_logs_timeout),
            **self.poll_kwargs,
        )

        # What the run touched, so teardown only undoes that
        self._installed: list[DependencyBundle] = []
        self._deployed = False
        self._probed = False
        self.metrics_output = ""

    def _notify(self, name: str) -> None:
        if self.on_stage is not None:
            self.on_stage(name)

    def _make(self, *targets: str) -> None:
        self.descriptor.runner.run(["make", *targets], self.descriptor.name)

    # Stages

    def install_dependencies(self) -> None:
        for bundle in self.bundles:
            logger.info("Installing %s", bundle.name)
            self._installed.append(bundle)
            bundle.install()

    def build_image(self) -> None:
        image = self.config.image
        self._make("docker-build", f"IMG={image}")

        if self.client.is_kind_cluster():
            cluster = self.config.resolve_kind_cluster()
            logger.info("Loading %s into kind cluster %s", image, cluster)
            self.descriptor.runner.run(["kind", "load", "docker-image", image, "--name", cluster])

    def deploy(self) -> None:
        self._deployed = True
        self._make("deploy", f"IMG={self.config.image}")

    def verify(self) -> None:
        poll_until(
            lambda: ensure_operator_running(self.client),
            "controller pod to be running",
            self.config.poll(self.config.controller_timeout),
            **self.poll_kwargs,
        )
        poll_until(
            lambda: ensure_service_exists(self.client, self.descriptor.metrics_service),
            "metrics service to exist",
            self.config.poll(self.config.service_timeout),
            **self.poll_kwargs,
        )

        manifest = (self.descriptor.project_dir / self.descriptor.sample_manifest).resolve()
        poll_until(
            lambda: create_custom_resource(self.client, manifest),
            "custom resource to be created",
            self.config.poll(self.config.custom_resource_timeout),
            **self.poll_kwargs,
        )

        self._probed = True
        self.metrics_output = self.probe.run()

    def stages(self) -> list[LifecycleStage]:
        return [
            LifecycleStage(
                "install-dependencies",
                self.install_dependencies,
                LifecycleState.DEPENDENCIES_INSTALLED,
            ),
            LifecycleStage("build-image", self.build_image, LifecycleState.IMAGE_BUILT),
            LifecycleStage("deploy", self.deploy, LifecycleState.DEPLOYED),
            LifecycleStage("verify", self.verify, LifecycleState.VERIFIED),
        ]

    def _run_stage(self, stage: LifecycleStage, tracker: LifecycleTracker) -> None:
        self._notify(stage.name)
        logger.info("%s: starting %s", self.descriptor.name, stage.name)
        try:
            stage.action()
        except (PluginTestkitError, OSError) as e:
            tracker.fail()
            raise LifecycleStageError(self.descriptor.name, stage.name, e) from e
        tracker.transition(stage.reaches)
        logger.info("%s: finished %s", self.descriptor.name, stage.name)

    # Teardown

    def undeploy(self) -> None:
        self._make("undeploy", "ignore-not-found=true")

    def wait_namespace_deleted(self) -> None:
        namespace = self.descriptor.namespace
        try:
            self.client.wait(
                "namespace",
                namespace,
                "--for",
                "delete",
                "--timeout",
                self.config.namespace_delete_wait,
            )
        except ExternalToolError as e:
            # Already gone before the wait started
            if "NotFound" not in e.output and "not found" not in e.output:
                raise

    def teardown_steps(self) -> list[tuple[str, Callable[[], None]]]:
        """Cleanup steps for whatever the run touched, in execution order."""
        steps: list[tuple[str, Callable[[], None]]] = []
        if self._probed:
            steps.append(("metrics-cleanup", self.probe.cleanup))
        if self._deployed:
            steps.append(("undeploy", self.undeploy))
        for bundle in reversed(self._installed):
            steps.append((f"uninstall-{bundle.name}", bundle.uninstall))
        if self._deployed:
            steps.append(("wait-namespace-deleted", self.wait_namespace_deleted))
        return steps

    def teardown(self) -> list[TeardownFailure]:
        """
        Run every teardown step, recording failures instead of raising.

        Returns:
            Failures, in step order
        """
        failures = []
        for name, step in self.teardown_steps():
            self._notify(name)
            try:
                step()
            except (PluginTestkitError, OSError) as e:
                logger.error("Teardown step %s failed for %s: %s", name, self.descriptor.name, e)
                failures.append(TeardownFailure(name, e))
        return failures

    def run(self) -> LifecycleReport:
        """
        Run all stages, then tear down.

        Returns:
            LifecycleReport; the run ends in TornDown whether or not a
            stage failed. Call raise_for_failure() to turn a failure into
            an exception.
        """
        tracker = LifecycleTracker(self.descriptor.name)
        report = LifecycleReport(self.descriptor.name)
        self.metrics_output = ""

        try:
            for stage in self.stages():
                self._run_stage(stage, tracker)
        except LifecycleStageError as e:
            logger.error("%s", e.message)
            report.error = e
        finally:
            report.teardown_failures = self.teardown()
            tracker.transition(LifecycleState.TORN_DOWN)

            report.state = tracker.state
            report.reached = tracker.reached
            report.history = list(tracker.history)
            report.metrics_output = self.metrics_output

        return report
