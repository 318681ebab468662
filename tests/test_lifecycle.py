"""
Tests for the cluster lifecycle orchestrator.
"""

import json

import pytest

from conftest import MEMCACHED_NAMESPACE
from plugin_testkit.command import CommandResult
from plugin_testkit.exceptions import ExternalToolError, LifecycleError, LifecycleStageError
from plugin_testkit.lifecycle import (
    LifecycleConfig,
    LifecycleOrchestrator,
    LifecycleReport,
    LifecycleState,
)

FORWARD_STAGES = ["install-dependencies", "build-image", "deploy", "verify"]
FULL_TEARDOWN = [
    "metrics-cleanup",
    "undeploy",
    "uninstall-cert-manager",
    "uninstall-prometheus-operator",
    "wait-namespace-deleted",
]


def track_namespace(runner, cluster):
    """Make ``make deploy``/``make undeploy`` create and delete the namespace."""

    def deploy(command, cwd):
        cluster.resources.add(("namespace", MEMCACHED_NAMESPACE))
        return CommandResult(tuple(command), 0, "")

    def undeploy(command, cwd):
        cluster.resources.discard(("namespace", MEMCACHED_NAMESPACE))
        return CommandResult(tuple(command), 0, "")

    runner.respond(["make", "deploy"], handler=deploy)
    runner.respond(["make", "undeploy"], handler=undeploy)


@pytest.fixture
def run_config():
    return LifecycleConfig(
        poll_interval=1,
        controller_timeout=5,
        service_timeout=5,
        custom_resource_timeout=5,
        probe_pod_timeout=5,
        probe_logs_timeout=3,
    )


@pytest.fixture
def orchestrate(memcached, healthy_cluster, run_config, fake_clock):
    """Build an orchestrator for the memcached sample and record stage names."""
    track_namespace(memcached.runner, healthy_cluster)
    seen = []

    def build(**kwargs):
        orchestrator = LifecycleOrchestrator(
            memcached,
            healthy_cluster,
            kwargs.pop("config", run_config),
            on_stage=seen.append,
            clock=fake_clock,
            sleep=fake_clock.sleep,
        )
        orchestrator.seen = seen
        return orchestrator

    return build


class TestHealthyRun:
    """Tests for a run in which every stage succeeds."""

    def test_reaches_verified_then_torn_down(self, orchestrate, healthy_cluster):
        """Test the full state progression and a clean cluster afterwards."""
        orchestrator = orchestrate()

        report = orchestrator.run()

        assert report.succeeded
        assert report.verified
        assert report.state is LifecycleState.TORN_DOWN
        assert report.reached is LifecycleState.VERIFIED
        assert [change.state.value for change in report.history] == [
            "NotStarted",
            "DependenciesInstalled",
            "ImageBuilt",
            "Deployed",
            "Verified",
            "TornDown",
        ]
        assert "< HTTP/2 200" in report.metrics_output
        assert orchestrator.seen == FORWARD_STAGES + FULL_TEARDOWN
        assert healthy_cluster.resources == set()
        report.raise_for_failure()

    def test_metrics_service_appears_late(self, orchestrate, healthy_cluster, memcached):
        """Test that a metrics service missing right after deploy is waited for."""
        lookups = []

        def service(args):
            lookups.append(args)
            if len(lookups) == 1:
                raise ExternalToolError(list(args), 1, 'services "x" not found')
            return memcached.metrics_service

        healthy_cluster.respond(*healthy_cluster.namespaced("get", "Service"), output=service)

        report = orchestrate().run()

        assert report.succeeded
        assert report.verified
        assert len(lookups) == 2

    def test_make_targets(self, orchestrate, memcached):
        """Test the build, load, deploy and undeploy commands."""
        orchestrate().run()

        assert [str(c) for c in memcached.runner.commands] == [
            "make docker-build IMG=e2e-test-image:go",
            "kind load docker-image e2e-test-image:go --name kind",
            "make deploy IMG=e2e-test-image:go",
            "make undeploy ignore-not-found=true",
        ]
        assert {c.cwd for c in memcached.runner.commands if c.command[0] == "make"} == {
            memcached.project_dir
        }

    def test_dependency_commands(self, orchestrate, healthy_cluster):
        """Test that bundles install in order and uninstall in reverse."""
        orchestrate().run()

        applies = [c[2] for c in healthy_cluster.calls if c[:2] == ("apply", "-f")]
        deletes = [c[2] for c in healthy_cluster.calls if c[:2] == ("delete", "-f")]
        assert "prometheus-operator" in applies[0]
        assert "cert-manager" in applies[1]
        assert deletes == list(reversed(applies))

    def test_custom_resource_from_project(self, orchestrate, healthy_cluster, memcached):
        """Test that the sample manifest of the project is applied."""
        orchestrate().run()

        manifest = (memcached.project_dir / memcached.sample_manifest).resolve()
        assert healthy_cluster.called(*healthy_cluster.namespaced("apply", "-f", str(manifest)))

    def test_namespace_wait(self, orchestrate, healthy_cluster):
        """Test that teardown waits for the operator namespace to go away."""
        orchestrate().run()

        assert healthy_cluster.calls[-1] == (
            "wait",
            "namespace",
            MEMCACHED_NAMESPACE,
            "--for",
            "delete",
            "--timeout",
            "2m",
        )

    def test_kind_cluster_from_environment(self, orchestrate, memcached, monkeypatch):
        """Test that KIND_CLUSTER names the cluster the image is loaded into."""
        monkeypatch.setenv("KIND_CLUSTER", "e2e")

        orchestrate().run()

        assert "kind load docker-image e2e-test-image:go --name e2e" in [
            str(c) for c in memcached.runner.commands
        ]

    def test_no_image_load_outside_kind(self, orchestrate, healthy_cluster, memcached):
        """Test that other clusters do not get a kind load."""
        healthy_cluster.respond("config", "current-context", output="gke_project_zone_cluster\n")

        orchestrate().run()

        assert memcached.runner.invocations("kind") == []

    def test_custom_image(self, orchestrate, memcached):
        """Test that the configured image is built and deployed."""
        orchestrate(config=LifecycleConfig(image="quay.io/example/memcached:v0.1")).run()

        commands = [str(c) for c in memcached.runner.commands]
        assert "make docker-build IMG=quay.io/example/memcached:v0.1" in commands
        assert "make deploy IMG=quay.io/example/memcached:v0.1" in commands


class TestFailedRun:
    """Tests for runs in which a stage fails."""

    def test_failed_probe_still_tears_down(self, orchestrate, healthy_cluster):
        """Test that a non-200 metrics response fails the run without leaking resources."""
        healthy_cluster.respond(
            *healthy_cluster.namespaced("logs", "curl"), output="< HTTP/2 401 \n"
        )
        orchestrator = orchestrate()

        report = orchestrator.run()

        assert not report.succeeded
        assert not report.verified
        assert report.error.stage == "verify"
        assert report.state is LifecycleState.TORN_DOWN
        assert report.reached is LifecycleState.DEPLOYED
        assert [change.state.value for change in report.history][-2:] == ["Failed", "TornDown"]
        assert orchestrator.seen == FORWARD_STAGES + FULL_TEARDOWN
        assert healthy_cluster.resources == set()

        with pytest.raises(LifecycleStageError) as exc_info:
            report.raise_for_failure()
        assert "Stage 'verify' failed for sample memcached-operator" in str(exc_info.value)

    def test_build_failure_only_uninstalls_dependencies(
        self, orchestrate, healthy_cluster, memcached
    ):
        """Test that teardown skips what the run never touched."""
        memcached.runner.respond(
            ["make", "docker-build"], output="docker: command not found", returncode=127
        )
        orchestrator = orchestrate()

        report = orchestrator.run()

        assert report.error.stage == "build-image"
        assert isinstance(report.error.cause, ExternalToolError)
        assert report.reached is LifecycleState.DEPENDENCIES_INSTALLED
        assert orchestrator.seen == [
            "install-dependencies",
            "build-image",
            "uninstall-cert-manager",
            "uninstall-prometheus-operator",
        ]
        assert memcached.runner.invocations("make") == [
            ["make", "docker-build", "IMG=e2e-test-image:go"]
        ]
        assert not healthy_cluster.called("wait", "namespace")
        assert healthy_cluster.resources == set()

    def test_partial_dependency_install_is_undone(self, orchestrate, healthy_cluster):
        """Test that a bundle whose install failed midway is still uninstalled."""
        healthy_cluster.respond(
            "wait", output=ExternalToolError(["kubectl", "wait"], 1, "timed out waiting")
        )
        orchestrator = orchestrate()

        report = orchestrator.run()

        assert report.error.stage == "install-dependencies"
        assert report.reached is LifecycleState.NOT_STARTED
        assert orchestrator.seen == [
            "install-dependencies",
            "uninstall-cert-manager",
            "uninstall-prometheus-operator",
        ]
        assert healthy_cluster.resources == set()

    def test_controller_never_ready(self, orchestrate, healthy_cluster, fake_clock):
        """Test that a controller pod stuck pending fails after its timeout."""
        healthy_cluster.respond(
            *healthy_cluster.namespaced("get", "pods", "memcached"), output="Pending"
        )
        healthy_cluster.respond(
            *healthy_cluster.namespaced("get", "pods", "-l"),
            output="memcached-operator-controller-manager-abc\n",
        )

        report = orchestrate().run()

        assert report.error.stage == "verify"
        assert "controller pod to be running" in report.error.message
        assert sum(fake_clock.sleeps) == 5
        assert healthy_cluster.resources == set()

    def test_metrics_service_never_appears(self, orchestrate, healthy_cluster, fake_clock):
        """Test that a missing metrics service fails verification after its timeout."""
        healthy_cluster.respond(
            *healthy_cluster.namespaced("get", "Service"),
            output=ExternalToolError(["kubectl", "get"], 1, "not found"),
        )

        report = orchestrate().run()

        assert report.error.stage == "verify"
        assert "metrics service to exist" in report.error.message
        assert sum(fake_clock.sleeps) == 5
        assert healthy_cluster.resources == set()


class TestTeardownFailures:
    """Tests for failures during teardown."""

    def test_failures_recorded_and_remaining_steps_run(self, orchestrate, healthy_cluster):
        """Test that one failing teardown step does not stop the others."""
        healthy_cluster.respond(
            "delete", "-f", output=ExternalToolError(["kubectl", "delete"], 1, "connection refused")
        )

        report = orchestrate().run()

        assert report.error is None
        assert report.verified
        assert [failure.step for failure in report.teardown_failures] == [
            "uninstall-cert-manager",
            "uninstall-prometheus-operator",
        ]
        assert healthy_cluster.called("wait", "namespace")
        assert not report.succeeded

        with pytest.raises(LifecycleError) as exc_info:
            report.raise_for_failure()
        assert "uninstall-cert-manager, uninstall-prometheus-operator" in str(exc_info.value)

    def test_teardown_failure_does_not_replace_stage_error(self, orchestrate, healthy_cluster):
        """Test that the first stage error stays the reported error."""
        healthy_cluster.respond(
            *healthy_cluster.namespaced("logs", "curl"), output="< HTTP/2 500 \n"
        )
        healthy_cluster.respond(
            "delete", "clusterrolebinding", output=ExternalToolError(["kubectl"], 1, "boom")
        )

        report = orchestrate().run()

        assert report.error.stage == "verify"
        assert [failure.step for failure in report.teardown_failures] == ["metrics-cleanup"]
        with pytest.raises(LifecycleStageError):
            report.raise_for_failure()

    def test_namespace_already_gone(self, orchestrate, healthy_cluster):
        """Test that a namespace deleted before the wait is not a failure."""
        healthy_cluster.respond(
            "wait",
            "namespace",
            output=ExternalToolError(
                ["kubectl", "wait"],
                1,
                'Error from server (NotFound): namespaces "memcached-operator-system" not found',
            ),
        )

        report = orchestrate().run()

        assert report.succeeded

    def test_namespace_wait_timeout_recorded(self, orchestrate, healthy_cluster):
        """Test that a namespace stuck terminating is a teardown failure."""
        healthy_cluster.respond(
            "wait",
            "namespace",
            output=ExternalToolError(["kubectl", "wait"], 1, "timed out waiting for the condition"),
        )

        report = orchestrate().run()

        assert [failure.step for failure in report.teardown_failures] == [
            "wait-namespace-deleted"
        ]


class TestLifecycleReport:
    """Tests for LifecycleReport serialization."""

    def test_to_dict(self, orchestrate, healthy_cluster):
        """Test the serialized fields of a failed run."""
        healthy_cluster.respond(
            *healthy_cluster.namespaced("logs", "curl"), output="< HTTP/2 403 \n"
        )

        data = orchestrate().run().to_dict()

        assert data["sample"] == "memcached-operator"
        assert data["state"] == "TornDown"
        assert data["reached"] == "Deployed"
        assert data["verified"] is False
        assert data["failed_stage"] == "verify"
        assert "HTTP 200" in data["error"]
        assert data["teardown_failures"] == []
        assert [entry["state"] for entry in data["history"]][0] == "NotStarted"

    def test_write(self, tmp_path):
        """Test that the report is written as JSON with parent directories."""
        report = LifecycleReport("memcached-operator")
        path = report.write(tmp_path / "runs" / "20260101" / "lifecycle.json")

        data = json.loads(path.read_text())
        assert data["sample"] == "memcached-operator"
        assert data["error"] is None
        assert data["state"] == "NotStarted"
