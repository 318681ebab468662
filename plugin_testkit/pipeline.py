"""
End-to-end wiring: workspace configuration -> generate -> mutate ->
local run -> cluster lifecycle.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from plugin_testkit.command import (
    CommandRunner,
    LocalCommandRunner,
    RecordingCommandRunner,
    RunnerConfig,
)
from plugin_testkit.exceptions import SampleNotFoundError
from plugin_testkit.kube import ClusterClient, Kubectl
from plugin_testkit.lifecycle import (
    LifecycleConfig,
    LifecycleOrchestrator,
    LifecycleReport,
    LocalRunCheck,
)
from plugin_testkit.lifecycle.dependencies import DependencyVersions
from plugin_testkit.samples import (
    GeneratorConfig,
    MutatorConfig,
    SampleDescriptor,
    SampleMutator,
    ScaffoldGenerator,
)
from plugin_testkit.samples.catalog import BUILTIN_SAMPLES, builtin_samples, memcached_sample
from plugin_testkit.util.files import remove_tree
from plugin_testkit.util.progress import operation_status
from plugin_testkit.util.templates import TemplateLoader
from plugin_testkit.workspace import Workspace

logger = logging.getLogger(__name__)

LIFECYCLE_REPORT = "lifecycle.json"


def make_runner(work_dir: Path, dry_run: bool = False) -> CommandRunner:
    """Runner rooted at the workspace's sample directory."""
    config = RunnerConfig(work_dir=Path(work_dir).resolve())
    if dry_run:
        return RecordingCommandRunner(config, create_dirs=False)
    return LocalCommandRunner(config)


def configured_samples(settings: dict[str, Any], runner: CommandRunner) -> list[SampleDescriptor]:
    """Descriptors for the ``samples`` list of the configuration."""
    scaffold = settings.get("scaffold", {})
    defaults = {}
    if "binary" in scaffold:
        defaults["binary"] = scaffold["binary"]
    if "plugins" in scaffold:
        defaults["plugins"] = scaffold["plugins"]

    return [
        SampleDescriptor.from_config(entry, runner=runner, **defaults)
        for entry in settings.get("samples", [])
    ]


def resolve_samples(
    settings: dict[str, Any], runner: CommandRunner, name: str | None = None
) -> list[SampleDescriptor]:
    """
    Samples to generate.

    Without a name this is the configured list (or every built-in sample
    when none is configured). A name picks one sample, configured samples
    shadowing built-in ones.

    Raises:
        SampleNotFoundError: If ``name`` matches no sample
    """
    binary = settings.get("scaffold", {}).get("binary", "operator-sdk")
    configured = configured_samples(settings, runner)

    if name is None:
        return configured or builtin_samples(runner, binary)

    for descriptor in configured:
        if descriptor.name == name:
            return [descriptor]
    if name in BUILTIN_SAMPLES:
        return [BUILTIN_SAMPLES[name](runner, binary)]

    configured_names = [descriptor.name for descriptor in configured]
    available = configured_names + [n for n in BUILTIN_SAMPLES if n not in configured_names]
    raise SampleNotFoundError(name, available)


def lifecycle_config(settings: dict[str, Any]) -> LifecycleConfig:
    """Build the cluster run settings from workspace configuration."""
    cluster = settings.get("cluster", {})
    timeouts = settings.get("timeouts", {})
    defaults = LifecycleConfig()

    return LifecycleConfig(
        image=settings.get("image", defaults.image),
        kind_cluster=cluster.get("kind_cluster", defaults.kind_cluster),
        token_source=cluster.get("token_source", defaults.token_source),
        poll_interval=float(timeouts.get("poll_interval", defaults.poll_interval)),
        controller_timeout=float(timeouts.get("controller", defaults.controller_timeout)),
        service_timeout=float(timeouts.get("service", defaults.service_timeout)),
        custom_resource_timeout=float(
            timeouts.get("custom_resource", defaults.custom_resource_timeout)
        ),
        probe_pod_timeout=float(timeouts.get("probe_pod", defaults.probe_pod_timeout)),
        probe_logs_timeout=float(timeouts.get("probe_logs", defaults.probe_logs_timeout)),
        cert_manager_wait=timeouts.get("cert_manager_wait", defaults.cert_manager_wait),
        namespace_delete_wait=timeouts.get(
            "namespace_delete_wait", defaults.namespace_delete_wait
        ),
        versions=DependencyVersions.from_config(settings.get("dependencies")),
    )


def cluster_client(
    settings: dict[str, Any],
    descriptor: SampleDescriptor | None = None,
    runner: CommandRunner | None = None,
) -> Kubectl:
    """kubectl client, scoped to the sample's operator namespace when given."""
    binary = settings.get("cluster", {}).get("kubectl", "kubectl")
    if descriptor is None:
        return Kubectl(runner=runner, binary=binary)
    return Kubectl(
        runner=runner,
        namespace=descriptor.namespace,
        service_account=descriptor.service_account,
        binary=binary,
    )


@dataclass
class EndToEndResult:
    """What an end-to-end run produced."""

    sample: SampleDescriptor
    report: LifecycleReport | None = None
    report_path: Path | None = None
    local_checked: bool = False


class EndToEndRun:
    """
    Full run of the memcached sample inside a workspace.

    Generates the sample from scratch (init and api phases), mutates it,
    optionally checks it locally and on the cluster, writes
    ``runs/<timestamp>/lifecycle.json`` and removes the sample directory
    unless asked to keep it.
    """

    def __init__(
        self,
        workspace: Workspace,
        runner: CommandRunner | None = None,
        client: ClusterClient | None = None,
        on_stage: Callable[[str], None] | None = None,
    ):
        self.workspace = workspace
        self.settings = workspace.settings()
        self.runner = runner or make_runner(workspace.samples_dir)
        binary = self.settings.get("scaffold", {}).get("binary", "operator-sdk")
        self.descriptor = memcached_sample(self.runner, binary)
        self.client = client or cluster_client(self.settings, self.descriptor)
        self.on_stage = on_stage

    def generate(self) -> None:
        remove_tree(self.descriptor.project_dir)
        ScaffoldGenerator(GeneratorConfig(webhook=False)).generate(self.descriptor)

    def mutate(self) -> list[str]:
        config = MutatorConfig(image=self.settings.get("image", MutatorConfig().image))
        templates = TemplateLoader(self.workspace.root)
        return SampleMutator(self.descriptor, config, templates).mutate()

    def check_locally(self) -> None:
        settle = float(self.settings.get("timeouts", {}).get("local_run_settle", 5))
        LocalRunCheck(self.descriptor, settle_seconds=settle).run()

    def run_on_cluster(self) -> LifecycleReport:
        orchestrator = LifecycleOrchestrator(
            self.descriptor,
            self.client,
            lifecycle_config(self.settings),
            on_stage=self.on_stage,
        )
        return orchestrator.run()

    def run(
        self, skip_local: bool = False, skip_cluster: bool = False, keep: bool = False
    ) -> EndToEndResult:
        """
        Run every enabled phase.

        Returns:
            EndToEndResult; a failed cluster run is reported in
            ``result.report`` rather than raised

        Raises:
            SampleGenerationError, MutationStepError, ExternalToolError:
                If generation, mutation or the local check fails
        """
        result = EndToEndResult(self.descriptor)
        try:
            with operation_status(f"Scaffolding {self.descriptor.name}"):
                self.generate()
            with operation_status(f"Implementing {self.descriptor.name}"):
                self.mutate()

            if not skip_local:
                with operation_status("Running operator locally"):
                    self.check_locally()
                result.local_checked = True

            if not skip_cluster:
                result.report = self.run_on_cluster()
                run_dir = self.workspace.new_run_dir()
                result.report_path = result.report.write(run_dir / LIFECYCLE_REPORT)
                logger.info("Wrote lifecycle report to %s", result.report_path)
        finally:
            if not keep:
                remove_tree(self.descriptor.project_dir)

        return result
