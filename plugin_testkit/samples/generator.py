"""
Drive sample descriptors through the scaffolding tool's phases.
"""

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from plugin_testkit.command import CommandResult
from plugin_testkit.exceptions import ExternalToolError, SampleGenerationError
from plugin_testkit.samples.descriptor import Phase, SampleDescriptor

logger = logging.getLogger(__name__)


@dataclass
class GeneratorConfig:
    """
    Which scaffolding phases to run.

    Attributes:
        init: Run ``init`` (project skeleton and domain)
        api: Run ``create api`` (typed resource and controller skeleton)
        webhook: Run ``create webhook`` (admission webhook skeletons)
    """

    init: bool = True
    api: bool = True
    webhook: bool = True

    @property
    def phases(self) -> list[Phase]:
        """Enabled phases, in execution order."""
        enabled = {Phase.INIT: self.init, Phase.API: self.api, Phase.WEBHOOK: self.webhook}
        return [phase for phase in Phase if enabled[phase]]


def build_phase_args(descriptor: SampleDescriptor, phase: Phase) -> list[str]:
    """
    Build the full scaffolding command line for one phase.

    Args:
        descriptor: Sample to scaffold
        phase: Phase to build arguments for

    Returns:
        Command line, binary first
    """
    phase = Phase(phase)
    if phase is Phase.INIT:
        args = ["init", "--plugins", descriptor.plugin_selector, "--domain", descriptor.domain]
        if descriptor.repo:
            args += ["--repo", descriptor.repo]
    else:
        args = [
            "create",
            phase.value,
            "--plugins",
            descriptor.plugin_selector,
            "--group",
            descriptor.gvk.group,
            "--version",
            descriptor.gvk.version,
            "--kind",
            descriptor.gvk.kind,
        ]

    return [descriptor.binary, *args, *descriptor.extra_flags(phase)]


class ScaffoldGenerator:
    """
    Runs the enabled scaffolding phases for one or more samples.

    No phase is retried and nothing is cleaned up on failure; a partially
    scaffolded sample directory is left for the caller to inspect or remove.
    """

    def __init__(
        self,
        config: GeneratorConfig | None = None,
        on_phase: Callable[[SampleDescriptor, Phase], None] | None = None,
    ):
        """
        Initialize generator.

        Args:
            config: Phase toggles (all phases enabled by default)
            on_phase: Optional callback invoked before each phase runs
        """
        self.config = config or GeneratorConfig()
        self.on_phase = on_phase

    def run_phase(self, descriptor: SampleDescriptor, phase: Phase) -> CommandResult:
        """
        Run a single scaffolding phase in the sample's directory.

        Raises:
            SampleGenerationError: If the scaffolding tool fails
        """
        if self.on_phase is not None:
            self.on_phase(descriptor, phase)

        command = build_phase_args(descriptor, phase)
        logger.debug("Scaffolding %s: %s phase", descriptor.name, phase.value)
        try:
            return descriptor.runner.run(command, descriptor.name)
        except ExternalToolError as e:
            raise SampleGenerationError(descriptor.name, phase.value, e) from e

    def generate(self, descriptor: SampleDescriptor) -> list[CommandResult]:
        """
        Scaffold one sample.

        Args:
            descriptor: Sample to scaffold

        Returns:
            Results of the phases that ran, in order

        Raises:
            SampleGenerationError: On the first failing phase
        """
        logger.info("Scaffolding sample %s", descriptor.name)
        return [self.run_phase(descriptor, phase) for phase in self.config.phases]

    def generate_all(self, descriptors: Iterable[SampleDescriptor]) -> list[SampleDescriptor]:
        """
        Scaffold samples in order, stopping at the first failure.

        Returns:
            The descriptors that were scaffolded

        Raises:
            SampleGenerationError: From the first failing sample; later
                samples are not attempted
        """
        generated = []
        for descriptor in descriptors:
            self.generate(descriptor)
            generated.append(descriptor)
        return generated
