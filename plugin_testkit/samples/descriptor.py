"""
Sample descriptors: what one scaffold target looks like.
"""

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from plugin_testkit.command import CommandRunner, LocalCommandRunner
from plugin_testkit.exceptions import InvalidSampleError

# Names double as directory names and Kubernetes name prefixes (RFC 1123 label)
_NAME_PATTERN = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")
_MAX_NAME_LENGTH = 63


class Phase(str, Enum):
    """Scaffolding phases, in execution order."""

    INIT = "init"
    API = "api"
    WEBHOOK = "webhook"


@dataclass(frozen=True)
class GroupVersionKind:
    """API group, version and kind of the sample's custom resource."""

    group: str
    version: str
    kind: str

    @property
    def kind_lower(self) -> str:
        return self.kind.lower()

    @property
    def plural(self) -> str:
        return f"{self.kind_lower}s"

    @property
    def import_alias(self) -> str:
        """Go import alias the scaffolder uses for the API package (e.g. cachev1alpha1)."""
        return f"{self.group}{self.version}"

    def api_group(self, domain: str) -> str:
        """Fully qualified API group (e.g. cache.example.com)."""
        return f"{self.group}.{domain}" if domain else self.group

    def __str__(self) -> str:
        return f"{self.group}/{self.version}, Kind={self.kind}"


@dataclass(frozen=True)
class SampleDescriptor:
    """
    Immutable description of one scaffold target.

    Two descriptors sharing a name and work directory will overwrite each
    other's output; keeping names unique within a batch is the caller's
    responsibility.

    Attributes:
        name: Sample name; used as the project sub-directory and as the
            prefix of the operator's Kubernetes resources
        domain: Domain passed to ``init``
        gvk: Group/version/kind passed to ``create api``/``create webhook``
        binary: Scaffolding tool (e.g. kubebuilder, operator-sdk)
        plugins: Plugin chain, joined with commas for ``--plugins``
        repo: Optional Go module path passed to ``init --repo``
        init_flags: Extra flags for the init phase
        api_flags: Extra flags for the create-api phase
        webhook_flags: Extra flags for the create-webhook phase
        runner: Runner that executes the scaffolding tool and build commands
    """

    name: str = "generic-sample"
    domain: str = "example.com"
    gvk: GroupVersionKind = GroupVersionKind("sample", "v1", "Generic")
    binary: str = "kubebuilder"
    plugins: tuple[str, ...] = ("go/v3",)
    repo: str = ""
    init_flags: tuple[str, ...] = ()
    api_flags: tuple[str, ...] = ()
    webhook_flags: tuple[str, ...] = ()
    runner: CommandRunner = field(default_factory=LocalCommandRunner, compare=False, repr=False)

    def __post_init__(self):
        if not self.name or len(self.name) > _MAX_NAME_LENGTH:
            raise InvalidSampleError(self.name, f"name must be 1-{_MAX_NAME_LENGTH} characters")
        if not _NAME_PATTERN.match(self.name):
            raise InvalidSampleError(self.name, "name is not a valid directory/resource prefix")
        if not self.plugins:
            raise InvalidSampleError(self.name, "at least one plugin is required")

        # Accept any sequence but store tuples so the descriptor stays immutable
        for attr in ("plugins", "init_flags", "api_flags", "webhook_flags"):
            object.__setattr__(self, attr, tuple(getattr(self, attr)))

    @property
    def per_phase_flags(self) -> dict[Phase, tuple[str, ...]]:
        return {
            Phase.INIT: self.init_flags,
            Phase.API: self.api_flags,
            Phase.WEBHOOK: self.webhook_flags,
        }

    def extra_flags(self, phase: Phase) -> tuple[str, ...]:
        return self.per_phase_flags[Phase(phase)]

    @property
    def plugin_selector(self) -> str:
        return ",".join(self.plugins).rstrip(",")

    @property
    def project_dir(self) -> Path:
        """Directory the scaffolder writes into (``<work_dir>/<name>``)."""
        return self.runner.resolve_dir(self.name)

    # Names of the resources the scaffolded default kustomization creates

    @property
    def namespace(self) -> str:
        return f"{self.name}-system"

    @property
    def service_account(self) -> str:
        return f"{self.name}-controller-manager"

    @property
    def metrics_service(self) -> str:
        return f"{self.name}-controller-manager-metrics-service"

    @property
    def metrics_reader_role(self) -> str:
        return f"{self.name}-metrics-reader"

    @property
    def sample_manifest(self) -> Path:
        """Relative path of the scaffolded custom-resource sample."""
        filename = f"{self.gvk.group}_{self.gvk.version}_{self.gvk.kind_lower}.yaml"
        return Path("config") / "samples" / filename

    @classmethod
    def from_config(
        cls, data: Mapping[str, Any], runner: CommandRunner | None = None, **defaults: Any
    ) -> "SampleDescriptor":
        """
        Build a descriptor from a configuration mapping.

        Args:
            data: One entry of the ``samples`` list in plugin-testkit.yaml
            runner: Runner for the sample
            **defaults: Fallbacks for keys missing from ``data`` (e.g. binary)

        Returns:
            SampleDescriptor
        """
        merged = {**defaults, **data}
        gvk = GroupVersionKind(merged["group"], merged["version"], merged["kind"])
        flags: Mapping[str, Sequence[str]] = merged.get("extra_flags", {})

        kwargs: dict[str, Any] = {
            "name": merged["name"],
            "gvk": gvk,
            "init_flags": tuple(flags.get("init", ())),
            "api_flags": tuple(flags.get("api", ())),
            "webhook_flags": tuple(flags.get("webhook", ())),
        }
        for key in ("domain", "binary", "repo"):
            if key in merged:
                kwargs[key] = merged[key]
        if "plugins" in merged:
            kwargs["plugins"] = tuple(merged["plugins"])
        if runner is not None:
            kwargs["runner"] = runner

        return cls(**kwargs)
