"""
Turn a freshly scaffolded Go operator project into a working sample.

The mutator applies an ordered list of named stages to the project:
typed API fields, the sample manifest, the controller's reconcile logic,
optional webhook validation, and packaging (go mod tidy, bundle,
annotation stripping, make fmt, binary cleanup). Every stage fails fast;
the first failure aborts the run with a MutationStepError naming the
stage. File mutations go through a MutationJournal so a re-run skips
what was already applied.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from jinja2 import TemplateError

from plugin_testkit.exceptions import MutationStepError, PluginTestkitError
from plugin_testkit.mutate.annotations import strip_bundle_annotations
from plugin_testkit.mutate.engine import MutationJournal, MutationSpec, apply_mutations
from plugin_testkit.samples.descriptor import SampleDescriptor
from plugin_testkit.util.files import remove_tree
from plugin_testkit.util.templates import TemplateLoader

logger = logging.getLogger(__name__)

DEFAULT_IMAGE = "e2e-test-image:go"

# Scaffold comment anchors (go/v3 layout, gofmt'd so indentation is tabs)
SPEC_ANCHOR = (
    "type {kind}Spec struct {{\n"
    "\t// INSERT ADDITIONAL SPEC FIELDS - desired state of cluster\n"
    '\t// Important: Run "make" to regenerate code after modifying this file'
)
STATUS_ANCHOR = (
    "type {kind}Status struct {{\n"
    "\t// INSERT ADDITIONAL STATUS FIELD - define observed state of cluster\n"
    '\t// Important: Run "make" to regenerate code after modifying this file'
)
STATUS_SUBRESOURCE_MARKER = "//+kubebuilder:subresource:status"
SAMPLE_PLACEHOLDER = "# TODO(user): Add fields here"

IMPORT_BLOCK = "import ("
FINALIZERS_RBAC_MARKER = "/finalizers,verbs=update"
LOG_IMPORT = '"sigs.k8s.io/controller-runtime/pkg/log"'
LOG_IMPORT_ALIASED = 'ctrllog "sigs.k8s.io/controller-runtime/pkg/log"'
LOGGER_DISCARDED = "_ = log.FromContext(ctx)"
LOGGER_BOUND = "log := ctrllog.FromContext(ctx)"
RECONCILE_PLACEHOLDER = "// TODO(user): your logic here"
RECONCILE_END = "return ctrl.Result{}, nil\n}"
WATCH_ANCHOR = (
    "return ctrl.NewControllerManagedBy(mgr).\n"
    "\t\tFor(&{alias}.{kind}{{}}).\n"
    "\t\tComplete(r)\n"
)

DEFAULTING_PLACEHOLDER = "// TODO(user): fill in your defaulting logic."
DEFAULTING_END = DEFAULTING_PLACEHOLDER + "\n}"

MAKEFILE_KUSTOMIZE_MANIFESTS = "operator-sdk generate kustomize manifests"
MAKEFILE_KUSTOMIZE_MANIFESTS_BATCH = MAKEFILE_KUSTOMIZE_MANIFESTS + " --interactive=false"

DEFAULT_KUSTOMIZATION_BLOCKS = (
    "#- ../webhook",
    "#- ../certmanager",
    "#- ../prometheus",
    "#- manager_webhook_patch.yaml",
    "#- webhookcainjection_patch.yaml",
    """#- name: CERTIFICATE_NAMESPACE # namespace of the certificate CR
#  objref:
#    kind: Certificate
#    group: cert-manager.io
#    version: v1
#    name: serving-cert # this name should match the one in certificate.yaml
#  fieldref:
#    fieldpath: metadata.namespace
#- name: CERTIFICATE_NAME
#  objref:
#    kind: Certificate
#    group: cert-manager.io
#    version: v1
#    name: serving-cert # this name should match the one in certificate.yaml
#- name: SERVICE_NAMESPACE # namespace of the service
#  objref:
#    kind: Service
#    version: v1
#    name: webhook-service
#  fieldref:
#    fieldpath: metadata.namespace
#- name: SERVICE_NAME
#  objref:
#    kind: Service
#    version: v1
#    name: webhook-service""",
)

MANIFESTS_KUSTOMIZATION_BLOCK = """#patchesJson6902:
#- target:
#    group: apps
#    version: v1
#    kind: Deployment
#    name: controller-manager
#    namespace: system
#  patch: |-
#    # Remove the manager container's "cert" volumeMount, since OLM will create and mount a set of certs.
#    # Update the indices in this path if adding or removing containers/volumeMounts in the manager's Deployment.
#    - op: remove
#      path: /spec/template/spec/containers/1/volumeMounts/0
#    # Remove the "cert" volume, since OLM will create and mount a set of certs.
#    # Update the indices in this path if adding or removing volumes in the manager's Deployment.
#    - op: remove
#      path: /spec/template/spec/volumes/0"""


@dataclass(frozen=True)
class OperandSpec:
    """The workload the sample controller deploys and scales."""

    name: str = "memcached"
    image: str = "memcached:1.4.36-alpine"
    command: tuple[str, ...] = ("memcached", "-m=64", "-o", "modern", "-v")
    port: int = 11211


@dataclass
class MutatorConfig:
    """
    Settings for one mutator run.

    Attributes:
        image: Operator image reference passed to ``make bundle``
        webhook: Insert validation/defaulting logic into the scaffolded
            webhook and enable the webhook kustomize sections
        bundle: Generate the bundle and strip its builder annotations
        tidy: Run ``go mod tidy`` before packaging
        format: Run ``make fmt`` at the end
        operand: Workload managed by the generated controller
        sample_size: Size written into the sample custom resource
        default_size: Size the defaulting webhook sets when unset
        requeue_after: Go duration expression for the delayed requeue
    """

    image: str = DEFAULT_IMAGE
    webhook: bool = False
    bundle: bool = True
    tidy: bool = True
    format: bool = True
    operand: OperandSpec = field(default_factory=OperandSpec)
    sample_size: int = 1
    default_size: int = 3
    requeue_after: str = "time.Minute"


@dataclass
class MutationStage:
    """
    One named step of the mutator pipeline.

    ``requires`` lists project-relative files that must exist before the
    stage runs.
    """

    name: str
    action: Callable[[], None]
    requires: tuple[Path, ...] = ()


class SampleMutator:
    """
    Applies the sample's mutation stages in a fixed order.

    Example:
        mutator = SampleMutator(descriptor, MutatorConfig(image="quay.io/me/op:v1"))
        mutator.mutate()
    """

    def __init__(
        self,
        descriptor: SampleDescriptor,
        config: MutatorConfig | None = None,
        templates: TemplateLoader | None = None,
        on_stage: Callable[[str], None] | None = None,
    ):
        """
        Initialize mutator.

        Args:
            descriptor: Scaffolded sample
            config: Mutator settings
            templates: Fragment loader (package defaults when omitted)
            on_stage: Optional callback invoked with each stage name before it runs
        """
        self.descriptor = descriptor
        self.config = config or MutatorConfig()
        self.templates = templates or TemplateLoader()
        self.on_stage = on_stage
        self.project_dir = descriptor.project_dir
        self.journal = MutationJournal(self.project_dir)

    # Paths inside the scaffolded project

    @property
    def types_file(self) -> Path:
        gvk = self.descriptor.gvk
        return self.project_dir / "api" / gvk.version / f"{gvk.kind_lower}_types.go"

    @property
    def webhook_file(self) -> Path:
        gvk = self.descriptor.gvk
        return self.project_dir / "api" / gvk.version / f"{gvk.kind_lower}_webhook.go"

    @property
    def controller_file(self) -> Path:
        return self.project_dir / "controllers" / f"{self.descriptor.gvk.kind_lower}_controller.go"

    @property
    def sample_file(self) -> Path:
        return self.project_dir / self.descriptor.sample_manifest

    def template_context(self) -> dict:
        """Variables available to every payload fragment."""
        gvk = self.descriptor.gvk
        domain = self.descriptor.domain
        validate_path = "/validate-{}-{}-{}-{}".format(
            gvk.group, domain.replace(".", "-"), gvk.version, gvk.kind_lower
        )
        return {
            "gvk": gvk,
            "domain": domain,
            "api_group": gvk.api_group(domain),
            "instance": gvk.kind[:1].lower() + gvk.kind[1:],
            "operand": self.config.operand,
            "requeue_after": self.config.requeue_after,
            "default_size": self.config.default_size,
            "validate_path": validate_path,
        }

    def render(self, name: str) -> str:
        return self.templates.render(f"go/{name}.go.j2", self.template_context())

    # Mutation catalogs

    def api_mutations(self) -> list[MutationSpec]:
        kind = self.descriptor.gvk.kind
        return [
            MutationSpec.insert(
                self.types_file, SPEC_ANCHOR.format(kind=kind), self.render("types_spec_field")
            ),
            MutationSpec.insert(
                self.types_file, STATUS_ANCHOR.format(kind=kind), self.render("types_status_field")
            ),
            # CSV marker listing the resources the CRD owns
            MutationSpec.insert(
                self.types_file, STATUS_SUBRESOURCE_MARKER, self.render("types_csv_marker")
            ),
        ]

    def sample_manifest_mutations(self) -> list[MutationSpec]:
        return [
            MutationSpec.replace(
                self.sample_file, SAMPLE_PLACEHOLDER, f"size: {self.config.sample_size}"
            )
        ]

    def controller_mutations(self) -> list[MutationSpec]:
        gvk = self.descriptor.gvk
        path = self.controller_file
        return [
            MutationSpec.insert(path, IMPORT_BLOCK, self.render("controller_imports")),
            MutationSpec.insert(path, FINALIZERS_RBAC_MARKER, self.render("controller_rbac")),
            MutationSpec.replace(path, LOG_IMPORT, LOG_IMPORT_ALIASED),
            MutationSpec.replace(path, LOGGER_DISCARDED, LOGGER_BOUND),
            MutationSpec.replace(path, RECONCILE_PLACEHOLDER, self.render("controller_reconcile")),
            MutationSpec.insert(path, RECONCILE_END, self.render("controller_helpers")),
            MutationSpec.replace(
                path,
                WATCH_ANCHOR.format(alias=gvk.import_alias, kind=gvk.kind),
                self.render("controller_watch"),
            ),
        ]

    def webhook_mutations(self) -> list[MutationSpec]:
        path = self.webhook_file
        default_kustomization = self.project_dir / "config" / "default" / "kustomization.yaml"
        manifests_kustomization = self.project_dir / "config" / "manifests" / "kustomization.yaml"

        specs = [
            MutationSpec.insert(path, DEFAULTING_END, self.render("webhook_validator")),
            MutationSpec.replace(path, DEFAULTING_PLACEHOLDER, self.render("webhook_default")),
            MutationSpec.insert(path, IMPORT_BLOCK, self.render("webhook_imports")),
        ]
        specs += [
            MutationSpec.uncomment(default_kustomization, block)
            for block in DEFAULT_KUSTOMIZATION_BLOCKS
        ]
        specs.append(MutationSpec.uncomment(manifests_kustomization, MANIFESTS_KUSTOMIZATION_BLOCK))
        return specs

    # Stage actions

    def _apply(self, specs: list[MutationSpec]) -> None:
        applied = apply_mutations(specs, self.journal)
        logger.debug("Applied %d of %d mutations", applied, len(specs))

    def _run(self, *command: str) -> None:
        self.descriptor.runner.run(list(command), self.descriptor.name)

    def implement_api(self) -> None:
        self._apply(self.api_mutations())

    def implement_sample_manifest(self) -> None:
        self._apply(self.sample_manifest_mutations())

    def implement_controller(self) -> None:
        self._apply(self.controller_mutations())

    def implement_webhook(self) -> None:
        self._apply(self.webhook_mutations())

    def tidy_modules(self) -> None:
        self._run("go", "mod", "tidy")

    def generate_bundle(self) -> None:
        # The manifests generator prompts for CSV fields unless told otherwise
        self._apply(
            [
                MutationSpec.replace(
                    self.project_dir / "Makefile",
                    MAKEFILE_KUSTOMIZE_MANIFESTS,
                    MAKEFILE_KUSTOMIZE_MANIFESTS_BATCH,
                )
            ]
        )
        self._run("make", "bundle", f"IMG={self.config.image}")

    def strip_annotations(self) -> None:
        removed = strip_bundle_annotations(self.project_dir, self.descriptor.name)
        logger.info("Removed %d builder annotation lines", removed)

    def format_sources(self) -> None:
        self._run("make", "fmt")

    def remove_binaries(self) -> None:
        remove_tree(self.project_dir / "bin")

    def stages(self) -> list[MutationStage]:
        """The enabled stages, in execution order."""
        gvk = self.descriptor.gvk
        types_file = Path("api") / gvk.version / f"{gvk.kind_lower}_types.go"
        controller_file = Path("controllers") / f"{gvk.kind_lower}_controller.go"
        webhook_file = Path("api") / gvk.version / f"{gvk.kind_lower}_webhook.go"

        stages = [
            MutationStage("api", self.implement_api, (types_file,)),
            MutationStage(
                "sample-manifest",
                self.implement_sample_manifest,
                (self.descriptor.sample_manifest,),
            ),
            MutationStage("controller", self.implement_controller, (controller_file,)),
        ]
        if self.config.webhook:
            stages.append(MutationStage("webhook", self.implement_webhook, (webhook_file,)))
        if self.config.tidy:
            stages.append(MutationStage("go-mod-tidy", self.tidy_modules))
        if self.config.bundle:
            stages.append(MutationStage("bundle", self.generate_bundle, (Path("Makefile"),)))
            stages.append(MutationStage("strip-annotations", self.strip_annotations))
        if self.config.format:
            stages.append(MutationStage("format", self.format_sources))
        stages.append(MutationStage("remove-binaries", self.remove_binaries))
        return stages

    def run_stage(self, stage: MutationStage) -> None:
        """
        Run one stage after checking its required files.

        Raises:
            MutationStepError: If a required file is missing or the stage fails
        """
        if self.on_stage is not None:
            self.on_stage(stage.name)

        logger.info("Mutating %s: %s", self.descriptor.name, stage.name)
        try:
            for required in stage.requires:
                if not (self.project_dir / required).is_file():
                    raise FileNotFoundError(f"Required file missing: {self.project_dir / required}")
            stage.action()
        except (PluginTestkitError, OSError, TemplateError) as e:
            raise MutationStepError(self.descriptor.name, stage.name, e) from e

    def mutate(self) -> list[str]:
        """
        Run every enabled stage in order.

        Returns:
            Names of the stages that ran

        Raises:
            MutationStepError: From the first failing stage; later stages
                do not run and earlier changes stay on disk
        """
        completed = []
        for stage in self.stages():
            self.run_stage(stage)
            completed.append(stage.name)
        return completed
