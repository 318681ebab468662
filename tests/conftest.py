"""
Pytest configuration and shared fixtures.
"""

import base64
import json
from pathlib import Path

import pytest
import yaml

from plugin_testkit.command import RecordingCommandRunner, RunnerConfig
from plugin_testkit.kube.base import ClusterClient
from plugin_testkit.samples.catalog import memcached_sample
from plugin_testkit.samples.mutator import (
    DEFAULT_KUSTOMIZATION_BLOCKS,
    MANIFESTS_KUSTOMIZATION_BLOCK,
)
from plugin_testkit.workspace import Workspace

MEMCACHED_NAMESPACE = "memcached-operator-system"
MEMCACHED_SERVICE_ACCOUNT = "memcached-operator-controller-manager"
CONTROLLER_POD = "memcached-operator-controller-manager-6c5b7c9f4d-x2x7k"

# Scaffold text as produced by the go/v3 plugin (gofmt'd, tab indented)

TYPES_GO = """package v1alpha1

import (
\tmetav1 "k8s.io/apimachinery/pkg/apis/meta/v1"
)

// EDIT THIS FILE!  THIS IS SCAFFOLDING FOR YOU TO OWN!
// NOTE: json tags are required.  Any new fields you add must have json tags for the fields to be serialized.

// MemcachedSpec defines the desired state of Memcached
type MemcachedSpec struct {
\t// INSERT ADDITIONAL SPEC FIELDS - desired state of cluster
\t// Important: Run "make" to regenerate code after modifying this file

\t// Foo is an example field of Memcached. Edit memcached_types.go to remove/update
\tFoo string `json:"foo,omitempty"`
}

// MemcachedStatus defines the observed state of Memcached
type MemcachedStatus struct {
\t// INSERT ADDITIONAL STATUS FIELD - define observed state of cluster
\t// Important: Run "make" to regenerate code after modifying this file
}

//+kubebuilder:object:root=true
//+kubebuilder:subresource:status

// Memcached is the Schema for the memcacheds API
type Memcached struct {
\tmetav1.TypeMeta   `json:",inline"`
\tmetav1.ObjectMeta `json:"metadata,omitempty"`

\tSpec   MemcachedSpec   `json:"spec,omitempty"`
\tStatus MemcachedStatus `json:"status,omitempty"`
}
"""

CONTROLLER_GO = """package controllers

import (
\t"context"

\t"k8s.io/apimachinery/pkg/runtime"
\tctrl "sigs.k8s.io/controller-runtime"
\t"sigs.k8s.io/controller-runtime/pkg/client"
\t"sigs.k8s.io/controller-runtime/pkg/log"

\tcachev1alpha1 "github.com/example/memcached-operator/api/v1alpha1"
)

// MemcachedReconciler reconciles a Memcached object
type MemcachedReconciler struct {
\tclient.Client
\tScheme *runtime.Scheme
}

//+kubebuilder:rbac:groups=cache.example.com,resources=memcacheds,verbs=get;list;watch;create;update;patch;delete
//+kubebuilder:rbac:groups=cache.example.com,resources=memcacheds/status,verbs=get;update;patch
//+kubebuilder:rbac:groups=cache.example.com,resources=memcacheds/finalizers,verbs=update

// Reconcile is part of the main kubernetes reconciliation loop which aims to
// move the current state of the cluster closer to the desired state.
func (r *MemcachedReconciler) Reconcile(ctx context.Context, req ctrl.Request) (ctrl.Result, error) {
\t_ = log.FromContext(ctx)

\t// TODO(user): your logic here

\treturn ctrl.Result{}, nil
}

// SetupWithManager sets up the controller with the Manager.
func (r *MemcachedReconciler) SetupWithManager(mgr ctrl.Manager) error {
\treturn ctrl.NewControllerManagedBy(mgr).
\t\tFor(&cachev1alpha1.Memcached{}).
\t\tComplete(r)
}
"""

WEBHOOK_GO = """package v1alpha1

import (
\tctrl "sigs.k8s.io/controller-runtime"
\tlogf "sigs.k8s.io/controller-runtime/pkg/log"
\t"sigs.k8s.io/controller-runtime/pkg/webhook"
)

// log is for logging in this package.
var memcachedlog = logf.Log.WithName("memcached-resource")

func (r *Memcached) SetupWebhookWithManager(mgr ctrl.Manager) error {
\treturn ctrl.NewWebhookManagedBy(mgr).
\t\tFor(r).
\t\tComplete()
}

//+kubebuilder:webhook:path=/mutate-cache-example-com-v1alpha1-memcached,mutating=true,failurePolicy=fail,sideEffects=None,groups=cache.example.com,resources=memcacheds,verbs=create;update,versions=v1alpha1,name=mmemcached.kb.io,admissionReviewVersions=v1

var _ webhook.Defaulter = &Memcached{}

// Default implements webhook.Defaulter so a webhook will be registered for the type
func (r *Memcached) Default() {
\tmemcachedlog.Info("default", "name", r.Name)

\t// TODO(user): fill in your defaulting logic.
}
"""

SAMPLE_YAML = """apiVersion: cache.example.com/v1alpha1
kind: Memcached
metadata:
  name: memcached-sample
spec:
  # TODO(user): Add fields here
"""

DEFAULT_KUSTOMIZATION = "\n".join(
    [
        "namespace: memcached-operator-system",
        "namePrefix: memcached-operator-",
        "",
        "bases:",
        "- ../crd",
        "- ../rbac",
        "- ../manager",
        "# [WEBHOOK] To enable webhook, uncomment all the sections with [WEBHOOK] prefix",
        DEFAULT_KUSTOMIZATION_BLOCKS[0],
        "# [CERTMANAGER] To enable cert-manager, uncomment all sections with 'CERTMANAGER'.",
        DEFAULT_KUSTOMIZATION_BLOCKS[1],
        "# [PROMETHEUS] To enable prometheus monitor, uncomment all sections with 'PROMETHEUS'.",
        DEFAULT_KUSTOMIZATION_BLOCKS[2],
        "",
        "patchesStrategicMerge:",
        "- manager_auth_proxy_patch.yaml",
        "",
        DEFAULT_KUSTOMIZATION_BLOCKS[3],
        "",
        DEFAULT_KUSTOMIZATION_BLOCKS[4],
        "",
        "vars:",
        DEFAULT_KUSTOMIZATION_BLOCKS[5],
        "",
    ]
)

MANIFESTS_KUSTOMIZATION = (
    "resources:\n- ../default\n- ../samples\n- ../scorecard\n\n"
    + MANIFESTS_KUSTOMIZATION_BLOCK
    + "\n"
)

MAKEFILE = """IMG ?= controller:latest

.PHONY: bundle
bundle: manifests kustomize
\toperator-sdk generate kustomize manifests -q
\tcd config/manager && $(KUSTOMIZE) edit set image controller=$(IMG)
\t$(KUSTOMIZE) build config/manifests | operator-sdk generate bundle $(BUNDLE_GEN_FLAGS)
\toperator-sdk bundle validate ./bundle
"""

BUNDLE_ANNOTATIONS = """annotations:
  # Core bundle annotations.
  operators.operatorframework.io.bundle.mediatype.v1: registry+v1
  operators.operatorframework.io.bundle.manifests.v1: manifests/
  operators.operatorframework.io.bundle.package.v1: memcached-operator
  operators.operatorframework.io.bundle.channels.v1: alpha
  operators.operatorframework.io.metrics.builder: operator-sdk-v1.13.0
  operators.operatorframework.io.metrics.mediatype.v1: metrics+v1
  operators.operatorframework.io.metrics.project_layout: go.kubebuilder.io/v3
"""

BUNDLE_DOCKERFILE = """FROM scratch

LABEL operators.operatorframework.io.bundle.mediatype.v1=registry+v1
LABEL operators.operatorframework.io.bundle.package.v1=memcached-operator
LABEL operators.operatorframework.io.metrics.builder=operator-sdk-v1.13.0
LABEL operators.operatorframework.io.metrics.mediatype.v1=metrics+v1
LABEL operators.operatorframework.io.metrics.project_layout=go.kubebuilder.io/v3

COPY bundle/manifests /manifests/
"""

CSV_YAML = """apiVersion: operators.coreos.com/v1alpha1
kind: ClusterServiceVersion
metadata:
  annotations:
    alm-examples: '[]'
    capabilities: Basic Install
    operators.operatorframework.io/builder: operator-sdk-v1.13.0
    operators.operatorframework.io/project_layout: go.kubebuilder.io/v3
  name: memcached-operator.v0.0.1
spec:
  displayName: memcached-operator
"""


def write_memcached_scaffold(project_dir: Path, bundle: bool = True) -> Path:
    """Write the files a go/v3 scaffold of the memcached sample contains."""
    files = {
        "api/v1alpha1/memcached_types.go": TYPES_GO,
        "api/v1alpha1/memcached_webhook.go": WEBHOOK_GO,
        "controllers/memcached_controller.go": CONTROLLER_GO,
        "config/samples/cache_v1alpha1_memcached.yaml": SAMPLE_YAML,
        "config/default/kustomization.yaml": DEFAULT_KUSTOMIZATION,
        "config/manifests/kustomization.yaml": MANIFESTS_KUSTOMIZATION,
        "Makefile": MAKEFILE,
        "bin/controller-gen": "#!/bin/sh\n",
    }
    if bundle:
        files.update(
            {
                "bundle/metadata/annotations.yaml": BUNDLE_ANNOTATIONS,
                "bundle.Dockerfile": BUNDLE_DOCKERFILE,
                "bundle/manifests/memcached-operator.clusterserviceversion.yaml": CSV_YAML,
                "config/manifests/bases/memcached-operator.clusterserviceversion.yaml": CSV_YAML,
            }
        )

    for relative, content in files.items():
        path = project_dir / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    return project_dir


def version_json(server_major="1", server_minor="21", client_minor="21") -> str:
    """Output of ``kubectl version -o json``."""
    return json.dumps(
        {
            "clientVersion": {
                "major": "1",
                "minor": client_minor,
                "gitVersion": f"v1.{client_minor}.1",
            },
            "serverVersion": {
                "major": server_major,
                "minor": server_minor,
                "gitVersion": f"v{server_major}.{server_minor.rstrip('+')}.1",
            },
        }
    )


class FakeClusterClient(ClusterClient):
    """
    Scripted ClusterClient that records subcommands and tracks what exists.

    Responses are matched on argument prefixes (the ``-n <ns>`` prefix of
    namespaced commands included); later registrations win. A response
    may be a string, an exception to raise, or a callable taking the
    argument tuple.
    """

    def __init__(
        self,
        namespace: str = MEMCACHED_NAMESPACE,
        service_account: str = MEMCACHED_SERVICE_ACCOUNT,
    ):
        super().__init__(namespace=namespace, service_account=service_account)
        self.calls: list[tuple[str, ...]] = []
        self.resources: set[tuple[str, str]] = set()
        self._responses: list[tuple[tuple[str, ...], object]] = []

    def respond(self, *prefix: str, output="") -> None:
        self._responses.append((tuple(prefix), output))

    def namespaced(self, *args: str) -> tuple[str, ...]:
        return ("-n", self.namespace, *args)

    def called(self, *prefix: str) -> bool:
        return any(call[: len(prefix)] == prefix for call in self.calls)

    def command(self, *args: str) -> str:
        self.calls.append(args)

        output = ""
        for prefix, response in reversed(self._responses):
            if args[: len(prefix)] == prefix:
                if isinstance(response, Exception):
                    raise response
                output = response(args) if callable(response) else response
                break

        self._track(list(args))
        return output

    def _track(self, args: list[str]) -> None:
        if args[:1] == ["-n"]:
            args = args[2:]
        if not args:
            return

        verb, rest = args[0], args[1:]
        if verb == "create" and rest[:1] == ["clusterrolebinding"]:
            self.resources.add(("clusterrolebinding", rest[1]))
        elif verb == "run":
            self.resources.add(("pod", rest[0]))
        elif verb == "apply" and rest[:1] == ["-f"] and rest[1].startswith("https://"):
            self.resources.add(("bundle", rest[1]))
        elif verb == "delete" and rest[:1] == ["-f"]:
            self.resources.discard(("bundle", rest[1]))
        elif verb == "delete" and len(rest) >= 2:
            self.resources.discard((rest[0], rest[1]))


class FakeClock:
    """Monotonic clock that only moves when sleep() is called."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def temp_workspace(tmp_path):
    """Create a temporary workspace for testing."""
    workspace = Workspace(tmp_path / "workspace")
    workspace.initialize()
    return workspace


@pytest.fixture
def recording_runner(tmp_path):
    """Recording runner rooted at a temporary sample directory."""
    return RecordingCommandRunner(RunnerConfig(work_dir=tmp_path / "samples"))


@pytest.fixture
def memcached(recording_runner):
    """The memcached sample descriptor, bound to the recording runner."""
    return memcached_sample(recording_runner)


@pytest.fixture
def memcached_project(memcached):
    """A scaffolded (not yet mutated) memcached project."""
    return write_memcached_scaffold(memcached.project_dir)


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def healthy_cluster():
    """Fake cluster on which every verification step succeeds."""
    client = FakeClusterClient()
    client.respond("version", "-o", "json", output=version_json())
    client.respond("config", "current-context", output="kind-kind\n")
    client.respond(
        *client.namespaced("get", "pods", "-l"),
        output=f"{CONTROLLER_POD}\n",
    )
    client.respond(*client.namespaced("get", "pods", CONTROLLER_POD), output="Running")
    client.respond(
        *client.namespaced("get", "secrets"),
        output=base64.b64encode(b"sa-token-123").decode(),
    )
    client.respond(*client.namespaced("get", "pods", "curl"), output="Succeeded")
    client.respond(
        *client.namespaced("logs", "curl"),
        output="* Connected\n< HTTP/2 200 \n< content-type: text/plain\n\n# HELP up\n",
    )
    return client


def write_config(workspace: Workspace, **overrides) -> None:
    """Rewrite a workspace's configuration with top-level overrides."""
    config = yaml.safe_load(workspace.config_file.read_text())
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(config.get(key), dict):
            config[key].update(value)
        else:
            config[key] = value
    workspace.config_file.write_text(yaml.dump(config, sort_keys=False))
    workspace._config_cache = None
