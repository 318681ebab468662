"""
Built-in sample descriptors.
"""

from collections.abc import Callable

from plugin_testkit.command import CommandRunner
from plugin_testkit.samples.descriptor import GroupVersionKind, SampleDescriptor

OPERATOR_SDK = "operator-sdk"

MEMCACHED_SAMPLE = "memcached-operator"


def memcached_sample(runner: CommandRunner, binary: str = OPERATOR_SDK) -> SampleDescriptor:
    """The Go memcached operator exercised by the end-to-end run."""
    return SampleDescriptor(
        name=MEMCACHED_SAMPLE,
        domain="example.com",
        gvk=GroupVersionKind("cache", "v1alpha1", "Memcached"),
        binary=binary,
        api_flags=("--resource", "--controller"),
        webhook_flags=("--defaulting",),
        runner=runner,
    )


def go_simple_sample(runner: CommandRunner, binary: str = OPERATOR_SDK) -> SampleDescriptor:
    return SampleDescriptor(
        name="go-simple-sample",
        domain="simple.go.com",
        gvk=GroupVersionKind("simplego", "v1alpha1", "GoSample"),
        binary=binary,
        api_flags=("--resource", "--controller"),
        runner=runner,
    )


def helm_simple_sample(runner: CommandRunner, binary: str = OPERATOR_SDK) -> SampleDescriptor:
    return SampleDescriptor(
        name="helm-simple-sample",
        domain="simple.helm.com",
        gvk=GroupVersionKind("simplehelm", "v1alpha1", "HelmSample"),
        binary=binary,
        plugins=("helm",),
        runner=runner,
    )


def ansible_simple_sample(runner: CommandRunner, binary: str = OPERATOR_SDK) -> SampleDescriptor:
    return SampleDescriptor(
        name="ansible-simple-sample",
        domain="simple.ansible.com",
        gvk=GroupVersionKind("simpleansible", "v1alpha1", "AnsibleSample"),
        binary=binary,
        plugins=("ansible",),
        runner=runner,
    )


BUILTIN_SAMPLES: dict[str, Callable[..., SampleDescriptor]] = {
    MEMCACHED_SAMPLE: memcached_sample,
    "go-simple-sample": go_simple_sample,
    "helm-simple-sample": helm_simple_sample,
    "ansible-simple-sample": ansible_simple_sample,
}


def builtin_samples(runner: CommandRunner, binary: str = OPERATOR_SDK) -> list[SampleDescriptor]:
    """All built-in samples, in catalog order."""
    return [factory(runner, binary) for factory in BUILTIN_SAMPLES.values()]
