"""
Sample descriptors, scaffold generation and sample mutation.
"""

from plugin_testkit.samples.descriptor import GroupVersionKind, Phase, SampleDescriptor
from plugin_testkit.samples.generator import GeneratorConfig, ScaffoldGenerator
from plugin_testkit.samples.mutator import MutatorConfig, OperandSpec, SampleMutator

__all__ = [
    "GeneratorConfig",
    "GroupVersionKind",
    "MutatorConfig",
    "OperandSpec",
    "Phase",
    "SampleDescriptor",
    "SampleMutator",
    "ScaffoldGenerator",
]
