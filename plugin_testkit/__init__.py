"""
plugin-testkit: scaffold, patch and exercise sample Kubernetes operators.

Drives an external scaffolding tool (kubebuilder / operator-sdk) to produce
sample operator projects, injects sample business logic into the generated
sources by anchor-based text mutation, then runs the resulting operator
locally and on a live cluster before tearing everything down.

Main features:
- Batch scaffolding from sample descriptors (init / create api / create webhook)
- Fail-fast, journaled source mutation with named stages
- Cluster lifecycle orchestration with guaranteed teardown
- Metrics endpoint verification through a short-lived probe pod
"""

__version__ = "0.1.0"
