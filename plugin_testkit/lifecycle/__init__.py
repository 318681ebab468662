"""
Cluster lifecycle: dependency bundles, deployment, verification and
guaranteed teardown for one sample.
"""

from plugin_testkit.lifecycle.local import LocalRunCheck
from plugin_testkit.lifecycle.orchestrator import (
    LifecycleConfig,
    LifecycleOrchestrator,
    LifecycleReport,
)
from plugin_testkit.lifecycle.state import LifecycleState, LifecycleTracker

__all__ = [
    "LifecycleConfig",
    "LifecycleOrchestrator",
    "LifecycleReport",
    "LifecycleState",
    "LifecycleTracker",
    "LocalRunCheck",
]
