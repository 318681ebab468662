"""
Cluster access: the ClusterClient seam, its kubectl implementation and
version parsing.
"""

from plugin_testkit.kube.base import ClusterClient
from plugin_testkit.kube.kubectl import Kubectl
from plugin_testkit.kube.version import (
    ClusterVersion,
    VersionInfo,
    parse_cluster_version,
    select_by_server_version,
)

__all__ = [
    "ClusterClient",
    "ClusterVersion",
    "Kubectl",
    "VersionInfo",
    "parse_cluster_version",
    "select_by_server_version",
]
