"""
Kubernetes client/server version parsing and the version threshold policy.
"""

import json
import re
from dataclasses import dataclass

from plugin_testkit.exceptions import VersionParseError

# Bundles built for CRD apiextensions.k8s.io/v1 need Kubernetes 1.16+
DEFAULT_THRESHOLD = (1, 16)

_LEADING_DIGITS = re.compile(r"^(\d+)")


def _parse_number(value: str, field_name: str) -> int:
    # Managed clusters report minors such as "27+"
    match = _LEADING_DIGITS.match(str(value).strip())
    if not match:
        raise VersionParseError(f"{field_name} is not numeric: {value!r}")
    return int(match.group(1))


@dataclass(frozen=True)
class VersionInfo:
    """One side (client or server) of ``kubectl version -o json``."""

    major: str
    minor: str
    git_version: str

    @property
    def major_number(self) -> int:
        return _parse_number(self.major, "major")

    @property
    def minor_number(self) -> int:
        return _parse_number(self.minor, "minor")

    @classmethod
    def from_dict(cls, data: dict, side: str) -> "VersionInfo":
        if not isinstance(data, dict):
            raise VersionParseError(f"missing {side}")
        missing = [key for key in ("major", "minor", "gitVersion") if key not in data]
        if missing:
            raise VersionParseError(f"{side} is missing {', '.join(missing)}")
        return cls(
            major=str(data["major"]),
            minor=str(data["minor"]),
            git_version=str(data["gitVersion"]),
        )


@dataclass(frozen=True)
class ClusterVersion:
    """Client and server versions reported by the cluster control binary."""

    client: VersionInfo
    server: VersionInfo


def parse_cluster_version(output: str) -> ClusterVersion:
    """
    Parse the structured output of ``kubectl version -o json``.

    Args:
        output: Raw command output

    Returns:
        ClusterVersion

    Raises:
        VersionParseError: If the output is not JSON or lacks either side
    """
    # Output is combined with stderr, which may carry version-skew warnings
    start, end = output.find("{"), output.rfind("}")
    if start == -1 or end < start:
        raise VersionParseError(f"no JSON object in output: {output.strip()[:200]!r}")

    try:
        data = json.loads(output[start : end + 1])
    except json.JSONDecodeError as e:
        raise VersionParseError(f"invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise VersionParseError(f"expected a JSON object, got {type(data).__name__}")

    version = ClusterVersion(
        client=VersionInfo.from_dict(data.get("clientVersion"), "clientVersion"),
        server=VersionInfo.from_dict(data.get("serverVersion"), "serverVersion"),
    )
    # Fail now rather than at selection time
    _parse_number(version.server.major, "serverVersion.major")
    _parse_number(version.server.minor, "serverVersion.minor")
    return version


def is_below_threshold(
    server: VersionInfo, threshold: tuple[int, int] = DEFAULT_THRESHOLD
) -> bool:
    """
    Whether the server predates the threshold version.

    With the default threshold this is ``major <= 1 and minor < 16``; a
    major above the threshold major is never legacy.
    """
    threshold_major, threshold_minor = threshold
    return server.major_number <= threshold_major and server.minor_number < threshold_minor


def select_by_server_version(
    version: ClusterVersion,
    legacy: str,
    current: str,
    threshold: tuple[int, int] = DEFAULT_THRESHOLD,
) -> str:
    """
    Pick the legacy or current value for the cluster's server version.

    Args:
        version: Parsed cluster version
        legacy: Value used below the threshold
        current: Value used at or above the threshold
        threshold: (major, minor) threshold

    Returns:
        ``legacy`` or ``current``
    """
    return legacy if is_below_threshold(version.server, threshold) else current
