"""
Removal of builder/provenance annotations from generated bundle files.

Bundle generation stamps the producing tool and its version into the
bundle metadata and the ClusterServiceVersion. Those lines differ between
tool releases, so they are deleted (whole lines, one regular expression per
annotation key) to keep generated samples comparable.
"""

import re
from collections.abc import Iterable
from pathlib import Path

# Keys stamped into bundle/metadata/annotations.yaml and bundle.Dockerfile
BUNDLE_METADATA_ANNOTATIONS = (
    "operators.operatorframework.io.metrics.mediatype.v1",
    "operators.operatorframework.io.metrics.builder",
    "operators.operatorframework.io.metrics.project_layout",
)

# Keys stamped into ClusterServiceVersion metadata.annotations
BUNDLE_OBJECT_ANNOTATIONS = (
    "operators.operatorframework.io/builder",
    "operators.operatorframework.io/project_layout",
)


def annotation_line_patterns(keys: Iterable[str]) -> list[re.Pattern]:
    """One full-line pattern per annotation key."""
    return [re.compile(".+" + re.escape(key) + ".+\n") for key in keys]


def remove_annotation_lines(
    keys: Iterable[str], files: Iterable[str | Path]
) -> dict[Path, int]:
    """
    Delete every line mentioning one of ``keys`` from each file.

    Args:
        keys: Annotation names
        files: Files to rewrite (all must exist)

    Returns:
        Mapping of file to number of lines removed

    Raises:
        OSError: If a file cannot be read or written
    """
    patterns = annotation_line_patterns(keys)
    removed: dict[Path, int] = {}

    for file_path in files:
        path = Path(file_path)
        content = path.read_bytes().decode("utf-8")
        count = 0
        for pattern in patterns:
            content, n = pattern.subn("", content)
            count += n

        mode = path.stat().st_mode
        path.write_bytes(content.encode("utf-8"))
        path.chmod(mode)
        removed[path] = count

    return removed


def bundle_metadata_files(project_dir: Path) -> list[Path]:
    return [
        project_dir / "bundle" / "metadata" / "annotations.yaml",
        project_dir / "bundle.Dockerfile",
    ]


def bundle_manifest_files(project_dir: Path, project_name: str) -> list[Path]:
    csv_name = f"{project_name}.clusterserviceversion.yaml"
    return [
        project_dir / "bundle" / "manifests" / csv_name,
        project_dir / "config" / "manifests" / "bases" / csv_name,
    ]


def strip_bundle_annotations(project_dir: str | Path, project_name: str) -> int:
    """
    Strip builder annotations from a generated bundle.

    Args:
        project_dir: Scaffolded project directory
        project_name: Project name (prefix of the ClusterServiceVersion file)

    Returns:
        Total number of lines removed
    """
    project_dir = Path(project_dir)
    removed = remove_annotation_lines(
        BUNDLE_METADATA_ANNOTATIONS, bundle_metadata_files(project_dir)
    )
    removed.update(
        remove_annotation_lines(
            BUNDLE_OBJECT_ANNOTATIONS, bundle_manifest_files(project_dir, project_name)
        )
    )
    return sum(removed.values())
