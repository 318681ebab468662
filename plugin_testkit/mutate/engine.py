"""
Anchor-based text mutation of generated source and manifest files.

Anchors are plain substrings, never regular expressions. Files are read
and written as raw UTF-8 so every byte outside the mutated span (line
endings included) and the file mode survive unchanged.

The primitive operations are NOT idempotent: inserting the same payload
twice duplicates it. Callers that may re-run a mutation sequence go
through MutationJournal, which records what has already been applied.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from plugin_testkit.exceptions import MutationAnchorNotFoundError
from plugin_testkit.util.files import read_json, write_json
from plugin_testkit.util.hashing import sha256_fields

logger = logging.getLogger(__name__)

JOURNAL_DIR = ".plugin-testkit"
JOURNAL_FILE = "mutations.json"


def _read(path: Path) -> str:
    return path.read_bytes().decode("utf-8")


def _write(path: Path, content: str) -> None:
    mode = path.stat().st_mode
    path.write_bytes(content.encode("utf-8"))
    path.chmod(mode)


def _require_unique(path: Path, content: str, anchor: str) -> int:
    count = content.count(anchor)
    if count != 1:
        raise MutationAnchorNotFoundError(str(path), anchor, count)
    return content.index(anchor)


def insert_code(path: str | Path, anchor: str, payload: str) -> None:
    """
    Insert ``payload`` immediately after the single occurrence of ``anchor``.

    Raises:
        MutationAnchorNotFoundError: If the anchor is absent or ambiguous
        OSError: On any I/O failure
    """
    path = Path(path)
    content = _read(path)
    end = _require_unique(path, content, anchor) + len(anchor)
    _write(path, content[:end] + payload + content[end:])


def replace_in_file(path: str | Path, old: str, new: str) -> int:
    """
    Replace every occurrence of ``old`` with ``new``.

    Returns:
        Number of occurrences replaced

    Raises:
        MutationAnchorNotFoundError: If ``old`` does not occur (file untouched)
        OSError: On any I/O failure
    """
    path = Path(path)
    content = _read(path)
    count = content.count(old)
    if count == 0:
        raise MutationAnchorNotFoundError(str(path), old, 0)
    _write(path, content.replace(old, new))
    return count


def uncomment_code(path: str | Path, target: str, prefix: str = "#") -> None:
    """
    Strip ``prefix`` from the start of every line of the ``target`` block.

    Lines of the block that do not start with the prefix are left as is.

    Raises:
        MutationAnchorNotFoundError: If the block is absent or ambiguous
    """
    path = Path(path)
    content = _read(path)
    start = _require_unique(path, content, target)

    lines = target.split("\n")
    uncommented = "\n".join(
        line[len(prefix) :] if line.startswith(prefix) else line for line in lines
    )
    _write(path, content[:start] + uncommented + content[start + len(target) :])


class MutationMode(str, Enum):
    """How a MutationSpec changes its target file."""

    INSERT = "insert"
    REPLACE = "replace"
    UNCOMMENT = "uncomment"


@dataclass(frozen=True)
class MutationSpec:
    """
    One anchored change to one file.

    For UNCOMMENT the payload is the comment prefix to strip.
    """

    target: Path
    anchor: str
    mode: MutationMode
    payload: str

    @classmethod
    def insert(cls, target: str | Path, anchor: str, payload: str) -> "MutationSpec":
        return cls(Path(target), anchor, MutationMode.INSERT, payload)

    @classmethod
    def replace(cls, target: str | Path, old: str, new: str) -> "MutationSpec":
        return cls(Path(target), old, MutationMode.REPLACE, new)

    @classmethod
    def uncomment(cls, target: str | Path, block: str, prefix: str = "#") -> "MutationSpec":
        return cls(Path(target), block, MutationMode.UNCOMMENT, prefix)

    def apply(self) -> None:
        """Apply this mutation to its target file."""
        logger.debug("Applying %s mutation to %s", self.mode.value, self.target)
        if self.mode is MutationMode.INSERT:
            insert_code(self.target, self.anchor, self.payload)
        elif self.mode is MutationMode.REPLACE:
            replace_in_file(self.target, self.anchor, self.payload)
        else:
            uncomment_code(self.target, self.anchor, self.payload)

    def identifier(self, root: Path | None = None) -> str:
        """Stable identifier (target path relative to ``root`` when given)."""
        target = self.target
        if root is not None:
            try:
                target = self.target.resolve().relative_to(Path(root).resolve())
            except ValueError:
                pass
        return sha256_fields(target.as_posix(), self.mode.value, self.anchor, self.payload)


class MutationJournal:
    """
    Records applied mutation identifiers for one project directory.

    The journal lives at ``<project>/.plugin-testkit/mutations.json``.
    """

    def __init__(self, project_dir: str | Path):
        self.project_dir = Path(project_dir)
        self.path = self.project_dir / JOURNAL_DIR / JOURNAL_FILE
        self._applied: set[str] | None = None

    @property
    def applied(self) -> set[str]:
        if self._applied is None:
            data = read_json(self.path, default={})
            self._applied = set(data.get("applied", []))
        return self._applied

    def contains(self, spec: MutationSpec) -> bool:
        return spec.identifier(self.project_dir) in self.applied

    def record(self, spec: MutationSpec) -> None:
        self.applied.add(spec.identifier(self.project_dir))
        write_json(self.path, {"applied": sorted(self.applied)})

    def apply(self, spec: MutationSpec) -> bool:
        """
        Apply ``spec`` unless the journal says it was already applied.

        Returns:
            True if the mutation was applied, False if it was skipped
        """
        if self.contains(spec):
            logger.info("Skipping already applied mutation on %s", spec.target)
            return False
        spec.apply()
        self.record(spec)
        return True


def apply_mutations(
    specs: Iterable[MutationSpec], journal: MutationJournal | None = None
) -> int:
    """
    Apply mutations in order, stopping at the first failure.

    A failure leaves earlier mutations in place; files may be partially
    mutated and cleaning them up is the caller's job.

    Returns:
        Number of mutations actually applied
    """
    applied = 0
    for spec in specs:
        if journal is None:
            spec.apply()
            applied += 1
        elif journal.apply(spec):
            applied += 1
    return applied
