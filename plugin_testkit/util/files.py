"""
File utility functions.
"""

import json
import shutil
from pathlib import Path
from typing import Any


def ensure_dir(path: str | Path) -> Path:
    """Ensure directory exists, creating if necessary."""
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    return p


def read_json(path: str | Path, default: Any = None) -> Any:
    """Load a JSON file, or return ``default`` if it does not exist."""
    p = Path(path)
    if not p.exists():
        return default
    return json.loads(p.read_text())


def write_json(path: str | Path, data: Any) -> Path:
    """Write indented JSON (trailing newline), creating parent directories."""
    p = Path(path)
    ensure_dir(p.parent)
    p.write_text(json.dumps(data, indent=2) + "\n")
    return p


def remove_tree(path: str | Path) -> None:
    """Remove a directory tree; a missing path is not an error."""
    p = Path(path)
    if p.exists():
        shutil.rmtree(p)
