"""File system utilities shared by the pack, state and transcript stores."""

from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Any

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9_-]")


def ensure_directory_exists(path: str | Path) -> Path:
    """Ensure a directory exists, creating it if necessary.

    Args:
        path: Directory path (string or Path object)

    Returns:
        Path object of the directory
    """
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def safe_id(value: str) -> str:
    """Replace anything outside ``[a-zA-Z0-9_-]`` with ``_`` for use in file names.

    Example:
        >>> safe_id("jarvis/v1.2")
        'jarvis_v1_2'
    """
    return _UNSAFE_CHARS.sub("_", value)


def write_json_atomic(path: Path, data: Any) -> None:
    """Replace ``path`` with ``data`` as pretty-printed UTF-8 JSON.

    The content goes to a sibling temp file first, so readers only ever see
    the previous or the new version.
    """
    ensure_directory_exists(path.parent)
    tmp_path = path.with_name(f".{path.name}.tmp")
    tmp_path.write_text(
        json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8"
    )
    os.replace(tmp_path, path)
