"""Read-only local file browsing confined to a root directory."""

from __future__ import annotations

import base64
import os
from pathlib import Path
from typing import Any


class PathEscapeError(ValueError):
    """The requested path resolves outside the browsing root."""


class FileTooLargeError(ValueError):
    def __init__(self, size: int, max_bytes: int) -> None:
        super().__init__(f"File is {size} bytes; limit is {max_bytes}")
        self.size = size
        self.max_bytes = max_bytes


def safe_join(root: Path, rel: str) -> Path:
    """Resolve *rel* under *root*, rejecting anything that escapes it.

    Leading separators are stripped so absolute-looking input is treated as
    relative to *root*. Symlinks are resolved before the containment check.
    """
    root = root.resolve()
    cleaned = rel.lstrip("/\\")
    target = (root / cleaned).resolve()
    if not target.is_relative_to(root):
        raise PathEscapeError(f"Path escapes root: {rel}")
    return target


def _relative(root: Path, target: Path) -> str:
    rel = os.path.relpath(target, root.resolve())
    return rel.replace(os.sep, "/")


def list_dir(root: Path, rel: str = ".") -> dict[str, Any]:
    """List one directory under *root*.

    Raises ``FileNotFoundError`` if missing, ``ValueError`` if not a directory.
    """
    target = safe_join(root, rel or ".")
    if not target.exists():
        raise FileNotFoundError(rel)
    if not target.is_dir():
        raise ValueError(f"Not a directory: {rel}")
    entries = []
    for child in sorted(target.iterdir(), key=lambda p: p.name):
        if child.is_dir():
            kind = "dir"
        elif child.is_file():
            kind = "file"
        else:
            kind = "other"
        entries.append({"name": child.name, "type": kind})
    return {"root": str(root.resolve()), "path": _relative(root, target), "entries": entries}


def read_file(root: Path, rel: str, *, max_bytes: int) -> dict[str, Any]:
    """Read one file under *root* as base64.

    Raises ``FileNotFoundError`` if missing, ``ValueError`` if not a regular
    file, and :class:`FileTooLargeError` above *max_bytes*.
    """
    if not rel:
        raise ValueError("path is required")
    target = safe_join(root, rel)
    if not target.exists():
        raise FileNotFoundError(rel)
    if not target.is_file():
        raise ValueError(f"Not a file: {rel}")
    size = target.stat().st_size
    if size > max_bytes:
        raise FileTooLargeError(size, max_bytes)
    data = target.read_bytes()
    return {
        "path": _relative(root, target),
        "size": len(data),
        "encoding": "base64",
        "data": base64.b64encode(data).decode("ascii"),
    }
