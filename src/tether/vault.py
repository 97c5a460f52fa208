"""File-backed secret store.

One JSON document maps secret name -> ``{"value": ..., "updatedAt": ...}``.
The file is re-read before every operation (no cache), so edits made by
another process are always picked up. In-process read-modify-write cycles
are serialized by a lock; each write is atomic (temp file + rename).
"""

from __future__ import annotations

import json
import logging
import shutil
import threading
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from tether.config import write_atomic

logger = logging.getLogger(__name__)

_FILE_MODE = 0o600
_DIR_MODE = 0o700


@dataclass(frozen=True)
class SecretEntry:
    name: str
    value: str
    updated_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"value": self.value, "updatedAt": self.updated_at}


class SecretStore:
    """Secret name -> value mapping persisted at *path*.

    A missing file is an empty store. A file that exists but cannot be read
    raises ``OSError``. A file that is not a JSON object is backed up to
    ``<path>.bak`` and treated as empty.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()

    # -- persistence --

    def _backup_corrupt(self) -> None:
        backup_path = self.path.parent / (self.path.name + ".bak")
        try:
            shutil.copy2(self.path, backup_path)
        except OSError:
            logger.debug("Could not back up corrupt vault to %s", backup_path, exc_info=True)

    def _load(self) -> dict[str, SecretEntry]:
        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            return {}

        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            self._backup_corrupt()
            logger.warning("Corrupt vault %s: %s; backed up to .bak, treating as empty", self.path, exc)
            return {}
        if not isinstance(data, dict):
            self._backup_corrupt()
            logger.warning("Vault %s is not a JSON object; backed up to .bak, treating as empty", self.path)
            return {}

        entries: dict[str, SecretEntry] = {}
        for name, node in data.items():
            if isinstance(node, str):
                # Older builds stored bare string values.
                entries[name] = SecretEntry(name, node)
            elif isinstance(node, dict) and isinstance(node.get("value"), str):
                updated_at = node.get("updatedAt")
                entries[name] = SecretEntry(name, node["value"], updated_at if isinstance(updated_at, str) else None)
            else:
                logger.warning("Skipping malformed vault entry %r in %s", name, self.path)
        return entries

    def _save(self, entries: dict[str, SecretEntry]) -> None:
        self.path.parent.mkdir(mode=_DIR_MODE, parents=True, exist_ok=True)
        content = json.dumps({name: entry.to_dict() for name, entry in entries.items()}, indent=2)
        write_atomic(self.path, content + "\n", mode=_FILE_MODE)

    # -- public API --

    def set(self, name: str, value: str) -> SecretEntry:
        """Create or overwrite *name*, stamping ``updatedAt`` with the current UTC time."""
        if not name:
            raise ValueError("secret name must not be empty")
        with self._lock:
            entries = self._load()
            entry = SecretEntry(name, value, datetime.now(UTC).isoformat())
            entries[name] = entry
            self._save(entries)
        logger.info("vault_set", extra={"args_data": {"name": name}})
        return entry

    def delete(self, name: str) -> bool:
        """Remove *name* if present. Returns ``False`` (and writes nothing) when absent."""
        with self._lock:
            entries = self._load()
            if name not in entries:
                return False
            del entries[name]
            self._save(entries)
        logger.info("vault_delete", extra={"args_data": {"name": name}})
        return True

    def has(self, name: str) -> bool:
        return name in self._load()

    def get(self, name: str) -> str | None:
        entry = self._load().get(name)
        return entry.value if entry is not None else None

    def entry(self, name: str) -> SecretEntry | None:
        return self._load().get(name)

    def names(self) -> list[str]:
        return sorted(self._load())

    def snapshot(self) -> dict[str, str]:
        """Return one consistent ``{name: value}`` view of the store."""
        return {name: entry.value for name, entry in self._load().items()}
