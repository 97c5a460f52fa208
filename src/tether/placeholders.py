"""Secret placeholder resolution for MCP server launch arguments.

A launch argument that is exactly ``{{SECRET:<name>}}`` is replaced by the
stored secret's value. Anything else, including an argument that merely
contains a placeholder, is passed through verbatim.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tether.vault import SecretStore

SECRET_PLACEHOLDER_RE = re.compile(r"\{\{SECRET:([^}]+)\}\}")


class MissingSecretError(LookupError):
    """A launch argument referenced a secret that is not in the store."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Missing secret: {name}")
        self.name = name


def placeholder_name(arg: object) -> str | None:
    """Return the secret name if *arg* is a whole-string placeholder, else ``None``."""
    if not isinstance(arg, str):
        return None
    match = SECRET_PLACEHOLDER_RE.fullmatch(arg)
    return match.group(1) if match else None


def find_placeholders(args: Sequence[str]) -> list[str]:
    """Secret names referenced by *args*, in argument order (duplicates kept once)."""
    names: list[str] = []
    for arg in args:
        name = placeholder_name(arg)
        if name is not None and name not in names:
            names.append(name)
    return names


def resolve_args(args: Sequence[str], store: SecretStore) -> list[str]:
    """Substitute every placeholder in *args* with its secret value.

    Fails fast with :class:`MissingSecretError` on the first unknown name;
    no partially resolved list is ever returned. The store is read at most
    once, and not at all when *args* holds no placeholders.
    """
    if not find_placeholders(args):
        return list(args)
    secrets = store.snapshot()
    resolved: list[str] = []
    for arg in args:
        name = placeholder_name(arg)
        if name is None:
            resolved.append(arg)
            continue
        if name not in secrets:
            raise MissingSecretError(name)
        resolved.append(secrets[name])
    return resolved
