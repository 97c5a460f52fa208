"""Tether: local helper that bridges a web app to locally installed MCP servers."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("tether")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

from tether.sessions import Session, SessionRegistry
from tether.vault import SecretStore

__all__ = ["SecretStore", "Session", "SessionRegistry", "__version__"]
