"""Shared pytest fixtures for tether tests."""

from __future__ import annotations

import logging
from collections.abc import Generator
from pathlib import Path

import pytest
from click.testing import CliRunner

from tests._fakes import FakeClientFactory
from tether.sessions import SessionRegistry
from tether.vault import SecretStore

_TETHER_ENV = (
    "TETHER_HOME",
    "TETHER_HOST_TOKEN",
    "TETHER_PORT",
    "TETHER_BIND",
    "TETHER_ALLOWED_ORIGINS",
    "TETHER_FS_ROOT",
    "TETHER_FS_MAX_READ_BYTES",
)


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the app-data dir at tmp_path/home and clear every TETHER_* override."""
    for name in _TETHER_ENV:
        monkeypatch.delenv(name, raising=False)
    home = tmp_path / "home"
    monkeypatch.setenv("TETHER_HOME", str(home))
    return home


@pytest.fixture(autouse=True)
def _reset_tether_logger() -> Generator[None, None, None]:
    yield
    logger = logging.getLogger("tether")
    for handler in logger.handlers[:]:
        handler.close()
        logger.removeHandler(handler)


@pytest.fixture
def store(tmp_path: Path) -> SecretStore:
    """Empty secret store backed by tmp_path/vault/vault.json."""
    return SecretStore(tmp_path / "vault" / "vault.json")


@pytest.fixture
def factory() -> FakeClientFactory:
    return FakeClientFactory()


@pytest.fixture
def registry(store: SecretStore, factory: FakeClientFactory) -> SessionRegistry:
    """Registry wired to the fake factory with a short call timeout."""
    return SessionRegistry(store, client_factory=factory, call_timeout=0.5)


@pytest.fixture
def cli_runner() -> CliRunner:
    """Click CLI test runner."""
    return CliRunner()
