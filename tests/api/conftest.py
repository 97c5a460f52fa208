"""Fixtures for HTTP API tests (FastAPI)."""

from __future__ import annotations

from collections.abc import AsyncIterator
from pathlib import Path

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from tether.app import create_app
from tether.config import HelperConfig
from tether.sessions import SessionRegistry
from tether.vault import SecretStore

TOKEN = "test-token"


@pytest.fixture
def fs_root(tmp_path: Path) -> Path:
    root = tmp_path / "fsroot"
    (root / "docs").mkdir(parents=True)
    (root / "docs" / "readme.md").write_text("# hi\n")
    (root / "big.bin").write_bytes(b"x" * 64)
    (tmp_path / "private.txt").write_text("keep out")
    return root


@pytest.fixture
def config(tmp_path: Path, fs_root: Path) -> HelperConfig:
    return HelperConfig(
        token=TOKEN,
        data_dir=tmp_path / "data",
        fs_root=fs_root,
        fs_max_read_bytes=32,
        allowed_origins=["https://app.example"],
    )


@pytest.fixture
def app(config: HelperConfig, store: SecretStore, registry: SessionRegistry) -> FastAPI:
    return create_app(config, store=store, registry=registry)


@pytest.fixture
async def anon_client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    """Client that presents no token."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
async def client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    """Client that presents the helper token as a bearer credential."""
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"Authorization": f"Bearer {TOKEN}"},
    ) as c:
        yield c
