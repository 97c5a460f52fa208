"""Tests for the session registry (connect / call / disconnect / shutdown)."""

from __future__ import annotations

import asyncio

import pytest

from tests._fakes import FakeClientFactory
from tether.client import CallError, HandshakeError, SpawnError
from tether.placeholders import MissingSecretError
from tether.sessions import CallTimeoutError, SessionNotFoundError, SessionRegistry
from tether.vault import SecretStore


class TestConnect:
    async def test_connect_registers_session(self, registry: SessionRegistry, factory: FakeClientFactory) -> None:
        session = await registry.connect("c1", "/bin/server", ["--root", "."])
        assert "c1" in registry
        assert len(registry) == 1
        assert registry.get("c1") is session
        assert factory.created[0].executable_path == "/bin/server"
        assert factory.created[0].args == ["--root", "."]

    async def test_secret_resolved_before_spawn(
        self, store: SecretStore, registry: SessionRegistry, factory: FakeClientFactory
    ) -> None:
        store.set("GITHUB_TOKEN", "abc123")
        session = await registry.connect("c1", "/bin/gh", ["--token", "{{SECRET:GITHUB_TOKEN}}"])
        assert factory.created[0].args == ["--token", "abc123"]
        assert session.raw_args == ["--token", "{{SECRET:GITHUB_TOKEN}}"]
        assert "abc123" not in str(session.to_dict())

    async def test_missing_secret_spawns_nothing(self, registry: SessionRegistry, factory: FakeClientFactory) -> None:
        with pytest.raises(MissingSecretError):
            await registry.connect("c1", "/bin/gh", ["{{SECRET:NOPE}}"])
        assert factory.created == []
        assert "c1" not in registry

    async def test_missing_secret_keeps_existing_session(
        self, registry: SessionRegistry, factory: FakeClientFactory
    ) -> None:
        first = await registry.connect("c1", "/bin/a", [])
        with pytest.raises(MissingSecretError):
            await registry.connect("c1", "/bin/b", ["{{SECRET:NOPE}}"])
        assert registry.get("c1") is first
        assert factory.created[0].close_count == 0

    async def test_replace_closes_previous_client(self, registry: SessionRegistry, factory: FakeClientFactory) -> None:
        await registry.connect("c1", "/bin/a", [])
        await registry.connect("c1", "/bin/b", [])
        old, new = factory.created
        assert old.close_count == 1
        assert new.close_count == 0
        assert registry.get("c1").server_path == "/bin/b"
        assert len(registry) == 1

    async def test_replace_survives_close_failure(self, store: SecretStore) -> None:
        factory = FakeClientFactory(fail_close=True)
        registry = SessionRegistry(store, client_factory=factory)
        await registry.connect("c1", "/bin/a", [])
        await registry.connect("c1", "/bin/b", [])
        assert registry.get("c1").server_path == "/bin/b"

    async def test_spawn_failure_leaves_no_session(self, store: SecretStore) -> None:
        registry = SessionRegistry(store, client_factory=FakeClientFactory(fail_with=SpawnError("nope")))
        with pytest.raises(SpawnError):
            await registry.connect("c1", "/missing", [])
        assert "c1" not in registry

    async def test_handshake_failure_after_replace_leaves_no_session(self, store: SecretStore) -> None:
        factory = FakeClientFactory()
        registry = SessionRegistry(store, client_factory=factory)
        await registry.connect("c1", "/bin/a", [])
        factory.fail_with = HandshakeError("silent")
        with pytest.raises(HandshakeError):
            await registry.connect("c1", "/bin/b", [])
        assert "c1" not in registry
        assert factory.created[0].close_count == 1

    async def test_independent_ids(self, registry: SessionRegistry) -> None:
        await registry.connect("a", "/bin/a", [])
        await registry.connect("b", "/bin/b", [])
        assert sorted(registry.ids()) == ["a", "b"]

    async def test_concurrent_connects_same_id_orphan_nothing(self, store: SecretStore) -> None:
        factory = FakeClientFactory(delay=0.01)
        registry = SessionRegistry(store, client_factory=factory)
        await asyncio.gather(*(registry.connect("c1", f"/bin/{i}", []) for i in range(5)))
        assert len(factory.created) == 5
        live = [c for c in factory.created if c.close_count == 0]
        assert len(live) == 1
        assert registry.get("c1").client is live[0]

    async def test_session_to_dict(self, registry: SessionRegistry) -> None:
        session = await registry.connect("c1", "/bin/a", ["x"])
        data = session.to_dict()
        assert data["clientId"] == "c1"
        assert data["serverPath"] == "/bin/a"
        assert data["serverArgs"] == ["x"]
        assert data["server"] == {"name": "fake", "version": "1.0"}
        assert data["capabilities"]["tools"] is True
        assert data["connectedAt"]


class TestCall:
    async def test_call_returns_result(self, registry: SessionRegistry, factory: FakeClientFactory) -> None:
        await registry.connect("c1", "/bin/a", [])
        result = await registry.call("c1", "echo", {"text": "hi"})
        assert result["echo"] == {"text": "hi"}
        assert factory.created[0].calls == [("echo", {"text": "hi"})]

    async def test_call_unknown_session(self, registry: SessionRegistry) -> None:
        with pytest.raises(SessionNotFoundError) as exc_info:
            await registry.call("ghost", "echo")
        assert exc_info.value.session_id == "ghost"
        assert "ghost" in str(exc_info.value)

    async def test_call_error_propagates(self, registry: SessionRegistry) -> None:
        await registry.connect("c1", "/bin/a", [])
        with pytest.raises(CallError) as exc_info:
            await registry.call("c1", "fail")
        assert exc_info.value.code == -32603

    async def test_timeout_keeps_session(self, store: SecretStore) -> None:
        factory = FakeClientFactory(call_delay=5)
        registry = SessionRegistry(store, client_factory=factory, call_timeout=0.05)
        await registry.connect("c1", "/bin/slow", [])
        with pytest.raises(CallTimeoutError) as exc_info:
            await registry.call("c1", "slow")
        assert exc_info.value.timeout == 0.05
        assert exc_info.value.method == "slow"
        assert "c1" in registry
        assert factory.created[0].close_count == 0

    async def test_list_tools_and_resources(self, store: SecretStore) -> None:
        factory = FakeClientFactory(resources=[{"uri": "file:///a", "name": "a"}])
        registry = SessionRegistry(store, client_factory=factory)
        await registry.connect("c1", "/bin/a", [])
        assert [t["name"] for t in await registry.list_tools("c1")] == ["echo"]
        assert await registry.list_resources("c1") == [{"uri": "file:///a", "name": "a"}]

    async def test_list_tools_unknown_session(self, registry: SessionRegistry) -> None:
        with pytest.raises(SessionNotFoundError):
            await registry.list_tools("ghost")


class TestDisconnect:
    async def test_disconnect_closes_and_forgets(self, registry: SessionRegistry, factory: FakeClientFactory) -> None:
        await registry.connect("c1", "/bin/a", [])
        await registry.disconnect("c1")
        assert "c1" not in registry
        assert factory.created[0].close_count == 1

    async def test_disconnect_unknown(self, registry: SessionRegistry) -> None:
        with pytest.raises(SessionNotFoundError):
            await registry.disconnect("ghost")

    async def test_disconnect_twice(self, registry: SessionRegistry) -> None:
        await registry.connect("c1", "/bin/a", [])
        await registry.disconnect("c1")
        with pytest.raises(SessionNotFoundError):
            await registry.disconnect("c1")

    async def test_close_error_swallowed(self, store: SecretStore, caplog: pytest.LogCaptureFixture) -> None:
        registry = SessionRegistry(store, client_factory=FakeClientFactory(fail_close=True))
        await registry.connect("c1", "/bin/a", [])
        with caplog.at_level("WARNING", logger="tether"):
            await registry.disconnect("c1")
        assert "c1" not in registry
        assert any(r.getMessage() == "session_close_failed" for r in caplog.records)


class TestLockBookkeeping:
    async def test_ghost_disconnects_leave_no_locks(self, registry: SessionRegistry) -> None:
        for i in range(1000):
            with pytest.raises(SessionNotFoundError):
                await registry.disconnect(f"ghost-{i}")
        assert len(registry._locks) == 0

    async def test_locks_released_after_lifecycle(self, registry: SessionRegistry) -> None:
        await registry.connect("c1", "/bin/a", [])
        assert len(registry._locks) == 0
        await registry.disconnect("c1")
        assert len(registry._locks) == 0

    async def test_failed_connect_releases_lock(self, store: SecretStore) -> None:
        registry = SessionRegistry(store, client_factory=FakeClientFactory(fail_with=SpawnError("nope")))
        with pytest.raises(SpawnError):
            await registry.connect("c1", "/missing", [])
        assert len(registry._locks) == 0

    async def test_concurrent_connects_share_lock_then_release(self, store: SecretStore) -> None:
        factory = FakeClientFactory(delay=0.01)
        registry = SessionRegistry(store, client_factory=factory)
        await asyncio.gather(*(registry.connect("c1", f"/bin/{i}", []) for i in range(5)))
        assert [c.close_count for c in factory.created].count(0) == 1
        assert len(registry._locks) == 0


class TestShutdownAll:
    async def test_closes_everything(self, registry: SessionRegistry, factory: FakeClientFactory) -> None:
        for sid in ("a", "b", "c"):
            await registry.connect(sid, f"/bin/{sid}", [])
        await registry.shutdown_all()
        assert len(registry) == 0
        assert all(c.close_count == 1 for c in factory.created)

    async def test_failures_do_not_stop_sweep(self, store: SecretStore) -> None:
        factory = FakeClientFactory(fail_close=True)
        registry = SessionRegistry(store, client_factory=factory)
        await registry.connect("a", "/bin/a", [])
        await registry.connect("b", "/bin/b", [])
        await registry.shutdown_all()
        assert len(registry) == 0
        assert [c.close_count for c in factory.created] == [1, 1]

    async def test_empty_registry(self, registry: SessionRegistry) -> None:
        await registry.shutdown_all()
        assert len(registry) == 0

    async def test_waits_for_connect_in_flight(self, store: SecretStore) -> None:
        factory = FakeClientFactory(delay=0.2)
        registry = SessionRegistry(store, client_factory=factory)
        connecting = asyncio.create_task(registry.connect("c1", "/bin/slow-start", []))
        await asyncio.sleep(0.05)
        await registry.shutdown_all()
        await connecting
        assert len(registry) == 0
        assert len(factory.created) == 1
        assert factory.created[0].close_count == 1
        assert len(registry._locks) == 0


class TestScenario:
    async def test_secret_connect_call_disconnect(
        self, store: SecretStore, registry: SessionRegistry, factory: FakeClientFactory
    ) -> None:
        store.set("GITHUB_TOKEN", "abc123")
        await registry.connect("session-1", "npx", ["-y", "mcp-server-github-pr", "--token", "{{SECRET:GITHUB_TOKEN}}"])
        assert factory.created[0].args[-1] == "abc123"
        result = await registry.call("session-1", "list_prs", {"repo": "o/r"})
        assert result["content"][0]["text"] == "list_prs ok"
        await registry.disconnect("session-1")
        assert registry.ids() == []
        with pytest.raises(SessionNotFoundError):
            await registry.call("session-1", "list_prs")

    async def test_calls_after_reconnect_reach_new_client(
        self, registry: SessionRegistry, factory: FakeClientFactory
    ) -> None:
        await registry.connect("c1", "/bin/a", [])
        await registry.connect("c1", "/bin/b", [])
        await registry.call("c1", "echo", {"n": 1})
        old, new = factory.created
        assert old.calls == []
        assert new.calls == [("echo", {"n": 1})]
