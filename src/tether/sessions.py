"""Session registry: caller-keyed MCP client sessions.

Maps a client-supplied session id to one live :class:`ProcessClient`.
Connecting under an id that is already in use closes the old client first.
A per-id lock spans resolve -> close-old -> spawn-new, so concurrent
connects on one id are serialized and never orphan a client.

Calls are bounded by ``call_timeout``. A timeout abandons the wait only:
the server process may keep working on the request, and the session stays
registered.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections import Counter
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol

from tether.client import McpProcessClient
from tether.config import DEFAULT_CALL_TIMEOUT, DEFAULT_HANDSHAKE_TIMEOUT
from tether.placeholders import resolve_args
from tether.vault import SecretStore

logger = logging.getLogger(__name__)


class ProcessClient(Protocol):
    """What the registry needs from a live MCP client."""

    @property
    def server_info(self) -> dict[str, str]: ...

    @property
    def capabilities(self) -> dict[str, bool]: ...

    async def call(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]: ...

    async def list_tools(self) -> list[dict[str, Any]]: ...

    async def list_resources(self) -> list[dict[str, Any]]: ...

    async def close(self) -> None: ...


ClientFactory = Callable[[str, list[str]], Awaitable[ProcessClient]]


class SessionNotFoundError(KeyError):
    """No live session is registered under the given id."""

    def __init__(self, session_id: str) -> None:
        super().__init__(session_id)
        self.session_id = session_id

    def __str__(self) -> str:
        return f"No MCP session {self.session_id!r}"


class CallTimeoutError(TimeoutError):
    """A call did not settle within the registry's call timeout."""

    def __init__(self, session_id: str, method: str, timeout: float) -> None:
        super().__init__(f"MCP call {method!r} on session {session_id!r} timed out after {timeout:g}s")
        self.session_id = session_id
        self.method = method
        self.timeout = timeout


@dataclass
class Session:
    id: str
    client: ProcessClient
    server_path: str
    # Launch args as supplied, placeholders intact; resolved values are never kept.
    raw_args: list[str] = field(default_factory=list)
    connected_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    def to_dict(self) -> dict[str, Any]:
        return {
            "clientId": self.id,
            "serverPath": self.server_path,
            "serverArgs": list(self.raw_args),
            "server": self.client.server_info,
            "capabilities": self.client.capabilities,
            "connectedAt": self.connected_at,
        }


def mcp_client_factory(*, handshake_timeout: float = DEFAULT_HANDSHAKE_TIMEOUT) -> ClientFactory:
    """Default factory: spawn a real MCP server over stdio."""

    async def _factory(executable_path: str, args: list[str]) -> ProcessClient:
        return await McpProcessClient.start(executable_path, args, handshake_timeout=handshake_timeout)

    return _factory


class SessionRegistry:
    """Owns every live MCP session for one helper process."""

    def __init__(
        self,
        store: SecretStore,
        *,
        client_factory: ClientFactory | None = None,
        call_timeout: float = DEFAULT_CALL_TIMEOUT,
    ) -> None:
        self._store = store
        self._client_factory = client_factory or mcp_client_factory()
        self._call_timeout = call_timeout
        self._sessions: dict[str, Session] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: Counter[str] = Counter()

    # -- introspection --

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def ids(self) -> list[str]:
        return list(self._sessions)

    def sessions(self) -> list[Session]:
        return list(self._sessions.values())

    def get(self, session_id: str) -> Session:
        """Return the session for *session_id*. Raises :class:`SessionNotFoundError`."""
        try:
            return self._sessions[session_id]
        except KeyError:
            raise SessionNotFoundError(session_id) from None

    # -- lifecycle --

    @contextlib.asynccontextmanager
    async def _locked(self, session_id: str) -> AsyncIterator[None]:
        """Serialize lifecycle operations on one id. The lock is dropped once unused."""
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        self._lock_users[session_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[session_id] -= 1
            if self._lock_users[session_id] <= 0:
                del self._lock_users[session_id]
                del self._locks[session_id]

    async def _close_quietly(self, session: Session) -> None:
        try:
            await session.client.close()
        except Exception as exc:
            logger.warning(
                "session_close_failed",
                extra={"session": session.id, "server": session.server_path, "error": type(exc).__name__},
                exc_info=True,
            )

    async def connect(self, session_id: str, executable_path: str, raw_args: Sequence[str]) -> Session:
        """Start an MCP server for *session_id*, replacing any existing session.

        ``MissingSecretError`` leaves an existing session untouched.
        ``SpawnError`` / ``HandshakeError`` leave the id without a session.
        """
        async with self._locked(session_id):
            args = resolve_args(raw_args, self._store)

            existing = self._sessions.pop(session_id, None)
            if existing is not None:
                logger.info("session_replace", extra={"session": session_id, "server": existing.server_path})
                await self._close_quietly(existing)

            t0 = time.monotonic()
            try:
                client = await self._client_factory(executable_path, args)
            except Exception as exc:
                logger.error(
                    "session_connect_failed",
                    extra={"session": session_id, "server": executable_path, "args_data": list(raw_args), "error": type(exc).__name__},
                    exc_info=True,
                )
                raise
            session = Session(session_id, client, executable_path, list(raw_args))
            self._sessions[session_id] = session

        duration_ms = round((time.monotonic() - t0) * 1000, 1)
        logger.info(
            "session_connect",
            extra={"session": session_id, "server": executable_path, "args_data": list(raw_args), "duration_ms": duration_ms},
        )
        return session

    async def disconnect(self, session_id: str) -> None:
        """Close and forget *session_id*. Close errors are logged, never raised."""
        async with self._locked(session_id):
            session = self._sessions.pop(session_id, None)
            if session is None:
                raise SessionNotFoundError(session_id)
            await self._close_quietly(session)
        logger.info("session_disconnect", extra={"session": session_id, "server": session.server_path})

    async def _shutdown_one(self, session_id: str) -> str | None:
        async with self._locked(session_id):
            session = self._sessions.pop(session_id, None)
            if session is None:
                return None
            await self._close_quietly(session)
            return session_id

    async def shutdown_all(self) -> None:
        """Close every session best-effort and empty the registry.

        Waits for in-flight connects on each id, so a client still being
        spawned is closed too instead of being left behind.
        """
        pending = set(self._sessions) | set(self._locks)
        if not pending:
            return
        results = await asyncio.gather(*(self._shutdown_one(sid) for sid in pending))
        closed = sorted(sid for sid in results if sid is not None)
        logger.info("sessions_shutdown", extra={"args_data": {"closed": closed}})

    # -- requests --

    async def call(self, session_id: str, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """Invoke *method* on the session's server, bounded by the call timeout."""
        session = self.get(session_id)
        t0 = time.monotonic()
        try:
            result = await asyncio.wait_for(session.client.call(method, params), self._call_timeout)
        except TimeoutError:
            logger.warning("mcp_call_timeout", extra={"session": session_id, "method": method})
            raise CallTimeoutError(session_id, method, self._call_timeout) from None
        except Exception as exc:
            logger.error("mcp_call_error", extra={"session": session_id, "method": method, "error": type(exc).__name__}, exc_info=True)
            raise
        duration_ms = round((time.monotonic() - t0) * 1000, 1)
        logger.info("mcp_call", extra={"session": session_id, "method": method, "duration_ms": duration_ms})
        return result

    async def list_tools(self, session_id: str) -> list[dict[str, Any]]:
        return await self.get(session_id).client.list_tools()

    async def list_resources(self, session_id: str) -> list[dict[str, Any]]:
        return await self.get(session_id).client.list_resources()
