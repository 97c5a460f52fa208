"""MCP process client: one child process speaking MCP over stdio.

The ``stdio_client`` / ``ClientSession`` context managers open anyio task
groups, which must be exited by the task that entered them. HTTP requests
run in different tasks, so each client owns a dedicated background task
that enters both contexts, performs the handshake, then parks until
:meth:`McpProcessClient.close` asks it to unwind.
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
from collections.abc import Awaitable, Sequence
from typing import Any, TypeVar

import anyio
from mcp import ClientSession, StdioServerParameters, types
from mcp.client.stdio import stdio_client
from mcp.shared.exceptions import McpError
from pydantic import ValidationError

from tether.config import DEFAULT_HANDSHAKE_TIMEOUT

logger = logging.getLogger(__name__)

CLIENT_NAME = "tether"
DEFAULT_CLOSE_TIMEOUT = 5.0

_T = TypeVar("_T")

# anyio stream errors seen once the child has exited and the pipes are gone.
_TRANSPORT_ERRORS = (anyio.ClosedResourceError, anyio.BrokenResourceError, anyio.EndOfStream)


class ConnectError(RuntimeError):
    """The MCP server process could not be brought up."""


class SpawnError(ConnectError):
    """The executable could not be started."""


class HandshakeError(ConnectError):
    """The process started but did not complete the MCP handshake."""


class CallError(RuntimeError):
    """The MCP server rejected or failed a request."""

    def __init__(self, method: str, message: str, *, code: int | None = None) -> None:
        super().__init__(f"{method}: {message}")
        self.method = method
        self.code = code


class CallConvention(enum.Enum):
    """How :meth:`McpProcessClient.call` maps ``(method, params)`` onto MCP.

    Chosen once from the server's advertised capabilities at handshake.
    """

    TOOLS = "tools"  # tools/call with name=method, arguments=params
    REQUEST = "request"  # raw {method, params} client request


def _find_os_error(exc: BaseException) -> OSError | None:
    """Locate an ``OSError`` in *exc* or, recursively, its exception-group members.

    Cause chains are not followed: anyio reports a closed pipe as
    ``BrokenResourceError`` caused by ``BrokenPipeError``, which is a
    handshake failure, not a spawn failure. ``TimeoutError`` is an
    ``OSError`` subclass and is likewise a handshake failure.
    """
    if isinstance(exc, OSError) and not isinstance(exc, TimeoutError):
        return exc
    if isinstance(exc, BaseExceptionGroup):
        for inner in exc.exceptions:
            found = _find_os_error(inner)
            if found is not None:
                return found
    return None


def _dump(model: Any) -> dict[str, Any]:
    dumped: dict[str, Any] = model.model_dump(by_alias=True, exclude_none=True, mode="json")
    return dumped


class McpProcessClient:
    """A live MCP session with one spawned server process.

    Use :meth:`start` to create one; instances are not reusable after
    :meth:`close`.
    """

    def __init__(
        self,
        executable_path: str,
        args: Sequence[str],
        *,
        env: dict[str, str] | None = None,
        cwd: str | None = None,
        handshake_timeout: float = DEFAULT_HANDSHAKE_TIMEOUT,
        close_timeout: float = DEFAULT_CLOSE_TIMEOUT,
    ) -> None:
        self.executable_path = executable_path
        self._params = StdioServerParameters(command=executable_path, args=list(args), env=env, cwd=cwd)
        self._handshake_timeout = handshake_timeout
        self._close_timeout = close_timeout
        self._stop = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._session: ClientSession | None = None
        self._init: types.InitializeResult | None = None
        self._closed = False

    # -- lifecycle --

    @classmethod
    async def start(
        cls,
        executable_path: str,
        args: Sequence[str],
        *,
        env: dict[str, str] | None = None,
        cwd: str | None = None,
        handshake_timeout: float = DEFAULT_HANDSHAKE_TIMEOUT,
        close_timeout: float = DEFAULT_CLOSE_TIMEOUT,
    ) -> McpProcessClient:
        """Spawn *executable_path* with *args* and complete the MCP handshake.

        Raises :class:`SpawnError` when the process cannot be started and
        :class:`HandshakeError` when it starts but never finishes
        ``initialize`` within *handshake_timeout* seconds.
        """
        client = cls(
            executable_path,
            args,
            env=env,
            cwd=cwd,
            handshake_timeout=handshake_timeout,
            close_timeout=close_timeout,
        )
        await client._open()
        return client

    async def _open(self) -> None:
        ready: asyncio.Future[types.InitializeResult] = asyncio.get_running_loop().create_future()
        self._task = asyncio.create_task(self._run(ready), name=f"mcp-client:{self.executable_path}")
        try:
            self._init = await asyncio.wait_for(asyncio.shield(ready), self._handshake_timeout)
        except TimeoutError:
            await self._abort()
            raise HandshakeError(
                f"{self.executable_path} did not complete the MCP handshake within {self._handshake_timeout:g}s"
            ) from None
        except Exception as exc:
            await self._abort()
            if _find_os_error(exc) is not None:
                raise SpawnError(f"Could not start {self.executable_path}") from exc
            raise HandshakeError(f"MCP handshake with {self.executable_path} failed") from exc

    async def _run(self, ready: asyncio.Future[types.InitializeResult]) -> None:
        try:
            async with (
                stdio_client(self._params) as (read_stream, write_stream),
                ClientSession(read_stream, write_stream) as session,
            ):
                result = await session.initialize()
                self._session = session
                ready.set_result(result)
                await self._stop.wait()
        except Exception as exc:
            if not ready.done():
                ready.set_exception(exc)
            else:
                logger.warning(
                    "mcp_client_exit_error",
                    extra={"server": self.executable_path, "error": type(exc).__name__},
                    exc_info=True,
                )
        finally:
            self._session = None

    async def _abort(self) -> None:
        """Tear down a client whose handshake did not succeed."""
        self._closed = True
        task = self._task
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def close(self) -> None:
        """Terminate the server process and release the transport. Idempotent."""
        if self._closed:
            return
        self._closed = True
        task = self._task
        if task is None or task.done():
            return
        self._stop.set()
        try:
            await asyncio.wait_for(asyncio.shield(task), self._close_timeout)
        except TimeoutError:
            logger.warning("mcp_client_close_timeout", extra={"server": self.executable_path})
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    # -- introspection --

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def server_info(self) -> dict[str, str]:
        if self._init is None:
            return {}
        return {"name": self._init.serverInfo.name, "version": self._init.serverInfo.version}

    @property
    def capabilities(self) -> dict[str, bool]:
        caps = self._init.capabilities if self._init is not None else None
        return {
            "tools": caps is not None and caps.tools is not None,
            "resources": caps is not None and caps.resources is not None,
        }

    @property
    def convention(self) -> CallConvention:
        return CallConvention.TOOLS if self.capabilities["tools"] else CallConvention.REQUEST

    def _require_session(self, method: str) -> ClientSession:
        if self._closed or self._session is None or self._task is None or self._task.done():
            raise CallError(method, "client is closed")
        return self._session

    async def _send(self, method: str, request: Awaitable[_T]) -> _T:
        """Await *request*, failing fast if the server process goes away first."""
        pending = asyncio.ensure_future(request)
        runner = self._task
        try:
            if runner is not None:
                await asyncio.wait((pending, runner), return_when=asyncio.FIRST_COMPLETED)
            if not pending.done():
                raise CallError(method, "server connection lost")
            return await pending
        except McpError as exc:
            raise CallError(method, exc.error.message, code=exc.error.code) from exc
        except _TRANSPORT_ERRORS:
            raise CallError(method, "server connection lost") from None
        finally:
            if not pending.done():
                pending.cancel()

    # -- requests --

    async def call(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """Send one request and return the raw result payload."""
        session = self._require_session(method)
        if self.convention is CallConvention.TOOLS:
            result: Any = await self._send(method, session.call_tool(method, params or {}))
        else:
            try:
                request = types.ClientRequest.model_validate({"method": method, "params": params})
            except ValidationError:
                raise CallError(method, "unsupported method or invalid params") from None
            result = await self._send(method, session.send_request(request, types.Result))
        return _dump(result)

    async def list_tools(self) -> list[dict[str, Any]]:
        """Tools declared by the server; empty when it has no tools capability."""
        if not self.capabilities["tools"]:
            return []
        session = self._require_session("tools/list")
        result = await self._send("tools/list", session.list_tools())
        return [_dump(tool) for tool in result.tools]

    async def list_resources(self) -> list[dict[str, Any]]:
        """Resources declared by the server; empty when it has no resources capability."""
        if not self.capabilities["resources"]:
            return []
        session = self._require_session("resources/list")
        result = await self._send("resources/list", session.list_resources())
        return [_dump(resource) for resource in result.resources]
