"""MCP session route handlers: connect, call, list, disconnect."""

from __future__ import annotations

import logging
from typing import Any

from fastapi.responses import JSONResponse
from starlette.requests import Request

from tether.client import CallError, HandshakeError, SpawnError
from tether.placeholders import MissingSecretError
from tether.routes.common import _error_response, _get_registry, _parse_json_body
from tether.sessions import CallTimeoutError, SessionNotFoundError, SessionRegistry

logger = logging.getLogger(__name__)


def _normalize_server_args(raw: Any) -> list[str] | None:
    """Accept a list of strings, a single string, or nothing. ``None`` means invalid."""
    if raw is None:
        return []
    if isinstance(raw, str):
        return [raw]
    if isinstance(raw, list) and all(isinstance(item, str) for item in raw):
        return raw
    return None


def _not_found(client_id: str) -> JSONResponse:
    return _error_response(f"MCP client not found: {client_id}", "NOT_FOUND", 404, {"clientId": client_id})


def create_router() -> Any:
    """Build the APIRouter for MCP session endpoints.

    Handlers catch the registry's domain errors and map them to the shared
    error envelope. Internal failure text is logged, not returned.
    """
    from fastapi import APIRouter, Depends

    router = APIRouter(prefix="/mcp")

    @router.post("/connect")
    async def api_connect(request: Request, registry: SessionRegistry = Depends(_get_registry)) -> JSONResponse:
        """Spawn an MCP server for ``clientId``, replacing any existing session."""
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        server_path = body.get("serverPath")
        client_id = body.get("clientId")
        if not isinstance(server_path, str) or not server_path or not isinstance(client_id, str) or not client_id:
            return _error_response("serverPath and clientId are required", "VALIDATION_ERROR", 400)
        server_args = _normalize_server_args(body.get("serverArgs"))
        if server_args is None:
            return _error_response("serverArgs must be a string or a list of strings", "VALIDATION_ERROR", 400)

        try:
            session = await registry.connect(client_id, server_path, server_args)
        except MissingSecretError as e:
            return _error_response(str(e), "MISSING_SECRET", 400, {"name": e.name})
        except SpawnError:
            return _error_response("Failed to start MCP server", "SPAWN_FAILED", 500)
        except HandshakeError:
            return _error_response("MCP server did not complete the handshake", "HANDSHAKE_FAILED", 500)
        except OSError:
            logger.error("Vault read failed during connect", exc_info=True)
            return _error_response("Failed to read secret store", "VAULT_IO_ERROR", 500)
        return JSONResponse({"success": True, "clientId": client_id, "server": session.client.server_info})

    @router.post("/call/{client_id}")
    async def api_call(client_id: str, request: Request, registry: SessionRegistry = Depends(_get_registry)) -> JSONResponse:
        """Invoke one method on the session's MCP server."""
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        method = body.get("method")
        params = body.get("params")
        if not isinstance(method, str) or not method:
            return _error_response("method is required", "VALIDATION_ERROR", 400)
        if params is not None and not isinstance(params, dict):
            return _error_response("params must be a JSON object", "VALIDATION_ERROR", 400)

        try:
            result = await registry.call(client_id, method, params)
        except SessionNotFoundError:
            return _not_found(client_id)
        except CallTimeoutError as e:
            return _error_response("MCP request timed out", "TIMEOUT", 504, {"timeoutSeconds": e.timeout})
        except CallError as e:
            return _error_response("MCP call failed", "CALL_FAILED", 502, {"method": e.method, "mcpCode": e.code})
        return JSONResponse({"success": True, "result": result})

    @router.get("/tools/{client_id}")
    async def api_list_tools(client_id: str, registry: SessionRegistry = Depends(_get_registry)) -> JSONResponse:
        try:
            tools = await registry.list_tools(client_id)
        except SessionNotFoundError:
            return _not_found(client_id)
        except CallError:
            return _error_response("Failed to list tools", "CALL_FAILED", 502)
        return JSONResponse({"success": True, "tools": tools})

    @router.get("/resources/{client_id}")
    async def api_list_resources(client_id: str, registry: SessionRegistry = Depends(_get_registry)) -> JSONResponse:
        try:
            resources = await registry.list_resources(client_id)
        except SessionNotFoundError:
            return _not_found(client_id)
        except CallError:
            return _error_response("Failed to list resources", "CALL_FAILED", 502)
        return JSONResponse({"success": True, "resources": resources})

    @router.delete("/disconnect/{client_id}")
    async def api_disconnect(client_id: str, registry: SessionRegistry = Depends(_get_registry)) -> JSONResponse:
        try:
            await registry.disconnect(client_id)
        except SessionNotFoundError:
            return _not_found(client_id)
        return JSONResponse({"success": True})

    @router.get("/sessions")
    async def api_sessions(registry: SessionRegistry = Depends(_get_registry)) -> JSONResponse:
        """Live sessions with their raw (unresolved) launch arguments."""
        return JSONResponse({"sessions": [s.to_dict() for s in registry.sessions()]})

    return router
