"""Secret store route handlers. Values can be written and deleted, never read back."""

from __future__ import annotations

import logging
from typing import Any

from fastapi.responses import JSONResponse
from starlette.requests import Request

from tether.routes.common import _error_response, _get_store, _parse_json_body
from tether.vault import SecretStore

logger = logging.getLogger(__name__)


def _vault_io_error(action: str) -> JSONResponse:
    logger.error("Vault %s failed", action, exc_info=True)
    return _error_response(f"Failed to {action} secret", "VAULT_IO_ERROR", 500)


def create_router() -> Any:
    """Build the APIRouter for ``/vault`` endpoints."""
    from fastapi import APIRouter, Depends

    router = APIRouter(prefix="/vault")

    @router.get("")
    async def api_list_secrets(store: SecretStore = Depends(_get_store)) -> JSONResponse:
        """Stored secret names (never values)."""
        try:
            names = store.names()
        except OSError:
            return _vault_io_error("list")
        return JSONResponse({"names": names})

    @router.post("/{name}")
    async def api_set_secret(name: str, request: Request, store: SecretStore = Depends(_get_store)) -> JSONResponse:
        name = name.strip()
        if not name:
            return _error_response("name is required", "VALIDATION_ERROR", 400)
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        value = body.get("value")
        if not isinstance(value, str) or not value:
            return _error_response("value is required", "VALIDATION_ERROR", 400)
        try:
            store.set(name, value)
        except OSError:
            return _vault_io_error("store")
        return JSONResponse({"success": True})

    @router.delete("/{name}")
    async def api_delete_secret(name: str, store: SecretStore = Depends(_get_store)) -> JSONResponse:
        name = name.strip()
        if not name:
            return _error_response("name is required", "VALIDATION_ERROR", 400)
        try:
            store.delete(name)
        except OSError:
            return _vault_io_error("delete")
        return JSONResponse({"success": True})

    return router
