"""Server catalog route handlers."""

from __future__ import annotations

from typing import Any

from fastapi.responses import JSONResponse

from tether.catalog import get_server, list_servers
from tether.routes.common import _error_response


def create_router() -> Any:
    from fastapi import APIRouter

    router = APIRouter(prefix="/catalog")

    @router.get("/servers")
    async def api_catalog_servers() -> JSONResponse:
        return JSONResponse({"servers": list_servers()})

    @router.get("/servers/{server_id}")
    async def api_catalog_server(server_id: str) -> JSONResponse:
        try:
            server = get_server(server_id)
        except KeyError:
            return _error_response(f"Unknown server: {server_id}", "NOT_FOUND", 404)
        return JSONResponse(server.to_dict())

    return router
