"""HTTP API for the tether helper.

Local web server that lets a browser-based client manage MCP server
subprocesses, secrets referenced by their launch arguments, and read-only
file access under a configured root.

Every route requires the helper's bearer token (``Authorization: Bearer``
or ``X-Api-Key``) except ``/health`` and ``/config/public``. CORS admits
the configured origins plus any loopback origin.

State is explicit: ``create_app()`` stores the config, secret store and
session registry on ``app.state`` and route dependencies read them from
there. The lifespan closes every MCP session on shutdown, bounded by
``shutdown_timeout``; uvicorn maps SIGINT/SIGTERM onto that shutdown.

Usage:
    tether serve                      # http://127.0.0.1:9000
    tether serve --port 9100          # Custom port
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import secrets
import time
from collections.abc import AsyncIterator
from typing import Any

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request

from tether import __version__
from tether.config import LOOPBACK_ORIGIN_REGEX, HelperConfig
from tether.routes import catalog as catalog_routes
from tether.routes import files as files_routes
from tether.routes import mcp as mcp_routes
from tether.routes import vault as vault_routes
from tether.routes.common import _error_response
from tether.sessions import SessionRegistry, mcp_client_factory
from tether.vault import SecretStore

logger = logging.getLogger(__name__)

PUBLIC_PATHS = frozenset({"/health", "/config/public"})


def _presented_token(request: Request) -> str:
    header = request.headers.get("authorization", "")
    scheme, _, credentials = header.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return request.headers.get("x-api-key", "")


class TokenAuthMiddleware(BaseHTTPMiddleware):
    """Reject requests that do not present the helper token."""

    def __init__(self, app: Any, *, token: str) -> None:
        super().__init__(app)
        self._token = token

    async def dispatch(self, request: Request, call_next: Any) -> Any:
        if request.method == "OPTIONS" or request.url.path in PUBLIC_PATHS:
            return await call_next(request)
        presented = _presented_token(request)
        if not presented or not secrets.compare_digest(presented.encode(), self._token.encode()):
            return _error_response("Unauthorized", "UNAUTHORIZED", 401)
        return await call_next(request)


def create_app(
    config: HelperConfig,
    *,
    store: SecretStore | None = None,
    registry: SessionRegistry | None = None,
) -> FastAPI:
    """Create the FastAPI application.

    *store* and *registry* default to ones built from *config*; tests pass
    their own to isolate state.
    """
    if store is None:
        store = SecretStore(config.vault_path)
    if registry is None:
        registry = SessionRegistry(
            store,
            client_factory=mcp_client_factory(handshake_timeout=config.handshake_timeout),
            call_timeout=config.call_timeout,
        )
    started = time.monotonic()

    @contextlib.asynccontextmanager
    async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        logger.info("helper_shutdown", extra={"args_data": {"sessions": registry.ids()}})
        try:
            await asyncio.wait_for(registry.shutdown_all(), config.shutdown_timeout)
        except TimeoutError:
            logger.error("Session shutdown sweep exceeded %.1fs; exiting anyway", config.shutdown_timeout)

    app = FastAPI(title="Tether", version=__version__, docs_url=None, redoc_url=None, lifespan=_lifespan)
    app.state.config = config
    app.state.store = store
    app.state.registry = registry

    # Starlette runs the last-added middleware first: CORS must wrap auth so
    # preflights and 401s still carry CORS headers.
    app.add_middleware(TokenAuthMiddleware, token=config.token)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.allowed_origins,
        allow_origin_regex=LOOPBACK_ORIGIN_REGEX,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Api-Key"],
    )

    app.include_router(catalog_routes.create_router())
    app.include_router(vault_routes.create_router())
    app.include_router(files_routes.create_router())
    app.include_router(mcp_routes.create_router())

    @app.get("/health")
    async def api_health() -> JSONResponse:
        return JSONResponse(
            {
                "ok": True,
                "version": __version__,
                "uptime": round(time.monotonic() - started, 3),
                "sessions": len(registry),
            }
        )

    @app.get("/config/public")
    async def api_public_config() -> JSONResponse:
        """Pairing info for the local web client (loopback binding only)."""
        return JSONResponse(
            {
                "token": config.token,
                "allowedOrigins": config.allowed_origins,
                "configPath": str(config.config_path),
            }
        )

    return app


def main(config: HelperConfig) -> None:
    """Start the helper server (blocks until SIGINT/SIGTERM)."""
    import uvicorn

    from tether.logging import setup_logging

    setup_logging(config.data_dir)
    app = create_app(config)
    logger.info("helper_start", extra={"args_data": {"host": config.host, "port": config.port, "fs_root": str(config.fs_root)}})

    print(f"Tether helper: http://{config.host}:{config.port}")
    print(f"Token (for manual pairing): {config.token}")
    uvicorn.run(app, host=config.host, port=config.port, log_level="warning")
