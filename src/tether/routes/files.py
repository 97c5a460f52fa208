"""Read-only filesystem route handlers, confined to the configured root."""

from __future__ import annotations

import logging
from typing import Any

from fastapi.responses import JSONResponse
from starlette.requests import Request

from tether.config import HelperConfig
from tether.files import FileTooLargeError, PathEscapeError, list_dir, read_file
from tether.routes.common import _error_response, _get_config

logger = logging.getLogger(__name__)


def _path_param(request: Request) -> str:
    params = request.query_params
    return params.get("path") or params.get("p") or ""


def create_router() -> Any:
    """Build the APIRouter for ``/fs`` endpoints."""
    from fastapi import APIRouter, Depends

    router = APIRouter(prefix="/fs")

    @router.get("/list")
    async def api_list_dir(request: Request, config: HelperConfig = Depends(_get_config)) -> JSONResponse:
        rel = _path_param(request) or "."
        try:
            listing = list_dir(config.fs_root, rel)
        except PathEscapeError:
            return _error_response("Path escapes the browsing root", "VALIDATION_ERROR", 400, {"path": rel})
        except FileNotFoundError:
            return _error_response(f"Not found: {rel}", "NOT_FOUND", 404, {"path": rel})
        except ValueError as e:
            return _error_response(str(e), "VALIDATION_ERROR", 400, {"path": rel})
        except OSError:
            logger.warning("Directory listing failed for %s", rel, exc_info=True)
            return _error_response("Failed to read directory", "FS_ERROR", 500, {"path": rel})
        return JSONResponse(listing)

    @router.get("/get")
    async def api_get_file(request: Request, config: HelperConfig = Depends(_get_config)) -> JSONResponse:
        rel = _path_param(request)
        if not rel:
            return _error_response("path query parameter is required", "VALIDATION_ERROR", 400)
        try:
            payload = read_file(config.fs_root, rel, max_bytes=config.fs_max_read_bytes)
        except PathEscapeError:
            return _error_response("Path escapes the browsing root", "VALIDATION_ERROR", 400, {"path": rel})
        except FileTooLargeError as e:
            return _error_response("File too large", "FILE_TOO_LARGE", 413, {"size": e.size, "max": e.max_bytes})
        except FileNotFoundError:
            return _error_response(f"Not found: {rel}", "NOT_FOUND", 404, {"path": rel})
        except ValueError as e:
            return _error_response(str(e), "VALIDATION_ERROR", 400, {"path": rel})
        except OSError:
            logger.warning("File read failed for %s", rel, exc_info=True)
            return _error_response("Failed to read file", "FS_ERROR", 500, {"path": rel})
        return JSONResponse(payload)

    return router
