"""REST API — FastAPI app, error mapping, server handle."""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

if TYPE_CHECKING:
    from core.server import GameServer

log = logging.getLogger(__name__)

app = FastAPI(title="Dungeon Realm API", version="0.1.0")

# Server reference — set by start_api()
_server: GameServer | None = None


def get_server() -> GameServer:
    if _server is None:
        raise HTTPException(status_code=503, detail="Server not ready")
    return _server


def respond(payload: Any, status_code: int = 200) -> JSONResponse:
    """JSON response that tolerates datetimes and other non-JSON types."""
    return JSONResponse(jsonable_encoder(payload), status_code=status_code)


def api_errors(message: str) -> Callable:
    """Wrap a route: HTTP errors pass through, anything else is a logged 500."""

    def decorator(fn: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        @functools.wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return await fn(*args, **kwargs)
            except HTTPException:
                raise
            except Exception as exc:
                log.exception("%s", message)
                raise HTTPException(status_code=500, detail=message) from exc

        return wrapper

    return decorator


# ── Error rendering ───────────────────────────────────────────────

@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse({"error": exc.detail}, status_code=exc.status_code,
                        headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request,
                                   exc: RequestValidationError) -> JSONResponse:
    fields = [".".join(str(p) for p in err.get("loc", ())[1:]) for err in exc.errors()]
    return JSONResponse(
        {"error": "Missing or invalid fields", "fields": [f for f in fields if f]},
        status_code=400,
    )


@app.get("/api/health")
async def api_health() -> JSONResponse:
    """Liveness probe."""
    server = get_server()
    return JSONResponse({"status": "ok", "name": server.name})


# ── Server start/stop ──────────────────────────────────────────────

_server_task: asyncio.Task | None = None


async def start_api(server: GameServer, host: str = "0.0.0.0", port: int = 8080) -> None:
    """Start FastAPI server in background."""
    global _server, _server_task
    _server = server

    import uvicorn

    config = uvicorn.Config(
        app, host=host, port=port,
        log_level="warning",
        access_log=False,
    )
    uv_server = uvicorn.Server(config)
    _server_task = asyncio.create_task(uv_server.serve())
    log.info("API server starting on %s:%d", host, port)


async def stop_api() -> None:
    """Stop FastAPI server."""
    global _server, _server_task
    if _server_task:
        _server_task.cancel()
        try:
            await _server_task
        except asyncio.CancelledError:
            pass
        _server_task = None
    _server = None
    log.info("API server stopped")
