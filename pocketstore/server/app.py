"""FastAPI key-value server that devices sync against."""

import logging
import time
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse

from ..config import Config
from ..errors import StorageError
from .auth import Authorizer, TokenAuthorizer, can_access, is_shared_key
from .kv_store import FileKVStore

logger = logging.getLogger(__name__)


def create_app(
    config: Config,
    kv_store: FileKVStore | None = None,
    authorize: Authorizer | None = None,
) -> FastAPI:
    """Create the KV server application.

    Args:
        config: Application configuration.
        kv_store: Optional store; defaults to a FileKVStore in server.data_dir.
        authorize: Optional callable mapping a request to an email (or None).
            Defaults to bearer tokens from server.tokens.

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(
        title="Pocketstore KV",
        description="Key-value storage for pocketstore sync",
        version="0.1.0",
    )

    kv_store = kv_store or FileKVStore(config.server.data_dir)
    authorize = authorize or TokenAuthorizer(config.server.tokens)

    # Store references for route handlers
    app.state.config = config
    app.state.kv_store = kv_store

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            f"{request.method} {request.url.path} {response.status_code} "
            f"{duration_ms:.1f}ms"
        )
        return response

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError):
        logger.error(f"Storage failure on {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content={"detail": "Storage failure"})

    def _authorized(request: Request, key: str) -> str:
        email = authorize(request)
        if not email:
            raise HTTPException(status_code=401, detail="Not authenticated")
        if not can_access(email, key):
            logger.warning(f"Denied {email} access to {key}")
            raise HTTPException(status_code=403, detail="Forbidden")
        return email

    def _invalid_key(e: ValueError) -> HTTPException:
        return HTTPException(status_code=400, detail=str(e))

    # ==================== KV Routes ====================

    @app.get("/kv/{key:path}")
    async def kv_get(key: str, request: Request) -> Response:
        _authorized(request, key)
        try:
            value = kv_store.get(key)
        except ValueError as e:
            raise _invalid_key(e)
        if value is None:
            raise HTTPException(status_code=404, detail="Key not found")
        return Response(content=value, media_type="application/octet-stream")

    @app.put("/kv/{key:path}")
    async def kv_put(key: str, request: Request) -> dict[str, Any]:
        email = _authorized(request, key)
        body = await request.body()
        try:
            # Blobs are immutable: first write wins
            if is_shared_key(key):
                written = kv_store.put_if_absent(key, body)
            else:
                kv_store.put(key, body)
                written = True
        except ValueError as e:
            raise _invalid_key(e)

        if written:
            logger.debug(f"{email} wrote {key} ({len(body)} bytes)")
        return {"key": key, "written": written}

    @app.delete("/kv/{key:path}")
    async def kv_delete(key: str, request: Request) -> dict[str, Any]:
        _authorized(request, key)
        if is_shared_key(key):
            raise HTTPException(status_code=403, detail="Shared blobs cannot be deleted")
        try:
            deleted = kv_store.delete(key)
        except ValueError as e:
            raise _invalid_key(e)
        if not deleted:
            raise HTTPException(status_code=404, detail="Key not found")
        return {"key": key, "deleted": True}

    @app.get("/kvlist/{prefix:path}")
    async def kv_list(prefix: str, request: Request) -> dict[str, Any]:
        _authorized(request, prefix)
        try:
            keys = kv_store.list(prefix)
        except ValueError as e:
            raise _invalid_key(e)
        return {"keys": keys}

    # ==================== API Routes ====================

    @app.get("/api/health")
    async def api_health() -> dict[str, Any]:
        """Health check endpoint; needs no authentication."""
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": app.version,
        }

    return app
