"""FastAPI application factory."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from offsync.api.routes import records, sync as sync_routes
from offsync.db.store import StoreError
from offsync.service import close_service

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    """Build and return the FastAPI app. The service is resolved lazily per request."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await close_service()

    app = FastAPI(
        title="Offline Sync API",
        description="Offline-first record store with exactly-once remote sync",
        version="0.1.0",
        lifespan=lifespan,
    )

    @app.exception_handler(StoreError)
    async def store_error_handler(request: Request, exc: StoreError):
        logger.error("Store error on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    app.include_router(records.router, prefix="/records", tags=["records"])
    app.include_router(sync_routes.router, prefix="/sync", tags=["sync"])

    return app


# Module-level app instance for uvicorn
app = create_app()
