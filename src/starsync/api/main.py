"""FastAPI application factory."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlmodel import SQLModel

from starsync.api.routes import settings as settings_routes, sync as sync_routes
from starsync.db.engine import get_engine
from starsync.db.gateway import DatabaseError

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    """Build and return the FastAPI app."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Create tables on startup (idempotent)
        SQLModel.metadata.create_all(get_engine())
        yield

    app = FastAPI(
        title="starsync API",
        description="Mirror GitHub stars and their recent activity",
        version="0.1.0",
        lifespan=lifespan,
    )

    @app.exception_handler(DatabaseError)
    async def database_error_handler(request: Request, exc: DatabaseError):
        logger.error("Database error on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=500, content={"error": str(exc)})

    app.include_router(sync_routes.router, prefix="/sync", tags=["sync"])
    app.include_router(settings_routes.router, prefix="/settings", tags=["settings"])

    return app


# Module-level app instance for uvicorn
app = create_app()
