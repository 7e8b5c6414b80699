"""FastAPI application factory."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlmodel import SQLModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from wialon_sync.api.deps import get_db_engine
from wialon_sync.api.routes import discrepancies, rules, sync as sync_routes
from wialon_sync.config import get_settings
from wialon_sync.db.pagination import InvalidSortError

logger = logging.getLogger(__name__)


def _validation_message(exc: RequestValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(p) for p in error.get("loc", ()) if p not in ("body", "query"))
        parts.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return "Invalid request: " + "; ".join(parts)


def _install_error_handlers(app: FastAPI) -> None:
    """Every error leaves as {"success": false, "message": ...}, never a traceback."""

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "message": exc.detail},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"success": False, "message": _validation_message(exc)},
        )

    @app.exception_handler(InvalidSortError)
    async def sort_error(request: Request, exc: InvalidSortError):
        return JSONResponse(status_code=400, content={"success": False, "message": str(exc)})

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={"success": False, "message": "Internal server error"},
        )


def create_app() -> FastAPI:
    """Build and return the FastAPI app."""

    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Create tables on startup (idempotent); honours a test override of the engine
        engine = app.dependency_overrides.get(get_db_engine, get_db_engine)()
        SQLModel.metadata.create_all(engine)
        yield

    app = FastAPI(
        title="Wialon Sync API",
        description="Reconciliation of local clients and objects against Wialon",
        version="0.1.0",
        lifespan=lifespan,
    )
    _install_error_handlers(app)

    prefix = settings.api_prefix.rstrip("/")
    app.include_router(sync_routes.router, prefix=prefix, tags=["sync"])
    app.include_router(discrepancies.router, prefix=f"{prefix}/discrepancies", tags=["discrepancies"])
    app.include_router(rules.router, prefix=f"{prefix}/rules", tags=["rules"])

    return app


# Module-level app instance for uvicorn
app = create_app()
