"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from postpartum_triage import __version__
from postpartum_triage.api.deps import ruleset_loader
from postpartum_triage.api.v1.router import api_router
from postpartum_triage.core.config import settings
from postpartum_triage.core.logging import setup_logging
from postpartum_triage.db.init_db import init_db
from postpartum_triage.services.case_store import CaseNotFoundError
from postpartum_triage.services.change_ledger import StorageError
from postpartum_triage.services.patches import PatchValidationError

# Setup logging
setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup and shutdown events."""
    # Startup
    logger.info(f"Starting Postpartum Triage API (env={settings.env})")

    # A broken ruleset must stop the service from starting
    rules = ruleset_loader.load(settings.ruleset_filename)
    logger.info(f"Active ruleset {rules.id} v{rules.version} (hash={rules.content_hash})")

    if settings.init_db_on_startup:
        logger.info("Initializing database...")
        await init_db(rules)

    yield

    # Shutdown
    logger.info("Shutting down Postpartum Triage API")


# Create FastAPI application
app = FastAPI(
    title="Postpartum Triage API",
    description="Deterministic postpartum safety triage with auditable case tracking",
    version=__version__,
    docs_url="/docs" if settings.is_dev else None,
    redoc_url="/redoc" if settings.is_dev else None,
    openapi_url="/openapi.json" if settings.is_dev else None,
    lifespan=lifespan,
)

# CORS middleware (configure appropriately for production)
if settings.is_dev:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://localhost:3001"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.exception_handler(PatchValidationError)
async def patch_validation_handler(request: Request, exc: PatchValidationError) -> JSONResponse:
    """Rejected patches never reach the database."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": exc.message, "errors": exc.errors},
    )


@app.exception_handler(CaseNotFoundError)
async def case_not_found_handler(request: Request, exc: CaseNotFoundError) -> JSONResponse:
    """Unknown case ids."""
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"detail": str(exc)},
    )


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    """Storage failures after rollback; the request may be retried."""
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Storage temporarily unavailable"},
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unhandled exceptions."""
    logger.exception(f"Unhandled exception: {exc}")

    # Don't expose internal errors in production
    if settings.is_prod:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal server error"},
        )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": str(exc)},
    )


# Include API router
app.include_router(api_router, prefix="/api/v1")


# Root endpoint
@app.get("/", include_in_schema=False)
async def root() -> dict:
    """Root endpoint redirect to docs."""
    return {
        "service": "Postpartum Triage API",
        "version": __version__,
        "docs": "/docs" if settings.is_dev else "Disabled in production",
    }
