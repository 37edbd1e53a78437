"""FastAPI application setup with lifespan and exception handlers."""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from mvstudio import MissingCredentialError, __version__, resolve_api_key
from mvstudio.db import init_database, shutdown
from mvstudio.orchestrator.pipeline import ProjectRegistry
from mvstudio.api.routes import router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager.

    Startup:
        - Warn when no API key is configured (render endpoints return 400)
        - Initialize database schema
        - Create the project registry

    Shutdown:
        - Flush pending project saves
        - Close database connections
    """
    logger.info("Starting mvstudio API...")
    if not resolve_api_key():
        logger.warning("No Gemini API key configured; planning and rendering are disabled")
    await init_database()
    app.state.registry = ProjectRegistry()
    logger.info("API startup complete")

    yield

    logger.info("Shutting down mvstudio API...")
    await app.state.registry.close()
    await shutdown()
    logger.info("API shutdown complete")


app = FastAPI(
    title="mvstudio API",
    version=__version__,
    lifespan=lifespan,
)

# CORS for a local web player during development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)


@app.exception_handler(MissingCredentialError)
async def missing_credential_handler(request: Request, exc: MissingCredentialError):
    return JSONResponse(status_code=400, content={"error": "Missing credentials", "detail": str(exc)})


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Catch-all exception handler to prevent stack traces in API responses."""
    logger.error(f"Unhandled exception in {request.method} {request.url.path}: {type(exc).__name__}: {str(exc)}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": str(exc),
        }
    )
