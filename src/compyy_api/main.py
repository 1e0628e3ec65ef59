# src/compyy_api/main.py
"""Main entry point for the Compyy API."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from compyy_api.api.v1 import auth_router
from compyy_api.core.errors import register_exception_handlers
from compyy_api.core.logging_config import setup_logging
from compyy_api.core.middleware import SecurityHeadersMiddleware
from compyy_api.core.settings import settings
from compyy_api.db.session import create_tables
from compyy_api.services.rate_limiter import get_rate_limit_store

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Configure logging, create SQLite tables and open the rate limit storage."""
    setup_logging()
    if settings.database_url.startswith("sqlite"):
        create_tables()

    app.state.rate_limit_store = get_rate_limit_store()
    logger.info("%s %s started (%s)", settings.app_name, settings.app_version, settings.environment)
    try:
        yield
    finally:
        logger.info("%s shutting down", settings.app_name)


# Initialize FastAPI app
app = FastAPI(
    title="Compyy API",
    description="Authentication and session API for the Compyy teacher platform",
    version=settings.app_version,
    lifespan=lifespan,
)

register_exception_handlers(app)

app.add_middleware(SecurityHeadersMiddleware, hsts=settings.is_production)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Include API routers
app.include_router(auth_router, prefix="/api/v1")


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("compyy_api.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
