"""
Knowledge Index Application Entry Point

This module defines the FastAPI application instance, registers all routers,
configures typed and global exception handling, and provides a test-friendly
application factory.

Design Goals
------------
- Deterministic startup
- One explicit service container per application
- Centralized router registration
- Global exception safety net
- Test-friendly via create_app()
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI

from .config import settings
from .core.errors import (
    CorruptIndexError,
    ProviderError,
    ValidationError,
    corrupt_index_handler,
    provider_error_handler,
    unhandled_exception_handler,
    validation_error_handler,
)
from .services import ServiceContainer, build_container

from .api import (
    health_routes,
    knowledge_routes,
    retrieval_routes,
    index_routes,
)


logger = logging.getLogger("kindex.app")


def configure_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


# ---------------------------------------------------------------------
# Application Factory (Test-Friendly)
# ---------------------------------------------------------------------

def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Parameters
    ----------
    container : Optional[ServiceContainer]
        Pre-built services. Tests pass one wired with an in-memory blob store
        and a stub embedder; production builds the default graph.

    Returns
    -------
    FastAPI
        Fully configured FastAPI application.
    """
    configure_logging()

    app = FastAPI(
        title="knowledge-index",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    app.state.container = container or build_container()

    # --------------------------------------------------------------
    # Exception Handling
    # --------------------------------------------------------------

    app.add_exception_handler(ValidationError, validation_error_handler)
    app.add_exception_handler(ProviderError, provider_error_handler)
    app.add_exception_handler(CorruptIndexError, corrupt_index_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # --------------------------------------------------------------
    # Router Registration
    # --------------------------------------------------------------

    app.include_router(health_routes.router)
    app.include_router(knowledge_routes.router)
    app.include_router(retrieval_routes.router)
    app.include_router(index_routes.router)

    # --------------------------------------------------------------
    # Startup Validation Hook
    # --------------------------------------------------------------

    @app.on_event("startup")
    async def _startup_validation() -> None:
        """
        Fail-fast validation at application startup, then warm the index
        cache so the first request does not pay for the load.
        """
        logger.info("Starting knowledge-index")

        if not settings.shared_secret.get_secret_value():
            raise RuntimeError("Config error: SHARED_SECRET is missing.")
        if not settings.openai_api_key.get_secret_value():
            raise RuntimeError("Config error: OPENAI_API_KEY is missing.")

        logger.info("Configuration validated successfully")

        await app.state.container.index.ensure_loaded()

    @app.on_event("shutdown")
    async def _shutdown_cleanup() -> None:
        logger.info("Shutting down knowledge-index")

    return app


# ---------------------------------------------------------------------
# Default Application Instance (for Uvicorn/Gunicorn)
# ---------------------------------------------------------------------

app = create_app()
