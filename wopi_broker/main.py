"""
FastAPI application entry point for the WOPI token broker.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .api.endpoints import router as wopi_router
from .api.error_handlers import register_error_handlers
from .infrastructure.config import settings
from .infrastructure.dependencies import cleanup_services, get_cleanup
from .infrastructure.structured_logger import LoggingMiddleware

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifecycle events
    """
    # Startup
    logger.info("Starting WOPI broker...")
    await get_cleanup().start()

    yield

    # Shutdown
    try:
        await cleanup_services()
    except Exception as e:
        logger.warning(f"Failed to cleanup WOPI services: {e}")
    logger.info("WOPI broker stopped")


def create_app() -> FastAPI:
    app = FastAPI(
        title="WOPI Token Broker",
        description="Issues and federates WOPI access tokens for an online document editor",
        version="1.0.0",
        lifespan=lifespan,
        debug=settings.environment == "development",
    )

    # Add structured logging middleware
    app.add_middleware(LoggingMiddleware)

    app.include_router(wopi_router)
    register_error_handlers(app)

    @app.get("/health")
    async def health_check():
        """Health check endpoint for Docker and monitoring"""
        return {
            "status": "healthy",
            "service": settings.service_name,
        }

    return app


app = create_app()
