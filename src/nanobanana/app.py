"""FastAPI application factory."""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from nanobanana.api.routes import images
from nanobanana.core.config import Settings, configure_logging
from nanobanana.core.database import setup_db_session
from nanobanana.services.image_generation.gemini_client import GeminiClient
from nanobanana.uow import create_uow_factory

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    - Startup: configure logging, create the database session factory and the
      Gemini client (a missing API key fails startup)
    - Shutdown: close the provider HTTP client and dispose of the connection pool
    """
    settings: Settings = app.state.settings
    configure_logging(settings)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)

    app.state.session_factory = session_factory
    app.state.uow_factory = create_uow_factory(session_factory)
    gemini_client = GeminiClient(settings.gemini_config(), name=settings.provider_name)
    app.state.image_provider = gemini_client

    logger.info(
        "application.startup",
        db_url=settings.database_url.split("@")[-1],
        provider=settings.provider_name,
        provider_url=settings.gemini_api_base_url,
    )

    yield

    logger.info("application.shutdown")
    await gemini_client.aclose()
    await session_factory.kw["bind"].dispose()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        settings: Settings to use (default: loaded from environment)

    Returns:
        Configured FastAPI application instance
    """
    settings = settings or Settings()  # type: ignore[call-arg]

    app = FastAPI(
        title="Nano Banana Image Proxy",
        description="Cached Gemini image generation for <img> tags and demo apps",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            "X-Cache-Status",
            "X-Image-Id",
            "X-Generated-At",
            "X-Operation",
            "X-Credits-Used",
            "X-Fallback-Type",
        ],
    )

    app.include_router(images.router)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.error(
            "request.unhandled_exception",
            path=request.url.path,
            error_type=type(exc).__name__,
            exc_info=exc,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error"},
        )

    @app.get("/health")
    async def health_check(response: Response):
        """Health check endpoint with database connectivity test.

        Returns:
            200: {"status": "healthy"} if database connection succeeds
            503: {"status": "unhealthy", "error": {...}} if database connection fails
        """
        try:
            async with app.state.session_factory() as session:
                result = await session.execute(text("SELECT 1"))
                result.scalar()

            logger.debug("health_check.success")
            return {"status": "healthy"}

        except Exception as e:
            logger.error(
                "health_check.failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return {
                "status": "unhealthy",
                "error": {"type": type(e).__name__},
            }

    return app


# Create app instance for uvicorn
app = create_app()
