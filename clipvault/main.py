"""
FastAPI application entry point.

Application factory pattern (create_app) so tests can build an app with
their own settings and overrides.

For local development:
    uvicorn clipvault.main:app --reload

For production:
    gunicorn clipvault.main:app -w 4 -k uvicorn.workers.UvicornWorker
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api.dependencies import build_frame_extractor, build_object_store, ensure_video_schema
from .api.routes import health, videos
from .config.settings import Settings, get_settings
from .infrastructure.snowflake.client import SnowflakeConnectionError

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=logging.INFO,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup/shutdown hook.

    Builds the long-lived collaborators and makes sure the bucket and the
    videos table exist before the first upload is accepted. Provisioning
    happens here exactly once per process, never per request.
    """
    settings: Settings = app.state.settings

    logger.info(
        "ClipVault API starting",
        extra={
            "version": settings.api_version,
            "mock_mode": {
                "snowflake": settings.snowflake_mock_mode,
                "storage": settings.storage_mock_mode,
                "video": settings.video_mock_mode,
            }
        }
    )

    missing_fields = settings.validate_required_fields()
    if missing_fields:
        logger.error(
            "Missing required configuration",
            extra={"missing_fields": missing_fields}
        )

    if getattr(app.state, "object_store", None) is None:
        app.state.object_store = build_object_store(settings)
    if getattr(app.state, "frame_extractor", None) is None:
        app.state.frame_extractor = build_frame_extractor(settings)

    await app.state.object_store.ensure_bucket()

    if not missing_fields:
        try:
            await asyncio.to_thread(ensure_video_schema, settings)
        except SnowflakeConnectionError as e:
            logger.error("Could not prepare videos table", extra={"error": str(e)})

    yield

    logger.info("ClipVault API shutting down")


def create_app(settings: Settings | None = None) -> FastAPI:
    """
    Application factory.

    Args:
        settings: Explicit settings (tests); defaults to get_settings()
    """
    settings = settings or get_settings()
    logging.getLogger().setLevel(settings.log_level.upper())

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        description="""
        Video ingestion service.

        Upload a video and get back public URLs for the original, a cover
        frame and a 320x180 thumbnail. Failed uploads leave nothing behind
        in object storage.
        """,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(
        health.router,
        prefix="/health",
        tags=["Health"],
    )

    app.include_router(
        videos.router,
        prefix="/api/v1/upload",
        tags=["Videos"],
    )

    @app.get("/", include_in_schema=False)
    async def root():
        return {
            "message": "ClipVault API",
            "version": settings.api_version,
            "docs": "/docs",
            "health": "/health",
        }

    @app.exception_handler(Exception)
    async def global_exception_handler(request, exc):
        """
        Catch-all exception handler.

        Logs the full error server-side but never leaks a stack trace to
        the client.
        """
        logger.error(
            "Unhandled exception",
            extra={
                "path": request.url.path,
                "method": request.method,
                "error": str(exc),
            },
            exc_info=exc,
        )

        return JSONResponse(
            status_code=500,
            content={
                "detail": "Internal server error. Please contact support if this persists."
            }
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "clipvault.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level=settings.log_level.lower(),
    )
