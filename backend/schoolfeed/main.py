import asyncio
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from typing import Optional

from schoolfeed.core.config import settings
from schoolfeed.core.logging_config import logger
from schoolfeed.core.middleware import RequestLoggingMiddleware
from schoolfeed.api.v1.router import api_router
from schoolfeed.services.feed_registry import FeedRegistry
from schoolfeed.services.runtime import FeedRuntime


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown"""
    logger.info("=" * 60)
    logger.info(f"Starting {settings.APP_NAME}...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Store: {settings.FEED_STORE_BACKEND}, realtime: {settings.REALTIME_BACKEND}")
    logger.info("=" * 60)

    runtime: Optional[FeedRuntime] = None
    if getattr(app.state, "feed_registry", None) is None:
        runtime = await FeedRuntime.build(settings)
        app.state.feed_registry = runtime.registry(settings)

    sweeper: Optional[asyncio.Task] = None
    if app.state.feed_registry.idle_ttl and settings.FEED_SWEEP_INTERVAL > 0:
        sweeper = asyncio.create_task(app.state.feed_registry.run_sweeper(settings.FEED_SWEEP_INTERVAL))

    yield

    logger.info(f"Shutting down {settings.APP_NAME}...")
    if sweeper is not None:
        sweeper.cancel()
        try:
            await sweeper
        except asyncio.CancelledError:
            pass
    await app.state.feed_registry.close_all()
    if runtime is not None:
        await runtime.close()


def create_app(feed_registry: Optional[FeedRegistry] = None) -> FastAPI:
    """
    Build the API application.

    A prebuilt `feed_registry` skips runtime construction at startup.
    """
    app = FastAPI(
        title=settings.APP_NAME,
        description="Unified notification feed for the school dashboard",
        version="1.0.0",
        docs_url="/docs" if settings.is_dev_mode() else None,
        redoc_url=None,
        lifespan=lifespan,
        redirect_slashes=False,
    )
    app.state.feed_registry = feed_registry

    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Global exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "detail": "Internal server error",
                "message": str(exc) if settings.DEBUG else "An error occurred"
            }
        )

    app.include_router(api_router, prefix=f"/api/{settings.API_VERSION}")
    return app
