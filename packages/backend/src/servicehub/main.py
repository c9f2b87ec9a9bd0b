"""FastAPI application factory.

Learn: create_app() returns a configured FastAPI instance. The lifespan
builds the two long-lived objects every view shares:

- app.state.registry: ChannelHandleRegistry over the Redis change feed
- app.state.store: SqlRecordStore over the async session factory

If Redis is down at startup the API still serves (REST keeps working)
and /ws refuses connections until a restart finds Redis again.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from servicehub import __version__
from servicehub.api import api_router
from servicehub.config import settings

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle."""
    logger.info(
        "servicehub.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
    )

    from servicehub.db.engine import async_session_factory, engine
    from servicehub.realtime.feed import RedisChangeFeed
    from servicehub.realtime.pubsub import close_redis, init_redis
    from servicehub.realtime.registry import ChannelHandleRegistry
    from servicehub.realtime.store import SqlRecordStore

    app.state.store = SqlRecordStore(async_session_factory)
    app.state.registry = None
    try:
        redis = await init_redis()
        app.state.registry = ChannelHandleRegistry.from_settings(RedisChangeFeed(redis))
        logger.info("servicehub.redis_connected", url=settings.redis_url)
    except Exception as e:
        logger.warning("servicehub.redis_unavailable", error=str(e))

    yield

    logger.info("servicehub.shutdown")
    await close_redis()
    await engine.dispose()


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    app = FastAPI(
        title="ServiceHub Live",
        description="Live notifications and alert aggregation for the ServiceHub marketplace",
        version=__version__,
        lifespan=lifespan,
    )

    # Starlette runs middleware in reverse registration order:
    # RequestId → Security → CORS → handler
    from servicehub.middleware.request_id import RequestIdMiddleware
    from servicehub.middleware.security import SecurityHeadersMiddleware

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)

    from servicehub.realtime.websocket import router as ws_router
    app.include_router(ws_router)

    return app


# Default app instance (uvicorn servicehub.main:app)
app = create_app()
