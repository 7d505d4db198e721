"""FastAPI application factory.

Learn: create_app() returns a configured FastAPI instance with its Server
on app.state. Lifespan manages the optional pieces (Redis + the event
worker); everything needed to accept connections and dispatch events
in-process exists before startup, so tests can pass their own Server.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from fanout import __version__
from fanout.api import api_router
from fanout.config import settings
from fanout.execution.engine import SchemaExecutor, load_schema
from fanout.server import Server, build_server

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` at shutdown.
    """
    logger.info(
        "fanout.starting",
        version=__version__,
        environment=settings.environment,
        storage=settings.storage_backend,
        transport=settings.transport,
    )

    from fanout.dispatcher.worker import EventWorker
    from fanout.realtime.pubsub import close_redis, init_redis

    worker_task = None
    try:
        redis = await init_redis(settings.redis_url)
        logger.info("fanout.redis_connected", url=settings.redis_url)
        worker = EventWorker(app.state.server, redis, settings.events_channel)
        worker_task = asyncio.create_task(worker.run())
    except Exception as e:
        logger.warning("fanout.redis_unavailable", error=str(e))
        # Redis is optional; events are dispatched in-process instead

    yield

    logger.info("fanout.shutdown")

    if worker_task is not None:
        worker_task.cancel()
        try:
            await worker_task
        except asyncio.CancelledError:
            pass

    transport = getattr(app.state.server.connection_manager, "transport", None)
    if hasattr(transport, "aclose"):
        await transport.aclose()

    await close_redis()


def create_app(server: Optional[Server] = None) -> FastAPI:
    """Build and return the FastAPI application."""
    app = FastAPI(
        title="Fanout",
        description="Subscription fanout — deliver published events to subscribed connections",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.server = server or build_server(
        settings,
        SchemaExecutor(load_schema(settings.schema_path)),
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Mount API routes
    app.include_router(api_router)

    # Mount WebSocket route
    from fanout.realtime.websocket import router as ws_router
    app.include_router(ws_router)

    return app


# Default app instance (used by uvicorn: fanout.main:app)
app = create_app()
