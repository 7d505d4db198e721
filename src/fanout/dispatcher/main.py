"""Dispatcher entry point — run as a separate process.

Learn: The API process can dispatch on its own, but with the redis
storage backend and the gateway transport the dispatcher can run as its
own process (or several). Crash isolation: if a dispatcher dies, the
API keeps accepting connections and publishes.

Usage:
    python -m fanout.dispatcher.main

Or via the CLI:
    fanout-dispatcher
"""

import asyncio
import logging
import signal

from fanout.config import settings
from fanout.dispatcher.worker import EventWorker
from fanout.execution.engine import SchemaExecutor, load_schema
from fanout.realtime.pubsub import close_redis, init_redis
from fanout.server import build_server

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("fanout.dispatcher")


async def run():
    """Run the dispatcher until interrupted."""
    if settings.storage_backend != "redis":
        logger.warning(
            "Storage backend is %r — this process will not see subscriptions "
            "made in other processes",
            settings.storage_backend,
        )

    redis = await init_redis(settings.redis_url)
    server = build_server(
        settings,
        SchemaExecutor(load_schema(settings.schema_path)),
        redis=redis,
    )
    worker = EventWorker(server, redis, settings.events_channel)
    task = asyncio.create_task(worker.run())

    # Handle shutdown signals
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, task.cancel)

    logger.info("Dispatcher listening on %s", settings.events_channel)

    try:
        await task
    except asyncio.CancelledError:
        pass
    finally:
        transport = getattr(server.connection_manager, "transport", None)
        if hasattr(transport, "aclose"):
            await transport.aclose()
        await close_redis()
        logger.info("Dispatcher stopped. Stats: %s", worker.get_stats())


def main():
    """CLI entry point."""
    asyncio.run(run())


if __name__ == "__main__":
    main()
