"""Event worker — consumes the Redis events channel and dispatches.

Learn: The worker is the retrying-queue-consumer side of the contract.
Every message is classified at the boundary first:
- malformed → logged, counted, dropped (a producer bug, not retryable)
- transport frame → connection bookkeeping on the server
- application event → EventProcessor.dispatch (never raises)

One bad message never stops the loop.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

import redis.asyncio as aioredis
import structlog

from fanout.errors import MalformedEventError
from fanout.events.inbound import parse_inbound
from fanout.schemas.subscription import SubscriptionEvent
from fanout.server import Server

logger = structlog.get_logger()


@dataclass
class WorkerStats:
    """Runtime statistics for monitoring."""

    received: int = 0
    dispatched: int = 0
    rejected: int = 0
    errors: int = 0
    started_at: Optional[datetime] = None


class EventWorker:
    """Subscribe to the events channel and feed the dispatcher."""

    def __init__(self, server: Server, redis: aioredis.Redis, channel: str):
        self.server = server
        self.redis = redis
        self.channel = channel
        self.stats = WorkerStats()
        self._running = False

    async def handle_message(self, data: Any) -> None:
        """Process one raw channel message."""
        self.stats.received += 1

        try:
            inbound = parse_inbound(data)
        except MalformedEventError as e:
            logger.warning("fanout.event_rejected", channel=self.channel, error=str(e))
            self.stats.rejected += 1
            return

        try:
            if isinstance(inbound, SubscriptionEvent):
                await self.server.processor.dispatch(inbound, self.server)
            else:
                await self.server.handle_frame(inbound)
            self.stats.dispatched += 1
        except Exception:
            logger.exception("fanout.worker_message_failed", channel=self.channel)
            self.stats.errors += 1

    async def run(self) -> None:
        """Listen until stopped or cancelled."""
        pubsub = self.redis.pubsub()
        await pubsub.subscribe(self.channel)
        self._running = True
        self.stats.started_at = datetime.now(timezone.utc)
        logger.info("fanout.worker_started", channel=self.channel)

        try:
            async for message in pubsub.listen():
                if not self._running:
                    break
                if message["type"] == "message":
                    await self.handle_message(message["data"])
        except asyncio.CancelledError:
            pass
        finally:
            self._running = False
            await pubsub.unsubscribe(self.channel)
            await pubsub.aclose()
            logger.info("fanout.worker_stopped", **self.get_stats())

    def stop(self) -> None:
        self._running = False

    def get_stats(self) -> dict:
        """Return worker statistics for monitoring."""
        return {
            "received": self.stats.received,
            "dispatched": self.stats.dispatched,
            "rejected": self.stats.rejected,
            "errors": self.stats.errors,
            "started_at": (
                self.stats.started_at.isoformat() if self.stats.started_at else None
            ),
        }
