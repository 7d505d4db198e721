"""Event processor — turns one inbound event into zero or more deliveries.

Learn: For every event:
1. Ask the subscription manager for the one-shot batch stream
2. Per batch, fan out concurrently — one branch per subscriber
3. Each branch: fresh single-event source → execute → take one result
4. A non-null result is wrapped in a DeliveryMessage and sent

Every branch is sealed. Execution, filter or send errors are wrapped
(ExecutionFailure / DeliveryFailure) and handed to on_error; they never
cancel a sibling branch and never escape dispatch(). That matters because
the caller is often a retrying queue consumer — raising would re-deliver
the event to every subscriber that already got it.
"""

import asyncio
import inspect
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Optional

import structlog

from fanout.errors import DeliveryFailure, ExecutionFailure
from fanout.events.types import GQL_DATA
from fanout.execution.source import SingleEventSource
from fanout.schemas.subscription import (
    DeliveryMessage,
    Subscriber,
    SubscriptionEvent,
    format_message,
)
from fanout.streams import OneShotStream

if TYPE_CHECKING:
    from fanout.server import Server

logger = structlog.get_logger()

OnError = Callable[[Exception], Any]

SENT = "sent"
SKIPPED = "skipped"
FAILED = "failed"


def log_error(error: Exception) -> None:
    """Default on_error sink — log with the exception attached."""
    logger.error("fanout.delivery_failed", error=str(error), exc_info=error)


@dataclass
class DispatchReport:
    """Outcome counts for one dispatch call."""

    sent: int = 0
    skipped: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.sent + self.skipped + self.failed


@dataclass
class ProcessorStats:
    """Cumulative counts for monitoring."""

    events: int = 0
    sent: int = 0
    skipped: int = 0
    failed: int = 0
    last_event_at: Optional[datetime] = None


class EventProcessor:
    """Fan an event out to its subscribers, isolating failures per branch."""

    def __init__(self, on_error: Optional[OnError] = None, debug: bool = False):
        self.on_error = on_error or log_error
        self.debug = debug
        self.stats = ProcessorStats()

    async def dispatch(self, event: SubscriptionEvent, server: "Server") -> DispatchReport:
        """Deliver event to every matching subscriber. Never raises."""
        report = DispatchReport()
        self.stats.events += 1
        self.stats.last_event_at = datetime.now(timezone.utc)

        try:
            batches = server.subscription_manager.subscribers_by_event(event)
            async for subscribers in batches:
                outcomes = await asyncio.gather(
                    *(self._deliver(event, server, subscriber) for subscriber in subscribers),
                    return_exceptions=True,
                )
                for subscriber, outcome in zip(subscribers, outcomes):
                    if isinstance(outcome, Exception):
                        # Escaped the branch's own handlers
                        await self._report(DeliveryFailure(subscriber, outcome))
                        outcome = FAILED
                    elif isinstance(outcome, BaseException):
                        raise outcome
                    setattr(report, outcome, getattr(report, outcome) + 1)
        except Exception as e:
            # Lookup failed before any branch started
            await self._report(e)

        self.stats.sent += report.sent
        self.stats.skipped += report.skipped
        self.stats.failed += report.failed

        if self.debug:
            logger.info(
                "fanout.event_dispatched",
                event_name=event.event,
                sent=report.sent,
                skipped=report.skipped,
                failed=report.failed,
            )
        return report

    async def _deliver(
        self,
        event: SubscriptionEvent,
        server: "Server",
        subscriber: Subscriber,
    ) -> str:
        """One subscriber's branch. Returns SENT, SKIPPED or FAILED."""
        source = SingleEventSource([event])

        try:
            context = await server.build_context(
                subscriber.connection, subscriber.operation, source
            )
            outcome = await server.executor.execute(subscriber.operation, context, source)
            if not isinstance(outcome, OneShotStream):
                # Operation could not run (validation errors etc.)
                logger.debug(
                    "fanout.execution_skipped",
                    connection_id=subscriber.connection.id,
                    operation_id=subscriber.operation_id,
                    result=repr(outcome),
                )
                return SKIPPED
            result = await outcome.first()
        except Exception as e:
            await self._report(ExecutionFailure(subscriber, e))
            return FAILED

        if result is None:
            return SKIPPED

        try:
            message = format_message(
                DeliveryMessage(id=subscriber.operation_id, payload=result, type=GQL_DATA)
            )
            if self.debug:
                logger.info(
                    "fanout.send_event",
                    connection_id=subscriber.connection.id,
                    operation_id=subscriber.operation_id,
                    message=message,
                )
            await server.connection_manager.send(subscriber.connection, message)
        except Exception as e:
            await self._report(DeliveryFailure(subscriber, e))
            return FAILED

        return SENT

    async def _report(self, error: Exception) -> None:
        try:
            outcome = self.on_error(error)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            logger.exception("fanout.on_error_failed", error=str(error))
