"""Subscription index — event name → subscribers.

Learn: Every entry is filed under a "tenant-scoped key". Two injected
pure functions produce it:

- name_from_connection(name, connection) — at subscribe time
  (default: the name itself)
- name_from_event(event) — at lookup time (default: event.event)

Prefixing both with a tenant id partitions one index into many logical
namespaces without touching any call site.

Lists are copy-on-write: a mutation stores a new list, so a batch that a
dispatch already holds is never changed under it.
"""

from abc import ABC, abstractmethod
from typing import Callable, Iterable, Optional

import structlog

from fanout.db.store import KeyValueStore, MemoryStore
from fanout.schemas.connection import Connection
from fanout.schemas.subscription import OperationRequest, Subscriber, SubscriptionEvent
from fanout.streams import OneShotStream

logger = structlog.get_logger()

NameFromEvent = Callable[[SubscriptionEvent], str]
NameFromConnection = Callable[[str, Connection], str]


def default_name_from_event(event: SubscriptionEvent) -> str:
    return event.event


def default_name_from_connection(name: str, connection: Connection) -> str:
    return name


class SubscriptionManager(ABC):
    """Capability interface for subscription indexes."""

    @abstractmethod
    def subscribers_by_event(
        self, event: SubscriptionEvent
    ) -> OneShotStream[list[Subscriber]]:
        """One-shot stream of subscriber batches for the event."""

    @abstractmethod
    async def subscribe(
        self,
        names: Iterable[str],
        connection: Connection,
        operation: OperationRequest,
        operation_id: str,
    ) -> None:
        """File the operation under each name, at most once per connection."""

    @abstractmethod
    async def unsubscribe(self, subscriber: Subscriber) -> None:
        """Drop the subscriber's connection from subscriber.event."""

    @abstractmethod
    async def unsubscribe_operation(self, connection_id: str, operation_id: str) -> None:
        """Drop one operation of one connection, across all keys."""

    @abstractmethod
    async def unsubscribe_all_by_connection_id(self, connection_id: str) -> None:
        """Drop every entry of the connection, across all keys."""


class SubscriptionIndex(SubscriptionManager):
    """Reference index backed by a KeyValueStore of subscriber lists."""

    def __init__(
        self,
        *,
        name_from_event: Optional[NameFromEvent] = None,
        name_from_connection: Optional[NameFromConnection] = None,
        storage: Optional[KeyValueStore[list[Subscriber]]] = None,
    ):
        self.subscriptions: KeyValueStore[list[Subscriber]] = (
            storage if storage is not None else MemoryStore()
        )
        self.name_from_event = name_from_event or default_name_from_event
        self.name_from_connection = name_from_connection or default_name_from_connection

    def subscribers_by_event(
        self, event: SubscriptionEvent
    ) -> OneShotStream[list[Subscriber]]:
        """Yield the current subscribers as exactly one batch.

        Learn: The key is computed and the list read when iteration starts,
        not when this method is called. The batch is a snapshot; later
        subscribe/unsubscribe calls do not affect it.
        """

        async def load() -> list[list[Subscriber]]:
            name = self.name_from_event(event)
            subscribers = await self.subscriptions.get(name) or []
            return [[s for s in subscribers if s.event == name]]

        return OneShotStream(loader=load)

    async def subscribe(
        self,
        names: Iterable[str],
        connection: Connection,
        operation: OperationRequest,
        operation_id: str,
    ) -> None:
        for requested in names:
            name = self.name_from_connection(requested, connection)
            subscribers = await self.subscriptions.get(name) or []

            if any(s.connection.id == connection.id for s in subscribers):
                continue

            subscriber = Subscriber(
                connection=connection,
                operation=operation,
                operation_id=operation_id,
                event=name,
            )
            await self.subscriptions.set(name, [*subscribers, subscriber])
            logger.debug(
                "fanout.subscribed",
                key=name,
                connection_id=connection.id,
                operation_id=operation_id,
            )

    async def unsubscribe(self, subscriber: Subscriber) -> None:
        connection_id = subscriber.connection.id
        await self._remove_where(subscriber.event, lambda s: s.connection.id == connection_id)

    async def unsubscribe_operation(self, connection_id: str, operation_id: str) -> None:
        for name in await self.subscriptions.keys():
            await self._remove_where(
                name,
                lambda s: s.connection.id == connection_id and s.operation_id == operation_id,
            )

    async def unsubscribe_all_by_connection_id(self, connection_id: str) -> None:
        for name in await self.subscriptions.keys():
            await self._remove_where(name, lambda s: s.connection.id == connection_id)
        logger.debug("fanout.unsubscribed_all", connection_id=connection_id)

    async def _remove_where(self, name: str, matches: Callable[[Subscriber], bool]) -> None:
        """Store the entries under name that don't match; drop the key when empty."""
        subscribers = await self.subscriptions.get(name)
        if not subscribers:
            return

        remaining = [s for s in subscribers if not matches(s)]
        if len(remaining) == len(subscribers):
            return
        if remaining:
            await self.subscriptions.set(name, remaining)
        else:
            await self.subscriptions.delete(name)
