"""Connection registry — identity, per-connection data, outbound delivery.

Learn: The registry owns every Connection record and the transport used
to reach it. It knows nothing about subscriptions. Two rules matter:

1. send() treats "gone" specially — the connection is unregistered and
   the error is swallowed. Every other transport error reaches the caller.
2. close() never blocks and never fails visibly. It waits a short grace
   period (so a final error message can flush) and then hangs up in the
   background.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Optional

import structlog

from fanout.db.store import KeyValueStore, MemoryStore
from fanout.errors import ConnectionNotFoundError, StaleConnectionError
from fanout.realtime.transports import Payload, Transport
from fanout.schemas.connection import Connection, ConnectionData

logger = structlog.get_logger()


class ConnectionManager(ABC):
    """Capability interface for connection registries."""

    @abstractmethod
    async def hydrate_or_register(self, connection_id: str, endpoint: str) -> Connection:
        """Return the existing record or create an initialized one."""

    @abstractmethod
    async def hydrate(self, connection_id: str) -> Connection:
        """Return the record. Raises ConnectionNotFoundError if absent."""

    @abstractmethod
    async def register(self, connection_id: str, endpoint: str) -> Connection:
        """Create an uninitialized record, replacing any previous one."""

    @abstractmethod
    async def set_data(self, connection_id: str, data: ConnectionData) -> None:
        """Replace the connection's data payload."""

    @abstractmethod
    async def send(self, connection: Connection, payload: Payload) -> None:
        """Deliver a message; stale connections are pruned silently."""

    @abstractmethod
    async def unregister(self, connection: Connection) -> None:
        """Remove the record. Idempotent."""

    @abstractmethod
    async def close(self, connection: Connection) -> None:
        """Best-effort, fire-and-forget close."""


class GatewayConnectionManager(ConnectionManager):
    """Reference registry backed by a KeyValueStore and a Transport."""

    def __init__(
        self,
        transport: Transport,
        storage: Optional[KeyValueStore[Connection]] = None,
        *,
        close_grace_seconds: float = 0.01,
    ):
        self.transport = transport
        self.connections: KeyValueStore[Connection] = (
            storage if storage is not None else MemoryStore()
        )
        self.close_grace_seconds = close_grace_seconds
        self._closing: set[asyncio.Task] = set()

    async def hydrate_or_register(self, connection_id: str, endpoint: str) -> Connection:
        connection = await self.connections.get(connection_id)
        if connection is None:
            connection = Connection(
                id=connection_id,
                data=ConnectionData(endpoint=endpoint, is_initialized=True),
            )
            await self.connections.set(connection_id, connection)
            logger.debug("fanout.connection_hydrated", connection_id=connection_id)
        return connection

    async def hydrate(self, connection_id: str) -> Connection:
        connection = await self.connections.get(connection_id)
        if connection is None:
            raise ConnectionNotFoundError(f"Connection {connection_id} not found")
        return connection

    async def register(self, connection_id: str, endpoint: str) -> Connection:
        connection = Connection(
            id=connection_id,
            data=ConnectionData(endpoint=endpoint, is_initialized=False),
        )
        await self.connections.set(connection_id, connection)
        logger.info("fanout.connection_registered", connection_id=connection_id)
        return connection

    async def set_data(self, connection_id: str, data: ConnectionData) -> None:
        await self.connections.set(connection_id, Connection(id=connection_id, data=data))

    async def send(self, connection: Connection, payload: Payload) -> None:
        try:
            await self.transport.post(connection.id, connection.data.endpoint, payload)
        except StaleConnectionError:
            logger.info("fanout.connection_stale", connection_id=connection.id)
            await self.unregister(connection)

    async def unregister(self, connection: Connection) -> None:
        await self.connections.delete(connection.id)
        logger.info("fanout.connection_unregistered", connection_id=connection.id)

    async def close(self, connection: Connection) -> None:
        task = asyncio.create_task(self._close_later(connection))
        # Keep a reference so the task isn't garbage-collected mid-flight
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    async def _close_later(self, connection: Connection) -> None:
        await asyncio.sleep(self.close_grace_seconds)
        try:
            await self.transport.close(connection.id, connection.data.endpoint)
            logger.info("fanout.connection_closed", connection_id=connection.id)
        except Exception as e:
            logger.warning(
                "fanout.connection_close_failed",
                connection_id=connection.id,
                error=str(e),
            )
