"""Server — wires the registry, the index, the executor and the processor.

Learn: Nothing here is global. A Server is built once (see build_server)
and passed explicitly to whoever needs it: the websocket endpoint, the
HTTP API, the Redis worker, and EventProcessor.dispatch().

Besides wiring, the server owns connection-lifecycle bookkeeping and the
graphql-ws style subscription protocol:

    connection_init       → mark initialized, store payload as context, ack
    start {id, payload}   → resolve topics, subscribe
    stop {id}             → unsubscribe that one operation, complete
    connection_terminate  → drop all subscriptions + record, close
"""

from typing import Any, Awaitable, Callable, Optional, Union

import redis.asyncio as aioredis
import structlog
from pydantic import ValidationError

from fanout.config import Settings
from fanout.db.store import MemoryStore, RedisStore
from fanout.dispatcher.event_processor import DispatchReport, EventProcessor
from fanout.errors import ConnectionNotFoundError, ProtocolError
from fanout.events.inbound import TransportFrame, parse_inbound
from fanout.events.types import (
    GQL_COMPLETE,
    GQL_CONNECTION_ACK,
    GQL_CONNECTION_INIT,
    GQL_CONNECTION_TERMINATE,
    GQL_ERROR,
    GQL_START,
    GQL_STOP,
)
from fanout.execution.engine import Executor, maybe_await
from fanout.execution.source import SingleEventSource
from fanout.realtime.transports import (
    HttpGatewayTransport,
    LocalWebSocketTransport,
    Transport,
)
from fanout.schemas.connection import Connection, ConnectionData
from fanout.schemas.subscription import (
    OperationRequest,
    ProtocolMessage,
    Subscriber,
    SubscriptionEvent,
    format_message,
)
from fanout.services.connection_manager import ConnectionManager, GatewayConnectionManager
from fanout.services.subscription_manager import SubscriptionIndex, SubscriptionManager

logger = structlog.get_logger()

ContextFactory = Callable[
    [Connection, OperationRequest, SingleEventSource],
    Union[Optional[dict], Awaitable[Optional[dict]]],
]


class Server:
    """Explicitly-constructed container for the fanout components."""

    def __init__(
        self,
        *,
        connection_manager: ConnectionManager,
        subscription_manager: SubscriptionManager,
        executor: Executor,
        processor: Optional[EventProcessor] = None,
        context: Optional[ContextFactory] = None,
    ):
        self.connection_manager = connection_manager
        self.subscription_manager = subscription_manager
        self.executor = executor
        self.processor = processor or EventProcessor()
        self._context_factory = context

    # ─── Execution context ────────────────────────────────

    async def build_context(
        self,
        connection: Connection,
        operation: OperationRequest,
        source: SingleEventSource,
    ) -> dict[str, Any]:
        """Per-execution context: connection context + the optional factory's extras."""
        context = dict(connection.data.context)
        context.update(connection=connection, operation=operation, pubsub=source)
        if self._context_factory is not None:
            extra = await maybe_await(self._context_factory(connection, operation, source))
            context.update(extra or {})
        return context

    # ─── Boundary entry point ─────────────────────────────

    async def handle(self, raw: Any) -> Optional[DispatchReport]:
        """Route raw input. Raises MalformedEventError for unknown shapes."""
        inbound = parse_inbound(raw)
        if isinstance(inbound, SubscriptionEvent):
            return await self.processor.dispatch(inbound, self)
        await self.handle_frame(inbound)
        return None

    async def handle_frame(self, frame: TransportFrame) -> None:
        if frame.is_connect:
            await self.handle_connect(frame.connection_id, frame.endpoint)
        elif frame.is_disconnect:
            await self.handle_disconnect(frame.connection_id)
        else:
            await self.handle_message(frame.connection_id, frame.body or "")

    # ─── Connection lifecycle ─────────────────────────────

    async def handle_connect(self, connection_id: str, endpoint: str) -> Connection:
        return await self.connection_manager.register(connection_id, endpoint)

    async def handle_disconnect(self, connection_id: str) -> None:
        """Drop every subscription of the connection, then its record."""
        await self.subscription_manager.unsubscribe_all_by_connection_id(connection_id)
        try:
            connection = await self.connection_manager.hydrate(connection_id)
        except ConnectionNotFoundError:
            return
        await self.connection_manager.unregister(connection)

    # ─── Subscription protocol ────────────────────────────

    async def handle_message(self, connection_id: str, text: Union[str, bytes]) -> None:
        """Handle one client message.

        Raises ConnectionNotFoundError for unknown connections so the
        transport can terminate the session.
        """
        connection = await self.connection_manager.hydrate(connection_id)

        try:
            message = ProtocolMessage.model_validate_json(text)
        except ValidationError:
            await self._fail(connection, None, "Invalid message")
            return

        if message.type == GQL_CONNECTION_INIT:
            await self._on_init(connection, message)
        elif message.type == GQL_START:
            await self._on_start(connection, message)
        elif message.type == GQL_STOP:
            await self._on_stop(connection, message)
        elif message.type == GQL_CONNECTION_TERMINATE:
            await self.handle_disconnect(connection.id)
            await self.connection_manager.close(connection)
        else:
            await self._fail(connection, message.id, f"Unknown message type '{message.type}'")

    async def _on_init(self, connection: Connection, message: ProtocolMessage) -> None:
        context = message.payload if isinstance(message.payload, dict) else {}
        data = ConnectionData(
            endpoint=connection.data.endpoint,
            context=context,
            is_initialized=True,
        )
        await self.connection_manager.set_data(connection.id, data)
        await self._send(
            Connection(id=connection.id, data=data),
            ProtocolMessage(type=GQL_CONNECTION_ACK),
        )

    async def _on_start(self, connection: Connection, message: ProtocolMessage) -> None:
        if not connection.data.is_initialized:
            await self._fail(
                connection,
                message.id,
                "Prior to subscription you need to initialize the connection",
            )
            return

        if not message.id:
            await self._error(connection, None, "Start message requires an id")
            return

        try:
            operation = OperationRequest.model_validate(message.payload or {})
            context = await self.build_context(connection, operation, SingleEventSource([]))
            topics = self.executor.topics_for(operation, context)
        except (ValidationError, ProtocolError) as e:
            await self._error(connection, message.id, str(e))
            return

        await self.subscription_manager.subscribe(topics, connection, operation, message.id)
        logger.info(
            "fanout.operation_started",
            connection_id=connection.id,
            operation_id=message.id,
            topics=topics,
        )

    async def _on_stop(self, connection: Connection, message: ProtocolMessage) -> None:
        if message.id:
            await self.subscription_manager.unsubscribe_operation(connection.id, message.id)
        await self._send(connection, ProtocolMessage(type=GQL_COMPLETE, id=message.id))

    async def _send(self, connection: Connection, message: ProtocolMessage) -> None:
        await self.connection_manager.send(connection, format_message(message))

    async def _error(self, connection: Connection, message_id: Optional[str], reason: str) -> None:
        await self._send(
            connection,
            ProtocolMessage(type=GQL_ERROR, id=message_id, payload={"message": reason}),
        )

    async def _fail(self, connection: Connection, message_id: Optional[str], reason: str) -> None:
        """Send an error, then close once it had a chance to flush."""
        logger.warning("fanout.protocol_error", connection_id=connection.id, reason=reason)
        await self._error(connection, message_id, reason)
        await self.connection_manager.close(connection)


def build_server(
    config: Settings,
    executor: Executor,
    *,
    redis: Optional[aioredis.Redis] = None,
    transport: Optional[Transport] = None,
    processor: Optional[EventProcessor] = None,
    context: Optional[ContextFactory] = None,
) -> Server:
    """Assemble a Server from settings.

    Learn: storage_backend picks MemoryStore or RedisStore for both maps;
    transport picks the in-process websocket transport or the HTTP
    gateway. An explicit transport (tests, embedders) wins over settings.
    """
    if config.storage_backend == "redis":
        if redis is None:
            redis = aioredis.from_url(config.redis_url, decode_responses=True)
        connections = RedisStore(redis, f"{config.storage_prefix}connections:", Connection)
        subscriptions = RedisStore(
            redis, f"{config.storage_prefix}subscriptions:", list[Subscriber]
        )
    else:
        connections = MemoryStore()
        subscriptions = MemoryStore()

    if transport is None:
        if config.transport == "gateway":
            transport = HttpGatewayTransport(
                endpoint=config.gateway_endpoint,
                timeout=config.send_timeout_seconds,
                stale_status_code=config.stale_status_code,
            )
        else:
            transport = LocalWebSocketTransport()

    return Server(
        connection_manager=GatewayConnectionManager(
            transport,
            connections,
            close_grace_seconds=config.close_grace_seconds,
        ),
        subscription_manager=SubscriptionIndex(storage=subscriptions),
        executor=executor,
        processor=processor or EventProcessor(debug=config.debug),
        context=context,
    )
