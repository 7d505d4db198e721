"""Test fixtures — in-memory registry/index and a recording transport.

Learn: Every test gets a fresh Server wired to:
- MemoryStore-backed registry and index (no Redis needed)
- RecordingTransport, which keeps every message instead of sending it,
  and can be told to report a connection as gone or broken
- a SchemaExecutor with a "chat" subscription filtered on payload type
"""

import json

import pytest
import pytest_asyncio

from fanout.dispatcher.event_processor import EventProcessor
from fanout.errors import StaleConnectionError, TransportError
from fanout.execution.engine import SchemaExecutor, SubscriptionSchema
from fanout.realtime.transports import Transport
from fanout.schemas.connection import Connection, ConnectionData
from fanout.server import Server
from fanout.services.connection_manager import GatewayConnectionManager
from fanout.services.subscription_manager import SubscriptionIndex


class RecordingTransport(Transport):
    """Transport double: records posts/closes, fails on demand."""

    def __init__(self):
        self.sent: list[tuple[str, str]] = []
        self.closed: list[str] = []
        self.stale: set[str] = set()
        self.broken: dict[str, Exception] = {}
        self.fail_close = False

    async def post(self, connection_id, endpoint, data):
        if connection_id in self.stale:
            raise StaleConnectionError(connection_id)
        if connection_id in self.broken:
            raise self.broken[connection_id]
        self.sent.append((connection_id, data))

    async def close(self, connection_id, endpoint):
        if self.fail_close:
            raise TransportError("close failed", status_code=500)
        self.closed.append(connection_id)

    def messages_for(self, connection_id: str) -> list[dict]:
        return [json.loads(data) for cid, data in self.sent if cid == connection_id]


def build_chat_schema() -> SubscriptionSchema:
    schema = SubscriptionSchema()

    @schema.subscription(
        "chat",
        topics=["chat"],
        filter=lambda root, args, ctx: root.get("type") == args.get("type", root.get("type")),
    )
    def chat(root, args, context):
        if context.get("explode"):
            raise ValueError(f"resolver exploded for {context['connection'].id}")
        return root

    @schema.subscription("news", topics=["news"])
    async def news(root, args, context):
        return {"headline": root}

    return schema


def make_connection(connection_id: str, **context) -> Connection:
    return Connection(
        id=connection_id,
        data=ConnectionData(endpoint="https://gw.test/prod", context=context, is_initialized=True),
    )


@pytest.fixture()
def transport():
    return RecordingTransport()


@pytest.fixture()
def connections(transport):
    return GatewayConnectionManager(transport, close_grace_seconds=0)


@pytest.fixture()
def subscriptions():
    return SubscriptionIndex()


@pytest.fixture()
def errors():
    """Every error handed to the processor's on_error."""
    return []


@pytest.fixture()
def processor(errors):
    return EventProcessor(on_error=errors.append)


@pytest.fixture()
def executor():
    return SchemaExecutor(build_chat_schema())


@pytest.fixture()
def server(connections, subscriptions, processor, executor):
    return Server(
        connection_manager=connections,
        subscription_manager=subscriptions,
        executor=executor,
        processor=processor,
    )


@pytest_asyncio.fixture()
async def registered(connections):
    """Factory: register + persist an initialized connection."""

    async def _register(connection_id: str, **context) -> Connection:
        connection = make_connection(connection_id, **context)
        await connections.connections.set(connection_id, connection)
        return connection

    return _register
