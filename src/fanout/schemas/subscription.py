"""Pydantic schemas for subscriptions, events and wire messages.

Learn: Wire messages follow the graphql-ws envelope — {id, type, payload}.
DeliveryMessage is the one the dispatcher sends; ProtocolMessage covers
everything a client sends plus the acks/errors the server answers with.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field

from fanout.events.types import GQL_DATA
from fanout.schemas.connection import Connection


# ─── Operations ───────────────────────────────────────────


class OperationRequest(BaseModel):
    query: str = ""
    variables: dict[str, Any] = Field(default_factory=dict)
    operation_name: Optional[str] = Field(None, alias="operationName")

    model_config = {"populate_by_name": True}


class Subscriber(BaseModel):
    connection: Connection
    operation: OperationRequest
    operation_id: str
    event: str  # tenant-scoped key this entry is filed under


# ─── Events ───────────────────────────────────────────────


class SubscriptionEvent(BaseModel):
    """An application event published by a producer."""

    event: str = Field(min_length=1)
    payload: Any = None


class ExecutionResult(BaseModel):
    data: Any = None
    errors: Optional[list[str]] = None


# ─── Wire messages ────────────────────────────────────────


class DeliveryMessage(BaseModel):
    id: str  # the subscriber's operation id
    payload: ExecutionResult
    type: str = GQL_DATA


class ProtocolMessage(BaseModel):
    type: str
    id: Optional[str] = None
    payload: Any = None


def format_message(message: BaseModel) -> str:
    """Serialize a wire message to JSON text, dropping unset optionals."""
    return message.model_dump_json(exclude_none=True, by_alias=True)
