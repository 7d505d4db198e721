"""Inbound event boundary — classify raw input before it reaches the core.

Learn: Everything that arrives from the outside is one of two shapes:
1. A transport frame — carries a requestContext (connectionId, routeKey)
   and means connect / disconnect / client message.
2. An application event — {"event": name, "payload": ...} to fan out.

Anything else is a caller bug. It fails here, loudly, before the
dispatcher (which never raises) gets a chance to swallow it.
"""

import json
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from fanout.errors import MalformedEventError
from fanout.events.types import ROUTE_CONNECT, ROUTE_DEFAULT, ROUTE_DISCONNECT
from fanout.schemas.subscription import SubscriptionEvent


class RequestContext(BaseModel):
    connection_id: str = Field(alias="connectionId", min_length=1)
    route_key: Literal["$connect", "$disconnect", "$default"] = Field(alias="routeKey")
    domain_name: Optional[str] = Field(None, alias="domainName")
    stage: Optional[str] = None


class TransportFrame(BaseModel):
    request_context: RequestContext = Field(alias="requestContext")
    body: Optional[str] = None

    @property
    def connection_id(self) -> str:
        return self.request_context.connection_id

    @property
    def route(self) -> str:
        return self.request_context.route_key

    @property
    def endpoint(self) -> str:
        """Management endpoint the connection is reachable through."""
        ctx = self.request_context
        if not ctx.domain_name:
            return ""
        if ctx.stage:
            return f"https://{ctx.domain_name}/{ctx.stage}"
        return f"https://{ctx.domain_name}"

    @property
    def is_connect(self) -> bool:
        return self.route == ROUTE_CONNECT

    @property
    def is_disconnect(self) -> bool:
        return self.route == ROUTE_DISCONNECT

    @property
    def is_message(self) -> bool:
        return self.route == ROUTE_DEFAULT


InboundEvent = Union[TransportFrame, SubscriptionEvent]


def parse_inbound(raw: Any) -> InboundEvent:
    """Classify raw input (dict, JSON text or bytes).

    Raises MalformedEventError when the shape is not recognized.
    """
    if isinstance(raw, (str, bytes, bytearray)):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            raise MalformedEventError("Inbound event is not valid JSON") from e

    if not isinstance(raw, dict):
        raise MalformedEventError(
            f"Inbound event must be an object, got {type(raw).__name__}"
        )

    try:
        if "requestContext" in raw:
            return TransportFrame.model_validate(raw)
        if "event" in raw:
            return SubscriptionEvent.model_validate(raw)
    except ValidationError as e:
        raise MalformedEventError(f"Invalid inbound event: {e}") from e

    raise MalformedEventError("Unrecognized inbound event shape")
