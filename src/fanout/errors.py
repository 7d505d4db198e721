"""Error taxonomy.

Learn: Where each error goes:
- ConnectionNotFoundError — hydrate on an unknown id; the caller ends the session
- StaleConnectionError — transport said "gone"; pruned inside send, never surfaced
- ExecutionFailure / DeliveryFailure — one subscriber's branch failed; routed to on_error
- MalformedEventError — unrecognized inbound shape; fails fast at the boundary
"""

from typing import Any, Optional


class FanoutError(Exception):
    """Base class for all fanout errors."""


class ConnectionNotFoundError(FanoutError):
    """Raised when a connection id has no record in the registry."""


class TransportError(FanoutError):
    """Raised by a transport when a send or close fails."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class StaleConnectionError(TransportError):
    """The transport reported the connection as gone."""

    def __init__(self, connection_id: str, status_code: int = 410):
        super().__init__(f"Connection {connection_id} is gone", status_code)
        self.connection_id = connection_id


class ExecutionFailure(FanoutError):
    """Executing or filtering a subscriber's operation raised."""

    def __init__(self, subscriber: Any, cause: BaseException):
        super().__init__(
            f"Execution failed for connection {subscriber.connection.id} "
            f"(operation {subscriber.operation_id}): {cause!r}"
        )
        self.subscriber = subscriber
        self.cause = cause


class DeliveryFailure(FanoutError):
    """Sending a result to a subscriber's connection raised."""

    def __init__(self, subscriber: Any, cause: BaseException):
        super().__init__(
            f"Delivery failed for connection {subscriber.connection.id} "
            f"(operation {subscriber.operation_id}): {cause!r}"
        )
        self.subscriber = subscriber
        self.cause = cause


class MalformedEventError(FanoutError):
    """The inbound event matches neither a transport frame nor an application event."""


class ProtocolError(FanoutError):
    """A client sent a message the subscription protocol cannot accept."""


class StreamConsumedError(FanoutError, RuntimeError):
    """A one-shot stream was iterated a second time."""
