"""Transports — the byte-level send primitive behind the connection registry.

Learn: A transport knows how to push a message to one connection id and
how to hang up on it. It knows nothing about subscriptions. The one
condition the core cares about is "gone": a transport must raise
StaleConnectionError for it, and TransportError for every other failure.

Two implementations:
- HttpGatewayTransport — API-Gateway-style management API over httpx
  (POST/DELETE {endpoint}/@connections/{id}); HTTP 410 means gone.
- LocalWebSocketTransport — sockets accepted by this very process.
"""

from abc import ABC, abstractmethod
from typing import Optional, Union

import httpx
import structlog
from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from fanout.errors import StaleConnectionError, TransportError

logger = structlog.get_logger()

Payload = Union[str, bytes]

LOCAL_ENDPOINT = "local"


class Transport(ABC):
    """Abstract send/close primitive keyed by connection id."""

    @abstractmethod
    async def post(self, connection_id: str, endpoint: str, data: Payload) -> None:
        """Deliver data. Raise StaleConnectionError when the client is gone."""

    @abstractmethod
    async def close(self, connection_id: str, endpoint: str) -> None:
        """Terminate the client's connection."""


class HttpGatewayTransport(Transport):
    """Push messages through an HTTP connection-management API."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        *,
        endpoint: str = "",
        timeout: float = 10.0,
        stale_status_code: int = 410,
    ):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self.endpoint = endpoint  # fallback when a connection has none
        self.stale_status_code = stale_status_code

    def _url(self, connection_id: str, endpoint: str) -> str:
        base = (endpoint or self.endpoint).rstrip("/")
        if not base:
            raise TransportError(f"No endpoint known for connection {connection_id}")
        return f"{base}/@connections/{connection_id}"

    def _check(self, response: httpx.Response, connection_id: str) -> None:
        if response.status_code == self.stale_status_code:
            raise StaleConnectionError(connection_id, response.status_code)
        if response.is_error:
            raise TransportError(
                f"Gateway returned {response.status_code} for connection {connection_id}",
                status_code=response.status_code,
            )

    async def post(self, connection_id: str, endpoint: str, data: Payload) -> None:
        url = self._url(connection_id, endpoint)
        try:
            response = await self._client.post(url, content=data)
        except httpx.HTTPError as e:
            raise TransportError(f"Failed to reach gateway: {e}") from e
        self._check(response, connection_id)

    async def close(self, connection_id: str, endpoint: str) -> None:
        url = self._url(connection_id, endpoint)
        try:
            response = await self._client.delete(url)
        except httpx.HTTPError as e:
            raise TransportError(f"Failed to reach gateway: {e}") from e
        try:
            self._check(response, connection_id)
        except StaleConnectionError:
            # Already gone, nothing to close
            pass

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class LocalWebSocketTransport(Transport):
    """Deliver to WebSockets accepted by this process.

    Learn: The websocket endpoint attaches each socket under its connection
    id on accept and detaches it on disconnect. A send to an id with no
    live socket is exactly the "gone" case.
    """

    def __init__(self):
        self._sockets: dict[str, WebSocket] = {}

    def attach(self, connection_id: str, websocket: WebSocket) -> None:
        self._sockets[connection_id] = websocket

    def detach(self, connection_id: str) -> None:
        self._sockets.pop(connection_id, None)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._sockets

    async def post(self, connection_id: str, endpoint: str, data: Payload) -> None:
        websocket = self._sockets.get(connection_id)
        if websocket is None or websocket.application_state != WebSocketState.CONNECTED:
            raise StaleConnectionError(connection_id)
        try:
            if isinstance(data, bytes):
                await websocket.send_bytes(data)
            else:
                await websocket.send_text(data)
        except (WebSocketDisconnect, RuntimeError) as e:
            # Starlette raises RuntimeError when sending on a closed socket
            self.detach(connection_id)
            raise StaleConnectionError(connection_id) from e

    async def close(self, connection_id: str, endpoint: str) -> None:
        websocket = self._sockets.pop(connection_id, None)
        if websocket is None:
            return
        if websocket.application_state == WebSocketState.CONNECTED:
            await websocket.close()
        logger.debug("fanout.websocket_closed", connection_id=connection_id)
