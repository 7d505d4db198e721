"""WebSocket endpoint — long-lived subscription connections.

Learn: Each client connects to /ws. The handler:
1. Accepts (negotiating the graphql-ws subprotocol when offered)
2. Attaches the socket to the local transport and registers a connection
3. Feeds every text frame through Server.handle_message
4. On disconnect, drops the connection's subscriptions and record

Delivery does not happen in this handler — the dispatcher sends through
the transport, which looks the socket up by connection id.
"""

import uuid

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from fanout.errors import ConnectionNotFoundError
from fanout.realtime.transports import LOCAL_ENDPOINT, LocalWebSocketTransport

logger = structlog.get_logger()
router = APIRouter()

SUBPROTOCOL = "graphql-ws"


@router.websocket("/ws")
async def subscriptions_websocket(websocket: WebSocket):
    """WebSocket endpoint for subscription traffic."""
    server = websocket.app.state.server
    transport = getattr(server.connection_manager, "transport", None)

    if not isinstance(transport, LocalWebSocketTransport):
        await websocket.close(code=1011, reason="WebSocket transport not enabled")
        return

    offered = websocket.scope.get("subprotocols") or []
    await websocket.accept(subprotocol=SUBPROTOCOL if SUBPROTOCOL in offered else None)

    connection_id = uuid.uuid4().hex
    transport.attach(connection_id, websocket)
    await server.handle_connect(connection_id, LOCAL_ENDPOINT)
    logger.info("fanout.websocket_connected", connection_id=connection_id)

    try:
        while True:
            text = await websocket.receive_text()
            await server.handle_message(connection_id, text)
    except WebSocketDisconnect:
        pass
    except RuntimeError:
        # receive on a socket the server already closed
        if websocket.application_state == WebSocketState.CONNECTED:
            raise
    except ConnectionNotFoundError:
        # Terminated (or pruned) while the client kept talking
        if websocket.application_state == WebSocketState.CONNECTED:
            await websocket.close()
    finally:
        transport.detach(connection_id)
        await server.handle_disconnect(connection_id)
        logger.info("fanout.websocket_disconnected", connection_id=connection_id)
