"""Protocol message type constants.

Learn: Centralizing message types as constants prevents typos and
makes it easy to discover every message the protocol knows about.
"""

# ─── Client → server ─────────────────────────────────────

GQL_CONNECTION_INIT = "connection_init"
GQL_START = "start"
GQL_STOP = "stop"
GQL_CONNECTION_TERMINATE = "connection_terminate"

# ─── Server → client ─────────────────────────────────────

GQL_CONNECTION_ACK = "connection_ack"
GQL_CONNECTION_ERROR = "connection_error"
GQL_DATA = "data"
GQL_ERROR = "error"
GQL_COMPLETE = "complete"

# ─── Transport routes ────────────────────────────────────

ROUTE_CONNECT = "$connect"
ROUTE_DISCONNECT = "$disconnect"
ROUTE_DEFAULT = "$default"
