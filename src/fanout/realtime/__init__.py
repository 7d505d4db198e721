"""Real-time infrastructure — transports, WebSocket endpoint, Redis pub/sub.

Learn: Events flow through two channels:
1. Producers → Redis PUBLISH (or the HTTP API) → dispatcher
2. Dispatcher → Transport → client connection

The transport is the only piece that touches sockets or the gateway API.
"""
