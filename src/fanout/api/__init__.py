"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: The HTTP surface is small — health, plus a publish endpoint for
producers that can't reach Redis directly. Subscription traffic itself
goes over the WebSocket route in realtime/websocket.py.
"""

from fastapi import APIRouter

from fanout.api.events import router as events_router
from fanout.api.health import router as health_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(health_router, tags=["health"])
api_router.include_router(events_router, tags=["events"])
