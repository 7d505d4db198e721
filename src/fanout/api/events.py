"""Events API — publish an application event to its subscribers.

Learn: With Redis up, the event goes on the events channel and the
worker(s) dispatch it (202, queued). Without Redis, it is dispatched
right here and the response carries the delivery counts.

The body is validated against SubscriptionEvent, so a malformed event
fails fast with 422 and never reaches the dispatcher.
"""

from dataclasses import asdict

from fastapi import APIRouter, Depends, status

from fanout.api.deps import get_server
from fanout.config import settings
from fanout.realtime.pubsub import publish_event, redis_ready
from fanout.schemas.subscription import SubscriptionEvent
from fanout.server import Server

router = APIRouter()


@router.post("/events", status_code=status.HTTP_202_ACCEPTED)
async def publish(body: SubscriptionEvent, server: Server = Depends(get_server)):
    """Publish an event."""
    if redis_ready():
        receivers = await publish_event(body, settings.events_channel)
        return {"event": body.event, "queued": True, "receivers": receivers}

    report = await server.processor.dispatch(body, server)
    return {"event": body.event, "queued": False, **asdict(report)}
