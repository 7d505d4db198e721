"""Health check endpoint.

Learn: Reports the server version, Redis reachability and the
dispatcher's cumulative counters. Redis being disabled is healthy;
Redis being configured but unreachable is degraded.
"""

from dataclasses import asdict

from fastapi import APIRouter, Depends

from fanout import __version__
from fanout.api.deps import get_server
from fanout.realtime.pubsub import get_redis, redis_ready
from fanout.server import Server

router = APIRouter()


@router.get("/health")
async def health_check(server: Server = Depends(get_server)):
    """Check server health and dependency connectivity."""
    checks = {"server": "ok", "version": __version__}

    if redis_ready():
        try:
            await get_redis().ping()
            checks["redis"] = "ok"
        except Exception as e:
            checks["redis"] = f"error: {e}"
    else:
        checks["redis"] = "disabled"

    status = "degraded" if checks["redis"].startswith("error") else "healthy"

    stats = asdict(server.processor.stats)
    if stats["last_event_at"] is not None:
        stats["last_event_at"] = stats["last_event_at"].isoformat()

    return {"status": status, **checks, "dispatch": stats}
