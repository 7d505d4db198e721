"""Application configuration via environment variables.

Uses pydantic-settings to load config from env vars with FANOUT_ prefix.

Learn: Only the app factory and the process entry points read `settings`.
The core components (registry, index, dispatcher) receive their
collaborators explicitly, so tests and embedders never touch globals.
"""

from pydantic import model_validator
from pydantic_settings import BaseSettings

STORAGE_BACKENDS = ("memory", "redis")
TRANSPORTS = ("websocket", "gateway")


class Settings(BaseSettings):
    """All app configuration. Set via FANOUT_* env vars."""

    # Redis (optional for single-process deployments)
    redis_url: str = "redis://localhost:6379/0"
    events_channel: str = "fanout:events"

    # Storage for connections + subscriptions
    storage_backend: str = "memory"
    storage_prefix: str = "fanout:"

    # Transport used to push messages to clients
    transport: str = "websocket"
    gateway_endpoint: str = ""
    stale_status_code: int = 410  # "gone": client disconnected without teardown
    send_timeout_seconds: float = 10.0
    close_grace_seconds: float = 0.01  # let a final error message flush first

    # Subscription schema, as "package.module:attribute"
    schema_path: str = ""

    # Server
    environment: str = "development"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 8000

    # CORS
    cors_origins: list[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
    ]

    model_config = {"env_prefix": "FANOUT_"}

    @model_validator(mode="after")
    def validate_backends(self):
        """Reject unknown backends and a Redis store without a Redis URL."""
        if self.storage_backend not in STORAGE_BACKENDS:
            raise ValueError(
                f"FANOUT_STORAGE_BACKEND must be one of {', '.join(STORAGE_BACKENDS)}"
            )
        if self.transport not in TRANSPORTS:
            raise ValueError(f"FANOUT_TRANSPORT must be one of {', '.join(TRANSPORTS)}")
        if self.storage_backend == "redis" and not self.redis_url:
            raise ValueError("FANOUT_REDIS_URL is required for the redis storage backend")
        return self


# Singleton, read by the app factory and entry points
settings = Settings()
