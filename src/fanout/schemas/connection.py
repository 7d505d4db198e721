"""Pydantic schemas for client connections."""

from typing import Any

from pydantic import BaseModel, Field


class ConnectionData(BaseModel):
    endpoint: str = ""  # transport address used to reach the client
    context: dict[str, Any] = Field(default_factory=dict)
    is_initialized: bool = False


class Connection(BaseModel):
    """One live (or recently live) client connection.

    Learn: Records are replaced, never edited in place — set_data stores a
    new Connection. Subscribers keep the object they were created with, so
    a subscriber can outlive the record it points at (a stale connection).
    """

    id: str
    data: ConnectionData = Field(default_factory=ConnectionData)
