"""FastAPI dependencies."""

from fastapi import Request

from fanout.server import Server


def get_server(request: Request) -> Server:
    """The Server built by create_app()."""
    return request.app.state.server
