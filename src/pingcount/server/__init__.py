"""JSON-over-TCP transport: framing, client helpers, asyncio server."""
from pingcount.server.async_protocol import (
    async_read_message,
    async_send_request,
    async_write_message,
)
from pingcount.server.async_server import StatsServer
from pingcount.server.protocol import (
    ServerRequest,
    ServerResponse,
    read_message,
    send_request,
)

__all__ = [
    "ServerRequest",
    "ServerResponse",
    "StatsServer",
    "async_read_message",
    "async_send_request",
    "async_write_message",
    "read_message",
    "send_request",
]
