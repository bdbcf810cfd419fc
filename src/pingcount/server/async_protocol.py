"""Async version of the JSON-over-TCP framing.

Same wire format as protocol.py (4-byte big-endian length prefix + JSON),
over asyncio.StreamReader/StreamWriter so a slow client suspends only its
own coroutine.
"""
from __future__ import annotations

import asyncio
import struct

from pingcount.server.protocol import (
    HEADER_SIZE,
    MAX_MESSAGE_SIZE,
    ServerRequest,
    ServerResponse,
)


async def async_read_message(reader: asyncio.StreamReader) -> bytes:
    """Read a length-prefixed message from an async stream.

    Raises:
        asyncio.IncompleteReadError: if the stream closes mid-read
        ValueError: if message_length > MAX_MESSAGE_SIZE
    """
    header = await reader.readexactly(HEADER_SIZE)
    (msg_len,) = struct.unpack("!I", header)
    if msg_len > MAX_MESSAGE_SIZE:
        raise ValueError(
            f"Message size {msg_len} exceeds limit {MAX_MESSAGE_SIZE}"
        )
    return await reader.readexactly(msg_len)


async def async_write_message(
    writer: asyncio.StreamWriter, framed: bytes
) -> None:
    """Write an already framed message and wait for the send buffer to drain."""
    writer.write(framed)
    await writer.drain()


async def async_send_request(
    host: str, port: int, request: ServerRequest
) -> ServerResponse:
    """Async client: one request, one response, connection closed."""
    reader, writer = await asyncio.open_connection(host, port)
    try:
        await async_write_message(writer, request.to_bytes())
        raw = await async_read_message(reader)
        return ServerResponse.from_bytes(raw)
    finally:
        writer.close()
        await writer.wait_closed()
