"""Simple JSON-over-TCP protocol for pings and stats queries.

Message format:
    4 bytes: message length (big-endian uint32)
    N bytes: JSON payload (UTF-8)

Request payload:
    {"op": "ingest", "pub": "<hex>", "ts": 1760000000, "nonce": "...", "sig": "<hex>"}
    {"op": "stats", "window": 30}
    {"op": "series"}

Response payload:
    {"status": 200, "body": {...}}

`status` follows HTTP: 200 accepted, 400 malformed or stale, 401 bad
signature, 409 replayed nonce, 500 internal failure. On errors the body
is {"error": "<message>"}.

This module holds the blocking socket helpers used by clients; the
server side lives in async_protocol.py with the same framing.
"""
from __future__ import annotations

import json
import socket
import struct
from dataclasses import dataclass, field
from typing import Any

HEADER_SIZE = 4          # 4 bytes, big-endian uint32
MAX_MESSAGE_SIZE = 64 * 1024  # pings and stats queries are tiny


def _frame(obj: dict[str, Any]) -> bytes:
    payload = json.dumps(obj, separators=(",", ":")).encode("utf-8")
    return struct.pack("!I", len(payload)) + payload


@dataclass(frozen=True, slots=True)
class ServerRequest:
    """One operation sent to the server."""
    op: str
    params: dict[str, Any] = field(default_factory=dict)

    def to_bytes(self) -> bytes:
        """Serialize to wire format: 4-byte length prefix + JSON payload."""
        return _frame({"op": self.op, **self.params})

    @classmethod
    def from_bytes(cls, data: bytes) -> ServerRequest:
        """Deserialize from JSON bytes (without length prefix).

        Raises ValueError for undecodable JSON, a non-object payload or a
        missing "op".
        """
        obj = json.loads(data.decode("utf-8"))
        if not isinstance(obj, dict):
            raise ValueError("Request must be a JSON object")
        op = obj.pop("op", None)
        if not isinstance(op, str):
            raise ValueError("Request is missing 'op'")
        return cls(op=op, params=obj)


@dataclass(frozen=True, slots=True)
class ServerResponse:
    """Status code plus JSON body."""
    status: int
    body: dict[str, Any]

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def to_bytes(self) -> bytes:
        """Serialize to wire format: 4-byte length prefix + JSON payload."""
        return _frame({"status": self.status, "body": self.body})

    @classmethod
    def from_bytes(cls, data: bytes) -> ServerResponse:
        """Deserialize from JSON bytes (without length prefix)."""
        obj = json.loads(data.decode("utf-8"))
        return cls(status=obj["status"], body=obj["body"])

    @classmethod
    def error(cls, status: int, message: str) -> ServerResponse:
        return cls(status=status, body={"error": message})


def _recv_exactly(sock: socket.socket, n: int) -> bytes:
    buf = bytearray()
    while len(buf) < n:
        chunk = sock.recv(n - len(buf))
        if not chunk:
            raise ConnectionError(f"Peer closed after {len(buf)} of {n} bytes")
        buf += chunk
    return bytes(buf)


def read_message(sock: socket.socket) -> bytes:
    """One framed payload, without its header. Raises ConnectionError if
    the peer hangs up early and ValueError for frames over MAX_MESSAGE_SIZE.
    """
    header = _recv_exactly(sock, HEADER_SIZE)
    (msg_len,) = struct.unpack("!I", header)
    if msg_len > MAX_MESSAGE_SIZE:
        raise ValueError(f"Frame of {msg_len} bytes is over the {MAX_MESSAGE_SIZE} limit")
    return _recv_exactly(sock, msg_len)


def send_request(
    host: str, port: int, request: ServerRequest, timeout: float = 5.0
) -> ServerResponse:
    """Blocking client: one request, one response, connection closed."""
    with socket.create_connection((host, port), timeout=timeout) as sock:
        sock.sendall(request.to_bytes())
        return ServerResponse.from_bytes(read_message(sock))
