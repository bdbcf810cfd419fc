"""Asyncio TCP server for pings and stats queries.

Architecture:
    Single thread, single event loop.
    asyncio.start_server() accepts connections; one request per connection.
    Ingestion runs to completion on the loop (pure CPU, no awaits), so
    two pings never interleave their register updates.
    Three background tasks:
        persist  every persist_interval_s, StatsStore.flush() in a worker
                 thread so file I/O never blocks the loop
        sweep    every sweep_interval_s, ReplayGuard.sweep()
        rollup   every rollup_interval_s, StatsStore.rollup()

The response is written before the snapshot is, so a crash can lose at
most the updates since the last flush. stop() runs a final rollup and
flush.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from pingcount.errors import PersistenceError, PingcountError
from pingcount.ingest.pipeline import IngestionPipeline
from pingcount.ingest.query import StatsQuery
from pingcount.server.async_protocol import async_read_message, async_write_message
from pingcount.server.protocol import ServerRequest, ServerResponse

log = logging.getLogger(__name__)


class StatsServer:
    """Serves `ingest`, `stats` and `series` over JSON-over-TCP.

    Args:
        pipeline: Write path; its store is also flushed and rolled up here.
        query: Read path.
        host: Interface to listen on.
        port: Listening port; 0 lets the kernel choose.
        persist_interval_s / sweep_interval_s / rollup_interval_s:
            Background task periods.
    """

    def __init__(
        self,
        pipeline: IngestionPipeline,
        query: StatsQuery,
        host: str = "127.0.0.1",
        port: int = 0,
        persist_interval_s: float = 1.0,
        sweep_interval_s: float = 30.0,
        rollup_interval_s: float = 60.0,
    ) -> None:
        self._pipeline = pipeline
        self._query = query
        self._bind = (host, port)
        self._intervals = {
            "persist": persist_interval_s,
            "sweep": sweep_interval_s,
            "rollup": rollup_interval_s,
        }
        self._listener: asyncio.AbstractServer | None = None
        self._background: list[asyncio.Task] = []
        self._listening = asyncio.Event()
        self._port = port

    @property
    def address(self) -> tuple[str, int]:
        """Interface and the port actually bound (useful with port=0)."""
        return (self._bind[0], self._port)

    async def start(self) -> None:
        """Open the listener and launch the background tasks."""
        host, port = self._bind
        self._listener = await asyncio.start_server(self._handle_connection, host, port)
        for sock in self._listener.sockets:
            self._port = sock.getsockname()[1]
            break

        jobs = {
            "persist": self._flush_in_thread,
            "sweep": self._sweep,
            "rollup": self._rollup,
        }
        self._background = [
            asyncio.create_task(self._periodic(name, self._intervals[name], fn))
            for name, fn in jobs.items()
        ]
        self._listening.set()
        log.info("Stats server listening on %s:%d", host, self._port)

    async def serve_forever(self) -> None:
        await self.start()
        try:
            await asyncio.Event().wait()
        finally:
            await self.stop()

    async def stop(self) -> None:
        """Close the listener, cancel background work, then roll up and flush."""
        listener, self._listener = self._listener, None
        if listener is not None:
            listener.close()
            await listener.wait_closed()

        background, self._background = self._background, []
        for task in background:
            task.cancel()
        await asyncio.gather(*background, return_exceptions=True)

        store = self._pipeline.store
        store.rollup()
        try:
            await asyncio.to_thread(store.flush)
        except PersistenceError:
            log.exception("Final snapshot flush failed")

    async def wait_ready(self, timeout: float = 5.0) -> None:
        await asyncio.wait_for(self._listening.wait(), timeout)

    def dispatch(self, request: ServerRequest) -> ServerResponse:
        """Run one request against the pipeline or query. Never raises."""
        try:
            if request.op == "ingest":
                result = self._pipeline.ingest(request.params)
                return ServerResponse(200, result.to_dict())
            if request.op == "stats":
                window = request.params.get("window", 30)
                return ServerResponse(200, self._query.report(window=window).to_dict())
            if request.op == "series":
                points = self._query.series()
                return ServerResponse(200, {"days": [p.to_dict() for p in points]})
            return ServerResponse.error(400, f"Unknown op: {request.op!r}")
        except PingcountError as exc:
            return ServerResponse.error(exc.status, exc.message)
        except Exception:
            log.exception("Error handling %s request", request.op)
            return ServerResponse.error(500, "Internal server error")

    async def _handle_connection(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        try:
            response = self._decode_and_dispatch(await async_read_message(reader))
            await async_write_message(writer, response.to_bytes())
        except (asyncio.IncompleteReadError, ConnectionError) as exc:
            log.debug("Connection dropped by client: %r", exc)
        except ValueError as exc:
            # oversized frame; nothing sensible to answer
            log.warning("Dropping connection: %s", exc)
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except ConnectionError:
                pass

    def _decode_and_dispatch(self, raw: bytes) -> ServerResponse:
        try:
            request = ServerRequest.from_bytes(raw)
        except ValueError as exc:
            return ServerResponse.error(400, f"Malformed request: {exc}")
        return self.dispatch(request)

    async def _periodic(
        self, name: str, interval: float, fn: Callable[[], Awaitable[Any]]
    ) -> None:
        """Call `fn` every `interval` seconds until cancelled. Errors are logged."""
        while True:
            await asyncio.sleep(interval)
            try:
                await fn()
            except PersistenceError as exc:
                log.error("Background %s failed: %s", name, exc)
            except Exception:
                log.exception("Error in background %s task", name)

    async def _flush_in_thread(self) -> None:
        written = await asyncio.to_thread(self._pipeline.store.flush)
        if written:
            log.debug("Persisted %d snapshots", written)

    async def _sweep(self) -> None:
        self._pipeline.sweep_nonces()

    async def _rollup(self) -> None:
        self._pipeline.store.rollup()
