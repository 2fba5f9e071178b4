"""Localhost JSON-lines feed for an external meter window."""
from __future__ import annotations

import asyncio
import json
import logging
import threading
from typing import Any, Dict, Mapping, Optional, Set

from .presenter import SNAPSHOT_EVENT, VISIBILITY_EVENT

_LOGGER = logging.getLogger("DPSMeter.Server")

# Replay order for a window that connects mid-session: where to draw, then what.
METER_EVENTS = (VISIBILITY_EVENT, SNAPSHOT_EVENT)
_MAX_CLIENT_BACKLOG = 256 * 1024
_SHUTDOWN_TIMEOUT = 2.0


class SnapshotBroadcaster:
    """Streams meter payloads to connected display windows, one JSON per line.

    Only the meter's own events are forwarded. The newest payload of each
    event type is kept so a window opened mid-fight draws the current
    position and numbers immediately instead of waiting for the next tick.
    A window that stops reading is dropped once its backlog passes
    ``_MAX_CLIENT_BACKLOG``; the refresh tick never blocks on a slow client.
    """

    def __init__(self, host: str = "127.0.0.1", port: int = 0) -> None:
        self.host = host
        self.port = port
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._shutdown: Optional[asyncio.Event] = None
        self._thread: Optional[threading.Thread] = None
        self._ready = threading.Event()
        self._listening = False
        self._writers: Set[asyncio.StreamWriter] = set()
        self._latest: Dict[str, bytes] = {}
        self._latest_lock = threading.Lock()

    @property
    def running(self) -> bool:
        return bool(self._thread and self._thread.is_alive() and self._listening)

    def start(self) -> bool:
        """Serve on a background thread; ``False`` if the port could not be bound."""
        if self.running:
            return True
        self._ready.clear()
        self._listening = False
        self._thread = threading.Thread(target=self._run, name="DPSMeter-Server", daemon=True)
        self._thread.start()
        if not self._ready.wait(timeout=5.0) or not self._listening:
            _LOGGER.error("Snapshot server failed to start")
            self.stop()
            return False
        return True

    def stop(self) -> None:
        loop, shutdown, thread = self._loop, self._shutdown, self._thread
        if loop is not None and shutdown is not None:
            try:
                loop.call_soon_threadsafe(shutdown.set)
            except RuntimeError:
                pass  # loop already closed
        if thread is not None:
            thread.join(timeout=_SHUTDOWN_TIMEOUT + 1.0)
            if thread.is_alive():
                _LOGGER.warning("Snapshot server thread did not exit cleanly")
        self._thread = None
        self._listening = False

    def publish(self, payload: Mapping[str, Any]) -> None:
        """Display sink: remember the payload and push it to every window."""
        event = payload.get("event")
        if event not in METER_EVENTS:
            _LOGGER.debug("Not forwarding non-meter event %r", event)
            return
        try:
            line = (json.dumps(dict(payload), ensure_ascii=False) + "\n").encode("utf-8")
        except (TypeError, ValueError) as exc:
            _LOGGER.warning("Failed to encode meter payload: %s", exc)
            return
        with self._latest_lock:
            self._latest[event] = line
        loop = self._loop
        if loop is None or not self._listening:
            return
        try:
            loop.call_soon_threadsafe(self._send_all, line)
        except RuntimeError:
            pass  # shutting down

    # Event loop side --------------------------------------------------------

    def _run(self) -> None:
        try:
            asyncio.run(self._serve())
        except OSError as exc:
            _LOGGER.error("Snapshot server could not bind %s:%s: %s", self.host, self.port, exc)
        finally:
            self._loop = None
            self._shutdown = None
            self._ready.set()

    async def _serve(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._shutdown = asyncio.Event()
        server = await asyncio.start_server(self._handle_client, self.host, self.port)
        sockets = server.sockets or []
        if sockets:
            self.port = sockets[0].getsockname()[1]
        self._listening = True
        self._ready.set()
        _LOGGER.info("Snapshot server listening on %s:%s", self.host, self.port)
        try:
            await self._shutdown.wait()
        finally:
            self._listening = False
            server.close()
            # Meter windows still connected must be closed first; otherwise
            # wait_closed() keeps waiting on their open connections.
            for writer in list(self._writers):
                writer.close()
            self._writers.clear()
            try:
                await asyncio.wait_for(server.wait_closed(), timeout=_SHUTDOWN_TIMEOUT)
            except asyncio.TimeoutError:
                _LOGGER.debug("Snapshot server close timed out")
            _LOGGER.info("Snapshot server stopped")

    def _send_all(self, line: bytes) -> None:
        for writer in list(self._writers):
            if writer.is_closing():
                self._writers.discard(writer)
                continue
            if writer.transport.get_write_buffer_size() > _MAX_CLIENT_BACKLOG:
                _LOGGER.debug("Dropping stalled meter window %s", writer.get_extra_info("peername"))
                self._writers.discard(writer)
                writer.close()
                continue
            writer.write(line)

    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        peer = writer.get_extra_info("peername")
        with self._latest_lock:
            replay = [self._latest[event] for event in METER_EVENTS if event in self._latest]
        for line in replay:
            writer.write(line)
        self._writers.add(writer)
        _LOGGER.debug("Meter window connected (%d active) %s", len(self._writers), peer)
        try:
            await writer.drain()
            # Windows never send anything; read until they hang up.
            await reader.read()
        except (ConnectionError, OSError):
            pass
        finally:
            self._writers.discard(writer)
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass
        _LOGGER.debug("Meter window disconnected (%d active) %s", len(self._writers), peer)
