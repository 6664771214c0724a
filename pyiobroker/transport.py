"""Async WebSocket transport for ioBroker communication.

This module handles:
- The transport capability interface the connection depends on
- WebSocket session with automatic reconnection
- ioBroker message framing and acknowledgement callbacks
- Event handler registration and fan-out

Frames are JSON arrays ``[type, id, name, args]``. No knowledge of
subscriptions or the store lives here - just events in and out.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import itertools
import json
import logging
import time
from typing import Any, Callable, Protocol
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from .config import ConnectionConfig
from .const import (
    EVENT_CONNECT,
    EVENT_CONNECT_ERROR,
    EVENT_DISCONNECT,
    EVENT_RECONNECT,
    RECONNECT_DELAY_MAX,
    RECONNECT_DELAY_MIN,
    RECONNECT_DELAY_MULTIPLIER,
)

_LOGGER = logging.getLogger(__name__)

# Frame types
MESSAGE = 0
PING = 1
PONG = 2
CALLBACK = 3

# Sent by the server once all its handlers are installed
READY_MESSAGE = "___ready___"

# Timeouts
CONNECT_TIMEOUT = 10.0

EventHandler = Callable[..., Any]
AckCallback = Callable[..., Any]


@dataclass
class ConnectOptions:
    """Options for opening a transport session."""

    name: str
    timeout: float = CONNECT_TIMEOUT
    uuid: str | None = None
    reconnect_delay_min: float = RECONNECT_DELAY_MIN
    reconnect_delay_max: float = RECONNECT_DELAY_MAX
    ping_interval: float = 5.0

    @classmethod
    def from_config(cls, config: ConnectionConfig) -> ConnectOptions:
        """Build options from a connection config."""
        return cls(
            name=config.name,
            timeout=config.io_timeout,
            uuid=config.uuid,
            reconnect_delay_min=config.reconnect_delay_min,
            reconnect_delay_max=config.reconnect_delay_max,
            ping_interval=config.ping_interval,
        )


class Transport(Protocol):
    """Bidirectional message channel used by Connection.

    Inbound events: connect, reconnect, disconnect, reauthenticate, error,
    connect_error, permissionError, objectChange, stateChange, im,
    fileChange, log, cmdStdout, cmdStderr, cmdExit.
    """

    @property
    def connected(self) -> bool: ...

    async def connect(self, url: str, options: ConnectOptions) -> None: ...

    async def close(self) -> None: ...

    def on(self, event: str, handler: EventHandler) -> None: ...

    def off(self, event: str, handler: EventHandler | None = None) -> None: ...

    def emit(
        self, event: str, *args: Any, callback: AckCallback | None = None
    ) -> bool: ...


def build_url(config: ConnectionConfig, sid: str | None = None) -> str:
    """Return the WebSocket endpoint for a config.

    Example:
        ws://192.168.1.10:8081/?sid=1700000000000&name=pyiobroker
    """
    path = config.path if config.path.startswith("/") else f"/{config.path}"
    if sid is None:
        sid = config.token or str(int(time.time() * 1000))
    query = urlencode({"sid": sid, "name": config.name})
    return f"{config.protocol}://{config.host}:{config.port}{path}?{query}"


class EventEmitter:
    """Event handler lists with isolated fan-out."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = {}

    def on(self, event: str, handler: EventHandler) -> None:
        """Register a handler for an event."""
        handlers = self._handlers.setdefault(event, [])
        if handler not in handlers:
            handlers.append(handler)

    def off(self, event: str, handler: EventHandler | None = None) -> None:
        """Remove a handler (or all handlers) of an event."""
        if handler is None:
            self._handlers.pop(event, None)
            return
        handlers = self._handlers.get(event)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def fire(self, event: str, *args: Any) -> None:
        """Invoke every handler of an event."""
        for handler in list(self._handlers.get(event, [])):
            try:
                handler(*args)
            except Exception:  # noqa: BLE001
                _LOGGER.exception("Handler error for %s", event)


class WebSocketTransport(EventEmitter):
    """ioBroker WebSocket transport.

    Handles:
    - Session establishment and the ready handshake
    - Outbound frame queue and inbound read loop
    - Acknowledgement callbacks by message id
    - Keepalive pings
    - Reconnection with exponential backoff

    Does NOT handle:
    - Authentication (handled by Connection)
    - Subscriptions (handled by Connection)

    Example:
        transport = WebSocketTransport()
        transport.on("stateChange", lambda id, state: print(id, state))
        await transport.connect(url, ConnectOptions(name="demo"))
        transport.emit("subscribe", ["system.adapter.*.alive"])
    """

    def __init__(self) -> None:
        """Initialize transport."""
        super().__init__()
        self._url: str | None = None
        self._options: ConnectOptions | None = None

        self._ws: Any = None
        self._ready = False
        self._was_ready = False
        self._running = False
        self._run_task: asyncio.Task | None = None
        self._outbox: asyncio.Queue[str] = asyncio.Queue()

        self._ids = itertools.count(1)
        self._callbacks: dict[int, AckCallback] = {}
        self._reconnect_delay = RECONNECT_DELAY_MIN
        self._last_pong: float | None = None

    @property
    def connected(self) -> bool:
        """Return True if the session is established and ready."""
        return self._ready and self._ws is not None

    @property
    def url(self) -> str | None:
        """Return endpoint URL."""
        return self._url

    @property
    def last_pong(self) -> float | None:
        """Return monotonic time of the last pong from the server."""
        return self._last_pong

    async def connect(self, url: str, options: ConnectOptions) -> None:
        """Start the session supervisor.

        Returns immediately. Progress is reported through the connect,
        reconnect, disconnect and connect_error events.
        """
        if self._running:
            return

        self._url = url
        self._options = options
        self._reconnect_delay = options.reconnect_delay_min
        self._running = True
        self._run_task = asyncio.create_task(self._run())

    async def close(self) -> None:
        """Stop the supervisor and close the session."""
        self._running = False
        if self._ws is not None:
            try:
                await self._ws.close()
            except (OSError, WebSocketException) as err:
                _LOGGER.debug("Close failed: %s", err)
        if self._run_task:
            self._run_task.cancel()
            try:
                await self._run_task
            except asyncio.CancelledError:
                pass
            self._run_task = None
        self._ws = None
        self._ready = False
        self._callbacks.clear()
        _LOGGER.debug("Transport closed")

    def emit(self, event: str, *args: Any, callback: AckCallback | None = None) -> bool:
        """Queue a message for the server.

        Args:
            event: Remote verb
            *args: Verb arguments
            callback: Called with the acknowledgement arguments

        Returns:
            False if there is no ready session and nothing was sent
        """
        if not self.connected:
            _LOGGER.debug("Dropping %s: not connected", event)
            return False

        msg_id = next(self._ids)
        if callback is not None:
            self._callbacks[msg_id] = callback
        self._outbox.put_nowait(json.dumps([MESSAGE, msg_id, event, list(args)]))
        _LOGGER.debug("Sent: %s %s", event, args)
        return True

    async def _run(self) -> None:
        """Session loop with auto-reconnect."""
        assert self._url is not None and self._options is not None
        while self._running:
            try:
                async with websockets.connect(
                    self._url,
                    open_timeout=self._options.timeout,
                    ping_interval=None,
                ) as ws:
                    self._ws = ws
                    _LOGGER.info("Connected to %s", self._url)
                    await self._session(ws)
            except (OSError, asyncio.TimeoutError, WebSocketException) as err:
                _LOGGER.warning("Connection failed: %s", err)
                self.fire(EVENT_CONNECT_ERROR, str(err))
            finally:
                self._ws = None
                self._end_session()

            if self._running:
                await asyncio.sleep(self._reconnect_delay)
                self._reconnect_delay = min(
                    self._reconnect_delay * RECONNECT_DELAY_MULTIPLIER,
                    self._options.reconnect_delay_max,
                )

    async def _session(self, ws: Any) -> None:
        """Read frames until the socket closes."""
        # Frames queued for a previous session are stale
        self._outbox = asyncio.Queue()
        writer = asyncio.create_task(self._write_loop(ws))
        pinger = asyncio.create_task(self._ping_loop(ws))
        try:
            async for raw in ws:
                self._handle_frame(raw)
        except ConnectionClosed as err:
            _LOGGER.warning("Connection lost: %s", err)
        finally:
            writer.cancel()
            pinger.cancel()
            await asyncio.gather(writer, pinger, return_exceptions=True)

    async def _write_loop(self, ws: Any) -> None:
        while True:
            frame = await self._outbox.get()
            await ws.send(frame)

    async def _ping_loop(self, ws: Any) -> None:
        assert self._options is not None
        if self._options.ping_interval <= 0:
            return
        while True:
            await asyncio.sleep(self._options.ping_interval)
            if self._ready:
                await ws.send(json.dumps([PING]))

    def _end_session(self) -> None:
        """Report the end of a ready session."""
        was_ready = self._ready
        self._ready = False
        self._callbacks.clear()
        if was_ready:
            self.fire(EVENT_DISCONNECT)

    def _handle_frame(self, raw: str | bytes) -> None:
        """Decode one frame and route it."""
        try:
            frame = json.loads(raw)
        except ValueError:
            _LOGGER.warning("Invalid frame: %s", raw)
            return
        if not isinstance(frame, list) or not frame:
            _LOGGER.warning("Unexpected frame: %s", frame)
            return

        frame_type = frame[0]
        if frame_type == PING:
            self._outbox.put_nowait(json.dumps([PONG]))
            return
        if frame_type == PONG:
            self._last_pong = time.monotonic()
            return

        msg_id = frame[1] if len(frame) > 1 else None
        name = frame[2] if len(frame) > 2 else None
        args = frame[3] if len(frame) > 3 and frame[3] is not None else []

        if frame_type == CALLBACK:
            callback = self._callbacks.pop(msg_id, None)
            if callback is None:
                _LOGGER.debug("No callback for message %s (%s)", msg_id, name)
                return
            try:
                callback(*args)
            except Exception:  # noqa: BLE001
                _LOGGER.exception("Callback error for %s", name)
            return

        if frame_type == MESSAGE:
            if name == READY_MESSAGE:
                self._on_ready()
            else:
                _LOGGER.debug("Received: %s %s", name, args)
                self.fire(name, *args)
            return

        _LOGGER.warning("Unknown frame type: %s", frame_type)

    def _on_ready(self) -> None:
        """Handle the server's ready message."""
        assert self._options is not None
        self._ready = True
        self._reconnect_delay = self._options.reconnect_delay_min
        if self._was_ready:
            self.fire(EVENT_RECONNECT)
        else:
            self._was_ready = True
            # The server waited until its handlers were installed
            self.fire(EVENT_CONNECT, True)
