"""Fake ioBroker WebSocket server for transport tests."""

import asyncio
import json
import logging
from typing import Any, Callable

import websockets
from websockets.exceptions import ConnectionClosed

from pyiobroker.transport import CALLBACK, MESSAGE, PING, PONG, READY_MESSAGE

_LOGGER = logging.getLogger(__name__)


class FakeIoBrokerServer:
    """A fake ioBroker WebSocket endpoint.

    Simulates the server side of the framing including:
    - The ready message after each accepted socket
    - Acknowledgements produced by per-verb handlers
    - Pong answers to pings
    - Server pushes and dropped sockets
    """

    def __init__(self, send_ready: bool = True) -> None:
        """Initialize the fake server."""
        self._send_ready = send_ready
        self._server: Any = None
        self._clients: set[Any] = set()
        self.port = 0

        self.received: list[tuple[str, list[Any]]] = []
        self.connections = 0
        self.handlers: dict[str, Callable[..., list[Any]]] = {
            "authenticate": lambda *args: [True, False],
        }

    async def start(self) -> None:
        """Start listening on a free port."""
        self._server = await websockets.serve(self._handle, "127.0.0.1", 0)
        self.port = next(iter(self._server.sockets)).getsockname()[1]
        _LOGGER.info("Fake server started on port %d", self.port)

    async def stop(self) -> None:
        """Close all sockets and stop listening."""
        await self.drop_clients()
        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

    async def drop_clients(self) -> None:
        """Close every client socket."""
        for ws in list(self._clients):
            await ws.close()

    async def push(self, name: str, *args: Any) -> None:
        """Send an event to every client."""
        frame = json.dumps([MESSAGE, 0, name, list(args)])
        for ws in list(self._clients):
            await ws.send(frame)

    async def wait_for_message(self, name: str, timeout: float = 2.0) -> list[Any]:
        """Wait until a message with the given name arrived."""

        async def _poll() -> list[Any]:
            while True:
                for received, args in self.received:
                    if received == name:
                        return args
                await asyncio.sleep(0.01)

        return await asyncio.wait_for(_poll(), timeout)

    async def _handle(self, ws: Any) -> None:
        self._clients.add(ws)
        self.connections += 1
        try:
            if self._send_ready:
                await ws.send(json.dumps([MESSAGE, 0, READY_MESSAGE, []]))
            async for raw in ws:
                frame = json.loads(raw)
                if frame[0] == PING:
                    await ws.send(json.dumps([PONG]))
                    continue
                if frame[0] != MESSAGE:
                    continue

                _, msg_id, name, args = frame
                self.received.append((name, args))
                handler = self.handlers.get(name)
                if handler is not None:
                    await ws.send(json.dumps([CALLBACK, msg_id, name, handler(*args)]))
        except ConnectionClosed:
            pass
        finally:
            self._clients.discard(ws)
