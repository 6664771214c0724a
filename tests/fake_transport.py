"""In-memory transport for Connection tests."""

import asyncio
import logging
from typing import Any, Callable

from pyiobroker.pattern import compile_pattern
from pyiobroker.transport import EventEmitter

_LOGGER = logging.getLogger(__name__)


class FakeTransport(EventEmitter):
    """A fake ioBroker transport.

    Simulates the socket behavior including:
    - Session open, drop and reconnect events
    - Acknowledgements answered one loop iteration after the emit
    - A tiny object/state store for the default responders
    - Verbs that are held back and answered on demand
    """

    def __init__(self) -> None:
        """Initialize the fake transport."""
        super().__init__()
        self._connected = False
        self.url: str | None = None
        self.options: Any = None
        self.closed = False

        # Simulated store
        self.objects: dict[str, dict[str, Any]] = {
            "system.config": {
                "_id": "system.config",
                "type": "config",
                "common": {"language": "de"},
            },
        }
        self.states: dict[str, dict[str, Any]] = {}

        # Recorded traffic
        self.sent: list[tuple[str, tuple[Any, ...]]] = []

        # Verb -> callable(*args) returning the acknowledgement tuple
        self.responders: dict[str, Callable[..., tuple[Any, ...]]] = {
            "authenticate": lambda *args: (True, False),
            "getVersion": lambda *args: (None, "6.0.0", "admin"),
            "getUserPermissions": lambda *args: (None, {"file": {"list": True}}),
            "getObject": lambda object_id, *args: (None, self.objects.get(object_id)),
            "getObjects": self._get_objects,
            "getAllObjects": lambda *args: (None, dict(self.objects)),
            "getStates": self._get_states,
            "getForeignStates": self._get_states,
            "getState": lambda state_id, *args: (None, self.states.get(state_id)),
            "getCompactSystemConfig": lambda *args: (None, {"common": {"language": "fr"}}),
        }

        # Verbs whose acknowledgements are held back
        self.hold: set[str] = set()
        self.held: list[tuple[str, tuple[Any, ...], Callable[..., Any]]] = []

    @property
    def connected(self) -> bool:
        """Return True while a session is open."""
        return self._connected

    async def connect(self, url: str, options: Any) -> None:
        """Record the endpoint. Sessions are opened by open_session()."""
        self.url = url
        self.options = options

    async def close(self) -> None:
        """Close the session."""
        self._connected = False
        self.closed = True

    def emit(self, event: str, *args: Any, callback: Callable[..., Any] | None = None) -> bool:
        """Record a message and schedule its acknowledgement."""
        if not self._connected:
            return False

        self.sent.append((event, args))
        if callback is None:
            return True

        if event in self.hold:
            self.held.append((event, args, callback))
            return True

        responder = self.responders.get(event)
        result = responder(*args) if responder else (None, None)
        asyncio.get_running_loop().call_soon(callback, *result)
        return True

    # =========================================================================
    # Test controls
    # =========================================================================

    def open_session(self, ready: bool = True) -> None:
        """Simulate the first session becoming ready."""
        self._connected = True
        self.fire("connect", ready)

    def drop(self) -> None:
        """Simulate a lost session."""
        self._connected = False
        self.held.clear()
        self.fire("disconnect")

    def reconnect(self) -> None:
        """Simulate a later session becoming ready."""
        self._connected = True
        self.fire("reconnect")

    def push(self, event: str, *args: Any) -> None:
        """Simulate a server push event."""
        self.fire(event, *args)

    def release(self, event: str, *result: Any) -> None:
        """Answer the oldest held message for a verb."""
        for index, (name, _args, callback) in enumerate(self.held):
            if name == event:
                del self.held[index]
                callback(*result)
                return
        raise AssertionError(f"No held message for {event}")

    def calls(self, event: str) -> list[tuple[Any, ...]]:
        """Return arguments of every message sent for a verb."""
        return [args for name, args in self.sent if name == event]

    # =========================================================================
    # Default responders
    # =========================================================================

    def _get_objects(self, ids: Any = None, *args: Any) -> tuple[Any, ...]:
        if ids is None:
            return (None, dict(self.objects))
        return (None, {oid: obj for oid, obj in self.objects.items() if oid in ids})

    def _get_states(self, pattern: Any = None, *args: Any) -> tuple[Any, ...]:
        if pattern is None:
            return (None, dict(self.states))
        patterns = [pattern] if isinstance(pattern, str) else list(pattern)
        matchers = [compile_pattern(p) for p in patterns]
        return (
            None,
            {
                sid: state
                for sid, state in self.states.items()
                if any(matcher.test(sid) for matcher in matchers)
            },
        )


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Poll predicate until it is true."""

    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout)
