"""Subscription registries.

This module handles:
- Mapping patterns to a compiled matcher and ordered callbacks
- Idempotent registration with reference counting
- Isolated dispatch of change notifications
- Instance message subscriptions keyed by target and message type

The registries only keep local bookkeeping. Issuing the wire-level
subscribe and unsubscribe calls is left to the connection, which uses
the return values of add() and remove() to decide when a call is due.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any, Callable, Iterator

from .messages import ChangeEvent, InstanceMessage
from .pattern import Matcher, compile_pattern

_LOGGER = logging.getLogger(__name__)

Callback = Callable[..., Any]


@dataclass
class Subscription:
    """One registered pattern and its callbacks."""

    key: str
    matcher: Matcher
    callbacks: list[Callback] = field(default_factory=list)
    file_matcher: Matcher | None = None
    binary: bool = False

    @property
    def pattern(self) -> str:
        """Return the resource pattern."""
        return self.matcher.pattern

    def matches(self, event: ChangeEvent) -> bool:
        """Return True if the event belongs to this subscription."""
        if not self.matcher.test(event.id):
            return False
        if self.file_matcher is not None:
            return self.file_matcher.test(getattr(event, "file_name", None))
        return True


class SubscriptionRegistry:
    """Map of pattern key to Subscription for one notification category.

    Example:
        states = SubscriptionRegistry("states")
        if states.add("system.adapter.*.alive", on_alive):
            ...  # first callback for this pattern, subscribe on the wire
        states.dispatch(StateChange("system.adapter.admin.0.alive", state))
    """

    def __init__(self, name: str) -> None:
        """Initialize an empty registry."""
        self._name = name
        self._entries: dict[str, Subscription] = {}

    @property
    def name(self) -> str:
        """Return registry name."""
        return self._name

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Subscription]:
        return iter(list(self._entries.values()))

    def get(self, key: str) -> Subscription | None:
        """Return the subscription for a key."""
        return self._entries.get(key)

    def keys(self) -> list[str]:
        """Return registered keys in registration order."""
        return list(self._entries)

    def patterns(self) -> list[str]:
        """Return registered resource patterns without duplicates."""
        return list(dict.fromkeys(entry.pattern for entry in self._entries.values()))

    def add(
        self,
        key: str,
        callback: Callback,
        *,
        pattern: str | None = None,
        file_pattern: str | None = None,
        binary: bool = False,
    ) -> bool:
        """Register a callback for a key.

        Args:
            key: Registry key (the pattern itself unless given separately)
            callback: Function invoked with the event arguments
            pattern: Resource pattern, defaults to key
            file_pattern: Optional second pattern tested against file names
            binary: Mark the subscription as binary (state registry only)

        Returns:
            True if a new entry was created for the key
        """
        entry = self._entries.get(key)
        if entry is None:
            entry = Subscription(
                key=key,
                matcher=compile_pattern(key if pattern is None else pattern),
                callbacks=[callback],
                file_matcher=(
                    compile_pattern(file_pattern) if file_pattern is not None else None
                ),
                binary=binary,
            )
            self._entries[key] = entry
            _LOGGER.debug("%s: new subscription %s", self._name, key)
            return True

        if callback not in entry.callbacks:
            entry.callbacks.append(callback)
        return False

    def remove(self, key: str, callback: Callback | None = None) -> bool:
        """Remove a callback (or all callbacks) from a key.

        Returns:
            True if the entry was destroyed because no callback is left
        """
        entry = self._entries.get(key)
        if entry is None:
            return False

        if callback is None:
            entry.callbacks.clear()
        elif callback in entry.callbacks:
            entry.callbacks.remove(callback)

        if entry.callbacks:
            return False

        del self._entries[key]
        _LOGGER.debug("%s: removed subscription %s", self._name, key)
        return True

    def clear(self) -> None:
        """Remove all entries."""
        self._entries.clear()

    def dispatch(self, event: ChangeEvent) -> int:
        """Invoke every callback whose pattern matches the event.

        A failing callback is logged and does not stop the others.

        Returns:
            Number of callbacks invoked
        """
        count = 0
        for entry in list(self._entries.values()):
            if not entry.matches(event):
                continue
            for callback in list(entry.callbacks):
                count += 1
                try:
                    callback(*event.args)
                except Exception:  # noqa: BLE001
                    _LOGGER.exception("%s: callback error for %s", self._name, event.id)
        return count


@dataclass
class InstanceSubscription:
    """Callback for one message type of an adapter instance."""

    message_type: str
    callback: Callback
    data: Any = None


class InstanceSubscriptions:
    """Instance message callbacks keyed by target instance.

    Targets are stored with the ``system.adapter.`` prefix, matching the
    source instance reported by the server.
    """

    def __init__(self) -> None:
        """Initialize an empty store."""
        self._entries: dict[str, list[InstanceSubscription]] = {}

    def __len__(self) -> int:
        return sum(len(subs) for subs in self._entries.values())

    def targets(self) -> list[str]:
        """Return targets that have at least one subscription."""
        return [target for target, subs in self._entries.items() if subs]

    def get(self, target: str) -> list[InstanceSubscription]:
        """Return a copy of the subscriptions of a target."""
        return list(self._entries.get(target, []))

    def message_types(self, target: str) -> list[str]:
        """Return distinct message types subscribed for a target."""
        return list(
            dict.fromkeys(sub.message_type for sub in self._entries.get(target, []))
        )

    def has(self, target: str, message_type: str) -> bool:
        """Return True if any callback is registered for target/message_type."""
        return any(
            sub.message_type == message_type for sub in self._entries.get(target, [])
        )

    def add(
        self, target: str, message_type: str, callback: Callback, data: Any = None
    ) -> bool:
        """Store a callback. Returns False if it was already registered."""
        subs = self._entries.setdefault(target, [])
        for sub in subs:
            if sub.message_type == message_type and sub.callback == callback:
                return False
        subs.append(InstanceSubscription(message_type, callback, data))
        return True

    def remove(
        self,
        target: str,
        message_type: str | None = None,
        callback: Callback | None = None,
    ) -> list[str]:
        """Remove matching subscriptions.

        Args:
            target: Target instance (with ``system.adapter.`` prefix)
            message_type: Only remove this message type (None matches all)
            callback: Only remove this callback (None matches all)

        Returns:
            Message types that have no remaining subscription
        """
        subs = self._entries.get(target)
        if not subs:
            return []

        removed_types: list[str] = []
        kept: list[InstanceSubscription] = []
        for sub in subs:
            if (message_type is None or sub.message_type == message_type) and (
                callback is None or sub.callback == callback
            ):
                if sub.message_type not in removed_types:
                    removed_types.append(sub.message_type)
            else:
                kept.append(sub)

        if kept:
            self._entries[target] = kept
        else:
            del self._entries[target]

        remaining = {sub.message_type for sub in kept}
        return [mtype for mtype in removed_types if mtype not in remaining]

    def clear(self) -> None:
        """Remove all subscriptions."""
        self._entries.clear()

    def dispatch(self, message: InstanceMessage) -> int:
        """Invoke callbacks subscribed to the message's source and type."""
        count = 0
        for sub in list(self._entries.get(message.source_instance, [])):
            if sub.message_type != message.message_type:
                continue
            count += 1
            try:
                sub.callback(*message.args)
            except Exception:  # noqa: BLE001
                _LOGGER.exception(
                    "Instance message callback error for %s", message.source_instance
                )
        return count
