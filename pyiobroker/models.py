"""Data models for the ioBroker connection client."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class ConnectionHealth:
    """Health metrics for a connection."""

    connected: bool = False
    connected_at: datetime | None = None
    last_message_time: datetime | None = None
    message_count: int = 0
    reconnect_count: int = 0
    error_count: int = 0
    last_error: str | None = None

    def record_connect(self) -> None:
        """Record that a session was established."""
        self.connected = True
        self.connected_at = datetime.now()

    def record_disconnect(self) -> None:
        """Record that the session was lost."""
        self.connected = False

    def record_message(self) -> None:
        """Record that a push notification was received."""
        self.message_count += 1
        self.last_message_time = datetime.now()

    def record_reconnect(self) -> None:
        """Record a reconnection event."""
        self.reconnect_count += 1

    def record_error(self, error: str) -> None:
        """Record an error reported by the server or transport."""
        self.error_count += 1
        self.last_error = error


@dataclass(frozen=True)
class Certificate:
    """A certificate stored in system.certificates.

    kind is one of "private", "public", "chained" or "" (unknown).
    """

    name: str
    kind: str


@dataclass(frozen=True)
class HostAddress:
    """A listen address offered by a host."""

    name: str
    address: str
    family: str
