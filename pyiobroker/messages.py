"""Typed push notifications delivered by the connection.

Each transport event with its own payload shape gets a frozen dataclass.
The ``args`` property gives the positional arguments subscriber callbacks
are invoked with.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Union


class ConnectionState(IntEnum):
    """Lifecycle stages of a connection, in bootstrap order."""

    CONNECTING = 0
    CONNECTED = 1
    OBJECTS_LOADED = 2
    STATES_LOADED = 3
    READY = 4


@dataclass(frozen=True)
class StateChange:
    """A state value changed (or was deleted when state is None)."""

    id: str
    state: dict[str, Any] | None

    @property
    def args(self) -> tuple[Any, ...]:
        return (self.id, self.state)


@dataclass(frozen=True)
class ObjectChange:
    """An object was created, changed or deleted (obj is None)."""

    id: str
    obj: dict[str, Any] | None
    old_obj: dict[str, Any] | None = None

    @property
    def args(self) -> tuple[Any, ...]:
        return (self.id, self.obj, self.old_obj)


@dataclass(frozen=True)
class FileChange:
    """A file of an object changed. size is None for deleted files."""

    id: str
    file_name: str
    size: int | None = None

    @property
    def args(self) -> tuple[Any, ...]:
        return (self.id, self.file_name, self.size)


@dataclass(frozen=True)
class InstanceMessage:
    """A point-to-point message pushed by an adapter instance."""

    message_type: str
    source_instance: str
    data: Any = None

    @property
    def args(self) -> tuple[Any, ...]:
        return (self.data, self.source_instance, self.message_type)


@dataclass(frozen=True)
class CommandOutput:
    """A line of stdout or stderr from a host command."""

    command_id: str
    text: str
    stderr: bool = False

    @property
    def args(self) -> tuple[Any, ...]:
        return (self.command_id, self.text)


@dataclass(frozen=True)
class CommandExit:
    """A host command finished."""

    command_id: str
    exit_code: int

    @property
    def args(self) -> tuple[Any, ...]:
        return (self.command_id, self.exit_code)


ChangeEvent = Union[StateChange, ObjectChange, FileChange]
