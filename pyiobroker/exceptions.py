"""Exceptions raised by the ioBroker connection client."""

from __future__ import annotations

from typing import Any

from .const import ADMIN_ONLY, NOT_CONNECTED


class IoBrokerException(Exception):
    """Base class for all client errors."""


class IoBrokerConnectionFailed(IoBrokerException):
    """The transport could not establish a session."""


class IoBrokerInvalidConfig(IoBrokerException):
    """The connection configuration is invalid."""


class IoBrokerNotConnected(IoBrokerException):
    """An operation was attempted without a transport session.

    Also raised for requests that were in flight when the session dropped.
    """

    def __init__(self, message: str = NOT_CONNECTED) -> None:
        super().__init__(message)


class IoBrokerRemoteError(IoBrokerException):
    """The server answered an operation with an error payload."""

    def __init__(
        self,
        message: Any,
        operation: str | None = None,
        resource_id: str | None = None,
    ) -> None:
        super().__init__(str(message))
        self.error = message
        self.operation = operation
        self.resource_id = resource_id

    def __str__(self) -> str:
        text = super().__str__()
        if self.operation and self.resource_id:
            return f"{self.operation}({self.resource_id}): {text}"
        if self.operation:
            return f"{self.operation}: {text}"
        return text


class IoBrokerPermissionDenied(IoBrokerRemoteError):
    """The server explicitly refused an operation."""

    def __init__(
        self,
        message: Any = "no permission",
        operation: str | None = None,
        resource_id: str | None = None,
        type_: str | None = None,
    ) -> None:
        super().__init__(message, operation, resource_id)
        self.type = type_


class IoBrokerTimeout(IoBrokerException):
    """A timeout-guarded call did not receive its response in time."""

    def __init__(self, operation: str, timeout: float) -> None:
        super().__init__(f"{operation} timeout")
        self.operation = operation
        self.timeout = timeout


class IoBrokerReauthenticationRequired(IoBrokerException):
    """The server demands a new login before serving further requests."""


class IoBrokerAdminOnly(IoBrokerException):
    """The operation is only available for the admin role."""

    def __init__(self, operation: str | None = None) -> None:
        super().__init__(ADMIN_ONLY)
        self.operation = operation


class IoBrokerNotSupported(IoBrokerException):
    """The server does not support the requested feature."""
