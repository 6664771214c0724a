"""PyIoBroker - Async real-time sync client for ioBroker.

This package keeps a local view of an ioBroker object/state store in sync
over a single WebSocket session.

Main components:
- Connection: High-level client with lifecycle, bootstrap and resubscription
- SubscriptionRegistry: Pattern to callbacks bookkeeping
- RequestCache: Coalescing of slow-changing remote reads
- WebSocketTransport: Framing, acknowledgements and reconnection

Example:
    from pyiobroker import Connection, ConnectionConfig

    def on_state(state_id, state):
        print(f"{state_id} = {state['val'] if state else None}")

    conn = Connection(ConnectionConfig(host="192.168.1.10", port=8082))
    await conn.start()
    await conn.wait_until_ready()
    await conn.subscribe_state("javascript.0.*", on_state)
"""

from .cache import RequestCache
from .client import Connection
from .config import CONNECTION_SCHEMA, ConnectionConfig
from .deferred import DeferredQueue
from .exceptions import (
    IoBrokerAdminOnly,
    IoBrokerConnectionFailed,
    IoBrokerException,
    IoBrokerInvalidConfig,
    IoBrokerNotConnected,
    IoBrokerNotSupported,
    IoBrokerPermissionDenied,
    IoBrokerReauthenticationRequired,
    IoBrokerRemoteError,
    IoBrokerTimeout,
)
from .messages import (
    ChangeEvent,
    CommandExit,
    CommandOutput,
    ConnectionState,
    FileChange,
    InstanceMessage,
    ObjectChange,
    StateChange,
)
from .models import Certificate, ConnectionHealth, HostAddress
from .pattern import Matcher, compile_pattern, pattern_to_regex
from .registry import InstanceSubscriptions, Subscription, SubscriptionRegistry
from .roles import ADMIN_ROLE, WEB_ROLE, Role, select_role
from .transport import ConnectOptions, Transport, WebSocketTransport, build_url

__all__ = [
    # Client
    "Connection",
    "ConnectionConfig",
    "CONNECTION_SCHEMA",
    "ConnectionHealth",
    # Messages
    "ChangeEvent",
    "CommandExit",
    "CommandOutput",
    "ConnectionState",
    "FileChange",
    "InstanceMessage",
    "ObjectChange",
    "StateChange",
    # Building blocks
    "DeferredQueue",
    "InstanceSubscriptions",
    "Matcher",
    "RequestCache",
    "Subscription",
    "SubscriptionRegistry",
    "compile_pattern",
    "pattern_to_regex",
    # Roles
    "ADMIN_ROLE",
    "Role",
    "WEB_ROLE",
    "select_role",
    # Transport
    "ConnectOptions",
    "Transport",
    "WebSocketTransport",
    "build_url",
    # Models
    "Certificate",
    "HostAddress",
    # Exceptions
    "IoBrokerAdminOnly",
    "IoBrokerConnectionFailed",
    "IoBrokerException",
    "IoBrokerInvalidConfig",
    "IoBrokerNotConnected",
    "IoBrokerNotSupported",
    "IoBrokerPermissionDenied",
    "IoBrokerReauthenticationRequired",
    "IoBrokerRemoteError",
    "IoBrokerTimeout",
]
