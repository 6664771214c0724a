"""High-level async client for an ioBroker object/state store.

This module provides:
- Connection lifecycle state machine and bootstrap with bounded retry
- Request plumbing (not-connected gate, remote errors, guarded timeouts)
- State, object and file subscriptions with resubscription on reconnect
- Instance message channel
- State, object, file and messaging operations

Uses the transport layer for the wire and the registries for routing.
Host and adapter administration lives in AdminCommandsMixin.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import time
from typing import Any, Callable, Iterable

from .admin import AdminCommandsMixin
from .cache import RequestCache
from .config import ConnectionConfig
from .const import (
    AUTHENTICATE_MIN_VERSION,
    DEFAULT_LANGUAGE,
    EVENT_CMD_EXIT,
    EVENT_CMD_STDERR,
    EVENT_CMD_STDOUT,
    EVENT_CONNECT,
    EVENT_CONNECT_ERROR,
    EVENT_DISCONNECT,
    EVENT_ERROR,
    EVENT_FILE_CHANGE,
    EVENT_INSTANCE_MESSAGE,
    EVENT_LOG,
    EVENT_OBJECT_CHANGE,
    EVENT_PERMISSION_ERROR,
    EVENT_REAUTHENTICATE,
    EVENT_RECONNECT,
    EVENT_STATE_CHANGE,
    FILE_KEY_SEPARATOR,
    PERMISSION_ERROR,
    SYSTEM_CONFIG_ID,
    SYSTEM_UUID_ID,
    USER_NOT_AUTHORIZED,
    VERSION_PROBE_DELAY,
    VIEW_END,
)
from .deferred import DeferredQueue
from .exceptions import (
    IoBrokerConnectionFailed,
    IoBrokerException,
    IoBrokerNotConnected,
    IoBrokerPermissionDenied,
    IoBrokerReauthenticationRequired,
    IoBrokerRemoteError,
    IoBrokerTimeout,
)
from .messages import (
    CommandExit,
    CommandOutput,
    ConnectionState,
    FileChange,
    InstanceMessage,
    ObjectChange,
    StateChange,
)
from .models import ConnectionHealth
from .objects import (
    normalize_instance_id,
    normalize_system_config,
    parse_version,
    rows_to_dict,
    rows_to_list,
    sanitize_object,
)
from .pattern import compile_pattern
from .registry import Callback, InstanceSubscriptions, SubscriptionRegistry
from .roles import Role, select_role
from .transport import (
    ConnectOptions,
    EventEmitter,
    Transport,
    WebSocketTransport,
    build_url,
)

_LOGGER = logging.getLogger(__name__)

# Listener kinds
LISTENER_CONNECTION = "connection"
LISTENER_PROGRESS = "progress"
LISTENER_READY = "ready"
LISTENER_ERROR = "error"
LISTENER_LOG = "log"
LISTENER_LANGUAGE = "language"
LISTENER_REAUTHENTICATE = "reauthenticate"
LISTENER_RELOAD = "reload"
LISTENER_OBJECT_CHANGE = "object_change"

CommandCallback = Callable[[str, Any], Any]


def _as_list(value: str | Iterable[str]) -> list[str]:
    if isinstance(value, str):
        return [value]
    return list(value)


class Connection(AdminCommandsMixin):
    """Real-time sync client for an ioBroker store.

    This class provides:
    - One supervised session with automatic resubscription
    - Lifecycle CONNECTING -> CONNECTED -> OBJECTS_LOADED ->
      STATES_LOADED -> READY
    - Multiplexed state, object and file subscriptions
    - Request coalescing for slow-changing resources
    - Connection health tracking

    Example:
        def on_alive(state_id, state):
            print(f"{state_id}: {state['val'] if state else None}")

        conn = Connection(ConnectionConfig(host="192.168.1.10", port=8084))
        await conn.start()
        await conn.wait_until_ready()
        await conn.subscribe_state("system.adapter.*.alive", on_alive)
        config = await conn.get_object("system.config")
    """

    def __init__(
        self,
        config: ConnectionConfig | None = None,
        transport: Transport | None = None,
    ) -> None:
        """Initialize the connection.

        Args:
            config: Connection settings (defaults apply if omitted)
            transport: Transport to use (a WebSocketTransport if omitted)
        """
        self._config = config or ConnectionConfig()
        self._role: Role = select_role(self._config.role)
        self._transport: Transport = transport or WebSocketTransport()

        self._cache = RequestCache()
        self._deferred = DeferredQueue()
        self._listeners = EventEmitter()
        self._health = ConnectionHealth()

        # Subscription registries
        self._state_subs = SubscriptionRegistry("states")
        self._object_subs = SubscriptionRegistry("objects")
        self._file_subs = SubscriptionRegistry("files")
        self._instance_subs = InstanceSubscriptions()

        # Lifecycle
        self._state = ConnectionState.CONNECTING
        self._started = False
        self._connected = False
        self._subscribed = False
        self._first_connect = True
        self._loaded = False
        self._restart_required = self._config.restart_required
        self._first_connection = asyncio.Event()
        self._ready_event = asyncio.Event()
        self._loaded_event = asyncio.Event()
        self._bootstrap_task: asyncio.Task | None = None
        self._bootstrap_attempts: list[asyncio.Task] = []

        # In-flight requests and background tasks
        self._pending: set[asyncio.Future] = set()
        self._tasks: set[asyncio.Task] = set()

        # Single command output handlers
        self._cmd_stdout_handler: CommandCallback | None = None
        self._cmd_stderr_handler: CommandCallback | None = None
        self._cmd_exit_handler: CommandCallback | None = None

        # Session data
        self.objects: dict[str, Any] | None = None
        self.states: dict[str, Any] = {}
        self.system_config: dict[str, Any] | None = None
        self.language: str = self._config.language or DEFAULT_LANGUAGE
        self.acl: dict[str, Any] | None = None
        self.is_secure: bool = False

        # Locally simulated state that is never sent to the store
        self._ignore_state = ""
        self._sim_states: dict[str, dict[str, Any]] = {}

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def config(self) -> ConnectionConfig:
        """Return configuration."""
        return self._config

    @property
    def role(self) -> Role:
        """Return the role strategy."""
        return self._role

    @property
    def state(self) -> ConnectionState:
        """Return current lifecycle stage."""
        return self._state

    @property
    def connected(self) -> bool:
        """Return True if the session is authenticated."""
        return self._connected

    @property
    def is_ready(self) -> bool:
        """Return True once bulk data and subscriptions are consistent."""
        return self._state == ConnectionState.READY

    @property
    def health(self) -> ConnectionHealth:
        """Return health metrics."""
        return self._health

    @property
    def bootstrap_attempts(self) -> int:
        """Return the number of bootstrap attempts of the current session."""
        return len(self._bootstrap_attempts)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Wire transport events and open the session.

        Returns once the transport is started. Use wait_until_ready() to
        wait for the bootstrap.
        """
        if self._started:
            return

        self._started = True
        for event, handler in self._transport_handlers().items():
            self._transport.on(event, handler)
        await self._transport.connect(
            build_url(self._config), ConnectOptions.from_config(self._config)
        )

    async def stop(self) -> None:
        """Close the session and cancel background work."""
        if not self._started:
            return

        self._started = False
        for event, handler in self._transport_handlers().items():
            self._transport.off(event, handler)
        self._cancel_bootstrap()
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        self._deferred.clear()

        await self._transport.close()

        self._connected = False
        self._subscribed = False
        self._fail_pending()
        self._health.record_disconnect()
        self._set_state(ConnectionState.CONNECTING)

    async def __aenter__(self) -> Connection:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    async def wait_for_first_connection(self) -> None:
        """Wait until the first authenticated session."""
        await self._first_connection.wait()

    async def wait_until_ready(self, timeout: float | None = None) -> None:
        """Wait until the connection reaches READY.

        Raises:
            IoBrokerTimeout: If timeout elapses first
        """
        try:
            await asyncio.wait_for(self._ready_event.wait(), timeout)
        except asyncio.TimeoutError as err:
            raise IoBrokerTimeout("wait_until_ready", timeout or 0) from err

    async def flush(self) -> None:
        """Wait until all queued notifications have been dispatched."""
        await self._deferred.flush()

    def mark_restart_required(self) -> None:
        """Reload everything instead of resuming on the next (re)connect."""
        self._restart_required = True

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        _LOGGER.debug("State %s -> %s", self._state.name, state.name)
        self._state = state
        if state == ConnectionState.READY:
            self._ready_event.set()
        else:
            self._ready_event.clear()
        self._listeners.fire(LISTENER_PROGRESS, state)

    def _progress(self, stage: ConnectionState) -> None:
        """Advance the lifecycle, never moving backwards."""
        if stage > self._state:
            self._set_state(stage)

    def _spawn(self, coro: Any) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # =========================================================================
    # Listeners
    # =========================================================================

    def register_connection_handler(self, handler: Callable[[bool], Any]) -> None:
        """Call handler(connected) on every connect and disconnect."""
        self._listeners.on(LISTENER_CONNECTION, handler)

    def unregister_connection_handler(self, handler: Callable[[bool], Any]) -> None:
        """Remove a connection handler."""
        self._listeners.off(LISTENER_CONNECTION, handler)

    def register_progress_handler(
        self, handler: Callable[[ConnectionState], Any]
    ) -> None:
        """Call handler(state) on every lifecycle transition."""
        self._listeners.on(LISTENER_PROGRESS, handler)

    def unregister_progress_handler(
        self, handler: Callable[[ConnectionState], Any]
    ) -> None:
        """Remove a progress handler."""
        self._listeners.off(LISTENER_PROGRESS, handler)

    def register_ready_handler(self, handler: Callable[[dict], Any]) -> None:
        """Call handler(objects) when the bootstrap completes."""
        self._listeners.on(LISTENER_READY, handler)

    def unregister_ready_handler(self, handler: Callable[[dict], Any]) -> None:
        """Remove a ready handler."""
        self._listeners.off(LISTENER_READY, handler)

    def register_error_handler(
        self, handler: Callable[[IoBrokerException], Any]
    ) -> None:
        """Call handler(error) for errors not tied to a single call."""
        self._listeners.on(LISTENER_ERROR, handler)

    def unregister_error_handler(
        self, handler: Callable[[IoBrokerException], Any]
    ) -> None:
        """Remove an error handler."""
        self._listeners.off(LISTENER_ERROR, handler)

    def register_log_handler(self, handler: Callable[[Any], Any]) -> None:
        """Call handler(message) for every forwarded log line."""
        self._listeners.on(LISTENER_LOG, handler)

    def unregister_log_handler(self, handler: Callable[[Any], Any]) -> None:
        """Remove a log handler."""
        self._listeners.off(LISTENER_LOG, handler)

    def register_language_handler(self, handler: Callable[[str], Any]) -> None:
        """Call handler(language) when the system language is known."""
        self._listeners.on(LISTENER_LANGUAGE, handler)

    def unregister_language_handler(self, handler: Callable[[str], Any]) -> None:
        """Remove a language handler."""
        self._listeners.off(LISTENER_LANGUAGE, handler)

    def register_reauthenticate_handler(
        self, handler: Callable[[IoBrokerReauthenticationRequired], Any]
    ) -> None:
        """Call handler(error) when the server demands a new login."""
        self._listeners.on(LISTENER_REAUTHENTICATE, handler)

    def unregister_reauthenticate_handler(
        self, handler: Callable[[IoBrokerReauthenticationRequired], Any]
    ) -> None:
        """Remove a reauthentication handler."""
        self._listeners.off(LISTENER_REAUTHENTICATE, handler)

    def register_reload_handler(self, handler: Callable[[], Any]) -> None:
        """Call handler() before a full reload."""
        self._listeners.on(LISTENER_RELOAD, handler)

    def unregister_reload_handler(self, handler: Callable[[], Any]) -> None:
        """Remove a reload handler."""
        self._listeners.off(LISTENER_RELOAD, handler)

    def register_object_change_handler(self, handler: Callback) -> None:
        """Call handler(id, obj) when the loaded object map changes."""
        self._listeners.on(LISTENER_OBJECT_CHANGE, handler)

    def unregister_object_change_handler(self, handler: Callback) -> None:
        """Remove an object change handler."""
        self._listeners.off(LISTENER_OBJECT_CHANGE, handler)

    def register_cmd_stdout_handler(self, handler: CommandCallback) -> None:
        """Set the handler for command stdout lines."""
        self._cmd_stdout_handler = handler

    def unregister_cmd_stdout_handler(self) -> None:
        """Clear the command stdout handler."""
        self._cmd_stdout_handler = None

    def register_cmd_stderr_handler(self, handler: CommandCallback) -> None:
        """Set the handler for command stderr lines."""
        self._cmd_stderr_handler = handler

    def unregister_cmd_stderr_handler(self) -> None:
        """Clear the command stderr handler."""
        self._cmd_stderr_handler = None

    def register_cmd_exit_handler(self, handler: CommandCallback) -> None:
        """Set the handler for command exit codes."""
        self._cmd_exit_handler = handler

    def unregister_cmd_exit_handler(self) -> None:
        """Clear the command exit handler."""
        self._cmd_exit_handler = None

    def _report_error(self, error: IoBrokerException) -> None:
        self._health.record_error(str(error))
        self._listeners.fire(LISTENER_ERROR, error)

    # =========================================================================
    # Transport events
    # =========================================================================

    def _transport_handlers(self) -> dict[str, Callable[..., Any]]:
        return {
            EVENT_CONNECT: self._on_connect,
            EVENT_RECONNECT: self._on_reconnect,
            EVENT_DISCONNECT: self._on_disconnect,
            EVENT_REAUTHENTICATE: self._on_reauthenticate,
            EVENT_LOG: self._on_log,
            EVENT_ERROR: self._on_error,
            EVENT_CONNECT_ERROR: self._on_connect_error,
            EVENT_PERMISSION_ERROR: self._on_permission_error,
            EVENT_OBJECT_CHANGE: self._on_object_change,
            EVENT_STATE_CHANGE: self._on_state_change,
            EVENT_INSTANCE_MESSAGE: self._on_instance_message,
            EVENT_FILE_CHANGE: self._on_file_change,
            EVENT_CMD_STDOUT: self._on_cmd_stdout,
            EVENT_CMD_STDERR: self._on_cmd_stderr,
            EVENT_CMD_EXIT: self._on_cmd_exit,
        }

    def _on_connect(self, ready: bool | None = None, *args: Any) -> None:
        self._health.record_connect()
        if ready is True:
            self._spawn(self._authenticate())
        else:
            # Handlers on the server may not be installed yet
            self._spawn(self._probe_and_authenticate())

    def _on_reconnect(self, *args: Any) -> None:
        _LOGGER.info("Transport reconnected")
        self._health.record_connect()
        self._health.record_reconnect()
        self._spawn(self._authenticate())

    def _on_disconnect(self, *args: Any) -> None:
        _LOGGER.warning("Disconnected, waiting for reconnect")
        self._connected = False
        self._subscribed = False
        self._cancel_bootstrap()
        if self._first_connect:
            # Bootstrap did not reach READY, the next session starts over
            self._loaded = False
        self._fail_pending()
        self._health.record_disconnect()
        self._set_state(ConnectionState.CONNECTING)
        self._listeners.fire(LISTENER_CONNECTION, False)

    def _on_reauthenticate(self, *args: Any) -> None:
        self._request_reauthentication("Server requested re-authentication")

    def _on_log(self, message: Any = None, *args: Any) -> None:
        self._listeners.fire(LISTENER_LOG, message)

    def _on_error(self, error: Any = None, *args: Any) -> None:
        text = "" if error is None else str(error)
        if USER_NOT_AUTHORIZED in text:
            self._request_reauthentication(text)
            return
        _LOGGER.error("Socket error: %s", text)
        self._report_error(IoBrokerRemoteError(text))

    def _on_connect_error(self, error: Any = None, *args: Any) -> None:
        _LOGGER.error("Connect error: %s", error)
        self._report_error(IoBrokerConnectionFailed(str(error)))

    def _on_permission_error(self, error: Any = None, *args: Any) -> None:
        error = error if isinstance(error, dict) else {}
        exc = IoBrokerPermissionDenied(
            "no permission",
            operation=error.get("operation"),
            resource_id=error.get("id") or "",
            type_=error.get("type"),
        )
        _LOGGER.warning("Permission denied: %s", exc)
        self._report_error(exc)

    def _on_object_change(self, object_id: str, obj: Any = None, *args: Any) -> None:
        self._health.record_message()
        self._deferred.push(self._object_change, object_id, obj)

    def _on_state_change(self, state_id: str, state: Any = None, *args: Any) -> None:
        self._health.record_message()
        self._deferred.push(self._state_change, state_id, state)

    def _on_instance_message(
        self, message_type: str, source: str, data: Any = None, *args: Any
    ) -> None:
        self._health.record_message()
        self._deferred.push(
            self._instance_subs.dispatch, InstanceMessage(message_type, source, data)
        )

    def _on_file_change(
        self, object_id: str, file_name: str, size: int | None = None, *args: Any
    ) -> None:
        self._health.record_message()
        self._deferred.push(
            self._file_subs.dispatch, FileChange(object_id, file_name, size)
        )

    def _on_cmd_stdout(self, command_id: str, text: str, *args: Any) -> None:
        if self._cmd_stdout_handler:
            self._call_handler(
                self._cmd_stdout_handler, CommandOutput(command_id, text)
            )

    def _on_cmd_stderr(self, command_id: str, text: str, *args: Any) -> None:
        if self._cmd_stderr_handler:
            self._call_handler(
                self._cmd_stderr_handler, CommandOutput(command_id, text, stderr=True)
            )

    def _on_cmd_exit(self, command_id: str, exit_code: int, *args: Any) -> None:
        if self._cmd_exit_handler:
            self._call_handler(self._cmd_exit_handler, CommandExit(command_id, exit_code))

    @staticmethod
    def _call_handler(handler: Callable[..., Any], event: Any) -> None:
        try:
            handler(*event.args)
        except Exception:  # noqa: BLE001
            _LOGGER.exception("Callback error")

    def _request_reauthentication(self, reason: str) -> None:
        error = IoBrokerReauthenticationRequired(reason)
        _LOGGER.warning("Re-authentication required: %s", reason)
        self._listeners.fire(LISTENER_REAUTHENTICATE, error)
        self._report_error(error)

    # =========================================================================
    # Handshake and bootstrap
    # =========================================================================

    async def _probe_and_authenticate(self) -> None:
        """Authenticate only if the server is new enough to know how."""
        await asyncio.sleep(VERSION_PROBE_DELAY)
        try:
            info = await self.get_version()
        except IoBrokerException as err:
            _LOGGER.warning("Cannot read server version: %s", err)
            self._report_error(err)
            return

        if parse_version(info.get("version")) < AUTHENTICATE_MIN_VERSION:
            self._on_pre_connect(False, False)
        else:
            await self._authenticate()

    async def _authenticate(self) -> None:
        try:
            result = await self._emit("authenticate")
        except IoBrokerNotConnected:
            _LOGGER.debug("Session lost during authentication")
            return
        is_ok = bool(result[0]) if result else False
        is_secure = bool(result[1]) if len(result) > 1 else False
        self._on_pre_connect(is_ok, is_secure)

    def _on_pre_connect(self, is_ok: bool, is_secure: bool) -> None:
        """Handle a completed handshake."""
        _LOGGER.info("Session established (secure=%s)", is_secure)
        self._connected = True
        self.is_secure = is_secure

        if self._restart_required:
            self._full_reload()

        if self._first_connect:
            self._set_state(ConnectionState.CONNECTED)
            self._start_bootstrap()
        else:
            self._set_state(ConnectionState.READY)

        self._resubscribe_all()
        self._listeners.fire(LISTENER_CONNECTION, True)
        self._first_connection.set()

    def _full_reload(self) -> None:
        """Forget everything learned from the server and bootstrap again."""
        _LOGGER.info("Restart required, reloading")
        self._restart_required = False
        self._cache.clear()
        self.objects = None
        self.states = {}
        self.system_config = None
        self.acl = None
        self._first_connect = True
        self._loaded = False
        self._listeners.fire(LISTENER_RELOAD)

    def _start_bootstrap(self) -> None:
        self._cancel_bootstrap()
        self._loaded_event = asyncio.Event()
        self._bootstrap_task = self._spawn(self._run_bootstrap())

    def _cancel_bootstrap(self) -> None:
        if self._bootstrap_task and not self._bootstrap_task.done():
            self._bootstrap_task.cancel()
        self._bootstrap_task = None
        for attempt in self._bootstrap_attempts:
            if not attempt.done():
                attempt.cancel()
        self._bootstrap_attempts = []

    async def _run_bootstrap(self) -> None:
        """Run the bootstrap, starting another attempt on each retry tick.

        Earlier attempts keep running; the first one to load wins.
        """
        interval = self._config.bootstrap_retry_interval
        while len(self._bootstrap_attempts) < self._config.bootstrap_max_attempts:
            self._bootstrap_attempts.append(self._spawn(self._bootstrap()))
            try:
                await asyncio.wait_for(self._loaded_event.wait(), interval)
                return
            except asyncio.TimeoutError:
                _LOGGER.debug(
                    "Bootstrap not finished after attempt %d",
                    len(self._bootstrap_attempts),
                )
        _LOGGER.warning(
            "Bootstrap did not finish after %d attempts",
            len(self._bootstrap_attempts),
        )

    def _mark_loaded(self) -> bool:
        """Claim the bootstrap for the calling attempt."""
        if self._loaded:
            return False
        self._loaded = True
        self._loaded_event.set()
        return True

    async def _bootstrap(self) -> None:
        """Read permissions, system config and optionally all objects."""
        try:
            acl = await self._get_user_permissions()
        except IoBrokerException as err:
            _LOGGER.error("Cannot read user permissions: %s", err)
            self._report_error(err)
            return

        if self._config.load_acl:
            if not self._mark_loaded():
                return
            self.acl = acl

        try:
            if self._config.admin5only:
                data = await self.get_compact_system_config()
            else:
                data = await self.get_system_config()
            if not self._config.load_acl and not self._mark_loaded():
                return

            self.system_config = data
            common = (data or {}).get("common") or {}
            self.language = (
                common.get("language") or self._config.language or DEFAULT_LANGUAGE
            )
            self._listeners.fire(LISTENER_LANGUAGE, self.language)

            if self._config.load_all_objects:
                await self.get_objects(update=True)
            else:
                self.objects = {} if self._config.admin5only else {SYSTEM_CONFIG_ID: data}
        except IoBrokerException as err:
            _LOGGER.error("Cannot read system config: %s", err)
            self._report_error(err)
            return

        self._first_connect = False
        self._set_state(ConnectionState.READY)
        self._listeners.fire(LISTENER_READY, self.objects)

    async def _get_user_permissions(self) -> dict[str, Any] | None:
        if not self._config.load_acl:
            return None
        return await self._request("getUserPermissions")

    def _resubscribe_all(self) -> None:
        """Wire every registry again and reconcile current values."""
        if self._subscribed:
            return
        self._subscribed = True

        for pattern in self._config.auto_subscribes:
            self._send("subscribeObjects", pattern)
        object_patterns = self._object_subs.patterns()
        for pattern in object_patterns:
            self._send("subscribeObjects", pattern)

        if self._config.auto_subscribe_log:
            self._send("requireLog", True)

        state_ids = [key for key in self._state_subs.keys() if key != self._ignore_state]
        for state_id in state_ids:
            self._send("subscribe", state_id)

        files: dict[str, list[str]] = {}
        for entry in self._file_subs:
            assert entry.file_matcher is not None
            files.setdefault(entry.pattern, []).append(entry.file_matcher.pattern)
        for object_id, patterns in files.items():
            self._send("subscribeFiles", object_id, patterns)

        for target in self._instance_subs.targets():
            for message_type in self._instance_subs.message_types(target):
                data = next(
                    sub.data
                    for sub in self._instance_subs.get(target)
                    if sub.message_type == message_type
                )
                self._spawn(self._resubscribe_instance(target, message_type, data))

        plain_ids = [
            key
            for key in state_ids
            if not (entry := self._state_subs.get(key)) or not entry.binary
        ]
        if plain_ids:
            self._spawn(self._reconcile_states(plain_ids))
        if object_patterns:
            self._spawn(self._reconcile_objects(object_patterns))

    async def _resubscribe_instance(
        self, target: str, message_type: str, data: Any
    ) -> None:
        try:
            result = await self._emit("clientSubscribe", target, message_type, data)
        except IoBrokerNotConnected:
            return
        if result and result[0]:
            _LOGGER.warning(
                "Cannot resubscribe %s on %s: %s", message_type, target, result[0]
            )

    async def _reconcile_states(
        self,
        ids: list[str],
        callback: Callback | None = None,
        binary: bool = False,
    ) -> None:
        """Fetch current values and deliver them like notifications.

        Fetched values overwrite nothing locally; they are queued behind any
        notification already received, in arrival order.
        """
        if binary and callback is not None:
            for state_id in ids:
                try:
                    data = await self.get_binary_state(state_id)
                except IoBrokerException as err:
                    _LOGGER.warning("Cannot read binary state %s: %s", state_id, err)
                    continue
                self._deferred.push(callback, state_id, data)
        else:
            try:
                states = await self._request(self._role.states_verb, ids)
            except IoBrokerException as err:
                _LOGGER.warning("Cannot read states %s: %s", ids, err)
                return
            for state_id, state in (states or {}).items():
                if callback is None:
                    self._deferred.push(self._state_change, state_id, state)
                else:
                    self._deferred.push(callback, state_id, state)
        await self._deferred.flush()

    async def _reconcile_objects(
        self, patterns: list[str], callback: Callback | None = None
    ) -> None:
        """Fetch current objects for the patterns with a single read.

        Exact ids are read with getObjects. Any wildcard switches to one
        bulk read of all objects, filtered by the patterns.
        """
        try:
            if any("*" in pattern for pattern in patterns):
                matchers = [compile_pattern(pattern) for pattern in patterns]
                objects = await self._request(self._role.objects_verb) or {}
                found = {
                    object_id: obj
                    for object_id, obj in objects.items()
                    if any(matcher.test(object_id) for matcher in matchers)
                }
            else:
                found = await self._request("getObjects", patterns) or {}
        except IoBrokerException as err:
            _LOGGER.warning("Cannot read objects %s: %s", patterns, err)
            return

        for object_id, obj in found.items():
            if callback is None:
                self._deferred.push(self._object_change, object_id, obj)
            else:
                self._deferred.push(callback, object_id, obj, None)
        await self._deferred.flush()

    # =========================================================================
    # Request plumbing
    # =========================================================================

    def _check_connected(self) -> None:
        if not self._connected:
            raise IoBrokerNotConnected()

    def _emit(self, verb: str, *args: Any) -> asyncio.Future:
        """Send a verb and return a future for its acknowledgement arguments.

        The future fails with IoBrokerNotConnected if the session drops
        before the acknowledgement arrives. A late acknowledgement for a
        future that is already done is ignored.
        """
        future: asyncio.Future = asyncio.get_running_loop().create_future()

        def _ack(*result: Any) -> None:
            if not future.done():
                future.set_result(result)

        if not self._transport.connected or not self._transport.emit(
            verb, *args, callback=_ack
        ):
            future.set_exception(IoBrokerNotConnected())
            return future

        self._pending.add(future)
        future.add_done_callback(self._pending.discard)
        return future

    def _send(self, verb: str, *args: Any) -> bool:
        """Send a verb that needs no acknowledgement."""
        return self._transport.emit(verb, *args)

    def _fail_pending(self) -> None:
        for future in list(self._pending):
            if not future.done():
                future.set_exception(IoBrokerNotConnected())
        self._pending.clear()

    async def _call(self, verb: str, *args: Any) -> tuple[Any, ...]:
        """Issue a verb and return the raw acknowledgement arguments."""
        self._check_connected()
        return await self._emit(verb, *args)

    async def _request(
        self, verb: str, *args: Any, resource_id: str | None = None
    ) -> Any:
        """Issue a verb whose acknowledgement is (error, result)."""
        result = await self._call(verb, *args)
        self._raise_for_error(result, verb, resource_id)
        return result[1] if len(result) > 1 else None

    async def _request_all(
        self, verb: str, *args: Any, resource_id: str | None = None
    ) -> tuple[Any, ...]:
        """Issue a verb whose acknowledgement is (error, *results)."""
        result = await self._call(verb, *args)
        self._raise_for_error(result, verb, resource_id)
        return tuple(result[1:])

    @staticmethod
    def _raise_for_error(
        result: tuple[Any, ...], operation: str, resource_id: str | None
    ) -> None:
        error = result[0] if result else None
        if not error:
            return
        if error == PERMISSION_ERROR:
            raise IoBrokerPermissionDenied(error, operation, resource_id)
        raise IoBrokerRemoteError(error, operation, resource_id)

    async def _guarded(
        self,
        operation: str,
        verb: str,
        *args: Any,
        timeout: float | None = None,
        require_object: bool = True,
    ) -> Any:
        """Issue a verb answered with a single payload, under a deadline.

        Raises:
            IoBrokerTimeout: If no response arrives in time
            IoBrokerPermissionDenied: If the server answers the permission sentinel
            IoBrokerRemoteError: If the payload is empty or not an object
        """
        self._check_connected()
        timeout = timeout or self._config.cmd_timeout
        try:
            result = await asyncio.wait_for(self._emit(verb, *args), timeout)
        except asyncio.TimeoutError as err:
            raise IoBrokerTimeout(operation, timeout) from err

        data = result[0] if result else None
        if data == PERMISSION_ERROR:
            raise IoBrokerPermissionDenied(f'May not read "{operation}"', operation)
        if not data or (require_object and not isinstance(data, dict)):
            raise IoBrokerRemoteError(f'Cannot read "{operation}"', operation)
        return data

    # =========================================================================
    # States
    # =========================================================================

    async def subscribe_state(
        self,
        ids: str | Iterable[str],
        callback: Callback,
        binary: bool = False,
    ) -> None:
        """Subscribe a callback to state changes.

        New patterns are subscribed on the server with one call. While
        connected, the callback also receives the current values of the
        newly subscribed states before this returns.

        Args:
            ids: State id, pattern or list of them
            callback: Called with (id, state) (or (id, base64) if binary)
            binary: Read current values as binary states
        """
        fresh: list[str] = []
        to_subscribe: list[str] = []
        for state_id in _as_list(ids):
            entry = self._state_subs.get(state_id)
            if entry is not None and callback in entry.callbacks:
                continue
            fresh.append(state_id)
            if (
                self._state_subs.add(state_id, callback, binary=binary)
                and state_id != self._ignore_state
            ):
                to_subscribe.append(state_id)

        if not self._connected or not fresh:
            return

        if to_subscribe:
            self._send("subscribe", to_subscribe)
        fetch_ids = [state_id for state_id in fresh if state_id != self._ignore_state]
        if fetch_ids:
            await self._reconcile_states(fetch_ids, callback, binary)

    def unsubscribe_state(
        self, ids: str | Iterable[str], callback: Callback | None = None
    ) -> None:
        """Remove a callback (or all callbacks) from states."""
        to_unsubscribe = [
            state_id
            for state_id in _as_list(ids)
            if self._state_subs.remove(state_id, callback)
            and state_id != self._ignore_state
        ]
        if to_unsubscribe and self._connected:
            self._send("unsubscribe", to_unsubscribe)

    def _state_change(self, state_id: str, state: Any) -> None:
        self._state_subs.dispatch(StateChange(state_id, state))

    async def get_states(self, pattern: str | list[str] | None = None) -> dict[str, Any]:
        """Read states matching a pattern (all states if omitted)."""
        self.states = await self._request("getStates", pattern) or {}
        self._progress(ConnectionState.STATES_LOADED)
        return self.states

    async def get_foreign_states(self, pattern: str = "*") -> dict[str, Any]:
        """Read states of any adapter matching a pattern."""
        return await self._request(self._role.states_verb, pattern or "*") or {}

    async def get_state(self, state_id: str) -> dict[str, Any] | None:
        """Read one state."""
        self._check_connected()
        if state_id and state_id == self._ignore_state:
            return self._sim_states.get(state_id, {"val": None, "ack": True})
        return await self._request("getState", state_id, resource_id=state_id)

    async def set_state(self, state_id: str, val: Any, ack: bool | None = None) -> None:
        """Write a state value.

        Args:
            state_id: State id
            val: Plain value or a state dict with "val"
            ack: Acknowledge flag (sent with plain values only if given)
        """
        self._check_connected()

        if state_id and state_id == self._ignore_state:
            self._set_simulated_state(state_id, val, ack)
            return

        if ack is not None and not isinstance(val, dict):
            val = {"val": val, "ack": ack}
        await self._request("setState", state_id, val, resource_id=state_id)

    def _set_simulated_state(self, state_id: str, val: Any, ack: bool | None) -> None:
        if isinstance(val, dict) and "val" in val:
            state = dict(val)
        else:
            now = int(time.time() * 1000)
            state = {
                "val": val,
                "ack": bool(ack),
                "ts": now,
                "lc": now,
                "from": f"system.adapter.{self._config.name}.0",
            }
        self._sim_states[state_id] = state
        self._state_subs.dispatch(StateChange(state_id, state))

    async def get_binary_state(self, state_id: str) -> str | None:
        """Read a binary state as base64."""
        return await self._request("getBinaryState", state_id, resource_id=state_id)

    async def set_binary_state(self, state_id: str, data: str | bytes) -> None:
        """Write a binary state (bytes are base64 encoded)."""
        if isinstance(data, bytes):
            data = base64.b64encode(data).decode("ascii")
        await self._request("setBinaryState", state_id, data, resource_id=state_id)

    def set_state_to_ignore(self, state_id: str | None) -> None:
        """Simulate a state locally instead of talking to the store."""
        self._ignore_state = state_id or ""

    # =========================================================================
    # Objects
    # =========================================================================

    async def subscribe_object(
        self, ids: str | Iterable[str], callback: Callback
    ) -> None:
        """Subscribe a callback to object changes.

        The callback is called with (id, obj, old_obj). While connected,
        it also receives the current objects of newly subscribed ids.
        """
        fresh: list[str] = []
        to_subscribe: list[str] = []
        for object_id in _as_list(ids):
            entry = self._object_subs.get(object_id)
            if entry is not None and callback in entry.callbacks:
                continue
            fresh.append(object_id)
            if self._object_subs.add(object_id, callback):
                to_subscribe.append(object_id)

        if not self._connected or not fresh:
            return

        if to_subscribe:
            self._send("subscribeObjects", to_subscribe)
        await self._reconcile_objects(fresh, callback)

    def unsubscribe_object(
        self, ids: str | Iterable[str], callback: Callback | None = None
    ) -> None:
        """Remove a callback (or all callbacks) from objects."""
        to_unsubscribe = [
            object_id
            for object_id in _as_list(ids)
            if self._object_subs.remove(object_id, callback)
        ]
        if to_unsubscribe and self._connected:
            self._send("unsubscribeObjects", to_unsubscribe)

    def _object_change(self, object_id: str, obj: Any) -> None:
        old_obj = None
        changed = False
        if self.objects is not None:
            current = self.objects.get(object_id)
            if current is not None:
                old_obj = {"_id": object_id, "type": current.get("type")}
            if obj is not None:
                if current != obj:
                    self.objects[object_id] = obj
                    changed = True
            elif current is not None:
                del self.objects[object_id]
                changed = True

        self._object_subs.dispatch(ObjectChange(object_id, obj, old_obj))
        if changed:
            self._listeners.fire(LISTENER_OBJECT_CHANGE, object_id, obj)

    async def get_object(self, object_id: str) -> dict[str, Any] | None:
        """Read one object."""
        self._check_connected()
        if object_id and object_id == self._ignore_state:
            return {
                "_id": self._ignore_state,
                "type": "state",
                "common": {
                    "name": "ignored state",
                    "type": "mixed",
                    "read": True,
                    "write": True,
                    "role": "state",
                },
                "native": {},
            }
        return await self._request("getObject", object_id, resource_id=object_id)

    async def get_objects(self, update: bool = False) -> dict[str, Any]:
        """Read all objects (served from the loaded map unless update)."""
        self._check_connected()
        if not update and self.objects is not None:
            return self.objects
        self.objects = await self._request(self._role.objects_verb) or {}
        self._progress(ConnectionState.OBJECTS_LOADED)
        return self.objects

    async def get_objects_by_id(self, ids: list[str]) -> dict[str, Any]:
        """Read the objects with the given ids."""
        return await self._request("getObjects", list(ids)) or {}

    async def set_object(self, object_id: str, obj: dict[str, Any]) -> None:
        """Write an object.

        Raises:
            ValueError: If obj is None
        """
        self._check_connected()
        if obj is None:
            raise ValueError("Null object is not allowed")
        await self._request(
            "setObject", object_id, sanitize_object(obj), resource_id=object_id
        )

    async def extend_object(self, object_id: str, obj: dict[str, Any]) -> None:
        """Merge obj into an object, creating it if needed."""
        self._check_connected()
        await self._request(
            "extendObject", object_id, sanitize_object(obj or {}), resource_id=object_id
        )

    async def del_object(self, object_id: str, maintenance: bool = False) -> None:
        """Delete an object."""
        await self._request(
            "delObject", object_id, {"maintenance": maintenance}, resource_id=object_id
        )

    async def del_objects(self, object_id: str, maintenance: bool = False) -> None:
        """Delete an object and all its children."""
        await self._request(
            "delObjects", object_id, {"maintenance": maintenance}, resource_id=object_id
        )

    async def get_object_view_custom(
        self, design: str, obj_type: str, start: str, end: str | None = None
    ) -> dict[str, Any]:
        """Query an object view, returning {id: object}."""
        result = await self._request(
            "getObjectView", design, obj_type, {"startkey": start, "endkey": end}
        )
        return rows_to_dict(result)

    async def get_object_view_system(
        self, obj_type: str, start: str, end: str | None = None
    ) -> dict[str, Any]:
        """Query a system object view."""
        return await self.get_object_view_custom("system", obj_type, start, end)

    async def get_object_view(
        self, start: str, end: str | None, obj_type: str
    ) -> dict[str, Any]:
        """Query a system object view (legacy argument order)."""
        return await self.get_object_view_custom(
            "system", obj_type, start or "", end or VIEW_END
        )

    async def get_foreign_objects(
        self, pattern: str, obj_type: str | None = None
    ) -> dict[str, Any]:
        """Read objects of any adapter matching a pattern (admin only)."""
        self._role.require_admin("getForeignObjects")
        return await self._request("getForeignObjects", pattern or "*", obj_type) or {}

    async def get_enums(
        self, enum: str | None = None, update: bool = False
    ) -> dict[str, Any]:
        """Read enums, optionally only the members of one enum."""
        self._check_connected()

        async def _load() -> dict[str, Any]:
            result = await self._request(
                "getObjectView",
                "system",
                "enum",
                {
                    "startkey": f"enum.{enum or ''}",
                    "endkey": f"enum.{enum + '.' if enum else ''}{VIEW_END}",
                },
            )
            enums = rows_to_dict(result)
            if enum:
                enums.pop(f"enum.{enum}", None)
            return enums

        return await self._cache.fetch(f"enums_{enum or 'all'}", _load, update=update)

    async def read_meta_items(self) -> list[dict[str, Any]]:
        """Read all meta objects."""
        result = await self._request(
            "getObjectView", "system", "meta", {"startkey": "", "endkey": VIEW_END}
        )
        return rows_to_list(result)

    async def get_system_config(self, update: bool = False) -> dict[str, Any]:
        """Read system.config (cached)."""
        self._check_connected()

        async def _load() -> dict[str, Any]:
            return normalize_system_config(
                await self._request(
                    "getObject", SYSTEM_CONFIG_ID, resource_id=SYSTEM_CONFIG_ID
                )
            )

        return await self._cache.fetch("systemConfig", _load, update=update)

    async def set_system_config(self, obj: dict[str, Any]) -> dict[str, Any]:
        """Write system.config and update the cached copy."""
        await self.set_object(SYSTEM_CONFIG_ID, obj)
        self._cache.set("systemConfig", obj)
        return obj

    async def get_compact_system_config(self, update: bool = False) -> dict[str, Any]:
        """Read the reduced system.config (cached)."""
        self._check_connected()
        return await self._cache.fetch(
            "systemConfigCommon",
            lambda: self._request("getCompactSystemConfig"),
            update=update,
        )

    async def get_uuid(self) -> str | None:
        """Read the installation uuid (cached)."""
        self._check_connected()

        async def _load() -> str | None:
            obj = await self._request(
                "getObject", SYSTEM_UUID_ID, resource_id=SYSTEM_UUID_ID
            )
            return ((obj or {}).get("native") or {}).get("uuid")

        return await self._cache.fetch("uuid", _load)

    # =========================================================================
    # Files
    # =========================================================================

    async def subscribe_files(
        self, object_id: str, patterns: str | Iterable[str], callback: Callback
    ) -> None:
        """Subscribe a callback to file changes of an object.

        Args:
            object_id: Meta object id or pattern, like "vis.0"
            patterns: File name pattern(s), like "main/*"
            callback: Called with (id, file_name, size)
        """
        if not callable(callback):
            raise TypeError("The file change handler must be callable")
        to_subscribe = [
            pattern
            for pattern in _as_list(patterns)
            if self._file_subs.add(
                f"{object_id}{FILE_KEY_SEPARATOR}{pattern}",
                callback,
                pattern=object_id,
                file_pattern=pattern,
            )
        ]
        if self._connected and to_subscribe:
            self._send("subscribeFiles", object_id, to_subscribe)

    def unsubscribe_files(
        self,
        object_id: str,
        patterns: str | Iterable[str],
        callback: Callback | None = None,
    ) -> None:
        """Remove a callback (or all callbacks) from file patterns."""
        to_unsubscribe = [
            pattern
            for pattern in _as_list(patterns)
            if self._file_subs.remove(
                f"{object_id}{FILE_KEY_SEPARATOR}{pattern}", callback
            )
        ]
        if self._connected and to_unsubscribe:
            self._send("unsubscribeFiles", object_id, to_unsubscribe)

    async def read_dir(self, adapter: str, name: str) -> list[dict[str, Any]]:
        """List a directory of an adapter's file storage."""
        return await self._request("readDir", adapter, name, resource_id=adapter) or []

    async def read_file(
        self, adapter: str, name: str, base64: bool = False
    ) -> dict[str, Any] | str:
        """Read a file.

        Returns:
            {"data": ..., "type": mime} for text, the base64 string otherwise
        """
        if base64:
            return await self._request("readFile64", adapter, name, True, resource_id=name)
        data, *rest = await self._request_all("readFile", adapter, name, resource_id=name)
        return {"data": data, "type": rest[0] if rest else None}

    async def write_file64(self, adapter: str, name: str, data: str | bytes) -> None:
        """Write a file. Text is written as is, bytes as base64."""
        if isinstance(data, str):
            await self._request("writeFile", adapter, name, data, resource_id=name)
            return
        encoded = base64.b64encode(data).decode("ascii")
        await self._request("writeFile64", adapter, name, encoded, resource_id=name)

    async def delete_file(self, adapter: str, name: str) -> None:
        """Delete a file."""
        await self._request("unlink", adapter, name, resource_id=name)

    async def delete_folder(self, adapter: str, name: str) -> None:
        """Delete a folder and everything in it."""
        await self._request("deleteFolder", adapter, name, resource_id=name)

    async def rename(self, adapter: str, old_name: str, new_name: str) -> None:
        """Rename a file or folder."""
        await self._request("rename", adapter, old_name, new_name, resource_id=old_name)

    async def rename_file(self, adapter: str, old_name: str, new_name: str) -> None:
        """Rename a file."""
        await self._request(
            "renameFile", adapter, old_name, new_name, resource_id=old_name
        )

    async def file_exists(self, adapter: str, name: str) -> bool:
        """Return True if the file exists."""
        return bool(await self._request("fileExists", adapter, name, resource_id=name))

    async def chmod_file(
        self, adapter: str, name: str, options: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """Change access rights of files (admin only)."""
        self._role.require_admin("chmodFile")
        entries, *rest = await self._request_all(
            "chmodFile", adapter, name, options, resource_id=name
        )
        return {"entries": entries, "id": rest[0] if rest else None}

    async def chown_file(
        self, adapter: str, name: str, options: dict[str, Any]
    ) -> dict[str, Any]:
        """Change owner and group of files (admin only)."""
        self._role.require_admin("chownFile")
        entries, *rest = await self._request_all(
            "chownFile", adapter, name, options, resource_id=name
        )
        return {"entries": entries, "id": rest[0] if rest else None}

    # =========================================================================
    # Messaging
    # =========================================================================

    async def send_to(self, instance: str, command: str, data: Any = None) -> Any:
        """Send a message to an adapter instance and return its answer."""
        result = await self._call("sendTo", instance, command, data)
        return result[0] if result else None

    async def subscribe_on_instance(
        self,
        target: str,
        message_type: str,
        data: Any,
        callback: Callback,
    ) -> Any:
        """Ask an instance to push messages of a type to this client.

        The callback is stored only after the instance accepted. It is
        called with (data, source_instance, message_type).

        Raises:
            IoBrokerRemoteError: If the instance rejected the subscription
        """
        error, *rest = await self._call("clientSubscribe", target, message_type, data)
        response = rest[0] if rest else None
        if error:
            self._raise_for_error((error,), "clientSubscribe", target)
        if isinstance(response, dict) and response.get("error"):
            raise IoBrokerRemoteError(response["error"], "clientSubscribe", target)

        self._instance_subs.add(
            normalize_instance_id(target), message_type, callback, data
        )
        return response

    async def unsubscribe_from_instance(
        self,
        target: str,
        message_type: str | None = None,
        callback: Callback | None = None,
    ) -> bool:
        """Remove instance message callbacks.

        The server is told once no callback for a message type remains.
        A failed server call is logged and does not undo the local removal.

        Returns:
            True if the server reported an active subscription
        """
        target = normalize_instance_id(target)
        emptied = self._instance_subs.remove(target, message_type, callback)
        if not emptied or not self._connected:
            return False

        results = await asyncio.gather(
            *(
                self._request("clientUnsubscribe", target, mtype, resource_id=target)
                for mtype in emptied
            ),
            return_exceptions=True,
        )
        active = False
        for mtype, result in zip(emptied, results):
            if isinstance(result, Exception):
                _LOGGER.warning(
                    "Cannot unsubscribe %s on %s: %s", mtype, target, result
                )
            elif result:
                active = True
        return active

    def log(self, text: str, level: str = "debug") -> None:
        """Write a line to the ioBroker log."""
        if text:
            self._send("log", text, level or "debug")

    async def require_log(self, enabled: bool) -> None:
        """Enable or disable log forwarding to this client."""
        await self._request("requireLog", enabled)

    async def logout(self) -> None:
        """Log out the current user."""
        await self._request("logout")

    async def get_current_user(self) -> str | None:
        """Return the logged in user."""
        result = await self._call("authEnabled")
        return result[1] if len(result) > 1 else None

    async def get_current_instance(self) -> str:
        """Return the serving instance, like "admin.0" (cached)."""
        self._check_connected()
        return await self._cache.fetch(
            "currentInstance", lambda: self._request("getCurrentInstance")
        )

    async def get_history(self, state_id: str, options: dict[str, Any]) -> Any:
        """Read history values of a state."""
        return await self._request("getHistory", state_id, options, resource_id=state_id)

    async def get_history_ex(
        self, state_id: str, options: dict[str, Any]
    ) -> dict[str, Any]:
        """Read history values with session id and step information."""
        values, *rest = await self._request_all(
            "getHistory", state_id, options, resource_id=state_id
        )
        return {
            "values": values,
            "step_ignore": rest[0] if rest else None,
            "session_id": rest[1] if len(rest) > 1 else None,
        }
