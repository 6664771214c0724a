"""Connection configuration.

All settings a connection needs are passed in explicitly through
ConnectionConfig. Dictionaries (for example loaded from a YAML or JSON
file) are validated with CONNECTION_SCHEMA.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

import voluptuous as vol

from .const import (
    CONF_ADMIN5ONLY,
    CONF_AUTO_SUBSCRIBE_LOG,
    CONF_AUTO_SUBSCRIBES,
    CONF_BOOTSTRAP_MAX_ATTEMPTS,
    CONF_BOOTSTRAP_RETRY_INTERVAL,
    CONF_CMD_TIMEOUT,
    CONF_HOST,
    CONF_IO_TIMEOUT,
    CONF_LANGUAGE,
    CONF_LOAD_ACL,
    CONF_LOAD_ALL_OBJECTS,
    CONF_NAME,
    CONF_PATH,
    CONF_PING_INTERVAL,
    CONF_PORT,
    CONF_PROTOCOL,
    CONF_RECONNECT_DELAY_MAX,
    CONF_RECONNECT_DELAY_MIN,
    CONF_RESTART_REQUIRED,
    CONF_ROLE,
    CONF_TOKEN,
    CONF_UUID,
    DEFAULT_BOOTSTRAP_MAX_ATTEMPTS,
    DEFAULT_BOOTSTRAP_RETRY_INTERVAL,
    DEFAULT_CMD_TIMEOUT,
    DEFAULT_HOST,
    DEFAULT_IO_TIMEOUT,
    DEFAULT_NAME,
    DEFAULT_PATH,
    DEFAULT_PING_INTERVAL,
    DEFAULT_PORT,
    DEFAULT_PROTOCOL,
    MIN_CMD_TIMEOUT,
    MIN_IO_TIMEOUT,
    RECONNECT_DELAY_MAX,
    RECONNECT_DELAY_MIN,
    ROLE_ADMIN,
    ROLE_WEB,
)
from .exceptions import IoBrokerInvalidConfig

CONNECTION_SCHEMA = vol.Schema(
    {
        vol.Optional(CONF_HOST, default=DEFAULT_HOST): str,
        vol.Optional(CONF_PORT, default=DEFAULT_PORT): vol.All(
            vol.Coerce(int), vol.Range(min=1, max=65535)
        ),
        vol.Optional(CONF_PROTOCOL, default=DEFAULT_PROTOCOL): vol.In(["ws", "wss"]),
        vol.Optional(CONF_PATH, default=DEFAULT_PATH): str,
        vol.Optional(CONF_NAME, default=DEFAULT_NAME): str,
        vol.Optional(CONF_ROLE, default=ROLE_WEB): vol.In([ROLE_WEB, ROLE_ADMIN]),
        vol.Optional(CONF_AUTO_SUBSCRIBES, default=list): [str],
        vol.Optional(CONF_AUTO_SUBSCRIBE_LOG, default=False): bool,
        vol.Optional(CONF_IO_TIMEOUT, default=DEFAULT_IO_TIMEOUT): vol.All(
            vol.Coerce(float), vol.Clamp(min=MIN_IO_TIMEOUT)
        ),
        vol.Optional(CONF_CMD_TIMEOUT, default=DEFAULT_CMD_TIMEOUT): vol.All(
            vol.Coerce(float), vol.Clamp(min=MIN_CMD_TIMEOUT)
        ),
        vol.Optional(CONF_LOAD_ALL_OBJECTS, default=False): bool,
        vol.Optional(CONF_LOAD_ACL, default=False): bool,
        vol.Optional(CONF_ADMIN5ONLY, default=False): bool,
        vol.Optional(CONF_UUID, default=None): vol.Any(None, str),
        vol.Optional(CONF_TOKEN, default=None): vol.Any(None, str),
        vol.Optional(CONF_LANGUAGE, default=None): vol.Any(None, str),
        vol.Optional(CONF_RESTART_REQUIRED, default=False): bool,
        vol.Optional(
            CONF_BOOTSTRAP_RETRY_INTERVAL, default=DEFAULT_BOOTSTRAP_RETRY_INTERVAL
        ): vol.All(vol.Coerce(float), vol.Range(min=0, min_included=False)),
        vol.Optional(
            CONF_BOOTSTRAP_MAX_ATTEMPTS, default=DEFAULT_BOOTSTRAP_MAX_ATTEMPTS
        ): vol.All(vol.Coerce(int), vol.Range(min=1)),
        vol.Optional(CONF_RECONNECT_DELAY_MIN, default=RECONNECT_DELAY_MIN): vol.All(
            vol.Coerce(float), vol.Range(min=0)
        ),
        vol.Optional(CONF_RECONNECT_DELAY_MAX, default=RECONNECT_DELAY_MAX): vol.All(
            vol.Coerce(float), vol.Range(min=0)
        ),
        vol.Optional(CONF_PING_INTERVAL, default=DEFAULT_PING_INTERVAL): vol.All(
            vol.Coerce(float), vol.Range(min=0)
        ),
    }
)


@dataclass
class ConnectionConfig:
    """Configuration for an ioBroker connection."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    protocol: str = DEFAULT_PROTOCOL
    path: str = DEFAULT_PATH
    name: str = DEFAULT_NAME
    role: str = ROLE_WEB
    auto_subscribes: list[str] = field(default_factory=list)
    auto_subscribe_log: bool = False
    io_timeout: float = DEFAULT_IO_TIMEOUT
    cmd_timeout: float = DEFAULT_CMD_TIMEOUT
    load_all_objects: bool = False
    load_acl: bool = False
    admin5only: bool = False
    uuid: str | None = None
    token: str | None = None
    language: str | None = None
    restart_required: bool = False
    bootstrap_retry_interval: float = DEFAULT_BOOTSTRAP_RETRY_INTERVAL
    bootstrap_max_attempts: int = DEFAULT_BOOTSTRAP_MAX_ATTEMPTS
    reconnect_delay_min: float = RECONNECT_DELAY_MIN
    reconnect_delay_max: float = RECONNECT_DELAY_MAX
    ping_interval: float = DEFAULT_PING_INTERVAL

    def __post_init__(self) -> None:
        # The server needs at least this long for slow calls
        self.io_timeout = max(self.io_timeout, MIN_IO_TIMEOUT)
        self.cmd_timeout = max(self.cmd_timeout, MIN_CMD_TIMEOUT)

    @property
    def is_admin(self) -> bool:
        """Return True for an admin connection."""
        return self.role == ROLE_ADMIN

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConnectionConfig:
        """Validate a dictionary and build a config from it.

        Raises:
            IoBrokerInvalidConfig: If validation fails
        """
        try:
            validated = CONNECTION_SCHEMA(dict(data))
        except vol.Invalid as err:
            raise IoBrokerInvalidConfig(str(err)) from err
        return cls(**validated)

    def as_dict(self) -> dict[str, Any]:
        """Return the configuration as a plain dictionary."""
        return asdict(self)
