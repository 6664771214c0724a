"""Constants for the ioBroker connection client."""

from __future__ import annotations

from typing import Final

# Sentinels returned by the server instead of data
PERMISSION_ERROR: Final = "permissionError"
NOT_CONNECTED: Final = "notConnectedError"
ADMIN_ONLY: Final = "Allowed only in admin"
NOT_SUPPORTED: Final = "Not supported"
USER_NOT_AUTHORIZED: Final = "User not authorized"

# Roles
ROLE_WEB: Final = "web"
ROLE_ADMIN: Final = "admin"

# Configuration keys
CONF_HOST: Final = "host"
CONF_PORT: Final = "port"
CONF_PROTOCOL: Final = "protocol"
CONF_PATH: Final = "path"
CONF_NAME: Final = "name"
CONF_ROLE: Final = "role"
CONF_AUTO_SUBSCRIBES: Final = "auto_subscribes"
CONF_AUTO_SUBSCRIBE_LOG: Final = "auto_subscribe_log"
CONF_IO_TIMEOUT: Final = "io_timeout"
CONF_CMD_TIMEOUT: Final = "cmd_timeout"
CONF_LOAD_ALL_OBJECTS: Final = "load_all_objects"
CONF_LOAD_ACL: Final = "load_acl"
CONF_ADMIN5ONLY: Final = "admin5only"
CONF_UUID: Final = "uuid"
CONF_TOKEN: Final = "token"
CONF_LANGUAGE: Final = "language"
CONF_RESTART_REQUIRED: Final = "restart_required"
CONF_BOOTSTRAP_RETRY_INTERVAL: Final = "bootstrap_retry_interval"
CONF_BOOTSTRAP_MAX_ATTEMPTS: Final = "bootstrap_max_attempts"
CONF_RECONNECT_DELAY_MIN: Final = "reconnect_delay_min"
CONF_RECONNECT_DELAY_MAX: Final = "reconnect_delay_max"
CONF_PING_INTERVAL: Final = "ping_interval"

# Default values
DEFAULT_HOST: Final = "127.0.0.1"
DEFAULT_PORT: Final = 8081
DEFAULT_PROTOCOL: Final = "ws"
DEFAULT_PATH: Final = "/"
DEFAULT_NAME: Final = "pyiobroker"
DEFAULT_LANGUAGE: Final = "en"
DEFAULT_LOG_LINES: Final = 200

# Timeouts (in seconds)
DEFAULT_IO_TIMEOUT: Final = 20.0
DEFAULT_CMD_TIMEOUT: Final = 5.0
MIN_IO_TIMEOUT: Final = 20.0
MIN_CMD_TIMEOUT: Final = 5.0
TIMEOUT_FOR_ADMIN4: Final = 1.3
VERSION_PROBE_DELAY: Final = 0.5
DEFAULT_BOOTSTRAP_RETRY_INTERVAL: Final = 1.0
DEFAULT_BOOTSTRAP_MAX_ATTEMPTS: Final = 10
DEFAULT_PING_INTERVAL: Final = 5.0

# Reconnection parameters
RECONNECT_DELAY_MIN: Final = 1.0
RECONNECT_DELAY_MAX: Final = 60.0
RECONNECT_DELAY_MULTIPLIER: Final = 2.0

# Servers older than this do not know the "authenticate" handshake
AUTHENTICATE_MIN_VERSION: Final = (4, 1, 2)

# Id prefixes and view bounds
ADAPTER_PREFIX: Final = "system.adapter."
HOST_PREFIX: Final = "system.host."
VIEW_END: Final = "\u9999"
SYSTEM_CONFIG_ID: Final = "system.config"
SYSTEM_CERTIFICATES_ID: Final = "system.certificates"
SYSTEM_UUID_ID: Final = "system.meta.uuid"

# Features
FEATURE_BASE_SETTINGS: Final = "CONTROLLER_READWRITE_BASE_SETTINGS"

# Inbound transport events
EVENT_CONNECT: Final = "connect"
EVENT_RECONNECT: Final = "reconnect"
EVENT_DISCONNECT: Final = "disconnect"
EVENT_REAUTHENTICATE: Final = "reauthenticate"
EVENT_LOG: Final = "log"
EVENT_ERROR: Final = "error"
EVENT_CONNECT_ERROR: Final = "connect_error"
EVENT_PERMISSION_ERROR: Final = "permissionError"
EVENT_OBJECT_CHANGE: Final = "objectChange"
EVENT_STATE_CHANGE: Final = "stateChange"
EVENT_INSTANCE_MESSAGE: Final = "im"
EVENT_FILE_CHANGE: Final = "fileChange"
EVENT_CMD_STDOUT: Final = "cmdStdout"
EVENT_CMD_STDERR: Final = "cmdStderr"
EVENT_CMD_EXIT: Final = "cmdExit"

# Separator between object id and file pattern in file subscription keys
FILE_KEY_SEPARATOR: Final = "$%$"
