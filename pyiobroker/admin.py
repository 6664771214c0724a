"""Administrative and informational commands.

This module handles:
- Server version and web server name
- Adapters, instances, hosts, users and groups (cached)
- Timeout-guarded host queries (host info, repository, installed)
- Logs, notifications, diagnostics and controller restarts
- Base settings, certificates and network addresses

Most commands are only available for the admin role. They are mixed
into Connection, which provides the request plumbing.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import TYPE_CHECKING, Any

from .const import (
    ADAPTER_PREFIX,
    DEFAULT_LOG_LINES,
    FEATURE_BASE_SETTINGS,
    PERMISSION_ERROR,
    SYSTEM_CERTIFICATES_ID,
    TIMEOUT_FOR_ADMIN4,
    VIEW_END,
)
from .exceptions import (
    IoBrokerNotSupported,
    IoBrokerPermissionDenied,
    IoBrokerRemoteError,
    IoBrokerTimeout,
)
from .models import Certificate, HostAddress
from .objects import (
    build_host_addresses,
    classify_certificates,
    fix_admin_ui,
    normalize_host_id,
    rows_to_list,
    strip_host_prefix,
)

if TYPE_CHECKING:
    from .cache import RequestCache
    from .config import ConnectionConfig
    from .roles import Role

_LOGGER = logging.getLogger(__name__)

_VERSION_RE = re.compile(r"\d+\.\d+\.\d+")


class AdminCommandsMixin:
    """Commands for host and adapter administration.

    Results of slow-changing resources are coalesced in the request cache:
    concurrent callers share one request and later callers reuse its
    result until update=True or a reset_*_cache() call.
    """

    if TYPE_CHECKING:
        _cache: RequestCache
        _config: ConnectionConfig
        _role: Role

        def _check_connected(self) -> None: ...

        def _emit(self, verb: str, *args: Any) -> asyncio.Future: ...

        async def _call(self, verb: str, *args: Any) -> tuple[Any, ...]: ...

        async def _request(
            self, verb: str, *args: Any, resource_id: str | None = None
        ) -> Any: ...

        async def _guarded(
            self,
            operation: str,
            verb: str,
            *args: Any,
            timeout: float | None = None,
            require_object: bool = True,
        ) -> Any: ...

        async def get_object(self, object_id: str) -> dict[str, Any] | None: ...

        async def set_object(self, object_id: str, obj: dict[str, Any]) -> None: ...

        async def del_object(
            self, object_id: str, maintenance: bool = False
        ) -> None: ...

        async def get_object_view_system(
            self, obj_type: str, start: str, end: str | None = None
        ) -> dict[str, Any]: ...

    # =========================================================================
    # Server
    # =========================================================================

    async def get_version(self, update: bool = False) -> dict[str, Any]:
        """Return {"version": ..., "serverName": ...} of the serving adapter.

        Old socket.io servers answer with the version in the error slot.
        """

        async def _load() -> dict[str, Any]:
            result = await self._emit("getVersion")
            error = result[0] if result else None
            version = result[1] if len(result) > 1 else None
            server_name = result[2] if len(result) > 2 else None
            if (
                error
                and not version
                and isinstance(error, str)
                and _VERSION_RE.search(error)
            ):
                return {"version": error, "serverName": "socketio"}
            if error:
                raise IoBrokerRemoteError(error, "getVersion")
            return {"version": version, "serverName": server_name}

        return await self._cache.fetch("version", _load, update=update)

    async def get_web_server_name(self) -> str:
        """Return the name of the serving adapter instance."""
        self._check_connected()
        return await self._cache.fetch(
            "webName", lambda: self._request("getAdapterName")
        )

    async def check_feature_supported(
        self, feature: str, update: bool = False
    ) -> bool:
        """Return True if the controller supports a feature."""
        self._check_connected()
        return bool(
            await self._cache.fetch(
                f"supportedFeatures_{feature}",
                lambda: self._request("checkFeatureSupported", feature),
                update=update,
            )
        )

    # =========================================================================
    # Adapters and instances
    # =========================================================================

    async def _with_view_fallback(
        self, verb: str, adapter: str, obj_type: str
    ) -> list[dict[str, Any]]:
        """Call verb, falling back to an object view for old servers.

        Servers that do not know the verb never answer; after a short
        wait the objects are read directly and a late answer is ignored.
        """
        try:
            result = await asyncio.wait_for(
                self._emit(verb, adapter), TIMEOUT_FOR_ADMIN4
            )
        except asyncio.TimeoutError:
            _LOGGER.debug("%s not answered, reading object view", verb)
            start = f"{ADAPTER_PREFIX}{adapter + '.' if adapter else ''}"
            items = await self.get_object_view_system(
                obj_type, start, f"{start}{VIEW_END}"
            )
            return [fix_admin_ui(obj) for obj in items.values()]

        error = result[0] if result else None
        if error:
            raise IoBrokerRemoteError(error, verb, adapter or None)
        return result[1] if len(result) > 1 and result[1] is not None else []

    async def get_adapter_instances(
        self, adapter: str = "", update: bool = False
    ) -> list[dict[str, Any]]:
        """Return instance objects of one adapter (or of all adapters)."""
        self._check_connected()
        return await self._cache.fetch(
            f"instances_{adapter}",
            lambda: self._with_view_fallback("getAdapterInstances", adapter, "instance"),
            update=update,
        )

    async def get_adapters(
        self, adapter: str = "", update: bool = False
    ) -> list[dict[str, Any]]:
        """Return adapter objects of one adapter (or of all adapters)."""
        self._role.require_admin("getAdapters")
        self._check_connected()
        return await self._cache.fetch(
            f"adapter_{adapter}",
            lambda: self._with_view_fallback("getAdapters", adapter, "adapter"),
            update=update,
        )

    async def get_compact_adapters(self, update: bool = False) -> dict[str, Any]:
        """Return reduced adapter objects."""
        self._role.require_admin("getCompactAdapters")
        self._check_connected()
        return await self._cache.fetch(
            "compactAdapters",
            lambda: self._request("getCompactAdapters"),
            update=update,
        )

    async def get_compact_instances(self, update: bool = False) -> dict[str, Any]:
        """Return reduced instance objects."""
        self._role.require_admin("getCompactInstances")
        self._check_connected()
        return await self._cache.fetch(
            "compactInstances",
            lambda: self._request("getCompactInstances"),
            update=update,
        )

    def reset_adapters_cache(self, adapter: str = "") -> None:
        """Forget cached adapter lists."""
        self._cache.invalidate("compactAdapters")
        self._cache.invalidate(f"adapter_{adapter}")

    def reset_instances_cache(self, adapter: str = "") -> None:
        """Forget cached instance lists."""
        self._cache.invalidate("compactInstances")
        self._cache.invalidate(f"instances_{adapter}")

    # =========================================================================
    # Hosts, users and groups
    # =========================================================================

    async def _view_list(self, obj_type: str, prefix: str) -> list[dict[str, Any]]:
        result = await self._request(
            "getObjectView",
            "system",
            obj_type,
            {"startkey": prefix, "endkey": f"{prefix}{VIEW_END}"},
        )
        return rows_to_list(result)

    async def get_hosts(self, update: bool = False) -> list[dict[str, Any]]:
        """Return all host objects."""
        self._role.require_admin("getHosts")
        self._check_connected()
        return await self._cache.fetch(
            "hosts", lambda: self._view_list("host", "system.host."), update=update
        )

    async def get_compact_hosts(self, update: bool = False) -> list[dict[str, Any]]:
        """Return reduced host objects."""
        self._role.require_admin("getCompactHosts")
        self._check_connected()
        return await self._cache.fetch(
            "hostsCompact", lambda: self._request("getCompactHosts"), update=update
        )

    async def get_users(self, update: bool = False) -> list[dict[str, Any]]:
        """Return all user objects."""
        self._role.require_admin("getUsers")
        self._check_connected()
        return await self._cache.fetch(
            "users", lambda: self._view_list("user", "system.user."), update=update
        )

    async def get_groups(self, update: bool = False) -> list[dict[str, Any]]:
        """Return all group objects."""
        self._check_connected()
        return await self._cache.fetch(
            "groups", lambda: self._view_list("group", "system.group."), update=update
        )

    async def rename_group(
        self, group_id: str, new_id: str, new_name: Any = None
    ) -> None:
        """Rename a group and all groups below it."""
        self._role.require_admin("renameGroup")
        groups = await self.get_groups(update=True)

        for group in [g for g in groups if g["_id"].startswith(f"{group_id}.")]:
            old_id = group["_id"]
            renamed = dict(group, _id=new_id + old_id[len(group_id) :])
            await self.set_object(renamed["_id"], renamed)
            await self.del_object(old_id)

        group = next((g for g in groups if g["_id"] == group_id), None)
        if group is None:
            return
        renamed = dict(group, _id=new_id)
        if new_name is not None:
            renamed["common"] = dict(renamed.get("common") or {}, name=new_name)
        await self.set_object(new_id, renamed)
        await self.del_object(group_id)

    async def get_host_info(
        self, host: str, update: bool = False, timeout: float | None = None
    ) -> dict[str, Any]:
        """Return detailed host information."""
        self._role.require_admin("getHostInfo")
        host = normalize_host_id(host)
        self._check_connected()
        return await self._cache.fetch(
            f"hostInfo_{host}",
            lambda: self._guarded(
                "getHostInfo", "sendToHost", host, "getHostInfo", None, timeout=timeout
            ),
            update=update,
            keep=not update,
        )

    async def get_host_info_short(
        self, host: str, update: bool = False, timeout: float | None = None
    ) -> dict[str, Any]:
        """Return short host information."""
        self._role.require_admin("getHostInfoShort")
        host = normalize_host_id(host)
        self._check_connected()
        return await self._cache.fetch(
            f"hostInfoShort_{host}",
            lambda: self._guarded(
                "getHostInfoShort",
                "sendToHost",
                host,
                "getHostInfoShort",
                None,
                timeout=timeout,
            ),
            update=update,
            keep=not update,
        )

    async def get_ip_addresses(self, host: str, update: bool = False) -> list[str]:
        """Return the addresses stored in a host object."""
        self._role.require_admin("getIpAddresses")
        host = normalize_host_id(host)
        self._check_connected()

        async def _load() -> list[str]:
            obj = await self.get_object(host)
            return list(((obj or {}).get("common") or {}).get("address") or [])

        return await self._cache.fetch(f"IPs_{host}", _load, update=update)

    async def get_host_by_ip(
        self, ip_or_host: str, update: bool = False
    ) -> list[HostAddress]:
        """Return the listen addresses of a host found by name or IP."""
        self._role.require_admin("getHostByIp")
        ip_or_host = strip_host_prefix(ip_or_host)
        self._check_connected()

        async def _load() -> list[HostAddress]:
            result = await self._emit("getHostByIp", ip_or_host)
            return build_host_addresses(result[1] if len(result) > 1 else None)

        return await self._cache.fetch(f"rIPs_{ip_or_host}", _load, update=update)

    # =========================================================================
    # Repository and installed adapters
    # =========================================================================

    async def get_repository(
        self,
        host: str,
        options: Any = None,
        update: bool = False,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Return the adapter repository as seen by a host."""
        self._role.require_admin("getRepository")
        host = normalize_host_id(host)
        self._check_connected()
        return await self._cache.fetch(
            "repo",
            lambda: self._guarded(
                "getRepository",
                "sendToHost",
                host,
                "getRepository",
                options,
                timeout=timeout,
            ),
            update=update,
        )

    async def get_compact_repository(
        self, host: str, update: bool = False, timeout: float | None = None
    ) -> dict[str, Any]:
        """Return versions and icons of repository adapters."""
        self._role.require_admin("getCompactRepository")
        host = normalize_host_id(host)
        self._check_connected()
        return await self._cache.fetch(
            "repoCompact",
            lambda: self._guarded(
                "getCompactRepository",
                "getCompactRepository",
                host,
                timeout=timeout,
                require_object=False,
            ),
            update=update,
        )

    async def get_compact_system_repositories(
        self, update: bool = False, timeout: float | None = None
    ) -> dict[str, Any]:
        """Return the configured repositories in reduced form."""
        self._role.require_admin("getCompactSystemRepositories")
        self._check_connected()
        return await self._cache.fetch(
            "getCompactSystemRepositories",
            lambda: self._guarded(
                "getCompactSystemRepositories",
                "getCompactSystemRepositories",
                timeout=timeout,
            ),
            update=update,
        )

    async def get_installed(
        self, host: str, update: bool = False, timeout: float | None = None
    ) -> dict[str, Any]:
        """Return adapters installed on a host."""
        self._role.require_admin("getInstalled")
        host = normalize_host_id(host)
        self._check_connected()
        return await self._cache.fetch(
            f"installed_{host}",
            lambda: self._guarded(
                "getInstalled", "sendToHost", host, "getInstalled", None, timeout=timeout
            ),
            update=update,
            keep=not update,
        )

    async def get_compact_installed(
        self, host: str, update: bool = False, timeout: float | None = None
    ) -> dict[str, Any]:
        """Return versions of adapters installed on a host."""
        self._role.require_admin("getCompactInstalled")
        host = normalize_host_id(host)
        self._check_connected()
        return await self._cache.fetch(
            f"installedCompact_{host}",
            lambda: self._guarded(
                "getCompactInstalled", "getCompactInstalled", host, timeout=timeout
            ),
            update=update,
            keep=not update,
        )

    def reset_installed_cache(self) -> None:
        """Forget cached repository and installed lists."""
        self._cache.invalidate("repoCompact")
        self._cache.invalidate("repo")
        self._cache.invalidate_prefix("installed_")
        self._cache.invalidate_prefix("installedCompact_")

    # =========================================================================
    # Host commands
    # =========================================================================

    async def cmd_exec(
        self, host: str, cmd: str, cmd_id: str, timeout: float | None = None
    ) -> None:
        """Run a CLI command on a host.

        Output arrives through the cmd stdout, stderr and exit handlers.

        Raises:
            IoBrokerTimeout: If timeout is given and the host does not answer
        """
        self._role.require_admin("cmdExec")
        self._check_connected()
        future = self._emit("cmdExec", host, cmd_id, cmd, None)
        try:
            result = await asyncio.wait_for(future, timeout) if timeout else await future
        except asyncio.TimeoutError as err:
            raise IoBrokerTimeout("cmdExec", timeout or 0) from err
        if result and result[0]:
            raise IoBrokerRemoteError(result[0], "cmdExec", host)

    async def get_logs(self, host: str, lines: int = DEFAULT_LOG_LINES) -> list[str]:
        """Return the last log lines of a host."""
        self._role.require_admin("getLogs")
        result = await self._call("sendToHost", host, "getLogs", lines or DEFAULT_LOG_LINES)
        return result[0] if result and result[0] else []

    async def get_logs_files(self, host: str) -> list[Any]:
        """Return the log files of a host."""
        self._role.require_admin("readLogs")
        return await self._request("readLogs", host, resource_id=host) or []

    async def del_logs(self, host: str) -> None:
        """Delete the logs of a host."""
        self._role.require_admin("delLogs")
        result = await self._call("sendToHost", host, "delLogs", None)
        if result and result[0]:
            raise IoBrokerRemoteError(result[0], "delLogs", host)

    async def restart_controller(self, host: str) -> bool:
        """Restart the controller on a host."""
        self._role.require_admin("restartController")
        result = await self._call("sendToHost", host, "restartController", None)
        if result and result[0]:
            raise IoBrokerRemoteError(result[0], "restartController", host)
        return True

    async def get_diag_data(self, host: str, type_of_diag: str) -> dict[str, Any]:
        """Return the statistics a host would report.

        type_of_diag is one of none, normal, no-city or extended.
        """
        self._role.require_admin("getDiagData")
        result = await self._call("sendToHost", host, "getDiagData", type_of_diag)
        return result[0] if result else {}

    async def get_notifications(
        self, host: str, category: str | None = None
    ) -> dict[str, Any]:
        """Return the notifications of a host."""
        self._role.require_admin("getNotifications")
        result = await self._call(
            "sendToHost", host, "getNotifications", {"category": category}
        )
        return result[0] if result else {}

    async def clear_notifications(
        self, host: str, category: str | None = None
    ) -> dict[str, Any]:
        """Clear the notifications of a host."""
        self._role.require_admin("clearNotifications")
        result = await self._call(
            "sendToHost", host, "clearNotifications", {"category": category}
        )
        return result[0] if result else {}

    async def read_base_settings(self, host: str) -> dict[str, Any]:
        """Return the controller base settings of a host.

        Raises:
            IoBrokerNotSupported: If the controller cannot read them
        """
        self._role.require_admin("readBaseSettings")
        if not await self.check_feature_supported(FEATURE_BASE_SETTINGS):
            raise IoBrokerNotSupported("Not supported")
        return await self._guarded(
            "BaseSettings",
            "sendToHost",
            strip_host_prefix(host),
            "readBaseSettings",
            None,
        )

    async def write_base_settings(
        self, host: str, config: dict[str, Any]
    ) -> dict[str, Any]:
        """Write the controller base settings of a host.

        Raises:
            IoBrokerNotSupported: If the controller cannot write them
        """
        self._role.require_admin("writeBaseSettings")
        if not await self.check_feature_supported(FEATURE_BASE_SETTINGS):
            raise IoBrokerNotSupported("Not supported")
        self._check_connected()
        try:
            result = await asyncio.wait_for(
                self._emit("sendToHost", host, "writeBaseSettings", config),
                self._config.cmd_timeout,
            )
        except asyncio.TimeoutError as err:
            raise IoBrokerTimeout("writeBaseSettings", self._config.cmd_timeout) from err

        data = result[0] if result else None
        if data == PERMISSION_ERROR:
            raise IoBrokerPermissionDenied(
                'May not write "BaseSettings"', "writeBaseSettings", host
            )
        if not data:
            raise IoBrokerRemoteError(
                'Cannot write "BaseSettings"', "writeBaseSettings", host
            )
        if isinstance(data, dict) and data.get("error"):
            raise IoBrokerRemoteError(data["error"], "writeBaseSettings", host)
        return data

    # =========================================================================
    # System
    # =========================================================================

    async def get_certificates(self, update: bool = False) -> list[Certificate]:
        """Return the stored certificates with their guessed kind."""
        self._role.require_admin("getCertificates")
        self._check_connected()

        async def _load() -> list[Certificate]:
            return classify_certificates(await self.get_object(SYSTEM_CERTIFICATES_ID))

        return await self._cache.fetch("cert", _load, update=update)

    async def change_password(self, user: str, password: str) -> None:
        """Change the password of a user."""
        self._role.require_admin("changePassword")
        await self._request("changePassword", user, password, resource_id=user)

    async def encrypt(self, text: str) -> str:
        """Encrypt text with the system secret."""
        self._role.require_admin("encrypt")
        return await self._request("encrypt", text)

    async def decrypt(self, encrypted_text: str) -> str:
        """Decrypt text encrypted with the system secret."""
        self._role.require_admin("decrypt")
        return await self._request("decrypt", encrypted_text)

    async def get_is_easy_mode_strict(self) -> bool:
        """Return True if only the easy mode UI is allowed."""
        self._role.require_admin("getIsEasyModeStrict")
        return bool(await self._request("getIsEasyModeStrict"))

    async def get_easy_mode(self) -> Any:
        """Return the easy mode configuration."""
        self._role.require_admin("getEasyMode")
        return await self._request("getEasyMode")

    async def get_ratings(self, update: bool = False) -> Any:
        """Return adapter ratings."""
        self._role.require_admin("getRatings")
        return await self._request("getRatings", update)
