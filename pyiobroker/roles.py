"""Role strategies for web and admin connections.

A web connection (vis, web adapter) and an admin connection talk to
different server adapters that expose different verbs for bulk reads.
The strategy is picked once from the configured role.
"""

from __future__ import annotations

from dataclasses import dataclass

from .const import ROLE_ADMIN, ROLE_WEB
from .exceptions import IoBrokerAdminOnly, IoBrokerInvalidConfig


@dataclass(frozen=True)
class Role:
    """Verbs and permissions of one connection role."""

    name: str
    states_verb: str
    objects_verb: str
    is_admin: bool

    def require_admin(self, operation: str) -> None:
        """Raise if the operation is not available for this role.

        Raises:
            IoBrokerAdminOnly: For the web role
        """
        if not self.is_admin:
            raise IoBrokerAdminOnly(operation)


WEB_ROLE = Role(
    name=ROLE_WEB,
    states_verb="getStates",
    objects_verb="getObjects",
    is_admin=False,
)

ADMIN_ROLE = Role(
    name=ROLE_ADMIN,
    states_verb="getForeignStates",
    objects_verb="getAllObjects",
    is_admin=True,
)

_ROLES = {WEB_ROLE.name: WEB_ROLE, ADMIN_ROLE.name: ADMIN_ROLE}


def select_role(name: str) -> Role:
    """Return the strategy for a role name.

    Raises:
        IoBrokerInvalidConfig: If the role is unknown
    """
    try:
        return _ROLES[name]
    except KeyError as err:
        raise IoBrokerInvalidConfig(f"Unknown role: {name}") from err
