"""
Permission Model
================

Pure authorization decisions over (roles, capability, target scope,
actor scope).

A role's capabilities apply only inside the actor's own subtree of the org
hierarchy. Two escapes make a grant scope-unbounded:

- a capability string ending in ``:all``, requested and held verbatim
  (``ticket:read:all`` does not imply ``ticket:read``);
- ``admin:full-access``, which grants every capability everywhere.

There is no role inheritance; a Campus Admin acts on department tickets
only because the campus contains the department.
"""

from types import MappingProxyType
from typing import Dict, Iterable, FrozenSet, Mapping, Optional

from helpdesk.access.domain.entities import OrgUnit, Role
from helpdesk.core import ValidationException

FULL_ACCESS = "admin:full-access"
UNBOUNDED_SUFFIX = ":all"

DEFAULT_ROLE_CAPABILITIES: Dict[str, list] = {
    "STUDENT": ["ticket:create", "ticket:read"],
    "STAFF": ["ticket:create", "ticket:read"],
    "HOD": [
        "ticket:create", "ticket:read", "ticket:update", "ticket:assign",
        "ticket:escalate", "ticket:resolve", "analytics:view",
    ],
    "DIRECTOR": [
        "ticket:create", "ticket:read", "ticket:read:all", "ticket:update",
        "ticket:assign", "ticket:escalate", "ticket:resolve", "ticket:close",
        "analytics:view", "analytics:export",
    ],
    "TRANSPORT_INCHARGE": [
        "ticket:read", "ticket:update", "ticket:assign", "ticket:escalate",
        "ticket:resolve",
    ],
    "HOSTEL_WARDEN": [
        "ticket:read", "ticket:update", "ticket:assign", "ticket:escalate",
        "ticket:resolve",
    ],
    "MODERATOR": [
        "ticket:read", "ticket:read:all", "moderation:view",
        "moderation:approve", "moderation:reject",
    ],
    "CAMPUS_ADMIN": [
        "ticket:create", "ticket:read", "ticket:read:all", "ticket:update",
        "ticket:assign", "ticket:escalate", "ticket:resolve", "ticket:close",
        "ticket:reopen", "user:read", "org:read", "analytics:view",
        "analytics:export",
    ],
    "SYSTEM_ADMIN": [FULL_ACCESS, "system:config"],
}

ROLE_DISPLAY_NAMES = {
    "STUDENT": "Student",
    "STAFF": "Staff",
    "HOD": "Head of Department",
    "DIRECTOR": "Director",
    "TRANSPORT_INCHARGE": "Transport Incharge",
    "HOSTEL_WARDEN": "Hostel Warden",
    "MODERATOR": "Moderator",
    "CAMPUS_ADMIN": "Campus Administrator",
    "SYSTEM_ADMIN": "System Administrator",
}


class RoleCatalog:
    """
    Read-only role reference data, loaded once at process start.
    """

    def __init__(self, role_capabilities: Optional[Mapping[str, Iterable[str]]] = None):
        source = role_capabilities if role_capabilities is not None else DEFAULT_ROLE_CAPABILITIES
        self._roles: Mapping[str, Role] = MappingProxyType({
            name: Role(
                name=name,
                capabilities=frozenset(capabilities),
                display_name=ROLE_DISPLAY_NAMES.get(name, name.title()),
            )
            for name, capabilities in source.items()
        })

    @property
    def roles(self) -> Mapping[str, Role]:
        return self._roles

    def get(self, name: str) -> Role:
        try:
            return self._roles[name]
        except KeyError:
            raise ValidationException(f"Unknown role '{name}'", {"role": name}) from None

    def resolve(self, names: Iterable[str]) -> FrozenSet[Role]:
        """Resolve role names supplied by the authentication collaborator."""
        return frozenset(self.get(name.strip().upper()) for name in names if name.strip())


class PermissionModel:
    """
    Pure functions for authorization.

    Identical inputs always yield identical results; nothing here reads
    global state.
    """

    @staticmethod
    def effective_capabilities(roles: Iterable[Role]) -> FrozenSet[str]:
        """Union of every held role's capabilities."""
        caps: set = set()
        for role in roles:
            caps |= role.capabilities
        return frozenset(caps)

    @staticmethod
    def has_capability(roles: Iterable[Role], capability: str) -> bool:
        """Capability check ignoring scope."""
        caps = PermissionModel.effective_capabilities(roles)
        return FULL_ACCESS in caps or capability in caps

    @staticmethod
    def allow(
        roles: Iterable[Role],
        capability: str,
        target_scope: Optional[OrgUnit],
        actor_scope: Optional[OrgUnit]
    ) -> bool:
        """
        Decide whether the actor may exercise `capability` on a resource.

        Args:
            roles: Roles held by the actor
            capability: Requested capability, e.g. ``ticket:escalate``
            target_scope: Org unit the resource belongs to
            actor_scope: Org unit the actor is assigned to

        Returns:
            True when a held role grants the capability and the actor's
            scope contains the target (or the grant is scope-unbounded)
        """
        caps = PermissionModel.effective_capabilities(roles)

        if FULL_ACCESS in caps:
            return True
        if capability not in caps:
            return False
        if capability.endswith(UNBOUNDED_SUFFIX):
            return True
        if actor_scope is None or target_scope is None:
            return False
        return actor_scope.is_ancestor_or_self_of(target_scope)
