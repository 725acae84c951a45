"""
Access Domain Layer
===================

Contains:
- Entities: OrgUnit, Role, Principal
- Domain Services: PermissionModel, RoleCatalog

Pure Python, no infrastructure dependencies.
"""

from helpdesk.access.domain.entities import OrgUnit, Role, Principal
from helpdesk.access.domain.permissions import (
    PermissionModel,
    RoleCatalog,
    DEFAULT_ROLE_CAPABILITIES,
    FULL_ACCESS,
    UNBOUNDED_SUFFIX,
)

__all__ = [
    "OrgUnit",
    "Role",
    "Principal",
    "PermissionModel",
    "RoleCatalog",
    "DEFAULT_ROLE_CAPABILITIES",
    "FULL_ACCESS",
    "UNBOUNDED_SUFFIX",
]
