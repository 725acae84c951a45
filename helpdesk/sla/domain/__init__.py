"""
SLA Domain Layer
================

Contains:
- Value Objects: SLAConfig (validated policy document)
- Domain Services: SlaPolicy (urgency → deadline lookup)

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from helpdesk.sla.domain.value_objects import (
    SLAConfig,
    SlaPolicy,
    ISLAPolicyProvider,
    StaticSLAPolicyProvider,
    DEFAULT_SLA_HOURS,
    DEFAULT_PRIORITY_URGENCY,
    DEFAULT_REOPEN_WINDOW_HOURS,
)

__all__ = [
    "SLAConfig",
    "SlaPolicy",
    "ISLAPolicyProvider",
    "StaticSLAPolicyProvider",
    "DEFAULT_SLA_HOURS",
    "DEFAULT_PRIORITY_URGENCY",
    "DEFAULT_REOPEN_WINDOW_HOURS",
]
