"""
SLA Infrastructure Layer
========================

Contains:
- SLAConfigManager: YAML policy provider with watchdog hot reload
- EscalationJobRunner: APScheduler interval job for the escalation scan
"""

from helpdesk.sla.infrastructure.external import (
    SLAConfigManager,
    ConfigFileHandler,
    EscalationJobRunner,
)

__all__ = [
    "SLAConfigManager",
    "ConfigFileHandler",
    "EscalationJobRunner",
]
