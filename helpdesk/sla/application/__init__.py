"""
SLA Application Layer
=====================

Contains:
- EscalationScheduler: periodic scan escalating overdue tickets
- DTOs: scan report and policy responses
"""

from helpdesk.sla.application.services import EscalationScheduler, ScanReport
from helpdesk.sla.application.dto import ScanReportResponse, SlaPolicyResponse

__all__ = [
    "EscalationScheduler",
    "ScanReport",
    "ScanReportResponse",
    "SlaPolicyResponse",
]
