"""
SLA Application DTOs
====================

Pydantic models for the escalation and policy endpoints.
"""

from datetime import datetime
from typing import Dict, List

from pydantic import BaseModel, Field

from helpdesk.sla.application.services import ScanReport
from helpdesk.sla.domain import SlaPolicy


class ScanReportResponse(BaseModel):
    """Result of one escalation scan."""
    started_at: datetime
    scanned: int
    escalated: int
    max_reached: int
    skipped: int
    failed: int
    failed_ticket_ids: List[str] = Field(default_factory=list)

    @classmethod
    def from_report(cls, report: ScanReport) -> "ScanReportResponse":
        return cls(
            started_at=report.started_at,
            scanned=report.scanned,
            escalated=report.escalated,
            max_reached=report.max_reached,
            skipped=report.skipped,
            failed=report.failed,
            failed_ticket_ids=list(report.failed_ticket_ids),
        )


class SlaPolicyResponse(BaseModel):
    """Policy currently in force."""
    sla_hours: Dict[str, float]
    priority_urgency: Dict[str, str]
    reopen_window_hours: float

    @classmethod
    def from_policy(cls, policy: SlaPolicy) -> "SlaPolicyResponse":
        config = policy.config
        return cls(
            sla_hours={k.value: v for k, v in config.sla_hours.items()},
            priority_urgency={k.value: v.value for k, v in config.priority_urgency.items()},
            reopen_window_hours=config.reopen_window_hours,
        )
