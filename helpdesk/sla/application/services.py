"""
SLA Application Services
========================

The escalation scheduler: a periodic scan that escalates every active
ticket whose deadline elapsed without resolution.

Listing expired tickets and escalating them are separate steps. The
escalation re-checks the freshly loaded ticket, so a ticket resolved in
between, or reported twice, is left alone.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from helpdesk.shared.infrastructure.logging import get_logger, log_latency
from helpdesk.tickets.application import ITicketRepository, TicketService
from helpdesk.tickets.domain import EscalationEvent, MaxEscalationReached

logger = get_logger(__name__)


@dataclass
class ScanReport:
    """Counts from one scheduler pass."""
    started_at: datetime
    scanned: int = 0
    escalated: int = 0
    max_reached: int = 0
    skipped: int = 0
    failed: int = 0
    failed_ticket_ids: List[str] = field(default_factory=list)


class EscalationScheduler:
    """
    Escalates overdue tickets as the system principal.

    One ticket's failure never halts the scan; it is logged and the ticket
    is picked up again on the next pass.
    """

    def __init__(self, repository: ITicketRepository, ticket_service: TicketService):
        self._repo = repository
        self._ticket_service = ticket_service

    async def run_once(self, now: Optional[datetime] = None) -> ScanReport:
        """
        Run one scan.

        Args:
            now: Scan time; defaults to the ticket service clock

        Returns:
            ScanReport with per-outcome counts
        """
        now = now or self._ticket_service.now()
        report = ScanReport(started_at=now)

        with log_latency(logger, "escalation_scan"):
            expired = await self._repo.list_expired_deadlines(now)
            report.scanned = len(expired)

            for ticket in expired:
                try:
                    result = await self._ticket_service.escalate_for_sla_breach(ticket.id, now)
                except Exception as e:
                    report.failed += 1
                    report.failed_ticket_ids.append(ticket.id)
                    logger.error(
                        "Failed to escalate ticket",
                        extra={"ticket_id": ticket.id, "error": str(e), "error_type": type(e).__name__},
                        exc_info=True
                    )
                    continue

                if any(isinstance(e, EscalationEvent) for e in result.events):
                    report.escalated += 1
                elif any(isinstance(e, MaxEscalationReached) for e in result.events):
                    report.max_reached += 1
                else:
                    report.skipped += 1

        if report.scanned:
            logger.info(
                "Escalation scan completed",
                extra={
                    "scanned": report.scanned,
                    "escalated": report.escalated,
                    "max_reached": report.max_reached,
                    "skipped": report.skipped,
                    "failed": report.failed,
                }
            )
        return report
