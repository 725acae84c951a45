"""
Ticket Timeline
===============

Chronological view of a ticket assembled from what it already stores:
creation, escalations, system messages, resolution, closure and rating.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List

from helpdesk.config import AUTHORITY_LEVELS, EscalationTrigger
from helpdesk.tickets.domain.entities import Message, Ticket


@dataclass(frozen=True)
class TimelineEntry:
    kind: str
    timestamp: datetime
    data: Dict[str, Any] = field(default_factory=dict)


def build_timeline(ticket: Ticket, messages: Iterable[Message]) -> List[TimelineEntry]:
    """
    Build the timeline of `ticket`.

    Only system messages among `messages` are included, so callers pass
    the messages the reader is allowed to see. Entries sharing a timestamp
    keep their insertion order.
    """
    entries = [TimelineEntry("created", ticket.created_at, {
        "category": ticket.category.value,
        "priority": ticket.priority.value,
        "linked_duplicate_of": ticket.linked_duplicate_of,
    })]

    for event in ticket.escalation_history:
        entries.append(TimelineEntry("escalation", event.occurred_at, {
            "from_authority": AUTHORITY_LEVELS[event.from_level],
            "to_authority": event.to_authority,
            "to_role": event.to_role,
            "reason": event.reason,
            "auto_escalated": event.triggered_by == EscalationTrigger.SLA_BREACH,
            "actor_id": event.actor_id,
        }))

    for message in messages:
        if message.is_system:
            entries.append(TimelineEntry("system_message", message.created_at, {"message": message.body}))

    if ticket.resolved_at:
        entries.append(TimelineEntry("resolved", ticket.resolved_at, {"status": "RESOLVED"}))
    if ticket.closed_at:
        entries.append(TimelineEntry("closed", ticket.closed_at, {"status": ticket.status.value}))
    if ticket.rated_at:
        entries.append(TimelineEntry("rated", ticket.rated_at, {
            "rating": ticket.rating,
            "comment": ticket.rating_comment,
        }))

    return sorted(entries, key=lambda e: e.timestamp)
