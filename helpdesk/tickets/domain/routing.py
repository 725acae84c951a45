"""
Ticket Authority Routing
========================

Which role owns a ticket at each escalation level.

Transport and hostel complaints start with their incharge instead of the
department HOD. Above level 0 every chain climbs the same ladder.
"""

from typing import Dict

from helpdesk.config import MAX_ESCALATION_LEVEL, TicketCategory

CATEGORY_ROUTING: Dict[TicketCategory, str] = {
    TicketCategory.TRANSPORT: "TRANSPORT_INCHARGE",
    TicketCategory.HOSTEL: "HOSTEL_WARDEN",
    TicketCategory.ACADEMIC: "HOD",
    TicketCategory.ADMINISTRATIVE: "HOD",
    TicketCategory.OTHER: "HOD",
}

ESCALATION_ROLES: Dict[int, str] = {
    1: "DIRECTOR",
    2: "CAMPUS_ADMIN",
    3: "SYSTEM_ADMIN",
}


def role_for_level(category: TicketCategory, escalation_level: int) -> str:
    """Role expected to pick up a ticket of `category` at `escalation_level`."""
    if not 0 <= escalation_level <= MAX_ESCALATION_LEVEL:
        raise ValueError(f"escalation_level must be within 0..{MAX_ESCALATION_LEVEL}")
    if escalation_level == 0:
        return CATEGORY_ROUTING[category]
    return ESCALATION_ROLES[escalation_level]
