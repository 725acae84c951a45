"""
SLA Interfaces Layer
====================

FastAPI routes for escalation scans and the SLA policy.
"""

from helpdesk.sla.interfaces.controllers import router

__all__ = ["router"]
