"""
Tickets Interfaces Layer
========================

FastAPI routes for the ticket lifecycle.
"""

from helpdesk.tickets.interfaces.controllers import router

__all__ = ["router"]
