"""
Intake Application Layer
========================

Contains:
- TicketIntakeService: embed, detect duplicates, create
- IEmbeddingProvider: interface for the external embedding call
"""

from helpdesk.intake.application.services import (
    TicketIntakeService,
    IEmbeddingProvider,
    IntakeResult,
)

__all__ = [
    "TicketIntakeService",
    "IEmbeddingProvider",
    "IntakeResult",
]
