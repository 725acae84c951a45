"""
Intake Infrastructure Layer
===========================

Contains:
- EmbeddingProviderAdapter: embedding client to IEmbeddingProvider
"""

from helpdesk.intake.infrastructure.external import EmbeddingProviderAdapter

__all__ = ["EmbeddingProviderAdapter"]
