"""
Intake External Service Integrations
====================================

Adapts the embedding client to the intake service's provider interface.
"""

from typing import Optional

from helpdesk.core import DetectorUnavailable, EmbeddingException
from helpdesk.infrastructure.embeddings import IEmbeddingClient
from helpdesk.intake.application import IEmbeddingProvider
from helpdesk.tickets.domain import EmbeddingVector


class EmbeddingProviderAdapter(IEmbeddingProvider):
    """
    Turns embedding failures into DetectorUnavailable.

    A vector reported under a model other than the pinned one, or of an
    unexpected dimension, is treated as a failure too.
    """

    def __init__(self, client: IEmbeddingClient, expected_dimension: Optional[int] = None):
        self._client = client
        self._expected_dimension = expected_dimension

    @property
    def model(self) -> str:
        return self._client.model

    async def embed(self, text: str) -> EmbeddingVector:
        try:
            result = await self._client.generate_embedding(text)
        except EmbeddingException as e:
            raise DetectorUnavailable(str(e)) from e

        if result.model != self.model:
            raise DetectorUnavailable(
                f"Embedding model changed from {self.model} to {result.model}",
                {"expected_model": self.model, "actual_model": result.model}
            )
        if not result.embedding:
            raise DetectorUnavailable("Embedding provider returned an empty vector")
        if self._expected_dimension and result.dimension != self._expected_dimension:
            raise DetectorUnavailable(
                f"Unexpected embedding dimension {result.dimension}",
                {"expected_dimension": self._expected_dimension}
            )

        return EmbeddingVector(values=tuple(result.embedding), model=result.model)
