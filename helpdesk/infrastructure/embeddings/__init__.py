"""
Embedding Client Infrastructure
===============================

Wrapper for OpenAI-compatible embedding endpoints.

Any provider exposing the OpenAI embeddings API works by setting
``embedding_base_url`` (Gemini, Groq-hosted and self-hosted gateways do).
Each result is tagged with the pinned model name so vectors from
different models are never compared.
"""

import hashlib
import math
import random
import re
from abc import ABC, abstractmethod
from typing import List, Optional

from openai import AsyncOpenAI

from helpdesk.config import settings
from helpdesk.core import ConfigurationException, EmbeddingException
from helpdesk.shared.infrastructure.resilience import CircuitBreaker


class EmbeddingResult:
    """Result of an embedding generation."""

    def __init__(self, embedding: List[float], model: str):
        self.embedding = embedding
        self.model = model
        self.dimension = len(embedding)


class IEmbeddingClient(ABC):
    """Interface for text embedding."""

    @property
    @abstractmethod
    def model(self) -> str:
        """Pinned model identity."""

    @abstractmethod
    async def generate_embedding(self, text: str) -> EmbeddingResult:
        """Generate embedding for text."""


class OpenAIEmbeddingClient(IEmbeddingClient):
    """
    OpenAI SDK client for embeddings.

    Provides async wrapper around the embeddings endpoint with a circuit
    breaker so an unreachable provider fails fast during intake.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None
    ):
        self._api_key = api_key or settings.embedding_api_key
        if not self._api_key:
            raise ConfigurationException("Embedding API key not configured")

        self._client = AsyncOpenAI(
            api_key=self._api_key,
            base_url=base_url or settings.embedding_base_url,
            timeout=timeout or settings.embedding_timeout_seconds,
            max_retries=1,
        )
        self._model = model or settings.embedding_model
        self._circuit_breaker = CircuitBreaker("embeddings", failure_threshold=3, recovery_timeout=30)

    @property
    def model(self) -> str:
        return self._model

    async def generate_embedding(self, text: str) -> EmbeddingResult:
        """
        Generate embedding for text.

        Raises:
            EmbeddingException: If the call fails or the circuit is open
        """
        if not self._circuit_breaker.allow_request():
            raise EmbeddingException("Circuit breaker open")

        try:
            response = await self._client.embeddings.create(
                model=self._model,
                input=text
            )
        except Exception as e:
            self._circuit_breaker.record_failure()
            raise EmbeddingException(f"Embedding generation failed: {str(e)}") from e

        self._circuit_breaker.record_success()
        return EmbeddingResult(
            embedding=list(response.data[0].embedding),
            model=self._model
        )

    async def close(self) -> None:
        await self._client.close()


class MockEmbeddingClient(IEmbeddingClient):
    """
    Deterministic embeddings without calling external APIs.

    Each lower-cased word contributes a pseudo-random unit vector seeded by
    its hash, so texts sharing most words land close together.
    """

    def __init__(self, dimension: Optional[int] = None, model: str = "mock-embedding"):
        self._dimension = dimension or settings.embedding_dimension
        self._model = model

    @property
    def model(self) -> str:
        return self._model

    def _word_vector(self, word: str) -> List[float]:
        seed = int(hashlib.sha256(word.encode()).hexdigest()[:8], 16)
        rng = random.Random(seed)
        return [rng.uniform(-1, 1) for _ in range(self._dimension)]

    async def generate_embedding(self, text: str) -> EmbeddingResult:
        vector = [0.0] * self._dimension
        for word in re.findall(r"\w+", text.lower()):
            for i, value in enumerate(self._word_vector(word)):
                vector[i] += value

        norm = math.sqrt(sum(v * v for v in vector))
        if norm:
            vector = [v / norm for v in vector]
        return EmbeddingResult(embedding=vector, model=self._model)


def get_embedding_client() -> IEmbeddingClient:
    """Build the embedding client selected by settings."""
    if settings.mock_embeddings or not settings.embedding_api_key:
        return MockEmbeddingClient()
    return OpenAIEmbeddingClient()
