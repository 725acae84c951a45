"""
Duplicate Detection
===================

Pure ranking of candidate tickets by cosine similarity to a new ticket's
embedding.

The candidate pool is scope-local (one department) and is a snapshot;
tickets created after it was read are simply not considered.
"""

import math
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Tuple

from helpdesk.tickets.domain import EmbeddingVector, Ticket

DEFAULT_SIMILARITY_THRESHOLD = 0.85


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> Optional[float]:
    """
    Cosine similarity of two equal-length vectors.

    Returns None when either vector has zero norm.
    """
    if len(a) != len(b):
        raise ValueError(f"dimension mismatch: {len(a)} != {len(b)}")

    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return None
    return dot / (norm_a * norm_b)


@dataclass(frozen=True)
class DuplicateMatch:
    """Best qualifying candidate and its score."""
    ticket: Ticket
    similarity: float
    model: str


class DuplicateDetector:
    """
    Returns the single best candidate scoring at or above the threshold.

    Candidates are skipped when they are themselves linked duplicates,
    when their vector came from a different model, or when the vector
    dimension differs. Equal top scores go to the most recently created
    candidate.
    """

    def __init__(self, threshold: float = DEFAULT_SIMILARITY_THRESHOLD):
        if not 0.0 <= threshold <= 1.0:
            raise ValueError("threshold must be within [0, 1]")
        self._threshold = threshold

    @property
    def threshold(self) -> float:
        return self._threshold

    def find(
        self,
        query: EmbeddingVector,
        pool: Iterable[Tuple[Ticket, EmbeddingVector]]
    ) -> Optional[DuplicateMatch]:
        best: Optional[DuplicateMatch] = None

        for ticket, vector in pool:
            if ticket.is_duplicate:
                continue
            if vector.model != query.model or vector.dimension != query.dimension:
                continue

            score = cosine_similarity(query.values, vector.values)
            if score is None or score < self._threshold:
                continue

            if (
                best is None
                or score > best.similarity
                or (score == best.similarity and ticket.created_at > best.ticket.created_at)
            ):
                best = DuplicateMatch(ticket=ticket, similarity=score, model=query.model)

        return best
