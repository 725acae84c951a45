"""
Intake Domain Layer
===================

Contains:
- DuplicateDetector: pure similarity ranking over a candidate pool
- cosine_similarity: the distance primitive it ranks by
"""

from helpdesk.intake.domain.duplicates import (
    DuplicateDetector,
    DuplicateMatch,
    cosine_similarity,
    DEFAULT_SIMILARITY_THRESHOLD,
)

__all__ = [
    "DuplicateDetector",
    "DuplicateMatch",
    "cosine_similarity",
    "DEFAULT_SIMILARITY_THRESHOLD",
]
