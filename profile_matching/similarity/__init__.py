"""Similarity metrics and similarity explanations."""

from .metrics import (
    SimilarityEngine,
    SimilarityMetric,
    DEFAULT_DIMENSION_WEIGHTS,
)
from .explain import (
    explain_similarity,
    key_matching_dimensions,
    user_percentiles,
    average_scores,
    SimilarityExplanation,
)

__all__ = [
    "SimilarityEngine",
    "SimilarityMetric",
    "DEFAULT_DIMENSION_WEIGHTS",
    "explain_similarity",
    "key_matching_dimensions",
    "user_percentiles",
    "average_scores",
    "SimilarityExplanation",
]
