"""Neighbour search with progressive relaxation and diversity re-ranking."""

from .neighbors import NeighborSearch, SearchOptions, SearchOutcome, SimilarityResult
from .diversity import rerank_for_diversity
from .insights import (
    build_similarity_insights,
    match_quality,
    archetype_distribution,
    SimilarityInsights,
)

__all__ = [
    "NeighborSearch",
    "SearchOptions",
    "SearchOutcome",
    "SimilarityResult",
    "rerank_for_diversity",
    "build_similarity_insights",
    "match_quality",
    "archetype_distribution",
    "SimilarityInsights",
]
