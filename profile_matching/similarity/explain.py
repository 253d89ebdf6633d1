"""
Human-readable similarity breakdowns.

These helpers explain a match rather than score it: which dimensions two
profiles agree on, where they differ most, and where a user sits within
the recorded population.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Any, List, Sequence

from scipy.stats import percentileofscore

from ..profiles.schema import DIMENSIONS, FeatureVector, vectors_to_matrix
from .metrics import SimilarityEngine

logger = logging.getLogger(__name__)

STRONG_MATCH_THRESHOLD = 0.8
BIG_DIFFERENCE_THRESHOLD = 0.3
KEY_DIMENSION_TOLERANCE = 2.0


@dataclass
class DimensionComparison:
    """Comparison of one dimension between two vectors."""
    dimension: str
    value_a: float
    value_b: float
    difference: float
    similarity: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dimension": self.dimension,
            "value_a": float(self.value_a),
            "value_b": float(self.value_b),
            "difference": float(self.difference),
            "similarity": float(self.similarity),
        }


@dataclass
class SimilarityExplanation:
    """
    Breakdown of the similarity between two feature vectors.

    Attributes:
        overall_similarity: Similarity under the engine's default metric
        dimensions: Per-dimension comparison in dimension order
        strongest_matches: Dimensions with similarity above 0.8, best first
        biggest_differences: Dimensions with similarity below 0.3, largest gap first
    """
    overall_similarity: float
    dimensions: List[DimensionComparison] = field(default_factory=list)
    strongest_matches: List[str] = field(default_factory=list)
    biggest_differences: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overall_similarity": float(self.overall_similarity),
            "dimensions": [d.to_dict() for d in self.dimensions],
            "strongest_matches": list(self.strongest_matches),
            "biggest_differences": list(self.biggest_differences),
        }


def explain_similarity(
    engine: SimilarityEngine,
    v1: FeatureVector,
    v2: FeatureVector
) -> SimilarityExplanation:
    """
    Explain the similarity between two vectors dimension by dimension.

    Args:
        engine: Engine used for the overall similarity
        v1: First vector
        v2: Second vector

    Returns:
        SimilarityExplanation instance
    """
    comparisons = []
    for dim in DIMENSIONS:
        a = getattr(v1, dim)
        b = getattr(v2, dim)
        diff = abs(a - b)
        comparisons.append(DimensionComparison(
            dimension=dim,
            value_a=a,
            value_b=b,
            difference=diff,
            similarity=1.0 - diff / engine.scale_max,
        ))

    strong = sorted(
        (c for c in comparisons if c.similarity > STRONG_MATCH_THRESHOLD),
        key=lambda c: c.similarity, reverse=True
    )
    different = sorted(
        (c for c in comparisons if c.similarity < BIG_DIFFERENCE_THRESHOLD),
        key=lambda c: c.difference, reverse=True
    )

    return SimilarityExplanation(
        overall_similarity=engine.similarity(v1, v2),
        dimensions=comparisons,
        strongest_matches=[c.dimension for c in strong],
        biggest_differences=[c.dimension for c in different],
    )


def key_matching_dimensions(
    v1: FeatureVector,
    v2: FeatureVector,
    tolerance: float = KEY_DIMENSION_TOLERANCE
) -> List[str]:
    """Dimensions on which two vectors differ by at most `tolerance` raw units."""
    return [
        dim for dim in DIMENSIONS
        if abs(getattr(v1, dim) - getattr(v2, dim)) <= tolerance
    ]


def user_percentiles(target: FeatureVector, population: Sequence[FeatureVector]) -> Dict[str, int]:
    """
    Position of a user within the population, per dimension.

    The percentile is the share of the population strictly below the user's
    value, rounded to an integer.

    Args:
        target: User's vector
        population: Recorded vectors

    Returns:
        Mapping of dimension to percentile in [0, 100]; empty for an empty
        population
    """
    if len(population) == 0:
        return {}

    matrix = vectors_to_matrix(population)
    return {
        dim: int(round(percentileofscore(matrix[:, i], getattr(target, dim), kind="strict")))
        for i, dim in enumerate(DIMENSIONS)
    }


def average_scores(vectors: Sequence[FeatureVector]) -> Dict[str, float]:
    """Dimension-wise mean of a set of vectors; empty for no vectors."""
    if len(vectors) == 0:
        return {}
    means = vectors_to_matrix(vectors).mean(axis=0)
    return {dim: float(round(value, 4)) for dim, value in zip(DIMENSIONS, means)}
