"""
Diversity re-ranking for neighbour results.

Greedy selection that trades raw similarity against dissimilarity to what
has already been picked, so a dense cluster of near-duplicates cannot fill
the whole result list:

    score(c) = final_similarity(c) * (1 - f) + mean_diversity(c) * f
    mean_diversity(c) = mean(1 - weighted_euclidean(c, s) for s in selected)

The single best match is always selected first.
"""

import logging
from typing import List, Optional, Sequence, TYPE_CHECKING

import numpy as np

from ..profiles.schema import vectors_to_matrix
from ..similarity.metrics import SimilarityEngine, SimilarityMetric

if TYPE_CHECKING:
    from .neighbors import SimilarityResult

logger = logging.getLogger(__name__)


def rerank_for_diversity(
    results: Sequence["SimilarityResult"],
    diversity_factor: float,
    engine: SimilarityEngine,
    limit: Optional[int] = None
) -> List["SimilarityResult"]:
    """
    Re-order results to balance similarity and diversity.

    Args:
        results: Results sorted by final similarity, best first
        diversity_factor: Weight of diversity in [0, 1]; 0 keeps the input order
        engine: Engine providing the weighted euclidean similarity
        limit: Stop after selecting this many results (None = all)

    Returns:
        Re-ranked results; the first element is always results[0]
    """
    if not results:
        return []
    if diversity_factor <= 0:
        return list(results[:limit] if limit is not None else results)

    target_count = len(results) if limit is None else min(limit, len(results))

    selected = [results[0]]
    remaining = list(results[1:])
    if target_count <= 1 or not remaining:
        return selected

    vectors = vectors_to_matrix([r.profile.feature_vector for r in remaining])
    finals = np.array([r.final_similarity for r in remaining])
    diversity_sums = np.zeros(len(remaining))
    available = np.ones(len(remaining), dtype=bool)

    last = results[0]
    while len(selected) < target_count and available.any():
        sims = engine.similarity_to_many(
            last.profile.feature_vector, vectors, SimilarityMetric.WEIGHTED_EUCLIDEAN
        )
        diversity_sums += 1.0 - sims

        combined = finals * (1 - diversity_factor) + (diversity_sums / len(selected)) * diversity_factor
        combined[~available] = -np.inf
        best = int(np.argmax(combined))

        available[best] = False
        last = remaining[best]
        selected.append(last)

    logger.debug(f"Diversity re-ranking selected {len(selected)} of {len(results)} "
                 f"candidates (factor={diversity_factor})")
    return selected
