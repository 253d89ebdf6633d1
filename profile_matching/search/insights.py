"""
Similarity insights for a user.

Summarises a neighbour search for presentation: how many similar users
were found, how close they are, which dimensions drive the top matches,
where the user sits in the population and how well the neighbours agree
with the user's archetype.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional, Sequence

import numpy as np

from ..archetypes.classifier import ArchetypeClassifier, ArchetypeMatch
from ..profiles.schema import FeatureVector, ProfileRecord
from ..similarity.explain import key_matching_dimensions, user_percentiles
from .neighbors import NeighborSearch, SearchOptions, SimilarityResult

logger = logging.getLogger(__name__)

TOP_MATCHES = 5


@dataclass
class ArchetypeSummary:
    """Agreement between the user's archetype and the neighbours found."""
    primary: str
    confidence: float
    same_archetype_matches: int
    compatible_matches: int
    match_quality: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "primary": self.primary,
            "confidence": float(self.confidence),
            "same_archetype_matches": int(self.same_archetype_matches),
            "compatible_matches": int(self.compatible_matches),
            "match_quality": float(self.match_quality),
        }


@dataclass
class SimilarityInsights:
    """Presentation-ready summary of a neighbour search."""
    similar_users: int
    average_similarity: float
    top_matches: List[Dict[str, Any]] = field(default_factory=list)
    user_percentiles: Dict[str, int] = field(default_factory=dict)
    archetype: Optional[ArchetypeSummary] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "similar_users": self.similar_users,
            "average_similarity": float(self.average_similarity),
            "top_matches": self.top_matches,
            "user_percentiles": self.user_percentiles,
            "archetype": self.archetype.to_dict() if self.archetype else None,
        }


def match_quality(
    target: ArchetypeMatch,
    results: Sequence[SimilarityResult],
    classifier: Optional[ArchetypeClassifier] = None
) -> float:
    """
    Share of results whose archetype agrees with the target.

    With a classifier, compatible archetypes count as agreeing too;
    without one, only exact matches count.

    Returns:
        Fraction in [0, 1]; 0 for no results
    """
    if not results:
        return 0.0
    agreeing = 0
    for result in results:
        if result.matched_archetype == target.archetype:
            agreeing += 1
        elif classifier is not None and classifier.are_compatible(target.archetype, result.matched_archetype):
            agreeing += 1
    return agreeing / len(results)


def archetype_distribution(results: Sequence[SimilarityResult]) -> Dict[str, int]:
    """Count of results per matched archetype."""
    distribution: Dict[str, int] = {}
    for result in results:
        distribution[result.matched_archetype] = distribution.get(result.matched_archetype, 0) + 1
    return distribution


def build_similarity_insights(
    search: NeighborSearch,
    target: FeatureVector,
    pool: Sequence[ProfileRecord],
    options: Optional[SearchOptions] = None
) -> SimilarityInsights:
    """
    Run a search and summarise it for the user.

    Args:
        search: Neighbour search to run
        target: User's vector
        pool: Recorded profiles
        options: Search options

    Returns:
        SimilarityInsights instance
    """
    outcome = search.search(target, pool, options)
    results = outcome.results
    target_match = outcome.target_archetype

    same = sum(1 for r in results if r.matched_archetype == target_match.archetype)
    compatible = sum(
        1 for r in results
        if r.matched_archetype == target_match.archetype
        or search.classifier.are_compatible(target_match.archetype, r.matched_archetype)
    )

    top_matches = [
        {
            "profile_id": r.profile.id,
            "similarity": float(r.final_similarity),
            "base_similarity": float(r.base_similarity),
            "archetype_bonus": float(r.archetype_bonus),
            "archetype": r.matched_archetype,
            "key_dimensions": key_matching_dimensions(target, r.profile.feature_vector),
        }
        for r in results[:TOP_MATCHES]
    ]

    insights = SimilarityInsights(
        similar_users=len(results),
        average_similarity=float(np.mean([r.final_similarity for r in results])) if results else 0.0,
        top_matches=top_matches,
        user_percentiles=user_percentiles(target, [p.feature_vector for p in pool]),
        archetype=ArchetypeSummary(
            primary=target_match.archetype,
            confidence=target_match.confidence,
            same_archetype_matches=same,
            compatible_matches=compatible,
            match_quality=compatible / len(results) if results else 0.0,
        ),
    )

    logger.info(f"Similarity insights: {insights.similar_users} similar users, "
                f"archetype={target_match.archetype}, "
                f"match quality={insights.archetype.match_quality:.0%}")
    return insights
