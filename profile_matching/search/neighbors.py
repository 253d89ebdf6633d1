"""
Nearest-neighbour search with progressive relaxation.

Given a target vector and a candidate pool, returns a bounded, diverse set
of the most similar recorded profiles.

Algorithm:
1. Classify the target once
2. Score every pool member: base similarity under the chosen metric, plus
   an archetype bonus when the member's archetype matches the target's
   (0.15 x min confidence) or is compatible with it (0.08 x min confidence);
   final = min(1, base + bonus)
3. Progressive relaxation: keep members with final >= threshold, starting
   at 0.7 and lowering by 0.1 down to 0.3 until min_results survive
4. Sort survivors by final similarity, best first
5. Diversity re-ranking when diversity_factor > 0 and there is a surplus
6. Truncate to max_results

The candidate pool is small and clustered, so a fixed threshold would be
either empty or flooded depending on where the target sits. Relaxation
adapts to local density without the caller knowing it in advance.

Sparse outcomes are not errors: an empty pool returns an empty list, and a
floor that still yields too few survivors is topped up with the best
remaining candidates so at least min(min_results, len(pool)) come back.
"""

import logging
from dataclasses import dataclass, asdict, fields
from typing import Dict, Any, List, Optional, Sequence

from ..archetypes.classifier import ArchetypeClassifier, ArchetypeMatch
from ..exceptions import ConfigurationError
from ..profiles.schema import FeatureVector, ProfileRecord
from ..similarity.metrics import SimilarityEngine, SimilarityMetric
from .diversity import rerank_for_diversity

logger = logging.getLogger(__name__)

DEFAULT_EXACT_MATCH_BONUS = 0.15
DEFAULT_COMPATIBLE_MATCH_BONUS = 0.08


@dataclass
class SearchOptions:
    """
    Options for one neighbour search.

    Attributes:
        metric: Similarity metric name
        min_results: Result count the relaxation tries to reach
        max_results: Hard cap on returned results
        use_archetype_bonus: Add the archetype bonus to base similarity
        diversity_factor: Weight of diversity in re-ranking (0 disables it)
        start_threshold: First threshold of the relaxation ladder
        threshold_step: Amount the threshold drops per step
        floor_threshold: Lowest threshold tried
    """
    metric: str = "weighted_euclidean"
    min_results: int = 3
    max_results: int = 10
    use_archetype_bonus: bool = True
    diversity_factor: float = 0.1
    start_threshold: float = 0.7
    threshold_step: float = 0.1
    floor_threshold: float = 0.3

    def validate(self) -> None:
        """
        Validate option values.

        Raises:
            ConfigurationError: On an unknown metric or inconsistent bounds
        """
        SimilarityMetric.parse(self.metric)
        if self.min_results < 0:
            raise ConfigurationError(f"min_results must be >= 0, got {self.min_results}")
        if self.max_results < 1:
            raise ConfigurationError(f"max_results must be >= 1, got {self.max_results}")
        if not 0 <= self.diversity_factor <= 1:
            raise ConfigurationError(f"diversity_factor must be in [0, 1], got {self.diversity_factor}")
        if not 0 <= self.floor_threshold <= self.start_threshold <= 1:
            raise ConfigurationError(
                f"thresholds must satisfy 0 <= floor <= start <= 1, "
                f"got floor={self.floor_threshold}, start={self.start_threshold}"
            )
        if self.threshold_step <= 0:
            raise ConfigurationError(f"threshold_step must be positive, got {self.threshold_step}")

    def relaxation_ladder(self) -> List[float]:
        """Thresholds tried in order, from start down to floor inclusive."""
        thresholds = []
        threshold = self.start_threshold
        step = 0
        while threshold > self.floor_threshold + 1e-9:
            thresholds.append(round(threshold, 10))
            step += 1
            threshold = self.start_threshold - step * self.threshold_step
        thresholds.append(round(self.floor_threshold, 10))
        return thresholds

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any], base: Optional["SearchOptions"] = None) -> "SearchOptions":
        """
        Create from a dictionary, ignoring keys that are not options.

        Args:
            d: Option values (e.g. a similarity algorithm config blob)
            base: Options supplying values missing from `d`
        """
        values = (base or cls()).to_dict()
        known = {f.name for f in fields(cls)}
        values.update({k: v for k, v in (d or {}).items() if k in known})
        return cls(**values)

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "SearchOptions":
        """Create from main config dictionary."""
        return cls.from_dict(config.get("search", {}))


@dataclass
class SimilarityResult:
    """
    One scored neighbour.

    Attributes:
        profile: The matched profile record (referenced, not copied)
        base_similarity: Similarity under the chosen metric
        archetype_bonus: Bonus for matching or compatible archetypes
        final_similarity: min(1, base + bonus)
        matched_archetype: Archetype of the matched profile
        archetype_confidence: Classifier confidence for that archetype
    """
    profile: ProfileRecord
    base_similarity: float
    archetype_bonus: float
    final_similarity: float
    matched_archetype: str
    archetype_confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "profile_id": self.profile.id,
            "session_id": self.profile.session_id,
            "base_similarity": float(self.base_similarity),
            "archetype_bonus": float(self.archetype_bonus),
            "final_similarity": float(self.final_similarity),
            "matched_archetype": self.matched_archetype,
            "archetype_confidence": float(self.archetype_confidence),
        }


@dataclass
class SearchOutcome:
    """
    Full outcome of a search, including how far the threshold was relaxed.

    Attributes:
        results: Ordered neighbours
        target_archetype: Classification of the target
        threshold_used: Last threshold applied
        topped_up: True if the floor yielded fewer than min_results and the
            best remaining candidates were added
        pool_size: Number of candidates considered
    """
    results: List[SimilarityResult]
    target_archetype: ArchetypeMatch
    threshold_used: Optional[float]
    topped_up: bool
    pool_size: int


class NeighborSearch:
    """
    Progressive-relaxation neighbour search.

    Stateless between calls; one instance can serve concurrent requests.

    Attributes:
        engine: Similarity engine
        classifier: Archetype classifier
        exact_match_bonus: Bonus factor for identical archetypes
        compatible_match_bonus: Bonus factor for compatible archetypes
    """

    def __init__(
        self,
        engine: SimilarityEngine,
        classifier: ArchetypeClassifier,
        exact_match_bonus: float = DEFAULT_EXACT_MATCH_BONUS,
        compatible_match_bonus: float = DEFAULT_COMPATIBLE_MATCH_BONUS
    ):
        self.engine = engine
        self.classifier = classifier
        self.exact_match_bonus = exact_match_bonus
        self.compatible_match_bonus = compatible_match_bonus

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "NeighborSearch":
        """Create engine, classifier and search from main config dictionary."""
        archetype_config = config.get("archetypes", {})
        return cls(
            engine=SimilarityEngine.from_config(config),
            classifier=ArchetypeClassifier.from_config(config),
            exact_match_bonus=archetype_config.get("exact_match_bonus", DEFAULT_EXACT_MATCH_BONUS),
            compatible_match_bonus=archetype_config.get("compatible_match_bonus", DEFAULT_COMPATIBLE_MATCH_BONUS),
        )

    def archetype_bonus(self, target: ArchetypeMatch, member: ArchetypeMatch) -> float:
        """Bonus for a member given both classifications."""
        confidence = min(target.confidence, member.confidence)
        if target.archetype == member.archetype:
            return self.exact_match_bonus * confidence
        if self.classifier.are_compatible(target.archetype, member.archetype):
            return self.compatible_match_bonus * confidence
        return 0.0

    def score_pool(
        self,
        target: FeatureVector,
        pool: Sequence[ProfileRecord],
        options: SearchOptions,
        target_match: Optional[ArchetypeMatch] = None
    ) -> List[SimilarityResult]:
        """
        Score every pool member against the target, in pool order.

        Args:
            target: Target vector
            pool: Candidate profiles
            options: Search options (metric and bonus switch are used)
            target_match: Pre-computed target classification

        Returns:
            One SimilarityResult per pool member
        """
        if target_match is None:
            target_match = self.classifier.classify(target)

        base = self.engine.similarity_to_many(
            target, [p.feature_vector for p in pool], options.metric
        )

        scored = []
        for profile, base_similarity in zip(pool, base):
            member_match = self.classifier.classify(profile.feature_vector)
            bonus = self.archetype_bonus(target_match, member_match) if options.use_archetype_bonus else 0.0
            scored.append(SimilarityResult(
                profile=profile,
                base_similarity=float(base_similarity),
                archetype_bonus=float(bonus),
                final_similarity=float(min(1.0, base_similarity + bonus)),
                matched_archetype=member_match.archetype,
                archetype_confidence=member_match.confidence,
            ))
        return scored

    def search(
        self,
        target: FeatureVector,
        pool: Sequence[ProfileRecord],
        options: Optional[SearchOptions] = None
    ) -> SearchOutcome:
        """
        Run a search and report how it got its results.

        Args:
            target: Target vector
            pool: Candidate profiles
            options: Search options (defaults apply when None)

        Returns:
            SearchOutcome instance
        """
        options = options or SearchOptions()
        options.validate()
        target_match = self.classifier.classify(target)

        if not pool:
            logger.warning("Neighbour search on an empty candidate pool")
            return SearchOutcome([], target_match, None, False, 0)

        scored = self.score_pool(target, pool, options, target_match)
        ranked = sorted(scored, key=lambda r: r.final_similarity, reverse=True)

        survivors: List[SimilarityResult] = []
        threshold_used = None
        for threshold in options.relaxation_ladder():
            threshold_used = threshold
            survivors = [r for r in ranked if r.final_similarity >= threshold]
            logger.debug(f"Relaxation step: threshold={threshold:.2f} -> {len(survivors)} candidates")
            if len(survivors) >= options.min_results:
                break

        topped_up = False
        required = min(options.min_results, len(ranked))
        if len(survivors) < required:
            logger.warning(f"Only {len(survivors)} candidates above floor threshold "
                           f"{options.floor_threshold:.2f}; adding best remaining to reach {required}")
            survivors = ranked[:required]
            topped_up = True

        if options.diversity_factor > 0 and len(survivors) > options.min_results:
            survivors = rerank_for_diversity(
                survivors, options.diversity_factor, self.engine, limit=options.max_results
            )

        results = survivors[:options.max_results]
        logger.info(f"Found {len(results)} neighbours among {len(pool)} profiles "
                    f"(target={target_match.archetype}, threshold={threshold_used:.2f})")

        return SearchOutcome(results, target_match, threshold_used, topped_up, len(pool))

    def find_neighbors(
        self,
        target: FeatureVector,
        pool: Sequence[ProfileRecord],
        options: Optional[SearchOptions] = None
    ) -> List[SimilarityResult]:
        """
        Find the nearest, diverse neighbours of a target vector.

        Args:
            target: Target vector
            pool: Candidate profiles
            options: Search options (defaults apply when None)

        Returns:
            Ordered list of at most options.max_results SimilarityResults
        """
        return self.search(target, pool, options).results

    def classify(self, vector: FeatureVector) -> ArchetypeMatch:
        """Classify a vector with this search's classifier."""
        return self.classifier.classify(vector)
