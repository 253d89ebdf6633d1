"""
Request-level orchestration.

MatchingService ties the pieces together for one quiz session:
1. Resolve the similarity algorithm version for the session (sticky A/B
   assignment or active version)
2. Turn the version's config blob into search options
3. Load the candidate pool from the store
4. Run the neighbour search
5. Report profiles_found, match_quality (share of neighbours with exactly
   the target's archetype) and archetype_accuracy for the
   version that served the request
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from .exceptions import StorageError
from .experiments.manager import ExperimentManager, Resolution
from .experiments.schema import AlgorithmRole
from .experiments.store import ExperimentStore, bounded_call
from .profiles.schema import FeatureVector
from .search.insights import SimilarityInsights, build_similarity_insights, match_quality
from .search.neighbors import NeighborSearch, SearchOptions, SearchOutcome
from .similarity.metrics import SimilarityEngine

logger = logging.getLogger(__name__)

ACCURACY_QUALITY_THRESHOLD = 0.5


@dataclass
class MatchResult:
    """Outcome of one session-level neighbour search."""
    resolution: Resolution
    outcome: SearchOutcome
    options: SearchOptions
    match_quality: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "algorithm": self.resolution.to_dict(),
            "options": self.options.to_dict(),
            "target_archetype": self.outcome.target_archetype.to_dict(),
            "threshold_used": self.outcome.threshold_used,
            "topped_up": self.outcome.topped_up,
            "pool_size": self.outcome.pool_size,
            "match_quality": float(self.match_quality),
            "results": [r.to_dict() for r in self.outcome.results],
        }


class MatchingService:
    """
    Session-level facade over search and experimentation.

    Attributes:
        store: Storage collaborator (profiles)
        search: Neighbour search with the default engine and classifier
        manager: Experiment manager resolving algorithm versions
        base_options: Options completed by each version's config blob
        pool_limit: Maximum number of profiles loaded per request
    """

    def __init__(
        self,
        store: ExperimentStore,
        search: NeighborSearch,
        manager: ExperimentManager,
        base_options: Optional[SearchOptions] = None,
        pool_limit: Optional[int] = None
    ):
        self.store = store
        self.search = search
        self.manager = manager
        self.base_options = base_options or SearchOptions()
        self.pool_limit = pool_limit

    @classmethod
    def from_config(
        cls,
        config: Dict[str, Any],
        store: ExperimentStore,
        random_seed: Optional[int] = None
    ) -> "MatchingService":
        """Create every component from main config dictionary."""
        if random_seed is None:
            random_seed = config.get("global", {}).get("random_seed")
        return cls(
            store=store,
            search=NeighborSearch.from_config(config),
            manager=ExperimentManager.from_config(config, store, random_seed=random_seed),
            base_options=SearchOptions.from_config(config),
        )

    def _search_for(self, resolution: Resolution) -> NeighborSearch:
        """Search instance honouring a version's own weight table, if any."""
        weights = resolution.config.get("dimension_weights")
        if not weights:
            return self.search
        engine = SimilarityEngine(
            dimension_weights=weights,
            default_metric=self.search.engine.default_metric,
            scale_max=self.search.engine.scale_max,
        )
        return NeighborSearch(
            engine,
            self.search.classifier,
            exact_match_bonus=self.search.exact_match_bonus,
            compatible_match_bonus=self.search.compatible_match_bonus,
        )

    def load_pool(self, min_timestamp: Optional[datetime] = None):
        """Candidate pool from the store; empty when storage fails."""
        try:
            return bounded_call(
                self.store.list_profiles,
                min_timestamp=min_timestamp,
                limit=self.pool_limit,
                timeout=self.manager.registry.config.store_timeout_seconds,
            )
        except StorageError as e:
            logger.error(f"Could not load candidate pool: {e}")
            return []

    def find_similar_profiles(self, session_id: str, target: FeatureVector) -> MatchResult:
        """
        Search neighbours for a session with its assigned similarity version.

        Args:
            session_id: Quiz session identifier
            target: The session's feature vector

        Returns:
            MatchResult instance
        """
        resolution = self.manager.resolve(session_id, AlgorithmRole.SIMILARITY)
        options = SearchOptions.from_dict(resolution.config, base=self.base_options)
        search = self._search_for(resolution)

        pool = [p for p in self.load_pool() if p.session_id != session_id]
        outcome = search.search(target, pool, options)
        quality = match_quality(outcome.target_archetype, outcome.results)

        self.track_similarity_performance(resolution.version, len(outcome.results), quality)

        return MatchResult(resolution=resolution, outcome=outcome, options=options, match_quality=quality)

    def similarity_insights(self, session_id: str, target: FeatureVector) -> SimilarityInsights:
        """Presentation summary using the session's similarity version."""
        resolution = self.manager.resolve(session_id, AlgorithmRole.SIMILARITY)
        options = SearchOptions.from_dict(resolution.config, base=self.base_options)
        pool = [p for p in self.load_pool() if p.session_id != session_id]
        return build_similarity_insights(self._search_for(resolution), target, pool, options)

    def track_similarity_performance(self, version: str, profiles_found: int, quality: float) -> None:
        """Report the standard similarity metrics for a version."""
        role = AlgorithmRole.SIMILARITY
        self.manager.track_performance(role, version, "profiles_found", profiles_found)
        self.manager.track_performance(role, version, "match_quality", quality)
        self.manager.track_performance(
            role, version, "archetype_accuracy",
            1.0 if quality > ACCURACY_QUALITY_THRESHOLD else 0.0,
        )
