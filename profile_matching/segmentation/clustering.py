"""
Population segmentation by iterative centroid assignment.

A k-means style clustering over the same weighted euclidean distance the
similarity engine uses (distance = 1 - similarity), so segments agree with
what the neighbour search considers close.

Procedure:
1. Initialise k centroids uniformly at random inside the per-dimension
   [min, max] range of the population (explicit seed, reproducible)
2. Assign each vector to its nearest centroid (first centroid wins ties)
3. Recompute each centroid as the dimension-wise mean of its members;
   a cluster left empty keeps its previous centroid
4. Repeat until no assignment changes or the iteration cap is reached

Used for offline population analysis, never for per-request matching.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, List, Optional, Sequence

import joblib
import numpy as np

from ..exceptions import ConfigurationError
from ..profiles.schema import DIMENSIONS, FeatureVector, ProfileRecord, vectors_to_matrix
from ..similarity.metrics import SimilarityEngine, SimilarityMetric

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 100


@dataclass
class ClusteringResult:
    """
    Outcome of a segmentation run.

    Attributes:
        assignments: Cluster index per input profile, in input order
        centroids: One centroid vector per cluster
        clusters: Profiles grouped by cluster index
        iterations: Assignment passes performed
        converged: True if assignments stopped changing before the cap
    """
    assignments: List[int]
    centroids: List[FeatureVector]
    clusters: List[List[ProfileRecord]] = field(default_factory=list)
    iterations: int = 0
    converged: bool = False

    @property
    def n_clusters(self) -> int:
        return len(self.centroids)

    def cluster_sizes(self) -> List[int]:
        return [len(members) for members in self.clusters]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-friendly dictionary (profiles by id)."""
        return {
            "assignments": [int(a) for a in self.assignments],
            "centroids": [
                {dim: float(getattr(c, dim)) for dim in DIMENSIONS} for c in self.centroids
            ],
            "cluster_sizes": self.cluster_sizes(),
            "cluster_members": [[p.id for p in members] for members in self.clusters],
            "iterations": self.iterations,
            "converged": self.converged,
        }

    def save(self, filepath: str) -> None:
        """Persist the result with joblib."""
        Path(filepath).parent.mkdir(parents=True, exist_ok=True)
        joblib.dump(self, filepath)
        logger.info(f"Saved clustering result to {filepath}")

    @classmethod
    def load(cls, filepath: str) -> "ClusteringResult":
        """Load a result saved with save()."""
        result = joblib.load(filepath)
        if not isinstance(result, cls):
            raise ValueError(f"{filepath} does not contain a ClusteringResult")
        return result


class PopulationSegmenter:
    """
    K-means style segmentation over weighted euclidean distance.

    Attributes:
        engine: Similarity engine providing the distance
        max_iterations: Cap on assignment passes
    """

    def __init__(self, engine: SimilarityEngine, max_iterations: int = DEFAULT_MAX_ITERATIONS):
        if max_iterations < 1:
            raise ConfigurationError(f"max_iterations must be >= 1, got {max_iterations}")
        self.engine = engine
        self.max_iterations = max_iterations

    @classmethod
    def from_config(cls, config: Dict[str, Any], engine: Optional[SimilarityEngine] = None) -> "PopulationSegmenter":
        """Create from main config dictionary."""
        segmentation_config = config.get("segmentation", {})
        return cls(
            engine=engine or SimilarityEngine.from_config(config),
            max_iterations=segmentation_config.get("max_iterations", DEFAULT_MAX_ITERATIONS),
        )

    def cluster(
        self,
        pool: Sequence[ProfileRecord],
        k: int,
        random_seed: Optional[int] = None
    ) -> Optional[ClusteringResult]:
        """
        Partition a population into k segments.

        Args:
            pool: Profiles to segment
            k: Number of clusters
            random_seed: Seed for centroid initialisation

        Returns:
            ClusteringResult, or None if the pool has fewer than k profiles

        Raises:
            ValueError: If k < 1
        """
        if k < 1:
            raise ValueError(f"k must be >= 1, got {k}")
        if len(pool) < k:
            logger.warning(f"Cannot form {k} clusters from {len(pool)} profiles")
            return None

        data = vectors_to_matrix([p.feature_vector for p in pool])
        rng = np.random.RandomState(random_seed)
        centroids = self._initialize_centroids(data, k, rng)

        assignments = np.full(len(pool), -1, dtype=int)
        converged = False
        iterations = 0

        while iterations < self.max_iterations:
            new_assignments = self._assign(data, centroids)
            iterations += 1
            if np.array_equal(new_assignments, assignments):
                converged = True
                break
            assignments = new_assignments
            centroids = self._update_centroids(data, assignments, centroids)

        if not converged:
            logger.warning(f"Clustering stopped at iteration cap ({self.max_iterations}) without converging")

        clusters: List[List[ProfileRecord]] = [[] for _ in range(k)]
        for profile, cluster_index in zip(pool, assignments):
            clusters[cluster_index].append(profile)

        result = ClusteringResult(
            assignments=[int(a) for a in assignments],
            centroids=[FeatureVector.from_array(row) for row in centroids],
            clusters=clusters,
            iterations=iterations,
            converged=converged,
        )
        logger.info(f"Segmented {len(pool)} profiles into {k} clusters "
                    f"in {iterations} iterations (sizes: {result.cluster_sizes()})")
        return result

    def _initialize_centroids(self, data: np.ndarray, k: int, rng: np.random.RandomState) -> np.ndarray:
        """Sample k centroids uniformly within the per-dimension data range."""
        low = data.min(axis=0)
        high = data.max(axis=0)
        return low + rng.random_sample((k, data.shape[1])) * (high - low)

    def _assign(self, data: np.ndarray, centroids: np.ndarray) -> np.ndarray:
        """Index of the nearest centroid for every row."""
        # (k x N) similarities; argmax of similarity == argmin of distance
        sims = np.vstack([
            self.engine.similarity_to_many(centroid, data, SimilarityMetric.WEIGHTED_EUCLIDEAN)
            for centroid in centroids
        ])
        return np.argmax(sims, axis=0)

    def _update_centroids(self, data: np.ndarray, assignments: np.ndarray, previous: np.ndarray) -> np.ndarray:
        """Dimension-wise mean per cluster; empty clusters keep their centroid."""
        centroids = previous.copy()
        for cluster_index in range(len(previous)):
            members = data[assignments == cluster_index]
            if len(members) > 0:
                centroids[cluster_index] = members.mean(axis=0)
        return centroids


def cluster(
    pool: Sequence[ProfileRecord],
    k: int,
    engine: Optional[SimilarityEngine] = None,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
    random_seed: Optional[int] = None
) -> Optional[ClusteringResult]:
    """
    Convenience wrapper around PopulationSegmenter.cluster().

    Args:
        pool: Profiles to segment
        k: Number of clusters
        engine: Similarity engine (default weights when None)
        max_iterations: Cap on assignment passes
        random_seed: Seed for centroid initialisation

    Returns:
        ClusteringResult, or None if the pool has fewer than k profiles
    """
    segmenter = PopulationSegmenter(engine or SimilarityEngine(), max_iterations=max_iterations)
    return segmenter.cluster(pool, k, random_seed=random_seed)
