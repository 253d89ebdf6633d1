"""
Similarity metrics over feature vectors.

Every metric maps a pair of feature vectors to a similarity in [0, 1],
higher meaning more alike. All functions are pure and total: missing
dimensions are already 0.0 in a FeatureVector, so no metric can fail on
sparse input.

Metrics:
- weighted_euclidean (default): per-dimension difference divided by the
  scale (10), weighted by the dimension importance table, root of the
  weighted mean square, similarity = max(0, 1 - distance)
- cosine: dot / (|a| * |b|), 0 if either magnitude is 0
- manhattan: 1 - mean(|diff| / 10)
- pearson: correlation across the dimension list, 0 if either variance is 0

Clamping: cosine and pearson can go negative for opposed vectors. Both are
clamped at 0, so an anti-correlated profile is as dissimilar as an
uncorrelated one.

The importance table is domain configuration (skill and luxury drive course
choice most, age least), not a learned quantity.
"""

import logging
from enum import Enum
from typing import Dict, Any, Optional, Sequence, Union

import numpy as np
from sklearn.metrics.pairwise import cosine_similarity

from ..exceptions import ConfigurationError
from ..profiles.schema import DIMENSIONS, SCALE_MAX, FeatureVector, vectors_to_matrix

logger = logging.getLogger(__name__)

_VARIANCE_EPS = 1e-12


class SimilarityMetric(Enum):
    """Supported similarity metrics."""
    WEIGHTED_EUCLIDEAN = "weighted_euclidean"
    COSINE = "cosine"
    MANHATTAN = "manhattan"
    PEARSON = "pearson"

    @classmethod
    def parse(cls, value: Union[str, "SimilarityMetric"]) -> "SimilarityMetric":
        """
        Resolve a metric name.

        Raises:
            ConfigurationError: If the name is not a known metric
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            known = [m.value for m in cls]
            raise ConfigurationError(f"Unknown similarity metric: {value!r} (known: {known})")


DEFAULT_DIMENSION_WEIGHTS: Dict[str, float] = {
    "skill_level": 1.5,
    "socialness": 1.2,
    "traditionalism": 1.3,
    "luxury_level": 1.4,
    "competitiveness": 1.1,
    "age_generation": 0.8,
    "amenity_importance": 1.3,
    "pace": 0.9,
}

# Dimensions that matter for course selection
COURSE_WEIGHTS: Dict[str, float] = {
    "skill_level": 2.0,
    "traditionalism": 1.8,
    "luxury_level": 1.6,
    "competitiveness": 1.2,
    "amenity_importance": 1.4,
}

# Dimensions that matter for social / group recommendations
SOCIAL_WEIGHTS: Dict[str, float] = {
    "socialness": 2.0,
    "competitiveness": 1.5,
    "pace": 1.3,
    "age_generation": 1.1,
    "traditionalism": 0.8,
}

VectorsLike = Union[np.ndarray, Sequence[FeatureVector]]


def weights_to_array(weights: Dict[str, float], default: float = 1.0) -> np.ndarray:
    """
    Convert a weight table to an array in dimension order.

    Dimensions absent from the table get the default weight.

    Raises:
        ConfigurationError: If the table names an unknown dimension or a
            non-positive weight
    """
    unknown = set(weights) - set(DIMENSIONS)
    if unknown:
        raise ConfigurationError(f"Unknown dimensions in weight table: {sorted(unknown)}")
    array = np.array([float(weights.get(dim, default)) for dim in DIMENSIONS])
    if np.any(array <= 0):
        raise ConfigurationError(f"Dimension weights must be positive: {weights}")
    return array


def _masked_weights(weights: Dict[str, float]) -> np.ndarray:
    """Weight array where dimensions absent from the table count zero."""
    unknown = set(weights) - set(DIMENSIONS)
    if unknown:
        raise ConfigurationError(f"Unknown dimensions in weight table: {sorted(unknown)}")
    return np.array([float(weights.get(dim, 0.0)) for dim in DIMENSIONS])


def weighted_euclidean_many(
    target: np.ndarray,
    matrix: np.ndarray,
    weights: np.ndarray,
    scale: float = SCALE_MAX
) -> np.ndarray:
    """
    Weighted euclidean similarity of one row against each row of a matrix.

    Args:
        target: Target values (D,)
        matrix: Candidate values (N x D)
        weights: Per-dimension weights (D,); zero weights drop a dimension
        scale: Dimension range used to normalize differences

    Returns:
        Similarities (N,) in [0, 1]
    """
    diff = (matrix - target) / scale
    weighted = (diff * diff) @ weights / weights.sum()
    distance = np.sqrt(weighted)
    return np.clip(1.0 - distance, 0.0, 1.0)


def cosine_many(target: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """
    Cosine similarity of one row against each row of a matrix.

    Zero-magnitude rows yield 0. Negative values clamp to 0.

    Args:
        target: Target values (D,)
        matrix: Candidate values (N x D)

    Returns:
        Similarities (N,) in [0, 1]
    """
    sims = cosine_similarity(matrix, target.reshape(1, -1)).ravel()
    return np.clip(sims, 0.0, 1.0)


def manhattan_many(target: np.ndarray, matrix: np.ndarray, scale: float = SCALE_MAX) -> np.ndarray:
    """
    Manhattan similarity: 1 - mean normalized absolute difference.

    Args:
        target: Target values (D,)
        matrix: Candidate values (N x D)
        scale: Dimension range used to normalize differences

    Returns:
        Similarities (N,) in [0, 1]
    """
    mean_diff = np.mean(np.abs(matrix - target) / scale, axis=1)
    return np.clip(1.0 - mean_diff, 0.0, 1.0)


def pearson_many(target: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """
    Pearson correlation of one row against each row of a matrix.

    The dimension values of each vector are treated as a sample. Rows
    with zero variance (or a constant target) yield 0; negative
    correlations clamp to 0.

    Args:
        target: Target values (D,)
        matrix: Candidate values (N x D)

    Returns:
        Similarities (N,) in [0, 1]
    """
    t = target - target.mean()
    m = matrix - matrix.mean(axis=1, keepdims=True)
    var_t = float(np.sum(t * t))
    var_m = np.sum(m * m, axis=1)

    result = np.zeros(len(matrix))
    if var_t <= _VARIANCE_EPS:
        return result

    valid = var_m > _VARIANCE_EPS
    numerator = m[valid] @ t
    result[valid] = numerator / np.sqrt(var_t * var_m[valid])
    return np.clip(result, 0.0, 1.0)


class SimilarityEngine:
    """
    Similarity computation over feature vectors.

    Holds the dimension importance table and the default metric. All
    methods are pure; one engine can serve concurrent searches.

    Attributes:
        dimension_weights: Importance per dimension (weighted euclidean only)
        default_metric: Metric used when callers don't name one
        scale_max: Dimension range used to normalize differences
    """

    def __init__(
        self,
        dimension_weights: Optional[Dict[str, float]] = None,
        default_metric: Union[str, SimilarityMetric] = SimilarityMetric.WEIGHTED_EUCLIDEAN,
        scale_max: float = SCALE_MAX
    ):
        """
        Initialize the engine.

        Args:
            dimension_weights: Importance table; defaults to DEFAULT_DIMENSION_WEIGHTS
            default_metric: Metric used when none is passed
            scale_max: Dimension range (difference normalizer)

        Raises:
            ConfigurationError: On an unknown metric or malformed weight table
        """
        self.dimension_weights = dict(dimension_weights or DEFAULT_DIMENSION_WEIGHTS)
        self._weights = weights_to_array(self.dimension_weights)
        self.default_metric = SimilarityMetric.parse(default_metric)
        if scale_max <= 0:
            raise ConfigurationError(f"scale_max must be positive, got {scale_max}")
        self.scale_max = float(scale_max)

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "SimilarityEngine":
        """Create from main config dictionary."""
        similarity_config = config.get("similarity", {})
        return cls(
            dimension_weights=similarity_config.get("dimension_weights"),
            default_metric=similarity_config.get("default_metric", "weighted_euclidean"),
            scale_max=similarity_config.get("scale_max", SCALE_MAX),
        )

    def similarity(
        self,
        v1: FeatureVector,
        v2: FeatureVector,
        metric: Optional[Union[str, SimilarityMetric]] = None
    ) -> float:
        """
        Compute the similarity between two feature vectors.

        Args:
            v1: First vector
            v2: Second vector
            metric: Metric name; defaults to the engine's default metric

        Returns:
            Similarity in [0, 1]
        """
        return float(self.similarity_to_many(v1, v2.to_array().reshape(1, -1), metric)[0])

    def similarity_to_many(
        self,
        target: FeatureVector,
        others: VectorsLike,
        metric: Optional[Union[str, SimilarityMetric]] = None
    ) -> np.ndarray:
        """
        Compute the similarity of a target against many vectors at once.

        Produces the same numbers as calling similarity() pairwise.

        Args:
            target: Target vector
            others: Feature vectors or an (N x D) matrix in dimension order
            metric: Metric name; defaults to the engine's default metric

        Returns:
            Similarities (N,) in [0, 1]
        """
        metric = SimilarityMetric.parse(metric) if metric is not None else self.default_metric
        target_row = target.to_array() if isinstance(target, FeatureVector) else np.asarray(target, dtype=float)
        matrix = others if isinstance(others, np.ndarray) else vectors_to_matrix(others)

        if len(matrix) == 0:
            return np.zeros(0)

        if metric is SimilarityMetric.WEIGHTED_EUCLIDEAN:
            return weighted_euclidean_many(target_row, matrix, self._weights, self.scale_max)
        if metric is SimilarityMetric.COSINE:
            return cosine_many(target_row, matrix)
        if metric is SimilarityMetric.MANHATTAN:
            return manhattan_many(target_row, matrix, self.scale_max)
        return pearson_many(target_row, matrix)

    def weighted_similarity(
        self,
        v1: FeatureVector,
        v2: FeatureVector,
        weights: Dict[str, float]
    ) -> float:
        """
        Weighted euclidean similarity restricted to the dimensions of a table.

        Dimensions missing from the table do not contribute.
        """
        masked = _masked_weights(weights)
        if masked.sum() <= 0:
            raise ConfigurationError("Weight table must contain at least one positive weight")
        sims = weighted_euclidean_many(v1.to_array(), v2.to_array().reshape(1, -1), masked, self.scale_max)
        return float(sims[0])

    def course_similarity(self, v1: FeatureVector, v2: FeatureVector) -> float:
        """Similarity focused on the dimensions that drive course selection."""
        return self.weighted_similarity(v1, v2, COURSE_WEIGHTS)

    def social_similarity(self, v1: FeatureVector, v2: FeatureVector) -> float:
        """Similarity focused on the dimensions that drive group play."""
        return self.weighted_similarity(v1, v2, SOCIAL_WEIGHTS)

    def distance_matrix(self, vectors: VectorsLike) -> np.ndarray:
        """
        Pairwise weighted euclidean distance (1 - similarity).

        Args:
            vectors: Feature vectors or an (N x D) matrix

        Returns:
            Symmetric (N x N) distance matrix with a zero diagonal
        """
        matrix = vectors if isinstance(vectors, np.ndarray) else vectors_to_matrix(vectors)
        n = len(matrix)
        distances = np.zeros((n, n))
        for i in range(n):
            distances[i] = 1.0 - weighted_euclidean_many(matrix[i], matrix, self._weights, self.scale_max)
        distances = (distances + distances.T) / 2
        np.fill_diagonal(distances, 0.0)
        return distances
