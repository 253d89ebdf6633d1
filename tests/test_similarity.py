"""
Similarity metric and explanation tests.

Covers:
1. Symmetry, self-similarity and [0, 1] bounds for every metric
2. Degenerate inputs: zero vectors (cosine), constant vectors (pearson)
3. Clamping of anti-correlated vectors
4. Exact weighted euclidean value for a single-dimension difference
5. Batch scoring agrees with pairwise scoring
6. Course/social variants ignore dimensions outside their weight table
7. Distance matrix shape and symmetry
8. Explanations: strongest matches, biggest differences, percentiles
"""

import math

import numpy as np
import pytest

from profile_matching.exceptions import ConfigurationError
from profile_matching.profiles import FeatureVector
from profile_matching.similarity import (
    SimilarityEngine,
    SimilarityMetric,
    average_scores,
    explain_similarity,
    key_matching_dimensions,
    user_percentiles,
)

from conftest import make_vector

ALL_METRICS = [m.value for m in SimilarityMetric]


class TestMetricProperties:

    @pytest.mark.parametrize("metric", ALL_METRICS)
    def test_symmetric(self, engine, synthetic_pool, metric):
        a = synthetic_pool[0].feature_vector
        b = synthetic_pool[-1].feature_vector
        assert engine.similarity(a, b, metric) == pytest.approx(engine.similarity(b, a, metric))

    @pytest.mark.parametrize("metric", ALL_METRICS)
    def test_self_similarity_is_one(self, engine, metric):
        v = FeatureVector(skill_level=8, socialness=2, traditionalism=6, luxury_level=4,
                          competitiveness=9, age_generation=3, amenity_importance=5, pace=7)
        assert engine.similarity(v, v, metric) == pytest.approx(1.0)

    @pytest.mark.parametrize("metric", ALL_METRICS)
    def test_bounded(self, engine, synthetic_pool, metric):
        target = synthetic_pool[0].feature_vector
        sims = engine.similarity_to_many(target, [p.feature_vector for p in synthetic_pool], metric)
        assert np.all(sims >= 0.0)
        assert np.all(sims <= 1.0)

    @pytest.mark.parametrize("metric", ALL_METRICS)
    def test_batch_matches_pairwise(self, engine, synthetic_pool, metric):
        target = synthetic_pool[3].feature_vector
        others = [p.feature_vector for p in synthetic_pool[:8]]
        batch = engine.similarity_to_many(target, others, metric)
        pairwise = [engine.similarity(target, o, metric) for o in others]
        assert np.allclose(batch, pairwise)

    def test_unknown_metric_raises(self, engine):
        with pytest.raises(ConfigurationError):
            engine.similarity(make_vector(), make_vector(), "jaccard")

    def test_empty_batch(self, engine):
        assert engine.similarity_to_many(make_vector(), []).shape == (0,)


class TestDegenerateInputs:

    def test_cosine_zero_vector_is_zero(self, engine):
        assert engine.similarity(FeatureVector(), make_vector(), "cosine") == 0.0

    def test_pearson_constant_vector_is_zero(self, engine):
        constant = make_vector()
        varied = FeatureVector.from_array([1, 2, 3, 4, 5, 6, 7, 8])
        assert engine.similarity(constant, varied, "pearson") == 0.0

    def test_pearson_anti_correlation_clamps_to_zero(self, engine):
        rising = FeatureVector.from_array([1, 2, 3, 4, 5, 6, 7, 8])
        falling = FeatureVector.from_array([8, 7, 6, 5, 4, 3, 2, 1])
        assert engine.similarity(rising, falling, "pearson") == 0.0

    def test_opposite_extremes_are_dissimilar(self, engine):
        low = FeatureVector.from_array([0] * 8)
        high = FeatureVector.from_array([10] * 8)
        assert engine.similarity(low, high, "weighted_euclidean") == 0.0
        assert engine.similarity(low, high, "manhattan") == 0.0


class TestWeightedEuclidean:

    def test_single_dimension_difference(self, engine):
        a = make_vector()
        b = make_vector(skill_level=7)
        expected = 1 - math.sqrt((0.2 ** 2) * 1.5 / 9.5)
        assert engine.similarity(a, b) == pytest.approx(expected)

    def test_heavier_dimension_costs_more(self, engine):
        base = make_vector()
        skill_gap = make_vector(skill_level=8)
        age_gap = make_vector(age_generation=8)
        assert engine.similarity(base, skill_gap) < engine.similarity(base, age_gap)

    def test_invalid_weight_table(self):
        with pytest.raises(ConfigurationError):
            SimilarityEngine(dimension_weights={"handicap": 1.0})
        with pytest.raises(ConfigurationError):
            SimilarityEngine(dimension_weights={"skill_level": 0})

    def test_course_similarity_ignores_socialness(self, engine):
        a = make_vector(socialness=0)
        b = make_vector(socialness=10)
        assert engine.course_similarity(a, b) == pytest.approx(1.0)
        assert engine.similarity(a, b) < 1.0

    def test_social_similarity_ignores_luxury(self, engine):
        a = make_vector(luxury_level=0)
        b = make_vector(luxury_level=10)
        assert engine.social_similarity(a, b) == pytest.approx(1.0)

    def test_distance_matrix(self, engine, synthetic_pool):
        vectors = [p.feature_vector for p in synthetic_pool[:6]]
        distances = engine.distance_matrix(vectors)
        assert distances.shape == (6, 6)
        assert np.allclose(distances, distances.T)
        assert np.allclose(np.diag(distances), 0.0)
        assert distances[0, 1] == pytest.approx(1 - engine.similarity(vectors[0], vectors[1]))


class TestExplanations:

    def test_explain_similarity(self, engine):
        a = make_vector(skill_level=0)
        b = make_vector(skill_level=10)
        explanation = explain_similarity(engine, a, b)

        assert explanation.biggest_differences == ["skill_level"]
        assert "skill_level" not in explanation.strongest_matches
        assert len(explanation.strongest_matches) == 7
        assert explanation.overall_similarity == pytest.approx(engine.similarity(a, b))
        assert len(explanation.to_dict()["dimensions"]) == 8

    def test_key_matching_dimensions(self):
        a = make_vector(skill_level=0, pace=3)
        b = make_vector(skill_level=10)
        dims = key_matching_dimensions(a, b)
        assert "skill_level" not in dims
        assert "pace" in dims
        assert len(dims) == 7

    def test_user_percentiles_count_strictly_below(self):
        population = [make_vector(skill_level=v) for v in (1, 2, 3, 4)]
        percentiles = user_percentiles(make_vector(skill_level=3), population)
        assert percentiles["skill_level"] == 50
        assert percentiles["pace"] == 0

    def test_user_percentiles_empty_population(self):
        assert user_percentiles(make_vector(), []) == {}

    def test_average_scores(self):
        averages = average_scores([make_vector(skill_level=2), make_vector(skill_level=4)])
        assert averages["skill_level"] == pytest.approx(3.0)
        assert averages["pace"] == pytest.approx(5.0)
        assert average_scores([]) == {}
