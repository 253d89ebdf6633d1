"""
Population segmentation tests.

Covers:
1. Pool smaller than k returns None; k < 1 is rejected
2. Every profile is assigned exactly once
3. Same seed, same segmentation
4. Well-separated clusters are recovered
5. k = 1 converges to the population mean
6. joblib persistence of results
"""

import numpy as np
import pytest

from profile_matching.profiles import vectors_to_matrix
from profile_matching.segmentation import ClusteringResult, PopulationSegmenter, cluster


class TestSegmentation:

    def test_pool_smaller_than_k(self, engine, three_clusters):
        assert cluster(three_clusters[:2], 3, engine=engine) is None

    def test_invalid_k(self, engine, three_clusters):
        with pytest.raises(ValueError):
            cluster(three_clusters, 0, engine=engine)

    def test_every_profile_assigned_once(self, engine, synthetic_pool):
        result = cluster(synthetic_pool, 5, engine=engine, random_seed=1)
        assert len(result.assignments) == len(synthetic_pool)
        assert sum(result.cluster_sizes()) == len(synthetic_pool)
        assert result.n_clusters == 5
        assert all(0 <= a < 5 for a in result.assignments)

    def test_deterministic_for_seed(self, engine, synthetic_pool):
        first = cluster(synthetic_pool, 4, engine=engine, random_seed=7)
        second = cluster(synthetic_pool, 4, engine=engine, random_seed=7)
        assert first.assignments == second.assignments
        assert first.iterations == second.iterations

    def test_recovers_separated_clusters(self, engine, three_clusters):
        def is_perfect(result):
            groups = {}
            for profile, label in zip(three_clusters, result.assignments):
                groups.setdefault(profile.id.split("_")[0], set()).add(label)
            labels = [next(iter(g)) for g in groups.values() if len(g) == 1]
            return len(labels) == 3 and len(set(labels)) == 3

        results = [cluster(three_clusters, 3, engine=engine, random_seed=seed) for seed in range(10)]
        assert any(is_perfect(r) for r in results)
        assert all(r.converged for r in results)

    def test_single_cluster_is_population_mean(self, engine, synthetic_pool):
        result = cluster(synthetic_pool, 1, engine=engine, random_seed=3)
        expected = vectors_to_matrix([p.feature_vector for p in synthetic_pool]).mean(axis=0)
        assert result.converged
        assert np.allclose(result.centroids[0].to_array(), expected)

    def test_iteration_cap(self, engine, synthetic_pool):
        segmenter = PopulationSegmenter(engine, max_iterations=1)
        result = segmenter.cluster(synthetic_pool, 5, random_seed=2)
        assert result.iterations == 1
        assert not result.converged

    def test_from_config(self, config):
        segmenter = PopulationSegmenter.from_config(config)
        assert segmenter.max_iterations == config["segmentation"]["max_iterations"]


class TestPersistence:

    def test_save_and_load(self, engine, synthetic_pool, tmp_path):
        result = cluster(synthetic_pool, 3, engine=engine, random_seed=5)
        path = tmp_path / "segments" / "result.joblib"
        result.save(str(path))

        loaded = ClusteringResult.load(str(path))
        assert loaded.assignments == result.assignments
        assert loaded.to_dict()["cluster_sizes"] == result.cluster_sizes()
