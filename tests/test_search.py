"""
Neighbour search tests.

Covers:
1. Three-cluster population: a target inside one cluster finds only that
   cluster, at the first threshold
2. max_results truncation and min_results relaxation
3. Top-up when even the floor threshold yields too few candidates
4. Empty pool
5. Archetype bonus amounts and the final-similarity cap
6. Diversity re-ranking: best match first, near-duplicates pushed down
7. Options: relaxation ladder, validation, partial dictionaries
8. Similarity insights
9. Guarantees: diversity never displaces the best match, at least
   min(min_results, pool size) results, relaxation stops at the first
   threshold that yields enough candidates
"""

import pytest

from profile_matching.archetypes import ArchetypeMatch
from profile_matching.exceptions import ConfigurationError
from profile_matching.profiles import FeatureVector
from profile_matching.search import (
    SearchOptions,
    SimilarityResult,
    archetype_distribution,
    build_similarity_insights,
    match_quality,
    rerank_for_diversity,
)

from conftest import LUXURY_SOCIAL, SOCIAL_BEGINNER, TRADITIONAL_SERIOUS, make_profile, make_vector


def _result(profile_id, vector, final, archetype="casual_weekend"):
    return SimilarityResult(
        profile=make_profile(profile_id, vector),
        base_similarity=final,
        archetype_bonus=0.0,
        final_similarity=final,
        matched_archetype=archetype,
        archetype_confidence=1.0,
    )


class TestThreeClusters:

    def test_target_finds_its_own_cluster(self, search, three_clusters):
        outcome = search.search(TRADITIONAL_SERIOUS, three_clusters)

        assert len(outcome.results) == 10
        assert all(r.profile.id.startswith("trad_") for r in outcome.results)
        assert outcome.threshold_used == pytest.approx(0.7)
        assert not outcome.topped_up
        assert outcome.target_archetype.archetype == "traditional_serious"

    def test_max_results_truncates(self, search, three_clusters):
        results = search.find_neighbors(TRADITIONAL_SERIOUS, three_clusters, SearchOptions(max_results=4))
        assert len(results) == 4

    def test_results_respect_floor_unless_topped_up(self, search, three_clusters):
        options = SearchOptions(min_results=3)
        for target in (make_vector(), FeatureVector(), FeatureVector.from_array([10] * 8)):
            outcome = search.search(target, three_clusters, options)
            assert len(outcome.results) <= options.max_results
            if not outcome.topped_up:
                assert all(r.final_similarity >= options.floor_threshold for r in outcome.results)

    def test_best_match_is_first(self, search, three_clusters):
        outcome = search.search(TRADITIONAL_SERIOUS, three_clusters)
        best = max(r.final_similarity for r in outcome.results)
        assert outcome.results[0].final_similarity == best


class TestRelaxation:

    def test_threshold_relaxes_for_distant_pool(self, search, three_clusters):
        social_only = [p for p in three_clusters if p.id.startswith("social_")]
        outcome = search.search(TRADITIONAL_SERIOUS, social_only)

        assert outcome.threshold_used < 0.7
        assert len(outcome.results) >= 3

    def test_top_up_when_floor_is_too_strict(self, search):
        far = [make_profile(f"far_{i}", FeatureVector()) for i in range(2)]
        target = FeatureVector.from_array([10] * 8)

        outcome = search.search(target, far, SearchOptions(min_results=3))

        assert outcome.topped_up
        assert outcome.threshold_used == pytest.approx(0.3)
        assert len(outcome.results) == 2

    def test_empty_pool(self, search):
        outcome = search.search(TRADITIONAL_SERIOUS, [])
        assert outcome.results == []
        assert outcome.threshold_used is None
        assert outcome.pool_size == 0

    def test_diversity_off_keeps_similarity_order(self, search, three_clusters):
        options = SearchOptions(diversity_factor=0.0, use_archetype_bonus=False)
        results = search.find_neighbors(make_vector(), three_clusters, options)
        finals = [r.final_similarity for r in results]
        assert finals == sorted(finals, reverse=True)


class TestArchetypeBonus:

    def test_exact_match_bonus(self, search):
        bonus = search.archetype_bonus(
            ArchetypeMatch("traditional_serious", 1.0), ArchetypeMatch("traditional_serious", 0.8)
        )
        assert bonus == pytest.approx(0.15 * 0.8)

    def test_compatible_match_bonus(self, search):
        bonus = search.archetype_bonus(
            ArchetypeMatch("traditional_serious", 0.9), ArchetypeMatch("competitive_solo", 1.0)
        )
        assert bonus == pytest.approx(0.08 * 0.9)

    def test_unrelated_archetypes_get_no_bonus(self, search):
        bonus = search.archetype_bonus(
            ArchetypeMatch("luxury_social", 1.0), ArchetypeMatch("competitive_solo", 1.0)
        )
        assert bonus == 0.0

    def test_final_similarity_is_capped(self, search, three_clusters):
        scored = search.score_pool(TRADITIONAL_SERIOUS, three_clusters, SearchOptions())
        assert all(r.final_similarity <= 1.0 for r in scored)
        assert any(r.archetype_bonus > 0 for r in scored)

    def test_bonus_can_be_disabled(self, search, three_clusters):
        scored = search.score_pool(TRADITIONAL_SERIOUS, three_clusters, SearchOptions(use_archetype_bonus=False))
        assert all(r.archetype_bonus == 0.0 for r in scored)
        assert all(r.final_similarity == r.base_similarity for r in scored)


class TestDiversity:

    def test_best_match_always_first(self, engine):
        results = [
            _result("a", make_vector(), 0.95),
            _result("b", make_vector(skill_level=10, socialness=0), 0.94),
            _result("c", make_vector(pace=0), 0.93),
        ]
        reranked = rerank_for_diversity(results, 0.9, engine)
        assert reranked[0] is results[0]
        assert len(reranked) == 3

    def test_near_duplicate_is_pushed_down(self, engine):
        results = [
            _result("a", make_vector(), 0.95),
            _result("duplicate", make_vector(), 0.94),
            _result("different", make_vector(skill_level=10, socialness=0), 0.93),
        ]
        reranked = rerank_for_diversity(results, 0.5, engine, limit=2)
        assert [r.profile.id for r in reranked] == ["a", "different"]

    def test_zero_factor_keeps_order(self, engine):
        results = [_result(str(i), make_vector(pace=i), 0.9 - i / 100) for i in range(5)]
        assert rerank_for_diversity(results, 0.0, engine) == results

    def test_empty_input(self, engine):
        assert rerank_for_diversity([], 0.5, engine) == []


class TestSearchOptions:

    def test_default_ladder(self):
        assert SearchOptions().relaxation_ladder() == pytest.approx([0.7, 0.6, 0.5, 0.4, 0.3])

    def test_single_step_ladder(self):
        assert SearchOptions(start_threshold=0.5, floor_threshold=0.5).relaxation_ladder() == [0.5]

    def test_from_dict_ignores_unknown_keys(self):
        options = SearchOptions.from_dict({"diversity_factor": 0.3, "algorithm_name": "x"})
        assert options.diversity_factor == 0.3
        assert options.max_results == 10

    def test_from_dict_with_base(self):
        base = SearchOptions(max_results=5)
        options = SearchOptions.from_dict({"min_results": 2}, base=base)
        assert options.max_results == 5
        assert options.min_results == 2

    @pytest.mark.parametrize("kwargs", [
        {"metric": "jaccard"},
        {"max_results": 0},
        {"diversity_factor": 1.5},
        {"floor_threshold": 0.8},
        {"threshold_step": 0},
    ])
    def test_invalid_options(self, kwargs):
        with pytest.raises(ConfigurationError):
            SearchOptions(**kwargs).validate()

    def test_search_validates_options(self, search, three_clusters):
        with pytest.raises(ConfigurationError):
            search.search(TRADITIONAL_SERIOUS, three_clusters, SearchOptions(metric="jaccard"))


class TestInsights:

    def test_build_similarity_insights(self, search, three_clusters):
        insights = build_similarity_insights(search, TRADITIONAL_SERIOUS, three_clusters)

        assert insights.similar_users == 10
        assert len(insights.top_matches) == 5
        assert insights.archetype.primary == "traditional_serious"
        assert insights.archetype.match_quality == pytest.approx(1.0)
        assert set(insights.user_percentiles) == set(TRADITIONAL_SERIOUS.to_dict()) - {"tags"}
        assert "skill_level" in insights.top_matches[0]["key_dimensions"]

    def test_match_quality_counts_compatible(self, classifier):
        target = ArchetypeMatch("traditional_serious", 1.0)
        results = [
            _result("a", make_vector(), 0.9, archetype="traditional_serious"),
            _result("b", make_vector(), 0.9, archetype="competitive_solo"),
            _result("c", make_vector(), 0.9, archetype="luxury_social"),
            _result("d", make_vector(), 0.9, archetype="social_beginner"),
        ]
        assert match_quality(target, results) == pytest.approx(0.25)
        assert match_quality(target, results, classifier) == pytest.approx(0.5)
        assert match_quality(target, []) == 0.0

    def test_archetype_distribution(self):
        results = [
            _result("a", make_vector(), 0.9, archetype="luxury_social"),
            _result("b", make_vector(), 0.9, archetype="luxury_social"),
            _result("c", make_vector(), 0.9, archetype="casual_weekend"),
        ]
        assert archetype_distribution(results) == {"luxury_social": 2, "casual_weekend": 1}


def _separated_clusters():
    """Twelve profiles: four around each of three distinct centers."""
    clusters = {
        "skilled": (dict(skill_level=8, luxury_level=6), "skill_level", -1, "luxury_level", 1),
        "social": (dict(skill_level=2, socialness=8), "skill_level", 1, "socialness", -1),
        "luxury": (dict(skill_level=5, luxury_level=9, socialness=9), "skill_level", -1, "luxury_level", 1),
    }
    profiles = []
    for prefix, (center, first, first_step, second, second_step) in clusters.items():
        for i in range(4):
            values = dict(center)
            if i & 1:
                values[first] += first_step
            if i & 2:
                values[second] += second_step
            profiles.append(make_profile(f"{prefix}_{i}", FeatureVector(**values)))
    return profiles


class TestSearchGuarantees:

    TARGETS = [
        TRADITIONAL_SERIOUS,
        SOCIAL_BEGINNER,
        LUXURY_SOCIAL,
        FeatureVector(),
        FeatureVector.from_array([10] * 8),
    ]

    @pytest.mark.parametrize("pool_name", ["three_clusters", "synthetic_pool"])
    def test_diversity_keeps_the_best_match_first(self, search, pool_name, request):
        pool = request.getfixturevalue(pool_name)
        for target in self.TARGETS:
            plain = search.search(target, pool, SearchOptions(diversity_factor=0.0))
            diverse = search.search(target, pool, SearchOptions(diversity_factor=0.5))
            assert plain.results[0].profile.id == diverse.results[0].profile.id

    @pytest.mark.parametrize("pool_size", [0, 1, 2, 5, 12, 30])
    def test_at_least_min_results_when_pool_allows(self, search, three_clusters, pool_size):
        pool = three_clusters[:pool_size]
        options = SearchOptions(min_results=3)
        for target in self.TARGETS:
            outcome = search.search(target, pool, options)
            assert len(outcome.results) >= min(options.min_results, len(pool))

    def test_separated_clusters_stop_at_first_sufficient_threshold(self, search):
        target = FeatureVector(
            skill_level=8, socialness=4, traditionalism=9, luxury_level=6,
            competitiveness=8, age_generation=0, amenity_importance=5, pace=8,
        )
        outcome = search.search(target, _separated_clusters(), SearchOptions(min_results=3))

        assert outcome.target_archetype.archetype == "traditional_serious"
        assert len(outcome.results) >= 3
        assert all(r.profile.id.startswith("skilled_") for r in outcome.results)
        assert outcome.threshold_used == pytest.approx(0.5)
        assert not outcome.topped_up
