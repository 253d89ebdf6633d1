"""
Session-level matching tests.

Covers:
1. Search with the session's similarity version and metric tracking
2. The session's own profiles never come back as neighbours
3. Version configs carrying their own dimension weights
4. Empty pool when profile storage fails
5. Sticky version across repeated searches
6. match_quality counts exact archetype matches, not compatible ones
"""

import pytest

from profile_matching.exceptions import StorageError
from profile_matching.experiments import AlgorithmRole, InMemoryStore
from profile_matching.profiles import FeatureVector
from profile_matching.service import MatchingService

from conftest import TRADITIONAL_SERIOUS, make_profile


class ProfileOutageStore(InMemoryStore):
    """In-memory store whose profile reads fail."""

    def list_profiles(self, min_timestamp=None, limit=None):
        raise StorageError("profiles unavailable")


@pytest.fixture
def service(store, search, manager, three_clusters):
    store.add_profiles(three_clusters)
    return MatchingService(store, search, manager)


class TestFindSimilarProfiles:

    def test_results_and_tracked_metrics(self, service, store, similarity_versions):
        result = service.find_similar_profiles("new-session", TRADITIONAL_SERIOUS)

        assert result.resolution.version == "v1.0.0"
        assert result.options.diversity_factor == 0.1
        assert len(result.outcome.results) == 10
        assert result.match_quality == pytest.approx(1.0)

        samples = store.list_performance_metrics(role=AlgorithmRole.SIMILARITY)
        values = {s.metric_name: s.value for s in samples}
        assert values == {"profiles_found": 10.0, "match_quality": 1.0, "archetype_accuracy": 1.0}
        assert all(s.version == "v1.0.0" for s in samples)

    def test_fallback_version_without_registry_entries(self, service, store):
        result = service.find_similar_profiles("new-session", TRADITIONAL_SERIOUS)
        assert result.resolution.source == "fallback"
        samples = store.list_performance_metrics(role=AlgorithmRole.SIMILARITY)
        assert {s.version for s in samples} == {"fallback"}

    def test_own_profile_excluded(self, service, store):
        store.add_profile(make_profile("me", TRADITIONAL_SERIOUS))
        result = service.find_similar_profiles("session_me", TRADITIONAL_SERIOUS)
        assert "me" not in {r.profile.id for r in result.outcome.results}

    def test_version_options_applied(self, service, manager, similarity_versions):
        manager.create_ab_test("similarity", *similarity_versions, traffic_split=1.0)
        result = service.find_similar_profiles("s1", TRADITIONAL_SERIOUS)
        assert result.resolution.version == "v2.0.0"
        assert result.options.diversity_factor == 0.3

    def test_version_is_sticky_across_searches(self, service, manager, similarity_versions):
        manager.create_ab_test("similarity", *similarity_versions)
        versions = {service.find_similar_profiles("s1", TRADITIONAL_SERIOUS).resolution.version for _ in range(5)}
        assert len(versions) == 1

    def test_version_dimension_weights(self, service, registry):
        weights = {"skill_level": 10.0}
        registry.create_version("similarity", {"dimension_weights": weights}, version="skill-only")
        registry.activate("similarity", "skill-only")

        result = service.find_similar_profiles("s1", TRADITIONAL_SERIOUS)
        assert result.resolution.version == "skill-only"
        assert service._search_for(result.resolution) is not service.search
        assert len(result.outcome.results) > 0

    def test_match_quality_counts_exact_archetypes_only(self, store, search, manager):
        # competitive_solo neighbours are compatible with, not equal to, the target's archetype
        store.add_profiles([
            make_profile(f"solo_{i}", FeatureVector(
                skill_level=8, socialness=1, traditionalism=6, luxury_level=6,
                competitiveness=9 + i % 2, age_generation=5, amenity_importance=5, pace=9,
            ))
            for i in range(3)
        ])
        service = MatchingService(store, search, manager)

        result = service.find_similar_profiles("new-session", TRADITIONAL_SERIOUS)

        assert len(result.outcome.results) == 3
        assert {r.matched_archetype for r in result.outcome.results} == {"competitive_solo"}
        assert all(r.archetype_bonus > 0 for r in result.outcome.results)
        assert result.match_quality == 0.0

        samples = store.list_performance_metrics(role=AlgorithmRole.SIMILARITY)
        values = {s.metric_name: s.value for s in samples}
        assert values["match_quality"] == 0.0
        assert values["archetype_accuracy"] == 0.0

    def test_to_dict(self, service, similarity_versions):
        payload = service.find_similar_profiles("s1", TRADITIONAL_SERIOUS).to_dict()
        assert payload["algorithm"]["version"] == "v1.0.0"
        assert payload["threshold_used"] == pytest.approx(0.7)
        assert len(payload["results"]) == 10


class TestDegradation:

    def test_profile_outage_gives_empty_results(self, search, registry, manager):
        store = ProfileOutageStore()
        service = MatchingService(store, search, manager)
        assert service.load_pool() == []

        result = service.find_similar_profiles("s1", TRADITIONAL_SERIOUS)
        assert result.outcome.results == []
        assert result.match_quality == 0.0


class TestInsights:

    def test_similarity_insights(self, service, similarity_versions):
        insights = service.similarity_insights("s1", TRADITIONAL_SERIOUS)
        assert insights.similar_users == 10
        assert insights.archetype.primary == "traditional_serious"


class TestFromConfig:

    def test_from_config(self, config, three_clusters):
        store = InMemoryStore(three_clusters)
        service = MatchingService.from_config(config, store, random_seed=1)
        result = service.find_similar_profiles("s1", TRADITIONAL_SERIOUS)
        assert result.resolution.source == "fallback"
        assert all(r.profile.id.startswith("trad_") for r in result.outcome.results)
