"""
Shared fixtures for the profile matching test suite.

Provides the packaged configuration, engine components built from it, a
synthetic population, and an experiment stack (in-memory store, registry,
manager) driven by a controllable clock.
"""

from datetime import datetime, timedelta, timezone

import numpy as np
import pytest

from profile_matching.archetypes import ArchetypeClassifier
from profile_matching.configs import default_config
from profile_matching.data_loading import create_synthetic_profiles
from profile_matching.experiments import (
    AlgorithmRegistry,
    ExperimentManager,
    InMemoryStore,
    RegistryConfig,
)
from profile_matching.profiles import FeatureVector, ProfileRecord
from profile_matching.search import NeighborSearch
from profile_matching.similarity import SimilarityEngine


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Clock whose time only moves when told to."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


def make_vector(**values) -> FeatureVector:
    """Vector with every dimension at 5 unless overridden."""
    base = {
        "skill_level": 5, "socialness": 5, "traditionalism": 5, "luxury_level": 5,
        "competitiveness": 5, "age_generation": 5, "amenity_importance": 5, "pace": 5,
    }
    base.update(values)
    return FeatureVector(**base)


def make_profile(profile_id: str, vector: FeatureVector, recorded_at=None, archetype=None) -> ProfileRecord:
    return ProfileRecord(
        id=profile_id,
        session_id=f"session_{profile_id}",
        feature_vector=vector,
        recorded_at=recorded_at,
        derived_archetype=archetype,
    )


def make_cluster(prefix: str, center: FeatureVector, n: int, rng: np.random.RandomState, spread: float = 0.5):
    """Profiles scattered tightly around a center."""
    profiles = []
    for i in range(n):
        values = np.clip(center.to_array() + rng.uniform(-spread, spread, size=8), 0, 10)
        profiles.append(make_profile(f"{prefix}_{i}", FeatureVector.from_array(values)))
    return profiles


TRADITIONAL_SERIOUS = FeatureVector(
    skill_level=8, socialness=4, traditionalism=9, luxury_level=6,
    competitiveness=8, age_generation=5, amenity_importance=5, pace=8,
)
SOCIAL_BEGINNER = FeatureVector(
    skill_level=2, socialness=8, traditionalism=3, luxury_level=3,
    competitiveness=2, age_generation=5, amenity_importance=6, pace=3,
)
LUXURY_SOCIAL = FeatureVector(
    skill_level=5, socialness=9, traditionalism=4, luxury_level=9,
    competitiveness=4, age_generation=5, amenity_importance=9, pace=5,
)


@pytest.fixture
def config():
    return default_config()


@pytest.fixture
def engine(config):
    return SimilarityEngine.from_config(config)


@pytest.fixture
def classifier(config):
    return ArchetypeClassifier.from_config(config)


@pytest.fixture
def search(config):
    return NeighborSearch.from_config(config)


@pytest.fixture
def synthetic_pool():
    return create_synthetic_profiles(seed=42, now=NOW)


@pytest.fixture
def three_clusters():
    """Three tight clusters of ten profiles each."""
    rng = np.random.RandomState(0)
    return (
        make_cluster("trad", TRADITIONAL_SERIOUS, 10, rng)
        + make_cluster("social", SOCIAL_BEGINNER, 10, rng)
        + make_cluster("lux", LUXURY_SOCIAL, 10, rng)
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def registry(store, clock):
    return AlgorithmRegistry(store, RegistryConfig(store_timeout_seconds=1.0), clock=clock)


@pytest.fixture
def manager(store, registry, clock):
    return ExperimentManager(
        store,
        registry,
        random_state=np.random.RandomState(123),
        clock=clock,
    )


@pytest.fixture
def similarity_versions(registry, clock):
    """Two similarity versions, v1.0.0 active."""
    registry.create_version("similarity", {"diversity_factor": 0.1}, version="v1.0.0")
    clock.advance(minutes=1)
    registry.create_version("similarity", {"diversity_factor": 0.3}, version="v2.0.0")
    registry.activate("similarity", "v1.0.0")
    return "v1.0.0", "v2.0.0"
