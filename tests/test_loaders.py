"""
Profile loading tests.

Covers:
1. CSV with camelCase headers, tags and optional columns
2. Missing, empty and dimensionless files
3. Synthetic population: size, determinism, noise bounds
4. Saving a population and reading it back
"""

import numpy as np
import pytest

from profile_matching.data_loading import (
    ARCHETYPE_SEEDS,
    create_synthetic_profiles,
    load_profiles_csv,
    save_profiles_csv,
)
from profile_matching.profiles import DIMENSIONS

from conftest import NOW


CSV_CONTENT = """id,session_id,recorded_at,skillLevel,socialness,luxuryLevel,ageGeneration,tags
p1,s1,2026-02-01T10:00:00Z,8,4,6,5,links;parkland
p2,s2,,2,9,3,4,
"""


class TestLoadProfilesCsv:

    def test_camel_case_headers(self, tmp_path):
        path = tmp_path / "profiles.csv"
        path.write_text(CSV_CONTENT)

        profiles = load_profiles_csv(str(path))

        assert [p.id for p in profiles] == ["p1", "p2"]
        first = profiles[0]
        assert first.session_id == "s1"
        assert first.feature_vector.skill_level == 8
        assert first.feature_vector.luxury_level == 6
        assert first.feature_vector.tags == ("links", "parkland")
        assert first.recorded_at.year == 2026
        assert first.recorded_at.tzinfo is not None

    def test_missing_values_and_columns(self, tmp_path):
        path = tmp_path / "profiles.csv"
        path.write_text(CSV_CONTENT)

        second = load_profiles_csv(str(path))[1]
        assert second.recorded_at is None
        assert second.feature_vector.tags == ()
        # pace is not in the file
        assert second.feature_vector.pace == 0

    def test_generated_ids(self, tmp_path):
        path = tmp_path / "profiles.csv"
        path.write_text("skill_level;pace\n3;4\n")

        profiles = load_profiles_csv(str(path), delimiter=";")
        assert profiles[0].id == "profile_0"
        assert profiles[0].session_id == "session_0"
        assert profiles[0].derived_archetype is None

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_profiles_csv(str(tmp_path / "nope.csv"))

    def test_header_only_file(self, tmp_path):
        path = tmp_path / "profiles.csv"
        path.write_text("skill_level,pace\n")
        with pytest.raises(ValueError):
            load_profiles_csv(str(path))

    def test_no_dimension_columns(self, tmp_path):
        path = tmp_path / "profiles.csv"
        path.write_text("id,handicap\np1,12\n")
        with pytest.raises(ValueError, match="No dimension columns"):
            load_profiles_csv(str(path))


class TestSyntheticProfiles:

    def test_default_population(self):
        profiles = create_synthetic_profiles(now=NOW)
        assert len(profiles) == 32
        assert len({p.id for p in profiles}) == 32
        assert all(p.derived_archetype for p in profiles)

    def test_profiles_per_seed(self):
        profiles = create_synthetic_profiles(profiles_per_seed=1, now=NOW)
        assert len(profiles) == len(ARCHETYPE_SEEDS)

    def test_deterministic(self):
        first = create_synthetic_profiles(seed=3, now=NOW)
        second = create_synthetic_profiles(seed=3, now=NOW)
        assert first == second

    def test_noise_bounds(self):
        profiles = create_synthetic_profiles(profiles_per_seed=4, noise=1, now=NOW)
        for profile in profiles:
            seed_index = int(profile.id.split("_")[2])
            seed = ARCHETYPE_SEEDS[seed_index]
            for dim in DIMENSIONS:
                value = getattr(profile.feature_vector, dim)
                assert 0 <= value <= 10
                if dim in seed:
                    assert abs(value - seed[dim]) <= 1

    def test_recorded_at_in_window(self):
        profiles = create_synthetic_profiles(now=NOW, max_age_days=10)
        ages = np.array([(NOW - p.recorded_at).total_seconds() for p in profiles])
        assert np.all(ages >= 0)
        assert np.all(ages <= 10 * 86400)


class TestSaveProfiles:

    def test_save_then_load(self, tmp_path):
        profiles = create_synthetic_profiles(profiles_per_seed=1, now=NOW)
        path = tmp_path / "out" / "profiles.csv"
        save_profiles_csv(profiles, str(path))

        loaded = load_profiles_csv(str(path))
        assert [p.id for p in loaded] == [p.id for p in profiles]
        assert loaded[0].feature_vector == profiles[0].feature_vector
        assert loaded[0].derived_archetype == profiles[0].derived_archetype
