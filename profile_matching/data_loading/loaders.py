"""
Data loading functions for recorded profiles.

Profiles arrive either as a CSV export of completed quiz sessions or as a
synthetic demo population. No scoring is done here; rows already carry
normalized dimension values.

CSV layout:
- One row per completed session
- Dimension columns in snake_case (skill_level) or camelCase (skillLevel)
- Optional columns: id, session_id, recorded_at, derived_archetype, tags
  (tags are ";"-separated, e.g. "links;parkland")
"""

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Any, Optional

import numpy as np
import pandas as pd

from ..profiles.schema import DIMENSIONS, DIMENSION_ALIASES, FeatureVector, ProfileRecord

logger = logging.getLogger(__name__)

TAG_SEPARATOR = ";"

# Seed vectors of the demo population, one per row, grouped by archetype
ARCHETYPE_SEEDS: List[Dict[str, Any]] = [
    {"archetype": "social_beginner", "skill_level": 2, "socialness": 8, "luxury_level": 3,
     "traditionalism": 3, "competitiveness": 2, "amenity_importance": 6, "pace": 3},
    {"archetype": "social_beginner", "skill_level": 3, "socialness": 9, "luxury_level": 4,
     "traditionalism": 2, "competitiveness": 3, "amenity_importance": 7, "pace": 4},
    {"archetype": "social_beginner", "skill_level": 1, "socialness": 7, "luxury_level": 2,
     "traditionalism": 4, "competitiveness": 1, "amenity_importance": 5, "pace": 2},
    {"archetype": "traditional_serious", "skill_level": 8, "socialness": 4, "luxury_level": 6,
     "traditionalism": 9, "competitiveness": 9, "amenity_importance": 5, "pace": 8},
    {"archetype": "traditional_serious", "skill_level": 9, "socialness": 3, "luxury_level": 7,
     "traditionalism": 8, "competitiveness": 8, "amenity_importance": 6, "pace": 9},
    {"archetype": "traditional_serious", "skill_level": 7, "socialness": 5, "luxury_level": 5,
     "traditionalism": 9, "competitiveness": 7, "amenity_importance": 4, "pace": 7},
    {"archetype": "luxury_social", "skill_level": 5, "socialness": 9, "luxury_level": 9,
     "traditionalism": 4, "competitiveness": 4, "amenity_importance": 9, "pace": 5},
    {"archetype": "luxury_social", "skill_level": 6, "socialness": 8, "luxury_level": 8,
     "traditionalism": 5, "competitiveness": 5, "amenity_importance": 8, "pace": 6},
    {"archetype": "luxury_social", "skill_level": 4, "socialness": 9, "luxury_level": 9,
     "traditionalism": 3, "competitiveness": 3, "amenity_importance": 9, "pace": 4},
    {"archetype": "competitive_solo", "skill_level": 7, "socialness": 2, "luxury_level": 4,
     "traditionalism": 6, "competitiveness": 9, "amenity_importance": 4, "pace": 9},
    {"archetype": "competitive_solo", "skill_level": 8, "socialness": 3, "luxury_level": 5,
     "traditionalism": 7, "competitiveness": 8, "amenity_importance": 5, "pace": 8},
    {"archetype": "casual_weekend", "skill_level": 4, "socialness": 6, "luxury_level": 5,
     "traditionalism": 5, "competitiveness": 4, "amenity_importance": 6, "pace": 5},
    {"archetype": "casual_weekend", "skill_level": 3, "socialness": 7, "luxury_level": 4,
     "traditionalism": 4, "competitiveness": 3, "amenity_importance": 5, "pace": 4},
]

COURSE_STYLES_BY_ARCHETYPE: Dict[str, List[str]] = {
    "social_beginner": ["parkland", "resort"],
    "traditional_serious": ["links", "parkland"],
    "luxury_social": ["coastal", "resort"],
    "competitive_solo": ["links", "desert"],
    "casual_weekend": ["parkland", "mountain"],
}

# Profiles generated per seed vector when no count is given
DEFAULT_PROFILES_PER_ARCHETYPE: Dict[str, int] = {
    "social_beginner": 3,
    "traditional_serious": 3,
}
DEFAULT_PROFILES_PER_SEED = 2


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or (isinstance(value, float) and np.isnan(value)):
        return None
    timestamp = pd.Timestamp(value)
    if pd.isna(timestamp):
        return None
    if timestamp.tzinfo is None:
        timestamp = timestamp.tz_localize("UTC")
    return timestamp.to_pydatetime()


def load_profiles_csv(filepath: str, delimiter: str = ",") -> List[ProfileRecord]:
    """
    Load recorded profiles from CSV.

    Args:
        filepath: Path to the CSV file
        delimiter: Field delimiter (default: comma)

    Returns:
        List of ProfileRecord, in file order

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the file is empty or has no dimension columns
    """
    path = Path(filepath)
    if not path.exists():
        raise FileNotFoundError(f"Profile data file not found: {filepath}")

    logger.info(f"Loading profiles from {filepath} (delimiter: {repr(delimiter)})")
    df = pd.read_csv(filepath, sep=delimiter)

    if df.empty:
        raise ValueError(f"Profile data file is empty: {filepath}")

    df = df.rename(columns={alias: name for alias, name in DIMENSION_ALIASES.items() if alias in df.columns})
    dimension_cols = [d for d in DIMENSIONS if d in df.columns]
    if not dimension_cols:
        raise ValueError(f"No dimension columns found in {filepath}; expected some of {list(DIMENSIONS)}")

    missing = [d for d in DIMENSIONS if d not in df.columns]
    if missing:
        logger.warning(f"Missing dimension columns default to 0: {missing}")

    profiles = []
    for i, row in enumerate(df.to_dict(orient="records")):
        tags = row.get("tags")
        tag_list = [t.strip() for t in str(tags).split(TAG_SEPARATOR) if t.strip()] if isinstance(tags, str) else []
        vector = FeatureVector(
            tags=tuple(tag_list),
            **{d: row[d] for d in dimension_cols},
        )
        profile_id = row.get("id")
        session_id = row.get("session_id")
        archetype = row.get("derived_archetype")
        profiles.append(ProfileRecord(
            id=str(profile_id) if pd.notna(profile_id) else f"profile_{i}",
            session_id=str(session_id) if pd.notna(session_id) else f"session_{i}",
            feature_vector=vector,
            recorded_at=_parse_timestamp(row.get("recorded_at")),
            derived_archetype=archetype if isinstance(archetype, str) else None,
        ))

    logger.info(f"Loaded {len(profiles)} profiles with {len(dimension_cols)} dimension columns")
    return profiles


def profiles_to_frame(profiles: List[ProfileRecord]) -> pd.DataFrame:
    """Flatten profiles into a DataFrame in the CSV layout."""
    rows = []
    for p in profiles:
        row: Dict[str, Any] = {
            "id": p.id,
            "session_id": p.session_id,
            "recorded_at": p.recorded_at.isoformat() if p.recorded_at else None,
            "derived_archetype": p.derived_archetype,
        }
        row.update({d: getattr(p.feature_vector, d) for d in DIMENSIONS})
        row["tags"] = TAG_SEPARATOR.join(p.feature_vector.tags)
        rows.append(row)
    return pd.DataFrame(rows, columns=["id", "session_id", "recorded_at", "derived_archetype",
                                       *DIMENSIONS, "tags"])


def save_profiles_csv(profiles: List[ProfileRecord], filepath: str) -> None:
    """Write profiles in the layout load_profiles_csv() reads."""
    Path(filepath).parent.mkdir(parents=True, exist_ok=True)
    profiles_to_frame(profiles).to_csv(filepath, index=False)
    logger.info(f"Saved {len(profiles)} profiles to {filepath}")


def create_synthetic_profiles(
    seed: int = 42,
    profiles_per_seed: Optional[int] = None,
    noise: int = 1,
    now: Optional[datetime] = None,
    max_age_days: int = 60
) -> List[ProfileRecord]:
    """
    Generate a clustered demo population around the archetype seed vectors.

    Each dimension of each seed gets integer noise in [-noise, +noise],
    clipped to [0, 10]. age_generation is drawn uniformly from 0..10.

    Args:
        seed: Random seed (same seed, same population)
        profiles_per_seed: Profiles per seed vector; None uses 3 for
            social_beginner and traditional_serious seeds and 2 otherwise
        noise: Maximum absolute integer perturbation per dimension
        now: Reference time for recorded_at (default: current UTC time)
        max_age_days: recorded_at is spread over this many past days

    Returns:
        List of ProfileRecord with derived_archetype set to the seed's archetype
    """
    rng = np.random.RandomState(seed)
    now = now or datetime.now(timezone.utc)

    profiles = []
    for seed_index, seed_vector in enumerate(ARCHETYPE_SEEDS):
        archetype = seed_vector["archetype"]
        count = profiles_per_seed if profiles_per_seed is not None else \
            DEFAULT_PROFILES_PER_ARCHETYPE.get(archetype, DEFAULT_PROFILES_PER_SEED)

        for i in range(count):
            values = {
                dim: float(np.clip(seed_vector[dim] + rng.randint(-noise, noise + 1), 0, 10))
                for dim in DIMENSIONS if dim in seed_vector
            }
            values["age_generation"] = float(rng.randint(0, 11))
            styles = COURSE_STYLES_BY_ARCHETYPE.get(archetype, ["parkland"])
            style = styles[rng.randint(len(styles))]

            profiles.append(ProfileRecord(
                id=f"synthetic_profile_{seed_index}_{i}",
                session_id=f"synthetic_session_{seed_index}_{i}",
                feature_vector=FeatureVector(tags=(style,), **values),
                recorded_at=now - timedelta(seconds=float(rng.random_sample() * max_age_days * 86400)),
                derived_archetype=archetype,
            ))

    logger.info(f"Created {len(profiles)} synthetic profiles from {len(ARCHETYPE_SEEDS)} seeds (seed={seed})")
    return profiles
