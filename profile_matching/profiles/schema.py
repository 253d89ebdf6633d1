"""
Feature vector and profile record schema.

A feature vector is the normalized numeric representation of one completed
quiz session. The dimension set is fixed and ordered:

- skill_level:        0 = new to the game, 10 = advanced
- socialness:         preference for group play
- traditionalism:     affinity for classic course style and etiquette
- luxury_level:       appetite for premium experiences
- competitiveness:    score focus
- age_generation:     generational lean
- amenity_importance: weight given to practice facilities and amenities
- pace:               preferred pace of play

Each dimension is conventionally bounded to [0, 10]. Missing dimensions
default to 0.0, never None, so distance math stays total. Categorical tags
(course style votes) ride along as a multiset and never enter numeric math.
"""

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any, List, Tuple, Iterable

import numpy as np

logger = logging.getLogger(__name__)

DIMENSIONS: Tuple[str, ...] = (
    "skill_level",
    "socialness",
    "traditionalism",
    "luxury_level",
    "competitiveness",
    "age_generation",
    "amenity_importance",
    "pace",
)

SCALE_MIN = 0.0
SCALE_MAX = 10.0


def _camel_to_snake(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


# Recorded sessions use camelCase keys (skillLevel, luxuryLevel, ...)
DIMENSION_ALIASES: Dict[str, str] = {
    "skillLevel": "skill_level",
    "luxuryLevel": "luxury_level",
    "ageGeneration": "age_generation",
    "amenityImportance": "amenity_importance",
}

TAG_KEYS = ("tags", "courseStyle", "course_style")


@dataclass(frozen=True)
class FeatureVector:
    """
    Strict, immutable feature vector.

    Attributes:
        skill_level .. pace: Numeric dimensions in [0, 10]
        tags: Categorical tags (e.g. course style votes), excluded from
            distance math
    """
    skill_level: float = 0.0
    socialness: float = 0.0
    traditionalism: float = 0.0
    luxury_level: float = 0.0
    competitiveness: float = 0.0
    age_generation: float = 0.0
    amenity_importance: float = 0.0
    pace: float = 0.0
    tags: Tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self):
        """Coerce dimensions to bounded floats and tags to a tuple."""
        for dim in DIMENSIONS:
            object.__setattr__(self, dim, _coerce_value(dim, getattr(self, dim)))
        if isinstance(self.tags, str):
            object.__setattr__(self, "tags", (self.tags,))
        else:
            object.__setattr__(self, "tags", tuple(str(t) for t in self.tags))

    @classmethod
    def from_dict(cls, data: Dict[str, Any], strict: bool = False) -> "FeatureVector":
        """
        Build a vector from a loosely shaped mapping.

        Accepts snake_case dimension names and the camelCase aliases used by
        recorded sessions. Unknown keys are dropped (or rejected when strict).

        Args:
            data: Mapping of dimension name to value
            strict: Raise on unknown keys instead of dropping them

        Returns:
            FeatureVector instance

        Raises:
            ValueError: On unknown keys in strict mode or non-numeric values
        """
        values: Dict[str, Any] = {}
        tags: List[str] = []
        unknown = []

        for key, value in data.items():
            if key in TAG_KEYS:
                tags.extend(_as_tag_list(value))
                continue
            name = DIMENSION_ALIASES.get(key, key)
            if name not in DIMENSIONS:
                name = _camel_to_snake(key)
            if name in DIMENSIONS:
                values[name] = value
            else:
                unknown.append(key)

        if unknown:
            if strict:
                raise ValueError(f"Unknown feature dimensions: {sorted(unknown)}")
            logger.debug(f"Dropping unknown feature dimensions: {sorted(unknown)}")

        return cls(tags=tuple(tags), **values)

    @classmethod
    def from_array(cls, values: Iterable[float], tags: Iterable[str] = ()) -> "FeatureVector":
        """Build a vector from values in dimension order."""
        values = list(values)
        if len(values) != len(DIMENSIONS):
            raise ValueError(f"Expected {len(DIMENSIONS)} values, got {len(values)}")
        return cls(tags=tuple(tags), **dict(zip(DIMENSIONS, values)))

    def to_array(self) -> np.ndarray:
        """Return the numeric dimensions as a float array in dimension order."""
        return np.array([getattr(self, dim) for dim in DIMENSIONS], dtype=float)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        result: Dict[str, Any] = {dim: getattr(self, dim) for dim in DIMENSIONS}
        result["tags"] = list(self.tags)
        return result

    def tag_counts(self) -> Counter:
        """Return the tag multiset as a Counter."""
        return Counter(self.tags)


@dataclass(frozen=True)
class ProfileRecord:
    """
    One recorded, completed quiz session.

    Profile records are append-only and owned by the storage collaborator;
    the engine only references them during a search.

    Attributes:
        id: Record identifier
        session_id: Quiz session that produced the record
        feature_vector: Normalized preference vector
        recorded_at: Creation timestamp
        derived_archetype: Archetype stored with the record, if any
        prior_recommendations: Snapshot of recommendations shown at the time
    """
    id: str
    session_id: str
    feature_vector: FeatureVector
    recorded_at: Optional[datetime] = None
    derived_archetype: Optional[str] = None
    prior_recommendations: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        if isinstance(self.feature_vector, dict):
            object.__setattr__(self, "feature_vector", FeatureVector.from_dict(self.feature_vector))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "session_id": self.session_id,
            "feature_vector": self.feature_vector.to_dict(),
            "recorded_at": self.recorded_at.isoformat() if self.recorded_at else None,
            "derived_archetype": self.derived_archetype,
            "prior_recommendations": self.prior_recommendations,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProfileRecord":
        """Create from dictionary."""
        recorded_at = data.get("recorded_at")
        if isinstance(recorded_at, str):
            recorded_at = datetime.fromisoformat(recorded_at)
        return cls(
            id=str(data["id"]),
            session_id=str(data.get("session_id", data["id"])),
            feature_vector=FeatureVector.from_dict(data.get("feature_vector", {})),
            recorded_at=recorded_at,
            derived_archetype=data.get("derived_archetype"),
            prior_recommendations=data.get("prior_recommendations"),
        )


def vectors_to_matrix(vectors: Iterable[FeatureVector]) -> np.ndarray:
    """
    Stack feature vectors into an (N x D) matrix.

    Args:
        vectors: Feature vectors

    Returns:
        numpy array with one row per vector (shape (0, D) when empty)
    """
    rows = [v.to_array() for v in vectors]
    if not rows:
        return np.zeros((0, len(DIMENSIONS)))
    return np.vstack(rows)


def _coerce_value(dim: str, value: Any) -> float:
    if value is None:
        return 0.0
    if isinstance(value, bool) or not isinstance(value, (int, float, np.integer, np.floating)):
        raise ValueError(f"{dim} must be numeric, got {value!r}")
    value = float(value)
    if np.isnan(value):
        return 0.0
    if value < SCALE_MIN or value > SCALE_MAX:
        logger.debug(f"Clipping {dim}={value} into [{SCALE_MIN}, {SCALE_MAX}]")
        value = float(np.clip(value, SCALE_MIN, SCALE_MAX))
    return value


def _as_tag_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, dict):
        # {"parkland": 2, "links": 1} style vote counts
        tags = []
        for tag, count in value.items():
            tags.extend([str(tag)] * int(count))
        return tags
    return [str(v) for v in value]
