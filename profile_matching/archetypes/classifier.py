"""
Archetype classification.

An archetype is a named behavioural cluster defined by per-dimension range
constraints. A vector is scored against every definition independently of
any other profile:

    credit(constraint) = 1.0  if min <= value <= max
                         0.5  if the distance to the nearest bound <= tolerance
                         0.0  otherwise
    confidence(definition) = sum(credit) / number of constraints

The best definition must beat the current best strictly, so definition
order breaks ties. The fallback archetype starts as the best with a floor
confidence (0.3), which guarantees a classification for any vector.

Compatibility between archetypes is a static, symmetric adjacency table.
It is looked up, never derived, and feeds the neighbour search bonus.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional, Tuple, FrozenSet

from ..exceptions import ConfigurationError
from ..profiles.schema import DIMENSIONS, FeatureVector

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE = 2.0
DEFAULT_FALLBACK_NAME = "balanced"
DEFAULT_FALLBACK_CONFIDENCE = 0.3


@dataclass(frozen=True)
class ArchetypeDefinition:
    """
    Static archetype definition.

    Attributes:
        name: Archetype name
        constraints: Mapping of dimension to inclusive (min, max) range
        compatible: Names of archetypes considered compatible
    """
    name: str
    constraints: Dict[str, Tuple[float, float]]
    compatible: FrozenSet[str] = field(default_factory=frozenset)

    def validate(self) -> None:
        """
        Validate the definition.

        Raises:
            ConfigurationError: On an empty name, no constraints, unknown
                dimensions or inverted ranges
        """
        if not self.name:
            raise ConfigurationError("Archetype definition without a name")
        if not self.constraints:
            raise ConfigurationError(f"Archetype {self.name} has no constraints")
        for dim, bounds in self.constraints.items():
            if dim not in DIMENSIONS:
                raise ConfigurationError(f"Archetype {self.name} constrains unknown dimension {dim}")
            if len(bounds) != 2:
                raise ConfigurationError(f"Archetype {self.name}: range for {dim} must be [min, max]")
            low, high = bounds
            if low > high:
                raise ConfigurationError(f"Archetype {self.name}: min > max for {dim} ({low} > {high})")

    def confidence(self, vector: FeatureVector, tolerance: float = DEFAULT_TOLERANCE) -> float:
        """
        Fraction of constraint credit earned by a vector.

        Args:
            vector: Vector to score
            tolerance: Raw distance outside a range that still earns half credit

        Returns:
            Confidence in [0, 1]
        """
        credit = 0.0
        for dim, (low, high) in self.constraints.items():
            value = getattr(vector, dim)
            if low <= value <= high:
                credit += 1.0
            elif min(abs(value - low), abs(value - high)) <= tolerance:
                credit += 0.5
        return credit / len(self.constraints)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ArchetypeDefinition":
        """Create from a configuration entry."""
        constraints = {
            dim: tuple(float(b) for b in bounds)
            for dim, bounds in (d.get("constraints") or {}).items()
        }
        return cls(
            name=d.get("name", ""),
            constraints=constraints,
            compatible=frozenset(d.get("compatible", [])),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "constraints": {dim: list(bounds) for dim, bounds in self.constraints.items()},
            "compatible": sorted(self.compatible),
        }


@dataclass(frozen=True)
class ArchetypeMatch:
    """Result of classifying one vector."""
    archetype: str
    confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return {"archetype": self.archetype, "confidence": float(self.confidence)}


class ArchetypeClassifier:
    """
    Maps a feature vector to its best-matching archetype.

    Definitions and the compatibility table are validated once when the
    classifier is built; classification itself never fails.

    Attributes:
        definitions: Archetype definitions in tie-break order
        tolerance: Half-credit distance outside a range
        fallback_name: Archetype returned when no definition beats the floor
        fallback_confidence: Floor confidence of the fallback archetype
    """

    def __init__(
        self,
        definitions: List[ArchetypeDefinition],
        compatibility: Optional[Dict[str, List[str]]] = None,
        tolerance: float = DEFAULT_TOLERANCE,
        fallback_name: str = DEFAULT_FALLBACK_NAME,
        fallback_confidence: float = DEFAULT_FALLBACK_CONFIDENCE
    ):
        """
        Initialize the classifier.

        Args:
            definitions: Archetype definitions, in tie-break order
            compatibility: Adjacency lists; merged with each definition's
                `compatible` set and made symmetric
            tolerance: Half-credit distance outside a range
            fallback_name: Name of the fallback archetype
            fallback_confidence: Floor confidence of the fallback

        Raises:
            ConfigurationError: If definitions or the compatibility table
                are malformed
        """
        if not definitions:
            raise ConfigurationError("At least one archetype definition is required")
        if tolerance < 0:
            raise ConfigurationError(f"tolerance must be non-negative, got {tolerance}")
        if not 0 <= fallback_confidence <= 1:
            raise ConfigurationError(f"fallback confidence must be in [0, 1], got {fallback_confidence}")

        names = [d.name for d in definitions]
        if len(set(names)) != len(names):
            raise ConfigurationError(f"Duplicate archetype names: {names}")
        if fallback_name in names:
            raise ConfigurationError(f"Fallback archetype {fallback_name} must not be a definition")
        for definition in definitions:
            definition.validate()

        self.definitions = list(definitions)
        self.tolerance = float(tolerance)
        self.fallback_name = fallback_name
        self.fallback_confidence = float(fallback_confidence)
        self._adjacency = self._build_adjacency(compatibility or {})

        logger.info(f"Initialized ArchetypeClassifier with {len(self.definitions)} archetypes "
                    f"(fallback={fallback_name})")

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "ArchetypeClassifier":
        """Create from main config dictionary."""
        archetype_config = config.get("archetypes", {})
        fallback = archetype_config.get("fallback", {})
        definitions = [ArchetypeDefinition.from_dict(d) for d in archetype_config.get("definitions", [])]
        return cls(
            definitions=definitions,
            compatibility=archetype_config.get("compatibility", {}),
            tolerance=archetype_config.get("tolerance", DEFAULT_TOLERANCE),
            fallback_name=fallback.get("name", DEFAULT_FALLBACK_NAME),
            fallback_confidence=fallback.get("confidence", DEFAULT_FALLBACK_CONFIDENCE),
        )

    @property
    def archetype_names(self) -> List[str]:
        """All classifiable names, fallback last."""
        return [d.name for d in self.definitions] + [self.fallback_name]

    def _build_adjacency(self, compatibility: Dict[str, List[str]]) -> Dict[str, FrozenSet[str]]:
        known = set(self.archetype_names)
        edges: Dict[str, set] = {name: set() for name in known}

        pairs = [(name, other) for name, others in compatibility.items() for other in (others or [])]
        pairs.extend((d.name, other) for d in self.definitions for other in d.compatible)

        for name, other in pairs:
            for archetype in (name, other):
                if archetype not in known:
                    raise ConfigurationError(f"Compatibility table names unknown archetype {archetype}")
            if name == other:
                continue
            edges[name].add(other)
            edges[other].add(name)

        return {name: frozenset(others) for name, others in edges.items()}

    def classify(self, vector: FeatureVector) -> ArchetypeMatch:
        """
        Classify a vector.

        Args:
            vector: Vector to classify

        Returns:
            ArchetypeMatch with the best archetype and its confidence
        """
        best = ArchetypeMatch(self.fallback_name, self.fallback_confidence)
        for definition in self.definitions:
            confidence = definition.confidence(vector, self.tolerance)
            if confidence > best.confidence:
                best = ArchetypeMatch(definition.name, confidence)
        return best

    def scores(self, vector: FeatureVector) -> Dict[str, float]:
        """Confidence of a vector against every definition."""
        return {d.name: d.confidence(vector, self.tolerance) for d in self.definitions}

    def are_compatible(self, archetype_a: str, archetype_b: str) -> bool:
        """
        Whether two distinct archetypes are listed as compatible.

        Identical names are an exact match, not a compatibility, and
        return False.
        """
        return archetype_b in self._adjacency.get(archetype_a, frozenset())

    def compatible_with(self, archetype: str) -> FrozenSet[str]:
        """Archetypes compatible with the given one."""
        return self._adjacency.get(archetype, frozenset())
