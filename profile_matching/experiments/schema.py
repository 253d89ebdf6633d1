"""
Records for algorithm versioning and A/B testing.

Algorithm Roles:
- scoring: turns quiz answers into a feature vector
- question_selection: picks the next quiz question
- similarity: configures the neighbour search

Each role is versioned independently. A version carries an opaque config
blob; exactly one version per role is active in steady state.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime, date, timezone
from enum import Enum
from typing import Optional, Dict, Any, List, Union

from ..exceptions import ConfigurationError


def utcnow() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(timezone.utc)


def as_utc(moment: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC; aware ones are returned unchanged."""
    if moment is not None and moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


class AlgorithmRole(Enum):
    """Independently versioned algorithm roles."""
    SCORING = "scoring"
    QUESTION_SELECTION = "question_selection"
    SIMILARITY = "similarity"

    @classmethod
    def parse(cls, value: Union[str, "AlgorithmRole"]) -> "AlgorithmRole":
        """
        Resolve a role name.

        Accepts "similarity_calculator" as a legacy name for the
        similarity role.

        Raises:
            ConfigurationError: If the name is not a known role
        """
        if isinstance(value, cls):
            return value
        if value == "similarity_calculator":
            return cls.SIMILARITY
        try:
            return cls(value)
        except ValueError:
            known = [r.value for r in cls]
            raise ConfigurationError(f"Unknown algorithm role: {value!r} (known: {known})")


class TestStatus(Enum):
    """Lifecycle of an A/B test."""
    RUNNING = "running"
    COMPLETED = "completed"


class Winner(Enum):
    """Outcome of comparing the two versions of an A/B test."""
    VERSION_A = "version_a"
    VERSION_B = "version_b"
    INCONCLUSIVE = "inconclusive"


@dataclass
class AlgorithmVersionRecord:
    """
    One version of one algorithm role.

    Attributes:
        role: Algorithm role
        version: Version label, unique per role
        config: Configuration blob interpreted by the role's consumer
        is_active: Whether this is the role's active version
        created_at: Creation timestamp
        is_fallback: True for the hard-coded default served when storage
            has nothing usable
    """
    role: AlgorithmRole
    version: str
    config: Dict[str, Any] = field(default_factory=dict)
    is_active: bool = False
    created_at: Optional[datetime] = None
    is_fallback: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        d = asdict(self)
        d["role"] = self.role.value
        d["created_at"] = self.created_at.isoformat() if self.created_at else None
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "AlgorithmVersionRecord":
        """Create from dictionary."""
        created_at = d.get("created_at")
        if isinstance(created_at, str):
            created_at = datetime.fromisoformat(created_at)
        return cls(
            role=AlgorithmRole.parse(d["role"]),
            version=d["version"],
            config=dict(d.get("config") or {}),
            is_active=bool(d.get("is_active", False)),
            created_at=created_at,
            is_fallback=bool(d.get("is_fallback", False)),
        )


@dataclass
class ABTest:
    """
    A/B test between two versions of one role.

    Attributes:
        id: Test identifier
        role: Algorithm role under test
        version_a: Control version
        version_b: Treatment version
        traffic_split: Share of new sessions sent to version B, in [0, 1]
        start_date: Start of the test window
        end_date: End of the test window (open-ended when None)
        status: running or completed
        success_metrics: Metric names, primary first
        name: Human-readable name
        description: Free text
        results: Stored analytics once the test is completed
    """
    id: str
    role: AlgorithmRole
    version_a: str
    version_b: str
    traffic_split: float = 0.5
    start_date: datetime = field(default_factory=utcnow)
    end_date: Optional[datetime] = None
    status: TestStatus = TestStatus.RUNNING
    success_metrics: List[str] = field(default_factory=list)
    name: str = ""
    description: str = ""
    results: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        """Naive window bounds are taken as UTC."""
        self.start_date = as_utc(self.start_date)
        self.end_date = as_utc(self.end_date)

    def validate(self) -> None:
        """
        Validate test definition.

        Raises:
            ConfigurationError: On an invalid split, identical versions or
                an inverted date window
        """
        if not 0 <= self.traffic_split <= 1:
            raise ConfigurationError(f"traffic_split must be in [0, 1], got {self.traffic_split}")
        if self.version_a == self.version_b:
            raise ConfigurationError(f"A/B test needs two different versions, got {self.version_a} twice")
        if self.end_date is not None and self.end_date < self.start_date:
            raise ConfigurationError("A/B test end_date is before start_date")

    @property
    def primary_metric(self) -> Optional[str]:
        return self.success_metrics[0] if self.success_metrics else None

    def is_running_at(self, moment: datetime) -> bool:
        """Whether the test is running and its window contains `moment`."""
        moment = as_utc(moment)
        if self.status is not TestStatus.RUNNING:
            return False
        if self.start_date > moment:
            return False
        return self.end_date is None or moment <= self.end_date

    def is_expired_at(self, moment: datetime) -> bool:
        """Whether the window closed before `moment`."""
        return self.end_date is not None and as_utc(moment) > self.end_date

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "role": self.role.value,
            "version_a": self.version_a,
            "version_b": self.version_b,
            "traffic_split": self.traffic_split,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "status": self.status.value,
            "success_metrics": list(self.success_metrics),
            "name": self.name,
            "description": self.description,
            "results": self.results,
        }


@dataclass(frozen=True)
class UserAssignment:
    """
    Sticky assignment of a session to a version of one role.

    At most one exists per (session_id, role); once written it is returned
    verbatim until explicitly cleared.
    """
    session_id: str
    role: AlgorithmRole
    assigned_version: str
    test_id: Optional[str] = None
    assigned_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "role": self.role.value,
            "assigned_version": self.assigned_version,
            "test_id": self.test_id,
            "assigned_at": self.assigned_at.isoformat(),
        }


@dataclass(frozen=True)
class PerformanceMetricSample:
    """One observation of a metric for a version; append-only."""
    role: AlgorithmRole
    version: str
    metric_name: str
    value: float
    sample_size: int = 1
    measured_on: date = field(default_factory=lambda: utcnow().date())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "role": self.role.value,
            "version": self.version,
            "metric_name": self.metric_name,
            "value": float(self.value),
            "sample_size": int(self.sample_size),
            "measured_on": self.measured_on.isoformat(),
        }
