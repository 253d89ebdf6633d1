"""
A/B experiment manager.

Resolves which algorithm version serves a session, records performance
samples, and decides winners.

Resolution order for (session_id, role):
1. Existing sticky assignment, returned verbatim
2. Running test for the role whose date window contains now: draw from
   the manager's random source; draw < traffic_split goes to version B,
   otherwise version A. The assignment is written with an atomic
   insert-if-absent, so concurrent first requests for the same session all
   end up on whichever assignment was stored first
3. The registry's active version; no assignment is written

Storage failures on this path never fail the request: resolution degrades
to the registry's active (or fallback) version. A failed assignment write
is read back once, since a timed-out upsert may still have been stored.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from ..exceptions import (
    ExperimentConflictError,
    ExperimentNotFoundError,
    StorageError,
    VersionNotFoundError,
)
from .analytics import (
    ABTestAnalytics,
    DEFAULT_HIGHER_IS_BETTER,
    DEFAULT_MIN_SAMPLE_SIZE,
    analyze_ab_test,
    summarize_performance,
)
from .registry import AlgorithmRegistry
from .schema import (
    ABTest,
    AlgorithmRole,
    PerformanceMetricSample,
    TestStatus,
    UserAssignment,
    Winner,
    utcnow,
)
from .store import ExperimentStore, bounded_call

logger = logging.getLogger(__name__)

SOURCE_ASSIGNMENT = "assignment"
SOURCE_EXPERIMENT = "experiment"
SOURCE_ACTIVE = "active"
SOURCE_FALLBACK = "fallback"


@dataclass
class ExperimentConfig:
    """
    Configuration for A/B testing.

    Attributes:
        min_sample_size: Assignments needed before a test can be decided
        default_traffic_split: Split used when a test does not name one
        higher_is_better_keywords: Metric name substrings where larger wins
    """
    min_sample_size: int = DEFAULT_MIN_SAMPLE_SIZE
    default_traffic_split: float = 0.5
    higher_is_better_keywords: List[str] = field(default_factory=lambda: list(DEFAULT_HIGHER_IS_BETTER))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "min_sample_size": self.min_sample_size,
            "default_traffic_split": self.default_traffic_split,
            "higher_is_better_keywords": list(self.higher_is_better_keywords),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ExperimentConfig":
        return cls(
            min_sample_size=d.get("min_sample_size", DEFAULT_MIN_SAMPLE_SIZE),
            default_traffic_split=d.get("default_traffic_split", 0.5),
            higher_is_better_keywords=list(d.get("higher_is_better_keywords", DEFAULT_HIGHER_IS_BETTER)),
        )

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "ExperimentConfig":
        """Create from main config dictionary."""
        return cls.from_dict(config.get("experiments", {}))


@dataclass
class Resolution:
    """
    Algorithm version serving one session.

    Attributes:
        role: Algorithm role
        version: Version label
        config: Version config blob
        test_id: A/B test that produced the assignment, if any
        source: assignment, experiment, active or fallback
    """
    role: AlgorithmRole
    version: str
    config: Dict[str, Any]
    test_id: Optional[str] = None
    source: str = SOURCE_ACTIVE

    @property
    def sticky(self) -> bool:
        return self.source in (SOURCE_ASSIGNMENT, SOURCE_EXPERIMENT)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "role": self.role.value,
            "version": self.version,
            "config": self.config,
            "test_id": self.test_id,
            "source": self.source,
        }


class ExperimentManager:
    """
    Sticky A/B assignment on top of the algorithm registry.

    Attributes:
        store: Storage collaborator
        registry: Algorithm registry
        config: Experiment configuration
        random_state: Source of traffic split draws
        clock: Returns the current time (timezone-aware)
    """

    def __init__(
        self,
        store: ExperimentStore,
        registry: AlgorithmRegistry,
        config: Optional[ExperimentConfig] = None,
        random_state: Optional[np.random.RandomState] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.store = store
        self.registry = registry
        self.config = config or ExperimentConfig()
        self.random_state = random_state if random_state is not None else np.random.RandomState()
        self.clock = clock

    @classmethod
    def from_config(
        cls,
        config: Dict[str, Any],
        store: ExperimentStore,
        registry: Optional[AlgorithmRegistry] = None,
        random_seed: Optional[int] = None
    ) -> "ExperimentManager":
        """Create manager (and registry, if not given) from main config dictionary."""
        return cls(
            store=store,
            registry=registry or AlgorithmRegistry.from_config(config, store),
            config=ExperimentConfig.from_config(config),
            random_state=np.random.RandomState(random_seed),
        )

    def _call(self, fn, *args, **kwargs):
        return bounded_call(fn, *args, timeout=self.registry.config.store_timeout_seconds, **kwargs)

    # Request path

    def resolve(self, session_id: str, role: Union[str, AlgorithmRole]) -> Resolution:
        """
        Resolve the algorithm version for a session.

        Args:
            session_id: Quiz session identifier
            role: Algorithm role

        Returns:
            Resolution instance

        Raises:
            ConfigurationError: If the role is unknown
        """
        role = AlgorithmRole.parse(role)

        try:
            existing = self._call(self.store.get_user_assignment, session_id, role)
        except StorageError as e:
            logger.error(f"Assignment lookup failed for session {session_id}: {e}")
            return self._resolve_active(role)

        if existing is not None:
            return self._resolve_assigned(existing, SOURCE_ASSIGNMENT)

        try:
            test = self.running_test_for(role)
        except StorageError as e:
            logger.error(f"Running test lookup failed for {role.value}: {e}")
            return self._resolve_active(role)

        if test is None:
            return self._resolve_active(role)

        draw = self.random_state.random_sample()
        version = test.version_b if draw < test.traffic_split else test.version_a
        candidate = UserAssignment(
            session_id=session_id,
            role=role,
            assigned_version=version,
            test_id=test.id,
            assigned_at=self.clock(),
        )

        try:
            stored = self._call(self.store.upsert_user_assignment, candidate)
        except StorageError as e:
            logger.error(f"Could not persist assignment for session {session_id}: {e}")
            # A timed-out upsert may still complete; serve what it stored
            try:
                stored = self._call(self.store.get_user_assignment, session_id, role)
            except StorageError:
                stored = None
            if stored is None:
                return self._resolve_active(role)
            return self._resolve_assigned(stored, SOURCE_ASSIGNMENT)

        if stored.assigned_version != version:
            logger.debug(f"Session {session_id} already assigned to {stored.assigned_version}")
        else:
            logger.debug(f"Assigned session {session_id} to {role.value} {version} (test {test.id})")
        return self._resolve_assigned(stored, SOURCE_EXPERIMENT)

    def resolve_session(self, session_id: str) -> Dict[str, Resolution]:
        """Resolve every role for a session."""
        return {role.value: self.resolve(session_id, role) for role in AlgorithmRole}

    def _resolve_active(self, role: AlgorithmRole) -> Resolution:
        record = self.registry.get_active(role)
        source = SOURCE_FALLBACK if record.is_fallback else SOURCE_ACTIVE
        return Resolution(role=role, version=record.version, config=record.config, source=source)

    def _resolve_assigned(self, assignment: UserAssignment, source: str) -> Resolution:
        try:
            config = self.registry.get_version_config(assignment.role, assignment.assigned_version)
        except VersionNotFoundError:
            logger.warning(f"Session {assignment.session_id} is assigned to unknown "
                           f"{assignment.role.value} version {assignment.assigned_version}")
            return self._resolve_active(assignment.role)
        except StorageError as e:
            logger.error(f"Config of {assignment.role.value} {assignment.assigned_version} "
                         f"unavailable for session {assignment.session_id}: {e}")
            return self._resolve_active(assignment.role)
        return Resolution(
            role=assignment.role,
            version=assignment.assigned_version,
            config=config,
            test_id=assignment.test_id,
            source=source,
        )

    def running_tests(self, role: Optional[Union[str, AlgorithmRole]] = None) -> List[ABTest]:
        """
        Tests running now, optionally for one role.

        Ordered by start date, then id.
        """
        role = AlgorithmRole.parse(role) if role is not None else None
        now = self.clock()
        tests = [
            t for t in self._call(self.store.get_running_ab_tests)
            if (role is None or t.role is role) and t.is_running_at(now)
        ]
        return sorted(tests, key=lambda t: (t.start_date, t.id))

    def running_test_for(self, role: Union[str, AlgorithmRole]) -> Optional[ABTest]:
        """The test that assigns new sessions of a role, if any."""
        tests = self.running_tests(role)
        if not tests:
            return None
        if len(tests) > 1:
            logger.warning(f"{len(tests)} running tests for {tests[0].role.value}; "
                           f"using earliest ({tests[0].id})")
        return tests[0]

    def track_performance(
        self,
        role: Union[str, AlgorithmRole],
        version: str,
        metric_name: str,
        value: float,
        sample_size: int = 1
    ) -> Optional[PerformanceMetricSample]:
        """
        Record one metric sample for a version.

        Storage failures are logged and swallowed.

        Returns:
            The sample, or None if it could not be stored
        """
        sample = PerformanceMetricSample(
            role=AlgorithmRole.parse(role),
            version=version,
            metric_name=metric_name,
            value=float(value),
            sample_size=int(sample_size),
            measured_on=self.clock().date(),
        )
        try:
            self._call(self.store.append_performance_metric, sample)
        except StorageError as e:
            logger.error(f"Could not record {metric_name} for {sample.role.value} {version}: {e}")
            return None
        return sample

    # Administrative path

    def create_ab_test(
        self,
        role: Union[str, AlgorithmRole],
        version_a: str,
        version_b: str,
        traffic_split: Optional[float] = None,
        success_metrics: Optional[Sequence[str]] = None,
        name: str = "",
        description: str = "",
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None
    ) -> ABTest:
        """
        Start an A/B test between two existing versions of a role.

        Args:
            role: Algorithm role
            version_a: Control version
            version_b: Treatment version
            traffic_split: Share of new sessions for version B
            success_metrics: Metric names, primary first
            name: Human-readable name
            description: Free text
            start_date: Start of the window (now when None)
            end_date: End of the window (open-ended when None)

        Returns:
            The stored test

        Raises:
            ConfigurationError: On an invalid definition
            VersionNotFoundError: If either version does not exist
            ExperimentConflictError: If an unexpired test is already running
                for the role
        """
        role = AlgorithmRole.parse(role)
        test = ABTest(
            id=uuid.uuid4().hex,
            role=role,
            version_a=version_a,
            version_b=version_b,
            traffic_split=self.config.default_traffic_split if traffic_split is None else float(traffic_split),
            start_date=start_date or self.clock(),
            end_date=end_date,
            status=TestStatus.RUNNING,
            success_metrics=list(success_metrics or []),
            name=name or f"{role.value}: {version_a} vs {version_b}",
            description=description,
        )
        test.validate()

        self.registry.get_version(role, version_a)
        self.registry.get_version(role, version_b)

        now = self.clock()
        conflicting = [
            t for t in self._call(self.store.get_running_ab_tests)
            if t.role is role and not t.is_expired_at(now)
        ]
        if conflicting:
            raise ExperimentConflictError(
                f"A/B test {conflicting[0].id} is already running for {role.value}"
            )

        self._call(self.store.insert_ab_test, test)
        logger.info(f"Started A/B test {test.id}: {role.value} {version_a} vs {version_b} "
                    f"(split {test.traffic_split:.0%} to B)")
        return test

    def get_ab_test(self, test_id: str) -> ABTest:
        """
        Raises:
            ExperimentNotFoundError: If no test has this id
        """
        test = self._call(self.store.get_ab_test, test_id)
        if test is None:
            raise ExperimentNotFoundError(f"A/B test {test_id} not found")
        return test

    def complete_ab_test(self, test_id: str) -> ABTest:
        """
        Stop a test regardless of its data, storing its current analytics.

        Sessions it already assigned keep their versions until cleared.

        Raises:
            ExperimentNotFoundError: If no test has this id
        """
        test = self.get_ab_test(test_id)
        if test.status is TestStatus.COMPLETED:
            return test

        analytics = self.get_ab_test_analytics(test_id)
        test.status = TestStatus.COMPLETED
        test.results = analytics.to_dict()
        self._call(self.store.update_ab_test, test)
        logger.info(f"Stopped A/B test {test_id} (winner {analytics.winner.value})")
        return test

    def clear_assignment(self, session_id: str, role: Union[str, AlgorithmRole]) -> bool:
        """Remove a session's sticky assignment; True if one existed."""
        role = AlgorithmRole.parse(role)
        removed = self._call(self.store.delete_user_assignment, session_id, role)
        if removed:
            logger.info(f"Cleared {role.value} assignment of session {session_id}")
        return removed

    def get_ab_test_analytics(self, test_id: str) -> ABTestAnalytics:
        """Assignment counts, metric aggregates and winner of a test."""
        test = self.get_ab_test(test_id)
        assignments = self._call(self.store.list_user_assignments, test_id)
        samples = self._call(
            self.store.list_performance_metrics,
            role=test.role,
            versions=[test.version_a, test.version_b],
        )
        return analyze_ab_test(
            test,
            assignments,
            samples,
            min_sample_size=self.config.min_sample_size,
            keywords=self.config.higher_is_better_keywords,
        )

    def winner(self, test_id: str) -> Winner:
        """Winner of a test on its primary metric."""
        return self.get_ab_test_analytics(test_id).winner

    def evaluate_test(self, test_id: str) -> ABTestAnalytics:
        """
        Decide a test if it has enough data.

        The test is completed and its analytics stored only when the sample
        is adequate and the winner is not inconclusive.
        """
        test = self.get_ab_test(test_id)
        analytics = self.get_ab_test_analytics(test_id)

        if test.status is not TestStatus.RUNNING:
            return analytics
        if not analytics.sample_size_adequate:
            logger.info(f"A/B test {test_id}: {analytics.total_assignments} assignments, "
                        f"need {self.config.min_sample_size}")
            return analytics
        if analytics.winner is Winner.INCONCLUSIVE:
            logger.info(f"A/B test {test_id}: no winner yet on {analytics.primary_metric}")
            return analytics

        test.status = TestStatus.COMPLETED
        test.results = analytics.to_dict()
        self._call(self.store.update_ab_test, test)
        logger.info(f"Completed A/B test {test_id}: winner {analytics.winner.value}")
        return analytics

    def performance_summary(self, days: int = 30) -> pd.DataFrame:
        """Samples of the last `days` days grouped by role, version and metric."""
        since = (self.clock() - timedelta(days=days)).date()
        samples = self._call(self.store.list_performance_metrics, since=since)
        return summarize_performance(samples)
