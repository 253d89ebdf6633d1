"""
Storage collaborator for profiles, algorithm versions and A/B tests.

The engine never talks to a database directly. It consumes the
ExperimentStore interface below; a deployment plugs in its own
implementation and tests use InMemoryStore.

Implementations signal failures by raising StorageError. Every call the
engine makes goes through bounded_call(), which turns a slow store into a
StorageTimeoutError instead of a hung request.
"""

import dataclasses
import logging
import threading
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from ..exceptions import StorageTimeoutError
from ..profiles.schema import ProfileRecord
from .schema import (
    ABTest,
    AlgorithmRole,
    AlgorithmVersionRecord,
    PerformanceMetricSample,
    TestStatus,
    UserAssignment,
)

logger = logging.getLogger(__name__)

STORE_CALL_WORKERS = 8

_executor: Optional[ThreadPoolExecutor] = None
_executor_lock = threading.Lock()


def _get_executor() -> ThreadPoolExecutor:
    global _executor
    with _executor_lock:
        if _executor is None:
            _executor = ThreadPoolExecutor(max_workers=STORE_CALL_WORKERS,
                                           thread_name_prefix="store-call")
        return _executor


def bounded_call(fn: Callable[..., Any], *args, timeout: Optional[float] = None, **kwargs) -> Any:
    """
    Run a store call with an upper bound on its duration.

    A call that times out keeps running in the pool and may still take
    effect; callers that write should read back before assuming it failed.

    Args:
        fn: Store method to call
        *args: Positional arguments for `fn`
        timeout: Seconds to wait; None calls `fn` inline without a bound
        **kwargs: Keyword arguments for `fn`

    Returns:
        Whatever `fn` returns

    Raises:
        StorageTimeoutError: If `fn` does not finish within `timeout`
        StorageError: Propagated from `fn`
    """
    if timeout is None:
        return fn(*args, **kwargs)

    future = _get_executor().submit(fn, *args, **kwargs)
    try:
        return future.result(timeout=timeout)
    except FutureTimeoutError:
        future.cancel()
        name = getattr(fn, "__name__", repr(fn))
        raise StorageTimeoutError(f"Store call {name} exceeded {timeout:.2f}s")


class ExperimentStore(ABC):
    """Storage interface consumed by the registry and experiment manager."""

    # Profiles

    @abstractmethod
    def list_profiles(self, min_timestamp: Optional[datetime] = None,
                      limit: Optional[int] = None) -> List[ProfileRecord]:
        """Recorded profiles, newest first, optionally bounded by age and count."""

    # Algorithm versions

    @abstractmethod
    def get_algorithm_versions(self, role: AlgorithmRole) -> List[AlgorithmVersionRecord]:
        """All version records for a role."""

    @abstractmethod
    def insert_algorithm_version(self, record: AlgorithmVersionRecord) -> None:
        """Insert a new version record; (role, version) must be unique."""

    @abstractmethod
    def deactivate_all_versions(self, role: AlgorithmRole) -> None:
        """Clear the active flag on every version of a role."""

    @abstractmethod
    def activate_version(self, role: AlgorithmRole, version: str) -> bool:
        """Set the active flag on one version; False if it does not exist."""

    # A/B tests

    @abstractmethod
    def get_running_ab_tests(self) -> List[ABTest]:
        """Tests with status running, regardless of date window."""

    @abstractmethod
    def get_ab_test(self, test_id: str) -> Optional[ABTest]:
        """One test by id, or None."""

    @abstractmethod
    def insert_ab_test(self, test: ABTest) -> None:
        """Insert a new test."""

    @abstractmethod
    def update_ab_test(self, test: ABTest) -> None:
        """Replace a stored test (status, results)."""

    # Assignments

    @abstractmethod
    def get_user_assignment(self, session_id: str, role: AlgorithmRole) -> Optional[UserAssignment]:
        """The sticky assignment of a session for a role, or None."""

    @abstractmethod
    def upsert_user_assignment(self, assignment: UserAssignment) -> UserAssignment:
        """
        Atomic insert-if-absent on (session_id, role).

        Returns:
            The stored assignment: the argument if it was inserted, otherwise
            the assignment that was already there
        """

    @abstractmethod
    def delete_user_assignment(self, session_id: str, role: AlgorithmRole) -> bool:
        """Remove a sticky assignment; False if none existed."""

    @abstractmethod
    def list_user_assignments(self, test_id: str) -> List[UserAssignment]:
        """Assignments created by one test."""

    # Performance metrics

    @abstractmethod
    def append_performance_metric(self, sample: PerformanceMetricSample) -> None:
        """Append one metric sample."""

    @abstractmethod
    def list_performance_metrics(self, role: Optional[AlgorithmRole] = None,
                                 versions: Optional[Iterable[str]] = None,
                                 since: Optional[date] = None) -> List[PerformanceMetricSample]:
        """Metric samples filtered by role, version set and first day."""


class InMemoryStore(ExperimentStore):
    """
    Thread-safe in-process store.

    Every operation runs under one re-entrant lock, which makes
    upsert_user_assignment a true insert-if-absent. Mutable records are
    copied on the way in and out so callers cannot alter stored state.
    """

    def __init__(self, profiles: Optional[Iterable[ProfileRecord]] = None):
        self._lock = threading.RLock()
        self._profiles: List[ProfileRecord] = list(profiles or [])
        self._versions: Dict[AlgorithmRole, List[AlgorithmVersionRecord]] = {}
        self._tests: Dict[str, ABTest] = {}
        self._assignments: Dict[Tuple[str, AlgorithmRole], UserAssignment] = {}
        self._metrics: List[PerformanceMetricSample] = []

    def add_profile(self, profile: ProfileRecord) -> None:
        with self._lock:
            self._profiles.append(profile)

    def add_profiles(self, profiles: Iterable[ProfileRecord]) -> None:
        with self._lock:
            self._profiles.extend(profiles)

    def list_profiles(self, min_timestamp=None, limit=None):
        with self._lock:
            profiles = list(self._profiles)

        if min_timestamp is not None:
            profiles = [p for p in profiles if p.recorded_at is not None and p.recorded_at >= min_timestamp]
        # Newest first; undated records sort last
        profiles.sort(key=lambda p: (p.recorded_at is not None, p.recorded_at or datetime.min), reverse=True)
        if limit is not None:
            profiles = profiles[:limit]
        return profiles

    def get_algorithm_versions(self, role):
        with self._lock:
            return [dataclasses.replace(r, config=dict(r.config)) for r in self._versions.get(role, [])]

    def insert_algorithm_version(self, record):
        with self._lock:
            records = self._versions.setdefault(record.role, [])
            if any(r.version == record.version for r in records):
                raise ValueError(f"Version {record.version} already exists for {record.role.value}")
            records.append(dataclasses.replace(record, config=dict(record.config)))

    def deactivate_all_versions(self, role):
        with self._lock:
            for record in self._versions.get(role, []):
                record.is_active = False

    def activate_version(self, role, version):
        with self._lock:
            for record in self._versions.get(role, []):
                if record.version == version:
                    record.is_active = True
                    return True
            return False

    def get_running_ab_tests(self):
        with self._lock:
            return [dataclasses.replace(t) for t in self._tests.values()
                    if t.status is TestStatus.RUNNING]

    def get_ab_test(self, test_id):
        with self._lock:
            test = self._tests.get(test_id)
            return dataclasses.replace(test) if test is not None else None

    def insert_ab_test(self, test):
        with self._lock:
            if test.id in self._tests:
                raise ValueError(f"A/B test {test.id} already exists")
            self._tests[test.id] = dataclasses.replace(test)

    def update_ab_test(self, test):
        with self._lock:
            if test.id not in self._tests:
                raise KeyError(test.id)
            self._tests[test.id] = dataclasses.replace(test)

    def get_user_assignment(self, session_id, role):
        with self._lock:
            return self._assignments.get((session_id, role))

    def upsert_user_assignment(self, assignment):
        key = (assignment.session_id, assignment.role)
        with self._lock:
            existing = self._assignments.get(key)
            if existing is not None:
                return existing
            self._assignments[key] = assignment
            return assignment

    def delete_user_assignment(self, session_id, role):
        with self._lock:
            return self._assignments.pop((session_id, role), None) is not None

    def list_user_assignments(self, test_id):
        with self._lock:
            return [a for a in self._assignments.values() if a.test_id == test_id]

    def append_performance_metric(self, sample):
        with self._lock:
            self._metrics.append(sample)

    def list_performance_metrics(self, role=None, versions=None, since=None):
        version_set = set(versions) if versions is not None else None
        with self._lock:
            samples = list(self._metrics)
        return [
            s for s in samples
            if (role is None or s.role is role)
            and (version_set is None or s.version in version_set)
            and (since is None or s.measured_on >= since)
        ]
