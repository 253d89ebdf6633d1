"""
Algorithm version registry.

Keeps the version history of each algorithm role and answers "which
version is live right now?" for the request path.

Read path (get_active) never raises for storage problems. It degrades in
this order:
1. Newest record flagged active
2. Most recently created record (covers the window between deactivating
   the old version and activating the new one)
3. Last record this registry served for the role
4. Hard-coded fallback config (version "fallback", is_fallback=True)

Administrative operations (activate, create_version, list_versions,
get_version) let StorageError and VersionNotFoundError propagate.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from ..exceptions import StorageError, VersionNotFoundError
from .schema import AlgorithmRole, AlgorithmVersionRecord, utcnow
from .store import ExperimentStore, bounded_call

logger = logging.getLogger(__name__)

FALLBACK_VERSION = "fallback"
DEFAULT_STORE_TIMEOUT = 2.0

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _default_fallbacks() -> Dict[str, Dict[str, Any]]:
    return {
        "scoring": {
            "algorithm_name": "weighted_average",
            "calculation_method": {"method": "weighted_average", "scale_range": [0, 10], "rounding": 1},
        },
        "question_selection": {
            "algorithm_name": "ml_enhanced",
            "selection_logic": {"min_questions": 5, "max_questions": 7},
        },
        "similarity": {
            "metric": "weighted_euclidean",
            "start_threshold": 0.7,
            "floor_threshold": 0.3,
            "min_results": 3,
            "max_results": 10,
            "diversity_factor": 0.1,
            "use_archetype_bonus": True,
        },
    }


@dataclass
class RegistryConfig:
    """
    Configuration for the algorithm registry.

    Attributes:
        store_timeout_seconds: Upper bound for each store call
        fallbacks: Hard-coded config per role name, served when storage
            has nothing usable
    """
    store_timeout_seconds: Optional[float] = DEFAULT_STORE_TIMEOUT
    fallbacks: Dict[str, Dict[str, Any]] = field(default_factory=_default_fallbacks)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "store_timeout_seconds": self.store_timeout_seconds,
            "fallbacks": {k: dict(v) for k, v in self.fallbacks.items()},
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "RegistryConfig":
        fallbacks = _default_fallbacks()
        fallbacks.update(d.get("fallbacks", {}) or {})
        return cls(
            store_timeout_seconds=d.get("store_timeout_seconds", DEFAULT_STORE_TIMEOUT),
            fallbacks=fallbacks,
        )

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "RegistryConfig":
        """Create from main config dictionary."""
        return cls.from_dict(config.get("registry", {}))


def _created_key(record: AlgorithmVersionRecord) -> datetime:
    created = record.created_at
    if created is None:
        return _EPOCH
    if created.tzinfo is None:
        return created.replace(tzinfo=timezone.utc)
    return created


class AlgorithmRegistry:
    """
    Versioned algorithm configs per role.

    Attributes:
        store: Storage collaborator
        config: Registry configuration
    """

    def __init__(
        self,
        store: ExperimentStore,
        config: Optional[RegistryConfig] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.store = store
        self.config = config or RegistryConfig()
        self.clock = clock
        self._lock = threading.Lock()
        self._last_served: Dict[AlgorithmRole, AlgorithmVersionRecord] = {}
        self._known_versions: Dict[Tuple[AlgorithmRole, str], AlgorithmVersionRecord] = {}

    @classmethod
    def from_config(cls, config: Dict[str, Any], store: ExperimentStore) -> "AlgorithmRegistry":
        """Create from main config dictionary."""
        return cls(store, RegistryConfig.from_config(config))

    def _call(self, fn, *args, **kwargs):
        return bounded_call(fn, *args, timeout=self.config.store_timeout_seconds, **kwargs)

    def _remember(self, records: List[AlgorithmVersionRecord]) -> None:
        with self._lock:
            for record in records:
                self._known_versions[(record.role, record.version)] = record

    def fallback_record(self, role: Union[str, AlgorithmRole]) -> AlgorithmVersionRecord:
        """Hard-coded record for a role."""
        role = AlgorithmRole.parse(role)
        return AlgorithmVersionRecord(
            role=role,
            version=FALLBACK_VERSION,
            config=dict(self.config.fallbacks.get(role.value, {})),
            is_active=True,
            created_at=None,
            is_fallback=True,
        )

    def get_active(self, role: Union[str, AlgorithmRole]) -> AlgorithmVersionRecord:
        """
        Resolve the live version of a role.

        Args:
            role: Algorithm role

        Returns:
            AlgorithmVersionRecord; a fallback record when storage is empty,
            failing or slow

        Raises:
            ConfigurationError: If the role is unknown
        """
        role = AlgorithmRole.parse(role)

        try:
            records = self._call(self.store.get_algorithm_versions, role)
        except StorageError as e:
            logger.error(f"Could not load {role.value} versions: {e}")
            return self._degraded(role)

        self._remember(records)

        active = [r for r in records if r.is_active]
        if len(active) > 1:
            logger.warning(f"{len(active)} active {role.value} versions; using the newest")

        if active:
            chosen = max(active, key=_created_key)
        elif records:
            chosen = max(records, key=_created_key)
            logger.warning(f"No active {role.value} version; using most recent {chosen.version}")
        else:
            logger.info(f"No {role.value} versions stored; using fallback config")
            return self._degraded(role)

        with self._lock:
            self._last_served[role] = chosen
        return chosen

    def _degraded(self, role: AlgorithmRole) -> AlgorithmVersionRecord:
        with self._lock:
            cached = self._last_served.get(role)
        if cached is not None:
            logger.warning(f"Serving cached {role.value} version {cached.version}")
            return cached
        return self.fallback_record(role)

    def get_version(self, role: Union[str, AlgorithmRole], version: str) -> AlgorithmVersionRecord:
        """
        Look up one version of a role.

        Raises:
            VersionNotFoundError: If the version does not exist
            StorageError: If the store fails
        """
        role = AlgorithmRole.parse(role)
        if version == FALLBACK_VERSION:
            return self.fallback_record(role)

        records = self._call(self.store.get_algorithm_versions, role)
        self._remember(records)
        for record in records:
            if record.version == version:
                return record
        raise VersionNotFoundError(f"{role.value} version {version} not found")

    def get_version_config(self, role: Union[str, AlgorithmRole], version: str) -> Dict[str, Any]:
        """
        Config of one version for the request path.

        Falls back to the last copy this registry saw when storage fails.
        Another version's config is never substituted, so the caller can
        keep the version label and the config consistent.

        Raises:
            VersionNotFoundError: If storage answers and the version is absent
            StorageError: If storage fails and no copy of the version is cached
        """
        role = AlgorithmRole.parse(role)
        try:
            return self.get_version(role, version).config
        except StorageError as e:
            with self._lock:
                known = self._known_versions.get((role, version))
            if known is None:
                raise
            logger.warning(f"Storage failed ({e}); using cached config of {role.value} {version}")
            return known.config

    def list_versions(self, role: Union[str, AlgorithmRole]) -> List[AlgorithmVersionRecord]:
        """All versions of a role, oldest first."""
        role = AlgorithmRole.parse(role)
        records = self._call(self.store.get_algorithm_versions, role)
        self._remember(records)
        return sorted(records, key=_created_key)

    def create_version(
        self,
        role: Union[str, AlgorithmRole],
        config: Dict[str, Any],
        version: Optional[str] = None
    ) -> AlgorithmVersionRecord:
        """
        Store a new, inactive version.

        Args:
            role: Algorithm role
            config: Config blob
            version: Version label; "v{n}.0.0" with n = existing count + 1
                when None

        Returns:
            The stored record

        Raises:
            ValueError: If the version already exists
        """
        role = AlgorithmRole.parse(role)
        existing = {r.version for r in self._call(self.store.get_algorithm_versions, role)}

        if version is None:
            n = len(existing) + 1
            version = f"v{n}.0.0"
            while version in existing:
                n += 1
                version = f"v{n}.0.0"
        elif version in existing or version == FALLBACK_VERSION:
            raise ValueError(f"{role.value} version {version} already exists")

        record = AlgorithmVersionRecord(
            role=role,
            version=version,
            config=dict(config),
            is_active=False,
            created_at=self.clock(),
        )
        self._call(self.store.insert_algorithm_version, record)
        self._remember([record])
        logger.info(f"Created {role.value} version {version}")
        return record

    def activate(self, role: Union[str, AlgorithmRole], version: str) -> AlgorithmVersionRecord:
        """
        Make one version the active version of its role.

        Two store calls: deactivate all, then activate the target. Readers
        in between see no active version and get the newest record.

        Raises:
            VersionNotFoundError: If the version does not exist
        """
        role = AlgorithmRole.parse(role)
        record = self.get_version(role, version)

        self._call(self.store.deactivate_all_versions, role)
        if not self._call(self.store.activate_version, role, version):
            raise VersionNotFoundError(f"{role.value} version {version} disappeared during activation")

        record.is_active = True
        with self._lock:
            self._last_served[role] = record
        logger.info(f"Activated {role.value} version {version}")
        return record
