"""
Exception hierarchy for the matching engine.

Configuration problems are raised when components are built. Storage
problems are raised by store implementations and are recovered locally on
request paths (registry reads, session resolution, metric tracking); only
administrative operations let them propagate.
"""


class MatchingError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(MatchingError, ValueError):
    """Invalid configuration: unknown role or metric, malformed archetypes."""


class StorageError(MatchingError):
    """The storage collaborator failed to serve a call."""


class StorageTimeoutError(StorageError):
    """A storage call did not finish within the configured time bound."""


class VersionNotFoundError(MatchingError, KeyError):
    """No algorithm version with the requested name exists for the role."""


class ExperimentNotFoundError(MatchingError, KeyError):
    """No A/B test with the requested id exists."""


class ExperimentConflictError(MatchingError):
    """A second running A/B test was requested for the same algorithm role."""
