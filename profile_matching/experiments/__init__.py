"""Algorithm versioning and A/B experimentation."""

from .schema import (
    AlgorithmRole,
    TestStatus,
    Winner,
    AlgorithmVersionRecord,
    ABTest,
    UserAssignment,
    PerformanceMetricSample,
)
from .store import ExperimentStore, InMemoryStore, bounded_call
from .registry import AlgorithmRegistry, RegistryConfig, FALLBACK_VERSION
from .analytics import (
    ABTestAnalytics,
    MetricAggregate,
    aggregate_metrics,
    analyze_ab_test,
    determine_winner,
    is_higher_better,
    summarize_performance,
)
from .manager import ExperimentManager, ExperimentConfig, Resolution

__all__ = [
    "AlgorithmRole",
    "TestStatus",
    "Winner",
    "AlgorithmVersionRecord",
    "ABTest",
    "UserAssignment",
    "PerformanceMetricSample",
    "ExperimentStore",
    "InMemoryStore",
    "bounded_call",
    "AlgorithmRegistry",
    "RegistryConfig",
    "FALLBACK_VERSION",
    "ABTestAnalytics",
    "MetricAggregate",
    "aggregate_metrics",
    "analyze_ab_test",
    "determine_winner",
    "is_higher_better",
    "summarize_performance",
    "ExperimentManager",
    "ExperimentConfig",
    "Resolution",
]
