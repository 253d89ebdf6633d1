"""
A/B test analytics.

Winner determination:
- Aggregate samples per version and metric (mean of values)
- Compare the primary success metric (first in the test's list)
- Higher is better when the metric name contains one of the configured
  keywords (accuracy, satisfaction, completion); lower is better otherwise
- Equal means or missing data give "inconclusive"

Everything here is a pure function of the samples and assignments passed
in, so the same inputs always give the same winner.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, List, Optional, Sequence

import pandas as pd

from .schema import ABTest, PerformanceMetricSample, UserAssignment, Winner

logger = logging.getLogger(__name__)

DEFAULT_MIN_SAMPLE_SIZE = 100
DEFAULT_HIGHER_IS_BETTER = ("accuracy", "satisfaction", "completion")

SAMPLE_COLUMNS = ["role", "version", "metric_name", "value", "sample_size", "measured_on"]


@dataclass
class MetricAggregate:
    """Aggregated samples of one metric for one version."""
    average: float
    count: int
    total_sample_size: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "average": float(self.average),
            "count": int(self.count),
            "total_sample_size": int(self.total_sample_size),
        }


@dataclass
class ABTestAnalytics:
    """
    Analytics snapshot of one A/B test.

    Attributes:
        test_id: Test identifier
        version_a: Control version
        version_b: Treatment version
        expected_split: Configured share of version B
        assignments: Assignment count per version
        actual_split: Observed share of version B (None without assignments)
        metrics: version -> metric name -> aggregate
        sample_size_adequate: Enough assignments for a decision
        winner: Comparison outcome on the primary metric
        primary_metric: Metric the winner is decided on
    """
    test_id: str
    version_a: str
    version_b: str
    expected_split: float
    assignments: Dict[str, int]
    actual_split: Optional[float]
    metrics: Dict[str, Dict[str, MetricAggregate]] = field(default_factory=dict)
    sample_size_adequate: bool = False
    winner: Winner = Winner.INCONCLUSIVE
    primary_metric: Optional[str] = None

    @property
    def total_assignments(self) -> int:
        return sum(self.assignments.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "test_id": self.test_id,
            "version_a": self.version_a,
            "version_b": self.version_b,
            "expected_split": float(self.expected_split),
            "actual_split": None if self.actual_split is None else float(self.actual_split),
            "assignments": dict(self.assignments),
            "total_assignments": self.total_assignments,
            "metrics": {
                version: {name: agg.to_dict() for name, agg in by_metric.items()}
                for version, by_metric in self.metrics.items()
            },
            "sample_size_adequate": bool(self.sample_size_adequate),
            "winner": self.winner.value,
            "primary_metric": self.primary_metric,
        }

    def save(self, filepath: str) -> None:
        """Save analytics to JSON file."""
        Path(filepath).parent.mkdir(parents=True, exist_ok=True)
        with open(filepath, "w") as f:
            json.dump(self.to_dict(), f, indent=2)
        logger.info(f"Saved A/B analytics to {filepath}")

    def summary(self) -> str:
        """Generate text summary of the analytics."""
        lines = [
            f"A/B Test: {self.test_id}",
            "=" * 50,
            "",
            "Traffic:",
            f"  {self.version_a}: {self.assignments.get(self.version_a, 0)} sessions",
            f"  {self.version_b}: {self.assignments.get(self.version_b, 0)} sessions",
            f"  Expected split (B): {self.expected_split:.2%}",
        ]
        if self.actual_split is not None:
            lines.append(f"  Actual split (B):   {self.actual_split:.2%}")

        for version in (self.version_a, self.version_b):
            by_metric = self.metrics.get(version, {})
            if not by_metric:
                continue
            lines.extend(["", f"Metrics for {version}:"])
            for name, agg in sorted(by_metric.items()):
                lines.append(f"  {name}: {agg.average:.4f} (n={agg.count})")

        lines.extend([
            "",
            f"Sample size adequate: {self.sample_size_adequate}",
            f"Winner ({self.primary_metric or 'no primary metric'}): {self.winner.value}",
        ])
        return "\n".join(lines)


def samples_to_frame(samples: Sequence[PerformanceMetricSample]) -> pd.DataFrame:
    """Convert metric samples to a DataFrame with one row per sample."""
    if not samples:
        return pd.DataFrame(columns=SAMPLE_COLUMNS)
    return pd.DataFrame([s.to_dict() for s in samples], columns=SAMPLE_COLUMNS)


def aggregate_metrics(samples: Sequence[PerformanceMetricSample]) -> Dict[str, Dict[str, MetricAggregate]]:
    """
    Aggregate samples per version and metric.

    Returns:
        version -> metric name -> MetricAggregate
    """
    df = samples_to_frame(samples)
    if df.empty:
        return {}

    grouped = df.groupby(["version", "metric_name"]).agg(
        average=("value", "mean"),
        count=("value", "size"),
        total_sample_size=("sample_size", "sum"),
    )

    result: Dict[str, Dict[str, MetricAggregate]] = {}
    for (version, metric_name), row in grouped.iterrows():
        result.setdefault(version, {})[metric_name] = MetricAggregate(
            average=float(row["average"]),
            count=int(row["count"]),
            total_sample_size=int(row["total_sample_size"]),
        )
    return result


def is_higher_better(metric_name: str, keywords: Sequence[str] = DEFAULT_HIGHER_IS_BETTER) -> bool:
    """Whether larger values of a metric are better."""
    name = metric_name.lower()
    return any(keyword in name for keyword in keywords)


def determine_winner(
    metrics: Dict[str, Dict[str, MetricAggregate]],
    version_a: str,
    version_b: str,
    primary_metric: Optional[str],
    keywords: Sequence[str] = DEFAULT_HIGHER_IS_BETTER
) -> Winner:
    """
    Compare two versions on the primary metric.

    Args:
        metrics: Output of aggregate_metrics()
        version_a: Control version
        version_b: Treatment version
        primary_metric: Metric to compare on
        keywords: Substrings marking higher-is-better metrics

    Returns:
        Winner
    """
    if not primary_metric:
        return Winner.INCONCLUSIVE

    a = metrics.get(version_a, {}).get(primary_metric)
    b = metrics.get(version_b, {}).get(primary_metric)
    if a is None or b is None or a.average == b.average:
        return Winner.INCONCLUSIVE

    if is_higher_better(primary_metric, keywords):
        return Winner.VERSION_A if a.average > b.average else Winner.VERSION_B
    return Winner.VERSION_A if a.average < b.average else Winner.VERSION_B


def analyze_ab_test(
    test: ABTest,
    assignments: Sequence[UserAssignment],
    samples: Sequence[PerformanceMetricSample],
    min_sample_size: int = DEFAULT_MIN_SAMPLE_SIZE,
    keywords: Sequence[str] = DEFAULT_HIGHER_IS_BETTER
) -> ABTestAnalytics:
    """
    Build the analytics snapshot of a test.

    Args:
        test: The A/B test
        assignments: Assignments the test created
        samples: Metric samples of the test's role
        min_sample_size: Assignments required for an adequate sample
        keywords: Substrings marking higher-is-better metrics

    Returns:
        ABTestAnalytics instance
    """
    counts = {test.version_a: 0, test.version_b: 0}
    for assignment in assignments:
        counts[assignment.assigned_version] = counts.get(assignment.assigned_version, 0) + 1

    total = sum(counts.values())
    actual_split = counts[test.version_b] / total if total else None

    relevant = [s for s in samples if s.version in (test.version_a, test.version_b)]
    metrics = aggregate_metrics(relevant)
    winner = determine_winner(metrics, test.version_a, test.version_b, test.primary_metric, keywords)

    return ABTestAnalytics(
        test_id=test.id,
        version_a=test.version_a,
        version_b=test.version_b,
        expected_split=test.traffic_split,
        assignments=counts,
        actual_split=actual_split,
        metrics=metrics,
        sample_size_adequate=total >= min_sample_size,
        winner=winner,
        primary_metric=test.primary_metric,
    )


def summarize_performance(samples: Sequence[PerformanceMetricSample]) -> pd.DataFrame:
    """
    Group samples by role, version and metric.

    Returns:
        DataFrame with columns role, version, metric_name, average, count,
        total_sample_size, first_day, last_day
    """
    df = samples_to_frame(samples)
    columns = ["role", "version", "metric_name", "average", "count",
               "total_sample_size", "first_day", "last_day"]
    if df.empty:
        return pd.DataFrame(columns=columns)

    summary = (
        df.groupby(["role", "version", "metric_name"])
        .agg(
            average=("value", "mean"),
            count=("value", "size"),
            total_sample_size=("sample_size", "sum"),
            first_day=("measured_on", "min"),
            last_day=("measured_on", "max"),
        )
        .reset_index()
    )
    return summary[columns]
