"""Evaluation module for neighbour search and segmentation analysis."""

from .metrics import (
    compute_score_distribution_stats,
    check_bonus_rank_consistency,
    compute_cluster_quality,
    SearchQualityReport,
    create_search_quality_report
)

__all__ = [
    "compute_score_distribution_stats",
    "check_bonus_rank_consistency",
    "compute_cluster_quality",
    "SearchQualityReport",
    "create_search_quality_report"
]
