"""
Evaluation metrics for neighbour search and segmentation.

There are NO ground-truth "similar user" labels, so evaluation focuses on:
1. Similarity distribution of returned neighbours
2. Search behaviour (result counts, how far thresholds relax, top-ups)
3. Archetype agreement between targets and their neighbours
4. Sanity checks (the archetype bonus should not scramble the base ranking)
5. Cluster quality of a segmentation (silhouette on the weighted distance)

This module DOES NOT claim that matches are good matches in the real world.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Any, Optional, Sequence

import numpy as np
from scipy.stats import spearmanr
from sklearn.metrics import silhouette_score

from ..profiles.schema import ProfileRecord
from ..search.insights import match_quality
from ..search.neighbors import NeighborSearch, SearchOptions
from ..segmentation.clustering import ClusteringResult
from ..similarity.metrics import SimilarityEngine

logger = logging.getLogger(__name__)


@dataclass
class ScoreDistributionStats:
    """Statistics about a similarity distribution."""
    mean: float
    std: float
    min: float
    max: float
    quantiles: Dict[str, float]  # e.g., {"p10": 0.2, "p50": 0.5, "p90": 0.8}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mean": float(self.mean),
            "std": float(self.std),
            "min": float(self.min),
            "max": float(self.max),
            "quantiles": {k: float(v) for k, v in self.quantiles.items()}
        }


@dataclass
class SearchBehaviour:
    """How searches over a population reached their results."""
    n_searches: int
    mean_results: float
    empty_rate: float
    topped_up_rate: float
    mean_match_quality: float
    threshold_counts: Dict[str, int]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "n_searches": int(self.n_searches),
            "mean_results": float(self.mean_results),
            "empty_rate": float(self.empty_rate),
            "topped_up_rate": float(self.topped_up_rate),
            "mean_match_quality": float(self.mean_match_quality),
            "threshold_counts": dict(self.threshold_counts),
        }


@dataclass
class BonusRankCheck:
    """Agreement between base-similarity and final-similarity rankings."""
    spearman: float
    is_consistent: bool
    n_pairs: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "spearman": float(self.spearman),
            "is_consistent": bool(self.is_consistent),
            "n_pairs": int(self.n_pairs),
        }


@dataclass
class ClusterQuality:
    """Quality of a segmentation."""
    n_clusters: int
    cluster_sizes: List[int]
    silhouette: Optional[float]
    converged: bool
    iterations: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "n_clusters": int(self.n_clusters),
            "cluster_sizes": [int(s) for s in self.cluster_sizes],
            "silhouette": None if self.silhouette is None else float(self.silhouette),
            "converged": bool(self.converged),
            "iterations": int(self.iterations),
        }


@dataclass
class SearchQualityReport:
    """
    Complete evaluation report for a search configuration.

    Documents search behaviour WITHOUT claiming the matches are correct.
    """
    name: str
    distribution_stats: Optional[ScoreDistributionStats]
    behaviour: SearchBehaviour
    bonus_check: Optional[BonusRankCheck] = None
    cluster_quality: Optional[ClusterQuality] = None
    additional_metrics: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "name": self.name,
            "behaviour": self.behaviour.to_dict(),
            "additional_metrics": self.additional_metrics
        }
        if self.distribution_stats:
            result["distribution_stats"] = self.distribution_stats.to_dict()
        if self.bonus_check:
            result["bonus_check"] = self.bonus_check.to_dict()
        if self.cluster_quality:
            result["cluster_quality"] = self.cluster_quality.to_dict()
        return result

    def save(self, filepath: str) -> None:
        """Save report to JSON file."""
        Path(filepath).parent.mkdir(parents=True, exist_ok=True)
        with open(filepath, "w") as f:
            json.dump(self.to_dict(), f, indent=2)
        logger.info(f"Saved search quality report to {filepath}")

    def summary(self) -> str:
        """Generate text summary of the report."""
        lines = [
            f"Search Quality Report: {self.name}",
            "=" * 50,
            "",
            f"Searches: {self.behaviour.n_searches}",
            f"  Mean results:       {self.behaviour.mean_results:.2f}",
            f"  Empty rate:         {self.behaviour.empty_rate:.2%}",
            f"  Topped-up rate:     {self.behaviour.topped_up_rate:.2%}",
            f"  Mean match quality: {self.behaviour.mean_match_quality:.2%}",
            "  Threshold reached:",
        ]
        for threshold, count in sorted(self.behaviour.threshold_counts.items(), reverse=True):
            lines.append(f"    {threshold}: {count}")

        if self.distribution_stats:
            lines.extend([
                "",
                "Neighbour Similarity:",
                f"  Mean: {self.distribution_stats.mean:.4f}",
                f"  Std:  {self.distribution_stats.std:.4f}",
                f"  Min:  {self.distribution_stats.min:.4f}",
                f"  Max:  {self.distribution_stats.max:.4f}",
            ])
            for q_name, q_value in self.distribution_stats.quantiles.items():
                lines.append(f"  {q_name}: {q_value:.4f}")

        if self.bonus_check:
            lines.extend([
                "",
                "Archetype Bonus Check:",
                f"  Spearman(base, final): {self.bonus_check.spearman:.4f}",
                f"  Consistent: {self.bonus_check.is_consistent}",
            ])

        if self.cluster_quality:
            silhouette = self.cluster_quality.silhouette
            lines.extend([
                "",
                f"Segmentation ({self.cluster_quality.n_clusters} clusters):",
                f"  Sizes: {self.cluster_quality.cluster_sizes}",
                f"  Silhouette: {'n/a' if silhouette is None else f'{silhouette:.4f}'}",
                f"  Converged: {self.cluster_quality.converged} ({self.cluster_quality.iterations} iterations)",
            ])

        return "\n".join(lines)


def compute_score_distribution_stats(
    scores: np.ndarray,
    quantiles: Sequence[float] = (0.1, 0.25, 0.5, 0.75, 0.9)
) -> ScoreDistributionStats:
    """
    Compute distribution statistics for similarity scores.

    Args:
        scores: Array of similarities
        quantiles: Quantile values to compute (default: p10, p25, p50, p75, p90)

    Returns:
        ScoreDistributionStats instance

    Raises:
        ValueError: If scores is empty
    """
    scores = np.asarray(scores, dtype=float)
    if scores.size == 0:
        raise ValueError("Cannot compute distribution statistics of no scores")

    quantile_dict = {
        f"p{int(q * 100)}": float(np.percentile(scores, q * 100))
        for q in quantiles
    }

    return ScoreDistributionStats(
        mean=float(np.mean(scores)),
        std=float(np.std(scores)),
        min=float(np.min(scores)),
        max=float(np.max(scores)),
        quantiles=quantile_dict
    )


def check_bonus_rank_consistency(
    base_scores: np.ndarray,
    final_scores: np.ndarray,
    threshold: float = 0.8
) -> BonusRankCheck:
    """
    Check that the archetype bonus refines rather than overrides similarity.

    Args:
        base_scores: Metric similarities
        final_scores: Similarities after the bonus
        threshold: Spearman correlation required for "is_consistent"

    Returns:
        BonusRankCheck instance
    """
    base_scores = np.asarray(base_scores, dtype=float)
    final_scores = np.asarray(final_scores, dtype=float)
    n = len(base_scores)

    if n < 2 or np.ptp(base_scores) == 0 or np.ptp(final_scores) == 0:
        return BonusRankCheck(spearman=1.0, is_consistent=True, n_pairs=n)

    correlation, _ = spearmanr(base_scores, final_scores)
    return BonusRankCheck(
        spearman=float(correlation),
        is_consistent=bool(correlation >= threshold),
        n_pairs=n,
    )


def compute_cluster_quality(
    result: ClusteringResult,
    pool: Sequence[ProfileRecord],
    engine: SimilarityEngine
) -> ClusterQuality:
    """
    Silhouette of a segmentation on the weighted euclidean distance.

    Silhouette needs between 2 and n-1 occupied clusters; otherwise it is
    reported as None.
    """
    labels = np.asarray(result.assignments)
    occupied = len(set(labels.tolist()))

    silhouette = None
    if 2 <= occupied <= len(pool) - 1:
        distances = engine.distance_matrix([p.feature_vector for p in pool])
        silhouette = float(silhouette_score(distances, labels, metric="precomputed"))
    else:
        logger.warning(f"Silhouette undefined for {occupied} occupied clusters over {len(pool)} profiles")

    return ClusterQuality(
        n_clusters=result.n_clusters,
        cluster_sizes=result.cluster_sizes(),
        silhouette=silhouette,
        converged=result.converged,
        iterations=result.iterations,
    )


def create_search_quality_report(
    name: str,
    search: NeighborSearch,
    pool: Sequence[ProfileRecord],
    options: Optional[SearchOptions] = None,
    clustering: Optional[ClusteringResult] = None,
    max_targets: Optional[int] = None
) -> SearchQualityReport:
    """
    Leave-one-out evaluation: every profile searches the rest of the pool.

    Args:
        name: Report name
        search: Neighbour search to evaluate
        pool: Population
        options: Search options
        clustering: Segmentation of the same pool, for cluster quality
        max_targets: Evaluate only the first N profiles as targets

    Returns:
        SearchQualityReport instance
    """
    targets = list(pool) if max_targets is None else list(pool)[:max_targets]

    finals: List[float] = []
    bases: List[float] = []
    result_counts: List[int] = []
    qualities: List[float] = []
    topped_up = 0
    threshold_counts: Dict[str, int] = {}

    for target in targets:
        rest = [p for p in pool if p.id != target.id]
        outcome = search.search(target.feature_vector, rest, options)

        result_counts.append(len(outcome.results))
        qualities.append(match_quality(outcome.target_archetype, outcome.results, search.classifier))
        topped_up += int(outcome.topped_up)
        if outcome.threshold_used is not None:
            key = f"{outcome.threshold_used:.2f}"
            threshold_counts[key] = threshold_counts.get(key, 0) + 1

        for r in outcome.results:
            finals.append(r.final_similarity)
            bases.append(r.base_similarity)

    n = len(targets)
    behaviour = SearchBehaviour(
        n_searches=n,
        mean_results=float(np.mean(result_counts)) if n else 0.0,
        empty_rate=sum(1 for c in result_counts if c == 0) / n if n else 0.0,
        topped_up_rate=topped_up / n if n else 0.0,
        mean_match_quality=float(np.mean(qualities)) if n else 0.0,
        threshold_counts=threshold_counts,
    )

    report = SearchQualityReport(
        name=name,
        distribution_stats=compute_score_distribution_stats(np.array(finals)) if finals else None,
        behaviour=behaviour,
        bonus_check=check_bonus_rank_consistency(np.array(bases), np.array(finals)) if finals else None,
        cluster_quality=compute_cluster_quality(clustering, pool, search.engine) if clustering else None,
    )
    logger.info(f"Evaluated {n} searches: mean {behaviour.mean_results:.1f} results, "
                f"match quality {behaviour.mean_match_quality:.0%}")
    return report
