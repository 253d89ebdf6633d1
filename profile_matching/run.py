"""
Offline runner for the profile matching engine.

This is the single entrypoint for exercising the engine end to end on a
population of recorded (or synthetic) profiles.

Usage:
    python -m profile_matching.run --profiles data/profiles.csv
    python -m profile_matching.run --target '{"skill_level": 8, "traditionalism": 9}'
    python -m profile_matching.run --simulate-sessions 500

The runner performs the following steps:
1. Load and validate configuration
2. Load profiles (CSV, or a synthetic demo population)
3. Classify the target and search its neighbours
4. Segment the population
5. Evaluate search behaviour and cluster quality
6. Optionally simulate an A/B test between two similarity versions
7. Save all artifacts (JSON reports, joblib segmentation)
"""

import argparse
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional

import numpy as np

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def setup_logging(log_level: str) -> None:
    """Configure logging level from config."""
    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.getLogger().setLevel(level)


def run_matching(
    config_path: Optional[str] = None,
    profiles_path: Optional[str] = None,
    target: Optional[Dict[str, Any]] = None,
    output_dir: str = "artifacts",
    seed: Optional[int] = None,
    simulate_sessions: int = 0
) -> Dict[str, Any]:
    """
    Run the engine over a population and write reports.

    Args:
        config_path: Path to a YAML configuration (packaged default when None)
        profiles_path: CSV of recorded profiles (synthetic population when None)
        target: Target vector as a mapping; the first profile when None
        output_dir: Directory for artifacts
        seed: Overrides global.random_seed
        simulate_sessions: Number of sessions for an A/B simulation (0 skips it)

    Returns:
        Dictionary with results and paths to artifacts
    """
    from .configs import load_config, validate_config
    from .data_loading import load_profiles_csv, create_synthetic_profiles
    from .evaluation import create_search_quality_report
    from .profiles import FeatureVector
    from .search import NeighborSearch, SearchOptions, build_similarity_insights
    from .segmentation import PopulationSegmenter

    # =========================================================================
    # 1. Load and validate configuration
    # =========================================================================
    logger.info("=" * 60)
    logger.info("PROFILE MATCHING RUN")
    logger.info("=" * 60)

    config = load_config(config_path)
    issues = validate_config(config)
    if issues:
        for issue in issues:
            logger.warning(f"Config issue: {issue}")

    setup_logging(config.get("global", {}).get("log_level", "INFO"))
    random_seed = seed if seed is not None else config.get("global", {}).get("random_seed", 42)

    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)

    # =========================================================================
    # 2. Load profiles
    # =========================================================================
    logger.info("STEP 1: Loading Profiles")

    if profiles_path:
        try:
            pool = load_profiles_csv(profiles_path)
        except FileNotFoundError as e:
            logger.error(f"Profile data not found: {e}")
            logger.info("Creating synthetic profiles for demonstration...")
            pool = create_synthetic_profiles(seed=random_seed)
    else:
        pool = create_synthetic_profiles(seed=random_seed)

    if not pool:
        raise ValueError("No profiles to work with")

    # =========================================================================
    # 3. Classify and search
    # =========================================================================
    logger.info("STEP 2: Neighbour Search")

    search = NeighborSearch.from_config(config)
    options = SearchOptions.from_config(config)

    if target is not None:
        target_vector = FeatureVector.from_dict(target)
        candidates = pool
    else:
        target_vector = pool[0].feature_vector
        candidates = pool[1:]

    insights = build_similarity_insights(search, target_vector, candidates, options)
    neighbours = search.find_neighbors(target_vector, candidates, options)

    # =========================================================================
    # 4. Segment the population
    # =========================================================================
    logger.info("STEP 3: Segmentation")

    n_clusters = config.get("segmentation", {}).get("n_clusters", 5)
    segmenter = PopulationSegmenter.from_config(config, engine=search.engine)
    clustering = segmenter.cluster(pool, n_clusters, random_seed=random_seed)

    segmentation_path = None
    if clustering is not None:
        segmentation_path = out / "segmentation.joblib"
        clustering.save(str(segmentation_path))

    # =========================================================================
    # 5. Evaluate
    # =========================================================================
    logger.info("STEP 4: Evaluation")

    report = create_search_quality_report("default_search", search, pool, options, clustering=clustering)
    report.save(str(out / "search_quality.json"))
    logger.info("\n" + report.summary())

    # =========================================================================
    # 6. A/B simulation
    # =========================================================================
    ab_results = None
    if simulate_sessions > 0:
        logger.info("STEP 5: A/B Simulation")
        analytics = simulate_ab_test(config, pool, simulate_sessions, random_seed)
        analytics.save(str(out / "ab_test.json"))
        logger.info("\n" + analytics.summary())
        ab_results = analytics.to_dict()

    # =========================================================================
    # 7. Save run report
    # =========================================================================
    result = {
        "run_timestamp": datetime.now().isoformat(),
        "config_path": config_path,
        "random_seed": random_seed,
        "n_profiles": len(pool),
        "target": target_vector.to_dict(),
        "insights": insights.to_dict(),
        "neighbours": [r.to_dict() for r in neighbours],
        "segmentation": clustering.to_dict() if clustering is not None else None,
        "ab_test": ab_results,
    }
    report_path = out / "report.json"
    with open(report_path, "w") as f:
        json.dump(result, f, indent=2)
    logger.info(f"Saved run report to {report_path}")

    logger.info("=" * 60)
    logger.info("RUN COMPLETE")
    logger.info("=" * 60)

    return {
        "success": True,
        "output_dir": str(out),
        "report_path": str(report_path),
        "segmentation_path": str(segmentation_path) if segmentation_path else None,
        "result": result,
    }


def simulate_ab_test(config: Dict[str, Any], pool, n_sessions: int, random_seed: int):
    """
    Run sessions through an A/B test between two similarity versions.

    Version v1.0.0 uses the configured search options; v2.0.0 doubles the
    diversity factor. Each simulated session takes a profile of the pool as
    its target.

    Returns:
        ABTestAnalytics of the simulated test
    """
    from .experiments import InMemoryStore
    from .search import SearchOptions
    from .service import MatchingService

    store = InMemoryStore(pool)
    service = MatchingService.from_config(config, store, random_seed=random_seed)
    registry = service.manager.registry

    base = SearchOptions.from_config(config).to_dict()
    treatment = dict(base, diversity_factor=min(1.0, base["diversity_factor"] * 2))
    registry.create_version("similarity", base, version="v1.0.0")
    registry.create_version("similarity", treatment, version="v2.0.0")
    registry.activate("similarity", "v1.0.0")

    test = service.manager.create_ab_test(
        "similarity", "v1.0.0", "v2.0.0",
        success_metrics=["archetype_accuracy", "match_quality"],
        name="diversity factor",
    )

    rng = np.random.RandomState(random_seed)
    for i in range(n_sessions):
        profile = pool[rng.randint(len(pool))]
        service.find_similar_profiles(f"sim_session_{i}", profile.feature_vector)

    return service.manager.evaluate_test(test.id)


def main():
    """Main entry point for the runner."""
    parser = argparse.ArgumentParser(
        description="Run the profile matching engine over a population"
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to configuration file (packaged default when omitted)"
    )
    parser.add_argument(
        "--profiles",
        type=str,
        default=None,
        help="CSV of recorded profiles (synthetic population when omitted)"
    )
    parser.add_argument(
        "--target",
        type=str,
        default=None,
        help="Target vector as JSON, e.g. '{\"skill_level\": 8}'"
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Random seed (overrides config)"
    )
    parser.add_argument(
        "--simulate-sessions",
        type=int,
        default=0,
        help="Simulate an A/B test with this many sessions"
    )
    parser.add_argument(
        "--output-dir",
        type=str,
        default="artifacts",
        help="Output directory for artifacts"
    )

    args = parser.parse_args()

    try:
        target = json.loads(args.target) if args.target else None
        result = run_matching(
            config_path=args.config,
            profiles_path=args.profiles,
            target=target,
            output_dir=args.output_dir,
            seed=args.seed,
            simulate_sessions=args.simulate_sessions,
        )
        if result["success"]:
            logger.info("Run completed successfully!")
            return 0
        logger.error("Run failed!")
        return 1
    except Exception as e:
        logger.exception(f"Run failed with error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
