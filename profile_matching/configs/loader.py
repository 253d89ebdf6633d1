"""
Configuration loading and validation.

This module handles loading of YAML configuration files and
validates that all required fields are present. When no path is given,
the packaged default configuration is used.
"""

import copy
import logging
from pathlib import Path
from typing import Dict, Any, List, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent / "default.yaml"

KNOWN_METRICS = ["weighted_euclidean", "cosine", "manhattan", "pearson"]
KNOWN_ROLES = ["scoring", "question_selection", "similarity"]

_default_cache: Optional[Dict[str, Any]] = None


def load_config(filepath: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from YAML file.

    Args:
        filepath: Path to the YAML configuration file. If None, the
            packaged default.yaml is loaded.

    Returns:
        Configuration dictionary

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
    """
    path = Path(filepath) if filepath is not None else DEFAULT_CONFIG_PATH
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    logger.info(f"Loading configuration from {path}")
    with open(path, "r") as f:
        config = yaml.safe_load(f)

    if config is None:
        raise ValueError(f"Configuration file is empty: {path}")

    return config


def default_config() -> Dict[str, Any]:
    """
    Return a fresh copy of the packaged default configuration.

    The YAML file is parsed once per process; callers get a deep copy so
    they may mutate it freely.
    """
    global _default_cache
    if _default_cache is None:
        _default_cache = load_config()
    return copy.deepcopy(_default_cache)


def validate_config(config: Dict[str, Any]) -> List[str]:
    """
    Validate configuration and return list of warnings/errors.

    Args:
        config: Configuration dictionary

    Returns:
        List of warning/error messages (empty if valid)
    """
    issues = []

    # Check required top-level sections
    required_sections = ["global", "similarity", "archetypes", "search",
                         "segmentation", "registry", "experiments"]

    for section in required_sections:
        if section not in config:
            issues.append(f"Missing required section: {section}")

    if "similarity" in config:
        metric = config["similarity"].get("default_metric", "weighted_euclidean")
        if metric not in KNOWN_METRICS:
            issues.append(f"Unknown similarity.default_metric: {metric}")
        weights = config["similarity"].get("dimension_weights", {})
        for dim, weight in weights.items():
            if weight is None or weight <= 0:
                issues.append(f"Dimension weight must be positive: {dim}={weight}")

    # Relaxation ladder must descend from start to floor
    if "search" in config:
        search = config["search"]
        start = search.get("start_threshold", 0.7)
        floor = search.get("floor_threshold", 0.3)
        step = search.get("threshold_step", 0.1)
        if not 0 <= floor <= start <= 1:
            issues.append(f"Search thresholds must satisfy 0 <= floor <= start <= 1, "
                          f"got floor={floor}, start={start}")
        if step <= 0:
            issues.append(f"search.threshold_step must be positive, got {step}")
        if search.get("min_results", 3) > search.get("max_results", 10):
            issues.append("search.min_results is larger than search.max_results")
        diversity = search.get("diversity_factor", 0.1)
        if not 0 <= diversity <= 1:
            issues.append(f"search.diversity_factor must be in [0, 1], got {diversity}")

    if "archetypes" in config:
        definitions = config["archetypes"].get("definitions", [])
        if not definitions:
            issues.append("No archetype definitions configured")
        names = [d.get("name") for d in definitions]
        if len(set(names)) != len(names):
            issues.append("Archetype names must be unique")

    if "registry" in config:
        fallbacks = config["registry"].get("fallbacks", {})
        for role in KNOWN_ROLES:
            if role not in fallbacks:
                issues.append(f"Missing registry.fallbacks.{role}")

    if "experiments" in config:
        split = config["experiments"].get("default_traffic_split", 0.5)
        if not 0 <= split <= 1:
            issues.append(f"experiments.default_traffic_split must be in [0, 1], got {split}")

    # Check random seed is set
    if "global" in config:
        if "random_seed" not in config["global"]:
            issues.append("Missing global.random_seed (required for reproducibility)")

    return issues


def get_config_value(config: Dict[str, Any], path: str, default: Any = None) -> Any:
    """
    Get a nested configuration value using dot notation.

    Args:
        config: Configuration dictionary
        path: Dot-separated path (e.g., "search.floor_threshold")
        default: Default value if path doesn't exist

    Returns:
        Configuration value or default
    """
    keys = path.split(".")
    value = config
    for key in keys:
        if isinstance(value, dict) and key in value:
            value = value[key]
        else:
            return default
    return value
