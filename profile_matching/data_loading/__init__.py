"""Data loading module for recorded and synthetic profiles."""

from .loaders import (
    load_profiles_csv,
    save_profiles_csv,
    profiles_to_frame,
    create_synthetic_profiles,
    ARCHETYPE_SEEDS,
)

__all__ = [
    "load_profiles_csv",
    "save_profiles_csv",
    "profiles_to_frame",
    "create_synthetic_profiles",
    "ARCHETYPE_SEEDS",
]
