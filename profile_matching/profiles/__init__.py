"""Feature vector and profile record types."""

from .schema import (
    DIMENSIONS,
    FeatureVector,
    ProfileRecord,
    vectors_to_matrix,
)

__all__ = ["DIMENSIONS", "FeatureVector", "ProfileRecord", "vectors_to_matrix"]
