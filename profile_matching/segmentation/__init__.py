"""Population segmentation (k-means style clustering)."""

from .clustering import PopulationSegmenter, ClusteringResult, cluster

__all__ = ["PopulationSegmenter", "ClusteringResult", "cluster"]
