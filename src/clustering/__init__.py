"""
Community clustering for organizational scopes.

Groups opted-in members by identity embedding using K-Means with an adaptive
k, labels each group via the LLM layer, and persists clusters per scope.

Runs as an offline batch job:
    python3 -m src.clustering [--org-id ORG_ID] [--dry-run] [--adaptive]
"""

from .clusterer import ClusterEngine, ClusteringResult, DetectedCluster
from .labeler import ClusterLabeler
from .store import ClusterRecord, ClusterStore

__all__ = [
    'ClusterEngine',
    'ClusteringResult',
    'DetectedCluster',
    'ClusterLabeler',
    'ClusterRecord',
    'ClusterStore',
]
