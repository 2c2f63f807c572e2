"""
Runtime configuration.

Every setting comes from an environment variable with a default, mirroring
how the LLM layer resolves its model. Components take these dataclasses in
their constructors so tests can pass explicit values instead of patching the
environment.

Environment Variables:
    GCP_PROJECT: GCP project ID (default: peerlink)
    GCP_REGION: GCP region for Vertex AI (default: europe-west4)
    EMBEDDING_MODEL: Vertex AI embedding model (default: gemini-embedding-001)
    EMBEDDING_DIMENSIONS: Embedding output dimensionality (default: 768)
    CLUSTER_MIN_PROFILES: Minimum eligible profiles per scope (default: 15)
    CLUSTER_K_MIN / CLUSTER_K_MAX: Candidate k range (default: 2 / 12)
    CLUSTER_RUN_TIMEOUT: Per-scope run timeout in seconds (default: 600)
    CLUSTER_RANDOM_STATE: K-Means seed (default: 42)
    SIMILARITY_THRESHOLD: Cosine similarity floor for "similar people" (default: 0.70)
"""

import os
from dataclasses import dataclass, field
from typing import Dict


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    return int(value) if value else default


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    return float(value) if value else default


def get_gcp_config() -> tuple[str, str]:
    """
    Get GCP project and region from environment.

    Returns:
        Tuple of (project_id, region)
    """
    project = os.environ.get('GCP_PROJECT', 'peerlink')
    region = os.environ.get('GCP_REGION', 'europe-west4')
    return project, region


@dataclass
class EmbeddingConfig:
    """Embedding service settings."""
    model_name: str = "gemini-embedding-001"
    dimensions: int = 768
    max_input_chars: int = 8000
    min_input_chars: int = 3
    max_retries: int = 3
    initial_backoff: float = 1.0
    max_backoff: float = 32.0

    @classmethod
    def from_env(cls) -> "EmbeddingConfig":
        return cls(
            model_name=os.environ.get('EMBEDDING_MODEL', cls.model_name),
            dimensions=_env_int('EMBEDDING_DIMENSIONS', cls.dimensions),
        )


@dataclass
class BehaviorConfig:
    """Online-learning constants for the behaviour tracker."""
    search_alpha: float = 0.2
    save_alpha: float = 0.3
    max_recent_searches: int = 15
    base_behavior_weight: float = 0.2
    behavior_weight_per_point: float = 0.002
    max_behavior_weight: float = 0.4


@dataclass
class ClusteringConfig:
    """Batch clustering settings."""
    min_profiles: int = 15
    k_min: int = 2
    k_max: int = 12
    search_sample_size: int = 100
    full_silhouette_limit: int = 500
    outlier_std_multiplier: float = 1.5
    min_cluster_size: int = 3
    top_keywords: int = 5
    stored_keywords: int = 3
    random_state: int = 42
    run_timeout_seconds: float = 600.0
    lease_seconds: float = 900.0
    lease_margin_seconds: float = 300.0
    keep_previous_on_empty: bool = False
    use_adaptive_embeddings: bool = False

    @classmethod
    def from_env(cls) -> "ClusteringConfig":
        return cls(
            min_profiles=_env_int('CLUSTER_MIN_PROFILES', cls.min_profiles),
            k_min=_env_int('CLUSTER_K_MIN', cls.k_min),
            k_max=_env_int('CLUSTER_K_MAX', cls.k_max),
            random_state=_env_int('CLUSTER_RANDOM_STATE', cls.random_state),
            run_timeout_seconds=_env_float('CLUSTER_RUN_TIMEOUT', cls.run_timeout_seconds),
        )

    @property
    def effective_lease_seconds(self) -> float:
        """Lease length that always outlives a run, including the write after the last deadline check."""
        return max(self.lease_seconds, self.run_timeout_seconds + self.lease_margin_seconds)


@dataclass
class SearchConfig:
    """Nearest-neighbour search settings."""
    similarity_threshold: float = 0.70
    fetch_limit: int = 50
    result_limit: int = 30
    query_threshold: float = 0.60
    query_limit: int = 20

    @classmethod
    def from_env(cls) -> "SearchConfig":
        return cls(
            similarity_threshold=_env_float('SIMILARITY_THRESHOLD', cls.similarity_threshold),
        )


DEFAULT_COLLECTIONS: Dict[str, str] = {
    'profiles': 'profiles',
    'organizations': 'organizations',
    'organization_members': 'organization_members',
    'user_behavior': 'user_behavior',
    'clusters': 'community_clusters',
    'cluster_members': 'cluster_members',
    'cluster_scopes': 'cluster_scopes',
    'cluster_locks': 'cluster_locks',
}


@dataclass
class StoreConfig:
    """Firestore collection names (override with FIRESTORE_<NAME>_COLLECTION)."""
    collections: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_COLLECTIONS))

    @classmethod
    def from_env(cls) -> "StoreConfig":
        collections = {
            key: os.environ.get(f'FIRESTORE_{key.upper()}_COLLECTION', default)
            for key, default in DEFAULT_COLLECTIONS.items()
        }
        return cls(collections=collections)

    def name(self, key: str) -> str:
        return self.collections[key]
