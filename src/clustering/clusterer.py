"""
Core community clustering using K-Means with adaptive k.

Partitions an organization's profile embeddings into quality-scored groups:
- k chosen by silhouette score over a candidate range (k-means++ init)
- per-cluster outlier filtering at mean + 1.5 standard deviations
- clusters below the minimum size are discarded
- keywords extracted from surviving members' identity text
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from sklearn.cluster import KMeans
from sklearn.metrics import pairwise_distances, silhouette_score
from sklearn.preprocessing import normalize

from src.behavior.models import UserBehavior
from src.behavior.tracker import behavior_weight, blend_embeddings
from src.config import BehaviorConfig, ClusteringConfig
from src.profiles.models import Profile
from src.profiles.text_builder import is_complete_profile

from .keywords import extract_keywords

logger = logging.getLogger(__name__)

STATUS_OK = 'ok'
STATUS_EMPTY = 'empty'
STATUS_INSUFFICIENT = 'insufficient_profiles'


@dataclass
class KCandidate:
    """One K-Means fit tried during k selection."""
    k: int
    score: float
    labels: np.ndarray
    centroids: np.ndarray


@dataclass
class DetectedCluster:
    """A surviving cluster before labelling."""
    index: int
    members: List[Profile]
    keywords: List[str]
    centroid: np.ndarray
    distance_threshold: float
    recent_topics: Dict[str, List[str]] = field(default_factory=dict)

    @property
    def member_ids(self) -> List[str]:
        return [m.user_id for m in self.members]


@dataclass
class ClusteringResult:
    """Outcome of one clustering pass over a scope."""
    status: str
    n_profiles: int
    k: Optional[int] = None
    silhouette_score: Optional[float] = None
    quality: Optional[str] = None
    silhouette_by_k: Dict[int, float] = field(default_factory=dict)
    clusters: List[DetectedCluster] = field(default_factory=list)
    outlier_ids: List[str] = field(default_factory=list)
    discarded_clusters: int = 0

    def to_stats(self) -> Dict[str, object]:
        return {
            'status': self.status,
            'n_profiles': self.n_profiles,
            'k': self.k,
            'silhouette_score': self.silhouette_score,
            'quality': self.quality,
            'n_clusters': len(self.clusters),
            'n_outliers': len(self.outlier_ids),
            'discarded_clusters': self.discarded_clusters,
        }


def silhouette_quality(score: Optional[float]) -> str:
    """Interpretation band for a mean silhouette score."""
    if score is None:
        return 'unknown'
    if score >= 0.50:
        return 'strong'
    if score >= 0.35:
        return 'moderate'
    if score >= 0.20:
        return 'weak'  # typical for multidisciplinary communities
    return 'poor'


def stride_sample(n: int, sample_size: int) -> np.ndarray:
    """Deterministic evenly spaced indices, at most sample_size of them."""
    if n <= sample_size:
        return np.arange(n)
    return np.unique(np.linspace(0, n - 1, sample_size).round().astype(int))


def sampled_silhouette(X: np.ndarray, labels: np.ndarray, sample_idx: np.ndarray) -> float:
    """
    Mean silhouette of the sampled points, each measured against all points.

    For point i: a = mean distance to the rest of its cluster, b = lowest mean
    distance to another cluster, s = (b - a) / max(a, b). Points alone in
    their cluster, or with no other cluster to compare to, score 0.
    """
    unique = np.unique(labels)
    distances = pairwise_distances(X[sample_idx], X, metric='euclidean')

    scores = []
    for row, i in zip(distances, sample_idx):
        own_mask = labels == labels[i]
        own_size = int(own_mask.sum())
        others = [c for c in unique if c != labels[i]]

        if own_size <= 1 or not others:
            scores.append(0.0)
            continue

        a = row[own_mask].sum() / (own_size - 1)
        b = min(row[labels == c].mean() for c in others)
        denom = max(a, b)
        scores.append(0.0 if denom == 0 else (b - a) / denom)

    return float(np.mean(scores)) if scores else 0.0


def select_best_candidate(candidates: Sequence[KCandidate]) -> KCandidate:
    """Highest score wins; on ties the earliest candidate is kept."""
    best = candidates[0]
    for candidate in candidates[1:]:
        if candidate.score > best.score:
            best = candidate
    return best


def filter_outliers(
    X: np.ndarray,
    labels: np.ndarray,
    centroids: np.ndarray,
    std_multiplier: float = 1.5
) -> Tuple[np.ndarray, Dict[int, float]]:
    """
    Flag members that sit too far from their cluster's centroid.

    Returns:
        Tuple of (keep mask, per-cluster distance threshold). A member is kept
        when its distance is at most mean + std_multiplier * std of its own
        cluster's distances.
    """
    distances = np.linalg.norm(X - centroids[labels], axis=1)
    keep = np.zeros(len(X), dtype=bool)
    thresholds = {}

    for cluster in np.unique(labels):
        mask = labels == cluster
        cluster_distances = distances[mask]
        threshold = float(cluster_distances.mean() + std_multiplier * cluster_distances.std())
        thresholds[int(cluster)] = threshold
        keep[mask] = cluster_distances <= threshold

    return keep, thresholds


class ClusterEngine:
    """
    Batch clustering for one organizational scope.

    Args:
        config: Clustering settings (candidate k range, thresholds, seed)
        behavior_config: Blend weights used when clustering adaptive vectors
    """

    def __init__(
        self,
        config: Optional[ClusteringConfig] = None,
        behavior_config: Optional[BehaviorConfig] = None
    ):
        self.config = config or ClusteringConfig.from_env()
        self.behavior_config = behavior_config or BehaviorConfig()

        logger.info(
            f"Initialized ClusterEngine: k={self.config.k_min}-{self.config.k_max}, "
            f"min_profiles={self.config.min_profiles}, "
            f"adaptive={self.config.use_adaptive_embeddings}"
        )

    def eligible_profiles(self, profiles: Sequence[Profile]) -> List[Profile]:
        """Opted-in, complete profiles with an embedding of the dominant dimensionality."""
        candidates = [
            p for p in profiles
            if p.opted_in and p.embedding is not None and is_complete_profile(p)
        ]
        if not candidates:
            return []

        sizes = [p.embedding.size for p in candidates]
        dimension = max(set(sizes), key=sizes.count)
        eligible = [p for p in candidates if p.embedding.size == dimension]

        if len(eligible) < len(candidates):
            logger.warning(f"Dropped {len(candidates) - len(eligible)} profiles with mismatched embedding size")
        return eligible

    def candidate_k_values(self, n_samples: int) -> List[int]:
        upper = min(self.config.k_max, n_samples // self.config.min_cluster_size, n_samples - 1)
        lower = max(2, self.config.k_min)
        return list(range(lower, upper + 1))

    def _clustering_vectors(
        self,
        profiles: Sequence[Profile],
        behaviors: Dict[str, UserBehavior]
    ) -> np.ndarray:
        vectors = []
        for profile in profiles:
            vector = profile.embedding
            behavior = behaviors.get(profile.user_id)
            if self.config.use_adaptive_embeddings and behavior is not None:
                weight = behavior_weight(behavior.engagement_score, self.behavior_config)
                vector = blend_embeddings(vector, behavior.adaptive_vector, weight)
            vectors.append(vector)
        return normalize(np.vstack(vectors), norm='l2')

    def _fit_kmeans(self, X: np.ndarray, k: int) -> Tuple[np.ndarray, np.ndarray]:
        model = KMeans(
            n_clusters=k,
            init='k-means++',
            n_init=1,
            random_state=self.config.random_state,
        )
        labels = model.fit_predict(X)
        return labels, model.cluster_centers_

    def select_k(self, X: np.ndarray) -> Tuple[KCandidate, Dict[int, float]]:
        """
        Fit every candidate k and keep the one with the best sampled silhouette.

        Raises:
            ValueError: If the population is too small for any candidate k
        """
        k_values = self.candidate_k_values(len(X))
        if not k_values:
            raise ValueError(f"No valid k for {len(X)} samples")

        sample_idx = stride_sample(len(X), self.config.search_sample_size)
        candidates = []

        logger.info(f"Testing k in {k_values} to optimize cluster quality...")
        for k in k_values:
            labels, centroids = self._fit_kmeans(X, k)
            score = sampled_silhouette(X, labels, sample_idx)
            candidates.append(KCandidate(k=k, score=score, labels=labels, centroids=centroids))
            logger.info(f"  k={k}: silhouette = {score:.3f}")

        best = select_best_candidate(candidates)
        logger.info(f"✅ Selected k={best.k} (best silhouette score: {best.score:.3f})")
        return best, {c.k: c.score for c in candidates}

    def full_silhouette(self, X: np.ndarray, labels: np.ndarray) -> float:
        """Silhouette over all points, sampled once the population is large."""
        n_labels = len(np.unique(labels))
        if len(X) > self.config.full_silhouette_limit or not 2 <= n_labels <= len(X) - 1:
            sample_idx = stride_sample(len(X), self.config.full_silhouette_limit)
            return sampled_silhouette(X, labels, sample_idx)
        return float(silhouette_score(X, labels, metric='euclidean'))

    def detect(
        self,
        profiles: Sequence[Profile],
        behaviors: Optional[Dict[str, UserBehavior]] = None
    ) -> ClusteringResult:
        """
        Cluster a scope's profiles.

        Args:
            profiles: Candidate profiles; ineligible ones are filtered here
            behaviors: UserBehavior by user_id, used for adaptive vectors and
                recent search terms when adaptive mode is on

        Returns:
            ClusteringResult; status is 'insufficient_profiles' below the
            population floor and 'empty' when no cluster survives filtering
        """
        behaviors = behaviors or {}
        eligible = self.eligible_profiles(profiles)
        n = len(eligible)
        logger.info(f"Filtered to {n} eligible profiles (from {len(profiles)} total)")

        if n < self.config.min_profiles:
            logger.info(f"Too few complete profiles ({n}), skipping clustering")
            return ClusteringResult(status=STATUS_INSUFFICIENT, n_profiles=n)

        X = self._clustering_vectors(eligible, behaviors)
        best, scores = self.select_k(X)

        score = self.full_silhouette(X, best.labels)
        quality = silhouette_quality(score)
        logger.info(f"📊 Silhouette score: {score:.3f} ({quality})")

        keep, thresholds = filter_outliers(
            X, best.labels, best.centroids, self.config.outlier_std_multiplier
        )
        logger.info(f"Filtered {int(keep.sum())} good fits from {n} total ({int((~keep).sum())} outliers excluded)")

        include_topics = self.config.use_adaptive_embeddings
        clusters = []
        discarded = 0

        for cluster in range(best.k):
            member_idx = np.where((best.labels == cluster) & keep)[0]
            if len(member_idx) < self.config.min_cluster_size:
                logger.info(f"  Cluster {cluster}: too small ({len(member_idx)}), skipping")
                discarded += 1
                continue

            members = [eligible[i] for i in member_idx]
            topics = {
                m.user_id: list(behaviors[m.user_id].recent_search_terms)
                for m in members
                if include_topics and m.user_id in behaviors
            }
            texts = [f"{m.background} {m.expertise} {m.interests}" for m in members]
            texts.extend(' '.join(terms) for terms in topics.values())

            keywords = extract_keywords(texts, self.config.top_keywords)
            if not keywords:
                logger.info(f"  Cluster {cluster}: no keywords found, skipping")
                discarded += 1
                continue

            clusters.append(DetectedCluster(
                index=cluster,
                members=members,
                keywords=keywords,
                centroid=best.centroids[cluster],
                distance_threshold=thresholds[cluster],
                recent_topics=topics,
            ))

        outlier_ids = [eligible[i].user_id for i in np.where(~keep)[0]]
        status = STATUS_OK if clusters else STATUS_EMPTY

        logger.info(f"Clustering complete: {len(clusters)} clusters kept, {discarded} discarded")

        return ClusteringResult(
            status=status,
            n_profiles=n,
            k=best.k,
            silhouette_score=score,
            quality=quality,
            silhouette_by_k=scores,
            clusters=clusters,
            outlier_ids=outlier_ids,
            discarded_clusters=discarded,
        )
