"""
Behaviour tracking with online vector blending.

Each user has an adaptive vector that starts from what they search for or
save and then follows an exponential moving average:

    new = alpha * signal + (1 - alpha) * old

Searches pull with alpha=0.2, saves with alpha=0.3. Views only count toward
engagement. Tracking is best-effort: the public track_* methods never raise,
so a tracking failure cannot break the user action that triggered it.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

import numpy as np

from src.config import BehaviorConfig
from src.errors import ErrorKind
from src.profiles.embeddings import EmbeddingGenerator

from .models import UserBehavior

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TrackingOutcome:
    """Result of one tracking call."""
    recorded: bool
    behavior: Optional[UserBehavior] = None
    error: Optional[ErrorKind] = None
    message: str = ""


def calculate_engagement_score(total_searches: int, total_saves: int, total_views: int) -> int:
    """
    Engagement on a 0-100 scale.

    Saves weigh most per action (5 points, capped at 40), then searches
    (2 points, capped at 30), then profile views (1 point, capped at 30).
    """
    score = 0
    score += min(30, total_searches * 2)
    score += min(40, total_saves * 5)
    score += min(30, total_views * 1)
    return max(0, min(100, score))


def ema_blend(old: Optional[np.ndarray], signal: Optional[np.ndarray], alpha: float) -> Optional[np.ndarray]:
    """
    Blend a signal into an existing vector.

    A missing old vector is seeded with the signal; a missing signal (or one
    of a different dimensionality) leaves the old vector unchanged.
    """
    if signal is None:
        return old
    if old is None:
        return np.array(signal, dtype=np.float64)
    if old.shape != signal.shape:
        logger.warning(f"Skipping blend of mismatched vectors {signal.shape} into {old.shape}")
        return old
    return alpha * signal + (1.0 - alpha) * old


def _refresh_engagement(behavior: UserBehavior, now: datetime) -> UserBehavior:
    behavior.engagement_score = calculate_engagement_score(
        behavior.total_searches, behavior.total_saves, behavior.total_profile_views
    )
    behavior.last_interaction = now
    return behavior


def apply_search(
    behavior: Optional[UserBehavior],
    user_id: str,
    query: str,
    query_vector: Optional[np.ndarray],
    config: BehaviorConfig,
    now: datetime
) -> UserBehavior:
    """State transition for a search."""
    if behavior is None:
        behavior = UserBehavior(user_id=user_id, adaptive_vector=query_vector)
    else:
        behavior.adaptive_vector = ema_blend(behavior.adaptive_vector, query_vector, config.search_alpha)

    behavior.recent_search_terms = ([query] + list(behavior.recent_search_terms))[:config.max_recent_searches]
    behavior.total_searches += 1
    return _refresh_engagement(behavior, now)


def apply_save(
    behavior: Optional[UserBehavior],
    user_id: str,
    saved_vector: Optional[np.ndarray],
    config: BehaviorConfig,
    now: datetime
) -> UserBehavior:
    """State transition for saving another member's profile."""
    if behavior is None:
        behavior = UserBehavior(user_id=user_id)
    behavior.adaptive_vector = ema_blend(behavior.adaptive_vector, saved_vector, config.save_alpha)
    behavior.total_saves += 1
    return _refresh_engagement(behavior, now)


def apply_view(behavior: Optional[UserBehavior], user_id: str, now: datetime) -> UserBehavior:
    """State transition for viewing another member's profile."""
    if behavior is None:
        behavior = UserBehavior(user_id=user_id)
    behavior.total_profile_views += 1
    return _refresh_engagement(behavior, now)


def behavior_weight(engagement_score: int, config: BehaviorConfig) -> float:
    """Share of the effective search identity driven by behaviour (0.2 to 0.4)."""
    return min(
        config.max_behavior_weight,
        config.base_behavior_weight + config.behavior_weight_per_point * (engagement_score or 0),
    )


def blend_embeddings(
    profile_vector: np.ndarray,
    behavior_vector: Optional[np.ndarray],
    weight: float
) -> np.ndarray:
    """(1 - weight) * profile + weight * behaviour; profile alone if behaviour is unusable."""
    if behavior_vector is None or behavior_vector.shape != profile_vector.shape:
        return profile_vector
    return (1.0 - weight) * profile_vector + weight * behavior_vector


class BehaviorTracker:
    """
    Maintains UserBehavior records from searches, saves and views.

    Args:
        store: Data access object (FirestoreStore or a test double) providing
            get_behavior, save_behavior and get_profile
        embedder: EmbeddingGenerator used for search queries
        config: Online-learning constants
        clock: Returns the current time (injectable for tests)
    """

    def __init__(
        self,
        store,
        embedder: EmbeddingGenerator,
        config: Optional[BehaviorConfig] = None,
        clock: Callable[[], datetime] = _utcnow
    ):
        self.store = store
        self.embedder = embedder
        self.config = config or BehaviorConfig()
        self.clock = clock

    def track_search(self, user_id: str, query: str) -> TrackingOutcome:
        try:
            result = self.embedder.generate(query)
            if not result.ok:
                logger.warning(f"No embedding for search by {user_id} ({result.error}); counting search only")

            behavior = apply_search(
                self.store.get_behavior(user_id), user_id, query, result.vector, self.config, self.clock()
            )
            self.store.save_behavior(behavior)

            logger.info(f"✅ Tracked search for user {user_id}: \"{query}\"")
            return TrackingOutcome(recorded=True, behavior=behavior, error=result.error)

        except Exception as e:
            logger.error(f"Error tracking search for user {user_id}: {e}", exc_info=True)
            return TrackingOutcome(recorded=False, error=ErrorKind.EXTERNAL_SERVICE_FAILURE, message=str(e))

    def track_save(self, user_id: str, saved_user_id: str) -> TrackingOutcome:
        try:
            saved_profile = self.store.get_profile(saved_user_id)
            saved_vector = saved_profile.embedding if saved_profile else None
            error = None
            if saved_vector is None:
                logger.warning(f"Saved profile {saved_user_id} has no usable embedding; counting save only")
                error = ErrorKind.MALFORMED_VECTOR

            behavior = apply_save(
                self.store.get_behavior(user_id), user_id, saved_vector, self.config, self.clock()
            )
            self.store.save_behavior(behavior)

            logger.info(f"✅ Tracked save for user {user_id}: engagement={behavior.engagement_score}")
            return TrackingOutcome(recorded=True, behavior=behavior, error=error)

        except Exception as e:
            logger.error(f"Error tracking save for user {user_id}: {e}", exc_info=True)
            return TrackingOutcome(recorded=False, error=ErrorKind.EXTERNAL_SERVICE_FAILURE, message=str(e))

    def track_view(self, user_id: str, viewed_user_id: str) -> TrackingOutcome:
        try:
            behavior = apply_view(self.store.get_behavior(user_id), user_id, self.clock())
            self.store.save_behavior(behavior)

            logger.debug(f"Tracked view of {viewed_user_id} by {user_id}")
            return TrackingOutcome(recorded=True, behavior=behavior)

        except Exception as e:
            logger.error(f"Error tracking view for user {user_id}: {e}", exc_info=True)
            return TrackingOutcome(recorded=False, error=ErrorKind.EXTERNAL_SERVICE_FAILURE, message=str(e))

    def get_adaptive_embedding(self, user_id: str) -> Optional[np.ndarray]:
        """
        Profile embedding blended with the user's behaviour vector.

        Returns:
            Blended vector, the profile vector alone when there is no behaviour
            record, or None when the profile has no embedding
        """
        profile = self.store.get_profile(user_id)
        if profile is None or profile.embedding is None:
            return None

        behavior = self.store.get_behavior(user_id)
        if behavior is None or behavior.adaptive_vector is None:
            return profile.embedding

        weight = behavior_weight(behavior.engagement_score, self.config)
        return blend_embeddings(profile.embedding, behavior.adaptive_vector, weight)
