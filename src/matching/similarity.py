"""
"Similar people" search over profile embeddings.

The query vector is the user's adaptive embedding (profile blended with
behaviour), so results drift toward what a user actually searches for and
saves. Candidates come from the store's nearest-neighbour lookup and are
filtered, ranked and annotated with a 0-100 similarity percentage.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from src.behavior.tracker import BehaviorTracker
from src.config import SearchConfig
from src.errors import MissingEmbeddingError
from src.profiles.embeddings import EmbeddingGenerator
from src.profiles.models import Profile
from src.profiles.text_builder import build_contextual_query, is_complete_profile

logger = logging.getLogger(__name__)


@dataclass
class SimilarMatch:
    """One ranked candidate."""
    profile: Profile
    similarity: float

    @property
    def similarity_pct(self) -> int:
        return int(round(100 * self.similarity))

    def to_dict(self) -> Dict[str, Any]:
        data = self.profile.to_summary()
        data['similarity'] = self.similarity_pct
        return data


def rank_candidates(
    candidates: Sequence[Tuple[Profile, float]],
    requester_id: str,
    threshold: float,
    limit: int
) -> List[SimilarMatch]:
    """
    Filter and order raw nearest-neighbour candidates.

    Drops the requester, anything below threshold, and profiles that are not
    opted in or not complete. Sorted by similarity, highest first.
    """
    matches = [
        SimilarMatch(profile=profile, similarity=similarity)
        for profile, similarity in candidates
        if profile.user_id != requester_id
        and similarity >= threshold
        and profile.opted_in
        and is_complete_profile(profile)
    ]
    matches.sort(key=lambda m: m.similarity, reverse=True)
    return matches[:limit]


class SimilaritySearch:
    """
    Finds members similar to a given user.

    Args:
        store: Data access object providing get_profile, get_behavior and
            find_nearest_profiles
        embedder: EmbeddingGenerator for free-text queries
        tracker: BehaviorTracker used to compute adaptive embeddings
        config: Thresholds and limits
    """

    def __init__(
        self,
        store,
        embedder: Optional[EmbeddingGenerator] = None,
        tracker: Optional[BehaviorTracker] = None,
        config: Optional[SearchConfig] = None
    ):
        self.store = store
        self.embedder = embedder or EmbeddingGenerator()
        self.tracker = tracker or BehaviorTracker(store, self.embedder)
        self.config = config or SearchConfig.from_env()

    def find_similar(self, user_id: str) -> List[SimilarMatch]:
        """
        Most similar members to user_id, never including user_id.

        Raises:
            MissingEmbeddingError: If the user has no usable profile embedding
        """
        query_vector = self.tracker.get_adaptive_embedding(user_id)
        if query_vector is None:
            raise MissingEmbeddingError(user_id)

        candidates = self.store.find_nearest_profiles(
            query_vector,
            similarity_threshold=self.config.similarity_threshold,
            limit=self.config.fetch_limit,
        )
        matches = rank_candidates(
            candidates, user_id, self.config.similarity_threshold, self.config.result_limit
        )

        logger.info(f"Found {len(matches)} similar profiles for {user_id}")
        return matches

    def search_by_query(self, user_id: str, query: str) -> List[SimilarMatch]:
        """
        Members matching a free-text query, in the context of who is asking.

        Returns:
            Ranked matches, or an empty list when the query cannot be embedded
        """
        profile = self.store.get_profile(user_id) or Profile(user_id=user_id)
        contextual = build_contextual_query(query, profile)

        result = self.embedder.generate(contextual)
        if not result.ok:
            logger.warning(f"Could not embed query for {user_id} ({result.error}): {result.message}")
            return []

        candidates = self.store.find_nearest_profiles(
            np.asarray(result.vector),
            similarity_threshold=self.config.query_threshold,
            limit=self.config.query_limit,
        )
        matches = rank_candidates(
            candidates, user_id, self.config.query_threshold, self.config.query_limit
        )

        logger.info(f"Query search for {user_id} returned {len(matches)} matches: \"{query}\"")
        return matches
