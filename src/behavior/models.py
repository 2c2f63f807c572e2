"""UserBehavior record."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import numpy as np

from src.profiles.vectors import parse_vector, to_firestore_vector


@dataclass
class UserBehavior:
    """
    Per-user interaction state.

    adaptive_vector lives in the same space as profile embeddings and drifts
    toward what the user searches for and saves.
    """
    user_id: str
    adaptive_vector: Optional[np.ndarray] = None
    recent_search_terms: List[str] = field(default_factory=list)
    total_searches: int = 0
    total_saves: int = 0
    total_profile_views: int = 0
    engagement_score: int = 0
    last_interaction: Optional[datetime] = None

    @classmethod
    def from_firestore(
        cls,
        user_id: str,
        data: Dict[str, Any],
        dimensions: Optional[int] = None
    ) -> "UserBehavior":
        return cls(
            user_id=user_id,
            adaptive_vector=parse_vector(data.get('adaptive_vector'), dimensions),
            recent_search_terms=list(data.get('recent_search_terms') or []),
            total_searches=int(data.get('total_searches') or 0),
            total_saves=int(data.get('total_saves') or 0),
            total_profile_views=int(data.get('total_profile_views') or 0),
            engagement_score=int(data.get('engagement_score') or 0),
            last_interaction=data.get('last_interaction'),
        )

    def to_firestore(self) -> Dict[str, Any]:
        return {
            'user_id': self.user_id,
            'adaptive_vector': (
                to_firestore_vector(self.adaptive_vector)
                if self.adaptive_vector is not None else None
            ),
            'recent_search_terms': list(self.recent_search_terms),
            'total_searches': self.total_searches,
            'total_saves': self.total_saves,
            'total_profile_views': self.total_profile_views,
            'engagement_score': self.engagement_score,
            'last_interaction': self.last_interaction,
        }
