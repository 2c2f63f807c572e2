"""Profile record as read from the store."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np

from .vectors import parse_vector


@dataclass
class Profile:
    """
    A community member's profile.

    Identity fields (background, expertise, interests) drive the embedding.
    Availability fields (how_i_help, looking_for, open_to, current_work) are
    kept for display and never embedded.
    """
    user_id: str
    name: str = ""
    background: str = ""
    expertise: str = ""
    interests: str = ""
    how_i_help: List[str] = field(default_factory=list)
    looking_for: str = ""
    open_to: str = ""
    current_work: str = ""
    opted_in: bool = False
    embedding: Optional[np.ndarray] = None

    @classmethod
    def from_firestore(
        cls,
        user_id: str,
        data: Dict[str, Any],
        dimensions: Optional[int] = None
    ) -> "Profile":
        return cls(
            user_id=user_id,
            name=data.get('name') or "",
            background=data.get('background') or "",
            expertise=data.get('expertise') or "",
            interests=data.get('interests') or "",
            how_i_help=list(data.get('how_i_help') or []),
            looking_for=data.get('looking_for') or "",
            open_to=data.get('open_to') or "",
            current_work=data.get('current_work') or "",
            opted_in=bool(data.get('opted_in', False)),
            embedding=parse_vector(data.get('embedding'), dimensions),
        )

    def to_summary(self) -> Dict[str, Any]:
        """Public fields returned to "similar people" and cluster browsing consumers."""
        return {
            'user_id': self.user_id,
            'name': self.name,
            'background': self.background,
            'expertise': self.expertise,
            'interests': self.interests,
            'how_i_help': self.how_i_help,
        }
