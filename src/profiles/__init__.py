"""
Profile text, embeddings and refresh.

Identity text is built from background, expertise and interests, cleaned of
filler words, and embedded with Vertex AI.
"""

from .embeddings import EmbeddingGenerator, EmbeddingResult
from .models import Profile
from .text_builder import build_profile_text, is_complete_profile

__all__ = [
    'EmbeddingGenerator',
    'EmbeddingResult',
    'Profile',
    'build_profile_text',
    'is_complete_profile',
]
