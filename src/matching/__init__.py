"""Similarity search over profile embeddings."""

from .similarity import SimilarMatch, SimilaritySearch

__all__ = ['SimilarMatch', 'SimilaritySearch']
