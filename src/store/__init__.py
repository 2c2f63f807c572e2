"""Firestore data access."""

from .firestore_client import FirestoreStore, create_firestore_client

__all__ = ['FirestoreStore', 'create_firestore_client']
