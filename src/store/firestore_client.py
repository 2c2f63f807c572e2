"""
Firestore access for profiles, organizations and behaviour records.

Provides:
- Profile reads (single, per organization, opted-in sweep)
- Profile field and embedding writes
- UserBehavior reads and writes
- Vector similarity search over profile embeddings (FIND_NEAREST)

Cluster documents are owned by src.clustering.store.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter
from google.cloud.firestore_v1.base_vector_query import DistanceMeasure
from google.cloud.firestore_v1.vector import Vector

from src.behavior.models import UserBehavior
from src.config import EmbeddingConfig, StoreConfig, get_gcp_config
from src.profiles.models import Profile
from src.profiles.vectors import to_firestore_vector

logger = logging.getLogger(__name__)

DISTANCE_FIELD = 'vector_distance'


def create_firestore_client(project_id: Optional[str] = None) -> firestore.Client:
    """Create a Firestore client for the configured project."""
    project = project_id or get_gcp_config()[0]
    logger.info(f"Initializing Firestore client for project: {project}")
    return firestore.Client(project=project)


class FirestoreStore:
    """
    Read/write access to the profile-side collections.

    Args:
        db: Firestore client (created from GCP_PROJECT if None)
        store_config: Collection names
        dimensions: Expected embedding dimensionality for parsed vectors
    """

    def __init__(
        self,
        db: Optional[firestore.Client] = None,
        store_config: Optional[StoreConfig] = None,
        dimensions: Optional[int] = None
    ):
        self.db = db or create_firestore_client()
        self.collections = store_config or StoreConfig.from_env()
        self.dimensions = dimensions or EmbeddingConfig.from_env().dimensions

    def _collection(self, key: str):
        return self.db.collection(self.collections.name(key))

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    def get_profile(self, user_id: str) -> Optional[Profile]:
        doc = self._collection('profiles').document(user_id).get()
        if not doc.exists:
            logger.warning(f"Profile {user_id} not found")
            return None
        return Profile.from_firestore(doc.id, doc.to_dict() or {}, self.dimensions)

    def get_profiles(self, user_ids: Iterable[str]) -> List[Profile]:
        """Fetch several profiles in one round trip; missing ids are skipped."""
        collection = self._collection('profiles')
        refs = [collection.document(user_id) for user_id in user_ids]
        if not refs:
            return []

        profiles = []
        for doc in self.db.get_all(refs):
            if not doc.exists:
                continue
            profiles.append(Profile.from_firestore(doc.id, doc.to_dict() or {}, self.dimensions))
        return profiles

    def list_opted_in_profiles(self, org_id: Optional[str] = None) -> List[Profile]:
        """All opted-in profiles, optionally restricted to one organization."""
        if org_id:
            return [p for p in self.get_profiles(self.list_member_ids(org_id)) if p.opted_in]

        query = self._collection('profiles').where(filter=FieldFilter('opted_in', '==', True))
        return [
            Profile.from_firestore(doc.id, doc.to_dict() or {}, self.dimensions)
            for doc in query.stream()
        ]

    def list_scope_profiles(self, org_id: str) -> List[Profile]:
        """Opted-in members of an organization that have a usable embedding."""
        profiles = [
            p for p in self.list_opted_in_profiles(org_id)
            if p.embedding is not None
        ]
        logger.info(f"Loaded {len(profiles)} opted-in profiles with embeddings for scope {org_id}")
        return profiles

    def update_profile_fields(self, user_id: str, updates: Dict[str, Any]) -> None:
        self._collection('profiles').document(user_id).set(updates, merge=True)

    def set_profile_embedding(self, user_id: str, vector: Sequence[float]) -> None:
        self._collection('profiles').document(user_id).set(
            {
                'embedding': to_firestore_vector(vector),
                'embedding_updated_at': firestore.SERVER_TIMESTAMP,
            },
            merge=True,
        )

    # ------------------------------------------------------------------
    # Organizations
    # ------------------------------------------------------------------

    def list_organizations(self) -> List[Dict[str, Any]]:
        orgs = []
        for doc in self._collection('organizations').stream():
            data = doc.to_dict() or {}
            orgs.append({'org_id': doc.id, 'name': data.get('name', doc.id)})
        return orgs

    def list_member_ids(self, org_id: str) -> List[str]:
        query = self._collection('organization_members').where(
            filter=FieldFilter('org_id', '==', org_id)
        )
        return [
            (doc.to_dict() or {}).get('user_id')
            for doc in query.stream()
            if (doc.to_dict() or {}).get('user_id')
        ]

    # ------------------------------------------------------------------
    # Behaviour
    # ------------------------------------------------------------------

    def get_behavior(self, user_id: str) -> Optional[UserBehavior]:
        doc = self._collection('user_behavior').document(user_id).get()
        if not doc.exists:
            return None
        return UserBehavior.from_firestore(doc.id, doc.to_dict() or {}, self.dimensions)

    def get_behaviors(self, user_ids: Iterable[str]) -> Dict[str, UserBehavior]:
        collection = self._collection('user_behavior')
        refs = [collection.document(user_id) for user_id in user_ids]
        if not refs:
            return {}

        behaviors = {}
        for doc in self.db.get_all(refs):
            if doc.exists:
                behaviors[doc.id] = UserBehavior.from_firestore(doc.id, doc.to_dict() or {}, self.dimensions)
        return behaviors

    def save_behavior(self, behavior: UserBehavior) -> None:
        self._collection('user_behavior').document(behavior.user_id).set(behavior.to_firestore())

    # ------------------------------------------------------------------
    # Vector search
    # ------------------------------------------------------------------

    def find_nearest_profiles(
        self,
        query_vector: Sequence[float],
        similarity_threshold: float,
        limit: int
    ) -> List[Tuple[Profile, float]]:
        """
        Nearest profiles by cosine similarity.

        Firestore reports cosine distance (1 - similarity), so the similarity
        floor becomes a distance ceiling.

        Returns:
            (profile, similarity) pairs ordered nearest first
        """
        vector_query = self._collection('profiles').find_nearest(
            vector_field='embedding',
            query_vector=Vector([float(x) for x in query_vector]),
            distance_measure=DistanceMeasure.COSINE,
            limit=limit,
            distance_result_field=DISTANCE_FIELD,
            distance_threshold=1.0 - similarity_threshold,
        )

        results = []
        for doc in vector_query.stream():
            data = doc.to_dict() or {}
            distance = data.pop(DISTANCE_FIELD, None)
            if distance is None:
                continue
            profile = Profile.from_firestore(doc.id, data, self.dimensions)
            results.append((profile, 1.0 - float(distance)))

        logger.info(f"Vector search returned {len(results)} candidates (limit: {limit})")
        return results
