"""
Cluster persistence in Firestore.

Clusters and memberships are written as immutable generations:

1. New cluster and membership documents are written tagged with a fresh
   generation id (batched, at most 500 operations per commit).
2. cluster_scopes/{org_id}.active_generation is pointed at the new
   generation in a single document write.
3. Documents belonging to older generations are deleted.

Readers resolve the active generation first and only return documents tagged
with it, so a scope never appears empty while a replace is in flight.

Concurrent runs for a scope are prevented by ScopeLease, a lease document in
cluster_locks created with create() (which fails if it already exists).
"""

import logging
import socket
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from google.api_core.exceptions import AlreadyExists, FailedPrecondition, NotFound
from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter

from src.config import StoreConfig
from src.errors import ScopeLockedError
from src.store.firestore_client import FirestoreStore, create_firestore_client

logger = logging.getLogger(__name__)

BATCH_LIMIT = 500


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_generation_id(now: Optional[datetime] = None) -> str:
    """Sortable, unique generation id."""
    now = now or _utcnow()
    return f"{now.strftime('%Y%m%dT%H%M%S')}-{uuid.uuid4().hex[:8]}"


def default_owner() -> str:
    return f"{socket.gethostname()}-{uuid.uuid4().hex[:6]}"


@dataclass
class ClusterRecord:
    """A labelled cluster ready to persist."""
    label: str
    keywords: List[str]
    member_ids: List[str]
    parent_cluster_id: Optional[str] = None
    depth: int = 0
    stats: Dict[str, Any] = field(default_factory=dict)


class ScopeLease:
    """
    Exclusive lease on one organization's clustering run.

    Usage:
        with store.lease(org_id, owner, lease_seconds):
            ...

    Raises:
        ScopeLockedError: On acquire, if an unexpired lease is held by another owner
    """

    def __init__(
        self,
        db,
        collection: str,
        org_id: str,
        owner: str,
        lease_seconds: float,
        clock: Callable[[], datetime] = _utcnow
    ):
        self.db = db
        self.ref = db.collection(collection).document(org_id)
        self.org_id = org_id
        self.owner = owner
        self.lease_seconds = lease_seconds
        self.clock = clock

    def _lease_data(self) -> Dict[str, Any]:
        now = self.clock()
        return {
            'org_id': self.org_id,
            'owner': self.owner,
            'acquired_at': now,
            'expires_at': now + timedelta(seconds=self.lease_seconds),
        }

    def acquire(self) -> None:
        try:
            self.ref.create(self._lease_data())
            logger.info(f"Acquired clustering lease for scope {self.org_id} (owner={self.owner})")
            return
        except AlreadyExists:
            pass

        snapshot = self.ref.get()
        data = (snapshot.to_dict() or {}) if snapshot.exists else {}
        holder = data.get('owner')
        expires_at = data.get('expires_at')

        if snapshot.exists and expires_at is not None and expires_at > self.clock():
            raise ScopeLockedError(self.org_id, holder)

        # Expired (or vanished) lease: take it over only if nobody else has meanwhile
        try:
            if snapshot.exists:
                self.ref.set(
                    self._lease_data(),
                    option=self.db.write_option(last_update_time=snapshot.update_time),
                )
            else:
                self.ref.create(self._lease_data())
        except (AlreadyExists, FailedPrecondition):
            raise ScopeLockedError(self.org_id, holder)

        logger.warning(f"Reclaimed expired clustering lease for scope {self.org_id} from {holder}")

    def release(self) -> None:
        try:
            snapshot = self.ref.get()
            if snapshot.exists and (snapshot.to_dict() or {}).get('owner') == self.owner:
                self.ref.delete()
                logger.info(f"Released clustering lease for scope {self.org_id}")
        except NotFound:
            pass
        except Exception as e:
            logger.warning(f"Failed to release lease for scope {self.org_id}: {e}")

    def __enter__(self) -> "ScopeLease":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


class ClusterStore:
    """
    Reads and replaces an organization's clusters.

    Args:
        db: Firestore client (created from GCP_PROJECT if None)
        store_config: Collection names
        profile_store: Used to hydrate member profiles for cluster browsing
    """

    def __init__(
        self,
        db=None,
        store_config: Optional[StoreConfig] = None,
        profile_store: Optional[FirestoreStore] = None
    ):
        self.db = db or create_firestore_client()
        self.collections = store_config or StoreConfig.from_env()
        self.profile_store = profile_store

    def _collection(self, key: str):
        return self.db.collection(self.collections.name(key))

    def lease(self, org_id: str, owner: str, lease_seconds: float) -> ScopeLease:
        return ScopeLease(self.db, self.collections.name('cluster_locks'), org_id, owner, lease_seconds)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def replace_scope(
        self,
        org_id: str,
        clusters: List[ClusterRecord],
        stats: Optional[Dict[str, Any]] = None
    ) -> str:
        """
        Replace all clusters for a scope.

        Args:
            org_id: Organization scope
            clusters: New clusters (may be empty, which clears the scope)
            stats: Run statistics stored on the scope document

        Returns:
            The new active generation id
        """
        generation = new_generation_id()
        logger.info(f"Writing generation {generation} for scope {org_id} ({len(clusters)} clusters)")

        try:
            self._write_generation(org_id, generation, clusters)
        except Exception:
            logger.error(f"Failed writing generation {generation} for scope {org_id}; previous clusters remain active")
            self._delete_generation_best_effort(org_id, generation)
            raise

        self._collection('cluster_scopes').document(org_id).set(
            {
                'org_id': org_id,
                'active_generation': generation,
                'cluster_count': len(clusters),
                'stats': stats or {},
                'updated_at': firestore.SERVER_TIMESTAMP,
            },
            merge=True,
        )
        logger.info(f"✅ Activated generation {generation} for scope {org_id}")

        self._delete_stale_generations(org_id, generation)
        return generation

    def _write_generation(self, org_id: str, generation: str, clusters: List[ClusterRecord]) -> None:
        batch = self.db.batch()
        batch_count = 0

        def add(ref, data):
            nonlocal batch, batch_count
            batch.set(ref, data)
            batch_count += 1
            if batch_count >= BATCH_LIMIT:
                batch.commit()
                logger.info(f"  Committed batch ({batch_count} writes)")
                batch = self.db.batch()
                batch_count = 0

        for i, cluster in enumerate(clusters):
            cluster_id = f"{org_id}-{generation}-{i:02d}"
            add(self._collection('clusters').document(cluster_id), {
                'cluster_id': cluster_id,
                'org_id': org_id,
                'generation': generation,
                'label': cluster.label,
                'keywords': list(cluster.keywords),
                'member_count': len(cluster.member_ids),
                'parent_cluster_id': cluster.parent_cluster_id,
                'depth': cluster.depth,
                'stats': cluster.stats,
                'created_at': firestore.SERVER_TIMESTAMP,
            })
            for user_id in cluster.member_ids:
                add(self._collection('cluster_members').document(f"{cluster_id}_{user_id}"), {
                    'cluster_id': cluster_id,
                    'org_id': org_id,
                    'generation': generation,
                    'user_id': user_id,
                })

        if batch_count > 0:
            batch.commit()
            logger.info(f"  Committed final batch ({batch_count} writes)")

    def _delete_where(self, key: str, org_id: str, keep: Callable[[str], bool]) -> int:
        query = self._collection(key).where(filter=FieldFilter('org_id', '==', org_id))

        batch = self.db.batch()
        batch_count = 0
        deleted = 0

        for doc in query.stream():
            if keep((doc.to_dict() or {}).get('generation')):
                continue
            batch.delete(doc.reference)
            batch_count += 1
            deleted += 1
            if batch_count >= BATCH_LIMIT:
                batch.commit()
                batch = self.db.batch()
                batch_count = 0

        if batch_count > 0:
            batch.commit()
        return deleted

    def _delete_stale_generations(self, org_id: str, active: str) -> None:
        try:
            members = self._delete_where('cluster_members', org_id, lambda g: g == active)
            clusters = self._delete_where('clusters', org_id, lambda g: g == active)
            logger.info(f"Deleted {clusters} stale clusters and {members} memberships for scope {org_id}")
        except Exception as e:
            # Readers already ignore stale generations; the next run retries the cleanup
            logger.warning(f"Failed to delete stale generations for scope {org_id}: {e}")

    def _delete_generation_best_effort(self, org_id: str, generation: str) -> None:
        try:
            self._delete_where('cluster_members', org_id, lambda g: g != generation)
            self._delete_where('clusters', org_id, lambda g: g != generation)
        except Exception as e:
            logger.warning(f"Cleanup of partial generation {generation} failed: {e}")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_active_generation(self, org_id: str) -> Optional[str]:
        doc = self._collection('cluster_scopes').document(org_id).get()
        if not doc.exists:
            return None
        return (doc.to_dict() or {}).get('active_generation')

    def _active_query(self, key: str, org_id: str, generation: str):
        return (
            self._collection(key)
            .where(filter=FieldFilter('org_id', '==', org_id))
            .where(filter=FieldFilter('generation', '==', generation))
        )

    def get_clusters(self, org_id: str) -> List[Dict[str, Any]]:
        """
        Active top-level clusters for an organization, sorted by label.

        Returns:
            List of dicts with cluster_id, label, keywords, member_count, member_ids
        """
        generation = self.get_active_generation(org_id)
        if not generation:
            return []

        member_ids: Dict[str, List[str]] = {}
        for doc in self._active_query('cluster_members', org_id, generation).stream():
            data = doc.to_dict() or {}
            member_ids.setdefault(data.get('cluster_id'), []).append(data.get('user_id'))

        clusters = []
        for doc in self._active_query('clusters', org_id, generation).stream():
            data = doc.to_dict() or {}
            if data.get('parent_cluster_id'):
                continue
            ids = member_ids.get(doc.id, [])
            clusters.append({
                'cluster_id': doc.id,
                'label': data.get('label', ''),
                'keywords': data.get('keywords', []),
                'member_count': len(ids),
                'member_ids': ids,
            })

        clusters.sort(key=lambda c: c['label'])
        logger.info(f"Found {len(clusters)} clusters for org {org_id}")
        return clusters

    def _get_active_cluster(self, cluster_id: str) -> Optional[Dict[str, Any]]:
        doc = self._collection('clusters').document(cluster_id).get()
        if not doc.exists:
            return None
        data = doc.to_dict() or {}
        if data.get('generation') != self.get_active_generation(data.get('org_id', '')):
            return None
        return data

    def get_cluster_members(
        self,
        cluster_id: str,
        requester_id: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        """
        A cluster with its opted-in members, excluding the requester.

        Returns:
            Dict with 'cluster' and 'members' (profile summaries), or None when
            the cluster does not exist in the active generation
        """
        data = self._get_active_cluster(cluster_id)
        if data is None:
            logger.warning(f"Cluster {cluster_id} not found")
            return None

        query = self._collection('cluster_members').where(
            filter=FieldFilter('cluster_id', '==', cluster_id)
        )
        member_ids = [
            (doc.to_dict() or {}).get('user_id')
            for doc in query.stream()
        ]
        member_ids = [uid for uid in member_ids if uid and uid != requester_id]

        if self.profile_store is None:
            self.profile_store = FirestoreStore(db=self.db, store_config=self.collections)

        members = [
            p.to_summary()
            for p in self.profile_store.get_profiles(member_ids)
            if p.opted_in
        ]

        return {
            'cluster': {
                'cluster_id': cluster_id,
                'label': data.get('label', ''),
                'keywords': data.get('keywords', []),
                'org_id': data.get('org_id'),
            },
            'members': members,
        }

    def get_user_cluster(self, user_id: str, org_id: str) -> Optional[Dict[str, Any]]:
        """The active cluster a user belongs to within an organization, if any."""
        generation = self.get_active_generation(org_id)
        if not generation:
            return None

        query = self._active_query('cluster_members', org_id, generation).where(
            filter=FieldFilter('user_id', '==', user_id)
        ).limit(1)

        for doc in query.stream():
            cluster_id = (doc.to_dict() or {}).get('cluster_id')
            cluster = self._collection('clusters').document(cluster_id).get()
            if not cluster.exists:
                return None
            data = cluster.to_dict() or {}
            return {
                'cluster_id': cluster_id,
                'label': data.get('label', ''),
                'keywords': data.get('keywords', []),
                'member_count': data.get('member_count', 0),
            }
        return None
