"""
Batch community cluster detection.

Runs the clustering pipeline for each organization in turn:
load eligible profiles, cluster, label, and replace the scope's clusters.

Usage:
    python3 -m src.clustering [--org-id ORG_ID] [--dry-run] [--adaptive]

Environment Variables:
    GCP_PROJECT: Google Cloud project ID
    GCP_REGION: Google Cloud region (default: europe-west4)
    LLM_MODEL: Model used for cluster labels (default: gemini-2.5-flash)
    CLUSTER_RUN_TIMEOUT: Per-scope run timeout in seconds (default: 600)
    GOOGLE_APPLICATION_CREDENTIALS: Path to service account key
"""

import argparse
import logging
import sys
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from src.config import ClusteringConfig
from src.errors import ClusteringTimeoutError, ErrorKind, ScopeLockedError
from src.store.firestore_client import FirestoreStore

from .clusterer import STATUS_EMPTY, STATUS_INSUFFICIENT, ClusterEngine, ClusteringResult
from .labeler import ClusterLabeler
from .store import ClusterRecord, ClusterStore, default_owner

logger = logging.getLogger(__name__)


class Deadline:
    """Cooperative per-run deadline, checked between pipeline phases."""

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self.seconds = seconds
        self.expires_at = clock() + seconds

    def remaining(self) -> float:
        return self.expires_at - self.clock()

    def check(self, phase: str) -> None:
        if self.remaining() < 0:
            raise ClusteringTimeoutError(
                f"Clustering exceeded {self.seconds:.0f}s during {phase}; run aborted, nothing persisted"
            )


@dataclass
class ScopeRunResult:
    """Outcome of clustering one organization."""
    org_id: str
    status: str
    persisted: bool = False
    generation: Optional[str] = None
    labels: List[str] = field(default_factory=list)
    result: Optional[ClusteringResult] = None

    @property
    def error(self) -> Optional[ErrorKind]:
        if self.status == STATUS_EMPTY:
            return ErrorKind.EMPTY_RESULT
        if self.status == STATUS_INSUFFICIENT:
            return ErrorKind.DATA_INSUFFICIENCY
        return None


class ClusterDetectionJob:
    """
    Orchestrates clustering across organizational scopes.

    Args:
        store: Profile/behaviour data access
        cluster_store: Cluster persistence and scope leases
        engine: ClusterEngine (built from config if None)
        labeler: ClusterLabeler (default LLM client if None)
        config: Clustering settings
        dry_run: If True, nothing is written and no lease is taken
        clock: Monotonic clock for the run deadline
    """

    def __init__(
        self,
        store: FirestoreStore,
        cluster_store: ClusterStore,
        engine: Optional[ClusterEngine] = None,
        labeler: Optional[ClusterLabeler] = None,
        config: Optional[ClusteringConfig] = None,
        dry_run: bool = False,
        clock: Callable[[], float] = time.monotonic,
        owner: Optional[str] = None
    ):
        self.store = store
        self.cluster_store = cluster_store
        self.config = config or (engine.config if engine else ClusteringConfig.from_env())
        self.engine = engine or ClusterEngine(self.config)
        self.labeler = labeler or ClusterLabeler()
        self.dry_run = dry_run
        self.clock = clock
        self.owner = owner or default_owner()

        self._scope_locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _scope_lock(self, org_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._scope_locks.setdefault(org_id, threading.Lock())

    def run_scope(self, org_id: str) -> ScopeRunResult:
        """
        Cluster one organization.

        Raises:
            ScopeLockedError: If another run for this scope is in progress
            ClusteringTimeoutError: If the run exceeded its deadline
        """
        lock = self._scope_lock(org_id)
        if not lock.acquire(blocking=False):
            raise ScopeLockedError(org_id, "this process")

        try:
            if self.dry_run:
                return self._run(org_id)
            with self.cluster_store.lease(org_id, self.owner, self.config.effective_lease_seconds):
                return self._run(org_id)
        finally:
            lock.release()

    def _run(self, org_id: str) -> ScopeRunResult:
        deadline = Deadline(self.config.run_timeout_seconds, self.clock)

        logger.info(f"\n[Step 1/4] Loading profiles for scope {org_id}...")
        profiles = self.store.list_scope_profiles(org_id)
        behaviors = {}
        if self.engine.config.use_adaptive_embeddings:
            behaviors = self.store.get_behaviors([p.user_id for p in profiles])
            logger.info(f"Loaded {len(behaviors)} behaviour records for adaptive clustering")
        deadline.check('profile loading')

        logger.info(f"\n[Step 2/4] Clustering {len(profiles)} profiles...")
        result = self.engine.detect(profiles, behaviors)
        deadline.check('clustering')

        if result.status == STATUS_INSUFFICIENT:
            logger.info(f"Scope {org_id} has too few eligible profiles; existing clusters left untouched")
            return ScopeRunResult(org_id=org_id, status=result.status, result=result)

        logger.info(f"\n[Step 3/4] Labelling {len(result.clusters)} clusters...")
        labels = []
        for cluster in result.clusters:
            labels.append(self.labeler.label(cluster))
            deadline.check('labelling')

        records = [
            ClusterRecord(
                label=label,
                keywords=cluster.keywords[:self.config.stored_keywords],
                member_ids=cluster.member_ids,
                stats={'distance_threshold': cluster.distance_threshold},
            )
            for cluster, label in zip(result.clusters, labels)
        ]
        for record in records:
            logger.info(f"    - {record.label}: {len(record.member_ids)} members")

        logger.info(f"\n[Step 4/4] Saving clusters for scope {org_id}...")
        if result.status == STATUS_EMPTY and self.config.keep_previous_on_empty:
            logger.warning(f"⚠️  No clusters survived for {org_id}; keeping previous clusters")
            return ScopeRunResult(org_id=org_id, status=result.status, result=result)

        if self.dry_run:
            logger.info(f"[DRY RUN] Would replace clusters for {org_id} with {len(records)} clusters")
            return ScopeRunResult(org_id=org_id, status=result.status, labels=labels, result=result)

        deadline.check('persisting')
        generation = self.cluster_store.replace_scope(org_id, records, result.to_stats())

        return ScopeRunResult(
            org_id=org_id,
            status=result.status,
            persisted=True,
            generation=generation,
            labels=labels,
            result=result,
        )

    def run_all(self, org_ids: Optional[List[str]] = None) -> Dict[str, Any]:
        """
        Cluster every organization sequentially.

        A failure in one scope is logged and the remaining scopes still run.

        Returns:
            Dict with per-scope results and counts
        """
        logger.info("=" * 60)
        logger.info("COMMUNITY CLUSTER DETECTION - START")
        logger.info("=" * 60)

        if self.dry_run:
            logger.warning("⚠️  DRY RUN MODE - No writes will be performed")

        start_time = time.time()

        if org_ids is None:
            orgs = self.store.list_organizations()
        else:
            orgs = [{'org_id': org_id, 'name': org_id} for org_id in org_ids]

        results: Dict[str, ScopeRunResult] = {}
        failures: Dict[str, str] = {}

        for org in orgs:
            org_id = org['org_id']
            logger.info(f"\nProcessing organization: {org.get('name', org_id)} ({org_id})")
            try:
                results[org_id] = self.run_scope(org_id)
            except (ScopeLockedError, ClusteringTimeoutError) as e:
                logger.warning(f"⚠️  Skipped scope {org_id}: {e}")
                failures[org_id] = str(e)
            except Exception as e:
                logger.error(f"Clustering failed for scope {org_id}: {e}", exc_info=True)
                failures[org_id] = str(e)

        elapsed = time.time() - start_time
        logger.info("\n" + "=" * 60)
        logger.info("COMMUNITY CLUSTER DETECTION - COMPLETE")
        logger.info("=" * 60)
        logger.info(f"Total time: {elapsed:.2f} seconds")
        logger.info(f"Scopes processed: {len(results)}, failed: {len(failures)}")
        logger.info("=" * 60)

        return {
            'total_scopes': len(orgs),
            'succeeded': len(results),
            'failed': len(failures),
            'results': results,
            'failures': failures,
        }


def main():
    """CLI entry point for cluster detection."""
    parser = argparse.ArgumentParser(
        description='Detect community clusters for each organization'
    )
    parser.add_argument(
        '--org-id',
        help='Only cluster this organization'
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Run without writing to Firestore (for testing)'
    )
    parser.add_argument(
        '--adaptive',
        action='store_true',
        help='Blend behaviour vectors into clustering vectors'
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    config = ClusteringConfig.from_env()
    if args.adaptive:
        config.use_adaptive_embeddings = True

    store = FirestoreStore()
    job = ClusterDetectionJob(
        store=store,
        cluster_store=ClusterStore(db=store.db, store_config=store.collections, profile_store=store),
        config=config,
        dry_run=args.dry_run,
    )

    try:
        summary = job.run_all([args.org_id] if args.org_id else None)
    except Exception as e:
        logger.error(f"Cluster detection failed: {e}", exc_info=True)
        sys.exit(1)

    if summary['failed']:
        sys.exit(1)


if __name__ == '__main__':
    main()
