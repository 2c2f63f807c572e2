"""
Profile embedding refresh.

Regenerates identity embeddings for single profiles (after an edit) or for
every opted-in profile (after a model or text-format change). Batch refresh
runs a small thread pool per batch of 10 and pauses between batches to stay
under embedding quotas; one profile's failure never stops the rest.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from src.errors import ErrorKind

from .embeddings import EmbeddingGenerator
from .models import Profile
from .text_builder import build_embedding_input

logger = logging.getLogger(__name__)

IDENTITY_FIELDS = ('background', 'expertise', 'interests')

STATUS_UPDATED = 'updated'
STATUS_SKIPPED = 'skipped'
STATUS_FAILED = 'failed'


@dataclass
class RefreshOutcome:
    """Result of refreshing one profile's embedding."""
    user_id: str
    status: str
    error: Optional[ErrorKind] = None
    message: str = ""


class ProfileEmbeddingRefresher:
    """
    Keeps stored profile embeddings in sync with profile text.

    Args:
        store: Data access object providing get_profile, list_opted_in_profiles,
            update_profile_fields and set_profile_embedding
        embedder: EmbeddingGenerator for identity text
        batch_size: Profiles embedded concurrently per batch
        max_workers: Thread pool size within a batch
        pause_seconds: Pause between batches
    """

    def __init__(
        self,
        store,
        embedder: EmbeddingGenerator,
        batch_size: int = 10,
        max_workers: int = 4,
        pause_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.store = store
        self.embedder = embedder
        self.batch_size = batch_size
        self.max_workers = max_workers
        self.pause_seconds = pause_seconds
        self.sleep = sleep

    def _refresh(self, profile: Profile) -> RefreshOutcome:
        text = build_embedding_input(profile)
        if text is None:
            logger.info(f"Skipping {profile.user_id}: not enough identity text")
            return RefreshOutcome(profile.user_id, STATUS_SKIPPED, ErrorKind.DATA_INSUFFICIENCY)

        result = self.embedder.generate(text)
        if not result.ok:
            logger.warning(f"Embedding failed for {profile.user_id}: {result.message}")
            return RefreshOutcome(profile.user_id, STATUS_FAILED, result.error, result.message)

        try:
            self.store.set_profile_embedding(profile.user_id, result.vector)
        except Exception as e:
            logger.error(f"Failed to store embedding for {profile.user_id}: {e}")
            return RefreshOutcome(profile.user_id, STATUS_FAILED, ErrorKind.EXTERNAL_SERVICE_FAILURE, str(e))

        return RefreshOutcome(profile.user_id, STATUS_UPDATED)

    def refresh_profile(self, user_id: str) -> RefreshOutcome:
        """Rebuild and store one profile's identity embedding."""
        profile = self.store.get_profile(user_id)
        if profile is None:
            return RefreshOutcome(user_id, STATUS_SKIPPED, ErrorKind.DATA_INSUFFICIENCY, "profile not found")
        return self._refresh(profile)

    def refresh_all(self, org_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Regenerate embeddings for all opted-in profiles.

        Args:
            org_id: Restrict to one organization's members

        Returns:
            Dict with total/updated/skipped/failed counts and failed user ids
        """
        profiles = self.store.list_opted_in_profiles(org_id)
        logger.info(f"Refreshing embeddings for {len(profiles)} profiles")

        outcomes: List[RefreshOutcome] = []

        for start in range(0, len(profiles), self.batch_size):
            batch = profiles[start:start + self.batch_size]

            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                futures = {executor.submit(self._refresh, p): p for p in batch}
                for future in as_completed(futures):
                    profile = futures[future]
                    try:
                        outcomes.append(future.result())
                    except Exception as e:
                        logger.warning(f"Refresh failed for {profile.user_id}: {e}")
                        outcomes.append(RefreshOutcome(
                            profile.user_id, STATUS_FAILED, ErrorKind.EXTERNAL_SERVICE_FAILURE, str(e)
                        ))

            done = min(start + self.batch_size, len(profiles))
            logger.info(f"  Progress: {done}/{len(profiles)} profiles")

            if done < len(profiles):
                self.sleep(self.pause_seconds)

        stats = {
            'total': len(profiles),
            'updated': sum(1 for o in outcomes if o.status == STATUS_UPDATED),
            'skipped': sum(1 for o in outcomes if o.status == STATUS_SKIPPED),
            'failed': sum(1 for o in outcomes if o.status == STATUS_FAILED),
            'failed_user_ids': sorted(o.user_id for o in outcomes if o.status == STATUS_FAILED),
        }
        logger.info(
            f"✅ Refresh complete: {stats['updated']} updated, "
            f"{stats['skipped']} skipped, {stats['failed']} failed"
        )
        return stats

    def update_profile(self, user_id: str, updates: Dict[str, Any]) -> Optional[RefreshOutcome]:
        """
        Apply field updates and regenerate the embedding if identity text changed.

        Returns:
            RefreshOutcome when the embedding was regenerated, otherwise None
        """
        before = self.store.get_profile(user_id)
        identity_changed = before is None or any(
            field in updates and (updates[field] or "") != getattr(before, field)
            for field in IDENTITY_FIELDS
        )

        self.store.update_profile_fields(user_id, updates)

        if not identity_changed:
            logger.debug(f"Profile {user_id} identity unchanged; keeping embedding")
            return None

        return self.refresh_profile(user_id)
