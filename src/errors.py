"""
Error kinds and exceptions shared across the matching engine.

Components return typed results carrying an ErrorKind when the caller is
expected to decide between skipping and retrying, and raise the exceptions
below only for preconditions the caller has to report.
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Why an operation produced no usable result."""
    EXTERNAL_SERVICE_FAILURE = "external_service_failure"
    DATA_INSUFFICIENCY = "data_insufficiency"
    EMPTY_RESULT = "empty_result"
    MALFORMED_VECTOR = "malformed_vector"
    TIMEOUT = "timeout"
    CONCURRENT_RUN = "concurrent_run"


class PeerlinkError(Exception):
    """Base class for errors raised by this package."""

    kind: ErrorKind = ErrorKind.EXTERNAL_SERVICE_FAILURE


class MissingEmbeddingError(PeerlinkError):
    """The querying user has no usable profile embedding."""

    kind = ErrorKind.DATA_INSUFFICIENCY

    def __init__(self, user_id: str):
        super().__init__(
            f"Profile {user_id} has no embedding; update the profile so it can be regenerated"
        )
        self.user_id = user_id


class ScopeLockedError(PeerlinkError):
    """Another clustering run holds the lease for this scope."""

    kind = ErrorKind.CONCURRENT_RUN

    def __init__(self, org_id: str, owner: str = None):
        super().__init__(f"Clustering already running for scope {org_id} (owner={owner})")
        self.org_id = org_id
        self.owner = owner


class ClusteringTimeoutError(PeerlinkError):
    """A clustering run exceeded its deadline; nothing was persisted."""

    kind = ErrorKind.TIMEOUT
