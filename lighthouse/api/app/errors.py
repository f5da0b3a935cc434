"""
Error taxonomy for the evidence content store.

Every failure carries enough context (object key, version, algorithm) for a
caller to diagnose it. Nothing in this package retries on these errors.
"""

from __future__ import annotations


class EvidenceStoreError(Exception):
    """Base class for all content store failures."""


class ConfigurationError(EvidenceStoreError):
    """Deployment precondition missing (e.g. the bucket does not exist)."""


class NotFoundError(EvidenceStoreError):
    """An object or its ledger entry is absent."""

    def __init__(self, message: str, *, object_key: str | None = None,
                 version_id: str | None = None):
        super().__init__(message)
        self.object_key = object_key
        self.version_id = version_id


class ObjectNotFound(NotFoundError):
    """No blob exists at the requested key (or version)."""


class LedgerEntryNotFound(NotFoundError):
    """A blob exists but there is no recorded hash pair for its version."""


class IntegrityError(EvidenceStoreError):
    """Recomputed digest does not match the ledger entry."""

    def __init__(self, object_key: str, algorithm: str, *, version_id: str | None = None,
                 expected: str | None = None, actual: str | None = None):
        self.object_key = object_key
        self.algorithm = algorithm
        self.version_id = version_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"{algorithm} hash verification failed for `{object_key}`"
            f" (version `{version_id}`)"
        )


class ConflictError(EvidenceStoreError):
    """Write refused: un-ledgered existing object or conflicting hashes."""

    def __init__(self, message: str, *, object_key: str | None = None,
                 version_id: str | None = None):
        super().__init__(message)
        self.object_key = object_key
        self.version_id = version_id
