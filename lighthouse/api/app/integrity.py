"""
Integrity verification for every read and write of case content.

Trust is never taken from the object store: each read recomputes MD5 and
SHA256 in one pass over the fetched stream and compares them with the ledger
entry for the exact version the store returned.
"""

from __future__ import annotations

import logging
import tempfile
from dataclasses import dataclass
from typing import IO, Any

from .errors import IntegrityError
from .hash_ledger import HashLedger, ObjectRecord
from .hashing import DEFAULT_CHUNK_SIZE, MD5, SHA256, DigestPair, digest_stream
from .storage import DEFAULT_CONTENT_TYPE, BlobStoreGateway, UpsertResult

logger = logging.getLogger(__name__)

DEFAULT_SPOOL_MAX_BYTES = 8 * 1024 * 1024


@dataclass
class VerifiedObject:
    """Bytes that matched the ledger, spooled to memory or a temp file."""

    record: ObjectRecord
    body: IO[bytes]
    size: int

    @property
    def object_key(self) -> str:
        return self.record.object_key

    @property
    def version_id(self) -> str:
        return self.record.version_id

    def read_bytes(self) -> bytes:
        self.body.seek(0)
        return self.body.read()

    def read_text(self, encoding: str = "utf-8") -> str:
        return self.read_bytes().decode(encoding)

    def close(self) -> None:
        self.body.close()

    def __enter__(self) -> "VerifiedObject":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def compare_digests(record: ObjectRecord, actual: DigestPair) -> None:
    """Raise IntegrityError naming the first algorithm that disagrees."""
    if actual.md5.lower() != record.md5_hash.lower():
        raise IntegrityError(
            record.object_key, MD5, version_id=record.version_id,
            expected=record.md5_hash, actual=actual.md5,
        )
    if actual.sha256.lower() != record.sha256_hash.lower():
        raise IntegrityError(
            record.object_key, SHA256, version_id=record.version_id,
            expected=record.sha256_hash, actual=actual.sha256,
        )


class IntegrityVerifier:
    def __init__(self, gateway: BlobStoreGateway, *,
                 chunk_size: int = DEFAULT_CHUNK_SIZE,
                 spool_max_bytes: int = DEFAULT_SPOOL_MAX_BYTES,
                 verify_after_write: bool = True):
        self.gateway = gateway
        self.chunk_size = chunk_size
        self.spool_max_bytes = spool_max_bytes
        self.verify_after_write = verify_after_write

    @classmethod
    def from_settings(cls, gateway: BlobStoreGateway, settings: Any) -> "IntegrityVerifier":
        return cls(
            gateway,
            chunk_size=settings.READ_CHUNK_SIZE,
            spool_max_bytes=settings.SPOOL_MAX_BYTES,
            verify_after_write=settings.VERIFY_AFTER_WRITE,
        )

    def verify(self, object_key: str, ledger: HashLedger,
               version_id: str | None = None) -> VerifiedObject:
        """
        Fetch ``object_key`` and return its bytes only if both digests match.

        Raises ObjectNotFound if the blob is absent, LedgerEntryNotFound if the
        served version was never recorded, IntegrityError on any mismatch.
        """
        with self.gateway.fetch(object_key, version_id) as fetched:
            expected = ledger.lookup(object_key, fetched.version_id)
            spool = tempfile.SpooledTemporaryFile(max_size=self.spool_max_bytes)
            try:
                actual = digest_stream(fetched.body, sink=spool, chunk_size=self.chunk_size)
                compare_digests(expected, actual)
            except IntegrityError as e:
                spool.close()
                logger.error(
                    "%s verification failed for %s version %s",
                    e.algorithm,
                    object_key,
                    fetched.version_id,
                )
                raise
            except Exception:
                spool.close()
                raise

        size = spool.tell()
        spool.seek(0)
        return VerifiedObject(record=expected, body=spool, size=size)

    def verify_record(self, object_key: str, ledger: HashLedger,
                      version_id: str | None = None) -> ObjectRecord:
        """Verify without keeping the bytes."""
        with self.verify(object_key, ledger, version_id) as verified:
            return verified.record

    def read_text(self, object_key: str, ledger: HashLedger) -> tuple[str, ObjectRecord]:
        with self.verify(object_key, ledger) as verified:
            return verified.read_text(), verified.record

    def write(self, object_key: str, content: bytes, ledger: HashLedger, *,
              overwrite: bool = True,
              content_type: str = DEFAULT_CONTENT_TYPE) -> UpsertResult:
        """Upsert through the gateway, then check the recorded version reads back intact."""
        result = self.gateway.upsert(
            object_key,
            content,
            ledger,
            lambda key: self.verify_record(key, ledger),
            overwrite=overwrite,
            content_type=content_type,
        )
        if self.verify_after_write:
            self.verify_record(object_key, ledger, version_id=result.version_id)
        return result
