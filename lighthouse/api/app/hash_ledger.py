"""
Hash Ledger: the independently recorded digests every read is checked against.

A ledger instance is bound to one partition: a case (shared content) or a
case plus owner (personal content). Entries are insert-only; a missing entry
is always an integrity failure, never "unknown, proceed".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from .errors import ConflictError, LedgerEntryNotFound
from .hashing import normalize_md5, normalize_sha256
from .models import ObjectHash
from .object_paths import Scope

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ObjectRecord:
    object_key: str
    version_id: str
    md5_hash: str
    sha256_hash: str

    @classmethod
    def from_row(cls, row: ObjectHash) -> "ObjectRecord":
        return cls(
            object_key=row.object_key,
            version_id=row.version_id,
            md5_hash=row.md5_hash,
            sha256_hash=row.sha256_hash,
        )


class HashLedger:
    def __init__(self, db: Session, case_id: object, owner_id: object | None = None):
        self.db = db
        self.case_id = str(case_id)
        self.owner_id = None if owner_id is None else str(owner_id)

    @classmethod
    def for_scope(cls, db: Session, case_id: object, scope: Scope | str,
                  owner_id: object | None = None) -> "HashLedger":
        if Scope(scope) is Scope.SHARED:
            return cls(db, case_id)
        if owner_id is None:
            raise ValueError("Personal content requires an owner id")
        return cls(db, case_id, owner_id)

    def _query(self):
        query = self.db.query(ObjectHash).filter(ObjectHash.case_id == self.case_id)
        if self.owner_id is None:
            return query.filter(ObjectHash.owner_id.is_(None))
        return query.filter(ObjectHash.owner_id == self.owner_id)

    def _find(self, object_key: str, version_id: str) -> ObjectHash | None:
        # (object_key, version_id) is unique across partitions, so look it up
        # globally to detect conflicts, then enforce the partition.
        return (
            self.db.query(ObjectHash)
            .filter(ObjectHash.object_key == object_key, ObjectHash.version_id == version_id)
            .first()
        )

    def _in_partition(self, row: ObjectHash) -> bool:
        return row.case_id == self.case_id and row.owner_id == self.owner_id

    def record(self, object_key: str, version_id: str, md5: str, sha256: str) -> ObjectRecord:
        md5 = normalize_md5(md5)
        sha256 = normalize_sha256(sha256)

        existing = self._find(object_key, version_id)
        if existing is not None:
            if (
                self._in_partition(existing)
                and existing.md5_hash == md5
                and existing.sha256_hash == sha256
            ):
                return ObjectRecord.from_row(existing)
            logger.error(
                "Ledger conflict for %s version %s", object_key, version_id
            )
            raise ConflictError(
                f"A hash entry already exists for `{object_key}` version `{version_id}`"
                " with different values",
                object_key=object_key,
                version_id=version_id,
            )

        row = ObjectHash(
            case_id=self.case_id,
            owner_id=self.owner_id,
            object_key=object_key,
            version_id=version_id,
            md5_hash=md5,
            sha256_hash=sha256,
        )
        self.db.add(row)
        self.db.commit()
        logger.info("Recorded hashes for %s version %s", object_key, version_id)
        return ObjectRecord.from_row(row)

    def lookup(self, object_key: str, version_id: str) -> ObjectRecord:
        row = (
            self._query()
            .filter(ObjectHash.object_key == object_key, ObjectHash.version_id == version_id)
            .first()
        )
        if row is None:
            raise LedgerEntryNotFound(
                f"Unable to find hash values for `{object_key}` version `{version_id}`",
                object_key=object_key,
                version_id=version_id,
            )
        return ObjectRecord.from_row(row)

    def entries(self) -> list[ObjectRecord]:
        rows = self._query().order_by(ObjectHash.id.asc()).all()
        return [ObjectRecord.from_row(r) for r in rows]
