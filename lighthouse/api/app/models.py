from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base


class ObjectHash(Base):
    """
    Expected digests for one version of one stored object.

    Rows are partitioned by case (shared content, ``owner_id`` NULL) or by
    case and owner (personal content). Rows are insert-only.
    """

    __tablename__ = "object_hashes"
    __table_args__ = (
        UniqueConstraint("object_key", "version_id", name="uq_object_hashes_key_version"),
        Index("ix_object_hashes_partition", "case_id", "owner_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    case_id: Mapped[str] = mapped_column(String(64), nullable=False)
    owner_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    object_key: Mapped[str] = mapped_column(String(1024), nullable=False)
    version_id: Mapped[str] = mapped_column(String(255), nullable=False)
    md5_hash: Mapped[str] = mapped_column(String(32), nullable=False)
    sha256_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
