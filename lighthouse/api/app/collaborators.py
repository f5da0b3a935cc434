"""
Interfaces of the systems this package consumes but does not own.

The Case Directory (relational case/user/content metadata), the Audit Sink
(append-only action log) and the Renderer (export model to binary document)
are supplied by the host application.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum as PyEnum
from typing import TYPE_CHECKING, Any, Iterable, Protocol

from .object_paths import ContentType, Scope
from .references import DocumentContext

if TYPE_CHECKING:
    from .export.assembler import ExportModel

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("lighthouse.audit")


class ContentKind(str, PyEnum):
    NOTE = "contemporaneous-note"
    TAB = "tab"
    SHARED_NOTE = "shared-contemporaneous-note"
    SHARED_TAB = "shared-tab"
    EXHIBIT_FILE = "exhibit-file"

    @property
    def scope(self) -> Scope:
        if self in (ContentKind.NOTE, ContentKind.TAB):
            return Scope.PERSONAL
        return Scope.SHARED

    @property
    def content_type(self) -> ContentType:
        if self in (ContentKind.NOTE, ContentKind.SHARED_NOTE):
            return ContentType.CONTEMPORANEOUS_NOTES
        if self is ContentKind.EXHIBIT_FILE:
            return ContentType.EXHIBITS
        return ContentType.TABS

    @property
    def is_document(self) -> bool:
        return self is not ContentKind.EXHIBIT_FILE


@dataclass(frozen=True)
class CaseUserInfo:
    user_id: str
    display_name: str
    job_title: str = ""
    email: str = ""
    organization: str = ""
    roles: tuple[str, ...] = ()
    time_zone: str = "UTC"

    @property
    def name_job(self) -> str:
        if self.job_title:
            return f"{self.display_name} ({self.job_title})"
        return self.display_name


@dataclass(frozen=True)
class CaseSnapshot:
    case_id: str
    display_id: str
    name: str
    display_name: str
    status: str
    created: datetime | None = None
    modified: datetime | None = None


@dataclass(frozen=True)
class ExhibitSnapshot:
    exhibit_id: str
    reference: str
    description: str
    seized_at: datetime | None = None
    where_seized: str = ""
    seized_by: str = ""


@dataclass(frozen=True)
class ContentDescriptor:
    """Identity and metadata of one stored content item."""

    kind: ContentKind
    case_id: str
    content_id: str
    owner_id: str | None = None
    title: str = ""
    created: datetime | None = None
    creator: CaseUserInfo | None = None
    # Exhibit files: the stored file name under files/
    file_name: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def context(self) -> DocumentContext:
        return DocumentContext(
            case_id=self.case_id,
            scope=self.kind.scope,
            owner_id=self.owner_id if self.kind.scope is Scope.PERSONAL else None,
            content_type=self.kind.content_type,
            content_id=self.content_id,
        )


class CaseDirectory(Protocol):
    """Read-only view of case metadata owned by the relational store."""

    def get_case(self, case_id: str) -> CaseSnapshot: ...

    def list_case_users(self, case_id: str) -> list[CaseUserInfo]: ...

    def lead_investigator(self, case_id: str) -> CaseUserInfo: ...

    def get_user(self, case_id: str, user_id: str) -> CaseUserInfo: ...

    def list_content(self, case_id: str, requester_id: str) -> Iterable[ContentDescriptor]:
        """The requester's personal items followed by the case's shared items."""
        ...

    def list_exhibits(self, case_id: str) -> list[ExhibitSnapshot]: ...


class AuditSink(Protocol):
    def emit(self, action: str, **fields: Any) -> None: ...


class Renderer(Protocol):
    def render(self, document: "ExportModel", case: CaseSnapshot) -> bytes: ...


class LoggingAuditSink:
    """Default sink: writes audit actions to the ``lighthouse.audit`` logger."""

    def emit(self, action: str, **fields: Any) -> None:
        audit_logger.info("%s %s", action, fields)


def emit_audit(sink: AuditSink | None, action: str, **fields: Any) -> None:
    """Fire-and-forget: an audit failure is logged, never raised to the caller."""
    if sink is None:
        return
    try:
        sink.emit(action, **fields)
    except Exception as exc:
        logger.warning("Audit sink rejected action %r: %s", action, exc)
