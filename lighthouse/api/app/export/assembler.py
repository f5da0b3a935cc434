"""
Case export: verify, resolve and assemble every content item of a case for
one requester, render the result and store the artifact.

Export is fail-closed. The first item that fails verification or reference
resolution aborts the whole export and nothing is rendered or stored.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Iterator
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.orm import Session

from ..collaborators import (
    AuditSink,
    CaseDirectory,
    CaseSnapshot,
    CaseUserInfo,
    ContentDescriptor,
    ContentKind,
    ExhibitSnapshot,
    Renderer,
    emit_audit,
)
from ..errors import IntegrityError
from ..hash_ledger import HashLedger, ObjectRecord
from ..integrity import IntegrityVerifier
from ..object_paths import AssetKind, Scope, export_object_key
from ..references import ReferenceResolver, ResolvedAsset
from ..storage import PRESIGN_TTL_SECONDS, BlobStoreGateway

logger = logging.getLogger(__name__)

EXPORT_CONTENT_TYPE = "application/pdf"

ENTRY_ORDER = [
    ContentKind.NOTE,
    ContentKind.TAB,
    ContentKind.SHARED_NOTE,
    ContentKind.SHARED_TAB,
    ContentKind.EXHIBIT_FILE,
]


@dataclass
class ExportEntry:
    kind: ContentKind
    content_id: str
    title: str
    content: str
    record: ObjectRecord
    created: datetime | None = None
    creator: CaseUserInfo | None = None
    assets: list[ResolvedAsset] = field(default_factory=list)
    attachment_url: str | None = None


@dataclass
class ExportModel:
    case: CaseSnapshot
    requester: CaseUserInfo
    lead_investigator: CaseUserInfo
    users: list[CaseUserInfo]
    exhibits: list[ExhibitSnapshot]
    entries: list[ExportEntry]
    generated_at: datetime
    time_zone: str = "UTC"

    def close(self) -> None:
        """Release the spooled image bytes held by every entry."""
        _close_entries(self.entries)

    def of_kind(self, kind: ContentKind) -> list[ExportEntry]:
        return [e for e in self.entries if e.kind is kind]

    @property
    def notes(self) -> list[ExportEntry]:
        return self.of_kind(ContentKind.NOTE)

    @property
    def tabs(self) -> list[ExportEntry]:
        return self.of_kind(ContentKind.TAB)

    @property
    def shared_notes(self) -> list[ExportEntry]:
        return self.of_kind(ContentKind.SHARED_NOTE)

    @property
    def shared_tabs(self) -> list[ExportEntry]:
        return self.of_kind(ContentKind.SHARED_TAB)


@dataclass(frozen=True)
class ExportResult:
    object_key: str
    version_id: str
    url: str
    file_name: str
    entry_count: int


def _close_entries(entries: list[ExportEntry]) -> None:
    for entry in entries:
        for asset in entry.assets:
            asset.close()


def _zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown time zone %r, using UTC", name)
        return ZoneInfo("UTC")


def to_local_time(value: datetime | None, zone: ZoneInfo) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(zone)


def export_file_name(case: CaseSnapshot) -> str:
    return f"Lighthouse Notes Export {case.display_name}.pdf"


class ExportAssembler:
    def __init__(self, db: Session, directory: CaseDirectory, verifier: IntegrityVerifier,
                 resolver: ReferenceResolver, gateway: BlobStoreGateway, renderer: Renderer,
                 audit: AuditSink | None = None, ttl: int = PRESIGN_TTL_SECONDS):
        self.db = db
        self.directory = directory
        self.verifier = verifier
        self.resolver = resolver
        self.gateway = gateway
        self.renderer = renderer
        self.audit = audit
        self.ttl = ttl

    def _ledger_for(self, descriptor: ContentDescriptor, requester_id: str) -> HashLedger:
        if descriptor.kind.scope is Scope.SHARED:
            return HashLedger(self.db, descriptor.case_id)
        return HashLedger(self.db, descriptor.case_id, descriptor.owner_id or requester_id)

    def _entry(self, descriptor: ContentDescriptor, requester_id: str,
               zone: ZoneInfo) -> ExportEntry:
        ledger = self._ledger_for(descriptor, requester_id)
        context = descriptor.context
        if descriptor.kind.scope is Scope.PERSONAL and context.owner_id is None:
            context = replace(context, owner_id=requester_id)

        if not descriptor.kind.is_document:
            key = context.asset_key(descriptor.file_name or descriptor.title, AssetKind.FILES)
            record = self.verifier.verify_record(key, ledger)
            return ExportEntry(
                kind=descriptor.kind,
                content_id=descriptor.content_id,
                title=descriptor.title or descriptor.file_name or "",
                content="",
                record=record,
                created=to_local_time(descriptor.created, zone),
                creator=descriptor.creator,
                attachment_url=self.gateway.presign(key, self.ttl, version_id=record.version_id),
            )

        resolved = self.resolver.load(context, ledger, keep_bodies=True)
        return ExportEntry(
            kind=descriptor.kind,
            content_id=descriptor.content_id,
            title=descriptor.title,
            content=resolved.content,
            record=resolved.record,
            created=to_local_time(descriptor.created, zone),
            creator=descriptor.creator,
            assets=resolved.assets,
        )

    def iter_entries(self, case_id: str, requester_id: str,
                     time_zone: str = "UTC") -> Iterator[ExportEntry]:
        """
        Yield verified, resolved entries one at a time: personal notes and
        tabs first, then shared notes, shared tabs and exhibit files.
        """
        zone = _zone(time_zone)
        descriptors = sorted(
            self.directory.list_content(case_id, requester_id),
            key=lambda d: ENTRY_ORDER.index(d.kind),
        )
        for descriptor in descriptors:
            if (
                descriptor.kind.scope is Scope.PERSONAL
                and descriptor.owner_id is not None
                and descriptor.owner_id != requester_id
            ):
                logger.debug(
                    "Skipping %s %s owned by another user",
                    descriptor.kind.value,
                    descriptor.content_id,
                )
                continue
            yield self._entry(descriptor, requester_id, zone)

    def assemble(self, case_id: str, requester_id: str) -> ExportModel:
        """
        Build the export model. Image bytes of the entries stay open until
        ``ExportModel.close``; on failure everything opened so far is closed.
        """
        case = self.directory.get_case(case_id)
        requester = self.directory.get_user(case_id, requester_id)
        lead_investigator = self.directory.lead_investigator(case_id)
        users = self.directory.list_case_users(case_id)
        exhibits = self.directory.list_exhibits(case_id)
        zone = _zone(requester.time_zone)

        entries: list[ExportEntry] = []
        try:
            for entry in self.iter_entries(case_id, requester_id, requester.time_zone):
                entries.append(entry)
        except Exception:
            _close_entries(entries)
            raise

        return ExportModel(
            case=case,
            requester=requester,
            lead_investigator=lead_investigator,
            users=users,
            exhibits=exhibits,
            entries=entries,
            generated_at=datetime.now(timezone.utc).astimezone(zone),
            time_zone=str(zone.key),
        )

    def export(self, case_id: str, requester_id: str) -> ExportResult:
        try:
            model = self.assemble(case_id, requester_id)
        except Exception:
            logger.error("Export aborted for case %s (user %s)", case_id, requester_id)
            raise

        try:
            artifact = self.renderer.render(model, model.case)
        finally:
            model.close()

        file_name = export_file_name(model.case)
        object_key = export_object_key(case_id, requester_id, uuid.uuid4().hex, file_name)
        ledger = HashLedger(self.db, case_id, requester_id)
        try:
            result = self.verifier.write(
                object_key, artifact, ledger, overwrite=False, content_type=EXPORT_CONTENT_TYPE
            )
        except IntegrityError:
            logger.error(
                "Export artifact %s failed verification after write and is left in"
                " bucket %s",
                object_key,
                self.gateway.bucket,
            )
            raise
        url = self.gateway.presign(object_key, self.ttl, version_id=result.version_id)

        emit_audit(
            self.audit,
            f"`{model.requester.name_job}` created a PDF export for the case"
            f" `{model.case.display_name}`.",
            case_id=case_id,
            user_id=requester_id,
            object_key=object_key,
        )
        logger.info(
            "Stored export %s with %d entries", object_key, len(model.entries)
        )
        return ExportResult(
            object_key=object_key,
            version_id=result.version_id,
            url=url,
            file_name=file_name,
            entry_count=len(model.entries),
        )
