from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Annotated

from fastapi import APIRouter, Depends, File, Header, HTTPException, Request, UploadFile
from fastapi.responses import RedirectResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from .collaborators import AuditSink, CaseDirectory, Renderer, emit_audit
from .db import get_db
from .export import ExportAssembler
from .hash_ledger import HashLedger
from .integrity import IntegrityVerifier
from .object_paths import AssetKind, ContentType, Scope
from .references import DocumentContext, ReferenceResolver
from .storage import BlobStoreGateway, UpsertResult

logger = logging.getLogger(__name__)

DOCUMENT_CONTENT_TYPE = "text/html; charset=utf-8"


@dataclass
class ContentServices:
    """Per-application collaborators, stored on ``app.state.services``."""

    gateway: BlobStoreGateway
    verifier: IntegrityVerifier
    resolver: ReferenceResolver
    directory: CaseDirectory
    renderer: Renderer
    audit: AuditSink | None = None


def get_services(request: Request) -> ContentServices:
    return request.app.state.services


def get_requester_id(x_user_id: Annotated[str | None, Header()] = None) -> str:
    """Requester identity; deployments override this with their auth dependency."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id


DbSession = Annotated[Session, Depends(get_db)]
Services = Annotated[ContentServices, Depends(get_services)]
RequesterId = Annotated[str, Depends(get_requester_id)]

router = APIRouter(prefix="/api/cases", tags=["content"])


class DocumentUpload(BaseModel):
    content: str


class StoredObjectResponse(BaseModel):
    object_key: str
    version_id: str
    outcome: str
    md5_hash: str
    sha256_hash: str


class AssetResponse(BaseModel):
    name: str
    version_id: str
    url: str


class DocumentResponse(BaseModel):
    object_key: str
    version_id: str
    content: str
    assets: list[AssetResponse]


class ExportResponse(BaseModel):
    object_key: str
    version_id: str
    url: str
    file_name: str
    entry_count: int


def _stored(result: UpsertResult) -> StoredObjectResponse:
    return StoredObjectResponse(
        object_key=result.record.object_key,
        version_id=result.record.version_id,
        outcome=result.outcome.value,
        md5_hash=result.record.md5_hash,
        sha256_hash=result.record.sha256_hash,
    )


def _context(case_id: str, scope: Scope, content_type: ContentType, content_id: str,
             requester_id: str) -> DocumentContext:
    if content_type is ContentType.EXPORT:
        raise HTTPException(status_code=400, detail="Exports are created via /export")
    return DocumentContext(
        case_id=case_id,
        scope=scope,
        owner_id=requester_id if scope is Scope.PERSONAL else None,
        content_type=content_type,
        content_id=content_id,
    )


def _ledger(db: Session, context: DocumentContext) -> HashLedger:
    return HashLedger.for_scope(db, context.case_id, context.scope, context.owner_id)


@router.post(
    "/{case_id}/{scope}/{content_type}/{content_id}/content",
    response_model=StoredObjectResponse,
)
def upload_document(
    case_id: str,
    scope: Scope,
    content_type: ContentType,
    content_id: str,
    payload: DocumentUpload,
    db: DbSession,
    services: Services,
    requester_id: RequesterId,
) -> StoredObjectResponse:
    context = _context(case_id, scope, content_type, content_id, requester_id)
    result = services.verifier.write(
        context.object_key,
        payload.content.encode("utf-8"),
        _ledger(db, context),
        content_type=DOCUMENT_CONTENT_TYPE,
    )
    emit_audit(
        services.audit,
        f"Stored {content_type.value} `{content_id}` ({result.outcome.value}).",
        case_id=case_id,
        user_id=requester_id,
        object_key=context.object_key,
    )
    return _stored(result)


@router.get(
    "/{case_id}/{scope}/{content_type}/{content_id}/content",
    response_model=DocumentResponse,
)
def read_document(
    case_id: str,
    scope: Scope,
    content_type: ContentType,
    content_id: str,
    db: DbSession,
    services: Services,
    requester_id: RequesterId,
) -> DocumentResponse:
    context = _context(case_id, scope, content_type, content_id, requester_id)
    resolved = services.resolver.load(context, _ledger(db, context))
    return DocumentResponse(
        object_key=resolved.record.object_key,
        version_id=resolved.record.version_id,
        content=resolved.content,
        assets=[
            AssetResponse(name=a.name, version_id=a.record.version_id, url=a.url)
            for a in resolved.assets
        ],
    )


@router.post(
    "/{case_id}/{scope}/{content_type}/{content_id}/{asset_kind}",
    response_model=list[StoredObjectResponse],
)
def upload_assets(
    case_id: str,
    scope: Scope,
    content_type: ContentType,
    content_id: str,
    asset_kind: AssetKind,
    db: DbSession,
    services: Services,
    requester_id: RequesterId,
    files: list[UploadFile] = File(...),
) -> list[StoredObjectResponse]:
    context = _context(case_id, scope, content_type, content_id, requester_id)
    ledger = _ledger(db, context)
    stored: list[StoredObjectResponse] = []
    for upload in files:
        if not upload.filename:
            raise HTTPException(status_code=400, detail="Uploaded file has no name")
        key = context.asset_key(upload.filename, asset_kind)
        result = services.verifier.write(
            key,
            upload.file.read(),
            ledger,
            overwrite=False,
            content_type=upload.content_type or "application/octet-stream",
        )
        stored.append(_stored(result))
    logger.info("Stored %d %s for %s", len(stored), asset_kind.value, context.object_key)
    return stored


@router.get("/{case_id}/{scope}/{content_type}/{content_id}/{asset_kind}/{name}")
def read_asset(
    case_id: str,
    scope: Scope,
    content_type: ContentType,
    content_id: str,
    asset_kind: AssetKind,
    name: str,
    db: DbSession,
    services: Services,
    requester_id: RequesterId,
) -> RedirectResponse:
    context = _context(case_id, scope, content_type, content_id, requester_id)
    key = context.asset_key(name, asset_kind)
    record = services.verifier.verify_record(key, _ledger(db, context))
    url = services.gateway.presign(key, services.resolver.ttl, version_id=record.version_id)
    return RedirectResponse(url, status_code=307)


@router.post("/{case_id}/export", response_model=ExportResponse)
def create_export(
    case_id: str,
    db: DbSession,
    services: Services,
    requester_id: RequesterId,
) -> ExportResponse:
    assembler = ExportAssembler(
        db,
        services.directory,
        services.verifier,
        services.resolver,
        services.gateway,
        services.renderer,
        audit=services.audit,
        ttl=services.resolver.ttl,
    )
    result = assembler.export(case_id, requester_id)
    return ExportResponse(
        object_key=result.object_key,
        version_id=result.version_id,
        url=result.url,
        file_name=result.file_name,
        entry_count=result.entry_count,
    )
