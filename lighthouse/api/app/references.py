"""
Local asset references in rich-text case documents.

Authors embed images before any durable URL exists, so stored documents use
``<img src=".path/{file name}">``. That stored (symbolic) form is turned into
a resolved form, where each marker becomes a presigned URL for the verified
asset version. Resolution builds a new document; the stored one is untouched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Mapping
from urllib.parse import unquote

from bs4 import BeautifulSoup

from .hash_ledger import HashLedger, ObjectRecord
from .integrity import IntegrityVerifier, VerifiedObject
from .object_paths import AssetKind, ContentType, Scope, resolve_object_key
from .storage import PRESIGN_TTL_SECONDS, BlobStoreGateway

logger = logging.getLogger(__name__)

DEFAULT_MARKER = ".path/"


@dataclass(frozen=True)
class DocumentContext:
    """Where a document lives; its assets share the same location."""

    case_id: str
    scope: Scope
    owner_id: str | None
    content_type: ContentType
    content_id: str

    @property
    def object_key(self) -> str:
        return resolve_object_key(
            self.case_id, self.scope, self.owner_id, self.content_type, self.content_id
        )

    def asset_key(self, name: str, kind: AssetKind = AssetKind.IMAGES) -> str:
        return resolve_object_key(
            self.case_id, self.scope, self.owner_id, self.content_type, self.content_id,
            asset_name=name, asset_kind=kind,
        )


@dataclass(frozen=True)
class ResolvedAsset:
    name: str
    record: ObjectRecord
    url: str
    # Verified bytes, kept only when the caller asked for them
    body: VerifiedObject | None = None

    def close(self) -> None:
        if self.body is not None:
            self.body.close()


@dataclass
class ResolvedDocument:
    content: str
    assets: list[ResolvedAsset] = field(default_factory=list)
    substitutions: int = 0

    def close(self) -> None:
        for asset in self.assets:
            asset.close()


@dataclass
class LoadedDocument(ResolvedDocument):
    """A resolved document that was itself read and verified from the store."""

    record: ObjectRecord = field(kw_only=True)


def _local_sources(soup: BeautifulSoup, marker: str) -> list:
    return [
        img for img in soup.find_all("img")
        if str(img.get("src") or "").startswith(marker)
    ]


def find_local_references(html: str, marker: str = DEFAULT_MARKER) -> list[str]:
    """Every ``src`` value that still points at a local marker, in document order."""
    if not html or marker not in html:
        return []
    soup = BeautifulSoup(html, "html.parser")
    return [str(img["src"]) for img in _local_sources(soup, marker)]


def asset_name_from_src(src: str, marker: str = DEFAULT_MARKER) -> str:
    return unquote(src[len(marker):])


def rewrite_references(html: str, urls: Mapping[str, str],
                       marker: str = DEFAULT_MARKER) -> str:
    """
    Replace marker sources with the URLs in ``urls`` (keyed by original src).

    Pure: no storage access. A document with no marker references is
    returned unchanged.
    """
    if not html or marker not in html:
        return html
    soup = BeautifulSoup(html, "html.parser")
    images = _local_sources(soup, marker)
    if not images:
        return html
    for img in images:
        src = str(img["src"])
        if src not in urls:
            raise KeyError(f"No resolved URL for local reference `{src}`")
        img["src"] = urls[src]
    return str(soup)


class ReferenceResolver:
    def __init__(self, verifier: IntegrityVerifier, gateway: BlobStoreGateway, *,
                 marker: str = DEFAULT_MARKER, ttl: int = PRESIGN_TTL_SECONDS):
        self.verifier = verifier
        self.gateway = gateway
        self.marker = marker
        self.ttl = ttl

    def _resolve_asset(self, name: str, context: DocumentContext, ledger: HashLedger,
                       keep_body: bool) -> ResolvedAsset:
        key = context.asset_key(name)
        if keep_body:
            body = self.verifier.verify(key, ledger)
            record = body.record
        else:
            body = None
            record = self.verifier.verify_record(key, ledger)
        url = self.gateway.presign(key, self.ttl, version_id=record.version_id)
        return ResolvedAsset(name=name, record=record, url=url, body=body)

    def resolve(self, document: str, context: DocumentContext,
                ledger: HashLedger, *, keep_bodies: bool = False) -> ResolvedDocument:
        """
        Verify every referenced asset, then substitute presigned URLs.

        Verification of all assets happens before any substitution, so a
        single unverifiable asset fails the whole document. With
        ``keep_bodies`` each asset carries its verified bytes; the caller
        closes them via ``ResolvedDocument.close``.
        """
        sources = find_local_references(document, self.marker)
        if not sources:
            return ResolvedDocument(content=document)

        urls: dict[str, str] = {}
        assets: list[ResolvedAsset] = []
        try:
            for src in dict.fromkeys(sources):
                name = asset_name_from_src(src, self.marker)
                asset = self._resolve_asset(name, context, ledger, keep_bodies)
                urls[src] = asset.url
                assets.append(asset)
        except Exception:
            for asset in assets:
                asset.close()
            raise

        logger.debug(
            "Resolved %d local references in %s", len(sources), context.object_key
        )
        return ResolvedDocument(
            content=rewrite_references(document, urls, self.marker),
            assets=assets,
            substitutions=len(sources),
        )

    def load(self, context: DocumentContext, ledger: HashLedger, *,
             keep_bodies: bool = False) -> LoadedDocument:
        """Verify the stored document itself, then resolve its references."""
        stored, record = self.verifier.read_text(context.object_key, ledger)
        resolved = self.resolve(stored, context, ledger, keep_bodies=keep_bodies)
        return LoadedDocument(
            content=resolved.content,
            assets=resolved.assets,
            substitutions=resolved.substitutions,
            record=record,
        )
