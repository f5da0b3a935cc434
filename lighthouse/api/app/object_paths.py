"""
Deterministic object keys for case content.

    cases/{caseId}/{scope}/{contentType}/{contentId}/{artifact}

scope is the owner id for personal content or the literal ``shared``;
artifact is the primary document (``note.txt`` / ``content.txt``) or a
sub-asset (``images/{name}`` / ``files/{name}``).
"""

from __future__ import annotations

from enum import Enum as PyEnum

SHARED_SEGMENT = "shared"
NOTE_ARTIFACT = "note.txt"
CONTENT_ARTIFACT = "content.txt"


class Scope(str, PyEnum):
    PERSONAL = "personal"
    SHARED = "shared"


class ContentType(str, PyEnum):
    CONTEMPORANEOUS_NOTES = "contemporaneous-notes"
    TABS = "tabs"
    EXHIBITS = "exhibits"
    EXPORT = "export"

    @property
    def primary_artifact(self) -> str:
        if self is ContentType.CONTEMPORANEOUS_NOTES:
            return NOTE_ARTIFACT
        return CONTENT_ARTIFACT


class AssetKind(str, PyEnum):
    IMAGES = "images"
    FILES = "files"


def _segment(value: object) -> str:
    # Escaping '%' first keeps the mapping injective.
    return str(value).replace("%", "%25").replace("/", "%2F")


def scope_segment(scope: Scope | str, owner_id: object | None) -> str:
    if Scope(scope) is Scope.SHARED:
        return SHARED_SEGMENT
    if owner_id is None:
        raise ValueError("Personal content requires an owner id")
    segment = _segment(owner_id)
    if segment == SHARED_SEGMENT:
        # an owner literally named "shared" must not land in the shared tree
        return "%73hared"
    return segment


def content_prefix(case_id: object, scope: Scope | str, owner_id: object | None,
                   content_type: ContentType | str, content_id: object) -> str:
    return "/".join((
        "cases",
        _segment(case_id),
        scope_segment(scope, owner_id),
        ContentType(content_type).value,
        _segment(content_id),
    ))


def resolve_object_key(case_id: object, scope: Scope | str, owner_id: object | None,
                       content_type: ContentType | str, content_id: object,
                       asset_name: str | None = None,
                       asset_kind: AssetKind | str = AssetKind.IMAGES) -> str:
    """Object key for a document (``asset_name`` None) or one of its assets."""
    prefix = content_prefix(case_id, scope, owner_id, content_type, content_id)
    if asset_name is None:
        return f"{prefix}/{ContentType(content_type).primary_artifact}"
    return f"{prefix}/{AssetKind(asset_kind).value}/{_segment(asset_name)}"


def export_object_key(case_id: object, owner_id: object, export_id: object,
                      file_name: str) -> str:
    return resolve_object_key(
        case_id, Scope.PERSONAL, owner_id, ContentType.EXPORT, export_id,
        asset_name=file_name, asset_kind=AssetKind.FILES,
    )
