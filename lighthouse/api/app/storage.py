"""
S3/MinIO blob store gateway.
Handles bucket checks, stat/get/put, presigned URLs and ledgered upserts.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum as PyEnum
from typing import Any, BinaryIO, Callable, Protocol, cast

from boto3 import Session
from botocore.client import Config  # type: ignore[reportMissingTypeStubs]
from botocore.exceptions import ClientError  # type: ignore[reportMissingTypeStubs]

from .errors import ConfigurationError, ConflictError, LedgerEntryNotFound, ObjectNotFound
from .hash_ledger import HashLedger, ObjectRecord
from .hashing import digest_bytes


LOGGER = logging.getLogger(__name__)

PRESIGN_TTL_SECONDS = 3600
# Version id S3 reports for objects written while versioning was off
NULL_VERSION = "null"
DEFAULT_CONTENT_TYPE = "application/octet-stream"

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound", "NoSuchVersion"}


class S3ClientProtocol(Protocol):
    """Subset of S3 client methods used in this module."""

    def head_bucket(self, *args: Any, **kwargs: Any) -> Any: ...

    def get_bucket_versioning(self, *args: Any, **kwargs: Any) -> dict[str, Any]: ...

    def head_object(self, *args: Any, **kwargs: Any) -> dict[str, Any]: ...

    def get_object(self, *args: Any, **kwargs: Any) -> dict[str, Any]: ...

    def put_object(self, *args: Any, **kwargs: Any) -> dict[str, Any]: ...

    def generate_presigned_url(self, *args: Any, **kwargs: Any) -> str: ...


@dataclass(frozen=True)
class StorageConfig:
    endpoint: str
    bucket: str
    access_key: str | None = None
    secret_key: str | None = None
    region: str = "us-east-1"
    secure: bool = False

    @classmethod
    def from_settings(cls, settings: Any) -> "StorageConfig":
        return cls(
            endpoint=settings.S3_ENDPOINT,
            bucket=settings.S3_BUCKET,
            access_key=settings.S3_ACCESS_KEY,
            secret_key=settings.S3_SECRET_KEY,
            region=settings.S3_REGION,
            secure=settings.S3_NETWORK_ENCRYPTION,
        )

    @property
    def endpoint_url(self) -> str | None:
        """Ensure endpoints include a scheme so boto3 accepts them."""
        if not self.endpoint:
            return None
        if self.endpoint.startswith("http://") or self.endpoint.startswith("https://"):
            return self.endpoint
        scheme = "https" if self.secure else "http"
        return f"{scheme}://{self.endpoint}"


@dataclass(frozen=True)
class ObjectStat:
    object_key: str
    version_id: str
    size: int | None = None
    etag: str | None = None
    last_modified: datetime | None = None


@dataclass
class FetchedObject:
    """An open object body plus the version the store actually served."""

    object_key: str
    version_id: str
    body: BinaryIO
    size: int | None = None

    def close(self) -> None:
        self.body.close()

    def __enter__(self) -> "FetchedObject":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class UpsertOutcome(str, PyEnum):
    CREATED = "created"  # no object existed; written and recorded
    VERIFIED = "verified"  # existing version verified, identical bytes, no write
    UPDATED = "updated"  # existing version verified, new version written and recorded


@dataclass(frozen=True)
class UpsertResult:
    outcome: UpsertOutcome
    record: ObjectRecord

    @property
    def version_id(self) -> str:
        return self.record.version_id


def _is_not_found(exc: ClientError) -> bool:
    response = cast(dict[str, Any], getattr(exc, "response", {}) or {})
    status_code = (response.get("ResponseMetadata") or {}).get("HTTPStatusCode")
    error_code = str((response.get("Error") or {}).get("Code") or "")
    return status_code == 404 or error_code in _NOT_FOUND_CODES


def _version_params(version_id: str | None) -> dict[str, str]:
    if version_id and version_id != NULL_VERSION:
        return {"VersionId": version_id}
    return {}


def build_s3_client(config: StorageConfig) -> S3ClientProtocol:
    """Get S3 client for AWS S3 or MinIO."""
    session = Session(
        aws_access_key_id=config.access_key,
        aws_secret_access_key=config.secret_key,
        region_name=config.region,
    )
    return cast(
        S3ClientProtocol,
        session.client(
            "s3",
            endpoint_url=config.endpoint_url,
            use_ssl=config.secure,
            config=Config(signature_version="s3v4", s3={"addressing_style": "path"}),
        ),
    )


class BlobStoreGateway:
    """Thin wrapper over one bucket; configuration is fixed at construction."""

    def __init__(self, config: StorageConfig, client: S3ClientProtocol | None = None):
        self.config = config
        self.bucket = config.bucket
        self._client = client

    @property
    def client(self) -> S3ClientProtocol:
        if self._client is None:
            self._client = build_s3_client(self.config)
        return self._client

    def ensure_bucket(self) -> None:
        """
        Fail if the bucket is missing or unversioned; buckets are a deployment
        precondition. Without versioning a rewrite replaces the recorded bytes.
        """
        try:
            self.client.head_bucket(Bucket=self.bucket)
            versioning = self.client.get_bucket_versioning(Bucket=self.bucket)
        except ClientError as e:
            error_code = str(
                (cast(dict[str, Any], e.response).get("Error") or {}).get("Code", "")
            )
            if _is_not_found(e) or error_code == "NoSuchBucket":
                raise ConfigurationError(
                    f"An S3 Bucket with the name `{self.bucket}` does not exist!"
                ) from e
            if error_code in ("403", "AccessDenied"):
                raise ConfigurationError(
                    f"Access denied to S3 bucket `{self.bucket}`."
                ) from e
            raise
        status = (versioning or {}).get("Status")
        if status != "Enabled":
            raise ConfigurationError(
                f"Versioning is not enabled on S3 bucket `{self.bucket}`"
                f" (status `{status or 'Off'}`)."
            )

    def stat(self, object_key: str, version_id: str | None = None) -> ObjectStat:
        try:
            data = self.client.head_object(
                Bucket=self.bucket, Key=object_key, **_version_params(version_id)
            )
        except ClientError as e:
            if _is_not_found(e):
                raise ObjectNotFound(
                    f"Can not find the S3 object at the path `{object_key}`",
                    object_key=object_key,
                    version_id=version_id,
                ) from e
            raise
        return ObjectStat(
            object_key=object_key,
            version_id=data.get("VersionId") or NULL_VERSION,
            size=data.get("ContentLength"),
            etag=(data.get("ETag") or "").strip('"') or None,
            last_modified=data.get("LastModified"),
        )

    def exists(self, object_key: str) -> bool:
        try:
            self.stat(object_key)
        except ObjectNotFound:
            return False
        return True

    def fetch(self, object_key: str, version_id: str | None = None) -> FetchedObject:
        try:
            obj = self.client.get_object(
                Bucket=self.bucket, Key=object_key, **_version_params(version_id)
            )
        except ClientError as e:
            if _is_not_found(e):
                raise ObjectNotFound(
                    f"Can not find the S3 object at the path `{object_key}`",
                    object_key=object_key,
                    version_id=version_id,
                ) from e
            raise
        body = obj.get("Body")
        if body is None:
            raise ObjectNotFound(
                f"Object `{object_key}` has no body", object_key=object_key
            )
        return FetchedObject(
            object_key=object_key,
            version_id=obj.get("VersionId") or NULL_VERSION,
            body=cast(BinaryIO, body),
            size=obj.get("ContentLength"),
        )

    def put(self, object_key: str, content: bytes,
            content_type: str = DEFAULT_CONTENT_TYPE, *, md5_hex: str | None = None) -> str | None:
        """Write ``content``; returns the version id reported by the store, if any."""
        extra: dict[str, Any] = {}
        if md5_hex:
            # The store rejects the body if it arrives with a different MD5.
            extra["ContentMD5"] = base64.b64encode(bytes.fromhex(md5_hex)).decode("ascii")
        response = self.client.put_object(
            Bucket=self.bucket,
            Key=object_key,
            Body=content,
            ContentType=content_type,
            **extra,
        )
        return (response or {}).get("VersionId")

    def presign(self, object_key: str, ttl: int = PRESIGN_TTL_SECONDS,
                version_id: str | None = None) -> str:
        """Time-bounded, read-only URL for one object (version)."""
        params: dict[str, Any] = {"Bucket": self.bucket, "Key": object_key}
        params.update(_version_params(version_id))
        return self.client.generate_presigned_url(
            "get_object",
            Params=params,
            ExpiresIn=int(ttl),
            HttpMethod="GET",
        )

    def _put_and_record(self, object_key: str, content: bytes, ledger: HashLedger,
                        content_type: str) -> ObjectRecord:
        digest = digest_bytes(content)
        put_version = self.put(object_key, content, content_type, md5_hex=digest.md5)
        # Re-stat for the version id the store assigned to these bytes.
        stat = self.stat(object_key, version_id=put_version)
        return ledger.record(object_key, stat.version_id, digest.md5, digest.sha256)

    def upsert(self, object_key: str, content: bytes, ledger: HashLedger,
               verify_existing: Callable[[str], ObjectRecord], *,
               overwrite: bool = True,
               content_type: str = DEFAULT_CONTENT_TYPE) -> UpsertResult:
        """
        Write ``content`` at ``object_key`` and record its hashes.

        An existing object is only replaced after ``verify_existing`` has
        verified its current version against the ledger. Existing content with
        no ledger entry is never overwritten.
        """
        self.ensure_bucket()

        if not self.exists(object_key):
            record = self._put_and_record(object_key, content, ledger, content_type)
            LOGGER.info("Created %s version %s", object_key, record.version_id)
            return UpsertResult(UpsertOutcome.CREATED, record)

        try:
            current = verify_existing(object_key)
        except LedgerEntryNotFound as e:
            raise ConflictError(
                f"An object already exists at `{object_key}` but its hash cannot be found",
                object_key=object_key,
                version_id=e.version_id,
            ) from e

        if digest_bytes(content).matches(current.md5_hash, current.sha256_hash):
            return UpsertResult(UpsertOutcome.VERIFIED, current)

        if not overwrite:
            raise ConflictError(
                f"The name `{object_key}` already exists with different content,"
                " please rename it and try again",
                object_key=object_key,
                version_id=current.version_id,
            )

        record = self._put_and_record(object_key, content, ledger, content_type)
        LOGGER.info(
            "Updated %s from version %s to %s",
            object_key,
            current.version_id,
            record.version_id,
        )
        return UpsertResult(UpsertOutcome.UPDATED, record)
