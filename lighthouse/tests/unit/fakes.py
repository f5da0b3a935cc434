"""In-memory stand-ins for S3 and the host application's collaborators."""

import base64
import hashlib
import io
import os
import sys
import uuid
from datetime import datetime, timezone
from urllib.parse import quote

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("S3_BUCKET", "test-bucket")

TEST_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if TEST_ROOT not in sys.path:
    sys.path.insert(0, TEST_ROOT)

from botocore.exceptions import ClientError  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from api.app.collaborators import (  # noqa: E402
    CaseSnapshot,
    CaseUserInfo,
    ContentDescriptor,
    ExhibitSnapshot,
)
from api.app.db import Base, build_engine  # noqa: E402
from api.app import models  # noqa: E402,F401
from api.app.storage import BlobStoreGateway, StorageConfig  # noqa: E402

BUCKET = "test-bucket"


def _client_error(code: str, status: int, operation: str) -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": code},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        operation,
    )


class FakeS3Client:
    """Versioned bucket(s) held in memory; errors are real botocore ClientErrors."""

    def __init__(self, buckets=(BUCKET,), versioned=True):
        self.buckets = set(buckets)
        self.versioned = versioned
        # (bucket, key) -> list of version dicts, oldest first
        self.objects: dict[tuple[str, str], list[dict]] = {}
        self.put_calls: list[str] = []
        self.denied = False

    def _check_bucket(self, bucket, operation):
        if self.denied:
            raise _client_error("AccessDenied", 403, operation)
        if bucket not in self.buckets:
            raise _client_error("NoSuchBucket", 404, operation)

    def _version(self, bucket, key, version_id, operation):
        self._check_bucket(bucket, operation)
        versions = self.objects.get((bucket, key))
        if not versions:
            raise _client_error("NoSuchKey", 404, operation)
        if version_id is None:
            return versions[-1]
        for version in versions:
            if version["VersionId"] == version_id:
                return version
        raise _client_error("NoSuchVersion", 404, operation)

    def head_bucket(self, Bucket):
        self._check_bucket(Bucket, "HeadBucket")
        return {}

    def get_bucket_versioning(self, Bucket):
        self._check_bucket(Bucket, "GetBucketVersioning")
        # S3 omits Status for buckets that never had versioning enabled
        return {"Status": "Enabled"} if self.versioned else {}

    def head_object(self, Bucket, Key, VersionId=None):
        version = self._version(Bucket, Key, VersionId, "HeadObject")
        return {
            "VersionId": version["VersionId"],
            "ContentLength": len(version["Body"]),
            "ETag": '"%s"' % hashlib.md5(version["Body"]).hexdigest(),
            "LastModified": version["LastModified"],
        }

    def get_object(self, Bucket, Key, VersionId=None):
        version = self._version(Bucket, Key, VersionId, "GetObject")
        return {
            "Body": io.BytesIO(version["Body"]),
            "VersionId": version["VersionId"],
            "ContentLength": len(version["Body"]),
        }

    def put_object(self, Bucket, Key, Body, ContentType=None, ContentMD5=None):
        self._check_bucket(Bucket, "PutObject")
        if ContentMD5 is not None:
            actual = base64.b64encode(hashlib.md5(Body).digest()).decode("ascii")
            if actual != ContentMD5:
                raise _client_error("BadDigest", 400, "PutObject")
        self.put_calls.append(Key)
        version_id = uuid.uuid4().hex if self.versioned else "null"
        version = {
            "VersionId": version_id,
            "Body": bytes(Body),
            "ContentType": ContentType,
            "LastModified": datetime.now(timezone.utc),
        }
        versions = self.objects.setdefault((Bucket, Key), [])
        if not self.versioned:
            versions.clear()
        versions.append(version)
        return {"VersionId": version_id} if self.versioned else {}

    def generate_presigned_url(self, ClientMethod, Params, ExpiresIn, HttpMethod=None):
        url = f"https://s3.test/{Params['Bucket']}/{quote(Params['Key'])}?X-Amz-Expires={ExpiresIn}"
        if "VersionId" in Params:
            url += f"&versionId={Params['VersionId']}"
        return url

    # Test helpers

    def tamper(self, key, data, bucket=BUCKET):
        """Replace the latest version's bytes without creating a new version."""
        self.objects[(bucket, key)][-1]["Body"] = data

    def plant(self, key, data, bucket=BUCKET):
        """Write an object behind the ledger's back."""
        return self.put_object(Bucket=bucket, Key=key, Body=data)

    def keys(self, bucket=BUCKET):
        return [k for (b, k) in self.objects if b == bucket]


def make_gateway(client=None):
    client = client or FakeS3Client()
    config = StorageConfig(endpoint="minio:9000", bucket=BUCKET)
    return BlobStoreGateway(config, client=client), client


def make_session_factory():
    engine = build_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


ALICE = CaseUserInfo(
    user_id="alice",
    display_name="Alice Smith",
    job_title="Investigator",
    email="alice@example.com",
    organization="Example Police",
    roles=("SIO",),
    time_zone="Europe/London",
)
BOB = CaseUserInfo(user_id="bob", display_name="Bob Jones", job_title="Analyst")


class FakeCaseDirectory:
    def __init__(self, content=(), case_id="case-1", users=(ALICE, BOB), exhibits=()):
        self.case = CaseSnapshot(
            case_id=case_id,
            display_id="OP-001",
            name="Operation Test",
            display_name="OP-001 Operation Test",
            status="Open",
            created=datetime(2024, 1, 1, tzinfo=timezone.utc),
        )
        self.users = list(users)
        self.content = list(content)
        self.exhibits = list(exhibits)

    def get_case(self, case_id):
        return self.case

    def list_case_users(self, case_id):
        return list(self.users)

    def lead_investigator(self, case_id):
        return self.users[0]

    def get_user(self, case_id, user_id):
        for user in self.users:
            if user.user_id == user_id:
                return user
        raise LookupError(user_id)

    def list_content(self, case_id, requester_id):
        return iter(self.content)

    def list_exhibits(self, case_id):
        return list(self.exhibits)


class RecordingRenderer:
    def __init__(self):
        self.rendered = []
        self.images = {}

    def render(self, document, case):
        self.rendered.append(document)
        for entry in document.entries:
            for asset in entry.assets:
                if asset.body is not None:
                    self.images[asset.name] = asset.body.read_bytes()
        return b"%PDF-1.4 export of " + case.display_name.encode("utf-8")


class RecordingAuditSink:
    def __init__(self, fail=False):
        self.events = []
        self.fail = fail

    def emit(self, action, **fields):
        if self.fail:
            raise RuntimeError("audit store unavailable")
        self.events.append((action, fields))


__all__ = [
    "ALICE",
    "BOB",
    "BUCKET",
    "ContentDescriptor",
    "ExhibitSnapshot",
    "FakeCaseDirectory",
    "FakeS3Client",
    "RecordingAuditSink",
    "RecordingRenderer",
    "make_gateway",
    "make_session_factory",
]
