from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from typing import BinaryIO

MD5 = "MD5"
SHA256 = "SHA256"

_MD5_RE = re.compile(r"^[0-9a-f]{32}$")
_SHA256_RE = re.compile(r"^[0-9a-f]{64}$")

DEFAULT_CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class DigestPair:
    md5: str
    sha256: str

    def matches(self, md5: str, sha256: str) -> bool:
        return self.md5 == md5.lower() and self.sha256 == sha256.lower()


class DualDigest:
    """MD5 and SHA256 fed from the same chunks, so content is read once."""

    def __init__(self) -> None:
        self._md5 = hashlib.md5()
        self._sha256 = hashlib.sha256()
        self.size = 0

    def update(self, chunk: bytes) -> None:
        self._md5.update(chunk)
        self._sha256.update(chunk)
        self.size += len(chunk)

    def result(self) -> DigestPair:
        return DigestPair(md5=self._md5.hexdigest(), sha256=self._sha256.hexdigest())


def digest_bytes(data: bytes) -> DigestPair:
    digest = DualDigest()
    digest.update(data)
    return digest.result()


def digest_stream(stream: BinaryIO, sink: BinaryIO | None = None,
                  chunk_size: int = DEFAULT_CHUNK_SIZE) -> DigestPair:
    """Hash ``stream`` to exhaustion, optionally copying each chunk to ``sink``."""
    digest = DualDigest()
    while True:
        chunk = stream.read(chunk_size)
        if not chunk:
            break
        digest.update(chunk)
        if sink is not None:
            sink.write(chunk)
    return digest.result()


def normalize_md5(value: str) -> str:
    normalized = (value or "").strip().lower()
    if not _MD5_RE.match(normalized):
        raise ValueError(f"Invalid MD5 hex digest: {value!r}")
    return normalized


def normalize_sha256(value: str) -> str:
    normalized = (value or "").strip().lower()
    if not _SHA256_RE.match(normalized):
        raise ValueError(f"Invalid SHA256 hex digest: {value!r}")
    return normalized
