"""
Content hashing for release artifacts.

SHA-256 is the integrity anchor between stored bytes and the digest recorded
on the ledger, so every component hashes through this module.
"""
from __future__ import annotations

import hashlib
import hmac
from pathlib import Path
from typing import Union

HASH_ALGORITHM = "sha256"
_CHUNK_SIZE = 1024 * 1024


def digest(data: bytes) -> str:
    """Return the lowercase hex SHA-256 digest of ``data``."""
    return hashlib.sha256(data).hexdigest()


def digest_file(path: Union[str, Path]) -> str:
    """Stream a file from disk and return its hex SHA-256 digest."""
    hasher = hashlib.sha256()
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(_CHUNK_SIZE), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


def matches(data: bytes, expected_hash: str) -> bool:
    """Check ``data`` against an expected hex digest in constant time."""
    return hmac.compare_digest(digest(data), expected_hash.lower())
