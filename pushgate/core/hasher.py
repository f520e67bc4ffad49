"""Hashing helpers for package identity and manifests."""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any, BinaryIO

_CHUNK_SIZE = 64 * 1024


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce canonical JSON bytes: compact separators, UTF-8.

    Key order is preserved so that arrays and insertion-ordered objects
    hash the same way a JavaScript ``JSON.stringify`` of them would.
    """
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False).encode(
        "utf-8"
    )


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def sha256_stream(stream: BinaryIO) -> str:
    """SHA-256 of a binary stream, read in chunks."""
    digest = hashlib.sha256()
    for chunk in iter(lambda: stream.read(_CHUNK_SIZE), b""):
        digest.update(chunk)
    return digest.hexdigest()


def sha256_file(path: Path) -> str:
    with open(path, "rb") as fh:
        return sha256_stream(fh)
