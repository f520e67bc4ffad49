"""Opaque blob storage for release artifacts, manifests and diff archives.

The ledger and the differ only ever hold ``BlobRef`` values (URL + size);
how blobs are persisted is the store's concern. ``FileBlobStore`` keeps
each blob as a single file under a root directory:

    {base_path}/{blob_id[0:2]}/{blob_id}
"""

from __future__ import annotations

import secrets
import shutil
from pathlib import Path
from typing import BinaryIO, Protocol, runtime_checkable

from pushgate.models.release import BlobRef


def generate_blob_id() -> str:
    """Random, URL-safe blob identifier."""
    return secrets.token_hex(16)


@runtime_checkable
class BlobStore(Protocol):
    def put(self, blob_id: str, data: bytes | BinaryIO) -> BlobRef: ...

    def get(self, url: str) -> bytes: ...

    def download_to(self, url: str, destination: Path) -> Path: ...

    def delete(self, url: str) -> None: ...


class FileBlobStore:
    """Directory-backed blob store.

    Parameters
    ----------
    base_path:
        Root directory for blob storage.
    base_url:
        Public URL prefix for blob references. Empty means ``file://``
        URIs pointing into ``base_path``.
    """

    def __init__(self, base_path: Path, base_url: str = "") -> None:
        self._base = Path(base_path).resolve()
        self._base.mkdir(parents=True, exist_ok=True)
        self._base_url = base_url.rstrip("/") or self._base.as_uri()

    def _blob_path(self, blob_id: str) -> Path:
        if not blob_id or "/" in blob_id or blob_id in (".", ".."):
            raise ValueError(f"Invalid blob id: {blob_id!r}")
        return self._base / blob_id[:2] / blob_id

    def url_for(self, blob_id: str) -> str:
        return f"{self._base_url}/{blob_id[:2]}/{blob_id}"

    def _id_from_url(self, url: str) -> str:
        prefix = self._base_url + "/"
        if not url.startswith(prefix):
            raise FileNotFoundError(f"Blob not in this store: {url}")
        return url[len(prefix):].rsplit("/", 1)[-1]

    # ------------------------------------------------------------------
    # Store
    # ------------------------------------------------------------------

    def put(self, blob_id: str, data: bytes | BinaryIO) -> BlobRef:
        """Write a blob from bytes or a binary stream and return its reference."""
        path = self._blob_path(blob_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(data, (bytes, bytearray)):
            path.write_bytes(data)
        else:
            with open(path, "wb") as out:
                shutil.copyfileobj(data, out)
        return BlobRef(url=self.url_for(blob_id), size=path.stat().st_size)

    def put_file(self, blob_id: str, source: Path) -> BlobRef:
        with open(source, "rb") as fh:
            return self.put(blob_id, fh)

    # ------------------------------------------------------------------
    # Retrieve
    # ------------------------------------------------------------------

    def get(self, url: str) -> bytes:
        path = self._blob_path(self._id_from_url(url))
        if not path.exists():
            raise FileNotFoundError(f"Blob not found: {url}")
        return path.read_bytes()

    def download_to(self, url: str, destination: Path) -> Path:
        """Copy a blob to a local file, streaming."""
        path = self._blob_path(self._id_from_url(url))
        if not path.exists():
            raise FileNotFoundError(f"Blob not found: {url}")
        destination = Path(destination)
        with open(path, "rb") as src, open(destination, "wb") as dst:
            shutil.copyfileobj(src, dst)
        return destination

    def exists(self, url: str) -> bool:
        try:
            return self._blob_path(self._id_from_url(url)).exists()
        except (FileNotFoundError, ValueError):
            return False

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def delete(self, url: str) -> None:
        """Remove a blob. Deleting a missing blob is a no-op."""
        self._blob_path(self._id_from_url(url)).unlink(missing_ok=True)
