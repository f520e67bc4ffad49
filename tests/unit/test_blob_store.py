"""Tests for the file-backed blob store."""

from __future__ import annotations

import io
from pathlib import Path

import pytest

from pushgate.core.blob_store import BlobStore, FileBlobStore, generate_blob_id


class TestFileBlobStore:
    def test_put_and_get_bytes(self, blob_store: FileBlobStore):
        ref = blob_store.put("abcdef", b"payload")
        assert ref.size == 7
        assert ref.url.startswith("file://")
        assert ref.url.endswith("/ab/abcdef")
        assert blob_store.get(ref.url) == b"payload"

    def test_put_stream(self, blob_store: FileBlobStore):
        ref = blob_store.put("streamed", io.BytesIO(b"x" * 200_000))
        assert ref.size == 200_000
        assert blob_store.get(ref.url) == b"x" * 200_000

    def test_put_file(self, blob_store: FileBlobStore, tmp_dir: Path):
        source = tmp_dir / "bundle.js"
        source.write_bytes(b"console.log(1)")
        ref = blob_store.put_file("bundle01", source)
        assert blob_store.get(ref.url) == b"console.log(1)"

    def test_layout(self, tmp_dir: Path):
        store = FileBlobStore(tmp_dir / "blobs")
        store.put("9f00aa", b"z")
        assert (tmp_dir / "blobs" / "9f" / "9f00aa").read_bytes() == b"z"

    def test_base_url(self, tmp_dir: Path):
        store = FileBlobStore(tmp_dir / "blobs", "https://cdn.test/packages/")
        ref = store.put("cafe01", b"data")
        assert ref.url == "https://cdn.test/packages/ca/cafe01"
        assert store.get(ref.url) == b"data"

    def test_download_to(self, blob_store: FileBlobStore, tmp_dir: Path):
        ref = blob_store.put("dl0001", b"download me")
        target = blob_store.download_to(ref.url, tmp_dir / "copy.bin")
        assert target.read_bytes() == b"download me"

    def test_missing_blob(self, blob_store: FileBlobStore):
        url = blob_store.url_for("missing")
        with pytest.raises(FileNotFoundError):
            blob_store.get(url)
        assert blob_store.exists(url) is False

    def test_foreign_url_rejected(self, blob_store: FileBlobStore):
        with pytest.raises(FileNotFoundError):
            blob_store.get("https://elsewhere.test/ab/abcdef")

    def test_delete(self, blob_store: FileBlobStore):
        ref = blob_store.put("gone01", b"bye")
        assert blob_store.exists(ref.url)
        blob_store.delete(ref.url)
        assert not blob_store.exists(ref.url)
        blob_store.delete(ref.url)  # already gone

    def test_invalid_blob_id(self, blob_store: FileBlobStore):
        with pytest.raises(ValueError):
            blob_store.put("../escape", b"x")

    def test_satisfies_protocol(self, blob_store: FileBlobStore):
        assert isinstance(blob_store, BlobStore)


def test_generate_blob_id_unique():
    ids = {generate_blob_id() for _ in range(100)}
    assert len(ids) == 100
    assert all(len(i) == 32 for i in ids)
