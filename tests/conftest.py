"""Shared test fixtures for Pushgate."""

from __future__ import annotations

import zipfile
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest

from pushgate.config import Settings
from pushgate.core.blob_store import FileBlobStore
from pushgate.core.counter_store import InMemoryCounterStore
from pushgate.core.ledger_store import LedgerStore
from pushgate.core.release_ledger import ReleaseLedger
from pushgate.core.release_manager import ReleaseManager
from pushgate.models.release import BlobRef, Deployment, Release


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def ledger_store(tmp_dir: Path) -> LedgerStore:
    """Provide a fresh LedgerStore backed by a temp SQLite database."""
    return LedgerStore(tmp_dir / "ledger.db")


@pytest.fixture
def ledger(ledger_store: LedgerStore) -> ReleaseLedger:
    """Provide a ReleaseLedger without cache invalidation or diff hooks."""
    return ReleaseLedger(ledger_store)


@pytest.fixture
def deployment(ledger: ReleaseLedger) -> Deployment:
    return ledger.create_deployment("Staging", key="staging-key")


@pytest.fixture
def blob_store(tmp_dir: Path) -> FileBlobStore:
    """Provide a FileBlobStore in a temp directory."""
    return FileBlobStore(tmp_dir / "blobs")


@pytest.fixture
def counter_store() -> InMemoryCounterStore:
    return InMemoryCounterStore()


@pytest.fixture
def settings(tmp_dir: Path) -> Settings:
    """Settings pointing every path into the temp directory."""
    return Settings(
        ledger_path=tmp_dir / "ledger.db",
        blob_store_path=tmp_dir / "blobs",
        work_dir=tmp_dir / "work",
        redis_url="",
        diff_max_workers=2,
    )


@pytest.fixture
def manager(settings: Settings, counter_store: InMemoryCounterStore) -> Iterator[ReleaseManager]:
    """A fully wired ReleaseManager with an in-memory counter store."""
    mgr = ReleaseManager(settings, counter_store=counter_store)
    yield mgr
    mgr.close()


@pytest.fixture
def make_release() -> Callable[..., Release]:
    """Factory for uncommitted releases with a fake blob reference."""

    def _make(package_hash: str, app_version: str = "1.0.0", **fields: Any) -> Release:
        fields.setdefault("blob", BlobRef(url=f"https://blobs.test/{package_hash}", size=100))
        return Release(package_hash=package_hash, app_version=app_version, **fields)

    return _make


@pytest.fixture
def make_zip(tmp_dir: Path) -> Callable[..., Path]:
    """Factory writing a zip archive from ``{entry name: content}``."""
    counter = {"n": 0}

    def _make(entries: dict[str, bytes | str], name: str | None = None) -> Path:
        counter["n"] += 1
        path = tmp_dir / (name or f"package_{counter['n']}.zip")
        with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for entry, content in entries.items():
                zf.writestr(entry, content)
        return path

    return _make
