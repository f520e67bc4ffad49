"""Tests for diff generation, diff archives and the background diff worker."""

from __future__ import annotations

import hashlib
import json
import zipfile
from pathlib import Path
from unittest import mock

import pytest

from pushgate.core.blob_store import FileBlobStore, generate_blob_id
from pushgate.core.manifest import PackageManifest
from pushgate.core.package_diffing import (
    MANIFEST_FILE_NAME,
    DiffWorker,
    PackageDiffer,
    apply_diff_archive,
    build_diff_archive,
    generate_diff,
    select_baselines,
)
from pushgate.models.release import BlobRef, Release

BASELINE = {"a.js": "A", "b.js": "B", "c.js": "old"}
UPDATED = {"b.js": "B", "c.js": "new", "d.js": "D"}


def _hash_tree(root: Path) -> dict[str, str]:
    return {
        path.relative_to(root).as_posix(): hashlib.sha256(path.read_bytes()).hexdigest()
        for path in root.rglob("*")
        if path.is_file()
    }


def _stored_release(
    store: FileBlobStore, archive: Path, label: str, app_version: str = "1.0.0"
) -> Release:
    manifest = PackageManifest.from_zip(archive)
    blob = store.put_file(generate_blob_id(), archive)
    manifest_blob = store.put(generate_blob_id(), manifest.serialize().encode())
    return Release(
        label=label,
        package_hash=manifest.compute_package_hash(),
        app_version=app_version,
        blob=blob,
        manifest_blob=manifest_blob,
    )


class TestGenerateDiff:
    def test_new_updated_and_deleted(self):
        diff = generate_diff(
            {"a": "Ha", "b": "Hb", "c": "Hold"},
            {"b": "Hb", "c": "Hnew", "d": "Hd"},
        )
        assert diff.deleted_files == ["a"]
        assert diff.new_or_updated_entries == {"c": "Hnew", "d": "Hd"}
        assert not diff.is_empty

    def test_identical_is_empty(self):
        assert generate_diff({"a": "1"}, {"a": "1"}).is_empty


class TestSelectBaselines:
    def test_compatible_distinct_releases_oldest_first(self, make_release):
        history = [
            make_release("h1", "1.0.0", label="v1"),
            make_release("h2", "1.0.0", label="v2"),
            make_release("h1", "1.0.0", label="v3"),
            make_release("h3", "2.0.0", label="v4"),
            make_release("h5", "1.0.0", label="v5"),
        ]
        selected = select_baselines(history, history[-1], max_count=5)
        assert [r.label for r in selected] == ["v2", "v3"]

    def test_max_count(self, make_release):
        history = [make_release(f"h{i}", label=f"v{i}") for i in range(1, 8)]
        selected = select_baselines(history, history[-1], max_count=2)
        assert [r.label for r in selected] == ["v5", "v6"]

    def test_same_content_skipped(self, make_release):
        history = [
            make_release("h1", label="v1"),
            make_release("h1", label="v2"),
        ]
        assert select_baselines(history, history[-1], max_count=5) == []


class TestDiffArchive:
    def test_round_trip_reconstructs_new_package(self, make_zip, tmp_dir: Path):
        old_zip = make_zip(BASELINE, "old.zip")
        new_zip = make_zip(UPDATED, "new.zip")
        old_manifest = PackageManifest.from_zip(old_zip)
        new_manifest = PackageManifest.from_zip(new_zip)
        diff = generate_diff(old_manifest.to_map(), new_manifest.to_map())

        archive = build_diff_archive(diff, new_zip, tmp_dir / "diff.zip")
        with zipfile.ZipFile(archive) as zf:
            assert sorted(zf.namelist()) == sorted([MANIFEST_FILE_NAME, "c.js", "d.js"])
            assert json.loads(zf.read(MANIFEST_FILE_NAME)) == {"deletedFiles": ["a.js"]}
            assert zf.read("c.js") == b"new"

        package_dir = tmp_dir / "installed"
        with zipfile.ZipFile(old_zip) as zf:
            zf.extractall(package_dir)
        apply_diff_archive(archive, package_dir)
        assert _hash_tree(package_dir) == new_manifest.to_map()

    def test_deleted_directories_removed(self, make_zip, tmp_dir: Path):
        old_zip = make_zip({"assets/": "", "assets/logo.png": "L", "index.js": "1"})
        new_zip = make_zip({"index.js": "2"})
        diff = generate_diff(
            PackageManifest.from_zip(old_zip).to_map(),
            PackageManifest.from_zip(new_zip).to_map(),
        )
        archive = build_diff_archive(diff, new_zip, tmp_dir / "diff.zip")
        package_dir = tmp_dir / "installed"
        with zipfile.ZipFile(old_zip) as zf:
            zf.extractall(package_dir)
        apply_diff_archive(archive, package_dir)
        assert not (package_dir / "assets").exists()
        assert (package_dir / "index.js").read_bytes() == b"2"

    def test_escaping_paths_rejected(self, tmp_dir: Path):
        archive = tmp_dir / "evil.zip"
        with zipfile.ZipFile(archive, "w") as zf:
            zf.writestr(MANIFEST_FILE_NAME, json.dumps({"deletedFiles": ["../outside.txt"]}))
        (tmp_dir / "outside.txt").write_text("keep")
        target = tmp_dir / "pkg"
        target.mkdir()
        with pytest.raises(ValueError):
            apply_diff_archive(archive, target)
        assert (tmp_dir / "outside.txt").exists()


class TestPackageDiffer:
    @pytest.fixture
    def differ(self, blob_store: FileBlobStore, tmp_dir: Path) -> PackageDiffer:
        return PackageDiffer(blob_store, tmp_dir / "work", max_packages_to_diff=3, max_workers=2)

    def test_diff_map_keyed_by_baseline_hash(self, differ, blob_store, make_zip, tmp_dir):
        v1 = _stored_release(blob_store, make_zip(BASELINE), "v1")
        v2 = _stored_release(blob_store, make_zip(UPDATED), "v2")
        diffs = differ.generate_diff_map([v1, v2], v2)
        assert list(diffs) == [v1.package_hash]
        local = blob_store.download_to(diffs[v1.package_hash].url, tmp_dir / "fetched.zip")
        with zipfile.ZipFile(local) as zf:
            assert "d.js" in zf.namelist()

    def test_release_without_manifest(self, differ, make_release):
        flat = make_release("flat", label="v2")
        assert differ.generate_diff_map([make_release("h1", label="v1"), flat], flat) == {}

    def test_failing_baseline_omitted(self, differ, blob_store, make_zip, tmp_dir: Path):
        good = _stored_release(blob_store, make_zip(BASELINE), "v1")
        broken = _stored_release(blob_store, make_zip({"x.js": "X"}), "v2")
        broken = broken.model_copy(
            update={"manifest_blob": BlobRef(url=blob_store.url_for("nomanifest"), size=0)}
        )
        new = _stored_release(blob_store, make_zip(UPDATED), "v3")
        diffs = differ.generate_diff_map([good, broken, new], new)
        assert set(diffs) == {good.package_hash}
        assert list((tmp_dir / "work").iterdir()) == []

    def test_scratch_space_cleaned(self, differ, blob_store, make_zip, tmp_dir: Path):
        v1 = _stored_release(blob_store, make_zip(BASELINE), "v1")
        v2 = _stored_release(blob_store, make_zip(UPDATED), "v2")
        differ.generate_diff_map([v1, v2], v2)
        assert list((tmp_dir / "work").iterdir()) == []

    def test_scratch_space_cleaned_when_download_fails(
        self, differ, blob_store, make_zip, tmp_dir: Path
    ):
        v1 = _stored_release(blob_store, make_zip(BASELINE), "v1")
        v2 = _stored_release(blob_store, make_zip(UPDATED), "v2")

        def partial_download(url, dest):
            Path(dest).write_bytes(b"PK")
            raise OSError("connection reset")

        with mock.patch.object(blob_store, "download_to", side_effect=partial_download):
            with pytest.raises(OSError):
                differ.generate_diff_map([v1, v2], v2)
        assert list((tmp_dir / "work").iterdir()) == []


class TestDiffWorker:
    def test_diffs_attached_to_release(self, ledger, deployment, blob_store, make_zip, tmp_dir):
        differ = PackageDiffer(blob_store, tmp_dir / "work")
        worker = DiffWorker(ledger, differ)
        first = _stored_release(blob_store, make_zip(BASELINE), "")
        second = _stored_release(blob_store, make_zip(UPDATED), "")
        ledger.commit(deployment.id, first)
        committed = ledger.commit(deployment.id, second)

        future = worker.submit(deployment, committed)
        assert future is not None
        diffs = future.result(timeout=30)
        worker.shutdown()

        assert list(diffs) == [first.package_hash]
        assert ledger.get_release(deployment.id, "v2").diffs == diffs

    def test_flat_release_not_queued(self, ledger, deployment, blob_store, make_release, tmp_dir):
        worker = DiffWorker(ledger, PackageDiffer(blob_store, tmp_dir / "work"))
        assert worker.submit(deployment, make_release("flat", label="v1")) is None
        worker.shutdown()

    def test_diffs_for_replaced_release_discarded(
        self, ledger, deployment, blob_store, make_zip, tmp_dir
    ):
        worker = DiffWorker(ledger, PackageDiffer(blob_store, tmp_dir / "work"))
        first = _stored_release(blob_store, make_zip(BASELINE), "")
        replacement = _stored_release(blob_store, make_zip({"z.js": "Z"}), "")
        stale = _stored_release(blob_store, make_zip(UPDATED), "v2")
        ledger.commit(deployment.id, first)
        ledger.commit(deployment.id, replacement)
        blobs_before = _blob_files(tmp_dir / "blobs")

        # "v2" now names different content, so the diffs cannot be attached
        future = worker.submit(deployment, stale)
        assert future.result(timeout=30) == {}
        worker.shutdown()

        assert _blob_files(tmp_dir / "blobs") == blobs_before
        assert ledger.get_release(deployment.id, "v2").diffs == {}

    def test_download_failure_contained(self, ledger, deployment, blob_store, make_zip, tmp_dir):
        worker = DiffWorker(ledger, PackageDiffer(blob_store, tmp_dir / "work"))
        ledger.commit(deployment.id, _stored_release(blob_store, make_zip(BASELINE), ""))
        committed = ledger.commit(
            deployment.id, _stored_release(blob_store, make_zip(UPDATED), "")
        )

        with mock.patch.object(blob_store, "download_to", side_effect=OSError("disk full")):
            future = worker.submit(deployment, committed)
            assert future.result(timeout=30) == {}
        worker.shutdown()

        assert list((tmp_dir / "work").iterdir()) == []
        assert ledger.get_release(deployment.id, "v2").diffs == {}


def _blob_files(root: Path) -> set[Path]:
    return {path for path in root.rglob("*") if path.is_file()}
