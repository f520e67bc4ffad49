"""Package Diffing Engine: delta archives between zip releases.

After a zip release is committed, its manifest is compared with the
manifests of up to ``K`` earlier compatible releases. For each baseline
that differs, a diff archive is built holding a ``hotcodepush.json``
manifest that lists the deleted files, plus the bytes of every new or
changed entry copied from the new archive. Diff blobs are merged into the
release's ``diffs`` map keyed by the baseline's package hash.

Diffs are best effort: a failing baseline is logged and left out, and
clients on it keep receiving the full package.
"""

from __future__ import annotations

import json
import logging
import shutil
import tempfile
import threading
import zipfile
from concurrent.futures import Future, ThreadPoolExecutor, as_completed, wait
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict

from pushgate.core.blob_store import BlobStore, generate_blob_id
from pushgate.core.manifest import PackageManifest, normalize_path
from pushgate.core.semver import is_matching_app_version
from pushgate.models.release import BlobRef, Deployment, Release

if TYPE_CHECKING:
    from pushgate.core.release_ledger import ReleaseLedger

logger = logging.getLogger(__name__)

MANIFEST_FILE_NAME = "hotcodepush.json"


class PackageDiff(BaseModel):
    """Files to delete from a baseline and entries to add or replace."""

    model_config = ConfigDict(frozen=True)

    deleted_files: list[str] = []
    new_or_updated_entries: dict[str, str] = {}

    @property
    def is_empty(self) -> bool:
        return not self.deleted_files and not self.new_or_updated_entries


def generate_diff(old_file_hashes: dict[str, str], new_file_hashes: dict[str, str]) -> PackageDiff:
    new_or_updated = {
        name: digest
        for name, digest in new_file_hashes.items()
        if old_file_hashes.get(name) != digest
    }
    deleted = [name for name in old_file_hashes if name not in new_file_hashes]
    return PackageDiff(deleted_files=deleted, new_or_updated_entries=new_or_updated)


def select_baselines(
    history: list[Release], release: Release, max_count: int
) -> list[Release]:
    """Earlier releases to diff ``release`` against, oldest first.

    Scans backward from just before ``release`` (located by label) and keeps
    releases with a compatible app version and different content.
    """
    selected: list[Release] = []
    seen_hashes: set[str] = set()
    found = False
    for candidate in reversed(history):
        if not found:
            found = candidate.label == release.label
            continue
        if len(selected) == max_count:
            break
        if candidate.package_hash == release.package_hash or candidate.package_hash in seen_hashes:
            continue
        if is_matching_app_version(release.app_version, candidate.app_version):
            selected.append(candidate)
            seen_hashes.add(candidate.package_hash)
    selected.reverse()
    return selected


def build_diff_archive(diff: PackageDiff, new_archive: Path, output: Path) -> Path:
    """Write the diff archive for ``diff`` to ``output``.

    Entry bytes are streamed from ``new_archive``. Directory entries become
    empty directory entries.
    """
    manifest = json.dumps({"deletedFiles": diff.deleted_files}, separators=(",", ":"))
    with zipfile.ZipFile(output, "w", compression=zipfile.ZIP_DEFLATED) as out:
        out.writestr(MANIFEST_FILE_NAME, manifest)
        if not diff.new_or_updated_entries:
            return output
        with zipfile.ZipFile(new_archive) as source:
            for info in source.infolist():
                name = normalize_path(info.filename)
                if name not in diff.new_or_updated_entries:
                    continue
                if name.endswith("/"):
                    out.writestr(zipfile.ZipInfo(name, date_time=info.date_time), b"")
                    continue
                target = zipfile.ZipInfo(name, date_time=info.date_time)
                target.compress_type = zipfile.ZIP_DEFLATED
                target.external_attr = info.external_attr
                with source.open(info) as src, out.open(target, "w") as dst:
                    shutil.copyfileobj(src, dst)
    return output


def apply_diff_archive(diff_archive: Path, target_dir: Path) -> None:
    """Apply a diff archive over an extracted baseline package in place."""
    target_dir = Path(target_dir).resolve()
    with zipfile.ZipFile(diff_archive) as zf:
        deleted = json.loads(zf.read(MANIFEST_FILE_NAME)).get("deletedFiles", [])
        directories = []
        for name in deleted:
            path = (target_dir / name).resolve()
            if not path.is_relative_to(target_dir):
                raise ValueError(f"Diff entry escapes the package: {name!r}")
            if name.endswith("/"):
                directories.append(path)
            elif path.is_file():
                path.unlink()
        for path in sorted(directories, key=lambda p: len(p.parts), reverse=True):
            if path.is_dir() and not any(path.iterdir()):
                path.rmdir()
        for info in zf.infolist():
            if info.filename != MANIFEST_FILE_NAME:
                zf.extract(info, target_dir)


class PackageDiffer:
    """Computes the diff map of a committed release.

    Parameters
    ----------
    blob_store:
        Source of archives and manifests, destination of diff archives.
    work_dir:
        Parent of the temporary directories used while diffing.
    max_packages_to_diff:
        Maximum number of baselines (``K``).
    max_workers:
        Baselines diffed in parallel.
    """

    def __init__(
        self,
        blob_store: BlobStore,
        work_dir: Path,
        *,
        max_packages_to_diff: int = 5,
        max_workers: int = 4,
    ) -> None:
        self.blob_store = blob_store
        self._work_dir = Path(work_dir)
        self._max_packages_to_diff = max(1, max_packages_to_diff)
        self._max_workers = max(1, max_workers)

    def _load_manifest(self, release: Release) -> PackageManifest | None:
        if release.manifest_blob is None:
            return None
        return PackageManifest.deserialize(self.blob_store.get(release.manifest_blob.url))

    def generate_diff_map(
        self, history: list[Release], release: Release
    ) -> dict[str, BlobRef]:
        """``{baseline package hash: diff blob}`` for ``release``."""
        if release.manifest_blob is None:
            return {}
        baselines = select_baselines(history, release, self._max_packages_to_diff)
        if not baselines:
            return {}

        new_manifest = self._load_manifest(release)
        self._work_dir.mkdir(parents=True, exist_ok=True)
        diffs: dict[str, BlobRef] = {}
        with tempfile.TemporaryDirectory(dir=self._work_dir, prefix="diff-") as tmp:
            scratch = Path(tmp)
            new_archive = self.blob_store.download_to(release.blob.url, scratch / "new.zip")
            workers = min(self._max_workers, len(baselines))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="pushgate-baseline") as pool:
                futures = {
                    pool.submit(self._diff_against, baseline, new_manifest, new_archive, scratch): baseline
                    for baseline in baselines
                }
                for future in as_completed(futures):
                    baseline = futures[future]
                    try:
                        result = future.result()
                    except Exception:
                        logger.exception(
                            "Diff of %s against baseline %s failed; serving full package",
                            release.label,
                            baseline.label,
                        )
                        continue
                    if result is not None:
                        diffs[baseline.package_hash] = result
        return diffs

    def _diff_against(
        self,
        baseline: Release,
        new_manifest: PackageManifest,
        new_archive: Path,
        scratch: Path,
    ) -> BlobRef | None:
        old_manifest = self._load_manifest(baseline)
        if old_manifest is None:
            return None
        diff = generate_diff(old_manifest.to_map(), new_manifest.to_map())
        if diff.is_empty:
            return None
        archive = build_diff_archive(
            diff, new_archive, scratch / f"diff_{generate_blob_id()}.zip"
        )
        with open(archive, "rb") as fh:
            return self.blob_store.put(generate_blob_id(), fh)


class DiffWorker:
    """Background queue that diffs committed releases and attaches results.

    ``submit`` returns immediately; the ledger merge happens on a worker
    thread. ``cancel`` drops jobs that have not started yet. Running jobs
    finish, and their results are discarded by the ledger if the release
    is gone.
    """

    def __init__(self, ledger: ReleaseLedger, differ: PackageDiffer, *, max_workers: int = 1) -> None:
        self._ledger = ledger
        self._differ = differ
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="pushgate-diff")
        self._pending: dict[str, set[Future]] = {}
        self._lock = threading.Lock()

    def submit(self, deployment: Deployment, release: Release) -> Future | None:
        """Queue diff generation; None for releases without a manifest."""
        if release.manifest_blob is None:
            return None
        future = self._executor.submit(self._run, deployment.id, release)
        with self._lock:
            self._pending.setdefault(deployment.id, set()).add(future)
        future.add_done_callback(lambda f, key=deployment.id: self._forget(key, f))
        return future

    def _forget(self, deployment_id: str, future: Future) -> None:
        with self._lock:
            pending = self._pending.get(deployment_id)
            if pending is not None:
                pending.discard(future)
                if not pending:
                    del self._pending[deployment_id]

    def _run(self, deployment_id: str, release: Release) -> dict[str, BlobRef]:
        logger.info("Generating diffs for %s (%s)", release.label, release.package_hash)
        try:
            history = self._ledger.get_history(deployment_id)
            diffs = self._differ.generate_diff_map(history, release)
            if diffs and not self._ledger.attach_diffs(
                deployment_id, release.label, release.package_hash, diffs
            ):
                logger.info("Release %s is gone; discarding %d diff(s)", release.label, len(diffs))
                for ref in diffs.values():
                    self._differ.blob_store.delete(ref.url)
                return {}
        except Exception:
            logger.exception("Diff generation for %s failed", release.label)
            return {}
        logger.info("Finished diffs for %s: %d baseline(s)", release.label, len(diffs))
        return diffs

    def cancel(self, deployment_id: str) -> int:
        """Cancel queued jobs of a deployment; returns how many were dropped."""
        with self._lock:
            futures = list(self._pending.get(deployment_id, ()))
        return sum(1 for future in futures if future.cancel())

    def join(self, timeout: float | None = None) -> None:
        """Block until every queued and running job has finished."""
        with self._lock:
            futures = [f for pending in self._pending.values() for f in pending]
        wait(futures, timeout=timeout)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait, cancel_futures=not wait)
