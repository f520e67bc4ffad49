"""Release manager: the management surface over the ledger, blob store,
differ, decision engine and metrics.

The ReleaseManager wires the components together from ``Settings`` and
exposes deployment-name based operations to the CLI. Releases are
uploaded here, committed to the ledger, and diffed in the background.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

from pushgate.config import Settings
from pushgate.core.acquisition import UpdateCheckService
from pushgate.core.blob_store import BlobStore, FileBlobStore, generate_blob_id
from pushgate.core.counter_store import CounterStore, create_counter_store
from pushgate.core.ledger_store import LedgerStore
from pushgate.core.manifest import compute_artifact_hash
from pushgate.core.metrics import MetricsRecorder, ResponseCache
from pushgate.core.package_diffing import DiffWorker, PackageDiffer
from pushgate.core.release_ledger import ReleaseLedger, validate_app_version, validate_rollout
from pushgate.errors import NotFoundError, PushgateError
from pushgate.models.acquisition import UpdateCheckRequest, UpdateInfo
from pushgate.models.metrics import LabelMetrics, StatusReport
from pushgate.models.release import (
    BlobRef,
    Deployment,
    PromoteOverrides,
    Release,
    ReleaseDescriptor,
    ReleaseMethod,
    ReleaseUpdate,
)

logger = logging.getLogger(__name__)


class ReleaseManager:
    """Coordinator for release management and update checks.

    Parameters
    ----------
    settings:
        Configuration. Uses environment-derived defaults if not provided.
    blob_store:
        Overrides the file blob store built from ``settings``.
    counter_store:
        Overrides the store built from ``settings.redis_url``.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        blob_store: BlobStore | None = None,
        counter_store: CounterStore | None = None,
    ) -> None:
        self.settings = settings or Settings()

        # Storage
        self.blob_store = blob_store or FileBlobStore(
            self.settings.blob_store_path, self.settings.blob_base_url
        )
        self.counter_store = counter_store or create_counter_store(self.settings)
        if self.settings.is_production and not self.settings.blob_base_url:
            logger.warning("blob_base_url is not set; clients will be sent file:// URLs")

        # Cache and metrics degrade to no-ops without a counter store
        self.response_cache = (
            ResponseCache(self.counter_store, self.settings.cache_expiry_seconds)
            if self.counter_store is not None
            else None
        )
        self.metrics_recorder = MetricsRecorder(self.counter_store)

        self.ledger = ReleaseLedger(
            LedgerStore(self.settings.ledger_path),
            invalidate_cache=self.response_cache.invalidate if self.response_cache else None,
        )
        self.update_checks = UpdateCheckService(self.ledger, self.response_cache)

        # Background diffing
        self.diff_worker: DiffWorker | None = None
        if self.settings.enable_package_diffing:
            differ = PackageDiffer(
                self.blob_store,
                self.settings.work_dir,
                max_packages_to_diff=self.settings.diff_package_count,
                max_workers=self.settings.diff_max_workers,
            )
            self.diff_worker = DiffWorker(self.ledger, differ)
            self.ledger.on_commit = self.diff_worker.submit

    # ------------------------------------------------------------------
    # Deployments
    # ------------------------------------------------------------------

    def create_deployment(self, name: str, key: str | None = None) -> Deployment:
        return self.ledger.create_deployment(name, key)

    def deployments(self) -> list[Deployment]:
        return self.ledger.list_deployments()

    def deployment(self, name: str) -> Deployment:
        return self.ledger.get_deployment_by_name(name)

    # ------------------------------------------------------------------
    # Release management
    # ------------------------------------------------------------------

    def release(
        self, deployment_name: str, artifact_path: Path, descriptor: ReleaseDescriptor
    ) -> Release:
        """Upload an artifact (zip or flat file) and commit it as a new release.

        The uploaded blobs are deleted again if the ledger rejects the
        release.
        """
        artifact_path = Path(artifact_path)
        if not artifact_path.is_file():
            raise NotFoundError(f"Artifact {artifact_path} does not exist.")
        validate_app_version(descriptor.app_version)
        validate_rollout(descriptor.rollout)
        deployment = self.ledger.get_deployment_by_name(deployment_name)

        package_hash, manifest = compute_artifact_hash(artifact_path)
        with open(artifact_path, "rb") as fh:
            blob = self.blob_store.put(generate_blob_id(), fh)
        uploaded: list[BlobRef] = [blob]
        manifest_blob = None
        if manifest is not None:
            manifest_blob = self.blob_store.put(
                generate_blob_id(), manifest.serialize().encode("utf-8")
            )
            uploaded.append(manifest_blob)

        release = Release(
            package_hash=package_hash,
            app_version=descriptor.app_version,
            blob=blob,
            manifest_blob=manifest_blob,
            is_disabled=descriptor.is_disabled,
            is_mandatory=descriptor.is_mandatory,
            rollout=descriptor.rollout,
            description=descriptor.description,
            release_method=ReleaseMethod.UPLOAD,
        )
        try:
            return self.ledger.commit(deployment.id, release)
        except (PushgateError, sqlite3.Error):
            for ref in uploaded:
                self.blob_store.delete(ref.url)
            raise

    def promote(
        self,
        source_name: str,
        dest_name: str,
        overrides: PromoteOverrides | None = None,
    ) -> Release:
        source = self.ledger.get_deployment_by_name(source_name)
        dest = self.ledger.get_deployment_by_name(dest_name)
        return self.ledger.promote(source.id, dest.id, overrides)

    def rollback(self, deployment_name: str, target_label: str | None = None) -> Release:
        deployment = self.ledger.get_deployment_by_name(deployment_name)
        return self.ledger.rollback(deployment.id, target_label)

    def patch_release(self, deployment_name: str, update: ReleaseUpdate) -> Release | None:
        deployment = self.ledger.get_deployment_by_name(deployment_name)
        return self.ledger.patch_release(deployment.id, update)

    def clear_history(self, deployment_name: str) -> None:
        """Empty a deployment's history, its metrics, and its queued diffs."""
        deployment = self.ledger.get_deployment_by_name(deployment_name)
        if self.diff_worker is not None:
            dropped = self.diff_worker.cancel(deployment.id)
            if dropped:
                logger.info("Cancelled %d queued diff job(s) for %s", dropped, deployment_name)
        self.ledger.clear_history(deployment.id)
        self.metrics_recorder.clear(deployment.key)

    def history(self, deployment_name: str) -> list[Release]:
        deployment = self.ledger.get_deployment_by_name(deployment_name)
        return self.ledger.get_history(deployment.id)

    # ------------------------------------------------------------------
    # Client-facing
    # ------------------------------------------------------------------

    def check_update(self, request: UpdateCheckRequest) -> UpdateInfo:
        return UpdateInfo.from_decision(self.update_checks.check(request))

    def report_status(self, report: StatusReport) -> None:
        self.metrics_recorder.report_status(report)

    def metrics(self, deployment_name: str) -> dict[str, LabelMetrics]:
        deployment = self.ledger.get_deployment_by_name(deployment_name)
        return self.metrics_recorder.get_metrics(deployment.key)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def wait_for_diffs(self, timeout: float | None = None) -> None:
        if self.diff_worker is not None:
            self.diff_worker.join(timeout)

    def close(self) -> None:
        """Finish background diffing and release the counter store."""
        if self.diff_worker is not None:
            self.diff_worker.shutdown(wait=True)
        if self.counter_store is not None:
            self.counter_store.close()
