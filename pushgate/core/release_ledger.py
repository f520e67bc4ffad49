"""Release Ledger: the state machine for deployment release histories.

Every mutation loads a deployment's history, derives a new history from
frozen copies, and saves it whole through the ``LedgerStore``. Mutations of
one deployment are serialized by a per-deployment lock; different
deployments never block each other.

Rules enforced here:
- Labels are ``v<N>`` for the Nth release since the last history clear.
- Committing over a head with an unfinished, enabled rollout is rejected.
- Committing clears the previous head's rollout.
- Rollback and promote append a new release with provenance; nothing
  already in the history is rewritten except by ``patch_release`` and
  ``attach_diffs``.
- Every mutation invalidates cached update-check responses for the
  deployment's key.
"""

from __future__ import annotations

import logging
import secrets
import sqlite3
import threading
from collections.abc import Callable
from datetime import datetime, timezone

from pushgate.core import semver
from pushgate.core.ledger_store import LedgerStore
from pushgate.core.rollout import is_unfinished_rollout
from pushgate.errors import ConflictError, MalformedRequestError, NotFoundError
from pushgate.models.release import (
    BlobRef,
    Deployment,
    PromoteOverrides,
    Release,
    ReleaseMethod,
    ReleaseUpdate,
)

logger = logging.getLogger(__name__)

CacheInvalidator = Callable[[str], None]
CommitHook = Callable[[Deployment, Release], None]


def generate_deployment_key() -> str:
    return secrets.token_urlsafe(32)


def validate_app_version(app_version: str) -> str:
    """Reject app versions that are neither a version nor a range."""
    if not app_version or semver.valid_range(app_version) is None:
        raise MalformedRequestError(
            f"Invalid app version {app_version!r}: expected a semver version or range."
        )
    return app_version


def validate_rollout(rollout: int | None) -> int | None:
    """Reject rollout percentages outside 1..100."""
    if rollout is not None and not 1 <= rollout <= 100:
        raise MalformedRequestError(
            "Rollout value must be an integer between 1 and 100, inclusive."
        )
    return rollout


def find_by_label(history: list[Release], label: str) -> Release | None:
    for release in reversed(history):
        if release.label == label:
            return release
    return None


def last_package_hash_for_app_version(
    history: list[Release], app_version: str
) -> str | None:
    """Package hash a client on ``app_version`` is currently served.

    Used to reject a release whose content is identical to what the
    deployment already delivers. A range only compares against the head
    release targeting the identical range.
    """
    if not history:
        return None
    if semver.valid(app_version) is None:
        head = history[-1]
        if semver.valid_range(head.app_version) == semver.valid_range(app_version):
            return head.package_hash
        return None
    for release in reversed(history):
        if semver.satisfies(app_version, release.app_version):
            return release.package_hash
    return None


def _head_blocks_new_release(history: list[Release]) -> bool:
    return bool(history) and history[-1].has_active_rollout


class ReleaseLedger:
    """Deployments and their append-only release histories.

    Parameters
    ----------
    store:
        Persistence backend.
    invalidate_cache:
        Called with a deployment key after every mutation of that
        deployment's history.
    on_commit:
        Called after a new uploaded or promoted release has been committed,
        outside the deployment lock. Used to queue diff generation.
    """

    def __init__(
        self,
        store: LedgerStore,
        *,
        invalidate_cache: CacheInvalidator | None = None,
        on_commit: CommitHook | None = None,
    ) -> None:
        self._store = store
        self._invalidate_cache = invalidate_cache
        self.on_commit = on_commit
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, deployment_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(deployment_id)
            if lock is None:
                lock = self._locks[deployment_id] = threading.Lock()
            return lock

    def _invalidate(self, deployment: Deployment) -> None:
        if self._invalidate_cache is not None:
            self._invalidate_cache(deployment.key)

    # ------------------------------------------------------------------
    # Deployments
    # ------------------------------------------------------------------

    def create_deployment(self, name: str, key: str | None = None) -> Deployment:
        if not name:
            raise MalformedRequestError("Deployment name must not be empty.")
        if self._store.get_deployment_by_name(name) is not None:
            raise ConflictError(f"A deployment named {name!r} already exists.")
        deployment = Deployment(name=name, key=key or generate_deployment_key())
        try:
            self._store.add_deployment(deployment)
        except sqlite3.IntegrityError as exc:
            raise ConflictError(
                f"A deployment named {name!r} or with the same key already exists."
            ) from exc
        logger.info("Created deployment %s (%s)", name, deployment.id)
        return deployment

    def get_deployment(self, deployment_id: str) -> Deployment:
        deployment = self._store.get_deployment(deployment_id)
        if deployment is None:
            raise NotFoundError(f"Deployment {deployment_id!r} does not exist.")
        return deployment

    def get_deployment_by_key(self, key: str) -> Deployment:
        deployment = self._store.get_deployment_by_key(key)
        if deployment is None:
            raise NotFoundError("Unknown deployment key.")
        return deployment

    def get_deployment_by_name(self, name: str) -> Deployment:
        deployment = self._store.get_deployment_by_name(name)
        if deployment is None:
            raise NotFoundError(f"Deployment {name!r} does not exist.")
        return deployment

    def list_deployments(self) -> list[Deployment]:
        return self._store.list_deployments()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_history(self, deployment_id: str) -> list[Release]:
        return self._store.load_history(deployment_id)

    def get_history_by_key(self, key: str) -> list[Release]:
        """History served to clients polling with ``key``."""
        history = self._store.load_history_by_key(key)
        if history is None:
            raise NotFoundError("Unknown deployment key.")
        return history

    def get_release(self, deployment_id: str, label: str | None = None) -> Release:
        history = self.get_history(deployment_id)
        if not history:
            raise NotFoundError("Deployment has no releases.")
        release = find_by_label(history, label) if label else history[-1]
        if release is None:
            raise NotFoundError(f"Release {label!r} not found.")
        return release

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    def commit(
        self, deployment_id: str, release: Release, *, check_duplicate: bool = True
    ) -> Release:
        """Append ``release`` as the new head and return the committed copy.

        With ``check_duplicate``, a release whose package hash equals what
        clients on its app version already receive is rejected.
        """
        validate_app_version(release.app_version)
        deployment = self.get_deployment(deployment_id)
        with self._lock_for(deployment_id):
            history = self._store.load_history(deployment_id)
            if _head_blocks_new_release(history):
                raise ConflictError(
                    "Please update the previous release to 100% rollout "
                    "before releasing a new package."
                )
            if check_duplicate and release.package_hash == last_package_hash_for_app_version(
                history, release.app_version
            ):
                raise ConflictError(
                    "The uploaded package was not released because it is identical "
                    "to the contents of the specified deployment's current release."
                )
            committed = self._append(deployment_id, history, release)
        self._invalidate(deployment)
        logger.info(
            "Committed %s to %s (app version %s, hash %s)",
            committed.label,
            deployment.name,
            committed.app_version,
            committed.package_hash,
        )
        if self.on_commit is not None:
            self.on_commit(deployment, committed)
        return committed

    def _append(
        self, deployment_id: str, history: list[Release], release: Release
    ) -> Release:
        """Assign the next label, clear the old head's rollout, save."""
        if history and history[-1].rollout is not None:
            history[-1] = history[-1].model_copy(update={"rollout": None})
        committed = release.model_copy(
            update={
                "label": f"v{len(history) + 1}",
                "uploaded_at": datetime.now(timezone.utc),
            }
        )
        history.append(committed)
        self._store.save_history(deployment_id, history)
        return committed

    def clear_history(self, deployment_id: str) -> None:
        """Drop every release; the next commit is labelled ``v1`` again."""
        deployment = self.get_deployment(deployment_id)
        with self._lock_for(deployment_id):
            self._store.save_history(deployment_id, [])
        self._invalidate(deployment)
        logger.info("Cleared release history of %s", deployment.name)

    # ------------------------------------------------------------------
    # Metadata patch
    # ------------------------------------------------------------------

    def patch_release(self, deployment_id: str, update: ReleaseUpdate) -> Release | None:
        """Change metadata of a release (the latest when no label is given).

        Returns the updated release, or None when nothing changed.
        """
        if update.app_version:
            validate_app_version(update.app_version)
        validate_rollout(update.rollout)
        deployment = self.get_deployment(deployment_id)
        with self._lock_for(deployment_id):
            history = self._store.load_history(deployment_id)
            if not history:
                raise NotFoundError("Deployment has no releases.")
            if update.label:
                index = next(
                    (i for i in range(len(history) - 1, -1, -1) if history[i].label == update.label),
                    None,
                )
                if index is None:
                    raise NotFoundError(f"Release {update.label!r} not found.")
            else:
                index = len(history) - 1
            target = history[index]

            changes: dict = {}
            if update.is_disabled is not None and update.is_disabled != target.is_disabled:
                changes["is_disabled"] = update.is_disabled
            if update.is_mandatory is not None and update.is_mandatory != target.is_mandatory:
                changes["is_mandatory"] = update.is_mandatory
            if update.description and update.description != target.description:
                changes["description"] = update.description
            if update.rollout is not None:
                if not is_unfinished_rollout(target.rollout):
                    raise ConflictError(
                        "Cannot update rollout value for a completed rollout release."
                    )
                if target.rollout >= update.rollout:
                    raise ConflictError(
                        f"Rollout value must be greater than {target.rollout}, "
                        "the existing value."
                    )
                changes["rollout"] = None if update.rollout == 100 else update.rollout
            if update.app_version and update.app_version != target.app_version:
                changes["app_version"] = update.app_version

            if not changes:
                return None
            patched = target.model_copy(update=changes)
            history[index] = patched
            self._store.save_history(deployment_id, history)
        self._invalidate(deployment)
        logger.info(
            "Patched %s on %s: %s", patched.label, deployment.name, sorted(changes)
        )
        return patched

    # ------------------------------------------------------------------
    # Rollback
    # ------------------------------------------------------------------

    def rollback(self, deployment_id: str, target_label: str | None = None) -> Release:
        """Re-release an earlier release's content as the new head.

        Without ``target_label`` the release before the head is used. The
        target must target the same app version as the head. An active
        rollout on the head does not block a rollback.
        """
        deployment = self.get_deployment(deployment_id)
        with self._lock_for(deployment_id):
            history = self._store.load_history(deployment_id)
            if not history:
                raise NotFoundError(
                    "Cannot perform rollback because there are no releases on this deployment."
                )
            head = history[-1]
            if target_label is None:
                if len(history) < 2:
                    raise NotFoundError(
                        "Cannot perform rollback because there are no prior releases to rollback to."
                    )
                target = history[-2]
            else:
                if target_label == head.label:
                    raise ConflictError(
                        f"Cannot perform rollback because the target release "
                        f"({target_label}) is already the latest release."
                    )
                target = find_by_label(history, target_label)
                if target is None:
                    raise NotFoundError(
                        f"Cannot perform rollback because the target release "
                        f"({target_label}) could not be found in the deployment history."
                    )
            if target.app_version != head.app_version:
                raise ConflictError(
                    "Cannot perform rollback to a different app version. Please "
                    "perform a new release with the desired replacement package."
                )
            clone = Release(
                package_hash=target.package_hash,
                app_version=target.app_version,
                blob=target.blob,
                manifest_blob=target.manifest_blob,
                diffs=dict(target.diffs),
                is_disabled=target.is_disabled,
                is_mandatory=target.is_mandatory,
                description=target.description,
                release_method=ReleaseMethod.ROLLBACK,
                original_label=target.label,
            )
            committed = self._append(deployment_id, history, clone)
        self._invalidate(deployment)
        logger.info(
            "Rolled back %s to %s as %s", deployment.name, target.label, committed.label
        )
        return committed

    # ------------------------------------------------------------------
    # Promote
    # ------------------------------------------------------------------

    def promote(
        self,
        source_deployment_id: str,
        dest_deployment_id: str,
        overrides: PromoteOverrides | None = None,
    ) -> Release:
        """Copy a source release (latest, or ``overrides.label``) to the
        destination deployment as its new head."""
        overrides = overrides or PromoteOverrides()
        if overrides.app_version:
            validate_app_version(overrides.app_version)
        validate_rollout(overrides.rollout)
        source_deployment = self.get_deployment(source_deployment_id)
        dest_deployment = self.get_deployment(dest_deployment_id)

        source_history = self._store.load_history(source_deployment_id)
        if overrides.label:
            source = find_by_label(source_history, overrides.label)
            if source is None:
                raise NotFoundError(f"Release {overrides.label!r} not found.")
        elif source_history:
            source = source_history[-1]
        else:
            raise NotFoundError("Cannot promote from a deployment with no releases.")

        app_version = overrides.app_version or source.app_version
        with self._lock_for(dest_deployment_id):
            dest_history = self._store.load_history(dest_deployment_id)
            if _head_blocks_new_release(dest_history):
                raise ConflictError(
                    "Cannot promote to an unfinished rollout release unless it is "
                    "already disabled."
                )
            if source.package_hash == last_package_hash_for_app_version(
                dest_history, app_version
            ):
                raise ConflictError(
                    "The release was not promoted because it is identical to the "
                    "contents of the targeted deployment's current release."
                )
            promoted = Release(
                package_hash=source.package_hash,
                app_version=app_version,
                blob=source.blob,
                manifest_blob=source.manifest_blob,
                is_disabled=(
                    source.is_disabled if overrides.is_disabled is None else overrides.is_disabled
                ),
                is_mandatory=(
                    source.is_mandatory if overrides.is_mandatory is None else overrides.is_mandatory
                ),
                rollout=overrides.rollout,
                description=overrides.description or source.description,
                release_method=ReleaseMethod.PROMOTE,
                original_label=source.label,
                original_deployment=source_deployment.name,
            )
            committed = self._append(dest_deployment_id, dest_history, promoted)
        self._invalidate(dest_deployment)
        logger.info(
            "Promoted %s/%s to %s as %s",
            source_deployment.name,
            source.label,
            dest_deployment.name,
            committed.label,
        )
        if self.on_commit is not None:
            self.on_commit(dest_deployment, committed)
        return committed

    # ------------------------------------------------------------------
    # Diff attachment
    # ------------------------------------------------------------------

    def attach_diffs(
        self,
        deployment_id: str,
        label: str,
        package_hash: str,
        diffs: dict[str, BlobRef],
    ) -> bool:
        """Merge generated diffs into the release they were computed for.

        Returns False when that release is gone (history cleared, or the
        label now names different content).
        """
        if not diffs:
            return False
        deployment = self.get_deployment(deployment_id)
        with self._lock_for(deployment_id):
            history = self._store.load_history(deployment_id)
            for index in range(len(history) - 1, -1, -1):
                release = history[index]
                if release.label == label and release.package_hash == package_hash:
                    merged = {**release.diffs, **diffs}
                    history[index] = release.model_copy(update={"diffs": merged})
                    self._store.save_history(deployment_id, history)
                    break
            else:
                return False
        self._invalidate(deployment)
        logger.info(
            "Attached %d diff(s) to %s on %s", len(diffs), label, deployment.name
        )
        return True
