"""Deployment metrics and update-check response caching.

Both live in the counter store under per-deployment-key hashes:

- ``deploymentKey:<key>``: cached update plans, one field per query.
- ``deploymentKeyLabels:<key>``: counters, fields ``<label>:<status>``.
- ``deploymentKeyClients:<key>``: legacy per-client active labels.
- ``deploymentKeyGeneration:<key>``: bumped on every cache invalidation.

The store is best effort. When it is unavailable, reads return nothing,
writes are dropped, and a warning is logged.
"""

from __future__ import annotations

import logging

from pydantic import ValidationError

from pushgate.core.counter_store import CounterStore, CounterStoreUnavailable
from pushgate.errors import MalformedRequestError
from pushgate.models.acquisition import UpdatePlan
from pushgate.models.metrics import DeploymentStatus, LabelMetrics, StatusReport

logger = logging.getLogger(__name__)

ACTIVE = "Active"
GENERATION_FIELD = "generation"

_METRIC_FIELDS = {
    ACTIVE: "active",
    DeploymentStatus.DOWNLOADED.value: "downloaded",
    DeploymentStatus.SUCCEEDED.value: "installed",
    DeploymentStatus.FAILED.value: "failed",
}


def deployment_key_hash(deployment_key: str) -> str:
    return f"deploymentKey:{deployment_key}"


def deployment_key_labels_hash(deployment_key: str) -> str:
    return f"deploymentKeyLabels:{deployment_key}"


def deployment_key_clients_hash(deployment_key: str) -> str:
    return f"deploymentKeyClients:{deployment_key}"


def deployment_key_generation_hash(deployment_key: str) -> str:
    return f"deploymentKeyGeneration:{deployment_key}"


def label_status_field(label: str, status: DeploymentStatus) -> str:
    return f"{label}:{status.value}"


def label_active_field(label: str) -> str:
    return f"{label}:{ACTIVE}"


class ResponseCache:
    """Update plans cached per deployment key and canonical query.

    The expiry is set when a deployment key's hash is first created, so a
    busy deployment is fully refreshed at least once per expiry period.

    Each deployment key has a generation counter that ``invalidate`` bumps.
    A plan is only stored under the generation it was built in, so a plan
    read from history before a ledger change is never cached after it.
    """

    def __init__(self, store: CounterStore, expiry_seconds: int = 3600) -> None:
        self._store = store
        self._expiry_seconds = expiry_seconds

    def get(self, deployment_key: str, query: str) -> UpdatePlan | None:
        try:
            cached = self._store.get_field(deployment_key_hash(deployment_key), query)
        except CounterStoreUnavailable as exc:
            logger.warning("Response cache unavailable, reading ledger: %s", exc)
            return None
        if cached is None:
            return None
        try:
            return UpdatePlan.model_validate_json(cached)
        except ValidationError:
            logger.warning("Discarding unreadable cached plan for %s", query)
            return None

    def generation(self, deployment_key: str) -> str | None:
        """Current generation token, or None when the store is unavailable."""
        try:
            value = self._store.get_field(
                deployment_key_generation_hash(deployment_key), GENERATION_FIELD
            )
        except CounterStoreUnavailable as exc:
            logger.warning("Response cache unavailable, not caching: %s", exc)
            return None
        return value or "0"

    def set(
        self,
        deployment_key: str,
        query: str,
        plan: UpdatePlan,
        generation: str | None = None,
    ) -> bool:
        """Store ``plan``; returns whether it was kept.

        With ``generation``, the plan is dropped if the key was invalidated
        since that token was read. The token is checked again after the
        write because an invalidation may land in between.
        """
        cache_hash = deployment_key_hash(deployment_key)
        try:
            if generation is not None and self.generation(deployment_key) != generation:
                return False
            self._store.set_field(
                cache_hash,
                query,
                plan.model_dump_json(),
                expire_new_seconds=self._expiry_seconds,
            )
            if generation is not None and self.generation(deployment_key) != generation:
                self._store.delete_field(cache_hash, query)
                return False
        except CounterStoreUnavailable as exc:
            logger.warning("Response cache unavailable, not caching: %s", exc)
            return False
        return True

    def invalidate(self, deployment_key: str) -> None:
        try:
            self._store.increment_batch(
                [(deployment_key_generation_hash(deployment_key), GENERATION_FIELD, 1)]
            )
            self._store.delete(deployment_key_hash(deployment_key))
        except CounterStoreUnavailable as exc:
            logger.warning("Response cache unavailable, not invalidated: %s", exc)


class MetricsRecorder:
    """Per-label install, download, failure and active-device counters.

    Without a store, reports are still validated but nothing is recorded.
    """

    def __init__(self, store: CounterStore | None) -> None:
        self._store = store

    def report_status(self, report: StatusReport) -> None:
        """Record a client's download or deployment status report.

        Raises ``MalformedRequestError`` for reports missing required
        fields. Counter store faults are logged and ignored.
        """
        if not report.deployment_key:
            raise MalformedRequestError("A status report must contain a deployment key.")

        if report.status is DeploymentStatus.DOWNLOADED:
            if not report.label:
                raise MalformedRequestError(
                    "A download status report must contain a valid deployment key "
                    "and package label."
                )
            self._increment(
                [
                    (
                        deployment_key_labels_hash(report.deployment_key),
                        label_status_field(report.label, DeploymentStatus.DOWNLOADED),
                        1,
                    )
                ]
            )
            return

        if not report.app_version:
            raise MalformedRequestError(
                "A deploy status report must contain a valid app version and deployment key."
            )
        if report.label and report.status is None:
            raise MalformedRequestError(
                "A deploy status report for a labelled package must contain a valid status."
            )

        if report.label and report.status is DeploymentStatus.FAILED:
            self._increment(
                [
                    (
                        deployment_key_labels_hash(report.deployment_key),
                        label_status_field(report.label, DeploymentStatus.FAILED),
                        1,
                    )
                ]
            )
        else:
            current = report.label or report.app_version
            previous_key = report.previous_deployment_key or report.deployment_key
            labels_hash = deployment_key_labels_hash(report.deployment_key)
            batch = [
                (labels_hash, label_active_field(current), 1),
                (labels_hash, label_status_field(current, DeploymentStatus.SUCCEEDED), 1),
            ]
            if report.previous_label_or_app_version:
                batch.append(
                    (
                        deployment_key_labels_hash(previous_key),
                        label_active_field(report.previous_label_or_app_version),
                        -1,
                    )
                )
            if not self._increment(batch):
                return

        if report.client_unique_id and self._store is not None:
            previous_key = report.previous_deployment_key or report.deployment_key
            try:
                self._store.delete_field(
                    deployment_key_clients_hash(previous_key), report.client_unique_id
                )
            except CounterStoreUnavailable as exc:
                logger.warning("Counter store unavailable: %s", exc)

    def _increment(self, batch: list[tuple[str, str, int]]) -> bool:
        if self._store is None:
            return False
        try:
            self._store.increment_batch(batch)
        except CounterStoreUnavailable as exc:
            logger.warning("Counter store unavailable, metrics dropped: %s", exc)
            return False
        return True

    def get_metrics(self, deployment_key: str) -> dict[str, LabelMetrics]:
        """Counters per label (or app version) for one deployment key."""
        if self._store is None:
            return {}
        try:
            raw = self._store.get_all(deployment_key_labels_hash(deployment_key))
        except CounterStoreUnavailable as exc:
            logger.warning("Counter store unavailable, no metrics: %s", exc)
            return {}

        counts: dict[str, dict[str, int]] = {}
        for field, value in raw.items():
            label, _, status = field.rpartition(":")
            name = _METRIC_FIELDS.get(status)
            if not label or name is None:
                continue
            try:
                counts.setdefault(label, {})[name] = int(value)
            except ValueError:
                continue
        return {label: LabelMetrics(**values) for label, values in sorted(counts.items())}

    def clear(self, deployment_key: str) -> None:
        if self._store is None:
            return
        try:
            self._store.delete(
                deployment_key_labels_hash(deployment_key),
                deployment_key_clients_hash(deployment_key),
            )
        except CounterStoreUnavailable as exc:
            logger.warning("Counter store unavailable, metrics not cleared: %s", exc)
