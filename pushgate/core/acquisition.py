"""Update Decision Engine: answers a client's update check.

The hot path is split in two so that the expensive part can be cached:

1. ``build_update_plan(history, request)`` scans the release history and
   precomputes the decision for the original release and, when the
   matched head is in an unfinished rollout, for the rollout release.
   The plan does not depend on the client's identity.
2. ``select_update(plan, client_unique_id)`` applies the rollout selector
   for one client.

Binary/version mismatches are successful answers (``NeedsBinaryUpgrade``
or ``UpToDate``), never errors.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from pushgate.core import semver
from pushgate.core.rollout import is_selected_for_rollout
from pushgate.errors import MalformedRequestError
from pushgate.models.acquisition import (
    NeedsBinaryUpgrade,
    UpdateAvailable,
    UpdateCheckRequest,
    UpdateDecision,
    UpdatePlan,
    UpToDate,
)
from pushgate.models.release import Release

if TYPE_CHECKING:
    from pushgate.core.metrics import ResponseCache
    from pushgate.core.release_ledger import ReleaseLedger

logger = logging.getLogger(__name__)

_PLAIN_INTEGER_RE = re.compile(r"^\d+$")
_MISSING_PATCH_RE = re.compile(r"^\d+\.\d+([+-].*)?$")
_TAG_RE = re.compile(r"[+-]")


def normalize_app_version(app_version: str) -> tuple[str, bool]:
    """Complete ``"N"`` and ``"X.Y[-pre|+build]"`` to full versions.

    Returns the normalized version and whether it differs from the input.
    """
    if _PLAIN_INTEGER_RE.match(app_version):
        return f"{app_version}.0.0", True
    if _MISSING_PATCH_RE.match(app_version):
        tag = _TAG_RE.search(app_version)
        if tag is None:
            return f"{app_version}.0", True
        index = tag.start()
        return f"{app_version[:index]}.0{app_version[index:]}", True
    return app_version, False


def release_matches(release: Release, app_version: str, is_companion: bool) -> bool:
    """Whether ``release`` can be served to a client on ``app_version``."""
    if release.is_disabled:
        return False
    return is_companion or semver.satisfies(app_version, release.app_version)


def _binary_upgrade_target(
    history: list[Release], start: int, app_version: str
) -> Release | None:
    """Nearest enabled release at or after ``start`` that targets a binary
    newer than ``app_version``."""
    for release in history[start:]:
        if not release.is_disabled and semver.ltr(app_version, release.app_version):
            return release
    return None


def _newest_binary_upgrade_target(
    history: list[Release], app_version: str
) -> Release | None:
    for release in reversed(history):
        if not release.is_disabled and semver.ltr(app_version, release.app_version):
            return release
    return None


def _decide_for(
    history: list[Release],
    index: int,
    request: UpdateCheckRequest,
    app_version: str,
    echo_version: str,
) -> UpdateDecision:
    """Decision when ``history[index]`` is the release selected for the client."""
    selected = history[index]
    target = None
    if not request.is_companion:
        target = _binary_upgrade_target(history, index + 1, app_version)

    if selected.package_hash != (request.package_hash or None):
        blob = selected.blob
        if request.package_hash and request.package_hash in selected.diffs:
            blob = selected.diffs[request.package_hash]
        return UpdateAvailable(
            download_url=blob.url,
            package_size=blob.size,
            package_hash=selected.package_hash,
            label=selected.label,
            is_mandatory=selected.is_mandatory,
            description=selected.description,
            app_version=echo_version,
            update_app_version=target is not None,
        )
    if target is not None:
        return NeedsBinaryUpgrade(
            app_version=target.app_version,
            label=selected.label,
            package_hash=selected.package_hash,
        )
    return UpToDate(
        app_version=echo_version,
        label=selected.label,
        package_hash=selected.package_hash,
    )


def build_update_plan(
    history: list[Release],
    request: UpdateCheckRequest,
    *,
    app_version: str | None = None,
) -> UpdatePlan:
    """Client-independent decisions for ``request`` against ``history``.

    ``app_version`` is the normalized client version; when omitted,
    ``request.app_version`` is used as is. Responses that echo the
    client's version use ``request.app_version``, i.e. its original form.
    """
    normalized = app_version or request.app_version
    echo_version = request.app_version

    head_index = next(
        (
            i
            for i in range(len(history) - 1, -1, -1)
            if release_matches(history[i], normalized, request.is_companion)
        ),
        None,
    )

    if head_index is None:
        target = _newest_binary_upgrade_target(history, normalized)
        if target is not None:
            return UpdatePlan(original=NeedsBinaryUpgrade(app_version=target.app_version))
        return UpdatePlan(
            original=UpToDate(app_version=echo_version, should_run_binary_version=True)
        )

    head = history[head_index]
    if not head.has_active_rollout:
        return UpdatePlan(
            original=_decide_for(history, head_index, request, normalized, echo_version)
        )

    original_index = next(
        (
            i
            for i in range(head_index - 1, -1, -1)
            if release_matches(history[i], normalized, request.is_companion)
            and not history[i].has_active_rollout
        ),
        None,
    )
    if original_index is None:
        return UpdatePlan(
            original=_decide_for(history, head_index, request, normalized, echo_version)
        )
    return UpdatePlan(
        original=_decide_for(history, original_index, request, normalized, echo_version),
        rollout=_decide_for(history, head_index, request, normalized, echo_version),
        rollout_percent=head.rollout,
        rollout_tag=head.label or head.package_hash,
    )


def select_update(plan: UpdatePlan, client_unique_id: str | None) -> UpdateDecision:
    """Pick the rollout or the original decision for one client.

    Clients without a stable unique id always get the original release.
    """
    if plan.rollout is not None and client_unique_id:
        if is_selected_for_rollout(
            client_unique_id, plan.rollout_percent, plan.rollout_tag
        ):
            return plan.rollout
    return plan.original


def _validated_app_version(request: UpdateCheckRequest) -> str:
    if not request.deployment_key:
        raise MalformedRequestError(
            "An update check must include a valid deployment key."
        )
    if not request.app_version:
        raise MalformedRequestError(
            "An update check must include a binary version that conforms to "
            "the semver standard (e.g. '1.0.0')."
        )
    normalized, _ = normalize_app_version(request.app_version)
    if semver.valid(normalized) is None:
        raise MalformedRequestError(
            f"Invalid binary version {request.app_version!r}: an update check must "
            "include a semver-compliant app version."
        )
    return normalized


def resolve_update(history: list[Release], request: UpdateCheckRequest) -> UpdateDecision:
    """Full decision for one client against a release history."""
    normalized = _validated_app_version(request)
    plan = build_update_plan(history, request, app_version=normalized)
    return select_update(plan, request.client_unique_id)


class UpdateCheckService:
    """Update checks against the ledger, with optional response caching.

    Parameters
    ----------
    ledger:
        Source of deployment histories.
    cache:
        Stores plans per deployment key. When None, every check reads the
        ledger.
    """

    def __init__(self, ledger: ReleaseLedger, cache: ResponseCache | None = None) -> None:
        self._ledger = ledger
        self._cache = cache

    def plan_for(self, request: UpdateCheckRequest) -> UpdatePlan:
        """The cached or freshly built plan for ``request``."""
        normalized = _validated_app_version(request)
        query = request.cache_query()
        generation = None
        if self._cache is not None:
            cached = self._cache.get(request.deployment_key, query)
            if cached is not None:
                return cached
            generation = self._cache.generation(request.deployment_key)

        history = self._ledger.get_history_by_key(request.deployment_key)
        plan = build_update_plan(history, request, app_version=normalized)
        if generation is not None:
            self._cache.set(request.deployment_key, query, plan, generation=generation)
        return plan

    def check(self, request: UpdateCheckRequest) -> UpdateDecision:
        plan = self.plan_for(request)
        return select_update(plan, request.client_unique_id)
