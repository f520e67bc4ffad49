"""Error taxonomy shared by the ledger, the decision engine and the CLI."""

from __future__ import annotations


class PushgateError(RuntimeError):
    """Base class for business-logic failures surfaced to callers."""

    code: str = "Unknown"


class NotFoundError(PushgateError):
    """Unknown deployment key, deployment, or release label."""

    code = "NotFound"


class MalformedRequestError(PushgateError):
    """Invalid semver, missing required fields, or out-of-range values."""

    code = "MalformedRequest"


class ConflictError(PushgateError):
    """The request contradicts current ledger state.

    Raised for duplicate content on release or promote, an unfinished
    rollout blocking a new release, rollback to the current or a
    version-mismatched release, and rollout values that do not increase.
    """

    code = "Conflict"
