"""Release and deployment records (frozen; copied on write by the ledger).

A deployment's release history is append-only. Releases are only ever
mutated through the ledger's metadata patch, which writes a new copy of
the record rather than changing it in place.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ReleaseMethod(str, Enum):
    """How a release entered a deployment's history."""

    UPLOAD = "Upload"
    PROMOTE = "Promote"
    ROLLBACK = "Rollback"


class BlobRef(BaseModel):
    """A reference to an opaque blob in the blob store."""

    model_config = ConfigDict(frozen=True)

    url: str
    size: int = 0


def _normalize_rollout(value: int | None) -> int | None:
    # 100 means fully released, which is stored as "no rollout"
    return None if value == 100 else value


class Release(BaseModel):
    """One versioned artifact pushed to a deployment.

    ``app_version`` is either an exact semantic version or a range.
    ``rollout`` of None means fully released; otherwise 1..99 percent of
    clients receive this release while it is the head.
    """

    model_config = ConfigDict(frozen=True)

    label: str = ""  # "v<N>", assigned by the ledger on commit
    package_hash: str
    app_version: str
    blob: BlobRef
    manifest_blob: BlobRef | None = None  # only zip artifacts carry a manifest
    diffs: dict[str, BlobRef] = {}  # baseline package hash -> diff archive
    is_disabled: bool = False
    is_mandatory: bool = False
    rollout: int | None = Field(default=None, ge=1, le=100)
    description: str = ""
    release_method: ReleaseMethod = ReleaseMethod.UPLOAD
    original_label: str | None = None
    original_deployment: str | None = None
    uploaded_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @field_validator("rollout")
    @classmethod
    def full_rollout_is_none(cls, value: int | None) -> int | None:
        return _normalize_rollout(value)

    @property
    def size(self) -> int:
        return self.blob.size

    @property
    def has_active_rollout(self) -> bool:
        """Enabled and only partially rolled out."""
        return not self.is_disabled and self.rollout is not None and self.rollout != 100


class Deployment(BaseModel):
    """A named release channel identified externally by an opaque key."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    key: str
    name: str
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


class ReleaseDescriptor(BaseModel):
    """Metadata supplied alongside an uploaded artifact."""

    model_config = ConfigDict(frozen=True)

    app_version: str
    description: str = ""
    is_mandatory: bool = False
    is_disabled: bool = False
    rollout: int | None = None

    @field_validator("rollout")
    @classmethod
    def full_rollout_is_none(cls, value: int | None) -> int | None:
        return _normalize_rollout(value)


class ReleaseUpdate(BaseModel):
    """Metadata patch for a historical release (None = leave unchanged).

    ``rollout`` is kept as supplied (100 included) so the ledger can
    validate the increase before storing 100 as None.
    """

    model_config = ConfigDict(frozen=True)

    label: str | None = None  # target release; latest when omitted
    is_disabled: bool | None = None
    is_mandatory: bool | None = None
    description: str | None = None
    rollout: int | None = None
    app_version: str | None = None


class PromoteOverrides(BaseModel):
    """Fields that replace the source release's values on promotion."""

    model_config = ConfigDict(frozen=True)

    label: str | None = None  # source release; latest when omitted
    description: str | None = None
    is_mandatory: bool | None = None
    is_disabled: bool | None = None
    rollout: int | None = None
    app_version: str | None = None

    @field_validator("rollout")
    @classmethod
    def full_rollout_is_none(cls, value: int | None) -> int | None:
        return _normalize_rollout(value)
