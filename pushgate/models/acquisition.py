"""Update-check request and decision models.

A decision is a tagged union of three outcomes, so contradictory flag
combinations (e.g. both "update the binary" and "run the binary version")
cannot be represented. ``UpdateInfo`` flattens a decision into the wire
record clients expect.
"""

from __future__ import annotations

from typing import Annotated, Literal, Union
from urllib.parse import urlencode

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class UpdateCheckRequest(BaseModel):
    """Query parameters of a client poll."""

    model_config = ConfigDict(frozen=True)

    deployment_key: str
    app_version: str
    package_hash: str | None = None
    label: str | None = None
    is_companion: bool = False
    client_unique_id: str | None = None

    def cache_query(self) -> str:
        """Canonical query string for response caching.

        ``client_unique_id`` is excluded: rollout selection is applied to
        the cached plan per client.
        """
        params = {
            "appVersion": self.app_version,
            "deploymentKey": self.deployment_key,
            "isCompanion": str(self.is_companion).lower(),
            "label": self.label or "",
            "packageHash": self.package_hash or "",
        }
        return "/updateCheck?" + urlencode(sorted(params.items()))


class UpdateAvailable(BaseModel):
    """The client should download and install a package."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["available"] = "available"
    download_url: str
    package_size: int
    package_hash: str
    label: str
    is_mandatory: bool = False
    description: str = ""
    app_version: str  # the client's version, echoed in its original form
    update_app_version: bool = False  # a newer binary is also targeted


class NeedsBinaryUpgrade(BaseModel):
    """No package applies to this binary, but a newer binary is targeted."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["needs_binary_upgrade"] = "needs_binary_upgrade"
    app_version: str  # the version spec of the release targeting a newer binary
    label: str | None = None  # release the client is already up to date with
    package_hash: str | None = None


class UpToDate(BaseModel):
    """Nothing to do. ``should_run_binary_version`` means the client's
    binary is ahead of every release and should drop any installed package."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["up_to_date"] = "up_to_date"
    app_version: str
    should_run_binary_version: bool = False
    label: str | None = None
    package_hash: str | None = None


UpdateDecision = Annotated[
    Union[UpdateAvailable, NeedsBinaryUpgrade, UpToDate],
    Field(discriminator="kind"),
]

update_decision_adapter: TypeAdapter[UpdateDecision] = TypeAdapter(UpdateDecision)


class UpdatePlan(BaseModel):
    """Client-independent result of an update check, safe to cache.

    When the matched head release is in an unfinished rollout, both
    outcomes are precomputed and the rollout selector picks one per client.
    """

    model_config = ConfigDict(frozen=True)

    original: UpdateDecision
    rollout: UpdateDecision | None = None
    rollout_percent: int | None = None
    rollout_tag: str | None = None  # label, or package hash when unlabelled


class UpdateInfo(BaseModel):
    """Flat response record, serialized with the wire field names."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    is_available: bool = Field(alias="isAvailable")
    download_url: str = Field(default="", alias="downloadURL")
    package_size: int = Field(default=0, alias="packageSize")
    package_hash: str = Field(default="", alias="packageHash")
    label: str = ""
    is_mandatory: bool = Field(default=False, alias="isMandatory")
    description: str = ""
    app_version: str = Field(default="", alias="appVersion")
    update_app_version: bool = Field(default=False, alias="updateAppVersion")
    should_run_binary_version: bool = Field(
        default=False, alias="shouldRunBinaryVersion"
    )

    @classmethod
    def from_decision(
        cls, decision: UpdateAvailable | NeedsBinaryUpgrade | UpToDate
    ) -> UpdateInfo:
        if isinstance(decision, UpdateAvailable):
            return cls(
                is_available=True,
                download_url=decision.download_url,
                package_size=decision.package_size,
                package_hash=decision.package_hash,
                label=decision.label,
                is_mandatory=decision.is_mandatory,
                description=decision.description,
                app_version=decision.app_version,
                update_app_version=decision.update_app_version,
            )
        if isinstance(decision, NeedsBinaryUpgrade):
            return cls(
                is_available=False,
                app_version=decision.app_version,
                update_app_version=True,
            )
        return cls(
            is_available=False,
            app_version=decision.app_version,
            should_run_binary_version=decision.should_run_binary_version,
        )

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True)
