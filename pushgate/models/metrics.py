"""Client status reports and per-label deployment metrics."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class DeploymentStatus(str, Enum):
    SUCCEEDED = "DeploymentSucceeded"
    FAILED = "DeploymentFailed"
    DOWNLOADED = "Downloaded"


class StatusReport(BaseModel):
    """A client's report after downloading or installing an update.

    A report without a label and status announces the binary version the
    client is running (``app_version``), which counts as a success for
    that version.
    """

    model_config = ConfigDict(frozen=True)

    deployment_key: str
    label: str | None = None
    app_version: str | None = None
    status: DeploymentStatus | None = None
    client_unique_id: str | None = None
    previous_deployment_key: str | None = None
    previous_label_or_app_version: str | None = None


class LabelMetrics(BaseModel):
    model_config = ConfigDict(frozen=True)

    active: int = 0
    downloaded: int = 0
    installed: int = 0
    failed: int = 0
