"""Pushgate data models. All Pydantic v2, all frozen (immutable)."""

from pushgate.models.acquisition import (
    NeedsBinaryUpgrade,
    UpdateAvailable,
    UpdateCheckRequest,
    UpdateDecision,
    UpdateInfo,
    UpdatePlan,
    UpToDate,
)
from pushgate.models.metrics import DeploymentStatus, LabelMetrics, StatusReport
from pushgate.models.release import (
    BlobRef,
    Deployment,
    PromoteOverrides,
    Release,
    ReleaseDescriptor,
    ReleaseMethod,
    ReleaseUpdate,
)

__all__ = [
    # release
    "BlobRef",
    "Deployment",
    "PromoteOverrides",
    "Release",
    "ReleaseDescriptor",
    "ReleaseMethod",
    "ReleaseUpdate",
    # acquisition
    "UpdateCheckRequest",
    "UpdateAvailable",
    "NeedsBinaryUpgrade",
    "UpToDate",
    "UpdateDecision",
    "UpdatePlan",
    "UpdateInfo",
    # metrics
    "DeploymentStatus",
    "StatusReport",
    "LabelMetrics",
]
