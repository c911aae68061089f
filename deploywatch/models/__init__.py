"""Data models for deploywatch."""

from deploywatch.models.progress import (
    EndpointInfo,
    EndpointTestResult,
    LoggedEvent,
    ProgressEvent,
    ProgressEventType,
)
from deploywatch.models.resource import (
    ContainerStatus,
    DeployedResource,
    DeploymentStatus,
    ReconcileReport,
    RuntimeContainer,
)

__all__ = [
    # Progress models
    "EndpointInfo",
    "EndpointTestResult",
    "LoggedEvent",
    "ProgressEvent",
    "ProgressEventType",
    # Resource models
    "ContainerStatus",
    "DeployedResource",
    "DeploymentStatus",
    "ReconcileReport",
    "RuntimeContainer",
]
