"""Client-side consumer of the deploy progress stream."""

from deploywatch.client.progress import (
    ActiveDeploy,
    DeployProgressTracker,
    DeployStatus,
    next_status,
)

__all__ = [
    "ActiveDeploy",
    "DeployProgressTracker",
    "DeployStatus",
    "next_status",
]
