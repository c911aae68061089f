"""Resource registry and container runtime models."""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DeploymentStatus(str, Enum):
    """Registry status of a deployed resource."""

    PENDING = "pending"
    BUILDING = "building"
    DEPLOYING = "deploying"
    RUNNING = "running"
    STOPPED = "stopped"
    FAILED = "failed"
    UPDATING = "updating"
    LOST = "lost"


# Statuses under which the registry expects a live container
EXPECTS_RUNNING = frozenset(
    {
        DeploymentStatus.RUNNING,
        DeploymentStatus.DEPLOYING,
        DeploymentStatus.UPDATING,
        DeploymentStatus.LOST,
    }
)

# Statuses eligible for stale cleanup
RETIRED = frozenset(
    {
        DeploymentStatus.FAILED,
        DeploymentStatus.STOPPED,
        DeploymentStatus.LOST,
    }
)


class DeployedResource(BaseModel):
    """The registry's belief about one resource."""

    resource_id: str = Field(..., min_length=1)
    name: str = ""
    status: DeploymentStatus = DeploymentStatus.PENDING
    container_id: str | None = None
    healthy: bool = False
    public_url: str | None = None

    deployed_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    error: str | None = None
    # Set when the resource was deleted upstream; reconciliation removes it
    deleted: bool = False

    def touch(self) -> None:
        self.updated_at = _utcnow()

    def age_hours(self, now: datetime | None = None) -> float:
        """Hours elapsed since the resource was deployed."""
        now = now or _utcnow()
        deployed_at = self.deployed_at
        if deployed_at.tzinfo is None:
            deployed_at = deployed_at.replace(tzinfo=timezone.utc)
        return (now - deployed_at).total_seconds() / 3600


class RuntimeContainer(BaseModel):
    """The runtime's ground truth about one container."""

    id: str
    resource_id: str | None = None
    state: str = "unknown"
    created: int = 0

    @property
    def running(self) -> bool:
        return self.state == "running"


class ContainerStatus(BaseModel):
    """Result of inspecting a single container."""

    running: bool
    healthy: bool
    exit_code: int | None = None


class ReconcileReport(BaseModel):
    """Counts produced by one reconciliation pass.

    ``healthy + recovered + lost + cleaned == total`` always holds;
    ``errors`` is diagnostic and not part of the sum.
    """

    total: int = 0
    healthy: int = 0
    recovered: int = 0
    lost: int = 0
    cleaned: int = 0
    errors: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.recovered or self.lost or self.cleaned)
