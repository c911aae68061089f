"""Health check endpoints."""

import time
from datetime import datetime, timezone
from typing import Awaitable, Callable

from fastapi import APIRouter, Request
from pydantic import BaseModel

from deploywatch import __version__
from deploywatch.api.deps import DockerDep, EventLogDep, RegistryDep
from deploywatch.config import settings
from deploywatch.core.exceptions import DeployWatchError
from deploywatch.models.resource import ReconcileReport
from deploywatch.utils.logging import get_logger

router = APIRouter()
logger = get_logger(__name__)


class CheckResult(BaseModel):
    """Result of probing one dependency."""

    status: str
    latency_ms: float | None = None
    error: str | None = None


class ReconcileSummary(BaseModel):
    """Outcome of the most recent reconciliation pass."""

    ran_at: datetime
    report: ReconcileReport


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "healthy"
    version: str
    environment: str
    timestamp: datetime
    checks: dict[str, CheckResult]
    last_reconcile: ReconcileSummary | None = None


async def _probe(name: str, check: Callable[[], Awaitable[bool]]) -> CheckResult:
    start = time.perf_counter()
    try:
        ok = await check()
        error = None if ok else "unreachable"
    except DeployWatchError as e:
        ok, error = False, e.message
    latency_ms = round((time.perf_counter() - start) * 1000, 2)

    if not ok:
        logger.warning("health.check_failed", check=name, error=error)
    return CheckResult(
        status="healthy" if ok else "unhealthy",
        latency_ms=latency_ms,
        error=error,
    )


@router.get("/health", response_model=HealthResponse)
async def health_check(
    request: Request,
    event_log: EventLogDep,
    registry: RegistryDep,
    docker: DockerDep,
) -> HealthResponse:
    """Check API health and the reachability of its backing services."""
    checks = {
        "event_store": await _probe("event_store", event_log.ping),
        "registry": await _probe("registry", registry.ping),
        "docker": await _probe("docker", docker.ping),
    }

    failed = sum(1 for c in checks.values() if c.status != "healthy")
    if failed == 0:
        overall = "healthy"
    elif failed == len(checks):
        overall = "unhealthy"
    else:
        overall = "degraded"

    last_reconcile = None
    loop = getattr(request.app.state, "reconciliation_loop", None)
    if loop is not None and loop.last_report is not None:
        last_reconcile = ReconcileSummary(ran_at=loop.last_run_at, report=loop.last_report)

    return HealthResponse(
        status=overall,
        version=__version__,
        environment=settings.app_env,
        timestamp=datetime.now(timezone.utc),
        checks=checks,
        last_reconcile=last_reconcile,
    )
