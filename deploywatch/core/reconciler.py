"""Reconciliation of the resource registry against the container runtime.

Detects ghost entries (registry says running, runtime has no such live
container), picks up containers that came back, and removes records and
containers that no longer have a valid counterpart.
"""

import asyncio
import time
from datetime import datetime, timedelta, timezone
from enum import Enum

from deploywatch.config import settings
from deploywatch.core.exceptions import DeployWatchError
from deploywatch.models.resource import (
    EXPECTS_RUNNING,
    RETIRED,
    DeployedResource,
    DeploymentStatus,
    ReconcileReport,
    RuntimeContainer,
)
from deploywatch.services.docker_client import DockerClient
from deploywatch.services.registry import ResourceRegistry
from deploywatch.utils.logging import get_logger


class Classification(str, Enum):
    """Outcome of reconciling one registry record."""

    HEALTHY = "healthy"
    RECOVERED = "recovered"
    LOST = "lost"
    CLEANED = "cleaned"


class Reconciler:
    """Compares registry records with live containers and corrects the registry."""

    def __init__(
        self,
        registry: ResourceRegistry,
        docker: DockerClient,
        stale_after: timedelta | None = None,
        orphan_grace: timedelta | None = None,
        image_prefix: str | None = None,
    ):
        self.registry = registry
        self.docker = docker
        self.stale_after = stale_after or timedelta(hours=settings.reconcile_stale_after_hours)
        self.orphan_grace = orphan_grace or timedelta(
            seconds=settings.reconcile_orphan_grace_seconds
        )
        self.image_prefix = image_prefix or settings.resource_image_prefix
        self.logger = get_logger("reconciler")
        self._lock = asyncio.Lock()

    async def reconcile(self) -> ReconcileReport:
        """Run one pass. Never raises; failures are counted in ``errors``."""
        # Overlapping passes (timer plus operator trigger) would double count
        async with self._lock:
            return await self._reconcile()

    async def _reconcile(self) -> ReconcileReport:
        report = ReconcileReport()

        try:
            resources = await self.registry.list()
            containers = await self.docker.list_resource_containers()
        except DeployWatchError as e:
            self.logger.error("reconcile.listing_failed", error=e.message)
            report.errors += 1
            return report

        self.logger.info(
            "reconcile.started",
            resources=len(resources),
            containers=len(containers),
        )

        by_id = {c.id: c for c in containers}
        known = set()

        for resource in resources:
            known.add(resource.resource_id)
            report.total += 1
            container = by_id.get(resource.container_id) if resource.container_id else None

            try:
                outcome = await self._reconcile_resource(resource, container)
            except DeployWatchError as e:
                # The record is classified by what the runtime shows even
                # when persisting the correction failed
                self.logger.warning(
                    "reconcile.resource_failed",
                    resource_id=resource.resource_id,
                    error=e.message,
                )
                report.errors += 1
                outcome = self._classify(resource, container)

            setattr(report, outcome.value, getattr(report, outcome.value) + 1)

        for container in containers:
            if container.resource_id in known or not self._orphan_expired(container):
                continue
            report.total += 1
            report.cleaned += 1
            try:
                await self.docker.remove_container(container.id, force=True)
                self.logger.info(
                    "reconcile.orphan_removed",
                    container_id=container.id[:12],
                    resource_id=container.resource_id,
                )
            except DeployWatchError as e:
                self.logger.warning(
                    "reconcile.orphan_removal_failed",
                    container_id=container.id[:12],
                    error=e.message,
                )
                report.errors += 1

        self.logger.info("reconcile.completed", **report.model_dump())
        return report

    def _is_stale(self, resource: DeployedResource) -> bool:
        return (
            resource.status in RETIRED
            and resource.age_hours() > self.stale_after.total_seconds() / 3600
        )

    def _orphan_expired(self, container: RuntimeContainer) -> bool:
        if not container.created:
            return True
        return time.time() - container.created > self.orphan_grace.total_seconds()

    def _classify(
        self, resource: DeployedResource, container: RuntimeContainer | None
    ) -> Classification:
        """Classify a record without side effects."""
        if resource.deleted:
            return Classification.CLEANED
        # A running container always wins over the age of the record
        if container is not None and container.running:
            if resource.status == DeploymentStatus.RUNNING:
                return Classification.HEALTHY
            return Classification.RECOVERED
        if self._is_stale(resource):
            return Classification.CLEANED
        if resource.status in EXPECTS_RUNNING:
            return Classification.LOST
        # Registry and runtime agree the resource is not running
        return Classification.HEALTHY

    async def _reconcile_resource(
        self, resource: DeployedResource, container: RuntimeContainer | None
    ) -> Classification:
        outcome = self._classify(resource, container)
        resource_id = resource.resource_id

        if outcome == Classification.CLEANED:
            await self._clean(resource)
        elif outcome == Classification.RECOVERED:
            self.logger.info(
                "reconcile.recovered",
                resource_id=resource_id,
                previous_status=resource.status.value,
            )
            resource.status = DeploymentStatus.RUNNING
            resource.healthy = True
            resource.error = None
            resource.touch()
            await self.registry.save(resource)
        elif outcome == Classification.LOST:
            if resource.status != DeploymentStatus.LOST:
                self.logger.warning(
                    "reconcile.lost",
                    resource_id=resource_id,
                    container_id=(resource.container_id or "")[:12] or None,
                    container_state=container.state if container else "absent",
                )
            resource.status = DeploymentStatus.LOST
            resource.healthy = False
            resource.error = (
                f"Container {container.state}" if container else "Container not found in runtime"
            )
            resource.touch()
            await self.registry.save(resource)

        return outcome

    async def _clean(self, resource: DeployedResource) -> None:
        resource_id = resource.resource_id
        self.logger.info(
            "reconcile.cleaning",
            resource_id=resource_id,
            status=resource.status.value,
            deleted=resource.deleted,
            age_hours=round(resource.age_hours(), 1),
        )

        try:
            if resource.container_id:
                await self.docker.remove_container(resource.container_id, force=True)
            await self.docker.remove_image(f"{self.image_prefix}{resource_id}:latest")
        except DeployWatchError as e:
            # Runtime leftovers are retried as orphans on a later pass
            self.logger.warning(
                "reconcile.runtime_cleanup_failed",
                resource_id=resource_id,
                error=e.message,
            )

        await self.registry.delete(resource_id)


class ReconciliationLoop:
    """Runs the reconciler at startup (after a grace delay) and periodically."""

    def __init__(
        self,
        reconciler: Reconciler,
        initial_delay: float | None = None,
        interval: float | None = None,
    ):
        self.reconciler = reconciler
        self.initial_delay = (
            initial_delay
            if initial_delay is not None
            else settings.reconcile_initial_delay_seconds
        )
        self.interval = interval if interval is not None else settings.reconcile_interval_seconds
        self.logger = get_logger("reconciler.loop")
        self.last_report: ReconcileReport | None = None
        self.last_run_at: datetime | None = None
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the loop on the running event loop."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="reconciliation-loop")
        self.logger.info(
            "reconcile.loop.scheduled",
            initial_delay=self.initial_delay,
            interval=self.interval,
        )

    async def stop(self) -> None:
        """Cancel the loop and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        self.logger.info("reconcile.loop.stopped")

    async def run_once(self) -> ReconcileReport:
        """Run a single pass, logging instead of raising on failure."""
        try:
            report = await self.reconciler.reconcile()
        except Exception:
            self.logger.exception("reconcile.loop.pass_failed")
            report = ReconcileReport(errors=1)

        self.last_report = report
        self.last_run_at = datetime.now(timezone.utc)
        if report.changed:
            self.logger.info(
                "reconcile.loop.changes",
                recovered=report.recovered,
                lost=report.lost,
                cleaned=report.cleaned,
            )
        return report

    async def _run(self) -> None:
        await asyncio.sleep(self.initial_delay)
        while True:
            await self.run_once()
            await asyncio.sleep(self.interval)
