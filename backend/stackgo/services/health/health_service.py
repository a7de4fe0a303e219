"""
Health monitoring service.

Collects container state from the host runtime, folds it into HealthSnapshot
records and answers the environment roll-up queries. Snapshots are
append-only; `prune` removes the ones past the retention window.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import List, Optional
from uuid import UUID

from stackgo.core.config import settings
from stackgo.core.exceptions import HealthSnapshotNotFoundError
from stackgo.models.deployment import Deployment, DeploymentStatus
from stackgo.models.health import (
    BusHealth,
    EnvironmentHealthSummary,
    HealthSnapshot,
    HealthStatus,
    InfraHealth,
    OperationMode,
    SelfHealth,
    ServiceHealth,
    StackHealthSummary,
)
from stackgo.repositories.contracts import DeploymentRepositoryProtocol, HealthSnapshotRepositoryProtocol
from stackgo.services.deployment.runtime_base import (
    ContainerInfo,
    ContainerRuntime,
    containers_for_stack,
    init_container_succeeded,
    load_container_runtime,
    service_name_of,
)

logger = logging.getLogger(__name__)

_HEALTH_CHECK_STATUS = {
    "healthy": HealthStatus.HEALTHY,
    "unhealthy": HealthStatus.UNHEALTHY,
    "starting": HealthStatus.DEGRADED,
}

_STATE_STATUS = {
    "running": HealthStatus.HEALTHY,
    "restarting": HealthStatus.DEGRADED,
    "paused": HealthStatus.DEGRADED,
    "exited": HealthStatus.UNHEALTHY,
    "dead": HealthStatus.UNHEALTHY,
    "created": HealthStatus.UNKNOWN,
}

_STATE_REASON = {
    "restarting": "Container is restarting",
    "paused": "Container is paused",
    "dead": "Container is dead",
    "created": "Container created but not started",
}


def container_health_status(container: ContainerInfo) -> HealthStatus:
    """Health of one container: its health check first, then its state."""
    if init_container_succeeded(container):
        return HealthStatus.HEALTHY
    health = (container.health_status or "").lower()
    if health and health != "none":
        return _HEALTH_CHECK_STATUS.get(health, HealthStatus.UNKNOWN)
    return _STATE_STATUS.get(container.state.lower(), HealthStatus.UNKNOWN)


def _health_reason(container: ContainerInfo, status: HealthStatus) -> Optional[str]:
    if status == HealthStatus.HEALTHY:
        return None
    health = (container.health_status or "").lower()
    if health == "unhealthy":
        return "Health check failing"
    if health == "starting":
        return "Container starting, health check pending"
    state = container.state.lower()
    if state == "exited":
        return f"Container exited (status: {container.status})"
    return _STATE_REASON.get(state, f"Unknown state: {container.state}")


def service_health_from_container(container: ContainerInfo) -> ServiceHealth:
    status = container_health_status(container)
    return ServiceHealth(
        name=service_name_of(container),
        status=status,
        container_id=container.id,
        container_name=container.name.lstrip("/"),
        reason=_health_reason(container, status),
        restart_count=container.restart_count,
    )


def operation_mode_of(deployment: Deployment) -> OperationMode:
    """The mode a snapshot reports for a deployment in its current status."""
    if deployment.status == DeploymentStatus.PENDING:
        return OperationMode.MIGRATING
    if deployment.status == DeploymentStatus.STOPPED:
        return OperationMode.STOPPED
    if deployment.status == DeploymentStatus.FAILED:
        return OperationMode.FAILED
    return deployment.operation_mode


class HealthMonitoringService:
    """Service for monitoring health of deployed stacks."""

    def __init__(
        self,
        deployments: DeploymentRepositoryProtocol,
        snapshots: HealthSnapshotRepositoryProtocol,
        runtime: Optional[ContainerRuntime] = None,
        observer_service=None,
    ):
        """
        Args:
            deployments: Deployment repository
            snapshots: Health snapshot repository
            runtime: Container runtime; resolved from settings when omitted
            observer_service: Source of the last maintenance observer result
                (`get_last_result(deployment_id)`), optional
        """
        self.deployments = deployments
        self.snapshots = snapshots
        self.runtime = runtime if runtime is not None else load_container_runtime()
        self.observer_service = observer_service

    # -------------------------------------------------------------------------
    # Collection
    # -------------------------------------------------------------------------

    async def collect_self_health(self, deployment: Deployment) -> SelfHealth:
        """Per-service health of a deployment's containers. Empty if they cannot be read."""
        if self.runtime is None:
            logger.warning(f"No container runtime configured; cannot collect health of {deployment.stack_name}")
            return SelfHealth.empty()

        try:
            containers = await self.runtime.list_containers(deployment.environment_id)
        except Exception as e:
            logger.error(f"Failed to collect container health for stack {deployment.stack_name}: {e}")
            return SelfHealth.empty()

        stack_containers = containers_for_stack(containers, deployment.stack_name, deployment.project_name)
        if not stack_containers:
            logger.warning(f"No containers found for stack {deployment.stack_name}")
            return SelfHealth.empty()

        return SelfHealth(services=[service_health_from_container(c) for c in stack_containers])

    def _effective_mode(self, deployment: Deployment) -> OperationMode:
        mode = operation_mode_of(deployment)
        if self.observer_service is None or deployment.status != DeploymentStatus.RUNNING:
            return mode
        result = self.observer_service.get_last_result(deployment.id)
        if result is not None and result.is_success and result.is_maintenance_required:
            return OperationMode.MAINTENANCE
        return mode

    def _build_snapshot(
        self,
        deployment: Deployment,
        self_health: SelfHealth,
        bus: Optional[BusHealth] = None,
        infra: Optional[InfraHealth] = None,
    ) -> HealthSnapshot:
        return HealthSnapshot.capture(
            environment_id=deployment.environment_id,
            deployment_id=deployment.id,
            stack_name=deployment.stack_name,
            operation_mode=self._effective_mode(deployment),
            self_health=self_health,
            current_version=deployment.stack_version,
            bus=bus,
            infra=infra,
        )

    async def capture_snapshot(
        self,
        deployment: Deployment,
        bus: Optional[BusHealth] = None,
        infra: Optional[InfraHealth] = None,
    ) -> HealthSnapshot:
        """
        Capture and persist the current health of one deployment.

        Args:
            deployment: Deployment to inspect
            bus: Message transport health, when the host collects it
            infra: Infrastructure health, when the host collects it

        Returns:
            The persisted snapshot
        """
        logger.debug(f"Capturing health snapshot for deployment {deployment.id}")
        snapshot = self._build_snapshot(deployment, await self.collect_self_health(deployment), bus, infra)

        await self.snapshots.add(snapshot)
        await self.snapshots.save_changes()

        logger.info(
            f"Captured health snapshot {snapshot.id} for {deployment.stack_name}: "
            f"overall={snapshot.overall.value}, mode={snapshot.operation_mode.value}"
        )
        return snapshot

    async def collect_all(self, environment_id: Optional[str] = None) -> List[HealthSnapshot]:
        """
        Capture a snapshot of every running deployment.

        Containers are read concurrently, bounded by
        HEALTH_COLLECTION_CONCURRENCY; snapshots are persisted in one unit of work.
        """
        running = await self.deployments.get_running(environment_id)
        if not running:
            return []

        semaphore = asyncio.Semaphore(max(1, settings.HEALTH_COLLECTION_CONCURRENCY))

        async def collect(deployment: Deployment) -> SelfHealth:
            async with semaphore:
                return await self.collect_self_health(deployment)

        self_healths = await asyncio.gather(*(collect(d) for d in running))

        snapshots = []
        for deployment, self_health in zip(running, self_healths):
            snapshot = self._build_snapshot(deployment, self_health)
            await self.snapshots.add(snapshot)
            snapshots.append(snapshot)
        await self.snapshots.save_changes()

        logger.info(f"Captured {len(snapshots)} health snapshots")
        return snapshots

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def get_environment_summary(self, environment_id: str) -> EnvironmentHealthSummary:
        """Roll-up of the latest snapshot of every non-removed deployment."""
        snapshots = await self.snapshots.get_latest_for_environment(environment_id)
        if not snapshots:
            return EnvironmentHealthSummary.empty(environment_id)

        removed = [
            d.id for d in await self.deployments.get_by_environment(environment_id)
            if d.status == DeploymentStatus.REMOVED
        ]
        return EnvironmentHealthSummary.from_snapshots(environment_id, snapshots, removed)

    async def get_history(self, deployment_id: UUID, limit: Optional[int] = None) -> List[HealthSnapshot]:
        """Snapshots of a deployment, newest first."""
        return await self.snapshots.get_history(deployment_id, limit or settings.HEALTH_HISTORY_DEFAULT_LIMIT)

    async def get_stack_health(self, deployment_id: UUID) -> StackHealthSummary:
        """
        Latest health of one deployment.

        Raises:
            HealthSnapshotNotFoundError: If no snapshot was captured yet
        """
        snapshot = await self.snapshots.get_latest_for_deployment(deployment_id)
        if snapshot is None:
            raise HealthSnapshotNotFoundError(str(deployment_id))
        return StackHealthSummary.from_snapshot(snapshot)

    async def prune(self, max_age: Optional[timedelta] = None) -> int:
        """
        Delete snapshots older than the retention window.

        Returns:
            Number of snapshots removed
        """
        max_age = max_age or timedelta(hours=settings.HEALTH_SNAPSHOT_RETENTION_HOURS)
        removed = await self.snapshots.remove_older_than(datetime.utcnow() - max_age)
        await self.snapshots.save_changes()
        if removed:
            logger.info(f"Pruned {removed} health snapshots older than {max_age}")
        return removed
