"""
Single-stack deployment service.

Coordinates between:
- the deployment repository (aggregate persistence, optimistic concurrency)
- the host-provided ContainerRuntime (start, stop and remove containers)
- the event dispatcher and notification sink

Aggregate state errors and runtime failures come back as `success=False`
responses; a missing deployment raises DeploymentNotFoundError.
"""
import asyncio
import logging
from datetime import timedelta
from typing import Dict, List, Optional
from uuid import UUID

from stackgo.core.config import settings
from stackgo.core.events import DomainEvent, EventDispatcher, event_dispatcher
from stackgo.core.exceptions import (
    DomainException,
    InvalidConfigurationError,
    RuntimeUnavailableError,
    StackDeploymentError,
    UnsupportedObserverTypeError,
)
from stackgo.models.deployment import DeployedService, Deployment, DeploymentPhase, DeploymentStatus
from stackgo.models.health import OperationMode
from stackgo.models.observer import MaintenanceObserverConfig
from stackgo.repositories.contracts import DeploymentRepositoryProtocol
from stackgo.schemas.catalog import StackDefinition
from stackgo.schemas.operations import ChangeOperationModeResponse, OperationResponse, StackDeployResult
from stackgo.services.deployment.deployer_base import StackDeployer
from stackgo.services.deployment.runtime_base import (
    ContainerInfo,
    ContainerRuntime,
    VolumeInfo,
    containers_for_stack,
    init_container_succeeded,
    is_init_container,
    is_maintenance_ignored,
    load_container_runtime,
    service_name_of,
)
from stackgo.services.notifications import (
    PHASE_COMPLETE,
    PHASE_ERROR,
    DeploymentProgress,
    NotificationSinkProtocol,
    notifier,
)
from stackgo.services.observers.config_builder import build_config

logger = logging.getLogger(__name__)


def _error_message(error: Exception) -> str:
    if isinstance(error, DomainException):
        return error.message
    return str(error) or type(error).__name__


def _is_up(container: ContainerInfo) -> bool:
    if init_container_succeeded(container):
        return True
    return container.state.lower() == "running" and (container.health_status or "").lower() != "unhealthy"


class DeploymentService(StackDeployer):
    """
    Orchestration service for single-stack deployments.

    Provides high-level methods for the deployment lifecycle on top of the
    Deployment aggregate.
    """

    def __init__(
        self,
        deployments: DeploymentRepositoryProtocol,
        runtime: Optional[ContainerRuntime] = None,
        sink: Optional[NotificationSinkProtocol] = None,
        dispatcher: Optional[EventDispatcher] = None,
    ):
        self.deployments = deployments
        self.runtime = runtime if runtime is not None else load_container_runtime()
        self.sink = sink or notifier
        self.dispatcher = dispatcher or event_dispatcher

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _require_runtime(self, environment_id: str) -> ContainerRuntime:
        if self.runtime is None:
            raise RuntimeUnavailableError(environment_id, "No container runtime configured")
        return self.runtime

    async def _stack_containers(self, deployment: Deployment) -> List[ContainerInfo]:
        runtime = self._require_runtime(deployment.environment_id)
        containers = await runtime.list_containers(deployment.environment_id)
        return containers_for_stack(containers, deployment.stack_name, deployment.project_name)

    async def _save(self, deployment: Deployment, events: List[DomainEvent]) -> None:
        await self.deployments.update(deployment)
        await self.deployments.save_changes()
        await self.dispatcher.publish_all(events)

    async def _report(
        self,
        session_id: Optional[str],
        phase: str,
        message: str,
        percent: int,
        stack_name: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        if not session_id:
            return
        try:
            await self.sink.send_progress(DeploymentProgress(
                session_id=session_id,
                phase=phase,
                message=message,
                percent_complete=percent,
                current_unit=stack_name,
                total_units=1,
                completed_units=1 if phase == PHASE_COMPLETE else 0,
                error=error,
            ))
        except Exception as e:
            logger.debug(f"Progress notification failed for session {session_id}: {e}")

    async def _advance(
        self,
        deployment: Deployment,
        phase: DeploymentPhase,
        message: str,
        percent: int,
        session_id: Optional[str],
    ) -> None:
        events = deployment.update_progress(phase, message, percent)
        await self._save(deployment, events)
        await self._report(session_id, phase.value, message, percent, deployment.stack_name)

    async def _cancellation_confirmed(self, deployment: Deployment) -> Optional[Deployment]:
        """Reload the deployment; if cancellation was requested, fail it and return it."""
        current = await self.deployments.get_or_raise(deployment.id)
        if not current.cancellation_requested:
            return None
        events = current.confirm_cancellation()
        await self._save(current, events)
        logger.info(f"Deployment {current.id} cancelled: {current.cancellation_reason}")
        return current

    async def _fail_quietly(self, deployment_id: UUID, reason: str) -> None:
        """Mark a deployment failed after an error, logging instead of raising."""
        try:
            current = await self.deployments.get(deployment_id)
            if current is None or not current.can_transition_to(DeploymentStatus.FAILED):
                return
            events = current.mark_as_failed(reason)
            await self._save(current, events)
        except Exception as e:
            logger.error(f"Failed to mark deployment {deployment_id} as failed: {e}")

    def _observer_config(
        self, stack: StackDefinition, variables: Dict[str, str]
    ) -> Optional[MaintenanceObserverConfig]:
        if stack.maintenance_observer is None:
            return None
        try:
            return build_config(stack.maintenance_observer, variables)
        except (InvalidConfigurationError, UnsupportedObserverTypeError) as e:
            logger.warning(f"Maintenance observer of stack {stack.name} ignored: {e.message}")
            return None

    async def _supersede(self, previous: Deployment, replacement: Deployment) -> None:
        """Retire the record an upgrade or redeploy replaced. Containers are left alone."""
        try:
            current = await self.deployments.get(previous.id)
            if current is None or current.status == DeploymentStatus.REMOVED:
                return
            events: List[DomainEvent] = []
            if current.status == DeploymentStatus.RUNNING:
                events += current.mark_as_stopped()
            elif current.status == DeploymentStatus.PENDING:
                events += current.mark_as_failed(f"Superseded by deployment {replacement.id}")
            events += current.mark_as_removed()
            await self._save(current, events)
            logger.info(f"Deployment {current.id} superseded by {replacement.id}")
        except Exception as e:
            logger.error(f"Failed to retire superseded deployment {previous.id}: {e}")

    # -------------------------------------------------------------------------
    # Rollout
    # -------------------------------------------------------------------------

    async def get_deployment(self, deployment_id: UUID) -> Deployment:
        """Get a deployment by ID, raising DeploymentNotFoundError if missing."""
        return await self.deployments.get_or_raise(deployment_id)

    async def deploy_stack(
        self,
        environment_id: str,
        stack: StackDefinition,
        deployment_stack_name: str,
        variables: Dict[str, str],
        deployed_by: str,
        session_id: Optional[str] = None,
    ) -> StackDeployResult:
        """
        Create a deployment record and bring the stack's containers up.

        Phases: validating prerequisites, starting the containers, verifying
        them. Cancellation requested on the stored record is honoured at every
        phase boundary. On success the previous active record of the same
        stack is retired.

        Returns:
            StackDeployResult with the new deployment ID
        """
        logger.info(f"Deploying stack {deployment_stack_name} to environment {environment_id}")

        previous = await self.deployments.get_active_by_stack_name(environment_id, deployment_stack_name)

        deployment, events = Deployment.start(
            environment_id=environment_id,
            stack_name=deployment_stack_name,
            project_name=deployment_stack_name,
            deployed_by=deployed_by,
            stack_id=stack.id,
            stack_version=stack.version,
            variables=variables,
        )
        deployment.set_maintenance_observer(self._observer_config(stack, variables))
        await self.deployments.add(deployment)
        await self.deployments.save_changes()
        await self.dispatcher.publish_all(events)

        deployment_id = deployment.id
        try:
            await self._advance(
                deployment, DeploymentPhase.VALIDATING_PREREQUISITES, "Validating prerequisites", 10, session_id
            )
            runtime = self._require_runtime(environment_id)
            if not stack.services:
                raise StackDeploymentError(deployment_stack_name, "Stack has no services defined")

            if await self._cancellation_confirmed(deployment):
                return await self._cancelled_result(deployment_id, deployment_stack_name, session_id)

            await self._advance(deployment, DeploymentPhase.STARTING, "Starting containers", 40, session_id)
            containers = await self._stack_containers(deployment)
            if not containers:
                raise StackDeploymentError(deployment_stack_name, "No containers found for stack")
            for container in containers:
                if container.state.lower() != "running" and not init_container_succeeded(container):
                    await runtime.start_container(environment_id, container.id)

            if await self._cancellation_confirmed(deployment):
                return await self._cancelled_result(deployment_id, deployment_stack_name, session_id)

            await self._advance(
                deployment, DeploymentPhase.WAITING_FOR_HEALTH_CHECKS, "Verifying containers", 80, session_id
            )
            containers = await self._stack_containers(deployment)
            not_running = sorted(service_name_of(c) for c in containers if not _is_up(c))
            if not_running:
                raise StackDeploymentError(
                    deployment_stack_name, f"Containers not running: {', '.join(not_running)}"
                )

            services = [
                DeployedService(
                    service_name=service_name_of(c),
                    container_id=c.id,
                    container_name=c.name.lstrip("/"),
                    image=c.image,
                    status=c.state.lower(),
                )
                for c in containers
                if not is_init_container(c)
            ]
            await self._save(deployment, deployment.mark_as_running(services))

        except asyncio.CancelledError:
            await self._fail_quietly(deployment_id, "Deployment was cancelled")
            raise
        except Exception as e:
            message = _error_message(e)
            logger.error(f"Deployment of stack {deployment_stack_name} failed: {message}")
            await self._fail_quietly(deployment_id, message)
            await self._report(session_id, PHASE_ERROR, f"Deployment failed: {message}", 100,
                               deployment_stack_name, error=message)
            return StackDeployResult.failed(
                f"Deployment failed: {message}",
                deployment_id=deployment_id,
                deployment_stack_name=deployment_stack_name,
            )

        if previous is not None:
            await self._supersede(previous, deployment)

        logger.info(
            f"Successfully deployed stack {deployment_stack_name} with deployment ID {deployment_id}"
        )
        message = f"Successfully deployed {deployment_stack_name}"
        await self._report(session_id, PHASE_COMPLETE, message, 100, deployment_stack_name)
        return StackDeployResult.ok(
            message,
            deployment_id=deployment_id,
            deployment_stack_name=deployment_stack_name,
            service_count=len(deployment.services),
        )

    async def _cancelled_result(
        self, deployment_id: UUID, deployment_stack_name: str, session_id: Optional[str]
    ) -> StackDeployResult:
        message = f"Deployment of {deployment_stack_name} was cancelled"
        await self._report(session_id, PHASE_ERROR, message, 100, deployment_stack_name, error=message)
        return StackDeployResult.failed(
            message, deployment_id=deployment_id, deployment_stack_name=deployment_stack_name
        )

    async def request_cancellation(self, deployment_id: UUID, reason: Optional[str] = None) -> OperationResponse:
        """Ask a pending rollout to stop at its next phase boundary."""
        deployment = await self.deployments.get_or_raise(deployment_id)
        try:
            events = deployment.request_cancellation(reason or "Cancelled by user")
            await self._save(deployment, events)
        except DomainException as e:
            return OperationResponse.failed(e.message)
        return OperationResponse.ok(f"Cancellation requested for deployment {deployment_id}")

    async def mark_deployment_failed(self, deployment_id: UUID, reason: str) -> OperationResponse:
        """Manually fail a deployment that is stuck in Pending."""
        deployment = await self.deployments.get_or_raise(deployment_id)
        if deployment.status != DeploymentStatus.PENDING:
            return OperationResponse.failed(
                f"Only pending deployments can be marked as failed (status: {deployment.status.value})"
            )
        try:
            await self._save(deployment, deployment.mark_as_failed(reason))
        except DomainException as e:
            return OperationResponse.failed(e.message)
        logger.info(f"Deployment {deployment_id} manually marked as failed: {reason}")
        return OperationResponse.ok(f"Deployment {deployment_id} marked as failed")

    async def cleanup_overdue_deployments(self, timeout: Optional[timedelta] = None) -> int:
        """
        Fail deployments stuck in Pending longer than the timeout.

        Args:
            timeout: Defaults to DEPLOYMENT_TIMEOUT_MINUTES

        Returns:
            Number of deployments marked as failed
        """
        timeout = timeout or timedelta(minutes=settings.DEPLOYMENT_TIMEOUT_MINUTES)
        minutes = int(timeout.total_seconds() // 60)
        cleaned = 0

        for deployment in await self.deployments.get_pending():
            if not deployment.is_overdue(timeout):
                continue
            try:
                await self._save(deployment, deployment.mark_as_failed(f"Deployment timed out after {minutes} minutes"))
                cleaned += 1
            except DomainException as e:
                logger.warning(f"Could not fail overdue deployment {deployment.id}: {e.message}")

        if cleaned:
            logger.info(f"Marked {cleaned} overdue deployments as failed")
        return cleaned

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def stop_deployment(self, deployment_id: UUID) -> OperationResponse:
        """Stop the containers of a running deployment."""
        deployment = await self.deployments.get_or_raise(deployment_id)
        if not deployment.can_transition_to(DeploymentStatus.STOPPED):
            return OperationResponse.failed(
                f"Cannot stop deployment in status {deployment.status.value}"
            )

        try:
            runtime = self._require_runtime(deployment.environment_id)
            for container in await self._stack_containers(deployment):
                if container.state.lower() == "running":
                    await runtime.stop_container(deployment.environment_id, container.id)
            await self._save(deployment, deployment.mark_as_stopped())
        except Exception as e:
            message = _error_message(e)
            logger.error(f"Failed to stop deployment {deployment_id}: {message}")
            return OperationResponse.failed(f"Failed to stop deployment: {message}")

        logger.info(f"Deployment {deployment_id} stopped successfully")
        return OperationResponse.ok(f"Deployment {deployment.stack_name} stopped")

    async def restart_deployment(self, deployment_id: UUID) -> OperationResponse:
        """Start the containers of a stopped deployment again."""
        deployment = await self.deployments.get_or_raise(deployment_id)
        if deployment.status != DeploymentStatus.STOPPED:
            return OperationResponse.failed(
                f"Only stopped deployments can be restarted (status: {deployment.status.value})"
            )

        try:
            runtime = self._require_runtime(deployment.environment_id)
            for container in await self._stack_containers(deployment):
                if container.state.lower() != "running" and not init_container_succeeded(container):
                    await runtime.start_container(deployment.environment_id, container.id)
            await self._save(deployment, deployment.restart())
        except Exception as e:
            message = _error_message(e)
            logger.error(f"Failed to restart deployment {deployment_id}: {message}")
            return OperationResponse.failed(f"Failed to restart deployment: {message}")

        logger.info(f"Deployment {deployment_id} restarted successfully")
        return OperationResponse.ok(f"Deployment {deployment.stack_name} restarted")

    async def remove_deployment(self, deployment_id: UUID) -> OperationResponse:
        """
        Remove a deployment: its containers first, then the record.

        A running deployment is stopped first and a pending one is failed, so
        the record only ever moves along legal transitions.
        """
        deployment = await self.deployments.get_or_raise(deployment_id)
        if deployment.status == DeploymentStatus.REMOVED:
            return OperationResponse.ok(f"Deployment {deployment.stack_name} already removed")

        try:
            runtime = self._require_runtime(deployment.environment_id)
            for container in await self._stack_containers(deployment):
                await runtime.remove_container(deployment.environment_id, container.id, force=True)

            events: List[DomainEvent] = []
            if deployment.status == DeploymentStatus.RUNNING:
                events += deployment.mark_as_stopped()
            elif deployment.status == DeploymentStatus.PENDING:
                events += deployment.mark_as_failed("Removed while deploying")
            events += deployment.mark_as_removed()
            await self._save(deployment, events)
        except Exception as e:
            message = _error_message(e)
            logger.error(f"Failed to remove deployment {deployment_id}: {message}")
            return OperationResponse.failed(f"Failed to remove deployment: {message}")

        logger.info(f"Deployment {deployment_id} ({deployment.stack_name}) removed")
        return OperationResponse.ok(f"Deployment {deployment.stack_name} removed")

    # -------------------------------------------------------------------------
    # Operation mode
    # -------------------------------------------------------------------------

    async def change_operation_mode(
        self,
        deployment_id: UUID,
        mode_name: str,
        reason: Optional[str] = None,
    ) -> ChangeOperationModeResponse:
        """
        Switch the operation mode of a running deployment.

        Entering Maintenance stops the stack's containers, going from
        Maintenance back to Normal starts them. Containers labelled with
        `MAINTENANCE_LABEL=ignore` are left alone. Container errors are logged
        and do not undo the mode change.
        """
        deployment = await self.deployments.get_or_raise(deployment_id)

        try:
            target = OperationMode.from_name(mode_name)
        except ValueError as e:
            return ChangeOperationModeResponse.failed(str(e), deployment_id=deployment_id)

        previous = deployment.operation_mode
        if previous == target:
            return ChangeOperationModeResponse.ok(
                f"Deployment is already in {target.value} mode",
                deployment_id=deployment_id,
                previous_mode=previous,
                new_mode=target,
            )

        try:
            await self._save(deployment, deployment.change_operation_mode(target, reason))
        except DomainException as e:
            logger.warning(f"Failed to change operation mode for deployment {deployment_id}: {e.message}")
            return ChangeOperationModeResponse.failed(e.message, deployment_id=deployment_id)

        logger.info(
            f"Changed operation mode for deployment {deployment_id} from {previous.value} to {target.value}"
        )
        await self._apply_mode_to_containers(deployment, previous, target)

        return ChangeOperationModeResponse.ok(
            f"Operation mode changed from {previous.value} to {target.value}",
            deployment_id=deployment_id,
            previous_mode=previous,
            new_mode=target,
        )

    async def _apply_mode_to_containers(
        self, deployment: Deployment, previous: OperationMode, target: OperationMode
    ) -> None:
        entering = target == OperationMode.MAINTENANCE
        leaving = previous == OperationMode.MAINTENANCE and target == OperationMode.NORMAL
        if (not entering and not leaving) or self.runtime is None:
            return

        try:
            affected = [c for c in await self._stack_containers(deployment) if not is_maintenance_ignored(c)]
            count = 0
            for container in affected:
                running = container.state.lower() == "running"
                if entering and running:
                    await self.runtime.stop_container(deployment.environment_id, container.id)
                    count += 1
                elif leaving and not running and not init_container_succeeded(container):
                    await self.runtime.start_container(deployment.environment_id, container.id)
                    count += 1
            action = "Stopped" if entering else "Started"
            logger.info(f"{action} {count} containers for {deployment.stack_name} maintenance")
        except Exception as e:
            logger.warning(
                f"Failed to manage containers during mode transition for {deployment.stack_name}; "
                f"container state may need manual intervention: {e}"
            )

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def get_stack_volumes(self, deployment_id: UUID) -> List[VolumeInfo]:
        """
        Named volumes mounted by the deployment's containers.

        Raises:
            DeploymentNotFoundError: If the deployment does not exist
            RuntimeUnavailableError: If no runtime is configured or reachable
        """
        deployment = await self.deployments.get_or_raise(deployment_id)
        runtime = self._require_runtime(deployment.environment_id)

        names: List[str] = []
        for container in await self._stack_containers(deployment):
            for mount in await runtime.get_container_volume_mounts(deployment.environment_id, container.id):
                if mount.volume_name and mount.volume_name not in names:
                    names.append(mount.volume_name)

        volumes = []
        for name in names:
            volume = await runtime.inspect_volume(deployment.environment_id, name)
            if volume is not None:
                volumes.append(volume)
        return volumes
