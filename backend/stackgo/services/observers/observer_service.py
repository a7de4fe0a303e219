"""
Maintenance observer coordination across deployments.

Caches one observer instance, its config, the last result and the last check
time per deployment. A check pass runs every due observer concurrently and
then applies the results one by one: maintenance required switches the
deployment into Maintenance, a normal result switches it back to Normal, and
a failed check leaves the mode alone.

The cache lives for the whole worker process; the repository and the
deployment service are rebound per task with `bind()`.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Set
from uuid import UUID

from stackgo.core.config import settings
from stackgo.core.events import EventDispatcher, MaintenanceModeDetectedEvent, event_dispatcher
from stackgo.core.exceptions import UnsupportedObserverTypeError
from stackgo.models.deployment import Deployment, DeploymentStatus
from stackgo.models.health import OperationMode
from stackgo.models.observer import MaintenanceObserverConfig, ObserverResult
from stackgo.repositories.contracts import DeploymentRepositoryProtocol
from stackgo.services.notifications import NotificationSinkProtocol, notifier
from stackgo.services.observers.base import MaintenanceObserver
from stackgo.services.observers.factory import ObserverFactory

logger = logging.getLogger(__name__)


class MaintenanceObserverService:
    """Coordinates maintenance observer checks for running deployments."""

    def __init__(
        self,
        deployments: Optional[DeploymentRepositoryProtocol] = None,
        deployment_service=None,
        sink: Optional[NotificationSinkProtocol] = None,
        dispatcher: Optional[EventDispatcher] = None,
    ):
        """
        Args:
            deployments: Deployment repository
            deployment_service: Anything with `change_operation_mode(id, mode_name, reason)`,
                normally the DeploymentService
            sink: Receives every observer result
            dispatcher: Publishes MaintenanceModeDetectedEvent
        """
        self.deployments = deployments
        self.deployment_service = deployment_service
        self.sink = sink or notifier
        self.dispatcher = dispatcher or event_dispatcher

        self._observers: Dict[UUID, MaintenanceObserver] = {}
        self._configs: Dict[UUID, MaintenanceObserverConfig] = {}
        self._last_results: Dict[UUID, ObserverResult] = {}
        self._last_check_times: Dict[UUID, datetime] = {}
        self._in_flight: Set[UUID] = set()

    def bind(self, deployments: DeploymentRepositoryProtocol, deployment_service) -> "MaintenanceObserverService":
        """Attach the repository and deployment service of the current unit of work."""
        self.deployments = deployments
        self.deployment_service = deployment_service
        return self

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def register(self, deployment_id: UUID, config: MaintenanceObserverConfig) -> MaintenanceObserver:
        """
        Create and cache the observer of a deployment.

        Raises:
            UnsupportedObserverTypeError: If no observer is registered for the type
        """
        observer = ObserverFactory.create(config)
        self._observers[deployment_id] = observer
        self._configs[deployment_id] = config
        logger.info(f"Registered maintenance observer for deployment {deployment_id}: type={config.type}")
        return observer

    async def unregister(self, deployment_id: UUID) -> None:
        """Drop every cached entry of a deployment."""
        observer = self._observers.pop(deployment_id, None)
        self._configs.pop(deployment_id, None)
        self._last_results.pop(deployment_id, None)
        self._last_check_times.pop(deployment_id, None)
        if observer is not None:
            logger.info(f"Unregistered maintenance observer for deployment {deployment_id}")

    @property
    def registered_deployments(self) -> List[UUID]:
        return list(self._observers)

    async def refresh_registrations(self) -> int:
        """
        Align the cache with the running deployments that carry an observer config.

        Observers whose deployment stopped running or whose config changed are
        released; new ones are created.

        Returns:
            Number of registered observers
        """
        await self._refresh(await self.deployments.get_running())
        return len(self._observers)

    async def _refresh(self, running: List[Deployment]) -> Dict[UUID, Deployment]:
        wanted = {d.id: d for d in running if d.maintenance_observer is not None}

        for deployment_id in list(self._observers):
            deployment = wanted.get(deployment_id)
            if deployment is None or self._configs.get(deployment_id) != deployment.maintenance_observer:
                await self.unregister(deployment_id)

        for deployment_id, deployment in wanted.items():
            if deployment_id in self._observers:
                continue
            try:
                self.register(deployment_id, deployment.maintenance_observer)
            except UnsupportedObserverTypeError as e:
                logger.warning(f"Observer of {deployment.stack_name} not registered: {e.message}")

        return {d: wanted[d] for d in self._observers}

    # -------------------------------------------------------------------------
    # Checks
    # -------------------------------------------------------------------------

    def should_check(self, deployment_id: UUID, now: Optional[datetime] = None) -> bool:
        """True when the polling interval has elapsed since the last check."""
        last_check = self._last_check_times.get(deployment_id)
        if last_check is None:
            return True
        config = self._configs.get(deployment_id)
        interval = config.polling_interval if config else timedelta(
            seconds=settings.OBSERVER_DEFAULT_POLLING_INTERVAL
        )
        return (now or datetime.utcnow()) - last_check >= interval

    def get_last_result(self, deployment_id: UUID) -> Optional[ObserverResult]:
        return self._last_results.get(deployment_id)

    async def _observe(self, deployment_id: UUID) -> Optional[ObserverResult]:
        observer = self._observers.get(deployment_id)
        if observer is None or deployment_id in self._in_flight:
            return None

        self._in_flight.add(deployment_id)
        try:
            result = await observer.check()
        finally:
            self._in_flight.discard(deployment_id)

        self._last_results[deployment_id] = result
        self._last_check_times[deployment_id] = datetime.utcnow()
        return result

    async def check_deployment(self, deployment_id: UUID, force: bool = False) -> Optional[ObserverResult]:
        """
        Check the observer of one deployment.

        Args:
            deployment_id: Deployment to check
            force: Ignore the polling interval

        Returns:
            The fresh result, the cached one when the check is not due, or
            None when the deployment is not running or has no observer
        """
        deployment = await self.deployments.get(deployment_id)
        if deployment is None:
            logger.debug(f"Deployment {deployment_id} not found")
            return None
        if deployment.status != DeploymentStatus.RUNNING:
            return None

        if deployment_id not in self._observers:
            if deployment.maintenance_observer is None:
                return None
            try:
                self.register(deployment_id, deployment.maintenance_observer)
            except UnsupportedObserverTypeError as e:
                logger.warning(f"Observer of {deployment.stack_name} not registered: {e.message}")
                return None

        if not force and not self.should_check(deployment_id):
            return self._last_results.get(deployment_id)

        result = await self._observe(deployment_id)
        if result is None:
            return self._last_results.get(deployment_id)

        await self._handle_result(deployment, result)
        return result

    async def check_all(self) -> Dict[UUID, ObserverResult]:
        """
        Run one check pass over every due observer.

        Checks run concurrently. Results are applied sequentially, and a
        failure while applying one result is logged without aborting the pass.

        Returns:
            Fresh results keyed by deployment ID
        """
        logger.debug("Starting maintenance observer check cycle")
        active = await self._refresh(await self.deployments.get_running())

        due = [d for d in active if self.should_check(d)]
        outcomes = await asyncio.gather(*(self._observe(d) for d in due), return_exceptions=True)

        results: Dict[UUID, ObserverResult] = {}
        for deployment_id, outcome in zip(due, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, Exception):
                logger.error(f"Error checking maintenance observer for deployment {deployment_id}: {outcome}")
                continue
            if outcome is None:
                continue
            results[deployment_id] = outcome
            try:
                await self._handle_result(active[deployment_id], outcome)
            except Exception as e:
                logger.error(f"Error applying observer result for deployment {deployment_id}: {e}")

        logger.debug(f"Maintenance observer check cycle completed ({len(results)} checked)")
        return results

    # -------------------------------------------------------------------------
    # Result handling
    # -------------------------------------------------------------------------

    async def _handle_result(self, deployment: Deployment, result: ObserverResult) -> None:
        try:
            await self.sink.send_observer_result(deployment.id, deployment.stack_name, result)
        except Exception as e:
            logger.debug(f"Observer result notification failed for {deployment.stack_name}: {e}")

        if not result.is_success:
            logger.warning(
                f"Maintenance observer check failed for {deployment.stack_name}: {result.error_message}"
            )
            return

        mode = deployment.operation_mode
        if result.is_maintenance_required and mode != OperationMode.MAINTENANCE:
            if not mode.can_transition_to(OperationMode.MAINTENANCE):
                logger.info(f"Maintenance requested for {deployment.stack_name} but mode is {mode.value}")
                return
            logger.info(
                f"Maintenance observer triggered maintenance mode for {deployment.stack_name} "
                f"(observed: {result.observed_value})"
            )
            await self._switch(
                deployment, OperationMode.MAINTENANCE, result,
                f"Triggered by maintenance observer (observed: {result.observed_value})",
            )
        elif not result.is_maintenance_required and mode == OperationMode.MAINTENANCE:
            logger.info(
                f"Maintenance observer cleared maintenance mode for {deployment.stack_name} "
                f"(observed: {result.observed_value})"
            )
            await self._switch(
                deployment, OperationMode.NORMAL, result,
                f"Cleared by maintenance observer (observed: {result.observed_value})",
            )

    async def _switch(
        self, deployment: Deployment, target: OperationMode, result: ObserverResult, reason: str
    ) -> None:
        if self.deployment_service is None:
            logger.warning(f"No deployment service bound; cannot switch {deployment.stack_name} to {target.value}")
            return

        response = await self.deployment_service.change_operation_mode(deployment.id, target.value, reason)
        if not response.success:
            logger.warning(f"Failed to switch {deployment.stack_name} to {target.value}: {response.message}")
            return

        await self.dispatcher.publish_all([MaintenanceModeDetectedEvent(
            deployment_id=deployment.id,
            stack_name=deployment.stack_name,
            entered=target == OperationMode.MAINTENANCE,
            observed_value=result.observed_value,
        )])


# Process-level instance used by the worker
maintenance_observer_service = MaintenanceObserverService()
