"""
Task dispatcher service for decoupling callers from Celery.

This module provides an abstraction layer between services and Celery tasks,
making the code testable without requiring a running Celery worker.

Usage:
    from stackgo.services.task_dispatcher import task_dispatcher

    # Force an observer check outside the beat schedule:
    task_dispatcher.dispatch_observer_check(deployment_id)

    # In tests, replace with mock:
    with patch('stackgo.services.task_dispatcher.task_dispatcher') as mock:
        mock.dispatch_health_collection.return_value = "task-id"
        # ... test code
"""
import logging
from typing import Optional, Protocol
from uuid import UUID

logger = logging.getLogger(__name__)


class TaskDispatcherProtocol(Protocol):
    """Protocol defining the task dispatcher interface."""

    def dispatch_observer_check(self, deployment_id: Optional[UUID] = None) -> Optional[str]:
        """Dispatch a maintenance observer check (one deployment, or all when None)."""
        ...

    def dispatch_health_collection(self) -> Optional[str]:
        """Dispatch a health snapshot collection pass."""
        ...

    def dispatch_product_health_sync(self) -> Optional[str]:
        """Dispatch a product health sync pass."""
        ...

    def dispatch_snapshot_prune(self) -> Optional[str]:
        """Dispatch a health snapshot prune."""
        ...


class CeleryTaskDispatcher:
    """
    Task dispatcher implementation using Celery.

    This is the production implementation that dispatches tasks to Celery workers.
    All Celery imports are deferred to method calls to avoid circular imports.
    """

    def dispatch_observer_check(self, deployment_id: Optional[UUID] = None) -> Optional[str]:
        """
        Dispatch a maintenance observer check.

        Args:
            deployment_id: Deployment to check immediately; None runs a full pass

        Returns:
            Task ID if dispatched successfully, None otherwise
        """
        try:
            if deployment_id is None:
                from stackgo.worker import check_maintenance_observers_task

                result = check_maintenance_observers_task.delay()
            else:
                from stackgo.worker import check_deployment_observer_task

                result = check_deployment_observer_task.delay(str(deployment_id))
            logger.info(f"Dispatched observer check for {deployment_id or 'all deployments'}: {result.id}")
            return result.id
        except Exception as e:
            logger.error(f"Failed to dispatch observer check: {e}")
            return None

    def dispatch_health_collection(self) -> Optional[str]:
        """
        Dispatch a health snapshot collection pass.

        Returns:
            Task ID if dispatched successfully, None otherwise
        """
        try:
            from stackgo.worker import collect_health_snapshots_task

            result = collect_health_snapshots_task.delay()
            logger.info(f"Dispatched health collection task: {result.id}")
            return result.id
        except Exception as e:
            logger.error(f"Failed to dispatch health collection task: {e}")
            return None

    def dispatch_product_health_sync(self) -> Optional[str]:
        try:
            from stackgo.worker import sync_product_health_task

            result = sync_product_health_task.delay()
            logger.info(f"Dispatched product health sync task: {result.id}")
            return result.id
        except Exception as e:
            logger.error(f"Failed to dispatch product health sync task: {e}")
            return None

    def dispatch_snapshot_prune(self) -> Optional[str]:
        try:
            from stackgo.worker import prune_health_snapshots_task

            result = prune_health_snapshots_task.delay()
            logger.info(f"Dispatched snapshot prune task: {result.id}")
            return result.id
        except Exception as e:
            logger.error(f"Failed to dispatch snapshot prune task: {e}")
            return None


class NoOpTaskDispatcher:
    """
    No-op task dispatcher for testing.

    This implementation does nothing, allowing tests to run without Celery.
    """

    def dispatch_observer_check(self, deployment_id: Optional[UUID] = None) -> Optional[str]:
        logger.debug(f"NoOp: dispatch_observer_check({deployment_id})")
        return f"noop-observer-check-{deployment_id or 'all'}"

    def dispatch_health_collection(self) -> Optional[str]:
        logger.debug("NoOp: dispatch_health_collection()")
        return "noop-health-collection"

    def dispatch_product_health_sync(self) -> Optional[str]:
        logger.debug("NoOp: dispatch_product_health_sync()")
        return "noop-product-health-sync"

    def dispatch_snapshot_prune(self) -> Optional[str]:
        logger.debug("NoOp: dispatch_snapshot_prune()")
        return "noop-snapshot-prune"


def _create_dispatcher() -> TaskDispatcherProtocol:
    """
    Create the appropriate task dispatcher based on environment.

    Returns CeleryTaskDispatcher for production, NoOpTaskDispatcher for tests.
    """
    import os

    environment = os.getenv("ENVIRONMENT", "production")

    if environment == "test":
        logger.info("Using NoOpTaskDispatcher for test environment")
        return NoOpTaskDispatcher()

    return CeleryTaskDispatcher()


# Singleton instance for shared use
task_dispatcher: TaskDispatcherProtocol = _create_dispatcher()
