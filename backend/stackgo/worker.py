"""
Celery tasks for background job execution.

This module contains the periodic supervision tasks: maintenance observer
checks, health snapshot collection and pruning, product health sync and
overdue deployment cleanup.

Each task opens one database session and wires the repositories and services
onto it. The maintenance observer cache lives for the whole worker process and
is rebound to the task's session with `bind()`.
"""
import logging
from datetime import timedelta
from uuid import UUID

from stackgo.core.async_helpers import run_async_with_db
from stackgo.core.celery_app import celery_app
from stackgo.core.config import settings

logger = logging.getLogger(__name__)


def _deployment_services(db):
    from stackgo.repositories import DeploymentRepository
    from stackgo.services.deployment import DeploymentService
    from stackgo.services.observers import maintenance_observer_service

    deployments = DeploymentRepository(db)
    deployment_service = DeploymentService(deployments)
    observers = maintenance_observer_service.bind(deployments, deployment_service)
    return deployments, deployment_service, observers


# =============================================================================
# Maintenance Observer Tasks
# =============================================================================

@celery_app.task(acks_late=True)
def check_maintenance_observers_task():
    """
    Periodic task to run one observer pass over every running deployment.
    Switches deployments into or out of maintenance as the observers report.
    """
    logger.debug("Running maintenance observer checks")
    try:
        async def run_checks(db):
            _, _, observers = _deployment_services(db)
            return await observers.check_all()

        results = run_async_with_db(run_checks)

        logger.info(f"Maintenance observer checks completed for {len(results)} deployments")
        return f"Observer checks completed for {len(results)} deployments"
    except Exception as e:
        logger.error(f"Maintenance observer task failed: {e}")
        return f"Observer checks failed: {e}"


@celery_app.task(acks_late=True)
def check_deployment_observer_task(deployment_id: str):
    """
    Check the observer of one deployment now, ignoring its polling interval.

    Args:
        deployment_id: UUID of the deployment
    """
    logger.info(f"Running maintenance observer check for deployment {deployment_id}")
    try:
        async def run_check(db):
            _, _, observers = _deployment_services(db)
            return await observers.check_deployment(UUID(deployment_id), force=True)

        result = run_async_with_db(run_check)
        if result is None:
            return f"Deployment {deployment_id} has no active observer"
        return str(result)
    except Exception as e:
        logger.error(f"Maintenance observer check failed for deployment {deployment_id}: {e}")
        return f"Observer check failed for deployment {deployment_id}: {e}"


# =============================================================================
# Health Tasks
# =============================================================================

@celery_app.task(acks_late=True)
def collect_health_snapshots_task():
    """
    Periodic task to capture a health snapshot of every running deployment.
    """
    logger.debug("Collecting health snapshots")
    try:
        from stackgo.repositories import DeploymentRepository, HealthSnapshotRepository
        from stackgo.services.health import HealthMonitoringService
        from stackgo.services.observers import maintenance_observer_service

        async def run_collection(db):
            service = HealthMonitoringService(
                deployments=DeploymentRepository(db),
                snapshots=HealthSnapshotRepository(db),
                observer_service=maintenance_observer_service,
            )
            return await service.collect_all()

        snapshots = run_async_with_db(run_collection)

        logger.info(f"Captured {len(snapshots)} health snapshots")
        return f"Captured {len(snapshots)} health snapshots"
    except Exception as e:
        logger.error(f"Health collection task failed: {e}")
        return f"Health collection failed: {e}"


@celery_app.task(acks_late=True)
def prune_health_snapshots_task():
    """
    Periodic task to delete snapshots past the retention window.
    """
    try:
        from stackgo.repositories import DeploymentRepository, HealthSnapshotRepository
        from stackgo.services.health import HealthMonitoringService

        async def run_prune(db):
            service = HealthMonitoringService(
                deployments=DeploymentRepository(db),
                snapshots=HealthSnapshotRepository(db),
            )
            return await service.prune(timedelta(hours=settings.HEALTH_SNAPSHOT_RETENTION_HOURS))

        removed = run_async_with_db(run_prune)
        return f"Pruned {removed} health snapshots"
    except Exception as e:
        logger.error(f"Snapshot prune task failed: {e}")
        return f"Snapshot prune failed: {e}"


# =============================================================================
# Product Tasks
# =============================================================================

@celery_app.task(acks_late=True)
def sync_product_health_task():
    """
    Periodic task to mirror child deployment status onto product stack entries.
    """
    try:
        from stackgo.repositories import DeploymentRepository, ProductDeploymentRepository
        from stackgo.services.product import ProductHealthSyncService

        async def run_sync(db):
            service = ProductHealthSyncService(
                products=ProductDeploymentRepository(db),
                deployments=DeploymentRepository(db),
            )
            return await service.sync_all()

        changed = run_async_with_db(run_sync)

        if changed:
            logger.info(f"Product health sync updated {changed} product deployments")
        return f"Product health sync updated {changed} product deployments"
    except Exception as e:
        logger.error(f"Product health sync task failed: {e}")
        return f"Product health sync failed: {e}"


# =============================================================================
# Deployment Tasks
# =============================================================================

@celery_app.task(acks_late=True)
def cleanup_overdue_deployments_task():
    """
    Periodic task to fail deployments stuck in Pending past the timeout.
    """
    try:
        async def run_cleanup(db):
            _, deployment_service, _ = _deployment_services(db)
            return await deployment_service.cleanup_overdue_deployments()

        count = run_async_with_db(run_cleanup)

        if count:
            logger.warning(f"Marked {count} overdue deployments as failed")
        return f"Cleaned up {count} overdue deployments"
    except Exception as e:
        logger.error(f"Overdue deployment cleanup task failed: {e}")
        return f"Overdue deployment cleanup failed: {e}"
