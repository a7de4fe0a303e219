"""
Event handlers for domain events.

This module registers handlers that react to domain events,
enabling loose coupling between services.
"""
import logging

from stackgo.core.events import (
    DeploymentCompletedEvent,
    MaintenanceModeDetectedEvent,
    ProductDeploymentFailedEvent,
    ProductDeploymentPartiallyCompletedEvent,
    handles,
)
from stackgo.models.deployment import DeploymentStatus

logger = logging.getLogger(__name__)


# =============================================================================
# Deployment Event Handlers
# =============================================================================

@handles(DeploymentCompletedEvent)
async def on_deployment_completed(event: DeploymentCompletedEvent):
    """
    Handle a finished deployment - capture fresh health.

    Running and failed outcomes both change what the health view should show,
    so a collection pass is enqueued instead of waiting for the next beat.
    """
    if event.status not in (DeploymentStatus.RUNNING.value, DeploymentStatus.FAILED.value):
        return

    from stackgo.services.task_dispatcher import task_dispatcher

    logger.info(f"Deployment {event.deployment_id} finished with status {event.status}")
    task_dispatcher.dispatch_health_collection()


# =============================================================================
# Maintenance Event Handlers
# =============================================================================

@handles(MaintenanceModeDetectedEvent)
async def on_maintenance_mode_detected(event: MaintenanceModeDetectedEvent):
    if event.entered:
        logger.info(f"Stack {event.stack_name} entered maintenance (observed: {event.observed_value})")
    else:
        logger.info(f"Stack {event.stack_name} left maintenance (observed: {event.observed_value})")


# =============================================================================
# Product Event Handlers
# =============================================================================

@handles(ProductDeploymentFailedEvent)
async def on_product_deployment_failed(event: ProductDeploymentFailedEvent):
    logger.warning(
        f"Product {event.product_name} failed ({event.completed_stacks} stacks running, "
        f"{event.failed_stacks} failed): {event.error_message}"
    )


@handles(ProductDeploymentPartiallyCompletedEvent)
async def on_product_partially_completed(event: ProductDeploymentPartiallyCompletedEvent):
    logger.warning(f"Product {event.product_name} is partially running: {event.reason}")


# =============================================================================
# Registration
# =============================================================================

def register_all_handlers():
    """
    Explicitly register all handlers.

    Handlers register themselves through @handles when this module is
    imported; calling this from worker startup guarantees the import happened.
    """
    logger.info("Event handlers registered")
