import logging

from celery import Celery
from celery.signals import setup_logging, worker_ready

from stackgo.core.config import settings

logger = logging.getLogger(__name__)

celery_app = Celery(
    "stackgo",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=["stackgo.worker"]
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    # Result expiration (1 day)
    result_expires=86400,
    # Periodic passes; each task expires after one interval so a busy worker drops stale runs
    beat_schedule={
        'check-maintenance-observers': {
            'task': 'stackgo.worker.check_maintenance_observers_task',
            'schedule': settings.OBSERVER_CHECK_INTERVAL,
            'options': {'expires': settings.OBSERVER_CHECK_INTERVAL},
        },
        'collect-health-snapshots': {
            'task': 'stackgo.worker.collect_health_snapshots_task',
            'schedule': settings.HEALTH_COLLECTION_INTERVAL,
            'options': {'expires': settings.HEALTH_COLLECTION_INTERVAL},
        },
        'sync-product-health': {
            'task': 'stackgo.worker.sync_product_health_task',
            'schedule': settings.PRODUCT_HEALTH_SYNC_INTERVAL,
            'options': {'expires': settings.PRODUCT_HEALTH_SYNC_INTERVAL},
        },
        'prune-health-snapshots': {
            'task': 'stackgo.worker.prune_health_snapshots_task',
            'schedule': 3600.0,  # Every hour
        },
        'cleanup-overdue-deployments': {
            'task': 'stackgo.worker.cleanup_overdue_deployments_task',
            'schedule': 300.0,  # Every 5 minutes
        },
    },
)


@setup_logging.connect
def configure_logging(**kwargs):
    """Configure the root logger from settings instead of Celery's default."""
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@worker_ready.connect
def on_worker_ready(sender, **kwargs):
    """
    Handle worker ready signal.

    Registers the domain event handlers so events published by tasks reach them.
    """
    from stackgo.core.event_handlers import register_all_handlers

    register_all_handlers()
    logger.info(f"Worker ready ({settings.APP_NAME} {settings.APP_VERSION}, env={settings.ENVIRONMENT})")
