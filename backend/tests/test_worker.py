"""
Tests for the Celery worker tasks.

Tests cover:
- Task outcome messages for the periodic supervision passes
- Failures being logged and reported instead of raised
- Service wiring inside the task coroutines
- Beat schedule entries pointing at registered tasks

Run with: pytest backend/tests/test_worker.py -v
"""
import asyncio
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest

# Skip all tests if celery is not installed
celery = pytest.importorskip("celery")

RUN_PATCH = "stackgo.worker.run_async_with_db"


def _run_with(db):
    """Execute the task coroutine on a fresh loop with the given session."""
    return lambda func: asyncio.run(func(db))


class TestObserverTasks:
    """Tests for the maintenance observer tasks."""

    def test_check_all_reports_count(self):
        from stackgo.worker import check_maintenance_observers_task

        with patch(RUN_PATCH, return_value={uuid4(): MagicMock()}):
            result = check_maintenance_observers_task()

        assert result == "Observer checks completed for 1 deployments"

    def test_check_all_failure_is_reported(self):
        from stackgo.worker import check_maintenance_observers_task

        with patch(RUN_PATCH, side_effect=Exception("db down")):
            result = check_maintenance_observers_task()

        assert result == "Observer checks failed: db down"

    def test_check_one_forces_the_check(self):
        """The per-deployment task ignores the polling interval."""
        from stackgo.models.observer import ObserverResult
        from stackgo.worker import check_deployment_observer_task

        deployment_id = uuid4()
        observers = MagicMock()
        observers.check_deployment = AsyncMock(return_value=ObserverResult.maintenance_required("true"))

        with patch(RUN_PATCH, side_effect=_run_with(MagicMock())), \
             patch("stackgo.worker._deployment_services", return_value=(None, None, observers)):
            result = check_deployment_observer_task(str(deployment_id))

        assert result == "Maintenance required (value: true)"
        observers.check_deployment.assert_awaited_once_with(deployment_id, force=True)

    def test_check_one_without_observer(self):
        from stackgo.worker import check_deployment_observer_task

        deployment_id = str(uuid4())

        with patch(RUN_PATCH, return_value=None):
            result = check_deployment_observer_task(deployment_id)

        assert result == f"Deployment {deployment_id} has no active observer"

    def test_check_one_failure_is_reported(self):
        from stackgo.worker import check_deployment_observer_task

        deployment_id = str(uuid4())

        with patch(RUN_PATCH, side_effect=Exception("db down")), \
             patch("stackgo.worker.logger") as mock_logger:
            result = check_deployment_observer_task(deployment_id)

        assert result == f"Observer check failed for deployment {deployment_id}: db down"
        mock_logger.error.assert_called_once()

    def test_check_one_rejects_malformed_id(self):
        from stackgo.worker import check_deployment_observer_task

        with patch(RUN_PATCH, side_effect=_run_with(MagicMock())):
            result = check_deployment_observer_task("not-a-uuid")

        assert result.startswith("Observer check failed for deployment not-a-uuid")

    def test_deployment_services_bind_the_shared_observer_service(self):
        from stackgo.repositories import DeploymentRepository
        from stackgo.services.observers import maintenance_observer_service
        from stackgo.worker import _deployment_services

        db = MagicMock()

        deployments, deployment_service, observers = _deployment_services(db)

        assert isinstance(deployments, DeploymentRepository)
        assert deployments.db is db
        assert observers is maintenance_observer_service
        assert observers.deployments is deployments
        assert observers.deployment_service is deployment_service


class TestHealthTasks:
    """Tests for health collection, pruning and product sync tasks."""

    def test_collect_reports_snapshot_count(self):
        from stackgo.worker import collect_health_snapshots_task

        with patch(RUN_PATCH, return_value=[MagicMock(), MagicMock()]):
            result = collect_health_snapshots_task()

        assert result == "Captured 2 health snapshots"

    def test_collect_failure_is_reported(self):
        from stackgo.worker import collect_health_snapshots_task

        with patch(RUN_PATCH, side_effect=RuntimeError("runtime unreachable")):
            result = collect_health_snapshots_task()

        assert result == "Health collection failed: runtime unreachable"

    def test_prune_uses_retention_window(self):
        from datetime import timedelta

        from stackgo.core.config import settings
        from stackgo.worker import prune_health_snapshots_task

        prune = AsyncMock(return_value=5)

        with patch(RUN_PATCH, side_effect=_run_with(MagicMock())), \
             patch("stackgo.services.health.HealthMonitoringService.prune", prune):
            result = prune_health_snapshots_task()

        assert result == "Pruned 5 health snapshots"
        prune.assert_awaited_once_with(timedelta(hours=settings.HEALTH_SNAPSHOT_RETENTION_HOURS))

    def test_product_sync_reports_changes(self):
        from stackgo.worker import sync_product_health_task

        with patch(RUN_PATCH, return_value=3):
            result = sync_product_health_task()

        assert result == "Product health sync updated 3 product deployments"


class TestCleanupTask:
    """Tests for the overdue deployment cleanup task."""

    def test_cleanup_reports_count(self):
        from stackgo.worker import cleanup_overdue_deployments_task

        with patch(RUN_PATCH, return_value=2), patch("stackgo.worker.logger") as mock_logger:
            result = cleanup_overdue_deployments_task()

        assert result == "Cleaned up 2 overdue deployments"
        mock_logger.warning.assert_called_once()

    def test_cleanup_failure_is_reported(self):
        from stackgo.worker import cleanup_overdue_deployments_task

        with patch(RUN_PATCH, side_effect=Exception("db down")):
            result = cleanup_overdue_deployments_task()

        assert result == "Overdue deployment cleanup failed: db down"


class TestBeatSchedule:
    """Tests for the periodic schedule."""

    def test_every_entry_targets_a_registered_task(self):
        import stackgo.worker  # noqa: F401
        from stackgo.core.celery_app import celery_app

        schedule = celery_app.conf.beat_schedule

        assert set(schedule) == {
            "check-maintenance-observers",
            "collect-health-snapshots",
            "sync-product-health",
            "prune-health-snapshots",
            "cleanup-overdue-deployments",
        }
        for entry in schedule.values():
            assert entry["task"] in celery_app.tasks
