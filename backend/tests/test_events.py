"""
Tests for the domain event dispatcher and the registered handlers.

Tests cover:
- Handler registration and dispatch (sync and async)
- Handler failures never reaching the publisher
- Ordered batch publishing
- Deployment completion enqueuing a health collection

Run with: pytest backend/tests/test_events.py -v
"""
from unittest.mock import patch
from uuid import uuid4

import pytest


class TestEventDispatcher:
    """Tests for EventDispatcher."""

    @pytest.mark.asyncio
    async def test_publish_all_keeps_order(self, dispatcher):
        from stackgo.core.events import DeploymentCompletedEvent, DeploymentStartedEvent

        seen = []
        dispatcher.register(DeploymentStartedEvent, lambda e: seen.append(("started", e.stack_name)))

        async def on_completed(event):
            seen.append(("completed", event.status))

        dispatcher.register(DeploymentCompletedEvent, on_completed)

        await dispatcher.publish_all([
            DeploymentStartedEvent(deployment_id=uuid4(), environment_id="prod", stack_name="checkout"),
            DeploymentCompletedEvent(deployment_id=uuid4(), status="running"),
        ])

        assert seen == [("started", "checkout"), ("completed", "running")]

    @pytest.mark.asyncio
    async def test_failing_handler_is_isolated(self, dispatcher):
        from stackgo.core.events import DeploymentCompletedEvent

        seen = []

        def broken(event):
            raise RuntimeError("handler bug")

        dispatcher.register(DeploymentCompletedEvent, broken)
        dispatcher.register(DeploymentCompletedEvent, lambda e: seen.append(e.status))

        await dispatcher.dispatch_async(DeploymentCompletedEvent(deployment_id=uuid4(), status="failed"))

        assert seen == ["failed"]

    def test_sync_dispatch_skips_async_handlers(self, dispatcher):
        from stackgo.core.events import MaintenanceModeDetectedEvent

        awaited = []

        async def on_detected(event):
            awaited.append(event)

        dispatcher.register(MaintenanceModeDetectedEvent, on_detected)

        dispatcher.dispatch(MaintenanceModeDetectedEvent(deployment_id=uuid4(), stack_name="checkout"))

        assert awaited == []

    @pytest.mark.asyncio
    async def test_unregister_and_clear(self, dispatcher):
        from stackgo.core.events import DeploymentStartedEvent

        seen = []

        def handler(event):
            seen.append(event)

        dispatcher.register(DeploymentStartedEvent, handler)
        dispatcher.unregister(DeploymentStartedEvent, handler)
        await dispatcher.dispatch_async(DeploymentStartedEvent())

        dispatcher.register(DeploymentStartedEvent, handler)
        dispatcher.clear()
        await dispatcher.dispatch_async(DeploymentStartedEvent())

        assert seen == []

    def test_event_type_is_class_name(self):
        from stackgo.core.events import ProductDeploymentRemovedEvent

        assert ProductDeploymentRemovedEvent().event_type == "ProductDeploymentRemovedEvent"


class TestEventHandlers:
    """Tests for the globally registered handlers."""

    @pytest.mark.asyncio
    async def test_finished_deployment_enqueues_health_collection(self):
        from stackgo.core.event_handlers import on_deployment_completed
        from stackgo.core.events import DeploymentCompletedEvent

        with patch("stackgo.services.task_dispatcher.task_dispatcher") as mock_dispatcher:
            await on_deployment_completed(DeploymentCompletedEvent(deployment_id=uuid4(), status="running"))

        mock_dispatcher.dispatch_health_collection.assert_called_once_with()

    @pytest.mark.asyncio
    async def test_other_statuses_are_ignored(self):
        from stackgo.core.event_handlers import on_deployment_completed
        from stackgo.core.events import DeploymentCompletedEvent

        with patch("stackgo.services.task_dispatcher.task_dispatcher") as mock_dispatcher:
            await on_deployment_completed(DeploymentCompletedEvent(deployment_id=uuid4(), status="stopped"))

        mock_dispatcher.dispatch_health_collection.assert_not_called()

    def test_handlers_are_registered_globally(self):
        from stackgo.core.event_handlers import on_deployment_completed, register_all_handlers
        from stackgo.core.events import DeploymentCompletedEvent, event_dispatcher

        register_all_handlers()

        assert on_deployment_completed in event_dispatcher._handlers[DeploymentCompletedEvent]
