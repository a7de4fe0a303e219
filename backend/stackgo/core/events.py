"""
Domain event system for loose coupling between services.

Aggregates never dispatch events themselves: every mutator returns the events
it raised, and the calling service publishes them through an EventDispatcher.
Events are dispatched in-process; handlers that need background work enqueue
Celery tasks.
"""
import asyncio
import logging
from typing import Callable, Dict, Iterable, List, Any, Optional, Type
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

logger = logging.getLogger(__name__)


# =============================================================================
# Base Event Classes
# =============================================================================

@dataclass
class DomainEvent:
    """Base class for all domain events."""
    timestamp: datetime = field(default_factory=datetime.utcnow)

    @property
    def event_type(self) -> str:
        """Return the event type name."""
        return self.__class__.__name__


# =============================================================================
# Deployment Events
# =============================================================================

@dataclass
class DeploymentStartedEvent(DomainEvent):
    """Emitted when a stack deployment record is created."""
    deployment_id: UUID = None
    environment_id: str = None
    stack_name: str = None


@dataclass
class DeploymentCompletedEvent(DomainEvent):
    """Emitted when a deployment reaches Running or Failed."""
    deployment_id: UUID = None
    status: str = None
    error_message: Optional[str] = None


@dataclass
class ServiceStatusChangedEvent(DomainEvent):
    """Emitted when one service of a deployment changes status."""
    deployment_id: UUID = None
    service_name: str = None
    old_status: str = None
    new_status: str = None


@dataclass
class OperationModeChangedEvent(DomainEvent):
    """Emitted when a deployment switches operation mode."""
    deployment_id: UUID = None
    old_mode: str = None
    new_mode: str = None
    reason: Optional[str] = None


@dataclass
class DeploymentCancellationRequestedEvent(DomainEvent):
    """Emitted when cancellation of a pending deployment is requested."""
    deployment_id: UUID = None
    reason: str = None


# =============================================================================
# Product Deployment Events
# =============================================================================

@dataclass
class ProductDeploymentInitiatedEvent(DomainEvent):
    """Emitted when a product rollout starts."""
    product_deployment_id: UUID = None
    environment_id: str = None
    product_name: str = None
    product_version: str = None
    total_stacks: int = 0


@dataclass
class ProductUpgradeInitiatedEvent(DomainEvent):
    """Emitted when a product upgrade generation is created."""
    product_deployment_id: UUID = None
    product_name: str = None
    previous_version: str = None
    target_version: str = None
    total_stacks: int = 0


@dataclass
class ProductStackDeploymentStartedEvent(DomainEvent):
    """Emitted when a stack of a product starts deploying."""
    product_deployment_id: UUID = None
    stack_name: str = None
    deployment_id: UUID = None
    order: int = 0
    total_stacks: int = 0


@dataclass
class ProductStackDeploymentCompletedEvent(DomainEvent):
    """Emitted when a stack of a product is running."""
    product_deployment_id: UUID = None
    stack_name: str = None
    deployment_id: UUID = None
    completed_stacks: int = 0
    total_stacks: int = 0


@dataclass
class ProductStackDeploymentFailedEvent(DomainEvent):
    """Emitted when a stack of a product fails."""
    product_deployment_id: UUID = None
    stack_name: str = None
    error_message: str = None
    completed_stacks: int = 0
    total_stacks: int = 0


@dataclass
class ProductDeploymentCompletedEvent(DomainEvent):
    """Emitted when every stack of a product is running."""
    product_deployment_id: UUID = None
    product_name: str = None
    product_version: str = None
    total_stacks: int = 0
    duration_seconds: float = 0.0


@dataclass
class ProductDeploymentPartiallyCompletedEvent(DomainEvent):
    """Emitted when a product ends with some stacks running and some failed."""
    product_deployment_id: UUID = None
    product_name: str = None
    completed_stacks: int = 0
    failed_stacks: int = 0
    reason: str = None


@dataclass
class ProductDeploymentFailedEvent(DomainEvent):
    """Emitted when a product rollout fails."""
    product_deployment_id: UUID = None
    product_name: str = None
    error_message: str = None
    completed_stacks: int = 0
    failed_stacks: int = 0


@dataclass
class ProductRemovalInitiatedEvent(DomainEvent):
    """Emitted when a product removal starts."""
    product_deployment_id: UUID = None
    product_name: str = None
    total_stacks: int = 0


@dataclass
class ProductDeploymentRemovedEvent(DomainEvent):
    """Emitted when every stack of a product has been removed."""
    product_deployment_id: UUID = None
    product_name: str = None


# =============================================================================
# Observer Events
# =============================================================================

@dataclass
class MaintenanceModeDetectedEvent(DomainEvent):
    """Emitted when an observer switches a deployment into or out of maintenance."""
    deployment_id: UUID = None
    stack_name: str = None
    entered: bool = True
    observed_value: Optional[str] = None


# =============================================================================
# Event Dispatcher
# =============================================================================

class EventDispatcher:
    """
    Simple in-process event dispatcher.

    Handlers are registered per event type and called when events are
    dispatched. A failing handler is logged and never affects the caller.
    """

    def __init__(self):
        self._handlers: Dict[Type[DomainEvent], List[Callable]] = {}

    def register(
        self,
        event_type: Type[DomainEvent],
        handler: Callable[[DomainEvent], Any],
    ) -> None:
        """
        Register a handler for an event type.

        Args:
            event_type: The event class to handle
            handler: Callable that takes the event as argument
        """
        if event_type not in self._handlers:
            self._handlers[event_type] = []
        self._handlers[event_type].append(handler)
        logger.debug(f"Registered handler {handler.__name__} for {event_type.__name__}")

    def unregister(
        self,
        event_type: Type[DomainEvent],
        handler: Callable[[DomainEvent], Any],
    ) -> None:
        """Unregister a handler for an event type."""
        if event_type in self._handlers:
            self._handlers[event_type] = [
                h for h in self._handlers[event_type] if h != handler
            ]

    def dispatch(self, event: DomainEvent) -> None:
        """
        Dispatch an event to all registered sync handlers.

        Coroutine results of async handlers are closed without being awaited;
        use dispatch_async from async code.
        """
        event_type = type(event)
        handlers = self._handlers.get(event_type, [])

        logger.debug(f"Dispatching {event_type.__name__} to {len(handlers)} handlers")

        for handler in handlers:
            try:
                result = handler(event)
                if asyncio.iscoroutine(result):
                    result.close()
                    logger.warning(
                        f"Async handler {handler.__name__} skipped by sync dispatch of {event_type.__name__}"
                    )
            except Exception as e:
                logger.error(
                    f"Handler {handler.__name__} failed for {event_type.__name__}: {e}"
                )

    async def dispatch_async(self, event: DomainEvent) -> None:
        """
        Dispatch an event to all registered handlers (async version).

        Handlers can be either sync or async functions.
        """
        event_type = type(event)
        handlers = self._handlers.get(event_type, [])

        logger.debug(f"Dispatching {event_type.__name__} to {len(handlers)} handlers (async)")

        for handler in handlers:
            try:
                result = handler(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(
                    f"Handler {handler.__name__} failed for {event_type.__name__}: {e}"
                )

    async def publish_all(self, events: Iterable[DomainEvent]) -> None:
        """Dispatch a batch of events returned by an aggregate, in order."""
        for event in events:
            await self.dispatch_async(event)

    def clear(self) -> None:
        """Clear all registered handlers."""
        self._handlers.clear()


# Global event dispatcher instance
event_dispatcher = EventDispatcher()


# =============================================================================
# Decorator for registering handlers
# =============================================================================

def handles(event_type: Type[DomainEvent]):
    """
    Decorator to register a function as an event handler.

    Example:
        @handles(DeploymentCompletedEvent)
        async def on_deployment_completed(event: DeploymentCompletedEvent):
            task_dispatcher.dispatch_health_collection()
    """
    def decorator(func: Callable):
        event_dispatcher.register(event_type, func)
        return func
    return decorator
