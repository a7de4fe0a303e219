"""
Notification sink for rollout progress, outcome notifications and observer results.

The transport (websocket hub, pub/sub, in-app feed) belongs to the host. This
module defines the callback contract plus two implementations: one that logs
and one that drops everything.

Usage:
    from stackgo.services.notifications import notifier

    await notifier.send_progress(DeploymentProgress(session_id, "ProductDeploy", "Deploying stack 1/3", 0))

    # In tests, replace with a recording sink:
    service = ProductDeploymentService(..., sink=RecordingSink())
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Protocol
from uuid import UUID

from stackgo.models.observer import ObserverResult

logger = logging.getLogger(__name__)

PHASE_COMPLETE = "Complete"
PHASE_ERROR = "Error"
TERMINAL_PHASES = (PHASE_COMPLETE, PHASE_ERROR)


@dataclass
class DeploymentProgress:
    """One progress callback of a rollout session. The last one is terminal."""
    session_id: str
    phase: str
    message: str
    percent_complete: int = 0
    current_unit: Optional[str] = None
    total_units: int = 0
    completed_units: int = 0
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES


class NotificationSeverity(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class Notification:
    """Outcome notification for an in-app feed."""
    title: str
    message: str
    severity: NotificationSeverity = NotificationSeverity.INFO
    action_url: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.utcnow)


class NotificationSinkProtocol(Protocol):
    """Protocol defining the notification sink interface."""

    async def send_progress(self, progress: DeploymentProgress) -> None:
        ...

    async def send_notification(self, notification: Notification) -> None:
        ...

    async def send_observer_result(self, deployment_id: UUID, stack_name: str, result: ObserverResult) -> None:
        ...


class LoggingNotificationSink:
    """Sink that writes every notification to the log."""

    async def send_progress(self, progress: DeploymentProgress) -> None:
        logger.info(
            f"[{progress.session_id}] {progress.phase} {progress.percent_complete}%: {progress.message}"
        )

    async def send_notification(self, notification: Notification) -> None:
        level = logging.WARNING if notification.severity == NotificationSeverity.ERROR else logging.INFO
        logger.log(level, f"{notification.title}: {notification.message}")

    async def send_observer_result(self, deployment_id: UUID, stack_name: str, result: ObserverResult) -> None:
        logger.debug(f"Observer result for {stack_name} ({deployment_id}): {result}")


class NoOpNotificationSink:
    """
    No-op sink for testing.

    This implementation does nothing.
    """

    async def send_progress(self, progress: DeploymentProgress) -> None:
        return None

    async def send_notification(self, notification: Notification) -> None:
        return None

    async def send_observer_result(self, deployment_id: UUID, stack_name: str, result: ObserverResult) -> None:
        return None


def _create_sink() -> NotificationSinkProtocol:
    """
    Create the notification sink based on environment.

    Returns NoOpNotificationSink for tests, LoggingNotificationSink otherwise.
    """
    import os

    environment = os.getenv("ENVIRONMENT", "production")

    if environment == "test":
        return NoOpNotificationSink()

    return LoggingNotificationSink()


# Singleton instance for shared use
notifier: NotificationSinkProtocol = _create_sink()
