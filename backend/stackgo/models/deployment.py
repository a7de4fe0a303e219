"""
Deployment aggregate: the authoritative record of one stack's rollout.

Status moves only along the edges of the transition table below. Every
illegal request raises InvalidStateTransitionError before anything is
mutated. Mutators return the domain events they raised; publishing them is
the caller's job.

    Pending  -> Running | Failed
    Running  -> Stopped | Failed
    Stopped  -> Running (restart) | Removed | Failed
    Failed   -> Removed
    Removed  -> (terminal)
"""
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from stackgo.core.events import (
    DeploymentCancellationRequestedEvent,
    DeploymentCompletedEvent,
    DeploymentStartedEvent,
    DomainEvent,
    OperationModeChangedEvent,
    ServiceStatusChangedEvent,
)
from stackgo.core.exceptions import (
    InvalidArgumentError,
    InvalidOperationError,
    InvalidStateTransitionError,
)
from stackgo.models.health import OperationMode
from stackgo.models.observer import MaintenanceObserverConfig


class DeploymentStatus(str, Enum):
    """Lifecycle status of a single-stack deployment."""
    PENDING = "pending"
    RUNNING = "running"
    STOPPED = "stopped"
    FAILED = "failed"
    REMOVED = "removed"


class DeploymentPhase(str, Enum):
    """Rollout phase recorded in the phase history."""
    INITIALIZING = "initializing"
    VALIDATING_PREREQUISITES = "validating_prerequisites"
    PULLING_IMAGES = "pulling_images"
    STARTING = "starting"
    WAITING_FOR_HEALTH_CHECKS = "waiting_for_health_checks"
    COMPLETED = "completed"
    FAILED = "failed"


_TRANSITIONS = {
    DeploymentStatus.PENDING: (DeploymentStatus.RUNNING, DeploymentStatus.FAILED),
    DeploymentStatus.RUNNING: (DeploymentStatus.STOPPED, DeploymentStatus.FAILED),
    DeploymentStatus.STOPPED: (DeploymentStatus.RUNNING, DeploymentStatus.REMOVED, DeploymentStatus.FAILED),
    DeploymentStatus.FAILED: (DeploymentStatus.REMOVED,),
    DeploymentStatus.REMOVED: (),
}

HEALTHY_SERVICE_STATES = ("running", "healthy")


@dataclass(frozen=True)
class PhaseRecord:
    phase: DeploymentPhase
    message: str
    timestamp: datetime


@dataclass
class DeployedService:
    """A service container that belongs to the deployment."""
    service_name: str
    container_id: Optional[str] = None
    container_name: Optional[str] = None
    image: Optional[str] = None
    status: str = "unknown"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "service_name": self.service_name,
            "container_id": self.container_id,
            "container_name": self.container_name,
            "image": self.image,
            "status": self.status,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeployedService":
        return cls(**data)


class Deployment:
    """Rollout record of one stack in one environment."""

    def __init__(
        self,
        id: UUID,
        environment_id: str,
        stack_name: str,
        project_name: str,
        deployed_by: str,
        stack_id: Optional[str] = None,
        stack_version: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ):
        self.id = id
        self.environment_id = environment_id
        self.stack_name = stack_name
        self.project_name = project_name
        self.deployed_by = deployed_by
        self.stack_id = stack_id
        self.stack_version = stack_version
        self.created_at = created_at or datetime.utcnow()

        self.status = DeploymentStatus.PENDING
        self.operation_mode = OperationMode.NORMAL
        self.error_message: Optional[str] = None
        self.completed_at: Optional[datetime] = None
        self.current_phase = DeploymentPhase.INITIALIZING
        self.progress_percentage = 0
        self.phase_history: List[PhaseRecord] = []
        self.services: List[DeployedService] = []
        self.variables: Dict[str, str] = {}
        self.maintenance_observer: Optional[MaintenanceObserverConfig] = None
        self.cancellation_requested = False
        self.cancellation_reason: Optional[str] = None
        self.version = 0
        # Version of the stored document this instance was loaded from
        self.persisted_version: Optional[int] = None

    # -------------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------------

    @classmethod
    def start(
        cls,
        environment_id: str,
        stack_name: str,
        project_name: str,
        deployed_by: str,
        stack_id: Optional[str] = None,
        stack_version: Optional[str] = None,
        variables: Optional[Dict[str, str]] = None,
        deployment_id: Optional[UUID] = None,
    ) -> Tuple["Deployment", List[DomainEvent]]:
        """
        Create a deployment in Pending.

        Raises:
            InvalidArgumentError: If a required identifier is blank
        """
        for name, value in (
            ("Environment ID", environment_id),
            ("Stack name", stack_name),
            ("Project name", project_name),
            ("Deployed by", deployed_by),
        ):
            if not value or not str(value).strip():
                raise InvalidArgumentError(f"{name} is required.")

        deployment = cls(
            id=deployment_id or uuid.uuid4(),
            environment_id=environment_id,
            stack_name=stack_name,
            project_name=project_name,
            deployed_by=deployed_by,
            stack_id=stack_id,
            stack_version=stack_version,
        )
        deployment.variables = dict(variables or {})
        deployment._record_phase(DeploymentPhase.INITIALIZING, "Deployment initialized")
        event = DeploymentStartedEvent(
            deployment_id=deployment.id,
            environment_id=environment_id,
            stack_name=stack_name,
        )
        return deployment, [event]

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def mark_as_running(self, services: List[DeployedService]) -> List[DomainEvent]:
        """Pending -> Running. Replaces the service set."""
        if self.status != DeploymentStatus.PENDING:
            raise InvalidStateTransitionError("deployment", self.status.value, DeploymentStatus.RUNNING.value)
        self._ensure_transition(DeploymentStatus.RUNNING)

        self.status = DeploymentStatus.RUNNING
        self.services = list(services)
        self._stamp_completed()
        self.current_phase = DeploymentPhase.COMPLETED
        self.progress_percentage = 100
        self._record_phase(DeploymentPhase.COMPLETED, "Deployment completed successfully")
        return [DeploymentCompletedEvent(deployment_id=self.id, status=self.status.value)]

    def mark_as_failed(self, reason: str) -> List[DomainEvent]:
        """Any non-terminal status -> Failed."""
        if not reason or not reason.strip():
            raise InvalidArgumentError("Failure reason is required.")
        self._ensure_transition(DeploymentStatus.FAILED)

        self.status = DeploymentStatus.FAILED
        self.operation_mode = OperationMode.FAILED
        self.error_message = reason
        self._stamp_completed()
        self.current_phase = DeploymentPhase.FAILED
        self._record_phase(DeploymentPhase.FAILED, f"Deployment failed: {reason}")
        return [DeploymentCompletedEvent(
            deployment_id=self.id,
            status=self.status.value,
            error_message=reason,
        )]

    def mark_as_stopped(self) -> List[DomainEvent]:
        """Running -> Stopped. Every service becomes `stopped`."""
        self._ensure_transition(DeploymentStatus.STOPPED)
        self.status = DeploymentStatus.STOPPED
        self.operation_mode = OperationMode.STOPPED
        for service in self.services:
            service.status = "stopped"
        self._touch()
        return []

    def restart(self) -> List[DomainEvent]:
        """Stopped -> Running without passing through Pending."""
        if self.status != DeploymentStatus.STOPPED:
            raise InvalidStateTransitionError("deployment", self.status.value, DeploymentStatus.RUNNING.value)
        self.status = DeploymentStatus.RUNNING
        self.operation_mode = OperationMode.NORMAL
        for service in self.services:
            service.status = "starting"
        self._touch()
        return []

    def mark_as_removed(self) -> List[DomainEvent]:
        """Stopped or Failed -> Removed. Every service becomes `removed`."""
        self._ensure_transition(DeploymentStatus.REMOVED)
        self.status = DeploymentStatus.REMOVED
        for service in self.services:
            service.status = "removed"
        self._stamp_completed()
        self._touch()
        return []

    def update_service_status(self, service_name: str, status: str) -> List[DomainEvent]:
        """Set one service's status; no state-machine implication."""
        service = next(
            (s for s in self.services if s.service_name.lower() == service_name.lower()),
            None,
        )
        if service is None:
            raise InvalidOperationError(f"Service '{service_name}' is not part of deployment {self.id}.")
        if service.status == status:
            return []
        old_status = service.status
        service.status = status
        self._touch()
        return [ServiceStatusChangedEvent(
            deployment_id=self.id,
            service_name=service.service_name,
            old_status=old_status,
            new_status=status,
        )]

    def update_progress(self, phase: DeploymentPhase, message: str, percent: int) -> List[DomainEvent]:
        """Record rollout progress while Pending."""
        if not 0 <= percent <= 100:
            raise InvalidArgumentError("Progress percentage must be between 0 and 100.")
        if self.status != DeploymentStatus.PENDING:
            raise InvalidOperationError(
                f"Cannot update progress of deployment {self.id} in status {self.status.value}."
            )
        self.current_phase = phase
        self.progress_percentage = percent
        self._record_phase(phase, message)
        return []

    def request_cancellation(self, reason: str) -> List[DomainEvent]:
        if self.status != DeploymentStatus.PENDING:
            raise InvalidOperationError(
                f"Only pending deployments can be cancelled (status: {self.status.value})."
            )
        if self.cancellation_requested:
            return []
        self.cancellation_requested = True
        self.cancellation_reason = reason or "Cancelled by user"
        self._touch()
        return [DeploymentCancellationRequestedEvent(deployment_id=self.id, reason=self.cancellation_reason)]

    def confirm_cancellation(self) -> List[DomainEvent]:
        if not self.cancellation_requested:
            raise InvalidOperationError(f"No cancellation was requested for deployment {self.id}.")
        return self.mark_as_failed(f"Cancelled: {self.cancellation_reason}")

    def change_operation_mode(self, mode: OperationMode, reason: Optional[str] = None) -> List[DomainEvent]:
        """Switch the runtime posture of a running deployment."""
        if self.status != DeploymentStatus.RUNNING:
            raise InvalidOperationError(
                f"Cannot change operation mode. Deployment is {self.status.value}, must be running."
            )
        if mode == self.operation_mode:
            return []
        if not self.operation_mode.can_transition_to(mode):
            raise InvalidStateTransitionError("operation mode", self.operation_mode.value, mode.value)

        old_mode = self.operation_mode
        self.operation_mode = mode
        self._touch()
        return [OperationModeChangedEvent(
            deployment_id=self.id,
            old_mode=old_mode.value,
            new_mode=mode.value,
            reason=reason,
        )]

    def set_maintenance_observer(self, config: Optional[MaintenanceObserverConfig]) -> None:
        self.maintenance_observer = config
        self._touch()

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def can_transition_to(self, target: DeploymentStatus) -> bool:
        return target in _TRANSITIONS[self.status]

    def valid_next_states(self) -> List[DeploymentStatus]:
        return list(_TRANSITIONS[self.status])

    @property
    def is_terminal(self) -> bool:
        return self.status in (DeploymentStatus.FAILED, DeploymentStatus.REMOVED)

    @property
    def is_active(self) -> bool:
        return self.status in (DeploymentStatus.PENDING, DeploymentStatus.RUNNING)

    def are_all_services_healthy(self) -> bool:
        return bool(self.services) and all(
            s.status.lower() in HEALTHY_SERVICE_STATES for s in self.services
        )

    def unhealthy_services(self) -> List[DeployedService]:
        return [s for s in self.services if s.status.lower() not in HEALTHY_SERVICE_STATES]

    def running_service_count(self) -> int:
        return sum(1 for s in self.services if s.status.lower() == "running")

    def duration(self) -> Optional[timedelta]:
        if self.completed_at is None:
            return None
        return self.completed_at - self.created_at

    def is_overdue(self, timeout: timedelta, now: Optional[datetime] = None) -> bool:
        """True when still pending longer than the timeout."""
        if self.status != DeploymentStatus.PENDING:
            return False
        return (now or datetime.utcnow()) - self.created_at > timeout

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "environment_id": self.environment_id,
            "stack_name": self.stack_name,
            "project_name": self.project_name,
            "deployed_by": self.deployed_by,
            "stack_id": self.stack_id,
            "stack_version": self.stack_version,
            "created_at": self.created_at.isoformat(),
            "status": self.status.value,
            "operation_mode": self.operation_mode.value,
            "error_message": self.error_message,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "current_phase": self.current_phase.value,
            "progress_percentage": self.progress_percentage,
            "phase_history": [
                {"phase": p.phase.value, "message": p.message, "timestamp": p.timestamp.isoformat()}
                for p in self.phase_history
            ],
            "services": [s.to_dict() for s in self.services],
            "variables": dict(self.variables),
            "maintenance_observer": self.maintenance_observer.to_dict() if self.maintenance_observer else None,
            "cancellation_requested": self.cancellation_requested,
            "cancellation_reason": self.cancellation_reason,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Deployment":
        deployment = cls(
            id=UUID(data["id"]),
            environment_id=data["environment_id"],
            stack_name=data["stack_name"],
            project_name=data["project_name"],
            deployed_by=data["deployed_by"],
            stack_id=data.get("stack_id"),
            stack_version=data.get("stack_version"),
            created_at=datetime.fromisoformat(data["created_at"]),
        )
        deployment.status = DeploymentStatus(data["status"])
        deployment.operation_mode = OperationMode(data.get("operation_mode", OperationMode.NORMAL.value))
        deployment.error_message = data.get("error_message")
        completed_at = data.get("completed_at")
        deployment.completed_at = datetime.fromisoformat(completed_at) if completed_at else None
        deployment.current_phase = DeploymentPhase(data.get("current_phase", DeploymentPhase.INITIALIZING.value))
        deployment.progress_percentage = data.get("progress_percentage", 0)
        deployment.phase_history = [
            PhaseRecord(DeploymentPhase(p["phase"]), p["message"], datetime.fromisoformat(p["timestamp"]))
            for p in data.get("phase_history", [])
        ]
        deployment.services = [DeployedService.from_dict(s) for s in data.get("services", [])]
        deployment.variables = dict(data.get("variables") or {})
        observer = data.get("maintenance_observer")
        deployment.maintenance_observer = MaintenanceObserverConfig.from_dict(observer) if observer else None
        deployment.cancellation_requested = data.get("cancellation_requested", False)
        deployment.cancellation_reason = data.get("cancellation_reason")
        deployment.version = data.get("version", 0)
        return deployment

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _ensure_transition(self, target: DeploymentStatus) -> None:
        if not self.can_transition_to(target):
            raise InvalidStateTransitionError("deployment", self.status.value, target.value)

    def _stamp_completed(self) -> None:
        if self.completed_at is None:
            self.completed_at = datetime.utcnow()

    def _record_phase(self, phase: DeploymentPhase, message: str) -> None:
        self.phase_history.append(PhaseRecord(phase, message, datetime.utcnow()))
        self._touch()

    def _touch(self) -> None:
        self.version += 1

    def __repr__(self) -> str:
        return f"Deployment(id={self.id}, stack={self.stack_name}, status={self.status.value})"
