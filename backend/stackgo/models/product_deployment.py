"""
ProductDeployment aggregate: ordered, multi-stack rollout of one catalog product.

Each entry in `stacks` references the Deployment record of one stack. The
product status is derived from the entry outcomes; the counters are computed
from the entries so `completed_stacks + failed_stacks <= total_stacks` always
holds.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from stackgo.core.events import (
    DomainEvent,
    ProductDeploymentCompletedEvent,
    ProductDeploymentFailedEvent,
    ProductDeploymentInitiatedEvent,
    ProductDeploymentPartiallyCompletedEvent,
    ProductDeploymentRemovedEvent,
    ProductRemovalInitiatedEvent,
    ProductStackDeploymentCompletedEvent,
    ProductStackDeploymentFailedEvent,
    ProductStackDeploymentStartedEvent,
    ProductUpgradeInitiatedEvent,
)
from stackgo.core.exceptions import (
    InvalidArgumentError,
    InvalidOperationError,
    InvalidStateTransitionError,
)


class ProductDeploymentStatus(str, Enum):
    DEPLOYING = "deploying"
    RUNNING = "running"
    PARTIALLY_RUNNING = "partially_running"
    UPGRADING = "upgrading"
    FAILED = "failed"
    REMOVING = "removing"
    REMOVED = "removed"


class StackDeploymentStatus(str, Enum):
    PENDING = "pending"
    DEPLOYING = "deploying"
    RUNNING = "running"
    FAILED = "failed"
    REMOVED = "removed"


_TRANSITIONS = {
    ProductDeploymentStatus.DEPLOYING: (
        ProductDeploymentStatus.RUNNING,
        ProductDeploymentStatus.PARTIALLY_RUNNING,
        ProductDeploymentStatus.FAILED,
    ),
    ProductDeploymentStatus.UPGRADING: (
        ProductDeploymentStatus.RUNNING,
        ProductDeploymentStatus.PARTIALLY_RUNNING,
        ProductDeploymentStatus.FAILED,
    ),
    ProductDeploymentStatus.RUNNING: (ProductDeploymentStatus.REMOVING,),
    ProductDeploymentStatus.PARTIALLY_RUNNING: (ProductDeploymentStatus.REMOVING,),
    ProductDeploymentStatus.FAILED: (),
    ProductDeploymentStatus.REMOVING: (ProductDeploymentStatus.REMOVED,),
    ProductDeploymentStatus.REMOVED: (),
}

_IN_PROGRESS = (
    ProductDeploymentStatus.DEPLOYING,
    ProductDeploymentStatus.UPGRADING,
    ProductDeploymentStatus.REMOVING,
)
_OPERATIONAL = (ProductDeploymentStatus.RUNNING, ProductDeploymentStatus.PARTIALLY_RUNNING)


@dataclass
class StackDeploymentConfig:
    """Input for one stack of a product rollout."""
    stack_name: str
    stack_display_name: str
    stack_id: str
    service_count: int = 0
    variables: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ProductPhaseRecord:
    message: str
    timestamp: datetime


@dataclass
class StackDeployment:
    """One stack entry of a product deployment."""
    stack_name: str
    stack_display_name: str
    stack_id: str
    order: int
    service_count: int = 0
    variables: Dict[str, str] = field(default_factory=dict)
    is_new_in_upgrade: bool = False
    deployment_id: Optional[UUID] = None
    deployment_stack_name: Optional[str] = None
    status: StackDeploymentStatus = StackDeploymentStatus.PENDING
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None

    def start(self, deployment_id: UUID, deployment_stack_name: str) -> None:
        if deployment_id is None:
            raise InvalidArgumentError("Deployment ID is required.")
        if not deployment_stack_name:
            raise InvalidArgumentError("Deployment stack name is required.")
        if self.status != StackDeploymentStatus.PENDING:
            raise InvalidOperationError(
                f"Cannot start stack '{self.stack_name}': current status is {self.status.value}, expected pending."
            )
        self.deployment_id = deployment_id
        self.deployment_stack_name = deployment_stack_name
        self.status = StackDeploymentStatus.DEPLOYING
        self.started_at = datetime.utcnow()

    def complete(self) -> None:
        if self.status != StackDeploymentStatus.DEPLOYING:
            raise InvalidOperationError(
                f"Cannot complete stack '{self.stack_name}': current status is {self.status.value}, expected deploying."
            )
        self.status = StackDeploymentStatus.RUNNING
        self.completed_at = datetime.utcnow()

    def fail(self, error_message: str) -> None:
        if not error_message:
            raise InvalidArgumentError("Error message is required.")
        if self.status not in (StackDeploymentStatus.PENDING, StackDeploymentStatus.DEPLOYING):
            raise InvalidOperationError(
                f"Cannot fail stack '{self.stack_name}': current status is {self.status.value}."
            )
        self.status = StackDeploymentStatus.FAILED
        self.error_message = error_message
        self.completed_at = datetime.utcnow()

    def mark_removed(self) -> None:
        self.status = StackDeploymentStatus.REMOVED
        self.completed_at = datetime.utcnow()

    def reset_to_pending(self) -> None:
        self.status = StackDeploymentStatus.PENDING
        self.started_at = None
        self.completed_at = None
        self.error_message = None

    def sync_status(self, status: StackDeploymentStatus, error_message: Optional[str] = None) -> bool:
        if self.status == status:
            return False
        self.status = status
        self.error_message = error_message if status == StackDeploymentStatus.FAILED else None
        return True

    def duration(self, now: Optional[datetime] = None) -> Optional[timedelta]:
        if self.started_at is None:
            return None
        return (self.completed_at or now or datetime.utcnow()) - self.started_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stack_name": self.stack_name,
            "stack_display_name": self.stack_display_name,
            "stack_id": self.stack_id,
            "order": self.order,
            "service_count": self.service_count,
            "variables": dict(self.variables),
            "is_new_in_upgrade": self.is_new_in_upgrade,
            "deployment_id": str(self.deployment_id) if self.deployment_id else None,
            "deployment_stack_name": self.deployment_stack_name,
            "status": self.status.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "error_message": self.error_message,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StackDeployment":
        return cls(
            stack_name=data["stack_name"],
            stack_display_name=data["stack_display_name"],
            stack_id=data["stack_id"],
            order=data["order"],
            service_count=data.get("service_count", 0),
            variables=dict(data.get("variables") or {}),
            is_new_in_upgrade=data.get("is_new_in_upgrade", False),
            deployment_id=UUID(data["deployment_id"]) if data.get("deployment_id") else None,
            deployment_stack_name=data.get("deployment_stack_name"),
            status=StackDeploymentStatus(data["status"]),
            started_at=_parse_dt(data.get("started_at")),
            completed_at=_parse_dt(data.get("completed_at")),
            error_message=data.get("error_message"),
        )


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class ProductDeployment:
    """Orchestration record of a product rollout in one environment."""

    def __init__(
        self,
        id: UUID,
        environment_id: str,
        product_group_id: str,
        product_id: str,
        product_name: str,
        product_display_name: str,
        product_version: str,
        deployed_by: str,
        status: ProductDeploymentStatus,
        continue_on_error: bool = True,
        created_at: Optional[datetime] = None,
    ):
        self.id = id
        self.environment_id = environment_id
        self.product_group_id = product_group_id
        self.product_id = product_id
        self.product_name = product_name
        self.product_display_name = product_display_name
        self.product_version = product_version
        self.deployed_by = deployed_by
        self.status = status
        self.continue_on_error = continue_on_error
        self.created_at = created_at or datetime.utcnow()

        self.completed_at: Optional[datetime] = None
        self.error_message: Optional[str] = None
        self.previous_version: Optional[str] = None
        self.last_upgraded_at: Optional[datetime] = None
        self.upgrade_count = 0
        self.shared_variables: Dict[str, str] = {}
        self.stacks: List[StackDeployment] = []
        self.phase_history: List[ProductPhaseRecord] = []
        self.version = 0
        # Version of the stored document this instance was loaded from
        self.persisted_version: Optional[int] = None

    # -------------------------------------------------------------------------
    # Factories
    # -------------------------------------------------------------------------

    @classmethod
    def initiate_deployment(
        cls,
        environment_id: str,
        product_group_id: str,
        product_id: str,
        product_name: str,
        product_display_name: str,
        product_version: str,
        deployed_by: str,
        stack_configs: List[StackDeploymentConfig],
        shared_variables: Optional[Dict[str, str]] = None,
        continue_on_error: bool = True,
        product_deployment_id: Optional[UUID] = None,
    ) -> Tuple["ProductDeployment", List[DomainEvent]]:
        """
        Create a product deployment in Deploying with one pending entry per stack.

        Entry order follows the order of `stack_configs`.

        Raises:
            InvalidArgumentError: If an identifier is blank or no stacks are given
        """
        _require_product_fields(environment_id, product_group_id, product_id, product_name,
                                product_display_name, product_version, deployed_by)
        if not stack_configs:
            raise InvalidArgumentError("At least one stack configuration is required.")

        pd = cls(
            id=product_deployment_id or uuid.uuid4(),
            environment_id=environment_id,
            product_group_id=product_group_id,
            product_id=product_id,
            product_name=product_name,
            product_display_name=product_display_name,
            product_version=product_version,
            deployed_by=deployed_by,
            status=ProductDeploymentStatus.DEPLOYING,
            continue_on_error=continue_on_error,
        )
        pd.shared_variables = dict(shared_variables or {})
        pd.stacks = [_stack_from_config(config, order) for order, config in enumerate(stack_configs)]
        pd._record_phase(f"Deployment initiated for {product_name} v{product_version}")

        event = ProductDeploymentInitiatedEvent(
            product_deployment_id=pd.id,
            environment_id=environment_id,
            product_name=product_name,
            product_version=product_version,
            total_stacks=pd.total_stacks,
        )
        return pd, [event]

    @classmethod
    def initiate_upgrade(
        cls,
        existing: "ProductDeployment",
        target_version: str,
        deployed_by: str,
        stack_configs: List[StackDeploymentConfig],
        shared_variables: Optional[Dict[str, str]] = None,
        continue_on_error: bool = True,
        product_id: Optional[str] = None,
        product_deployment_id: Optional[UUID] = None,
    ) -> Tuple["ProductDeployment", List[DomainEvent]]:
        """
        Create the next generation of `existing` in Upgrading.

        Stacks absent from the existing generation are flagged
        `is_new_in_upgrade` (case-insensitive name match).

        Raises:
            InvalidOperationError: If the existing deployment is not operational
            InvalidArgumentError: If the target version is blank or no stacks are given
        """
        if existing is None:
            raise InvalidArgumentError("Existing deployment is required.")
        if not existing.can_upgrade:
            raise InvalidOperationError(
                f"Product deployment {existing.id} cannot be upgraded (status: {existing.status.value})."
            )
        if not target_version or not target_version.strip():
            raise InvalidArgumentError("Target version is required.")
        if not deployed_by:
            raise InvalidArgumentError("Deployed by is required.")
        if not stack_configs:
            raise InvalidArgumentError("At least one target stack configuration is required.")

        pd = cls(
            id=product_deployment_id or uuid.uuid4(),
            environment_id=existing.environment_id,
            product_group_id=existing.product_group_id,
            product_id=product_id or existing.product_id,
            product_name=existing.product_name,
            product_display_name=existing.product_display_name,
            product_version=target_version,
            deployed_by=deployed_by,
            status=ProductDeploymentStatus.UPGRADING,
            continue_on_error=continue_on_error,
        )
        pd.previous_version = existing.product_version
        pd.upgrade_count = existing.upgrade_count + 1
        pd.shared_variables = dict(shared_variables or {})

        existing_names = {s.stack_name.lower() for s in existing.stacks}
        pd.stacks = [
            _stack_from_config(config, order, is_new=config.stack_name.lower() not in existing_names)
            for order, config in enumerate(stack_configs)
        ]
        pd._record_phase(f"Upgrade initiated from {existing.product_version} to {target_version}")

        event = ProductUpgradeInitiatedEvent(
            product_deployment_id=pd.id,
            product_name=pd.product_name,
            previous_version=existing.product_version,
            target_version=target_version,
            total_stacks=pd.total_stacks,
        )
        return pd, [event]

    # -------------------------------------------------------------------------
    # Stack lifecycle
    # -------------------------------------------------------------------------

    def start_stack(self, stack_name: str, deployment_id: UUID, deployment_stack_name: str) -> List[DomainEvent]:
        self._require_in_progress("start stack")
        stack = self.find_stack(stack_name, required=True)
        stack.start(deployment_id, deployment_stack_name)
        self._record_phase(f"Stack '{stack.stack_name}' started")
        return [ProductStackDeploymentStartedEvent(
            product_deployment_id=self.id,
            stack_name=stack.stack_name,
            deployment_id=deployment_id,
            order=stack.order,
            total_stacks=self.total_stacks,
        )]

    def complete_stack(self, stack_name: str) -> List[DomainEvent]:
        """Mark a stack running. Completes the product once every stack runs."""
        self._require_in_progress("complete stack")
        stack = self.find_stack(stack_name, required=True)
        stack.complete()
        self._record_phase(f"Stack '{stack.stack_name}' completed")
        events: List[DomainEvent] = [ProductStackDeploymentCompletedEvent(
            product_deployment_id=self.id,
            stack_name=stack.stack_name,
            deployment_id=stack.deployment_id,
            completed_stacks=self.completed_stacks,
            total_stacks=self.total_stacks,
        )]
        if all(s.status == StackDeploymentStatus.RUNNING for s in self.stacks):
            events.extend(self._complete())
        return events

    def fail_stack(self, stack_name: str, error_message: str) -> List[DomainEvent]:
        self._require_in_progress("fail stack")
        stack = self.find_stack(stack_name, required=True)
        stack.fail(error_message)
        self._record_phase(f"Stack '{stack.stack_name}' failed: {error_message}")
        return [ProductStackDeploymentFailedEvent(
            product_deployment_id=self.id,
            stack_name=stack.stack_name,
            error_message=error_message,
            completed_stacks=self.completed_stacks,
            total_stacks=self.total_stacks,
        )]

    def finalize(self) -> List[DomainEvent]:
        """
        Settle the product status once no more stacks will be attempted.

        All stacks running is already handled by `complete_stack`. A mix of
        running and failed stacks becomes PartiallyRunning only when the rollout
        continued past failures; every other outcome is Failed. Unattempted
        entries stay pending and do not count as failures.
        """
        if self.status not in (ProductDeploymentStatus.DEPLOYING, ProductDeploymentStatus.UPGRADING):
            return []

        if self.stacks and all(s.status == StackDeploymentStatus.RUNNING for s in self.stacks):
            return self._complete()

        completed = self.completed_stacks
        failed = self.failed_stacks
        if completed > 0 and failed > 0 and self.continue_on_error:
            return self.mark_as_partially_running(f"{failed} of {self.total_stacks} stacks failed")

        if failed > 0 and completed == 0 and self.pending_stacks == 0:
            message = f"All {failed} stacks failed"
        else:
            first_error = next(
                (s.error_message for s in self.get_stacks_in_deploy_order()
                 if s.status == StackDeploymentStatus.FAILED and s.error_message),
                None,
            )
            message = first_error or "Deployment did not complete"
        return self.mark_as_failed(message)

    # -------------------------------------------------------------------------
    # Product lifecycle
    # -------------------------------------------------------------------------

    def mark_as_partially_running(self, reason: str) -> List[DomainEvent]:
        if not reason:
            raise InvalidArgumentError("Reason is required.")
        self._ensure_transition(ProductDeploymentStatus.PARTIALLY_RUNNING)
        if self.completed_stacks == 0:
            raise InvalidOperationError("Cannot be partially running with no completed stacks.")
        if self.failed_stacks == 0 and self.pending_stacks == 0:
            raise InvalidOperationError("Cannot be partially running when all stacks succeeded.")

        self.status = ProductDeploymentStatus.PARTIALLY_RUNNING
        self.completed_at = datetime.utcnow()
        self.error_message = reason
        self._record_phase(f"Partially running: {reason}")
        return [ProductDeploymentPartiallyCompletedEvent(
            product_deployment_id=self.id,
            product_name=self.product_name,
            completed_stacks=self.completed_stacks,
            failed_stacks=self.failed_stacks,
            reason=reason,
        )]

    def mark_as_failed(self, error_message: str) -> List[DomainEvent]:
        if not error_message:
            raise InvalidArgumentError("Error message is required.")
        self._ensure_transition(ProductDeploymentStatus.FAILED)

        self.status = ProductDeploymentStatus.FAILED
        self.completed_at = datetime.utcnow()
        self.error_message = error_message
        self._record_phase(f"Failed: {error_message}")
        return [ProductDeploymentFailedEvent(
            product_deployment_id=self.id,
            product_name=self.product_name,
            error_message=error_message,
            completed_stacks=self.completed_stacks,
            failed_stacks=self.failed_stacks,
        )]

    def start_removal(self) -> List[DomainEvent]:
        """Running/PartiallyRunning -> Removing. Every entry returns to pending."""
        self._ensure_transition(ProductDeploymentStatus.REMOVING)
        self.status = ProductDeploymentStatus.REMOVING
        self.completed_at = None
        self.error_message = None
        for stack in self.stacks:
            stack.reset_to_pending()
        self._record_phase("Removal initiated")
        return [ProductRemovalInitiatedEvent(
            product_deployment_id=self.id,
            product_name=self.product_name,
            total_stacks=self.total_stacks,
        )]

    def mark_stack_removed(self, stack_name: str) -> List[DomainEvent]:
        if self.status != ProductDeploymentStatus.REMOVING:
            raise InvalidOperationError(
                f"Cannot mark stack as removed when product status is {self.status.value}."
            )
        stack = self.find_stack(stack_name, required=True)
        stack.mark_removed()
        self._record_phase(f"Stack '{stack.stack_name}' removed")

        if all(s.status == StackDeploymentStatus.REMOVED for s in self.stacks):
            self.status = ProductDeploymentStatus.REMOVED
            self.completed_at = datetime.utcnow()
            self._record_phase("All stacks removed")
            return [ProductDeploymentRemovedEvent(
                product_deployment_id=self.id,
                product_name=self.product_name,
            )]
        return []

    def record_stack_removal_error(self, stack_name: str, error_message: str) -> None:
        """Keep a failed removal attempt on the entry; the product stays Removing."""
        stack = self.find_stack(stack_name, required=True)
        stack.error_message = error_message
        self.error_message = error_message
        self._record_phase(f"Stack '{stack.stack_name}' removal failed: {error_message}")

    # -------------------------------------------------------------------------
    # Health sync
    # -------------------------------------------------------------------------

    def sync_stack_health(
        self,
        stack_name: str,
        status: StackDeploymentStatus,
        error_message: Optional[str] = None,
    ) -> bool:
        """Mirror a child deployment's status onto its entry while operational."""
        if not self.is_operational:
            return False
        stack = self.find_stack(stack_name)
        if stack is None:
            return False
        changed = stack.sync_status(status, error_message)
        if changed:
            self._touch()
        return changed

    def recalculate_product_status(self) -> bool:
        """Re-derive Running / PartiallyRunning from the entries. Returns True on change."""
        if not self.is_operational:
            return False

        all_running = all(s.status == StackDeploymentStatus.RUNNING for s in self.stacks)
        any_running = any(s.status == StackDeploymentStatus.RUNNING for s in self.stacks)
        any_failed = any(s.status == StackDeploymentStatus.FAILED for s in self.stacks)

        if all_running and self.status != ProductDeploymentStatus.RUNNING:
            self.status = ProductDeploymentStatus.RUNNING
            self.error_message = None
            self._record_phase("Health sync: all stacks running")
            return True

        if any_failed and any_running and self.status != ProductDeploymentStatus.PARTIALLY_RUNNING:
            self.status = ProductDeploymentStatus.PARTIALLY_RUNNING
            self.error_message = f"{self.failed_stacks} of {self.total_stacks} stacks failed"
            self._record_phase(f"Health sync: partially running ({self.failed_stacks} failed)")
            return True

        return False

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    @property
    def total_stacks(self) -> int:
        return len(self.stacks)

    @property
    def completed_stacks(self) -> int:
        return sum(1 for s in self.stacks if s.status == StackDeploymentStatus.RUNNING)

    @property
    def failed_stacks(self) -> int:
        return sum(1 for s in self.stacks if s.status == StackDeploymentStatus.FAILED)

    @property
    def pending_stacks(self) -> int:
        return sum(1 for s in self.stacks if s.status == StackDeploymentStatus.PENDING)

    @property
    def removed_stacks(self) -> int:
        return sum(1 for s in self.stacks if s.status == StackDeploymentStatus.REMOVED)

    @property
    def is_in_progress(self) -> bool:
        return self.status in _IN_PROGRESS

    @property
    def is_operational(self) -> bool:
        return self.status in _OPERATIONAL

    @property
    def is_terminal(self) -> bool:
        return self.status in (ProductDeploymentStatus.FAILED, ProductDeploymentStatus.REMOVED)

    @property
    def can_upgrade(self) -> bool:
        return self.is_operational

    @property
    def can_remove(self) -> bool:
        return self.is_operational

    @property
    def can_rollback(self) -> bool:
        return self.status == ProductDeploymentStatus.FAILED and self.previous_version is not None

    def can_transition_to(self, target: ProductDeploymentStatus) -> bool:
        return target in _TRANSITIONS[self.status]

    def get_stacks_in_deploy_order(self) -> List[StackDeployment]:
        return sorted(self.stacks, key=lambda s: s.order)

    def get_stacks_in_remove_order(self) -> List[StackDeployment]:
        return sorted(self.stacks, key=lambda s: s.order, reverse=True)

    def find_stack(self, stack_name: str, required: bool = False) -> Optional[StackDeployment]:
        name = (stack_name or "").lower()
        stack = next((s for s in self.stacks if s.stack_name.lower() == name), None)
        if stack is None and required:
            raise InvalidOperationError(f"Stack '{stack_name}' not found in this product deployment.")
        return stack

    def duration(self) -> Optional[timedelta]:
        if self.completed_at is None:
            return None
        return self.completed_at - self.created_at

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "environment_id": self.environment_id,
            "product_group_id": self.product_group_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "product_display_name": self.product_display_name,
            "product_version": self.product_version,
            "deployed_by": self.deployed_by,
            "status": self.status.value,
            "continue_on_error": self.continue_on_error,
            "created_at": self.created_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "error_message": self.error_message,
            "previous_version": self.previous_version,
            "last_upgraded_at": self.last_upgraded_at.isoformat() if self.last_upgraded_at else None,
            "upgrade_count": self.upgrade_count,
            "shared_variables": dict(self.shared_variables),
            "stacks": [s.to_dict() for s in self.stacks],
            "phase_history": [
                {"message": p.message, "timestamp": p.timestamp.isoformat()} for p in self.phase_history
            ],
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProductDeployment":
        pd = cls(
            id=UUID(data["id"]),
            environment_id=data["environment_id"],
            product_group_id=data["product_group_id"],
            product_id=data["product_id"],
            product_name=data["product_name"],
            product_display_name=data["product_display_name"],
            product_version=data["product_version"],
            deployed_by=data["deployed_by"],
            status=ProductDeploymentStatus(data["status"]),
            continue_on_error=data.get("continue_on_error", True),
            created_at=datetime.fromisoformat(data["created_at"]),
        )
        pd.completed_at = _parse_dt(data.get("completed_at"))
        pd.error_message = data.get("error_message")
        pd.previous_version = data.get("previous_version")
        pd.last_upgraded_at = _parse_dt(data.get("last_upgraded_at"))
        pd.upgrade_count = data.get("upgrade_count", 0)
        pd.shared_variables = dict(data.get("shared_variables") or {})
        pd.stacks = [StackDeployment.from_dict(s) for s in data.get("stacks", [])]
        pd.phase_history = [
            ProductPhaseRecord(p["message"], datetime.fromisoformat(p["timestamp"]))
            for p in data.get("phase_history", [])
        ]
        pd.version = data.get("version", 0)
        return pd

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _complete(self) -> List[DomainEvent]:
        was_upgrade = self.status == ProductDeploymentStatus.UPGRADING
        self._ensure_transition(ProductDeploymentStatus.RUNNING)
        self.status = ProductDeploymentStatus.RUNNING
        self.completed_at = datetime.utcnow()
        self.error_message = None
        if was_upgrade:
            self.last_upgraded_at = self.completed_at
        self._record_phase(
            f"Upgrade to {self.product_version} completed" if was_upgrade else "Deployment completed"
        )
        return [ProductDeploymentCompletedEvent(
            product_deployment_id=self.id,
            product_name=self.product_name,
            product_version=self.product_version,
            total_stacks=self.total_stacks,
            duration_seconds=self.duration().total_seconds(),
        )]

    def _require_in_progress(self, action: str) -> None:
        if self.status not in (ProductDeploymentStatus.DEPLOYING, ProductDeploymentStatus.UPGRADING):
            raise InvalidOperationError(f"Cannot {action} when product status is {self.status.value}.")

    def _ensure_transition(self, target: ProductDeploymentStatus) -> None:
        if not self.can_transition_to(target):
            raise InvalidStateTransitionError("product deployment", self.status.value, target.value)

    def _record_phase(self, message: str) -> None:
        self.phase_history.append(ProductPhaseRecord(message, datetime.utcnow()))
        self._touch()

    def _touch(self) -> None:
        self.version += 1

    def __repr__(self) -> str:
        return (
            f"ProductDeployment(id={self.id}, product={self.product_name}, "
            f"version={self.product_version}, status={self.status.value})"
        )


def _stack_from_config(config: StackDeploymentConfig, order: int, is_new: bool = False) -> StackDeployment:
    for name, value in (
        ("Stack name", config.stack_name),
        ("Stack display name", config.stack_display_name),
        ("Stack ID", config.stack_id),
    ):
        if not value:
            raise InvalidArgumentError(f"{name} is required.")
    if config.service_count < 0:
        raise InvalidArgumentError("Service count must be non-negative.")
    return StackDeployment(
        stack_name=config.stack_name,
        stack_display_name=config.stack_display_name,
        stack_id=config.stack_id,
        order=order,
        service_count=config.service_count,
        variables=dict(config.variables),
        is_new_in_upgrade=is_new,
    )


def _require_product_fields(*values: str) -> None:
    labels = (
        "Environment ID", "Product group ID", "Product ID", "Product name",
        "Product display name", "Product version", "Deployed by",
    )
    for label, value in zip(labels, values):
        if not value or not str(value).strip():
            raise InvalidArgumentError(f"{label} is required.")
