"""
Pydantic schemas for service commands and their `{success, message}` outcomes.
"""
from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID
from pydantic import BaseModel, Field

from stackgo.models.health import EnvironmentHealthSummary, HealthStatus, OperationMode


# =============================================================================
# Commands
# =============================================================================

class StackConfigRequest(BaseModel):
    """Per-stack part of a product deploy or upgrade."""
    stack_id: str
    deployment_stack_name: str
    variables: Dict[str, str] = Field(default_factory=dict)


class DeployProductRequest(BaseModel):
    """Deploy every stack of a catalog product into an environment."""
    environment_id: str
    product_id: str
    stack_configs: List[StackConfigRequest] = Field(default_factory=list)
    shared_variables: Dict[str, str] = Field(default_factory=dict)
    continue_on_error: bool = True
    session_id: Optional[str] = None
    user_id: Optional[str] = None


class UpgradeProductRequest(BaseModel):
    """Move a deployed product to another catalog version."""
    environment_id: str
    product_deployment_id: UUID
    target_product_id: str
    stack_configs: List[StackConfigRequest] = Field(default_factory=list)
    shared_variables: Dict[str, str] = Field(default_factory=dict)
    continue_on_error: bool = True
    session_id: Optional[str] = None
    user_id: Optional[str] = None


# =============================================================================
# Results
# =============================================================================

class OperationResponse(BaseModel):
    """Outcome shared by every operation that can fail at runtime."""
    success: bool
    message: Optional[str] = None

    @classmethod
    def ok(cls, message: Optional[str] = None, **kwargs):
        return cls(success=True, message=message, **kwargs)

    @classmethod
    def failed(cls, message: str, **kwargs):
        return cls(success=False, message=message, **kwargs)


class StackDeployResult(OperationResponse):
    """Result of deploying one stack through a StackDeployer."""
    deployment_id: Optional[UUID] = None
    deployment_stack_name: Optional[str] = None
    service_count: int = 0


class StackResult(BaseModel):
    """Per-stack line of a product operation."""
    stack_name: str
    stack_display_name: str
    success: bool = False
    deployment_id: Optional[UUID] = None
    deployment_stack_name: Optional[str] = None
    error_message: Optional[str] = None
    service_count: int = 0
    is_new_in_upgrade: bool = False


class DeployProductResponse(OperationResponse):
    product_deployment_id: Optional[UUID] = None
    product_name: Optional[str] = None
    product_version: Optional[str] = None
    status: Optional[str] = None
    session_id: Optional[str] = None
    stack_results: List[StackResult] = Field(default_factory=list)


class UpgradeProductResponse(OperationResponse):
    product_deployment_id: Optional[UUID] = None
    product_name: Optional[str] = None
    previous_version: Optional[str] = None
    new_version: Optional[str] = None
    status: Optional[str] = None
    session_id: Optional[str] = None
    stack_results: List[StackResult] = Field(default_factory=list)


class RemoveProductResponse(OperationResponse):
    product_deployment_id: Optional[UUID] = None
    product_name: Optional[str] = None
    status: Optional[str] = None
    session_id: Optional[str] = None
    stack_results: List[StackResult] = Field(default_factory=list)


class AvailableVersion(BaseModel):
    version: str
    product_id: str
    stack_count: int = 0


class CheckUpgradeResponse(OperationResponse):
    """Upgrade availability of a deployed product.

    `new_stacks` and `removed_stacks` are None rather than empty when there is
    no difference.
    """
    upgrade_available: bool = False
    current_version: Optional[str] = None
    latest_version: Optional[str] = None
    latest_product_id: Optional[str] = None
    available_versions: List[AvailableVersion] = Field(default_factory=list)
    new_stacks: Optional[List[str]] = None
    removed_stacks: Optional[List[str]] = None
    can_upgrade: bool = False
    cannot_upgrade_reason: Optional[str] = None


class ChangeOperationModeResponse(OperationResponse):
    deployment_id: Optional[UUID] = None
    previous_mode: Optional[OperationMode] = None
    new_mode: Optional[OperationMode] = None


# =============================================================================
# Health
# =============================================================================

class StackHealthItem(BaseModel):
    deployment_id: UUID
    stack_name: str
    current_version: Optional[str] = None
    overall_status: HealthStatus
    operation_mode: OperationMode
    healthy_services: int
    total_services: int
    status_message: str
    requires_attention: bool
    captured_at_utc: datetime


class EnvironmentHealthResponse(BaseModel):
    """Health roll-up of one environment."""
    environment_id: str
    overall_status: HealthStatus
    total_stacks: int
    healthy_count: int
    degraded_count: int
    unhealthy_count: int
    unknown_count: int
    status_message: str
    stacks: List[StackHealthItem] = Field(default_factory=list)

    @classmethod
    def from_summary(cls, summary: EnvironmentHealthSummary) -> "EnvironmentHealthResponse":
        return cls(
            environment_id=summary.environment_id,
            overall_status=summary.overall_status,
            total_stacks=summary.total_stacks,
            healthy_count=summary.healthy_count,
            degraded_count=summary.degraded_count,
            unhealthy_count=summary.unhealthy_count,
            unknown_count=summary.unknown_count,
            status_message=summary.status_message(),
            stacks=[
                StackHealthItem(
                    deployment_id=s.deployment_id,
                    stack_name=s.stack_name,
                    current_version=s.current_version,
                    overall_status=s.overall_status,
                    operation_mode=s.operation_mode,
                    healthy_services=s.healthy_services,
                    total_services=s.total_services,
                    status_message=s.status_message,
                    requires_attention=s.requires_attention,
                    captured_at_utc=s.captured_at_utc,
                )
                for s in summary.stacks
            ],
        )
