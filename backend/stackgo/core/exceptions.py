"""
Custom exception hierarchy for domain-specific errors.

Aggregates raise these for invariant violations and precondition failures.
Runtime failures (observer errors, stack deployment errors) are captured as data
by the services and never surface as exceptions across orchestration boundaries.
"""
from typing import Optional, Dict, Any


class DomainException(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


# =============================================================================
# Not Found Errors
# =============================================================================

class NotFoundError(DomainException):
    """Base class for resource not found errors."""
    pass


class DeploymentNotFoundError(NotFoundError):
    """Deployment does not exist."""

    def __init__(self, identifier: str):
        super().__init__(f"Deployment not found: {identifier}", {"identifier": identifier})


class ProductDeploymentNotFoundError(NotFoundError):
    """Product deployment does not exist."""

    def __init__(self, identifier: str):
        super().__init__(f"Product deployment not found: {identifier}", {"identifier": identifier})


class ProductNotFoundError(NotFoundError):
    """Product does not exist in the catalog."""

    def __init__(self, identifier: str):
        super().__init__(f"Product not found in catalog: {identifier}", {"identifier": identifier})


class HealthSnapshotNotFoundError(NotFoundError):
    """No health snapshot has been captured for the deployment."""

    def __init__(self, deployment_id: str):
        super().__init__(
            f"No health snapshot for deployment: {deployment_id}",
            {"deployment_id": deployment_id}
        )


# =============================================================================
# Conflict Errors
# =============================================================================

class AlreadyExistsError(DomainException):
    """Base class for resource already exists errors."""
    pass


class ProductAlreadyDeployedError(AlreadyExistsError):
    """An active deployment of the product already exists in the environment."""

    def __init__(self, product_name: str, environment_id: str, status: str):
        super().__init__(
            f"Product '{product_name}' is already deployed in environment {environment_id} (status: {status})",
            {"product_name": product_name, "environment_id": environment_id, "status": status}
        )


# =============================================================================
# Validation Errors
# =============================================================================

class ValidationError(DomainException):
    """Base class for validation errors."""
    pass


class InvalidArgumentError(ValidationError):
    """A constructor or factory received malformed input."""

    def __init__(self, reason: str):
        super().__init__(reason, {"reason": reason})


class InvalidConfigurationError(ValidationError):
    """Configuration is invalid."""

    def __init__(self, field: str, reason: str):
        super().__init__(f"Invalid configuration for {field}: {reason}", {"field": field, "reason": reason})


class UnsupportedObserverTypeError(ValidationError):
    """No observer implementation is registered for the type."""

    def __init__(self, observer_type: str):
        super().__init__(
            f"Unsupported observer type: {observer_type}",
            {"observer_type": observer_type}
        )


# =============================================================================
# State Errors
# =============================================================================

class StateTransitionError(DomainException):
    """Base class for rejected state changes. Nothing is mutated when raised."""
    pass


class InvalidStateTransitionError(StateTransitionError):
    """The requested status change is not an edge of the state machine."""

    def __init__(self, entity: str, current: str, target: str):
        super().__init__(
            f"Invalid state transition for {entity} from {current} to {target}",
            {"entity": entity, "current": current, "target": target}
        )


class InvalidOperationError(StateTransitionError):
    """The aggregate is not in a state that allows the operation."""

    def __init__(self, reason: str):
        super().__init__(reason, {"reason": reason})


# =============================================================================
# Operation Errors
# =============================================================================

class OperationError(DomainException):
    """Base class for operation failures."""
    pass


class ConcurrencyError(OperationError):
    """The stored aggregate changed since it was loaded."""

    def __init__(self, entity: str, identifier: str, expected: int, actual: int):
        super().__init__(
            f"Concurrent modification of {entity} {identifier}: expected version {expected}, found {actual}",
            {"entity": entity, "identifier": identifier, "expected": expected, "actual": actual}
        )


class StackDeploymentError(OperationError):
    """Deploying a single stack failed."""

    def __init__(self, stack_name: str, reason: str):
        super().__init__(
            f"Stack deployment failed ({stack_name}): {reason}",
            {"stack_name": stack_name, "reason": reason}
        )


# =============================================================================
# Service Unavailable
# =============================================================================

class ServiceUnavailableError(DomainException):
    """External service is unavailable."""

    def __init__(self, service: str, reason: str = "Service unavailable"):
        super().__init__(f"{service}: {reason}", {"service": service, "reason": reason})


class RuntimeUnavailableError(ServiceUnavailableError):
    """The container runtime of an environment cannot be reached."""

    def __init__(self, environment_id: str, reason: str = "Container runtime unavailable"):
        super().__init__(f"Container runtime ({environment_id})", reason)
        self.details["environment_id"] = environment_id
