"""
Pytest configuration and fixtures for backend tests.

This file is automatically loaded by pytest before running tests.
It sets up necessary environment variables and common fixtures.
"""
import os
import uuid
from typing import Dict, List, Optional, Set

import pytest

# Set environment variables BEFORE any stackgo imports
# These are required by Settings class
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")

from stackgo.core.events import EventDispatcher  # noqa: E402
from stackgo.core.exceptions import RuntimeUnavailableError  # noqa: E402
from stackgo.repositories.memory import (  # noqa: E402
    InMemoryDeploymentRepository,
    InMemoryHealthSnapshotRepository,
    InMemoryProductDeploymentRepository,
)
from stackgo.schemas.catalog import (  # noqa: E402
    ObserverDefinition,
    ProductDefinition,
    ServiceTemplate,
    StackDefinition,
    StackVariable,
)
from stackgo.schemas.operations import OperationResponse, StackDeployResult  # noqa: E402
from stackgo.services.deployment.deployer_base import StackDeployer  # noqa: E402
from stackgo.services.deployment.runtime_base import (  # noqa: E402
    ContainerInfo,
    ContainerRuntime,
    VolumeInfo,
    VolumeMount,
)


# =============================================================================
# Test doubles
# =============================================================================

class FakeContainerRuntime(ContainerRuntime):
    """In-memory container runtime that records every call."""

    def __init__(self):
        self.containers: Dict[str, List[ContainerInfo]] = {}
        self.volumes: Dict[str, Dict[str, VolumeInfo]] = {}
        self.mounts: Dict[str, List[VolumeMount]] = {}
        self.started: List[str] = []
        self.stopped: List[str] = []
        self.removed: List[str] = []
        self.unavailable = False
        self.start_keeps_state = False

    def add(self, environment_id: str, container: ContainerInfo) -> ContainerInfo:
        self.containers.setdefault(environment_id, []).append(container)
        return container

    def _check(self, environment_id: str) -> None:
        if self.unavailable:
            raise RuntimeUnavailableError(environment_id)

    def _find(self, environment_id: str, container_id: str) -> ContainerInfo:
        return next(c for c in self.containers.get(environment_id, []) if c.id == container_id)

    async def list_containers(self, environment_id: str) -> List[ContainerInfo]:
        self._check(environment_id)
        return list(self.containers.get(environment_id, []))

    async def start_container(self, environment_id: str, container_id: str) -> None:
        self._check(environment_id)
        self.started.append(container_id)
        if not self.start_keeps_state:
            self._find(environment_id, container_id).state = "running"

    async def stop_container(self, environment_id: str, container_id: str) -> None:
        self._check(environment_id)
        self.stopped.append(container_id)
        self._find(environment_id, container_id).state = "exited"

    async def remove_container(self, environment_id: str, container_id: str, force: bool = False) -> None:
        self._check(environment_id)
        self.removed.append(container_id)
        self.containers[environment_id] = [
            c for c in self.containers.get(environment_id, []) if c.id != container_id
        ]

    async def inspect_volume(self, environment_id: str, volume_name: str) -> Optional[VolumeInfo]:
        self._check(environment_id)
        return self.volumes.get(environment_id, {}).get(volume_name)

    async def list_volumes(self, environment_id: str) -> List[VolumeInfo]:
        self._check(environment_id)
        return list(self.volumes.get(environment_id, {}).values())

    async def get_container_volume_mounts(self, environment_id: str, container_id: str) -> List[VolumeMount]:
        self._check(environment_id)
        return list(self.mounts.get(container_id, []))


class RecordingSink:
    """Notification sink that keeps everything it receives."""

    def __init__(self):
        self.progress = []
        self.notifications = []
        self.observer_results = []

    async def send_progress(self, progress) -> None:
        self.progress.append(progress)

    async def send_notification(self, notification) -> None:
        self.notifications.append(notification)

    async def send_observer_result(self, deployment_id, stack_name, result) -> None:
        self.observer_results.append((deployment_id, stack_name, result))

    @property
    def terminal(self):
        return [p for p in self.progress if p.is_terminal]


class FakeStackDeployer(StackDeployer):
    """StackDeployer double; stacks listed in `failing` fail, those in `raising` raise."""

    def __init__(self):
        self.failing: Set[str] = set()
        self.raising: Set[str] = set()
        self.failing_removals: Set[uuid.UUID] = set()
        self.deployed: List[dict] = []
        self.removed: List[uuid.UUID] = []

    async def deploy_stack(
        self,
        environment_id,
        stack,
        deployment_stack_name,
        variables,
        deployed_by,
        session_id=None,
    ) -> StackDeployResult:
        self.deployed.append({
            "environment_id": environment_id,
            "stack_id": stack.id,
            "deployment_stack_name": deployment_stack_name,
            "variables": dict(variables),
            "deployed_by": deployed_by,
        })
        if stack.id in self.raising:
            raise RuntimeError("runtime exploded")
        deployment_id = uuid.uuid4()
        if stack.id in self.failing:
            return StackDeployResult.failed(
                f"Deployment failed: {stack.id} did not start",
                deployment_id=deployment_id,
                deployment_stack_name=deployment_stack_name,
            )
        return StackDeployResult.ok(
            f"Successfully deployed {deployment_stack_name}",
            deployment_id=deployment_id,
            deployment_stack_name=deployment_stack_name,
            service_count=len(stack.services),
        )

    async def remove_deployment(self, deployment_id) -> OperationResponse:
        self.removed.append(deployment_id)
        if deployment_id in self.failing_removals:
            return OperationResponse.failed("Failed to remove deployment: runtime unreachable")
        return OperationResponse.ok("removed")


# =============================================================================
# Builders
# =============================================================================

def build_container(
    name: str,
    stack_name: str,
    state: str = "running",
    service: Optional[str] = None,
    health_status: Optional[str] = None,
    status: str = "",
    labels: Optional[Dict[str, str]] = None,
) -> ContainerInfo:
    all_labels = {
        "stackgo.stack": stack_name,
        "com.docker.compose.service": service or name,
    }
    all_labels.update(labels or {})
    return ContainerInfo(
        id=f"{stack_name}-{name}-id",
        name=f"/{stack_name}-{name}",
        image=f"registry.local/{name}:latest",
        state=state,
        status=status,
        labels=all_labels,
        health_status=health_status,
    )


def build_stack(
    stack_id: str,
    name: Optional[str] = None,
    services=("api",),
    version: str = "1.0.0",
    variables: Optional[Dict[str, Optional[str]]] = None,
    observer: Optional[ObserverDefinition] = None,
) -> StackDefinition:
    return StackDefinition(
        id=stack_id,
        name=name or stack_id,
        version=version,
        services=[ServiceTemplate(name=s, image=f"registry.local/{s}:{version}") for s in services],
        variables=[StackVariable(name=k, default_value=v) for k, v in (variables or {}).items()],
        maintenance_observer=observer,
    )


def build_product(
    product_id: str,
    version: str,
    stacks: List[StackDefinition],
    group_id: str = "shop",
    name: str = "shop",
) -> ProductDefinition:
    return ProductDefinition(
        id=product_id,
        group_id=group_id,
        name=name,
        display_name=name.title(),
        product_version=version,
        stacks=stacks,
    )


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def deployment_repo():
    return InMemoryDeploymentRepository()


@pytest.fixture
def product_repo():
    return InMemoryProductDeploymentRepository()


@pytest.fixture
def snapshot_repo():
    return InMemoryHealthSnapshotRepository()


@pytest.fixture
def runtime():
    return FakeContainerRuntime()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def stack_deployer():
    return FakeStackDeployer()


@pytest.fixture
def dispatcher():
    """Fresh dispatcher so globally registered handlers never run in tests."""
    return EventDispatcher()


@pytest.fixture
def make_container():
    return build_container


@pytest.fixture
def make_stack():
    return build_stack


@pytest.fixture
def make_product():
    return build_product


@pytest.fixture
def mock_engine():
    """Provide a mock database engine."""
    from unittest.mock import AsyncMock, MagicMock
    engine = MagicMock()
    engine.dispose = AsyncMock()
    return engine
