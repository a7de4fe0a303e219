"""
Abstract base class for the container runtime capability.

The runtime itself (Docker Engine, Podman, a remote agent) is provided by the
host application. Every operation is scoped to an environment and may raise
RuntimeUnavailableError when the environment cannot be reached.
"""
import importlib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from stackgo.core.config import settings
from stackgo.core.exceptions import InvalidConfigurationError


@dataclass
class ContainerInfo:
    """A container as reported by the runtime."""

    id: str
    name: str
    image: str
    state: str  # running, exited, restarting, paused, created, dead
    status: str = ""  # human readable, e.g. "Exited (0) 2 minutes ago"
    labels: Dict[str, str] = field(default_factory=dict)
    health_status: Optional[str] = None  # healthy, unhealthy, starting, or None
    restart_count: int = 0
    created_at: Optional[datetime] = None


@dataclass
class VolumeInfo:
    """A named volume."""

    name: str
    driver: str = "local"
    mountpoint: Optional[str] = None
    labels: Dict[str, str] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    size_bytes: Optional[int] = None


@dataclass
class VolumeMount:
    """A volume mounted into a container."""

    volume_name: str
    destination: str
    read_only: bool = False


class ContainerRuntime(ABC):
    """
    Abstract base class for container runtimes.

    Implementations must provide methods for:
    - Listing containers and volumes
    - Starting, stopping and removing containers
    - Inspecting volumes and container mounts
    """

    @abstractmethod
    async def list_containers(self, environment_id: str) -> List[ContainerInfo]:
        """
        List every container of an environment, stopped ones included.

        Args:
            environment_id: Target environment

        Returns:
            Containers with their labels
        """
        pass

    @abstractmethod
    async def start_container(self, environment_id: str, container_id: str) -> None:
        pass

    @abstractmethod
    async def stop_container(self, environment_id: str, container_id: str) -> None:
        pass

    @abstractmethod
    async def remove_container(self, environment_id: str, container_id: str, force: bool = False) -> None:
        pass

    @abstractmethod
    async def inspect_volume(self, environment_id: str, volume_name: str) -> Optional[VolumeInfo]:
        """
        Inspect a named volume.

        Returns:
            VolumeInfo, or None if the volume does not exist
        """
        pass

    @abstractmethod
    async def list_volumes(self, environment_id: str) -> List[VolumeInfo]:
        pass

    @abstractmethod
    async def get_container_volume_mounts(self, environment_id: str, container_id: str) -> List[VolumeMount]:
        pass


def load_container_runtime(path: Optional[str] = None) -> Optional[ContainerRuntime]:
    """
    Resolve the host-provided runtime from a "module:attribute" path.

    The attribute may be a ContainerRuntime instance or a zero-argument
    factory returning one. Returns None when no runtime is configured.

    Raises:
        InvalidConfigurationError: If the path cannot be resolved
    """
    path = path or settings.CONTAINER_RUNTIME
    if not path:
        return None

    module_name, _, attribute = path.partition(":")
    if not module_name or not attribute:
        raise InvalidConfigurationError("CONTAINER_RUNTIME", f"expected 'module:attribute', got '{path}'")

    try:
        target = getattr(importlib.import_module(module_name), attribute)
    except (ImportError, AttributeError) as e:
        raise InvalidConfigurationError("CONTAINER_RUNTIME", f"cannot load '{path}': {e}")

    runtime = target if isinstance(target, ContainerRuntime) else target()
    if not isinstance(runtime, ContainerRuntime):
        raise InvalidConfigurationError("CONTAINER_RUNTIME", f"'{path}' is not a ContainerRuntime")
    return runtime


def containers_for_stack(
    containers: List[ContainerInfo],
    stack_name: str,
    project_name: Optional[str] = None,
) -> List[ContainerInfo]:
    """Containers labelled with the stack name, or else with its compose project."""
    by_stack = [c for c in containers if c.labels.get(settings.STACK_LABEL) == stack_name]
    if by_stack:
        return by_stack
    project = project_name or stack_name
    return [c for c in containers if c.labels.get(settings.COMPOSE_PROJECT_LABEL) == project]


def service_name_of(container: ContainerInfo) -> str:
    return container.labels.get(settings.COMPOSE_SERVICE_LABEL) or container.name.lstrip("/")


def is_init_container(container: ContainerInfo) -> bool:
    return container.labels.get(settings.LIFECYCLE_LABEL, "").lower() == "init"


def init_container_succeeded(container: ContainerInfo) -> bool:
    """An init container that ran to completion with exit code 0."""
    return (
        is_init_container(container)
        and container.state.lower() == "exited"
        and "(0)" in container.status
    )


def is_maintenance_ignored(container: ContainerInfo) -> bool:
    """Containers labelled to keep running while the stack is in maintenance."""
    return container.labels.get(settings.MAINTENANCE_LABEL, "").lower() == "ignore"
