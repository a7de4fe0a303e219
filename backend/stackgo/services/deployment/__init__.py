"""
Single-stack deployment services.

This package provides the container runtime contract supplied by the host,
the StackDeployer interface used by product orchestration, and the
DeploymentService that implements it.
"""
from stackgo.services.deployment.deployer_base import StackDeployer
from stackgo.services.deployment.deployment_service import DeploymentService
from stackgo.services.deployment.runtime_base import (
    ContainerInfo,
    ContainerRuntime,
    VolumeInfo,
    VolumeMount,
    load_container_runtime,
)

__all__ = [
    "StackDeployer",
    "DeploymentService",
    "ContainerRuntime",
    "ContainerInfo",
    "VolumeInfo",
    "VolumeMount",
    "load_container_runtime",
]
