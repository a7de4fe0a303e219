"""
Repository layer for aggregate persistence.
"""
from stackgo.repositories.base import BaseRepository
from stackgo.repositories.contracts import (
    DeploymentRepositoryProtocol,
    HealthSnapshotRepositoryProtocol,
    ProductDeploymentRepositoryProtocol,
)
from stackgo.repositories.deployment_repository import DeploymentRepository
from stackgo.repositories.health_snapshot_repository import HealthSnapshotRepository
from stackgo.repositories.memory import (
    InMemoryDeploymentRepository,
    InMemoryHealthSnapshotRepository,
    InMemoryProductDeploymentRepository,
)
from stackgo.repositories.product_deployment_repository import ProductDeploymentRepository

__all__ = [
    "BaseRepository",
    "DeploymentRepository",
    "ProductDeploymentRepository",
    "HealthSnapshotRepository",
    "InMemoryDeploymentRepository",
    "InMemoryProductDeploymentRepository",
    "InMemoryHealthSnapshotRepository",
    "DeploymentRepositoryProtocol",
    "ProductDeploymentRepositoryProtocol",
    "HealthSnapshotRepositoryProtocol",
]
