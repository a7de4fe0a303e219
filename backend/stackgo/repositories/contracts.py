"""
Repository contracts consumed by the services.

Both the SQL repositories and the in-memory ones satisfy these protocols.
`update` performs the optimistic concurrency check: when `expected_version`
is omitted, the version observed when the entity was loaded or added is used.
"""
from datetime import datetime
from typing import List, Optional, Protocol
from uuid import UUID

from stackgo.models.deployment import Deployment
from stackgo.models.health import HealthSnapshot
from stackgo.models.product_deployment import ProductDeployment


class DeploymentRepositoryProtocol(Protocol):

    async def get(self, id: UUID) -> Optional[Deployment]:
        ...

    async def get_or_raise(self, id: UUID) -> Deployment:
        ...

    async def get_by_environment(self, environment_id: str) -> List[Deployment]:
        ...

    async def get_active_by_stack_name(self, environment_id: str, stack_name: str) -> Optional[Deployment]:
        """Newest non-removed deployment of a stack."""
        ...

    async def get_running(self, environment_id: Optional[str] = None) -> List[Deployment]:
        ...

    async def get_pending(self) -> List[Deployment]:
        ...

    async def add(self, entity: Deployment) -> None:
        ...

    async def update(self, entity: Deployment, expected_version: Optional[int] = None) -> None:
        ...

    async def remove(self, entity: Deployment) -> None:
        ...

    async def save_changes(self) -> None:
        ...


class ProductDeploymentRepositoryProtocol(Protocol):

    async def get(self, id: UUID) -> Optional[ProductDeployment]:
        ...

    async def get_or_raise(self, id: UUID) -> ProductDeployment:
        ...

    async def get_by_environment(self, environment_id: str) -> List[ProductDeployment]:
        ...

    async def get_active_by_product_group(
        self, environment_id: str, product_group_id: str
    ) -> Optional[ProductDeployment]:
        """Newest non-removed generation of a product in an environment."""
        ...

    async def get_all_active(self) -> List[ProductDeployment]:
        """Newest non-removed generation of every deployed product."""
        ...

    async def add(self, entity: ProductDeployment) -> None:
        ...

    async def update(self, entity: ProductDeployment, expected_version: Optional[int] = None) -> None:
        ...

    async def remove(self, entity: ProductDeployment) -> None:
        ...

    async def save_changes(self) -> None:
        ...


class HealthSnapshotRepositoryProtocol(Protocol):

    async def get(self, id: UUID) -> Optional[HealthSnapshot]:
        ...

    async def get_or_raise(self, id: UUID) -> HealthSnapshot:
        ...

    async def get_by_environment(self, environment_id: str) -> List[HealthSnapshot]:
        ...

    async def get_latest_for_deployment(self, deployment_id: UUID) -> Optional[HealthSnapshot]:
        ...

    async def get_latest_for_environment(self, environment_id: str) -> List[HealthSnapshot]:
        """Latest snapshot of every deployment in the environment."""
        ...

    async def get_history(self, deployment_id: UUID, limit: int) -> List[HealthSnapshot]:
        """Up to `limit` snapshots, newest first."""
        ...

    async def remove_older_than(self, cutoff: datetime) -> int:
        """Delete snapshots captured before `cutoff`. Returns the number removed."""
        ...

    async def add(self, entity: HealthSnapshot) -> None:
        ...

    async def update(self, entity: HealthSnapshot, expected_version: Optional[int] = None) -> None:
        ...

    async def remove(self, entity: HealthSnapshot) -> None:
        ...

    async def save_changes(self) -> None:
        ...
