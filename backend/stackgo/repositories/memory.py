"""
In-memory repositories for embedding hosts and tests.

Aggregates are stored as deep-copied documents, so callers never share
state with the store; every `get` returns a fresh aggregate.
"""
import copy
from datetime import datetime
from typing import Any, Callable, Dict, Generic, List, Optional, Type, TypeVar
from uuid import UUID

from stackgo.core.exceptions import (
    ConcurrencyError,
    DeploymentNotFoundError,
    HealthSnapshotNotFoundError,
    NotFoundError,
    ProductDeploymentNotFoundError,
)
from stackgo.models.deployment import Deployment, DeploymentStatus
from stackgo.models.health import HealthSnapshot
from stackgo.models.product_deployment import ProductDeployment, ProductDeploymentStatus

A = TypeVar("A")


class InMemoryRepository(Generic[A]):
    """Dict-backed document store with the same contract as the SQL repositories."""

    entity: Type[A]
    entity_name: str = "entity"
    not_found_error: Type[NotFoundError] = NotFoundError
    versioned: bool = True

    def __init__(self):
        self._documents: Dict[UUID, Dict[str, Any]] = {}
        self.save_count = 0

    def _load(self, document: Dict[str, Any]) -> A:
        entity = self.entity.from_dict(copy.deepcopy(document))
        if self.versioned:
            entity.persisted_version = document["version"]
        return entity

    def _select(self, predicate: Callable[[Dict[str, Any]], bool], order_key: str, newest_first: bool = True) -> List[A]:
        documents = [d for d in self._documents.values() if predicate(d)]
        documents.sort(key=lambda d: d[order_key], reverse=newest_first)
        return [self._load(d) for d in documents]

    async def get(self, id: UUID) -> Optional[A]:
        document = self._documents.get(id)
        return self._load(document) if document else None

    async def get_or_raise(self, id: UUID) -> A:
        entity = await self.get(id)
        if entity is None:
            raise self.not_found_error(str(id))
        return entity

    async def get_by_environment(self, environment_id: str) -> List[A]:
        return self._select(lambda d: d["environment_id"] == environment_id, self._order_key())

    def _order_key(self) -> str:
        return "created_at"

    async def add(self, entity: A) -> None:
        self._documents[entity.id] = copy.deepcopy(entity.to_dict())
        if self.versioned:
            entity.persisted_version = entity.version

    async def update(self, entity: A, expected_version: Optional[int] = None) -> None:
        stored = self._documents.get(entity.id)
        if stored is None:
            raise self.not_found_error(str(entity.id))
        if self.versioned:
            expected = expected_version
            if expected is None:
                expected = entity.persisted_version
            if expected is None:
                expected = stored["version"]
            if stored["version"] != expected:
                raise ConcurrencyError(self.entity_name, str(entity.id), expected, stored["version"])
        self._documents[entity.id] = copy.deepcopy(entity.to_dict())
        if self.versioned:
            entity.persisted_version = entity.version

    async def remove(self, entity: A) -> None:
        self._documents.pop(entity.id, None)

    async def save_changes(self) -> None:
        self.save_count += 1

    def __len__(self) -> int:
        return len(self._documents)


class InMemoryDeploymentRepository(InMemoryRepository[Deployment]):
    entity = Deployment
    entity_name = "deployment"
    not_found_error = DeploymentNotFoundError

    async def get_active_by_stack_name(self, environment_id: str, stack_name: str) -> Optional[Deployment]:
        matches = self._select(
            lambda d: d["environment_id"] == environment_id
            and d["stack_name"] == stack_name
            and d["status"] != DeploymentStatus.REMOVED.value,
            "created_at",
        )
        return matches[0] if matches else None

    async def get_running(self, environment_id: Optional[str] = None) -> List[Deployment]:
        return self._select(
            lambda d: d["status"] == DeploymentStatus.RUNNING.value
            and (environment_id is None or d["environment_id"] == environment_id),
            "created_at",
            newest_first=False,
        )

    async def get_pending(self) -> List[Deployment]:
        return self._select(
            lambda d: d["status"] == DeploymentStatus.PENDING.value,
            "created_at",
            newest_first=False,
        )


class InMemoryProductDeploymentRepository(InMemoryRepository[ProductDeployment]):
    entity = ProductDeployment
    entity_name = "product deployment"
    not_found_error = ProductDeploymentNotFoundError

    async def get_active_by_product_group(
        self, environment_id: str, product_group_id: str
    ) -> Optional[ProductDeployment]:
        matches = self._select(
            lambda d: d["environment_id"] == environment_id
            and d["product_group_id"] == product_group_id
            and d["status"] != ProductDeploymentStatus.REMOVED.value,
            "created_at",
        )
        return matches[0] if matches else None

    async def get_all_active(self) -> List[ProductDeployment]:
        newest: Dict[tuple, ProductDeployment] = {}
        for pd in self._select(lambda d: d["status"] != ProductDeploymentStatus.REMOVED.value, "created_at"):
            newest.setdefault((pd.environment_id, pd.product_group_id), pd)
        return list(newest.values())


class InMemoryHealthSnapshotRepository(InMemoryRepository[HealthSnapshot]):
    entity = HealthSnapshot
    entity_name = "health snapshot"
    not_found_error = HealthSnapshotNotFoundError
    versioned = False

    def _order_key(self) -> str:
        return "captured_at_utc"

    async def get_latest_for_deployment(self, deployment_id: UUID) -> Optional[HealthSnapshot]:
        history = await self.get_history(deployment_id, limit=1)
        return history[0] if history else None

    async def get_latest_for_environment(self, environment_id: str) -> List[HealthSnapshot]:
        latest: Dict[UUID, HealthSnapshot] = {}
        for snapshot in await self.get_by_environment(environment_id):
            latest.setdefault(snapshot.deployment_id, snapshot)
        return list(latest.values())

    async def get_history(self, deployment_id: UUID, limit: int) -> List[HealthSnapshot]:
        key = str(deployment_id)
        return self._select(lambda d: d["deployment_id"] == key, "captured_at_utc")[:limit]

    async def remove_older_than(self, cutoff: datetime) -> int:
        stale = [
            id for id, d in self._documents.items()
            if datetime.fromisoformat(d["captured_at_utc"]) < cutoff
        ]
        for id in stale:
            del self._documents[id]
        return len(stale)
