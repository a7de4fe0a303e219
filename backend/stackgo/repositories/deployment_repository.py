"""
Repository for Deployment aggregate database operations.
"""
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, desc, select

from stackgo.core.exceptions import DeploymentNotFoundError
from stackgo.models.deployment import Deployment, DeploymentStatus
from stackgo.models.records import DeploymentRecord
from stackgo.repositories.base import BaseRepository


class DeploymentRepository(BaseRepository[Deployment]):
    """Repository for Deployment database operations."""

    model = DeploymentRecord
    entity = Deployment
    entity_name = "deployment"
    not_found_error = DeploymentNotFoundError

    def _columns(self, entity: Deployment) -> Dict[str, Any]:
        return {
            "environment_id": entity.environment_id,
            "stack_name": entity.stack_name,
            "status": entity.status.value,
            "created_at": entity.created_at,
        }

    async def get_active_by_stack_name(self, environment_id: str, stack_name: str) -> Optional[Deployment]:
        """Newest deployment of a stack that has not been removed."""
        result = await self.db.execute(
            select(DeploymentRecord)
            .where(
                and_(
                    DeploymentRecord.environment_id == environment_id,
                    DeploymentRecord.stack_name == stack_name,
                    DeploymentRecord.status != DeploymentStatus.REMOVED.value,
                )
            )
            .order_by(desc(DeploymentRecord.created_at))
            .limit(1)
        )
        record = result.scalar_one_or_none()
        return self._to_entity(record) if record else None

    async def get_running(self, environment_id: Optional[str] = None) -> List[Deployment]:
        """Running deployments, optionally limited to one environment."""
        return await self._get_by_status(DeploymentStatus.RUNNING, environment_id)

    async def get_pending(self) -> List[Deployment]:
        """Deployments still rolling out, oldest first."""
        return await self._get_by_status(DeploymentStatus.PENDING)

    async def _get_by_status(
        self, status: DeploymentStatus, environment_id: Optional[str] = None
    ) -> List[Deployment]:
        conditions = [DeploymentRecord.status == status.value]
        if environment_id:
            conditions.append(DeploymentRecord.environment_id == environment_id)

        result = await self.db.execute(
            select(DeploymentRecord)
            .where(and_(*conditions))
            .order_by(DeploymentRecord.created_at)
        )
        return self._to_entities(result.scalars().all())
