"""
Repository for ProductDeployment aggregate database operations.
"""
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, desc, select

from stackgo.core.exceptions import ProductDeploymentNotFoundError
from stackgo.models.product_deployment import ProductDeployment, ProductDeploymentStatus
from stackgo.models.records import ProductDeploymentRecord
from stackgo.repositories.base import BaseRepository


class ProductDeploymentRepository(BaseRepository[ProductDeployment]):
    """Repository for ProductDeployment database operations."""

    model = ProductDeploymentRecord
    entity = ProductDeployment
    entity_name = "product deployment"
    not_found_error = ProductDeploymentNotFoundError

    def _columns(self, entity: ProductDeployment) -> Dict[str, Any]:
        return {
            "environment_id": entity.environment_id,
            "product_group_id": entity.product_group_id,
            "status": entity.status.value,
            "created_at": entity.created_at,
        }

    async def get_active_by_product_group(
        self, environment_id: str, product_group_id: str
    ) -> Optional[ProductDeployment]:
        """Newest generation of a product that has not been removed."""
        result = await self.db.execute(
            select(ProductDeploymentRecord)
            .where(
                and_(
                    ProductDeploymentRecord.environment_id == environment_id,
                    ProductDeploymentRecord.product_group_id == product_group_id,
                    ProductDeploymentRecord.status != ProductDeploymentStatus.REMOVED.value,
                )
            )
            .order_by(desc(ProductDeploymentRecord.created_at))
            .limit(1)
        )
        record = result.scalar_one_or_none()
        return self._to_entity(record) if record else None

    async def get_all_active(self) -> List[ProductDeployment]:
        """Newest non-removed generation per (environment, product group)."""
        result = await self.db.execute(
            select(ProductDeploymentRecord)
            .where(ProductDeploymentRecord.status != ProductDeploymentStatus.REMOVED.value)
            .order_by(desc(ProductDeploymentRecord.created_at))
        )
        newest = {}
        for record in result.scalars().all():
            newest.setdefault((record.environment_id, record.product_group_id), record)
        return self._to_entities(newest.values())
