"""
Repository for HealthSnapshot database operations.

Snapshots are append-only and carry no version.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import delete, desc, select

from stackgo.core.exceptions import HealthSnapshotNotFoundError
from stackgo.models.health import HealthSnapshot
from stackgo.models.records import HealthSnapshotRecord
from stackgo.repositories.base import BaseRepository


class HealthSnapshotRepository(BaseRepository[HealthSnapshot]):
    """Repository for HealthSnapshot database operations."""

    model = HealthSnapshotRecord
    entity = HealthSnapshot
    entity_name = "health snapshot"
    not_found_error = HealthSnapshotNotFoundError
    versioned = False

    def _columns(self, entity: HealthSnapshot) -> Dict[str, Any]:
        return {
            "environment_id": entity.environment_id,
            "deployment_id": entity.deployment_id,
            "captured_at": entity.captured_at_utc,
        }

    def _order_column(self):
        return HealthSnapshotRecord.captured_at

    async def get_latest_for_deployment(self, deployment_id: UUID) -> Optional[HealthSnapshot]:
        history = await self.get_history(deployment_id, limit=1)
        return history[0] if history else None

    async def get_latest_for_environment(self, environment_id: str) -> List[HealthSnapshot]:
        """Latest snapshot of every deployment of the environment."""
        latest: Dict[UUID, HealthSnapshot] = {}
        for snapshot in await self.get_by_environment(environment_id):
            latest.setdefault(snapshot.deployment_id, snapshot)
        return list(latest.values())

    async def get_history(self, deployment_id: UUID, limit: int) -> List[HealthSnapshot]:
        """
        Get the most recent snapshots of a deployment.

        Args:
            deployment_id: Deployment UUID
            limit: Maximum number of snapshots

        Returns:
            Snapshots, newest first
        """
        result = await self.db.execute(
            select(HealthSnapshotRecord)
            .where(HealthSnapshotRecord.deployment_id == deployment_id)
            .order_by(desc(HealthSnapshotRecord.captured_at))
            .limit(limit)
        )
        return self._to_entities(result.scalars().all())

    async def remove_older_than(self, cutoff: datetime) -> int:
        result = await self.db.execute(
            delete(HealthSnapshotRecord).where(HealthSnapshotRecord.captured_at < cutoff)
        )
        return result.rowcount or 0
