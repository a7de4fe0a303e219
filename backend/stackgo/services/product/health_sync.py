"""
Product deployment health sync.

Mirrors the status of each child Deployment onto its stack entry and
re-derives Running / PartiallyRunning for operational products. Only
Running, Failed and Removed are mirrored; transitional child states are
left alone so an active operation is never interfered with.
"""
import logging
from typing import Optional

from stackgo.models.deployment import DeploymentStatus
from stackgo.models.product_deployment import ProductDeployment, StackDeploymentStatus
from stackgo.repositories.contracts import (
    DeploymentRepositoryProtocol,
    ProductDeploymentRepositoryProtocol,
)

logger = logging.getLogger(__name__)

_STATUS_MAP = {
    DeploymentStatus.RUNNING: StackDeploymentStatus.RUNNING,
    DeploymentStatus.FAILED: StackDeploymentStatus.FAILED,
    DeploymentStatus.REMOVED: StackDeploymentStatus.REMOVED,
}


def map_deployment_status(status: DeploymentStatus) -> Optional[StackDeploymentStatus]:
    return _STATUS_MAP.get(status)


class ProductHealthSyncService:
    """Keeps product stack entries in line with their deployments."""

    def __init__(
        self,
        products: ProductDeploymentRepositoryProtocol,
        deployments: DeploymentRepositoryProtocol,
    ):
        self.products = products
        self.deployments = deployments

    async def sync_product(self, pd: ProductDeployment) -> bool:
        """Sync one product. Returns True when it was changed and saved."""
        if not pd.is_operational:
            return False

        changed = False
        for stack in pd.stacks:
            if stack.deployment_id is None:
                continue
            deployment = await self.deployments.get(stack.deployment_id)
            if deployment is None:
                continue
            target = map_deployment_status(deployment.status)
            if target is None:
                continue

            previous = stack.status
            error = "Detected by health sync" if deployment.status == DeploymentStatus.FAILED else None
            if pd.sync_stack_health(stack.stack_name, target, error):
                logger.info(
                    f"Health sync: stack '{stack.stack_name}' in product '{pd.product_name}' "
                    f"corrected from {previous.value} to {target.value}"
                )
                changed = True

        if not changed:
            return False

        if pd.recalculate_product_status():
            logger.info(f"Health sync: product '{pd.product_name}' status recalculated to {pd.status.value}")

        await self.products.update(pd)
        await self.products.save_changes()
        return True

    async def sync_all(self) -> int:
        """
        Sync every active product.

        Returns:
            Number of products that changed
        """
        changed = 0
        for pd in await self.products.get_all_active():
            try:
                if await self.sync_product(pd):
                    changed += 1
            except Exception as e:
                logger.error(f"Error syncing health of product deployment {pd.id}: {e}")
        return changed
