"""
Tests for ProductHealthSyncService.

Tests cover:
- Mirroring Running, Failed and Removed child statuses
- Re-deriving Running and PartiallyRunning
- Leaving transitional and in-progress records alone

Run with: pytest backend/tests/test_product_health_sync.py -v
"""
import pytest


async def _running_deployment(deployment_repo, stack_name):
    from stackgo.models.deployment import DeployedService, Deployment

    deployment, _ = Deployment.start(
        environment_id="prod", stack_name=stack_name, project_name=stack_name, deployed_by="alice"
    )
    deployment.mark_as_running([DeployedService(service_name="api")])
    await deployment_repo.add(deployment)
    return deployment


async def _operational_product(product_repo, deployment_repo, names=("db", "api")):
    from stackgo.models.product_deployment import ProductDeployment, StackDeploymentConfig

    configs = [
        StackDeploymentConfig(stack_name=f"shop-{n}", stack_display_name=n, stack_id=n, service_count=1)
        for n in names
    ]
    pd, _ = ProductDeployment.initiate_deployment(
        environment_id="prod",
        product_group_id="shop",
        product_id="shop-1.0.0",
        product_name="shop",
        product_display_name="Shop",
        product_version="1.0.0",
        deployed_by="alice",
        stack_configs=configs,
    )
    deployments = {}
    for name in names:
        deployment = await _running_deployment(deployment_repo, f"shop-{name}")
        deployments[name] = deployment
        pd.start_stack(f"shop-{name}", deployment.id, f"shop-{name}")
        pd.complete_stack(f"shop-{name}")
    await product_repo.add(pd)
    return pd, deployments


class TestMapDeploymentStatus:
    """Tests for map_deployment_status."""

    def test_only_settled_statuses_are_mapped(self):
        from stackgo.models.deployment import DeploymentStatus
        from stackgo.models.product_deployment import StackDeploymentStatus
        from stackgo.services.product.health_sync import map_deployment_status

        assert map_deployment_status(DeploymentStatus.RUNNING) == StackDeploymentStatus.RUNNING
        assert map_deployment_status(DeploymentStatus.FAILED) == StackDeploymentStatus.FAILED
        assert map_deployment_status(DeploymentStatus.REMOVED) == StackDeploymentStatus.REMOVED
        assert map_deployment_status(DeploymentStatus.PENDING) is None
        assert map_deployment_status(DeploymentStatus.STOPPED) is None


class TestSyncProduct:
    """Tests for sync_product and sync_all."""

    @pytest.mark.asyncio
    async def test_failed_child_makes_product_partially_running(self, product_repo, deployment_repo):
        from stackgo.models.product_deployment import ProductDeploymentStatus, StackDeploymentStatus
        from stackgo.services.product.health_sync import ProductHealthSyncService

        pd, deployments = await _operational_product(product_repo, deployment_repo)
        api = await deployment_repo.get(deployments["api"].id)
        api.mark_as_failed("container crashed")
        await deployment_repo.update(api)
        sync = ProductHealthSyncService(product_repo, deployment_repo)

        assert await sync.sync_product(await product_repo.get(pd.id))

        stored = await product_repo.get(pd.id)
        assert stored.status == ProductDeploymentStatus.PARTIALLY_RUNNING
        assert stored.error_message == "1 of 2 stacks failed"
        assert stored.find_stack("shop-api").status == StackDeploymentStatus.FAILED
        assert stored.find_stack("shop-api").error_message == "Detected by health sync"

    @pytest.mark.asyncio
    async def test_recovered_child_restores_running(self, product_repo, deployment_repo):
        from stackgo.models.product_deployment import ProductDeploymentStatus, StackDeploymentStatus
        from stackgo.services.product.health_sync import ProductHealthSyncService

        pd, _ = await _operational_product(product_repo, deployment_repo)
        stored = await product_repo.get(pd.id)
        stored.sync_stack_health("shop-api", StackDeploymentStatus.FAILED, "stale")
        stored.recalculate_product_status()
        await product_repo.update(stored)
        sync = ProductHealthSyncService(product_repo, deployment_repo)

        assert await sync.sync_product(await product_repo.get(pd.id))

        stored = await product_repo.get(pd.id)
        assert stored.status == ProductDeploymentStatus.RUNNING
        assert stored.error_message is None

    @pytest.mark.asyncio
    async def test_stopped_child_is_left_alone(self, product_repo, deployment_repo):
        from stackgo.services.product.health_sync import ProductHealthSyncService

        pd, deployments = await _operational_product(product_repo, deployment_repo)
        db = await deployment_repo.get(deployments["db"].id)
        db.mark_as_stopped()
        await deployment_repo.update(db)
        saves = product_repo.save_count
        sync = ProductHealthSyncService(product_repo, deployment_repo)

        assert not await sync.sync_product(await product_repo.get(pd.id))
        assert product_repo.save_count == saves

    @pytest.mark.asyncio
    async def test_in_progress_product_is_skipped(self, product_repo, deployment_repo):
        from stackgo.models.product_deployment import ProductDeployment, StackDeploymentConfig
        from stackgo.services.product.health_sync import ProductHealthSyncService

        pd, _ = ProductDeployment.initiate_deployment(
            environment_id="prod", product_group_id="shop", product_id="shop-1.0.0", product_name="shop",
            product_display_name="Shop", product_version="1.0.0", deployed_by="alice",
            stack_configs=[StackDeploymentConfig(stack_name="shop-db", stack_display_name="db", stack_id="db")],
        )
        await product_repo.add(pd)
        sync = ProductHealthSyncService(product_repo, deployment_repo)

        assert not await sync.sync_product(pd)

    @pytest.mark.asyncio
    async def test_sync_all_counts_changed_products(self, product_repo, deployment_repo):
        from stackgo.services.product.health_sync import ProductHealthSyncService

        _, deployments = await _operational_product(product_repo, deployment_repo)
        api = await deployment_repo.get(deployments["api"].id)
        api.mark_as_failed("container crashed")
        await deployment_repo.update(api)
        sync = ProductHealthSyncService(product_repo, deployment_repo)

        assert await sync.sync_all() == 1
        assert await sync.sync_all() == 0
