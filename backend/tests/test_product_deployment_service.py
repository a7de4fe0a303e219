"""
Tests for ProductDeploymentService.

Tests cover:
- Product deploy with and without continue-on-error
- Exactly one terminal progress callback per session
- Validation failures without side effects
- Upgrades, including version checks and variable reuse
- Removal in reverse order, with and without removal errors
- Upgrade availability checks

Run with: pytest backend/tests/test_product_deployment_service.py -v
"""
import asyncio
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest


@pytest.fixture
def catalog(make_stack, make_product):
    from stackgo.services.product.catalog import InMemoryProductCatalog

    return InMemoryProductCatalog([
        make_product("shop-1.0.0", "1.0.0", [
            make_stack("db", variables={"DB_PORT": "5432", "DB_PASSWORD": None}),
            make_stack("api", services=("api", "worker")),
            make_stack("web"),
        ]),
        make_product("shop-1.1.0", "1.1.0", [
            make_stack("db", version="1.1.0", variables={"DB_PORT": "5432"}),
            make_stack("api", version="1.1.0", services=("api", "worker")),
            make_stack("web", version="1.1.0"),
            make_stack("search", version="1.1.0"),
        ]),
    ])


@pytest.fixture
def service(product_repo, catalog, stack_deployer, sink, dispatcher):
    from stackgo.services.product.product_deployment_service import ProductDeploymentService

    return ProductDeploymentService(product_repo, catalog, stack_deployer, sink=sink, dispatcher=dispatcher)


def _stack_configs(*stack_ids, variables=None):
    from stackgo.schemas.operations import StackConfigRequest

    return [
        StackConfigRequest(
            stack_id=stack_id,
            deployment_stack_name=f"shop-{stack_id}",
            variables=(variables or {}).get(stack_id, {}),
        )
        for stack_id in stack_ids
    ]


def _deploy_request(product_id="shop-1.0.0", stacks=("db", "api", "web"), continue_on_error=True, **kwargs):
    from stackgo.schemas.operations import DeployProductRequest

    return DeployProductRequest(
        environment_id="prod",
        product_id=product_id,
        stack_configs=_stack_configs(*stacks, variables=kwargs.pop("variables", None)),
        continue_on_error=continue_on_error,
        session_id="session-1",
        user_id="alice",
        **kwargs,
    )


def _upgrade_request(product_deployment_id, target="shop-1.1.0", stacks=("db", "api", "web", "search"), **kwargs):
    from stackgo.schemas.operations import UpgradeProductRequest

    return UpgradeProductRequest(
        environment_id="prod",
        product_deployment_id=product_deployment_id,
        target_product_id=target,
        stack_configs=_stack_configs(*stacks, variables=kwargs.pop("variables", None)),
        session_id="session-2",
        user_id="bob",
        **kwargs,
    )


class TestDeployProduct:
    """Tests for deploy_product."""

    @pytest.mark.asyncio
    async def test_all_stacks_succeed(self, service, product_repo, stack_deployer, sink):
        from stackgo.models.product_deployment import ProductDeploymentStatus, StackDeploymentStatus
        from stackgo.services.notifications import NotificationSeverity

        response = await service.deploy_product(_deploy_request(shared_variables={"ENV": "prod"}))

        assert response.success
        assert response.status == "running"
        assert response.message == "Product 'shop' v1.0.0 deployed successfully (3 stacks)."
        assert response.session_id == "session-1"
        assert [r.stack_name for r in response.stack_results] == ["shop-db", "shop-api", "shop-web"]
        assert all(r.success for r in response.stack_results)
        assert response.stack_results[1].service_count == 2

        assert [d["stack_id"] for d in stack_deployer.deployed] == ["db", "api", "web"]
        assert stack_deployer.deployed[0]["variables"] == {"DB_PORT": "5432", "ENV": "prod"}
        assert stack_deployer.deployed[0]["deployed_by"] == "alice"

        pd = await product_repo.get(response.product_deployment_id)
        assert pd.status == ProductDeploymentStatus.RUNNING
        assert all(s.status == StackDeploymentStatus.RUNNING for s in pd.stacks)
        assert all(s.deployment_id is not None for s in pd.stacks)

        assert [p.message for p in sink.progress[:3]] == [
            "Deploying stack 1/3: db",
            "Deploying stack 2/3: api",
            "Deploying stack 3/3: web",
        ]
        assert [p.percent_complete for p in sink.progress] == [0, 33, 66, 100]
        assert len(sink.terminal) == 1
        assert sink.progress[-1].phase == "Complete"
        assert sink.notifications[0].severity == NotificationSeverity.SUCCESS

    @pytest.mark.asyncio
    async def test_middle_failure_continues(self, service, product_repo, stack_deployer, sink):
        """The second of three stacks fails; the third is still deployed."""
        from stackgo.models.product_deployment import ProductDeploymentStatus

        stack_deployer.failing.add("api")

        response = await service.deploy_product(_deploy_request(continue_on_error=True))

        assert response.success
        assert response.status == "partially_running"
        assert response.message == "Product 'shop' partially deployed. 2/3 stacks running, 1 failed."
        assert [r.success for r in response.stack_results] == [True, False, True]
        assert response.stack_results[1].error_message == "Deployment failed: api did not start"
        assert [d["stack_id"] for d in stack_deployer.deployed] == ["db", "api", "web"]

        pd = await product_repo.get(response.product_deployment_id)
        assert pd.status == ProductDeploymentStatus.PARTIALLY_RUNNING
        assert pd.completed_stacks == 2
        assert pd.failed_stacks == 1
        assert [p.phase for p in sink.terminal] == ["Error"]

    @pytest.mark.asyncio
    async def test_failure_aborts_without_continue_on_error(self, service, product_repo, stack_deployer, sink):
        from stackgo.models.product_deployment import ProductDeploymentStatus, StackDeploymentStatus

        stack_deployer.failing.add("api")

        response = await service.deploy_product(_deploy_request(continue_on_error=False))

        assert not response.success
        assert response.status == "failed"
        assert response.message == "Failed to deploy product 'shop'. 1/3 stacks failed."
        assert len(response.stack_results) == 2
        assert [d["stack_id"] for d in stack_deployer.deployed] == ["db", "api"]

        pd = await product_repo.get(response.product_deployment_id)
        assert pd.status == ProductDeploymentStatus.FAILED
        assert pd.error_message == "Deployment failed: api did not start"
        assert pd.find_stack("shop-web").status == StackDeploymentStatus.PENDING
        assert len(sink.terminal) == 1

    @pytest.mark.asyncio
    async def test_deployer_exception_is_captured(self, service, product_repo, stack_deployer):
        from stackgo.models.product_deployment import StackDeploymentStatus

        stack_deployer.raising.add("web")

        response = await service.deploy_product(_deploy_request())

        assert response.stack_results[2].error_message == "Exception deploying stack 'web': runtime exploded"
        assert response.stack_results[2].deployment_id is None
        pd = await product_repo.get(response.product_deployment_id)
        assert pd.find_stack("shop-web").status == StackDeploymentStatus.FAILED
        assert pd.find_stack("shop-web").deployment_id is None

    @pytest.mark.asyncio
    async def test_all_stacks_fail(self, service, product_repo, stack_deployer, sink):
        from stackgo.services.notifications import NotificationSeverity

        stack_deployer.failing.update({"db", "api", "web"})

        response = await service.deploy_product(_deploy_request())

        assert not response.success
        pd = await product_repo.get(response.product_deployment_id)
        assert pd.error_message == "All 3 stacks failed"
        assert sink.notifications[0].severity == NotificationSeverity.ERROR

    @pytest.mark.asyncio
    async def test_cancelled_rollout_is_failed_and_reraised(self, service, product_repo, stack_deployer, sink):
        from stackgo.models.product_deployment import ProductDeploymentStatus

        stack_deployer.deploy_stack = AsyncMock(side_effect=asyncio.CancelledError())

        with pytest.raises(asyncio.CancelledError):
            await service.deploy_product(_deploy_request())

        [pd] = await product_repo.get_by_environment("prod")
        assert pd.status == ProductDeploymentStatus.FAILED
        assert pd.error_message == "Rollout cancelled"
        assert [p.phase for p in sink.terminal] == ["Error"]

    @pytest.mark.asyncio
    async def test_unknown_product(self, service, product_repo, sink):
        response = await service.deploy_product(_deploy_request(product_id="garden-1.0.0"))

        assert not response.success
        assert response.message == "Product 'garden-1.0.0' not found in catalog."
        assert len(product_repo) == 0
        assert sink.progress == []

    @pytest.mark.asyncio
    async def test_unknown_stack(self, service, product_repo, stack_deployer):
        response = await service.deploy_product(_deploy_request(stacks=("db", "cache")))

        assert not response.success
        assert response.message == "Stack 'cache' not found in product 'shop'."
        assert len(product_repo) == 0
        assert stack_deployer.deployed == []

    @pytest.mark.asyncio
    async def test_no_stack_configs(self, service, product_repo):
        response = await service.deploy_product(_deploy_request(stacks=()))

        assert not response.success
        assert response.message == "At least one stack configuration is required."

    @pytest.mark.asyncio
    async def test_already_deployed(self, service, product_repo):
        await service.deploy_product(_deploy_request())

        response = await service.deploy_product(_deploy_request())

        assert not response.success
        assert response.message == "Product 'shop' is already deployed (status: running). Use upgrade instead."
        assert len(product_repo) == 1

    @pytest.mark.asyncio
    async def test_failed_product_can_be_deployed_again(self, service, stack_deployer):
        stack_deployer.failing.update({"db", "api", "web"})
        first = await service.deploy_product(_deploy_request())
        stack_deployer.failing.clear()

        second = await service.deploy_product(_deploy_request())

        assert not first.success
        assert second.success
        assert second.product_deployment_id != first.product_deployment_id


class TestUpgradeProduct:
    """Tests for upgrade_product."""

    @pytest.mark.asyncio
    async def test_upgrade_reuses_variables_and_flags_new_stacks(self, service, product_repo, stack_deployer, sink):
        from stackgo.models.product_deployment import ProductDeploymentStatus

        deployed = await service.deploy_product(
            _deploy_request(variables={"db": {"DB_PASSWORD": "s3cret"}})
        )
        stack_deployer.deployed.clear()

        response = await service.upgrade_product(_upgrade_request(deployed.product_deployment_id))

        assert response.success
        assert response.previous_version == "1.0.0"
        assert response.new_version == "1.1.0"
        assert response.message == "Product 'shop' upgraded to v1.1.0 (4 stacks)."
        assert [r.is_new_in_upgrade for r in response.stack_results] == [False, False, False, True]
        assert stack_deployer.deployed[0]["variables"] == {"DB_PORT": "5432", "DB_PASSWORD": "s3cret"}

        pd = await product_repo.get(response.product_deployment_id)
        assert pd.status == ProductDeploymentStatus.RUNNING
        assert pd.upgrade_count == 1
        assert pd.product_id == "shop-1.1.0"
        assert (await product_repo.get_active_by_product_group("prod", "shop")).id == pd.id
        assert [p.message for p in sink.progress if p.session_id == "session-2"][0] == "Upgrading stack 1/4: db"

    @pytest.mark.asyncio
    async def test_override_beats_existing_value(self, service, stack_deployer):
        deployed = await service.deploy_product(
            _deploy_request(variables={"db": {"DB_PASSWORD": "s3cret"}})
        )
        stack_deployer.deployed.clear()

        await service.upgrade_product(_upgrade_request(
            deployed.product_deployment_id, variables={"db": {"db_password": "rotated"}}
        ))

        assert stack_deployer.deployed[0]["variables"]["DB_PASSWORD"] == "rotated"

    @pytest.mark.asyncio
    async def test_same_version_rejected(self, service, stack_deployer):
        deployed = await service.deploy_product(_deploy_request())

        response = await service.upgrade_product(
            _upgrade_request(deployed.product_deployment_id, target="shop-1.0.0", stacks=("db",))
        )

        assert not response.success
        assert response.message == "Product is already running version 1.0.0."

    @pytest.mark.asyncio
    async def test_downgrade_rejected(self, service):
        deployed = await service.deploy_product(
            _deploy_request(product_id="shop-1.1.0", stacks=("db", "api", "web", "search"))
        )

        response = await service.upgrade_product(_upgrade_request(deployed.product_deployment_id, target="shop-1.0.0",
                                                                  stacks=("db",)))

        assert not response.success
        assert response.message == "Downgrade from 1.1.0 to 1.0.0 is not supported."

    @pytest.mark.asyncio
    async def test_failed_product_cannot_upgrade(self, service, stack_deployer):
        stack_deployer.failing.update({"db", "api", "web"})
        deployed = await service.deploy_product(_deploy_request())

        response = await service.upgrade_product(_upgrade_request(deployed.product_deployment_id))

        assert not response.success
        assert response.message == "Product deployment cannot be upgraded. Current status: failed"

    @pytest.mark.asyncio
    async def test_missing_records(self, service):
        deployed = await service.deploy_product(_deploy_request())

        missing_pd = await service.upgrade_product(_upgrade_request(uuid4()))
        missing_target = await service.upgrade_product(
            _upgrade_request(deployed.product_deployment_id, target="shop-9.9.9")
        )

        assert missing_pd.message == "Product deployment not found."
        assert missing_target.message == "Target product 'shop-9.9.9' not found in catalog."


class TestRemoveProduct:
    """Tests for remove_product."""

    @pytest.mark.asyncio
    async def test_removes_in_reverse_order(self, service, product_repo, stack_deployer, sink):
        from stackgo.models.product_deployment import ProductDeploymentStatus

        deployed = await service.deploy_product(_deploy_request())
        ids = [r.deployment_id for r in deployed.stack_results]

        response = await service.remove_product(deployed.product_deployment_id, session_id="remove-1")

        assert response.success
        assert response.status == "removed"
        assert response.message == "Product 'shop' v1.0.0 removed successfully (3 stacks)."
        assert stack_deployer.removed == list(reversed(ids))
        assert [r.stack_name for r in response.stack_results] == ["shop-web", "shop-api", "shop-db"]

        pd = await product_repo.get(deployed.product_deployment_id)
        assert pd.status == ProductDeploymentStatus.REMOVED
        removal = [p for p in sink.progress if p.session_id == "remove-1"]
        assert [p.message for p in removal[:3]] == [
            "Removing stack 1/3: web",
            "Removing stack 2/3: api",
            "Removing stack 3/3: db",
        ]
        assert [p.phase for p in removal if p.is_terminal] == ["Complete"]

    @pytest.mark.asyncio
    async def test_removal_error_still_marks_stack_removed(self, service, product_repo, stack_deployer, sink):
        from stackgo.models.product_deployment import ProductDeploymentStatus, StackDeploymentStatus

        deployed = await service.deploy_product(_deploy_request())
        api_id = deployed.stack_results[1].deployment_id
        stack_deployer.failing_removals.add(api_id)

        response = await service.remove_product(deployed.product_deployment_id, session_id="remove-1")

        assert not response.success
        assert response.message == "Product 'shop' removed with 1 error(s). 2/3 stacks removed cleanly."
        assert response.stack_results[1].error_message == "Failed to remove deployment: runtime unreachable"

        pd = await product_repo.get(deployed.product_deployment_id)
        assert pd.status == ProductDeploymentStatus.REMOVED
        api = pd.find_stack("shop-api")
        assert api.status == StackDeploymentStatus.REMOVED
        assert api.error_message == "Failed to remove deployment: runtime unreachable"
        assert [p.phase for p in sink.progress if p.session_id == "remove-1" and p.is_terminal] == ["Error"]

    @pytest.mark.asyncio
    async def test_remove_requires_operational(self, service, stack_deployer):
        stack_deployer.failing.update({"db", "api", "web"})
        deployed = await service.deploy_product(_deploy_request())

        response = await service.remove_product(deployed.product_deployment_id)

        assert not response.success
        assert response.message == "Product deployment cannot be removed. Current status: failed"
        assert stack_deployer.removed == []

    @pytest.mark.asyncio
    async def test_remove_missing(self, service):
        response = await service.remove_product(uuid4())

        assert not response.success
        assert response.message == "Product deployment not found."


class TestCheckUpgrade:
    """Tests for check_upgrade."""

    @pytest.mark.asyncio
    async def test_newer_version_available(self, product_repo, stack_deployer, sink, dispatcher, make_stack,
                                           make_product):
        """Deployed 1.2.0 with catalog offering 1.3.0 and 1.2.0."""
        from stackgo.services.product.catalog import InMemoryProductCatalog
        from stackgo.services.product.product_deployment_service import ProductDeploymentService

        catalog = InMemoryProductCatalog([
            make_product("shop-1.2.0", "1.2.0", [make_stack("db"), make_stack("legacy")]),
            make_product("shop-1.3.0", "1.3.0", [make_stack("db"), make_stack("search")]),
        ])
        service = ProductDeploymentService(product_repo, catalog, stack_deployer, sink=sink, dispatcher=dispatcher)
        deployed = await service.deploy_product(_deploy_request(product_id="shop-1.2.0", stacks=("db", "legacy")))

        response = await service.check_upgrade(deployed.product_deployment_id)

        assert response.success
        assert response.upgrade_available
        assert response.can_upgrade
        assert response.current_version == "1.2.0"
        assert response.latest_version == "1.3.0"
        assert response.latest_product_id == "shop-1.3.0"
        assert [v.version for v in response.available_versions] == ["1.3.0"]
        assert response.new_stacks == ["search"]
        assert response.removed_stacks == ["legacy"]

    @pytest.mark.asyncio
    async def test_latest_already_deployed(self, service):
        deployed = await service.deploy_product(
            _deploy_request(product_id="shop-1.1.0", stacks=("db", "api", "web", "search"))
        )

        response = await service.check_upgrade(deployed.product_deployment_id)

        assert response.success
        assert not response.upgrade_available
        assert response.latest_version is None
        assert response.new_stacks is None
        assert response.removed_stacks is None
        assert response.message == "Already running the latest version"

    @pytest.mark.asyncio
    async def test_not_operational(self, service, stack_deployer):
        stack_deployer.failing.update({"db", "api", "web"})
        deployed = await service.deploy_product(_deploy_request())

        response = await service.check_upgrade(deployed.product_deployment_id)

        assert response.success
        assert not response.can_upgrade
        assert "Current status: failed" in response.cannot_upgrade_reason

    @pytest.mark.asyncio
    async def test_missing(self, service):
        response = await service.check_upgrade(uuid4())

        assert not response.success
        assert response.message == "Product deployment not found."
