"""
Product deployment service.

Deploys, upgrades and removes every stack of a catalog product as one unit.
Stacks are rolled out one at a time in manifest order; each stack outcome is
recorded on the ProductDeployment and persisted before the next stack starts.
Runtime failures never escape: they end up on the stack entry and in the
`{success, message}` response.

Every rollout session reports zero or more progress callbacks followed by
exactly one terminal callback (`Complete` or `Error`).
"""
import asyncio
import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from stackgo.core.events import DomainEvent, EventDispatcher, event_dispatcher
from stackgo.models.product_deployment import (
    ProductDeployment,
    ProductDeploymentStatus,
    StackDeploymentConfig,
)
from stackgo.repositories.contracts import ProductDeploymentRepositoryProtocol
from stackgo.schemas.catalog import ProductDefinition
from stackgo.schemas.operations import (
    AvailableVersion,
    CheckUpgradeResponse,
    DeployProductRequest,
    DeployProductResponse,
    RemoveProductResponse,
    StackConfigRequest,
    StackDeployResult,
    StackResult,
    UpgradeProductRequest,
    UpgradeProductResponse,
)
from stackgo.services.deployment.deployer_base import StackDeployer
from stackgo.services.notifications import (
    PHASE_COMPLETE,
    PHASE_ERROR,
    DeploymentProgress,
    Notification,
    NotificationSeverity,
    NotificationSinkProtocol,
    notifier,
)
from stackgo.services.product.catalog import ProductCatalog
from stackgo.services.product.variables import merge_variables
from stackgo.services.product.versioning import compare_versions

logger = logging.getLogger(__name__)

PHASE_PRODUCT_DEPLOY = "ProductDeploy"
PHASE_PRODUCT_UPGRADE = "ProductUpgrade"
PHASE_PRODUCT_REMOVAL = "ProductRemoval"

DEFAULT_DEPLOYED_BY = "system"


def _session_id(prefix: str, product_name: str) -> str:
    return f"{prefix}-{product_name}-{datetime.utcnow():%Y%m%d%H%M%S%f}"


def _percent(done: int, total: int) -> int:
    return int(done * 100 / total) if total > 0 else 0


def format_rollout_message(pd: ProductDeployment, action: str = "deploy") -> str:
    """Outcome line of a deploy or upgrade rollout."""
    past = "upgraded" if action == "upgrade" else "deployed"
    if pd.status == ProductDeploymentStatus.RUNNING:
        if action == "upgrade":
            return f"Product '{pd.product_name}' upgraded to v{pd.product_version} ({pd.total_stacks} stacks)."
        return f"Product '{pd.product_name}' v{pd.product_version} deployed successfully ({pd.total_stacks} stacks)."
    if pd.status == ProductDeploymentStatus.PARTIALLY_RUNNING:
        return (
            f"Product '{pd.product_name}' partially {past}. "
            f"{pd.completed_stacks}/{pd.total_stacks} stacks running, {pd.failed_stacks} failed."
        )
    if pd.status == ProductDeploymentStatus.FAILED:
        return (
            f"Failed to {action} product '{pd.product_name}'. "
            f"{pd.failed_stacks}/{pd.total_stacks} stacks failed."
        )
    return f"Product '{pd.product_name}' {action} ended with status {pd.status.value}."


class ProductDeploymentService:
    """Service for product-level rollouts."""

    def __init__(
        self,
        products: ProductDeploymentRepositoryProtocol,
        catalog: ProductCatalog,
        deployer: StackDeployer,
        sink: Optional[NotificationSinkProtocol] = None,
        dispatcher: Optional[EventDispatcher] = None,
    ):
        """
        Args:
            products: ProductDeployment repository
            catalog: Product catalog
            deployer: Deploys and removes single stacks
            sink: Receives rollout progress and outcome notifications
            dispatcher: Publishes the aggregate's domain events
        """
        self.products = products
        self.catalog = catalog
        self.deployer = deployer
        self.sink = sink or notifier
        self.dispatcher = dispatcher or event_dispatcher

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def get_product_deployment(self, product_deployment_id: UUID) -> ProductDeployment:
        """
        Raises:
            ProductDeploymentNotFoundError: If no record exists
        """
        return await self.products.get_or_raise(product_deployment_id)

    async def list_product_deployments(self, environment_id: str) -> List[ProductDeployment]:
        return await self.products.get_by_environment(environment_id)

    async def check_upgrade(self, product_deployment_id: UUID) -> CheckUpgradeResponse:
        """
        Report the newer catalog versions of a deployed product.

        The first entry returned by the catalog is the latest candidate; stack
        differences are computed against it.
        """
        pd = await self.products.get(product_deployment_id)
        if pd is None:
            return CheckUpgradeResponse.failed("Product deployment not found.")

        if not pd.can_upgrade:
            return CheckUpgradeResponse.ok(
                upgrade_available=False,
                current_version=pd.product_version,
                can_upgrade=False,
                cannot_upgrade_reason=(
                    "Product deployment must be running or partially running to upgrade. "
                    f"Current status: {pd.status.value}"
                ),
            )

        logger.info(
            f"Checking upgrades for product {pd.product_name} v{pd.product_version} (group: {pd.product_group_id})"
        )
        upgrades = await self.catalog.get_available_upgrades(pd.product_group_id, pd.product_version)
        latest = upgrades[0] if upgrades else None

        new_stacks = removed_stacks = None
        if latest is not None:
            current_names = {s.stack_display_name.lower(): s.stack_display_name for s in pd.stacks}
            latest_names = {s.name.lower(): s.name for s in latest.stacks}
            new_stacks = [name for key, name in latest_names.items() if key not in current_names] or None
            removed_stacks = [name for key, name in current_names.items() if key not in latest_names] or None

        if latest is not None:
            message = (
                f"Upgrade available: {pd.product_version} -> {latest.product_version} "
                f"({len(upgrades)} version(s) available)"
            )
        else:
            message = "Already running the latest version"

        return CheckUpgradeResponse.ok(
            message,
            upgrade_available=latest is not None,
            current_version=pd.product_version,
            latest_version=latest.product_version if latest else None,
            latest_product_id=latest.id if latest else None,
            available_versions=[
                AvailableVersion(
                    version=p.product_version or "unknown",
                    product_id=p.id,
                    stack_count=len(p.stacks),
                )
                for p in upgrades
            ],
            new_stacks=new_stacks,
            removed_stacks=removed_stacks,
            can_upgrade=True,
        )

    # -------------------------------------------------------------------------
    # Deploy
    # -------------------------------------------------------------------------

    async def deploy_product(self, request: DeployProductRequest) -> DeployProductResponse:
        """
        Deploy every requested stack of a catalog product.

        Fails without side effects when the product is unknown, already
        deployed or deploying, or a requested stack is not part of it.
        """
        product = await self.catalog.get_product(request.product_id)
        if product is None:
            return DeployProductResponse.failed(f"Product '{request.product_id}' not found in catalog.")

        existing = await self.products.get_active_by_product_group(request.environment_id, product.group_id)
        if existing is not None:
            if existing.is_in_progress:
                return DeployProductResponse.failed(
                    f"A deployment is already in progress for product '{product.name}'."
                )
            if existing.is_operational:
                return DeployProductResponse.failed(
                    f"Product '{product.name}' is already deployed (status: {existing.status.value}). "
                    "Use upgrade instead."
                )

        if not request.stack_configs:
            return DeployProductResponse.failed("At least one stack configuration is required.")

        configs, error = self._build_stack_configs(product, request.stack_configs, request.shared_variables)
        if error:
            return DeployProductResponse.failed(error)

        pd, events = ProductDeployment.initiate_deployment(
            environment_id=request.environment_id,
            product_group_id=product.group_id,
            product_id=product.id,
            product_name=product.name,
            product_display_name=product.title,
            product_version=product.product_version or "unknown",
            deployed_by=request.user_id or DEFAULT_DEPLOYED_BY,
            stack_configs=configs,
            shared_variables=request.shared_variables,
            continue_on_error=request.continue_on_error,
        )
        await self.products.add(pd)
        await self.products.save_changes()
        await self.dispatcher.publish_all(events)

        logger.info(
            f"Product deployment {pd.id} initiated for {product.name} v{pd.product_version} "
            f"with {pd.total_stacks} stacks"
        )

        session_id = request.session_id or _session_id("product", product.name)
        stack_results = await self._run_rollout(pd, product, session_id, PHASE_PRODUCT_DEPLOY, "deploy")

        return DeployProductResponse(
            success=pd.is_operational,
            message=format_rollout_message(pd, "deploy"),
            product_deployment_id=pd.id,
            product_name=pd.product_name,
            product_version=pd.product_version,
            status=pd.status.value,
            session_id=session_id,
            stack_results=stack_results,
        )

    # -------------------------------------------------------------------------
    # Upgrade
    # -------------------------------------------------------------------------

    async def upgrade_product(self, request: UpgradeProductRequest) -> UpgradeProductResponse:
        """
        Roll a deployed product forward to another catalog version.

        A new ProductDeployment generation is created; stacks keep the
        variable values of the current generation unless overridden.
        Same-version and downgrade requests are rejected.
        """
        existing = await self.products.get(request.product_deployment_id)
        if existing is None:
            return UpgradeProductResponse.failed("Product deployment not found.")
        if not existing.can_upgrade:
            return UpgradeProductResponse.failed(
                f"Product deployment cannot be upgraded. Current status: {existing.status.value}"
            )

        target = await self.catalog.get_product(request.target_product_id)
        if target is None:
            return UpgradeProductResponse.failed(
                f"Target product '{request.target_product_id}' not found in catalog."
            )

        previous_version = existing.product_version
        target_version = target.product_version or "unknown"
        comparison = compare_versions(previous_version, target_version)
        if comparison == 0:
            return UpgradeProductResponse.failed(f"Product is already running version {previous_version}.")
        if comparison > 0:
            return UpgradeProductResponse.failed(
                f"Downgrade from {previous_version} to {target_version} is not supported."
            )

        if not request.stack_configs:
            return UpgradeProductResponse.failed("At least one stack configuration is required.")

        existing_variables = {s.stack_display_name.lower(): s.variables for s in existing.stacks}
        configs, error = self._build_stack_configs(
            target, request.stack_configs, request.shared_variables, existing_variables
        )
        if error:
            return UpgradeProductResponse.failed(error)

        target_names = {c.stack_display_name.lower() for c in configs}
        for stack in existing.stacks:
            if stack.stack_display_name.lower() not in target_names:
                logger.warning(
                    f"Stack '{stack.stack_display_name}' exists in the current deployment but not in "
                    f"v{target_version}; it will not be removed automatically"
                )

        pd, events = ProductDeployment.initiate_upgrade(
            existing=existing,
            target_version=target_version,
            deployed_by=request.user_id or DEFAULT_DEPLOYED_BY,
            stack_configs=configs,
            shared_variables=request.shared_variables,
            continue_on_error=request.continue_on_error,
            product_id=target.id,
        )
        await self.products.add(pd)
        await self.products.save_changes()
        await self.dispatcher.publish_all(events)

        logger.info(
            f"Product upgrade {pd.id} initiated for {pd.product_name} from v{previous_version} "
            f"to v{target_version} with {pd.total_stacks} stacks"
        )

        session_id = request.session_id or _session_id("product-upgrade", target.name)
        stack_results = await self._run_rollout(pd, target, session_id, PHASE_PRODUCT_UPGRADE, "upgrade")

        return UpgradeProductResponse(
            success=pd.is_operational,
            message=format_rollout_message(pd, "upgrade"),
            product_deployment_id=pd.id,
            product_name=pd.product_name,
            previous_version=previous_version,
            new_version=pd.product_version,
            status=pd.status.value,
            session_id=session_id,
            stack_results=stack_results,
        )

    # -------------------------------------------------------------------------
    # Remove
    # -------------------------------------------------------------------------

    async def remove_product(
        self, product_deployment_id: UUID, session_id: Optional[str] = None
    ) -> RemoveProductResponse:
        """
        Remove every stack of a deployed product in reverse deploy order.

        Each stack entry is marked removed even when removing its deployment
        failed; the failure is kept on the entry and reported.
        """
        pd = await self.products.get(product_deployment_id)
        if pd is None:
            return RemoveProductResponse.failed("Product deployment not found.")
        if not pd.can_remove:
            return RemoveProductResponse.failed(
                f"Product deployment cannot be removed. Current status: {pd.status.value}"
            )

        await self._persist(pd, pd.start_removal())
        logger.info(
            f"Product removal {pd.id} initiated for {pd.product_name} v{pd.product_version} "
            f"with {pd.total_stacks} stacks"
        )

        session_id = session_id or _session_id("product-remove", pd.product_name)
        stacks = pd.get_stacks_in_remove_order()
        total = len(stacks)
        stack_results: List[StackResult] = []
        failures = 0
        terminal: Tuple[str, str, Optional[str]] = (
            PHASE_ERROR, f"Removal of product '{pd.product_name}' did not complete.", None
        )

        try:
            for index, stack in enumerate(stacks):
                await self._progress(DeploymentProgress(
                    session_id=session_id,
                    phase=PHASE_PRODUCT_REMOVAL,
                    message=f"Removing stack {index + 1}/{total}: {stack.stack_display_name}",
                    percent_complete=_percent(pd.removed_stacks, total),
                    current_unit=stack.stack_display_name,
                    total_units=total,
                    completed_units=pd.removed_stacks,
                ))
                logger.info(
                    f"Removing stack {index + 1}/{total}: {stack.stack_display_name} "
                    f"(deployment: {stack.deployment_id})"
                )

                result = StackResult(
                    stack_name=stack.stack_name,
                    stack_display_name=stack.stack_display_name,
                    deployment_id=stack.deployment_id,
                    deployment_stack_name=stack.deployment_stack_name,
                    service_count=stack.service_count,
                    success=True,
                )

                if stack.deployment_id is not None:
                    error = await self._remove_stack_deployment(stack.deployment_id, stack.stack_display_name)
                    if error:
                        failures += 1
                        result.success = False
                        result.error_message = error
                        pd.record_stack_removal_error(stack.stack_name, error)
                else:
                    logger.info(f"Stack {stack.stack_display_name} has no deployment to remove")

                stack_results.append(result)
                await self._persist(pd, pd.mark_stack_removed(stack.stack_name))

            removed_cleanly = total - failures
            if failures == 0:
                message = (
                    f"Product '{pd.product_name}' v{pd.product_version} removed successfully "
                    f"({total} stacks)."
                )
                terminal = (PHASE_COMPLETE, message, None)
            else:
                message = (
                    f"Product '{pd.product_name}' removed with {failures} error(s). "
                    f"{removed_cleanly}/{total} stacks removed cleanly."
                )
                terminal = (PHASE_ERROR, message, message)
        finally:
            await self._terminal(session_id, *terminal, total_units=total, completed_units=pd.removed_stacks)

        await self._notify(Notification(
            title="Product removed" if failures == 0 else "Product removal completed with errors",
            message=message,
            severity=NotificationSeverity.SUCCESS if failures == 0 else NotificationSeverity.WARNING,
            metadata={"product_deployment_id": str(pd.id), "action": "remove"},
        ))

        logger.info(
            f"Product removal {pd.id} completed with status {pd.status.value}. "
            f"{pd.removed_stacks}/{total} stacks removed"
        )
        return RemoveProductResponse(
            success=failures == 0,
            message=message,
            product_deployment_id=pd.id,
            product_name=pd.product_name,
            status=pd.status.value,
            session_id=session_id,
            stack_results=stack_results,
        )

    # -------------------------------------------------------------------------
    # Rollout
    # -------------------------------------------------------------------------

    def _build_stack_configs(
        self,
        product: ProductDefinition,
        requested: List[StackConfigRequest],
        shared: Dict[str, str],
        existing_variables: Optional[Dict[str, Dict[str, str]]] = None,
    ) -> Tuple[List[StackDeploymentConfig], Optional[str]]:
        configs = []
        for request in requested:
            stack = product.find_stack(request.stack_id)
            if stack is None:
                return [], f"Stack '{request.stack_id}' not found in product '{product.name}'."

            existing = (existing_variables or {}).get(stack.name.lower())
            configs.append(StackDeploymentConfig(
                stack_name=request.deployment_stack_name,
                stack_display_name=stack.name,
                stack_id=stack.id,
                service_count=len(stack.services),
                variables=merge_variables(stack, existing, shared, request.variables),
            ))
        return configs, None

    async def _run_rollout(
        self,
        pd: ProductDeployment,
        product: ProductDefinition,
        session_id: str,
        phase: str,
        action: str,
    ) -> List[StackResult]:
        """Deploy the stacks of `pd` in order, finalize it and send the outcome."""
        stacks = pd.get_stacks_in_deploy_order()
        total = len(stacks)
        verb = "Upgrading" if action == "upgrade" else "Deploying"
        stack_results: List[StackResult] = []

        try:
            for index, stack in enumerate(stacks):
                await self._progress(DeploymentProgress(
                    session_id=session_id,
                    phase=phase,
                    message=f"{verb} stack {index + 1}/{total}: {stack.stack_display_name}",
                    percent_complete=_percent(pd.completed_stacks, total),
                    current_unit=stack.stack_display_name,
                    total_units=total,
                    completed_units=pd.completed_stacks,
                ))
                logger.info(
                    f"{verb} stack {index + 1}/{total}: {stack.stack_display_name} for product {pd.product_name}"
                )

                result = await self._deploy_stack(pd, product, stack.stack_id, stack.stack_name,
                                                  stack.stack_display_name, stack.variables)

                stack_result = StackResult(
                    stack_name=stack.stack_name,
                    stack_display_name=stack.stack_display_name,
                    service_count=stack.service_count,
                    is_new_in_upgrade=stack.is_new_in_upgrade,
                    deployment_id=result.deployment_id,
                    deployment_stack_name=stack.stack_name if result.deployment_id else None,
                )

                events: List[DomainEvent] = []
                if result.success and result.deployment_id is not None:
                    events += pd.start_stack(stack.stack_name, result.deployment_id, stack.stack_name)
                    events += pd.complete_stack(stack.stack_name)
                    stack_result.success = True
                    logger.info(f"Stack {stack.stack_display_name} deployed successfully")
                else:
                    error = result.message or "Unknown error"
                    if result.deployment_id is not None:
                        events += pd.start_stack(stack.stack_name, result.deployment_id, stack.stack_name)
                    events += pd.fail_stack(stack.stack_name, error)
                    stack_result.error_message = error
                    logger.warning(f"Stack {stack.stack_display_name} failed: {error}")

                stack_results.append(stack_result)
                await self._persist(pd, events)

                if not stack_result.success and not pd.continue_on_error:
                    logger.info(f"Stopping rollout of {pd.product_name} after failure of {stack.stack_display_name}")
                    break

            await self._persist(pd, pd.finalize())
        except asyncio.CancelledError:
            await self._abandon(pd, "Rollout cancelled")
            raise
        finally:
            if pd.status == ProductDeploymentStatus.RUNNING:
                await self._terminal(session_id, PHASE_COMPLETE, format_rollout_message(pd, action),
                                     total_units=total, completed_units=pd.completed_stacks)
            else:
                message = format_rollout_message(pd, action)
                await self._terminal(session_id, PHASE_ERROR, message, message,
                                     total_units=total, completed_units=pd.completed_stacks)

        await self._notify(self._outcome_notification(pd, action))
        logger.info(
            f"Product {action} {pd.id} completed with status {pd.status.value}. "
            f"{pd.completed_stacks}/{total} stacks succeeded"
        )
        return stack_results

    async def _deploy_stack(
        self,
        pd: ProductDeployment,
        product: ProductDefinition,
        stack_id: str,
        deployment_stack_name: str,
        display_name: str,
        variables: Dict[str, str],
    ) -> StackDeployResult:
        stack = product.find_stack(stack_id)
        if stack is None:
            return StackDeployResult.failed(f"Stack '{stack_id}' not found in product '{product.name}'.")

        try:
            return await self.deployer.deploy_stack(
                environment_id=pd.environment_id,
                stack=stack,
                deployment_stack_name=deployment_stack_name,
                variables=dict(variables),
                deployed_by=pd.deployed_by,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Exception deploying stack {display_name}: {e}")
            return StackDeployResult.failed(f"Exception deploying stack '{display_name}': {e}")

    async def _remove_stack_deployment(self, deployment_id: UUID, display_name: str) -> Optional[str]:
        """Remove one child deployment. Returns the error message on failure."""
        try:
            result = await self.deployer.remove_deployment(deployment_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Exception removing stack {display_name}: {e}")
            return f"Exception removing stack '{display_name}': {e}"

        if not result.success:
            logger.warning(f"Stack {display_name} removal failed: {result.message}")
            return result.message or "Unknown error"
        logger.info(f"Stack {display_name} removed successfully")
        return None

    async def _abandon(self, pd: ProductDeployment, reason: str) -> None:
        """Settle an interrupted rollout as Failed without raising."""
        if not pd.is_in_progress or not pd.can_transition_to(ProductDeploymentStatus.FAILED):
            return
        try:
            await self._persist(pd, pd.mark_as_failed(reason))
        except Exception as e:
            logger.error(f"Failed to mark product deployment {pd.id} as failed: {e}")

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _persist(self, pd: ProductDeployment, events: List[DomainEvent]) -> None:
        await self.products.update(pd)
        await self.products.save_changes()
        await self.dispatcher.publish_all(events)

    async def _progress(self, progress: DeploymentProgress) -> None:
        try:
            await self.sink.send_progress(progress)
        except Exception as e:
            logger.debug(f"Failed to send product progress notification: {e}")

    async def _terminal(
        self,
        session_id: str,
        phase: str,
        message: str,
        error: Optional[str] = None,
        total_units: int = 0,
        completed_units: int = 0,
    ) -> None:
        await self._progress(DeploymentProgress(
            session_id=session_id,
            phase=phase,
            message=message,
            percent_complete=100 if phase == PHASE_COMPLETE else _percent(completed_units, total_units),
            total_units=total_units,
            completed_units=completed_units,
            error=error,
        ))

    async def _notify(self, notification: Notification) -> None:
        try:
            await self.sink.send_notification(notification)
        except Exception as e:
            logger.debug(f"Failed to send product notification: {e}")

    @staticmethod
    def _outcome_notification(pd: ProductDeployment, action: str) -> Notification:
        if pd.status == ProductDeploymentStatus.RUNNING:
            title, severity = f"Product {action} succeeded", NotificationSeverity.SUCCESS
        elif pd.status == ProductDeploymentStatus.PARTIALLY_RUNNING:
            title, severity = f"Product {action} partially succeeded", NotificationSeverity.WARNING
        else:
            title, severity = f"Product {action} failed", NotificationSeverity.ERROR
        return Notification(
            title=title,
            message=format_rollout_message(pd, action),
            severity=severity,
            metadata={
                "product_deployment_id": str(pd.id),
                "action": action,
                "product_version": pd.product_version,
                "total_stacks": pd.total_stacks,
                "completed_stacks": pd.completed_stacks,
                "failed_stacks": pd.failed_stacks,
            },
        )
