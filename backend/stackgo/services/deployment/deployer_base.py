"""
Abstract base class for single-stack deployers.

The product orchestrator only talks to this interface, so it can drive any
implementation (the container-runtime backed DeploymentService, a remote
agent, a test double).
"""
from abc import ABC, abstractmethod
from typing import Dict, Optional
from uuid import UUID

from stackgo.schemas.catalog import StackDefinition
from stackgo.schemas.operations import OperationResponse, StackDeployResult


class StackDeployer(ABC):
    """
    Abstract base class for stack deployers.

    Implementations must provide methods for:
    - Deploying one stack of the catalog into an environment
    - Removing a deployment created by `deploy_stack`
    """

    @abstractmethod
    async def deploy_stack(
        self,
        environment_id: str,
        stack: StackDefinition,
        deployment_stack_name: str,
        variables: Dict[str, str],
        deployed_by: str,
        session_id: Optional[str] = None,
    ) -> StackDeployResult:
        """
        Deploy a stack and wait until it runs or fails.

        Args:
            environment_id: Target environment
            stack: Catalog definition of the stack
            deployment_stack_name: Name of the deployed stack in the environment
            variables: Fully merged variables
            deployed_by: User that triggered the rollout
            session_id: Progress session to report to, if any

        Returns:
            StackDeployResult; runtime failures are reported with success=False
        """
        pass

    @abstractmethod
    async def remove_deployment(self, deployment_id: UUID) -> OperationResponse:
        """
        Remove a deployment and its containers.

        Returns:
            OperationResponse; runtime failures are reported with success=False
        """
        pass
