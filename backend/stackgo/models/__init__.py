# Models package
from stackgo.models.deployment import (
    DeployedService,
    Deployment,
    DeploymentPhase,
    DeploymentStatus,
    PhaseRecord,
)
from stackgo.models.health import (
    EnvironmentHealthSummary,
    HealthSnapshot,
    HealthStatus,
    OperationMode,
    SelfHealth,
    ServiceHealth,
    StackHealthSummary,
)
from stackgo.models.observer import (
    MaintenanceObserverConfig,
    ObserverResult,
    ObserverType,
)
from stackgo.models.product_deployment import (
    ProductDeployment,
    ProductDeploymentStatus,
    StackDeployment,
    StackDeploymentConfig,
    StackDeploymentStatus,
)
from stackgo.models.records import (
    DeploymentRecord,
    HealthSnapshotRecord,
    ProductDeploymentRecord,
)
