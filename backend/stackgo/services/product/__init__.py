"""
Product orchestration services.
"""
from stackgo.services.product.catalog import InMemoryProductCatalog, ProductCatalog
from stackgo.services.product.health_sync import ProductHealthSyncService, map_deployment_status
from stackgo.services.product.product_deployment_service import (
    ProductDeploymentService,
    format_rollout_message,
)
from stackgo.services.product.variables import merge_variables
from stackgo.services.product.versioning import compare_versions, is_newer, sort_versions_desc

__all__ = [
    "ProductCatalog",
    "InMemoryProductCatalog",
    "ProductDeploymentService",
    "ProductHealthSyncService",
    "format_rollout_message",
    "map_deployment_status",
    "merge_variables",
    "compare_versions",
    "is_newer",
    "sort_versions_desc",
]
