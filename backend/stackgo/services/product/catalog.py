"""
Product catalog contract.

Stack sources and manifest parsing belong to the host; the orchestrator only
needs to look products up and list the newer versions of a product group.
"""
import logging
from functools import cmp_to_key
from typing import Dict, Iterable, List, Optional, Protocol

from stackgo.schemas.catalog import ProductDefinition
from stackgo.services.product.versioning import compare_versions, is_newer

logger = logging.getLogger(__name__)


class ProductCatalog(Protocol):
    """Protocol defining the product catalog interface."""

    async def get_product(self, product_id: str) -> Optional[ProductDefinition]:
        ...

    async def get_available_upgrades(self, group_id: str, current_version: str) -> List[ProductDefinition]:
        """Versions of the group newer than `current_version`, newest first."""
        ...


class InMemoryProductCatalog:
    """Catalog backed by a dict of product definitions."""

    def __init__(self, products: Optional[Iterable[ProductDefinition]] = None):
        self._products: Dict[str, ProductDefinition] = {}
        for product in products or []:
            self.add(product)

    def add(self, product: ProductDefinition) -> None:
        self._products[product.id.lower()] = product
        logger.debug(f"Catalog entry added: {product.id} (group {product.group_id}, v{product.product_version})")

    async def get_product(self, product_id: str) -> Optional[ProductDefinition]:
        return self._products.get((product_id or "").lower())

    async def get_available_upgrades(self, group_id: str, current_version: str) -> List[ProductDefinition]:
        group = (group_id or "").lower()
        candidates = [
            p for p in self._products.values()
            if p.group_id.lower() == group and is_newer(p.product_version, current_version)
        ]
        return sorted(
            candidates,
            key=cmp_to_key(lambda a, b: compare_versions(a.product_version, b.product_version)),
            reverse=True,
        )
