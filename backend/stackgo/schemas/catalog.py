"""
Pydantic schemas for pre-parsed catalog input.

Stack sources and manifest parsing live outside this package; they hand over
these already-parsed definitions.
"""
from typing import Dict, List, Optional
from pydantic import BaseModel, Field


class ServiceTemplate(BaseModel):
    """One service of a stack definition."""
    name: str
    image: str
    container_name: Optional[str] = None
    environment: Dict[str, str] = Field(default_factory=dict)
    ports: List[str] = Field(default_factory=list)
    volumes: List[str] = Field(default_factory=list)
    depends_on: List[str] = Field(default_factory=list)
    lifecycle: str = "service"  # 'service' or 'init'


class StackVariable(BaseModel):
    """Variable declared by a stack, with its default."""
    name: str
    default_value: Optional[str] = None
    description: Optional[str] = None
    required: bool = False


class ObserverDefinition(BaseModel):
    """Maintenance observer block of a manifest, values still unresolved."""
    type: str
    polling_interval: Optional[str] = None  # "30s", "5m", "00:01:00"
    maintenance_value: str
    normal_value: Optional[str] = None

    # SQL
    connection_string: Optional[str] = None
    connection_name: Optional[str] = None
    property_name: Optional[str] = None
    query: Optional[str] = None

    # HTTP
    url: Optional[str] = None
    method: str = "GET"
    headers: Dict[str, str] = Field(default_factory=dict)
    timeout: Optional[str] = None
    json_path: Optional[str] = None

    # File
    path: Optional[str] = None
    mode: Optional[str] = None
    content_pattern: Optional[str] = None


class StackDefinition(BaseModel):
    """A deployable stack from the catalog."""
    id: str
    name: str
    display_name: Optional[str] = None
    version: Optional[str] = None
    services: List[ServiceTemplate] = Field(default_factory=list)
    variables: List[StackVariable] = Field(default_factory=list)
    volumes: List[str] = Field(default_factory=list)
    networks: List[str] = Field(default_factory=list)
    maintenance_observer: Optional[ObserverDefinition] = None

    @property
    def title(self) -> str:
        return self.display_name or self.name


class ProductDefinition(BaseModel):
    """A catalog product: one or more stacks deployed as a unit."""
    id: str
    group_id: str
    name: str
    display_name: Optional[str] = None
    product_version: Optional[str] = None
    description: Optional[str] = None
    stacks: List[StackDefinition] = Field(default_factory=list)

    @property
    def title(self) -> str:
        return self.display_name or self.name

    def find_stack(self, stack_id: str) -> Optional[StackDefinition]:
        """Case-insensitive lookup by stack id."""
        key = (stack_id or "").lower()
        return next((s for s in self.stacks if s.id.lower() == key), None)
