"""Models for data returned by the host platform."""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class InstanceConfig(BaseModel):
    """Subset of an instance's platform configuration."""
    instance_id: int
    hostname: Optional[str] = None
    unprivileged: bool = False
    raw: Dict[str, str] = Field(default_factory=dict)


class StoragePool(BaseModel):
    """A storage pool as reported by the platform (sizes in KiB)."""
    name: str
    type: str
    status: str
    total: int = 0
    used: int = 0
    available: int = 0


class ContainerHandle(BaseModel):
    """Result of a successful provisioning attempt."""
    instance_id: int
    hostname: str
    image: Optional[str] = None
    template: Optional[str] = None
    notes: List[str] = Field(default_factory=list)
    requires_impure: bool = Field(default=False, description="Rebuilds need --impure")
