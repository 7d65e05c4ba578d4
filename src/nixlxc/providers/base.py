"""Base provider interface."""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any


class ProviderStatus(Enum):
    """Provider resource status."""
    PRESENT = "present"
    ABSENT = "absent"
    UNKNOWN = "unknown"
    ERROR = "error"


class BaseProvider(ABC):
    """Base provider interface that all providers must implement."""

    @abstractmethod
    async def initialize(self, config: Any, registry: Any) -> None:
        """Initialize the provider with configuration and the registry."""
        pass

    @abstractmethod
    async def status(self, key: Any) -> ProviderStatus:
        """Check the current status of a resource."""
        pass
