"""Resource providers for nixlxc."""

from nixlxc.providers.base import BaseProvider, ProviderStatus
from nixlxc.providers.registry import ProviderRegistry

__all__ = [
    "BaseProvider",
    "ProviderStatus",
    "ProviderRegistry",
]
