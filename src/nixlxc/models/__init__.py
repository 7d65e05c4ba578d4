"""Pydantic models for configuration and validation."""

from nixlxc.models.config import (
    NixLxcConfig,
    LoggingConfig,
    PathsConfig,
    ImageSourceConfig,
    DefaultsConfig,
    ProvisioningConfig,
    PlatformConfig,
)
from nixlxc.models.container import ContainerSpec, ConfigSource, FlakeReference, NetworkSpec, Secrets
from nixlxc.models.image import ImageReference
from nixlxc.models.platform import ContainerHandle, InstanceConfig, StoragePool
from nixlxc.models.template import ConfigurationTemplate, TemplateMetadata, TemplateRequirements

__all__ = [
    "NixLxcConfig",
    "LoggingConfig",
    "PathsConfig",
    "ImageSourceConfig",
    "DefaultsConfig",
    "ProvisioningConfig",
    "PlatformConfig",
    "ContainerSpec",
    "ConfigSource",
    "FlakeReference",
    "NetworkSpec",
    "Secrets",
    "ImageReference",
    "ContainerHandle",
    "InstanceConfig",
    "StoragePool",
    "ConfigurationTemplate",
    "TemplateMetadata",
    "TemplateRequirements",
]
