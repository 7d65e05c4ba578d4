"""Configuration models."""

from typing import List, Optional
from pydantic import BaseModel, Field, validator


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = Field(default="INFO")

    @validator("level")
    def validate_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}")
        return v.upper()

    class Config:
        """Pydantic config."""
        frozen = True


class PathsConfig(BaseModel):
    """Host filesystem locations."""
    image_cache_dir: str = Field(default="/var/lib/vz/template/cache")
    platform_template_dir: str = Field(default="/var/lib/vz/template/cache")
    template_storage: str = Field(default="local", description="Storage id holding vztmpl archives")
    templates_dir: Optional[str] = Field(None, description="Template store; bundled templates when unset")

    class Config:
        """Pydantic config."""
        frozen = True


class ImageSourceConfig(BaseModel):
    """Remote NixOS image source."""
    url_template: str = Field(
        default=(
            "https://hydra.nixos.org/job/nixos/release-{version}/"
            "nixos.proxmoxLXC.x86_64-linux/latest/download-by-type/file/system-tarball"
        )
    )
    filename_template: str = Field(default="nixos-{version}-x86_64-linux.tar.xz")
    timeout: float = Field(default=600.0, gt=0)

    class Config:
        """Pydantic config."""
        frozen = True


class DefaultsConfig(BaseModel):
    """Default provisioning parameters, applied where a spec leaves a field unset."""
    nixos_version: str = Field(default="25.05")
    cpus: int = Field(default=2, ge=1)
    memory: int = Field(default=2048, ge=16, description="MiB")
    swap: int = Field(default=512, ge=0, description="MiB")
    disk: int = Field(default=8, ge=1, description="GiB")
    storage: str = Field(default="local-lvm")
    bridge: str = Field(default="vmbr0")
    cidr: int = Field(default=24, ge=1, le=32)
    dns: str = Field(default="1.1.1.1")
    tags: List[str] = Field(default_factory=lambda: ["nixos"])
    unprivileged: bool = Field(default=False)
    nesting: bool = Field(default=True)
    start_on_boot: bool = Field(default=True)

    class Config:
        """Pydantic config."""
        frozen = True


class ProvisioningConfig(BaseModel):
    """Workflow timing and guest paths."""
    settle_delay: float = Field(default=5.0, ge=0)
    ready_timeout: int = Field(default=30, ge=0)
    guest_config_path: str = Field(default="/etc/nixos/configuration.nix")
    guest_script_path: str = Field(default="/root/setup-nixos.sh")

    class Config:
        """Pydantic config."""
        frozen = True


class PlatformConfig(BaseModel):
    """Proxmox VE command-line tools."""
    pct: str = Field(default="pct")
    pvesh: str = Field(default="pvesh")
    pvesm: str = Field(default="pvesm")
    arch: str = Field(default="amd64")
    ostype: str = Field(default="nixos")
    create_timeout: int = Field(default=600, ge=1)

    class Config:
        """Pydantic config."""
        frozen = True


class NixLxcConfig(BaseModel):
    """Main configuration model."""
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    image: ImageSourceConfig = Field(default_factory=ImageSourceConfig)
    defaults: DefaultsConfig = Field(default_factory=DefaultsConfig)
    provisioning: ProvisioningConfig = Field(default_factory=ProvisioningConfig)
    platform: PlatformConfig = Field(default_factory=PlatformConfig)

    class Config:
        """Pydantic config."""
        extra = "ignore"
        frozen = True
