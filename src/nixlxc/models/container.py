"""Container specification models."""

import ipaddress
import re
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, validator


_HOSTNAME_RE = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")


def guest_hostname(platform_hostname: Optional[str]) -> Optional[str]:
    """First label of a platform hostname, or None if it is not a valid label.

    NixOS `networking.hostName` holds a single label; the domain part of a
    name such as `web1.lan` is dropped.
    """
    if not platform_hostname:
        return None
    label = platform_hostname.strip().split(".", 1)[0]
    return label if _HOSTNAME_RE.match(label) else None


class ConfigSource(Enum):
    """Where the guest configuration comes from."""
    DEFAULT = "default"
    TEMPLATE = "template"
    FLAKE = "flake"


class NetworkSpec(BaseModel):
    """Network interface specification."""
    mode: Literal["dhcp", "static"] = Field(default="dhcp")
    address: Optional[str] = None
    prefix_length: Optional[int] = Field(None, ge=1, le=32)
    gateway: Optional[str] = None
    bridge: Optional[str] = None
    dns: Optional[str] = None

    @validator("address", "gateway", "dns")
    def validate_ip(cls, v):
        """Validate IP address fields."""
        if v is not None:
            ipaddress.ip_address(v)
        return v

    @classmethod
    def parse(
        cls,
        ip: Optional[str] = None,
        cidr: Optional[int] = None,
        gateway: Optional[str] = None,
        bridge: Optional[str] = None,
        dns: Optional[str] = None,
    ) -> "NetworkSpec":
        """Build a network spec from `dhcp`, `addr` or `addr/prefix`."""
        if not ip or ip.lower() == "dhcp":
            return cls(mode="dhcp", bridge=bridge, dns=dns)

        address, _, prefix = ip.partition("/")
        if prefix:
            cidr = int(prefix)
        return cls(
            mode="static",
            address=address,
            prefix_length=cidr,
            gateway=gateway,
            bridge=bridge,
            dns=dns,
        )

    def ip_config(self, default_prefix: int = 24) -> str:
        """Render the platform `ip=` network option."""
        if self.mode == "dhcp":
            return "ip=dhcp"
        prefix = self.prefix_length or default_prefix
        return f"ip={self.address}/{prefix},gw={self.gateway}"


class FlakeReference(BaseModel):
    """Remote, pinnable configuration reference."""
    url: str = Field(..., description="Flake URL or registry shorthand")
    rev: Optional[str] = Field(None, description="Pinned revision")
    attribute: Optional[str] = Field(None, description="nixosModules output to import")


class ContainerSpec(BaseModel):
    """Container specification.

    Resource and flag fields left as ``None`` are filled from the configured
    defaults by the orchestrator before any platform call is made.
    """
    id: Optional[int] = Field(None, ge=100, description="Container id")
    name: Optional[str] = Field(None, description="Hostname")
    cpus: Optional[int] = Field(None, ge=1)
    memory: Optional[int] = Field(None, ge=16)
    swap: Optional[int] = Field(None, ge=0)
    disk: Optional[int] = Field(None, ge=1)
    storage: Optional[str] = None
    network: NetworkSpec = Field(default_factory=NetworkSpec)
    unprivileged: Optional[bool] = None
    nesting: Optional[bool] = None
    start_on_boot: Optional[bool] = None
    tags: Optional[List[str]] = None
    nixos_version: Optional[str] = None
    template: Optional[str] = Field(None, description="Named template")
    flake: Optional[FlakeReference] = Field(None, description="Remote reference")
    variables: Dict[str, str] = Field(default_factory=dict, description="Template variable overrides")

    class Config:
        """Pydantic config."""
        extra = "ignore"

    @validator("name")
    def validate_name(cls, v):
        """Validate hostname."""
        if v is not None and not _HOSTNAME_RE.match(v):
            raise ValueError(f"Invalid hostname: {v}")
        return v

    @property
    def source(self) -> ConfigSource:
        """Configuration source, remote reference taking priority."""
        if self.flake is not None:
            return ConfigSource.FLAKE
        if self.template:
            return ConfigSource.TEMPLATE
        return ConfigSource.DEFAULT

    @property
    def hostname(self) -> str:
        if self.name:
            return self.name
        if self.id is not None:
            return f"nixos-ct-{self.id}"
        return "nixos"

    @property
    def privileged(self) -> bool:
        return not self.unprivileged


class Secrets(BaseModel):
    """Credentials injected into the guest. Never persisted."""
    password: Optional[str] = None
    ssh_public_keys: List[str] = Field(default_factory=list)

    @validator("password")
    def validate_password(cls, v):
        """Reject passwords that cannot be passed to chpasswd."""
        if v is not None and ("\n" in v or "\r" in v):
            raise ValueError("Password must not contain line breaks")
        return v or None

    @classmethod
    def load(cls, password: Optional[str] = None, ssh_key_file: Optional[Any] = None) -> "Secrets":
        """Build secrets from a password and an optional public key file.

        A missing or empty key file yields no keys rather than an error.
        """
        keys: List[str] = []
        if ssh_key_file:
            path = Path(ssh_key_file).expanduser()
            if path.is_file():
                for line in path.read_text().splitlines():
                    line = line.strip()
                    if line and not line.startswith("#"):
                        keys.append(line)
        return cls(password=password, ssh_public_keys=keys)

    def __repr__(self) -> str:
        return f"Secrets(password={'***' if self.password else None}, ssh_public_keys={len(self.ssh_public_keys)})"

    __str__ = __repr__
