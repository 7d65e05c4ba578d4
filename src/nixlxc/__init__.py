"""
nixlxc - NixOS LXC container provisioning for Proxmox VE.

Fetches NixOS images, creates containers, renders and injects the guest
configuration and drives first-boot setup and later updates.
"""

__version__ = "0.1.0"

# Re-export key components for easier access
from nixlxc.models.config import NixLxcConfig
from nixlxc.models.container import ContainerSpec, Secrets
from nixlxc.models.image import ImageReference
from nixlxc.models.platform import ContainerHandle

__all__ = [
    "NixLxcConfig",
    "ContainerSpec",
    "Secrets",
    "ImageReference",
    "ContainerHandle",
]
