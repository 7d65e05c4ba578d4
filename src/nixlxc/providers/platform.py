"""Platform provider driving Proxmox VE containers through pct/pvesh/pvesm."""

import logging
import subprocess
from pathlib import Path
from typing import Dict, List, Optional

from nixlxc.models.container import ContainerSpec
from nixlxc.models.platform import InstanceConfig, StoragePool
from nixlxc.providers.base import BaseProvider, ProviderStatus
from nixlxc.utils.process import CommandResult, run_command


logger = logging.getLogger(__name__)

# Failures of a platform call as seen by callers
PLATFORM_ERRORS = (subprocess.SubprocessError, OSError)

# Sourced before guest commands so nix tooling is on PATH
GUEST_ENV_PREAMBLE = "if [ -f /etc/set-environment ]; then . /etc/set-environment; fi"


def _flag(value: bool) -> str:
    return "1" if value else "0"


class ProxmoxPlatform(BaseProvider):
    """Host platform operations for LXC instances.

    Every method is a thin wrapper around one platform command. Failures of
    mutating calls propagate as ``subprocess.CalledProcessError``; callers
    decide how to report them.
    """

    def __init__(self):
        """Initialize platform provider."""
        self.pct = "pct"
        self.pvesh = "pvesh"
        self.pvesm = "pvesm"
        self.arch = "amd64"
        self.ostype = "nixos"
        self.create_timeout = 600

    async def initialize(self, config, registry=None):
        """Initialize provider with configuration."""
        self.pct = config.platform.pct
        self.pvesh = config.platform.pvesh
        self.pvesm = config.platform.pvesm
        self.arch = config.platform.arch
        self.ostype = config.platform.ostype
        self.create_timeout = config.platform.create_timeout

    async def status(self, instance_id: int) -> ProviderStatus:
        """Check if an instance exists."""
        try:
            result = await run_command([self.pct, "status", str(instance_id)], check=False)
        except OSError as e:
            logger.error(f"Error checking container {instance_id}: {e}")
            return ProviderStatus.ERROR

        if result.returncode == 0:
            return ProviderStatus.PRESENT
        return ProviderStatus.ABSENT

    async def is_running(self, instance_id: int) -> bool:
        """Check if an instance is running."""
        result = await run_command([self.pct, "status", str(instance_id)], check=False)
        return result.returncode == 0 and "running" in result.stdout

    async def allocate_next_id(self) -> int:
        """Ask the cluster for the next free instance id."""
        result = await run_command([self.pvesh, "get", "/cluster/nextid"])
        value = result.stdout.strip().strip('"')
        try:
            return int(value)
        except ValueError:
            raise subprocess.CalledProcessError(
                result.returncode, [self.pvesh, "get", "/cluster/nextid"],
                output=result.stdout, stderr=f"unexpected next id: {value!r}",
            )

    def create_command(self, spec: ContainerSpec, image_locator: str, default_prefix: int = 24) -> List[str]:
        """Build the create command for a fully resolved spec."""
        network = spec.network
        net0 = f"name=eth0,bridge={network.bridge},{network.ip_config(default_prefix)}"
        cmd = [
            self.pct, "create", str(spec.id), image_locator,
            "--hostname", spec.hostname,
            "--ostype", self.ostype,
            "--arch", self.arch,
            "--storage", spec.storage,
            "--cores", str(spec.cpus),
            "--memory", str(spec.memory),
            "--swap", str(spec.swap),
            "--rootfs", f"{spec.storage}:{spec.disk}",
            "--onboot", _flag(spec.start_on_boot),
            "--unprivileged", _flag(spec.unprivileged),
            "--features", f"nesting={_flag(spec.nesting)}",
            "--net0", net0,
        ]
        if network.dns:
            cmd.extend(["--nameserver", network.dns])
        if spec.tags:
            cmd.extend(["--tags", ";".join(spec.tags)])
        return cmd

    async def create_instance(self, spec: ContainerSpec, image_locator: str, default_prefix: int = 24) -> None:
        """Create an instance from an image."""
        logger.info(f"Creating NixOS container (ID: {spec.id}, Name: {spec.hostname})")
        await run_command(
            self.create_command(spec, image_locator, default_prefix),
            timeout=self.create_timeout,
        )

    async def start_instance(self, instance_id: int) -> None:
        """Start an instance."""
        logger.info(f"Starting container {instance_id}")
        await run_command([self.pct, "start", str(instance_id)])

    async def stop_instance(self, instance_id: int) -> None:
        """Stop an instance."""
        logger.info(f"Stopping container {instance_id}")
        await run_command([self.pct, "stop", str(instance_id)])

    async def remove_instance(self, instance_id: int) -> None:
        """Destroy an instance and its volumes."""
        logger.info(f"Destroying container {instance_id}")
        await run_command([self.pct, "destroy", str(instance_id), "--purge"], timeout=self.create_timeout)

    async def push_file(self, instance_id: int, local_path: Path, remote_path: str, permissions: str = "0644") -> None:
        """Copy a host file into the instance."""
        logger.debug(f"Pushing {local_path.name} to {instance_id}:{remote_path}")
        await run_command([
            self.pct, "push", str(instance_id), str(local_path), remote_path,
            "--perms", permissions,
        ])

    async def exec_in_instance(
        self,
        instance_id: int,
        command: List[str],
        capture_output: bool = True,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        """Run a command inside the instance and return its exit status."""
        return await run_command(
            [self.pct, "exec", str(instance_id), "--", *command],
            check=False,
            capture_output=capture_output,
            timeout=timeout,
        )

    async def exec_shell(self, instance_id: int, script: str, capture_output: bool = True) -> CommandResult:
        """Run a shell snippet inside the instance with the nix environment loaded."""
        return await self.exec_in_instance(
            instance_id,
            ["/bin/sh", "-c", f"{GUEST_ENV_PREAMBLE}; {script}"],
            capture_output=capture_output,
        )

    async def get_instance_config(self, instance_id: int) -> InstanceConfig:
        """Read the instance's platform configuration."""
        result = await run_command([self.pct, "config", str(instance_id)])
        raw = parse_key_values(result.stdout)
        return InstanceConfig(
            instance_id=instance_id,
            hostname=raw.get("hostname"),
            # A missing 'unprivileged' line means the instance is privileged
            unprivileged=raw.get("unprivileged", "0") == "1",
            raw=raw,
        )

    async def list_storage_pools(self) -> List[StoragePool]:
        """List storage pools with their free space."""
        result = await run_command([self.pvesm, "status"])
        return parse_storage_status(result.stdout)


def parse_key_values(text: str) -> Dict[str, str]:
    """Parse ``key: value`` lines as printed by ``pct config``."""
    values: Dict[str, str] = {}
    for line in text.splitlines():
        key, sep, value = line.partition(":")
        if sep and key and not key.startswith(" "):
            values[key.strip()] = value.strip()
    return values


def parse_storage_status(text: str) -> List[StoragePool]:
    """Parse the table printed by ``pvesm status``."""
    pools = []
    for line in text.splitlines()[1:]:
        parts = line.split()
        if len(parts) < 6:
            continue
        name, pool_type, status = parts[0], parts[1], parts[2]
        try:
            total, used, available = (int(value) for value in parts[3:6])
        except ValueError:
            total = used = available = 0
        pools.append(StoragePool(
            name=name,
            type=pool_type,
            status=status,
            total=total,
            used=used,
            available=available,
        ))
    return pools
