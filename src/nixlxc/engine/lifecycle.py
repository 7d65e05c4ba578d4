"""Operations on already-provisioned instances."""

import logging

from nixlxc.exceptions import InstanceNotFound, PlatformError, UpdateFailed
from nixlxc.providers import ProviderRegistry, ProviderStatus
from nixlxc.providers.platform import PLATFORM_ERRORS
from nixlxc.utils.process import CommandResult, describe_failure


logger = logging.getLogger(__name__)

UPDATE_COMMAND = "nix-channel --update && nixos-rebuild switch --upgrade"


class LifecycleOperations:
    """Thin pass-throughs to the platform; no workflow state is kept."""

    def __init__(self, provider_registry: ProviderRegistry):
        """Initialize lifecycle operations."""
        self.provider_registry = provider_registry
        self.platform = provider_registry.get_provider("platform")

    async def _require_instance(self, instance_id: int) -> None:
        status = await self.platform.status(instance_id)
        if status != ProviderStatus.PRESENT:
            raise InstanceNotFound(instance_id, "no such container")

    async def shell(self, instance_id: int) -> int:
        """Open an interactive login shell; returns the shell's exit status."""
        await self._require_instance(instance_id)
        logger.info(f"Entering shell for container {instance_id}")
        try:
            result = await self.platform.exec_shell(instance_id, "exec bash", capture_output=False)
        except PLATFORM_ERRORS as e:
            raise PlatformError(instance_id, describe_failure(e)) from e
        return result.returncode

    async def update(self, instance_id: int, impure: bool = False) -> CommandResult:
        """Update channels and rebuild the guest system.

        Failures are reported, never retried.
        """
        await self._require_instance(instance_id)
        command = UPDATE_COMMAND + (" --impure" if impure else "")
        logger.info(f"Updating NixOS in container {instance_id}")
        try:
            result = await self.platform.exec_shell(instance_id, command, capture_output=False)
        except PLATFORM_ERRORS as e:
            raise UpdateFailed(instance_id, describe_failure(e)) from e

        if not result.ok:
            raise UpdateFailed(instance_id, f"exit status {result.returncode}")
        logger.info(f"Container {instance_id} updated successfully")
        return result

    async def stop(self, instance_id: int) -> None:
        """Stop an instance."""
        await self._require_instance(instance_id)
        try:
            await self.platform.stop_instance(instance_id)
        except PLATFORM_ERRORS as e:
            raise PlatformError(instance_id, describe_failure(e)) from e

    async def destroy(self, instance_id: int) -> None:
        """Stop (if running) and remove an instance with its volumes."""
        await self._require_instance(instance_id)
        try:
            if await self.platform.is_running(instance_id):
                await self.platform.stop_instance(instance_id)
            await self.platform.remove_instance(instance_id)
        except PLATFORM_ERRORS as e:
            raise PlatformError(instance_id, describe_failure(e)) from e
        logger.info(f"Container {instance_id} destroyed")
