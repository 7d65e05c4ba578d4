"""Provisioning workflow."""

import asyncio
import logging
import posixpath
import shlex
from pathlib import Path
from typing import Dict, Optional, Tuple

from nixlxc.exceptions import (
    BootstrapFailed,
    CreateFailed,
    IDAllocationFailed,
    InjectionFailed,
    InstanceNotFound,
    NixLxcError,
    PlatformError,
    StartFailed,
)
from nixlxc.engine.workspace import ProvisioningAttempt, ProvisioningState, provisioning_workspace
from nixlxc.models.config import NixLxcConfig
from nixlxc.models.container import ContainerSpec, FlakeReference, NetworkSpec, Secrets, guest_hostname
from nixlxc.models.platform import ContainerHandle
from nixlxc.models.template import ConfigurationTemplate
from nixlxc.providers import ProviderRegistry
from nixlxc.providers.platform import PLATFORM_ERRORS
from nixlxc.rendering.bootstrap import BootstrapScriptBuilder
from nixlxc.rendering.configuration import (
    ConfigurationRenderer,
    RenderedArtifacts,
    RenderedConfig,
    requirement_warnings,
)
from nixlxc.utils.process import describe_failure


logger = logging.getLogger(__name__)

CONFIG_ARTIFACT = "configuration.nix"
SCRIPT_ARTIFACT = "setup-nixos.sh"

READY_POLL_INTERVAL = 1.0


def _or(value, default):
    return default if value is None else value


class Orchestrator:
    """Drives one create or configure attempt through the provisioning states.

    Validation happens before any platform mutation. Once an instance exists
    it is never removed on failure; errors carry its id and the state that
    failed so the operator can inspect it or re-run ``configure``.
    """

    def __init__(self, config: NixLxcConfig, provider_registry: ProviderRegistry):
        """Initialize orchestrator."""
        self.config = config
        self.defaults = config.defaults
        self.provider_registry = provider_registry
        self.images = provider_registry.get_provider("image")
        self.templates = provider_registry.get_provider("template")
        self.platform = provider_registry.get_provider("platform")
        self.renderer = ConfigurationRenderer(self.templates)
        self.bootstrap_builder = BootstrapScriptBuilder()

    def resolve_spec(self, spec: ContainerSpec, instance_id: Optional[int] = None) -> ContainerSpec:
        """Fill unset fields from the configured defaults."""
        defaults = self.defaults
        network = spec.network
        prefix_length = network.prefix_length
        if network.mode == "static":
            prefix_length = _or(prefix_length, defaults.cidr)

        return ContainerSpec(
            id=_or(spec.id, instance_id),
            name=spec.name,
            cpus=_or(spec.cpus, defaults.cpus),
            memory=_or(spec.memory, defaults.memory),
            swap=_or(spec.swap, defaults.swap),
            disk=_or(spec.disk, defaults.disk),
            storage=_or(spec.storage, defaults.storage),
            network=NetworkSpec(
                mode=network.mode,
                address=network.address,
                prefix_length=prefix_length,
                gateway=network.gateway,
                bridge=_or(network.bridge, defaults.bridge),
                dns=_or(network.dns, defaults.dns),
            ),
            unprivileged=_or(spec.unprivileged, defaults.unprivileged),
            nesting=_or(spec.nesting, defaults.nesting),
            start_on_boot=_or(spec.start_on_boot, defaults.start_on_boot),
            tags=_or(spec.tags, list(defaults.tags)),
            nixos_version=_or(spec.nixos_version, defaults.nixos_version),
            template=spec.template,
            flake=spec.flake,
            variables=dict(spec.variables),
        )

    async def create(self, spec: ContainerSpec, secrets: Optional[Secrets] = None) -> ContainerHandle:
        """Provision a new instance and run its first-boot setup."""
        secrets = secrets or Secrets()
        async with provisioning_workspace() as workspace:
            attempt = ProvisioningAttempt(spec=spec, workspace=workspace)
            try:
                return await self._create(attempt, secrets)
            except NixLxcError as e:
                self._record_failure(attempt, e)
                raise

    async def configure(
        self,
        instance_id: int,
        secrets: Optional[Secrets] = None,
        template: Optional[str] = None,
        flake: Optional[FlakeReference] = None,
        variables: Optional[Dict[str, str]] = None,
        nixos_version: Optional[str] = None,
    ) -> ContainerHandle:
        """Re-render, inject and bootstrap an existing instance.

        Hostname and privilege mode come from the platform, so repeating this
        only rotates credentials and configuration.
        """
        secrets = secrets or Secrets()
        spec = ContainerSpec(
            id=instance_id,
            template=template,
            flake=flake,
            variables=variables or {},
            nixos_version=nixos_version,
        )
        async with provisioning_workspace() as workspace:
            attempt = ProvisioningAttempt(spec=spec, workspace=workspace, instance_id=instance_id)
            try:
                return await self._configure(attempt, secrets)
            except NixLxcError as e:
                self._record_failure(attempt, e)
                raise

    def _record_failure(self, attempt: ProvisioningAttempt, error: NixLxcError) -> None:
        if isinstance(error, PlatformError):
            error.state = attempt.state
        logger.error(f"Provisioning failed during {attempt.state.name}: {error}")
        if attempt.instance_id is not None and attempt.state in (
            ProvisioningState.START_INSTANCE,
            ProvisioningState.AWAIT_READY,
            ProvisioningState.INJECT_ARTIFACTS,
            ProvisioningState.RUN_BOOTSTRAP,
        ):
            logger.error(f"Container {attempt.instance_id} has been left in place for inspection")

    async def _create(self, attempt: ProvisioningAttempt, secrets: Secrets) -> ContainerHandle:
        attempt.advance(ProvisioningState.START)
        spec = self.resolve_spec(attempt.spec)
        template = await self.renderer.validate(spec)
        self._warn_requirements(template, spec)

        attempt.advance(ProvisioningState.RESOLVE_ID)
        if spec.id is None:
            spec = self.resolve_spec(spec, await self._allocate_id())
        attempt.spec = spec
        attempt.instance_id = spec.id

        attempt.advance(ProvisioningState.RESOLVE_IMAGE)
        image = await self.images.ensure_image(spec.nixos_version)

        attempt.advance(ProvisioningState.RENDER_ARTIFACTS)
        artifacts = await self.render_artifacts(spec, secrets)
        config_file, script_file = self._write_artifacts(attempt, artifacts)

        attempt.advance(ProvisioningState.CREATE_INSTANCE)
        try:
            await self.platform.create_instance(spec, image.locator, self.defaults.cidr)
        except PLATFORM_ERRORS as e:
            raise CreateFailed(spec.id, describe_failure(e)) from e

        await self._start(attempt)
        await self._inject(attempt, config_file, script_file)
        await self._run_bootstrap(attempt)

        attempt.advance(ProvisioningState.DONE)
        logger.info(f"NixOS container {spec.id} ({spec.hostname}) created successfully")
        return self._handle(spec, template, artifacts.configuration, image.locator)

    async def _configure(self, attempt: ProvisioningAttempt, secrets: Secrets) -> ContainerHandle:
        instance_id = attempt.instance_id

        attempt.advance(ProvisioningState.START)
        try:
            instance = await self.platform.get_instance_config(instance_id)
            running = await self.platform.is_running(instance_id)
        except PLATFORM_ERRORS as e:
            raise InstanceNotFound(instance_id, describe_failure(e)) from e

        base = attempt.spec
        spec = self.resolve_spec(ContainerSpec(
            id=instance_id,
            name=guest_hostname(instance.hostname),
            unprivileged=instance.unprivileged,
            nixos_version=base.nixos_version,
            template=base.template,
            flake=base.flake,
            variables=base.variables,
        ))
        attempt.spec = spec
        if instance.hostname and instance.hostname != spec.hostname:
            logger.warning(f"Container {instance_id} hostname '{instance.hostname}' rendered as '{spec.hostname}'")
        template = await self.renderer.validate(spec)

        logger.info(f"Configuring NixOS for container {instance_id} ({spec.hostname})")
        attempt.advance(ProvisioningState.RENDER_ARTIFACTS)
        artifacts = await self.render_artifacts(spec, secrets)
        config_file, script_file = self._write_artifacts(attempt, artifacts)

        if not running:
            await self._start(attempt)
        await self._inject(attempt, config_file, script_file)
        await self._run_bootstrap(attempt)

        attempt.advance(ProvisioningState.DONE)
        logger.info(f"NixOS container {instance_id} configured successfully")
        return self._handle(spec, template, artifacts.configuration)

    async def render_artifacts(self, spec: ContainerSpec, secrets: Secrets) -> RenderedArtifacts:
        """Render the configuration and the bootstrap script that applies it."""
        configuration = await self.renderer.render(spec, secrets)
        script = self.bootstrap_builder.build(spec, secrets, configuration.experimental_features)
        return RenderedArtifacts(configuration=configuration, bootstrap_script=script)

    def _write_artifacts(self, attempt: ProvisioningAttempt, artifacts: RenderedArtifacts) -> Tuple[Path, Path]:
        config_file = attempt.write_artifact(CONFIG_ARTIFACT, artifacts.configuration.text)
        script_file = attempt.write_artifact(SCRIPT_ARTIFACT, artifacts.bootstrap_script)
        return config_file, script_file

    async def _allocate_id(self) -> int:
        try:
            instance_id = await self.platform.allocate_next_id()
        except PLATFORM_ERRORS as e:
            raise IDAllocationFailed(describe_failure(e)) from e
        logger.info(f"Allocated container id {instance_id}")
        return instance_id

    def _warn_requirements(self, template: Optional[ConfigurationTemplate], spec: ContainerSpec) -> None:
        if template is None:
            return
        for warning in requirement_warnings(template, spec):
            logger.warning(f"Template {template.name} {warning}")

    async def _start(self, attempt: ProvisioningAttempt) -> None:
        instance_id = attempt.instance_id

        attempt.advance(ProvisioningState.START_INSTANCE)
        try:
            await self.platform.start_instance(instance_id)
        except PLATFORM_ERRORS as e:
            raise StartFailed(instance_id, describe_failure(e)) from e

        attempt.advance(ProvisioningState.AWAIT_READY)
        settle_delay = self.config.provisioning.settle_delay
        if settle_delay:
            logger.debug(f"Waiting {settle_delay}s for container {instance_id} to settle")
            await asyncio.sleep(settle_delay)
        await self._wait_ready(instance_id)

    async def _wait_ready(self, instance_id: int) -> None:
        """Poll until the guest accepts commands, bounded by ``ready_timeout``."""
        timeout = self.config.provisioning.ready_timeout
        if not timeout:
            return

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            try:
                remaining = max(deadline - loop.time(), READY_POLL_INTERVAL)
                result = await self.platform.exec_in_instance(
                    instance_id, ["/bin/sh", "-c", "true"], timeout=remaining
                )
                if result.ok:
                    logger.debug(f"Container {instance_id} is ready")
                    return
            except PLATFORM_ERRORS as e:
                logger.debug(f"Container {instance_id} not ready yet: {e}")

            if loop.time() >= deadline:
                logger.warning(f"Container {instance_id} not ready after {timeout}s, continuing")
                return
            await asyncio.sleep(READY_POLL_INTERVAL)

    async def _inject(self, attempt: ProvisioningAttempt, config_file: Path, script_file: Path) -> None:
        instance_id = attempt.instance_id
        provisioning = self.config.provisioning

        attempt.advance(ProvisioningState.INJECT_ARTIFACTS)
        logger.info(f"Pushing configuration files to container {instance_id}")
        config_dir = posixpath.dirname(provisioning.guest_config_path)
        try:
            result = await self.platform.exec_shell(instance_id, f"mkdir -p {shlex.quote(config_dir)}")
            if not result.ok:
                raise InjectionFailed(instance_id, result.stderr.strip() or f"mkdir exited with {result.returncode}")
            await self.platform.push_file(instance_id, config_file, provisioning.guest_config_path, "0644")
            await self.platform.push_file(instance_id, script_file, provisioning.guest_script_path, "0700")
        except PLATFORM_ERRORS as e:
            raise InjectionFailed(instance_id, describe_failure(e)) from e

    async def _run_bootstrap(self, attempt: ProvisioningAttempt) -> None:
        instance_id = attempt.instance_id
        script_path = self.config.provisioning.guest_script_path

        attempt.advance(ProvisioningState.RUN_BOOTSTRAP)
        logger.info(f"Running setup script inside container {instance_id}")
        try:
            result = await self.platform.exec_in_instance(instance_id, ["/bin/sh", script_path])
        except PLATFORM_ERRORS as e:
            raise BootstrapFailed(instance_id, describe_failure(e)) from e

        if result.stdout:
            logger.debug(f"Setup output for container {instance_id}:\n{result.stdout}")
        if not result.ok:
            detail = f"exit status {result.returncode}"
            if result.stderr.strip():
                detail += f": {result.stderr.strip().splitlines()[-1]}"
            raise BootstrapFailed(instance_id, detail)

    def _handle(
        self,
        spec: ContainerSpec,
        template: Optional[ConfigurationTemplate],
        configuration: RenderedConfig,
        image: Optional[str] = None,
    ) -> ContainerHandle:
        return ContainerHandle(
            instance_id=spec.id,
            hostname=spec.hostname,
            image=image,
            requires_impure=configuration.requires_impure,
            template=template.name if template else None,
            notes=list(template.metadata.post_install) if template else [],
        )
