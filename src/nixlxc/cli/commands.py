"""Command implementations for CLI."""

import asyncio
import signal
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, TypeVar

from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from nixlxc.engine.config import ConfigManager
from nixlxc.engine.lifecycle import LifecycleOperations
from nixlxc.engine.orchestrator import Orchestrator
from nixlxc.engine.workspace import ProvisioningState
from nixlxc.exceptions import PlatformError
from nixlxc.models.config import NixLxcConfig
from nixlxc.models.container import ContainerSpec, FlakeReference, Secrets
from nixlxc.models.platform import ContainerHandle
from nixlxc.providers import ProviderRegistry
from nixlxc.utils.logging import setup_logging


console = Console()

T = TypeVar("T")

# States after which a created container exists and is left in place
_POST_CREATE_STATES = (
    ProvisioningState.START_INSTANCE,
    ProvisioningState.AWAIT_READY,
    ProvisioningState.INJECT_ARTIFACTS,
    ProvisioningState.RUN_BOOTSTRAP,
)


class Session:
    """Configuration and providers for one CLI invocation."""

    def __init__(self, config_file: Optional[Path] = None, verbose: bool = False):
        self.config_file = config_file
        self.verbose = verbose
        self.config: Optional[NixLxcConfig] = None
        self.registry: Optional[ProviderRegistry] = None

    async def open(self) -> "Session":
        """Load configuration and initialize providers, once."""
        if self.registry is not None:
            return self
        self.config = await ConfigManager(self.config_file).load()
        setup_logging("DEBUG" if self.verbose else self.config.logging.level)
        registry = ProviderRegistry()
        await registry.initialize(self.config)
        self.registry = registry
        return self

    def orchestrator(self) -> Orchestrator:
        return Orchestrator(self.config, self.registry)

    def lifecycle(self) -> LifecycleOperations:
        return LifecycleOperations(self.registry)


def run_async(action: Callable[[], Awaitable[T]]) -> T:
    """Run a coroutine; SIGTERM cancels it like an interrupt does."""
    async def runner():
        task = asyncio.current_task()
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGTERM, task.cancel)
        except (NotImplementedError, RuntimeError, ValueError):
            # No signal support outside the main thread
            pass
        return await action()

    return asyncio.run(runner())


def _run_action(
    description: str,
    action: Callable[[], Awaitable[T]],
    success_msg: Optional[str] = None,
    quiet: bool = False,
) -> T:
    """Helper to run an action with a progress spinner."""
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        disable=quiet,
    ) as progress:
        task = progress.add_task(description, total=None)

        result = run_async(action)

        progress.update(task, completed=True)

    if success_msg and not quiet:
        console.print(success_msg)

    return result


def recovery_hint(error: PlatformError) -> Optional[str]:
    """How to continue after a failure that left a container behind."""
    if error.instance_id is None or error.state not in _POST_CREATE_STATES:
        return None
    instance_id = error.instance_id
    return (
        f"Container {instance_id} was left in place. "
        f"Inspect it with 'nixlxc shell {instance_id}', retry with "
        f"'nixlxc configure {instance_id}' or remove it with 'nixlxc destroy {instance_id}'."
    )


def _print_handle(handle: ContainerHandle) -> None:
    table = Table(show_header=False, box=None)
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    table.add_row("ID", str(handle.instance_id))
    table.add_row("Hostname", handle.hostname)
    if handle.image:
        table.add_row("Image", handle.image)
    if handle.template:
        table.add_row("Template", handle.template)
    console.print(table)

    if handle.requires_impure:
        console.print(
            f"[yellow]Configuration imports a remote reference; update with "
            f"'nixlxc update {handle.instance_id} --impure'[/yellow]"
        )

    if handle.notes:
        console.print("\n[bold]Post-install notes:[/bold]")
        for index, note in enumerate(handle.notes, 1):
            console.print(f"  {index}. {note}")


def create_container(session: Session, spec: ContainerSpec, secrets: Secrets, quiet: bool = False) -> ContainerHandle:
    """Provision a new container."""
    async def action():
        await session.open()
        return await session.orchestrator().create(spec, secrets)

    handle = _run_action(
        f"Creating NixOS container {spec.name or ''}".rstrip() + "...",
        action,
        quiet=quiet,
    )
    if not quiet:
        console.print(f"[green]✓[/green] Container {handle.instance_id} ({handle.hostname}) created")
        _print_handle(handle)
    return handle


def configure_container(
    session: Session,
    instance_id: int,
    secrets: Secrets,
    template: Optional[str] = None,
    flake: Optional[FlakeReference] = None,
    variables: Optional[Dict[str, str]] = None,
    nixos_version: Optional[str] = None,
    quiet: bool = False,
) -> ContainerHandle:
    """Re-run configuration on an existing container."""
    async def action():
        await session.open()
        return await session.orchestrator().configure(
            instance_id,
            secrets,
            template=template,
            flake=flake,
            variables=variables,
            nixos_version=nixos_version,
        )

    handle = _run_action(
        f"Configuring container {instance_id}...",
        action,
        success_msg=f"[green]✓[/green] Container {instance_id} configured",
        quiet=quiet,
    )
    if (handle.notes or handle.requires_impure) and not quiet:
        _print_handle(handle)
    return handle


def shell_in_container(session: Session, instance_id: int) -> int:
    """Open an interactive shell; no spinner so the terminal stays usable."""
    async def action():
        await session.open()
        return await session.lifecycle().shell(instance_id)

    return run_async(action)


def update_container(session: Session, instance_id: int, impure: bool = False):
    """Update channels and rebuild the guest, streaming its output."""
    async def action():
        await session.open()
        return await session.lifecycle().update(instance_id, impure=impure)

    console.print(f"Updating NixOS in container {instance_id}...")
    run_async(action)
    console.print(f"[green]✓[/green] Container {instance_id} updated")


def download_image(session: Session, version: Optional[str] = None, quiet: bool = False):
    """Download a NixOS image into the cache."""
    async def action():
        await session.open()
        image_provider = session.registry.get_provider("image")
        return await image_provider.ensure_image(version or session.config.defaults.nixos_version)

    image = _run_action("Preparing NixOS image...", action, quiet=quiet)
    if not quiet:
        console.print(f"[green]✓[/green] NixOS {image.version} image available as {image.locator}")
    return image


def list_templates(session: Session):
    """List available configuration templates."""
    async def action():
        await session.open()
        return await session.registry.get_provider("template").list_templates()

    templates = run_async(action)
    if not templates:
        console.print("[yellow]No templates found[/yellow]")
        return

    table = Table(title="Templates")
    table.add_column("Name", style="cyan")
    table.add_column("Description")
    table.add_column("CPUs", justify="right")
    table.add_column("Memory", justify="right")
    table.add_column("Disk", justify="right")

    for metadata in templates:
        requirements = metadata.requirements
        table.add_row(
            metadata.name,
            metadata.description,
            str(requirements.min_cpus),
            f"{requirements.min_memory} MiB",
            f"{requirements.min_disk} GiB",
        )

    console.print(table)


def show_template(session: Session, name: str):
    """Show a template's metadata."""
    async def action():
        await session.open()
        return await session.registry.get_provider("template").load(name)

    template = run_async(action)
    metadata = template.metadata
    requirements = metadata.requirements

    console.print(f"[bold cyan]{metadata.name}[/bold cyan]")
    if metadata.description:
        console.print(metadata.description)
    console.print(
        f"\n[bold]Requirements:[/bold] {requirements.min_cpus} CPU cores, "
        f"{requirements.min_memory} MiB memory, {requirements.min_disk} GiB disk"
    )

    if metadata.variables:
        table = Table(title="Variables")
        table.add_column("Name", style="cyan")
        table.add_column("Type", style="magenta")
        table.add_column("Default")
        for key, default in metadata.variables.items():
            table.add_row(key, type(default).__name__, str(default))
        console.print(table)

    if metadata.post_install:
        console.print("\n[bold]Post-install notes:[/bold]")
        for index, note in enumerate(metadata.post_install, 1):
            console.print(f"  {index}. {note}")


def _format_size(kib: int) -> str:
    size = float(kib)
    for unit in ("KiB", "MiB", "GiB", "TiB"):
        if size < 1024 or unit == "TiB":
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TiB"


def list_storage(session: Session):
    """List the platform's storage pools."""
    async def action():
        await session.open()
        return await session.registry.get_provider("platform").list_storage_pools()

    pools = run_async(action)

    table = Table(title="Storage")
    table.add_column("Name", style="cyan")
    table.add_column("Type", style="magenta")
    table.add_column("Status")
    table.add_column("Total", justify="right")
    table.add_column("Used", justify="right")
    table.add_column("Available", justify="right")

    for pool in pools:
        status_color = "green" if pool.status == "active" else "yellow"
        table.add_row(
            pool.name,
            pool.type,
            f"[{status_color}]{pool.status}[/{status_color}]",
            _format_size(pool.total),
            _format_size(pool.used),
            _format_size(pool.available),
        )

    console.print(table)


def stop_container(session: Session, instance_id: int, quiet: bool = False):
    """Stop a container."""
    async def action():
        await session.open()
        await session.lifecycle().stop(instance_id)

    _run_action(
        f"Stopping container {instance_id}...",
        action,
        success_msg=f"[green]✓[/green] Container {instance_id} stopped",
        quiet=quiet,
    )


def destroy_container(session: Session, instance_id: int, quiet: bool = False):
    """Remove a container and its volumes."""
    async def action():
        await session.open()
        await session.lifecycle().destroy(instance_id)

    _run_action(
        f"Destroying container {instance_id}...",
        action,
        success_msg=f"[green]✓[/green] Container {instance_id} destroyed",
        quiet=quiet,
    )


def parse_variables(values: Optional[List[str]]) -> Dict[str, str]:
    """Parse repeated ``KEY=VALUE`` options."""
    variables: Dict[str, str] = {}
    for item in values or []:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"Expected KEY=VALUE, got '{item}'")
        variables[key.strip()] = value
    return variables


def build_flake(url: Optional[str], rev: Optional[str], attribute: Optional[str]) -> Optional[FlakeReference]:
    if not url:
        return None
    return FlakeReference(url=url, rev=rev, attribute=attribute)

