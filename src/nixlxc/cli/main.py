"""Main CLI implementation using Typer."""

import asyncio
from pathlib import Path
from typing import Any, Callable, List, Optional

import typer
from rich.console import Console

from nixlxc.cli.commands import (
    Session,
    build_flake,
    configure_container,
    create_container,
    destroy_container,
    download_image,
    list_storage,
    list_templates,
    parse_variables,
    recovery_hint,
    shell_in_container,
    show_template,
    stop_container,
    update_container,
)
from nixlxc.exceptions import NixLxcError, PlatformError
from nixlxc.models.container import ContainerSpec, NetworkSpec, Secrets


# Create Typer app
app = typer.Typer(
    name="nixlxc",
    help="Provision and manage NixOS LXC containers on Proxmox VE",
    add_completion=False,
)

# Console for rich output
console = Console()

EXIT_INTERRUPTED = 130


def _run_cli_command(handler: Callable[..., Any], ctx: typer.Context, **kwargs: Any):
    """Helper to run a CLI command with error handling."""
    try:
        return handler(ctx.obj, **kwargs)
    except PlatformError as e:
        console.print(f"[red]Error:[/red] {e}")
        hint = recovery_hint(e)
        if hint:
            console.print(f"[yellow]{hint}[/yellow]")
        raise typer.Exit(1) from e
    except NixLxcError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e
    except (KeyboardInterrupt, asyncio.CancelledError):
        console.print("[yellow]Interrupted[/yellow]")
        raise typer.Exit(EXIT_INTERRUPTED)


def _parse_options(builder: Callable[[], Any]) -> Any:
    """Build models from options, turning validation errors into a clean exit."""
    try:
        return builder()
    except ValueError as e:
        console.print(f"[red]Error:[/red] Invalid options: {e}")
        raise typer.Exit(1) from e


@app.callback()
def main_callback(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Configuration file (default: $NIXLXC_CONFIG or /etc/nixlxc/config.yaml)"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Provision and manage NixOS LXC containers on Proxmox VE."""
    ctx.obj = Session(config_file=config, verbose=verbose)


@app.command("create")
def create_command(
    ctx: typer.Context,
    id: Optional[int] = typer.Option(None, "--id", help="Container ID (default: next free ID)"),
    name: Optional[str] = typer.Option(None, "--name", help="Container name (default: nixos-ct-<id>)"),
    cpus: Optional[int] = typer.Option(None, "--cpus", help="Number of CPU cores"),
    memory: Optional[int] = typer.Option(None, "--memory", help="Memory in MiB"),
    swap: Optional[int] = typer.Option(None, "--swap", help="Swap in MiB"),
    disk: Optional[int] = typer.Option(None, "--disk", help="Disk size in GiB"),
    storage: Optional[str] = typer.Option(None, "--storage", help="Storage backend"),
    bridge: Optional[str] = typer.Option(None, "--bridge", help="Network bridge"),
    ip: Optional[str] = typer.Option(None, "--ip", help="IP address, address/prefix or 'dhcp'"),
    cidr: Optional[int] = typer.Option(None, "--cidr", help="Prefix length for a static IP"),
    gw: Optional[str] = typer.Option(None, "--gw", help="Gateway for a static IP"),
    dns: Optional[str] = typer.Option(None, "--dns", help="DNS server"),
    tags: Optional[List[str]] = typer.Option(None, "--tag", help="Container tag (repeatable)"),
    unprivileged: Optional[bool] = typer.Option(
        None, "--unprivileged/--privileged", help="Privilege mode"
    ),
    nesting: Optional[bool] = typer.Option(None, "--nesting/--no-nesting", help="Allow nested containers"),
    onboot: Optional[bool] = typer.Option(None, "--onboot/--no-onboot", help="Start on host boot"),
    nixos_version: Optional[str] = typer.Option(None, "--nixos-version", help="NixOS release"),
    password: Optional[str] = typer.Option(None, "--password", help="Root password"),
    ssh_keys: Optional[Path] = typer.Option(None, "--ssh-keys", help="SSH public key file for root"),
    template: Optional[str] = typer.Option(None, "--template", "-t", help="Configuration template"),
    variables: Optional[List[str]] = typer.Option(None, "--var", help="Template variable KEY=VALUE (repeatable)"),
    flake: Optional[str] = typer.Option(None, "--flake", help="Remote configuration reference"),
    flake_rev: Optional[str] = typer.Option(None, "--flake-rev", help="Pinned revision of the reference"),
    flake_attr: Optional[str] = typer.Option(None, "--flake-attr", help="nixosModules attribute to import"),
):
    """Create a new NixOS container."""
    spec = _parse_options(lambda: ContainerSpec(
        id=id,
        name=name,
        cpus=cpus,
        memory=memory,
        swap=swap,
        disk=disk,
        storage=storage,
        network=NetworkSpec.parse(ip, cidr=cidr, gateway=gw, bridge=bridge, dns=dns),
        unprivileged=unprivileged,
        nesting=nesting,
        start_on_boot=onboot,
        tags=tags or None,
        nixos_version=nixos_version,
        template=template,
        flake=build_flake(flake, flake_rev, flake_attr),
        variables=parse_variables(variables),
    ))
    secrets = _parse_options(lambda: Secrets.load(password, ssh_keys))
    _run_cli_command(create_container, ctx, spec=spec, secrets=secrets)


@app.command("configure")
def configure_command(
    ctx: typer.Context,
    instance_id: int = typer.Argument(..., help="Container ID"),
    password: Optional[str] = typer.Option(None, "--password", help="Root password"),
    ssh_keys: Optional[Path] = typer.Option(None, "--ssh-keys", help="SSH public key file for root"),
    template: Optional[str] = typer.Option(None, "--template", "-t", help="Configuration template"),
    variables: Optional[List[str]] = typer.Option(None, "--var", help="Template variable KEY=VALUE (repeatable)"),
    flake: Optional[str] = typer.Option(None, "--flake", help="Remote configuration reference"),
    flake_rev: Optional[str] = typer.Option(None, "--flake-rev", help="Pinned revision of the reference"),
    flake_attr: Optional[str] = typer.Option(None, "--flake-attr", help="nixosModules attribute to import"),
    nixos_version: Optional[str] = typer.Option(None, "--nixos-version", help="NixOS release"),
):
    """Re-run configuration on an existing container."""
    secrets = _parse_options(lambda: Secrets.load(password, ssh_keys))
    _run_cli_command(
        configure_container,
        ctx,
        instance_id=instance_id,
        secrets=secrets,
        template=template,
        flake=_parse_options(lambda: build_flake(flake, flake_rev, flake_attr)),
        variables=_parse_options(lambda: parse_variables(variables)),
        nixos_version=nixos_version,
    )


@app.command("shell")
def shell_command(
    ctx: typer.Context,
    instance_id: int = typer.Argument(..., help="Container ID"),
):
    """Open interactive shell in container."""
    returncode = _run_cli_command(shell_in_container, ctx, instance_id=instance_id)
    if returncode:
        raise typer.Exit(returncode)


@app.command("update")
def update_command(
    ctx: typer.Context,
    instance_id: int = typer.Argument(..., help="Container ID"),
    impure: bool = typer.Option(False, "--impure", help="Allow remote references during rebuild"),
):
    """Update channels and rebuild NixOS in a container."""
    _run_cli_command(update_container, ctx, instance_id=instance_id, impure=impure)


@app.command("download")
def download_command(
    ctx: typer.Context,
    version: Optional[str] = typer.Argument(None, help="NixOS release (default: configured version)"),
):
    """Download the NixOS image without creating a container."""
    _run_cli_command(download_image, ctx, version=version)


@app.command("list-templates")
def list_templates_command(ctx: typer.Context):
    """List available configuration templates."""
    _run_cli_command(list_templates, ctx)


@app.command("template-info")
def template_info_command(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Template name"),
):
    """Show details of a configuration template."""
    _run_cli_command(show_template, ctx, name=name)


@app.command("list-storage")
def list_storage_command(ctx: typer.Context):
    """List storage pools."""
    _run_cli_command(list_storage, ctx)


@app.command("stop")
def stop_command(
    ctx: typer.Context,
    instance_id: int = typer.Argument(..., help="Container ID"),
):
    """Stop a running container."""
    _run_cli_command(stop_container, ctx, instance_id=instance_id)


@app.command("destroy")
def destroy_command(
    ctx: typer.Context,
    instance_id: int = typer.Argument(..., help="Container ID"),
    force: bool = typer.Option(
        False, "--force", "-f", help="Force removal without confirmation"
    ),
):
    """Remove a container completely."""
    if not force:
        confirm = typer.confirm(f"Destroy container {instance_id}?")
        if not confirm:
            raise typer.Abort()
    _run_cli_command(destroy_container, ctx, instance_id=instance_id)


def main():
    """Main entry point for CLI."""
    app()
