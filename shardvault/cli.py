#!/usr/bin/env python3
"""
ShardVault CLI

Command-line interface for the panel and the storage nodes.

Usage:
    shardvault panel                      # Run the panel REST API
    shardvault node                       # Run a storage node
    shardvault init-config [OUTPUT]       # Write an example config file
    shardvault nodes list                 # List paired nodes
    shardvault nodes add IP PORT CA_FILE  # Pair a node
    shardvault ls [PATH]                  # List a directory
    shardvault upload FILE [PATH]         # Upload a file
    shardvault download PATH NAME         # Download a file
    shardvault delete PATH NAME           # Delete a file
"""

import asyncio
import logging
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel as RichPanel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .config import EXAMPLE_CONFIG, load_config
from .errors import ShardVaultError
from .panel import Panel
from .utils import format_size

console = Console()


def setup_logging(level: str = 'INFO', verbose: bool = False):
    """Configure logging with rich output."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=False, show_path=False)]
    )


def run_with_panel(ctx, action):
    """Start a panel, run `action(panel)`, stop the panel."""
    config = ctx.obj['config']

    async def run():
        panel = Panel(config)
        await panel.start()
        try:
            return await action(panel)
        finally:
            await panel.stop()

    try:
        return asyncio.run(run())
    except ShardVaultError as e:
        console.print(f"[red]✗ {e.message}[/red]")
        raise SystemExit(1)


@click.group()
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.option('--config', 'config_path', type=click.Path(), default=None,
              help='JSON config file')
@click.option('--data-dir', default=None, help='Panel data directory')
@click.pass_context
def cli(ctx, verbose, config_path, data_dir):
    """ShardVault - sharded, encrypted storage across paired nodes."""
    config = load_config(Path(config_path) if config_path else None)
    if data_dir:
        config.panel_data_dir = Path(data_dir)
    setup_logging(config.log_level, verbose)
    ctx.ensure_object(dict)
    ctx.obj['config'] = config


# === Processes ===

@cli.command()
@click.option('--host', default=None, help='Interface to bind')
@click.option('--port', type=int, default=None, help='REST API port')
@click.pass_context
def panel(ctx, host, port):
    """Run the panel REST API."""
    config = ctx.obj['config']
    host = host or config.panel_host
    port = port or config.panel_port

    console.print(RichPanel.fit(
        f"[bold green]ShardVault Panel[/bold green]\n\n"
        f"API: [yellow]http://{host}:{port}[/yellow]\n"
        f"Shard size: [yellow]{format_size(config.shard_size)}[/yellow]\n"
        f"Force spreading: [yellow]{'on' if config.force_spreading else 'off'}[/yellow]\n"
        f"Data Dir: [blue]{config.panel_data_dir}[/blue]",
        title="Panel Info"
    ))

    from .api import run_api_server
    try:
        asyncio.run(run_api_server(Panel(config), host=host, port=port))
    except KeyboardInterrupt:
        console.print("\n[yellow]Shutting down...[/yellow]")


@cli.command()
@click.option('--host', default=None, help='Interface to bind')
@click.option('--port', type=int, default=None, help='Node HTTPS port')
@click.option('--common-name', default=None, help='IP or hostname the certificate is issued for')
@click.option('--node-dir', default=None, help='Node data directory')
@click.pass_context
def node(ctx, host, port, common_name, node_dir):
    """Run a storage node."""
    config = ctx.obj['config']
    host = host or config.node_host
    port = port or config.node_port
    common_name = common_name or config.node_common_name
    node_dir = Path(node_dir) if node_dir else config.node_data_dir

    def show_certificate(pem: str):
        console.print(RichPanel.fit(
            f"[bold]Paste this certificate into the panel when adding the node:[/bold]\n\n{pem}",
            title="Node Certificate"
        ))

    console.print(f"[dim]Storage node on https://{common_name}:{port}, data in {node_dir}[/dim]")

    from .blobstore import run_node_server
    try:
        asyncio.run(run_node_server(node_dir, host=host, port=port, common_name=common_name,
                                    on_identity_created=show_certificate))
    except KeyboardInterrupt:
        console.print("\n[yellow]Shutting down...[/yellow]")


@cli.command('init-config')
@click.argument('output', type=click.Path(), default='config.json')
def init_config(output):
    """Write an example config file."""
    path = Path(output)
    if path.exists():
        console.print(f"[red]✗ {path} already exists[/red]")
        raise SystemExit(1)
    path.write_text(EXAMPLE_CONFIG.lstrip())
    console.print(f"[green]✓ Wrote {path}[/green]")


# === Nodes ===

@cli.group()
def nodes():
    """Manage paired nodes."""


@nodes.command('list')
@click.option('--all', 'show_all', is_flag=True, help='Include unreachable nodes')
@click.pass_context
def list_nodes(ctx, show_all):
    """List paired nodes and their liveness."""
    async def action(panel):
        return await panel.registry.list_nodes(skip_unreachable=not show_all,
                                               include_connection_details=True)

    found = run_with_panel(ctx, action)
    if not found:
        console.print("[yellow]No nodes[/yellow]")
        return

    table = Table(title="Nodes")
    table.add_column("ID", style="cyan")
    table.add_column("Address", style="yellow")
    table.add_column("Connected")
    for n in found:
        table.add_row(n.id, n.address,
                      "[green]yes[/green]" if n.connected else "[red]no[/red]")
    console.print(table)


@nodes.command('add')
@click.argument('ip')
@click.argument('port', type=int)
@click.argument('ca_file', type=click.Path(exists=True))
@click.pass_context
def add_node(ctx, ip, port, ca_file):
    """Pair the node at IP:PORT, trusting the certificate in CA_FILE."""
    ca = Path(ca_file).read_text()

    async def action(panel):
        return await panel.registry.pair(ip, port, ca)

    paired = run_with_panel(ctx, action)
    console.print(f"[green]✓ Paired node {paired.id} at {paired.address}[/green]")


@nodes.command('update')
@click.argument('node_id')
@click.argument('ip')
@click.argument('port', type=int)
@click.argument('ca_file', type=click.Path(exists=True))
@click.option('--force', is_flag=True, help='Store the new address even if the node does not answer')
@click.pass_context
def update_node(ctx, node_id, ip, port, ca_file, force):
    """Move a node to a new address or certificate."""
    ca = Path(ca_file).read_text()

    async def action(panel):
        return await panel.registry.reconfigure(node_id, ip, port, ca, force=force)

    updated = run_with_panel(ctx, action)
    state = "[green]reachable[/green]" if updated.connected else "[yellow]unreachable[/yellow]"
    console.print(f"✓ Node {updated.id} now at {updated.address} ({state})")


@nodes.command('remove')
@click.argument('node_id')
@click.option('--force', is_flag=True, help='Remove the node even if it cannot be told')
@click.pass_context
def remove_node(ctx, node_id, force):
    """Unpair a node."""
    async def action(panel):
        return await panel.registry.unpair(node_id, force=force)

    run_with_panel(ctx, action)
    console.print(f"[green]✓ Removed node {node_id}[/green]")


# === Files ===

@cli.command()
@click.argument('path', default='/')
@click.pass_context
def ls(ctx, path):
    """List a directory."""
    async def action(panel):
        return await panel.list_directory(path)

    listing = run_with_panel(ctx, action)
    if not listing['files'] and not listing['directories']:
        console.print(f"[yellow]{listing['path']} is empty[/yellow]")
        return

    table = Table(title=listing['path'])
    table.add_column("Name", style="cyan")
    table.add_column("Size", justify="right", style="yellow")
    table.add_column("Status")
    for directory in listing['directories']:
        table.add_row(f"{directory}/", "", "")
    for f in listing['files']:
        table.add_row(f['name'], format_size(f['size']), f['status'])
    console.print(table)


@cli.command()
@click.argument('file_path', type=click.Path(exists=True, dir_okay=False))
@click.argument('path', default='/')
@click.option('--name', '-n', default=None, help='Name to store the file under')
@click.pass_context
def upload(ctx, file_path, path, name):
    """Upload a local file into PATH."""
    file_path = Path(file_path)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
        console=console,
    ) as progress:
        task = progress.add_task("Uploading...", total=100)

        def update_progress(p):
            progress.update(
                task,
                completed=p.progress_percent,
                description=f"Uploading... ({p.parts_confirmed}/{p.total_parts} parts)"
            )

        async def action(panel):
            return await panel.upload_file(file_path, path, name, update_progress)

        result = run_with_panel(ctx, action)

    if result.success:
        console.print(f"\n[green]✓ Uploaded {result.path}{result.name} "
                      f"({result.total_parts} parts)[/green]")
    else:
        console.print(f"\n[red]✗ Upload failed: {result.message}[/red]")
        raise SystemExit(1)


@cli.command()
@click.argument('path')
@click.argument('name')
@click.option('--output', '-o', type=click.Path(), help='Output path')
@click.pass_context
def download(ctx, path, name, output):
    """Download the file NAME from PATH."""
    output_path = Path(output) if output else Path(name)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
        console=console,
    ) as progress:
        task = progress.add_task("Downloading...", total=100)

        def update_progress(p):
            progress.update(
                task,
                completed=p.progress_percent,
                description=f"Downloading... ({p.parts_done}/{p.total_parts} parts)"
            )

        async def action(panel):
            return await panel.download_to(path, name, output_path,
                                           progress_callback=update_progress)

        result = run_with_panel(ctx, action)

    console.print(f"\n[green]✓ Downloaded to: {result}[/green]")


@cli.command()
@click.argument('path')
@click.argument('name')
@click.pass_context
def delete(ctx, path, name):
    """Delete the file NAME from PATH and from its nodes."""
    async def action(panel):
        return await panel.delete(path, name)

    result = run_with_panel(ctx, action)
    if result.success:
        console.print(f"[green]✓ Deleted {result.path}{result.name}[/green]")
    else:
        console.print(f"[red]✗ {result.message} "
                      f"({result.parts_deleted}/{result.parts_total} parts removed)[/red]")
        raise SystemExit(1)


if __name__ == '__main__':
    cli()
