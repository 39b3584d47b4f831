"""Command line interface for igdp."""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import Any

import click
from rich.console import Console
from rich.table import Table

from igdp import __version__
from igdp.config import load_config
from igdp.exceptions import ConfigurationError, IGDError
from igdp.logging_config import LoggingContext, get_logger, setup_logging
from igdp.models import Config, LogLevel, Protocol
from igdp.session import get_external_ip, open_controlled_session, request_port_mapping

logger = get_logger("cli")

DEFAULT_LEASE_DURATION = 3600
DEFAULT_DESCRIPTION = "igdp"

_VERBOSITY_LEVELS = {1: LogLevel.INFO, 2: LogLevel.DEBUG}


def _run(operation: str, coro: Coroutine[Any, Any, Any], **kwargs: Any) -> Any:
    """Run ``coro`` to completion, turning library errors into CLI errors."""
    try:
        with LoggingContext(operation, logger, **kwargs):
            return asyncio.run(coro)
    except IGDError as e:
        raise click.ClickException(str(e)) from e


def _protocol_option(func):
    return click.option(
        "--protocol",
        "-p",
        type=click.Choice(["tcp", "udp"], case_sensitive=False),
        default="tcp",
        show_default=True,
        help="Transport protocol of the mapping",
    )(func)


@click.group()
@click.option(
    "--config",
    "-c",
    "config_file",
    type=click.Path(exists=True, dir_okay=False),
    help="Configuration file path",
)
@click.option(
    "--bind",
    "-b",
    "bind_addresses",
    multiple=True,
    help="Local address to bind, e.g. 192.168.1.10:0 (repeatable)",
)
@click.option(
    "--verbose",
    "-v",
    count=True,
    help="Increase verbosity (-v: info, -vv: debug)",
)
@click.version_option(__version__, prog_name="igdp")
@click.pass_context
def cli(ctx, config_file, bind_addresses, verbose):
    """igdp - UPnP Internet Gateway Device client."""
    try:
        config = load_config(config_file)
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e

    if bind_addresses:
        config.bind_addresses = list(bind_addresses)
    if verbose:
        config.observability.log_level = _VERBOSITY_LEVELS[min(verbose, 2)]

    setup_logging(config.observability)
    ctx.obj = {"config": config, "console": Console()}


@cli.command("external-ip")
@click.pass_context
def external_ip(ctx) -> None:
    """Show the gateway's external IP address."""
    config: Config = ctx.obj["config"]
    console: Console = ctx.obj["console"]

    address = _run("external-ip", get_external_ip(None, config))

    if address is None:
        console.print("[yellow]Gateway did not report an external IP address[/yellow]")
    else:
        console.print(f"[green]External IP:[/green] {address}")


@cli.command("map-port")
@click.argument("port", type=click.IntRange(1, 65535))
@_protocol_option
@click.option(
    "--lease",
    "-l",
    type=click.IntRange(0),
    default=DEFAULT_LEASE_DURATION,
    show_default=True,
    help="Lease duration in seconds",
)
@click.option(
    "--description",
    "-d",
    default=DEFAULT_DESCRIPTION,
    show_default=True,
    help="Mapping description shown by the gateway",
)
@click.pass_context
def map_port(ctx, port, protocol, lease, description) -> None:
    """Map an external port chosen by the gateway to local PORT."""
    config: Config = ctx.obj["config"]
    console: Console = ctx.obj["console"]
    proto = Protocol.parse(protocol)

    external_port = _run(
        "map-port",
        request_port_mapping(None, proto, port, lease, description, config),
        internal_port=port,
    )

    table = Table(title="Port Mapping")
    table.add_column("Protocol", style="cyan")
    table.add_column("Internal Port", style="magenta")
    table.add_column("External Port", style="yellow")
    table.add_column("Lease (s)", style="blue")
    table.add_row(
        str(proto),
        str(port),
        str(external_port) if external_port is not None else "unknown",
        str(lease),
    )
    console.print(table)


@cli.command("unmap-port")
@click.argument("port", type=click.IntRange(1, 65535))
@_protocol_option
@click.pass_context
def unmap_port(ctx, port, protocol) -> None:
    """Remove the mapping of external PORT."""
    config: Config = ctx.obj["config"]
    console: Console = ctx.obj["console"]
    proto = Protocol.parse(protocol)

    async def _unmap() -> None:
        async with await open_controlled_session(None, config) as session:
            await session.delete_port_mapping(proto, port)

    _run("unmap-port", _unmap(), external_port=port)

    console.print(f"[green]Removed {proto} mapping for external port {port}[/green]")


def main():
    """Main CLI entry point."""
    cli()


if __name__ == "__main__":
    main()
