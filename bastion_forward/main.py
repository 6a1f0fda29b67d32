"""
Main entry point for Bastion Forward.

This module provides the command-line interface: open a tunnel from
configuration and keep it up until interrupted, and generate or validate
configuration files.
"""

import asyncio
import logging
import signal
import sys
from typing import List, Optional

import typer

from .application.tunnel import TunnelHandle
from .core.exceptions import TunnelError
from .core.interfaces.tunnel import TunnelSpec
from .infrastructure.config.loader import ConfigLoader
from .infrastructure.config.models import ApplicationConfig
from .infrastructure.logging.setup import setup_logging

cli = typer.Typer(
    name="bastion-forward",
    help="Forward a local TCP port to a destination behind an SSH bastion host"
)

logger = logging.getLogger(__name__)


@cli.command("open")
def open_tunnel_command(
    config_file: Optional[str] = typer.Option(
        None, "--config", "-c", help="Configuration file path"
    ),
    local_port: Optional[int] = typer.Option(
        None, "--local-port", "-p", help="Local port (default: OS-assigned)"
    ),
    log_level: Optional[str] = typer.Option(
        None, "--log-level", help="Logging level"
    ),
    debug: bool = typer.Option(
        False, "--debug", help="Enable debug mode"
    )
) -> None:
    """Open the tunnel and keep it up until interrupted."""

    config_loader = ConfigLoader()
    try:
        config = config_loader.load_config(config_file)
    except (OSError, ValueError) as e:
        typer.echo(f"Error loading configuration: {e}", err=True)
        sys.exit(2)

    if local_port is not None:
        config.tunnel.local_port = local_port
    if log_level:
        config.logging.level = log_level.upper()
    if debug:
        config.debug = True
        config.logging.level = "DEBUG"

    setup_logging(config.logging)

    try:
        spec = config.tunnel.to_spec()
    except ValueError as e:
        typer.echo(f"Invalid tunnel configuration: {e}", err=True)
        sys.exit(2)

    try:
        asyncio.run(run_tunnel(spec))
    except KeyboardInterrupt:
        logger.info("Tunnel interrupted by user")
    except TunnelError as e:
        logger.error(f"Tunnel failed: {e}")
        sys.exit(1)


@cli.command()
def init_config(
    output: str = typer.Option(
        "tunnel.yaml", "--output", "-o", help="Output configuration file"
    ),
    format: str = typer.Option(
        "yaml", "--format", "-f", help="Configuration format (yaml/json)"
    )
) -> None:
    """Generate a default configuration file."""

    config = ApplicationConfig()
    config_loader = ConfigLoader()

    try:
        config_loader.save_config(config, output, format)
        typer.echo(f"Default configuration saved to {output}")
    except ValueError as e:
        typer.echo(f"Error saving configuration: {e}", err=True)
        sys.exit(1)


@cli.command()
def validate_config(
    config_file: str = typer.Argument(...,
                                      help="Configuration file to validate")
) -> None:
    """Validate a configuration file."""

    config_loader = ConfigLoader()

    try:
        config = config_loader.load_config(config_file)
        spec = config.tunnel.to_spec()
    except (OSError, ValueError) as e:
        typer.echo(f"Configuration validation failed: {e}", err=True)
        sys.exit(1)

    typer.echo(f"Configuration file {config_file} is valid")
    typer.echo(f"Bastion: {spec.username}@{spec.bastion}")
    typer.echo(f"Destination: {spec.destination}")
    typer.echo(f"Host key policy: {spec.host_key_policy.value}")


async def run_tunnel(spec: TunnelSpec) -> None:
    """
    Run a tunnel until SIGINT/SIGTERM or until the SSH session is lost.

    Args:
        spec: Tunnel description
    """
    handle = TunnelHandle(spec)
    await handle.start()

    host, port = handle.local_address
    typer.echo(f"Forwarding {host}:{port} -> {spec.destination} via {spec.username}@{spec.bastion}")

    loop = asyncio.get_running_loop()
    stop_tasks: List["asyncio.Task[None]"] = []

    def signal_handler(signum: signal.Signals) -> None:
        logger.info(f"Received signal {signum.name}, stopping tunnel")
        stop_tasks.append(asyncio.create_task(handle.stop()))

    installed: List[signal.Signals] = []
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, signal_handler, signum)
            installed.append(signum)
        except NotImplementedError:
            # Windows event loops; KeyboardInterrupt still ends asyncio.run
            pass

    try:
        await handle.serve_forever()
    finally:
        for signum in installed:
            loop.remove_signal_handler(signum)
        await handle.stop()
        logger.info("Tunnel shutdown completed")


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
