#!/usr/bin/env python3
"""otrelay CLI - share one OpenTherm Gateway between several clients.

The relay connects to the gateway (normally the port otmonitor provides) and
offers the same line protocol on its own port, so that e.g. Domoticz can be
connected while otmonitor keeps working.

Examples:
    # Relay otmonitor's port 7686 on port 7689
    python relay.py start

    # Gateway elsewhere, replace the DHW temperature with the solar boiler temperature
    python relay.py start --gateway-host 192.168.1.20 --replace-field --watch-id 29 --field-index 11

    # Settings from a file, CLI options still override
    python relay.py start --config relay.yaml
"""
from __future__ import annotations

import asyncio
import logging
import signal
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

# Ensure the otrelay package is importable
if __name__ == "__main__":
    import os
    sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from otrelay.bridge import Relay
from otrelay.bridge.pipeline import printable
from otrelay.bridge.status import PS1_FIELDS
from otrelay.config import RelayConfig, config_from_dict, load_config

app = typer.Typer(
    name="relay",
    help="otrelay - share one OpenTherm Gateway between several TCP clients",
    add_completion=False,
)
console = Console()


def setup_logging(verbose: bool = False) -> None:
    """Configure logging with rich output."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, console=console)],
    )


def build_config(config_path: Optional[Path], overrides: Dict[str, Any]) -> RelayConfig:
    """Merge the optional config file with the options given on the command line."""
    try:
        base = load_config(config_path) if config_path else RelayConfig()
        values = asdict(base)
        values.update({k: v for k, v in overrides.items() if v is not None})
        return config_from_dict(values)
    except (OSError, ValueError) as e:
        raise typer.BadParameter(str(e)) from e


def config_table(config: RelayConfig) -> Table:
    table = Table(title="Relay Configuration", show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="yellow")
    table.add_row("Gateway", f"{config.gateway_host}:{config.gateway_port}")
    table.add_row("Clients", f"{config.listen_host}:{config.listen_port}")
    table.add_row(
        "Command rewrite",
        f"{config.prefix_from} -> {config.prefix_to}" if config.rewrite_prefix else "off",
    )
    table.add_row("Reset PS state", "on" if config.reset_ps_state else "off")
    if config.replace_field:
        field = PS1_FIELDS[config.field_index - 1]
        table.add_row(
            "Field substitution",
            f"field {config.field_index} ({field.description}) <- data-id {config.watched_id}",
        )
    else:
        table.add_row("Field substitution", "off")
    return table


@app.command()
def start(
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="YAML or JSON file with relay settings",
    ),
    listen_host: Optional[str] = typer.Option(
        None,
        "--listen-host",
        "-lh",
        help="Host address to bind the client server (default: 0.0.0.0)",
    ),
    listen_port: Optional[int] = typer.Option(
        None,
        "--listen-port",
        "-lp",
        help="Port clients connect to (default: 7689)",
    ),
    gateway_host: Optional[str] = typer.Option(
        None,
        "--gateway-host",
        "-gh",
        help="Host of the gateway / otmonitor (default: localhost)",
    ),
    gateway_port: Optional[int] = typer.Option(
        None,
        "--gateway-port",
        "-gp",
        help="Port of the gateway / otmonitor (default: 7686)",
    ),
    rewrite_prefix: Optional[bool] = typer.Option(
        None,
        "--rewrite-prefix/--no-rewrite-prefix",
        help="Rewrite client TT= commands to TC=",
    ),
    reset_ps_state: Optional[bool] = typer.Option(
        None,
        "--reset-ps/--no-reset-ps",
        help="Send PS=0 after a client's PS=1 summary was delivered",
    ),
    replace_field: Optional[bool] = typer.Option(
        None,
        "--replace-field/--no-replace-field",
        help="Replace one PS=1 field with the value of a watched data-id",
    ),
    watched_id: Optional[int] = typer.Option(
        None,
        "--watch-id",
        "-w",
        help="OpenTherm data-id providing the replacement value (default: 29)",
    ),
    field_index: Optional[int] = typer.Option(
        None,
        "--field-index",
        "-f",
        help="1-based PS=1 field to replace (default: 11), see 'fields'",
    ),
    trace_frames: Optional[bool] = typer.Option(
        None,
        "--trace-frames/--no-trace-frames",
        help="Decode and log acknowledged instruction frames",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable debug logging",
    ),
) -> None:
    """Start the relay.

    The relay connects to the gateway and accepts clients that expect the
    gateway's own line protocol.
    """
    setup_logging(verbose)

    config = build_config(
        config_file,
        {
            "listen_host": listen_host,
            "listen_port": listen_port,
            "gateway_host": gateway_host,
            "gateway_port": gateway_port,
            "rewrite_prefix": rewrite_prefix,
            "reset_ps_state": reset_ps_state,
            "replace_field": replace_field,
            "watched_id": watched_id,
            "field_index": field_index,
            "trace_frames": trace_frames,
        },
    )

    console.print(config_table(config))
    console.print()

    relay = Relay(config)

    if verbose:
        def log_line(line, session):
            console.print(f"[dim]← {printable(line)}[/dim]")

        def log_command(command, session):
            console.print(f"[dim]→ {printable(command)}[/dim]")

        relay.pipeline.add_line_hook(log_line)
        relay.pipeline.add_command_hook(log_command)

    console.print(Panel.fit("[bold green]Starting relay...[/bold green]"))

    async def run() -> int:
        loop = asyncio.get_running_loop()
        stop_event = asyncio.Event()

        def signal_handler():
            console.print("\n[yellow]Shutting down...[/yellow]")
            stop_event.set()

        try:
            loop.add_signal_handler(signal.SIGINT, signal_handler)
            loop.add_signal_handler(signal.SIGTERM, signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

        try:
            await relay.start()
        except OSError as e:
            console.print(f"[red]Could not open port {config.listen_port} for clients to connect to: {e}[/red]")
            console.print("Check whether the port is free to use, and adapt --listen-port.")
            console.print("A common mistake is using the port number of the gateway instead of a free one.")
            return 1

        console.print("[bold green]Relay running. Press Ctrl+C to stop.[/bold green]")
        try:
            while not stop_event.is_set():
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=60)
                except asyncio.TimeoutError:
                    stats = relay.get_stats()
                    console.print(
                        f"[dim]Stats: {stats['lines_relayed']} lines relayed, "
                        f"{stats['commands_forwarded']} commands, "
                        f"{stats['clients']} clients, "
                        f"gateway {'up' if stats['gateway_connected'] else 'down'}[/dim]"
                    )
        finally:
            await relay.stop()
            console.print("[green]Relay stopped.[/green]")
        return 0

    try:
        code = asyncio.run(run())
    except KeyboardInterrupt:
        code = 0
    if code:
        raise typer.Exit(code)


@app.command()
def fields() -> None:
    """List the 25 fields of the PS=1 summary line."""
    table = Table(title="PS=1 Summary Fields", show_header=True)
    table.add_column("Field", style="cyan", justify="right")
    table.add_column("Data-id", style="green", justify="right")
    table.add_column("Description", style="yellow")
    table.add_column("Printed as")
    for field in PS1_FIELDS:
        table.add_row(str(field.index), str(field.data_id), field.description, field.rendering)
    console.print(table)


@app.command()
def info() -> None:
    """Display relay capabilities and usage information."""
    console.print(
        Panel.fit(
            "[bold]otrelay - OpenTherm Gateway relay[/bold]\n\n"
            "Offers the gateway's line protocol on a second port so that\n"
            "another client can connect while otmonitor keeps working.\n\n"
            "[bold]Features:[/bold]\n"
            "  • Any number of clients, commands forwarded to the gateway\n"
            "  • Instruction frames (B40190A00 etc.) are not relayed\n"
            "  • Repair of malformed PR: and PS=1 lines\n"
            "  • TT= to TC= command rewrite (--rewrite-prefix)\n"
            "  • PS=0 after a client's PS=1 summary (--reset-ps)\n"
            "  • Replace a PS=1 field with a watched data-id (--replace-field)\n"
            "  • Reconnects to the gateway forever (1s after close, 10s after error)\n\n"
            "Run 'fields' to list the PS=1 field numbers.\n",
            title="About",
        )
    )


if __name__ == "__main__":
    app()
