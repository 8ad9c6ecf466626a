"""Command line interface for the espmon package."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional

import typer

from .link.config import LinkConfig, load_config
from .link.errors import LinkError
from .link.monitor import TelemetryMonitor
from .link.payload import RelayState
from .link.state import TelemetrySnapshot

app = typer.Typer(
    add_completion=False,
    context_settings={"help_option_names": ["-h", "--help"]},
    help="ESP32 telemetry and relay board link utilities.",
)
relay_app = typer.Typer(help="Relay board commands.")
app.add_typer(relay_app, name="relay")


@app.callback()
def main(
    ctx: typer.Context,
    transport: Optional[str] = typer.Option(None, "--transport", "-t", help="Link type: serial|socket."),
    port: Optional[str] = typer.Option(None, "--port", "-p", help="Serial device."),
    baudrate: Optional[int] = typer.Option(None, "--baud", help="Serial baudrate."),
    url: Optional[str] = typer.Option(None, "--url", help="Websocket endpoint, e.g. ws://localhost:8080."),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to link config JSON."),
    override: Optional[list[str]] = typer.Option(
        None,
        "--set",
        help="Override config keys, e.g. --set socket.max_reconnect_attempts=3",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        cfg = load_config(config_path, override)
    except (OSError, ValueError) as exc:
        raise typer.BadParameter(f"Invalid configuration: {exc}") from exc
    if transport is not None:
        if transport.lower() not in {"serial", "socket"}:
            raise typer.BadParameter("--transport must be one of serial, socket")
        cfg.transport = transport.lower()
    if port is not None:
        cfg.serial.port = port
    if baudrate is not None:
        cfg.serial.baudrate = baudrate
    if url is not None:
        cfg.socket.url = url
    ctx.obj = cfg


def format_snapshot(snapshot: TelemetrySnapshot) -> str:
    accel = snapshot.acceleration
    return (
        f"V={snapshot.voltage:.2f} "
        f"T={snapshot.temperature:.1f}C motor={snapshot.motor_temp:.1f}C "
        f"gap={snapshot.gap_height:.1f} "
        f"|a|={accel.magnitude:.2f} speed={snapshot.speed:.2f} "
        f"relays={format_relays(snapshot.relays)}"
        + (" CRITICAL" if snapshot.critical_temperature else "")
    )


def format_relays(relays: RelayState) -> str:
    return "".join("1" if value else "0" for value in relays.as_dict().values())


@app.command()
def monitor(
    ctx: typer.Context,
    interval: float = typer.Option(1.0, "--interval", "-i", help="Seconds between status lines."),
) -> None:
    """Stream telemetry and print the latest values until Ctrl+C."""

    cfg: LinkConfig = ctx.obj
    mon = TelemetryMonitor(cfg)

    def tick(current: TelemetryMonitor) -> None:
        state = current.connection_state.value
        if current.session.connected:
            typer.echo(f"[{state}] {format_snapshot(current.snapshot())}")
        else:
            typer.echo(f"[{state}] {current.session.error or ''}")

    mon.run(interval=interval, on_tick=tick)
    if mon.session.terminal:
        typer.echo(f"[error] {mon.session.error}")
        raise typer.Exit(code=1)


def _query_status(mon: TelemetryMonitor) -> str:
    return mon.commands.query_status()


def _run_relay_command(
    cfg: LinkConfig,
    action: Optional[Callable[[TelemetryMonitor], str]],
    wait: float,
) -> None:
    mon = TelemetryMonitor(cfg)
    seen = mon.relay_update_count
    if not mon.connect():
        mon.disconnect()
        typer.echo(f"{mon.session.error or 'Connection failed'}")
        raise typer.Exit(code=1)
    try:
        # connect() queries STATUS; settle on that reply before acting
        confirmed = mon.wait_for_relays(wait, since=seen)
        if confirmed is None and action is None:
            action = _query_status
        elif confirmed is None:
            typer.echo("[warning] no relay status from device; using local state")
        if action is not None:
            seen = mon.relay_update_count
            command = action(mon)
            typer.echo(f"Sent {command}")
            confirmed = mon.wait_for_relays(wait, since=seen)
    except LinkError as exc:
        typer.echo(f"Command failed: {exc}")
        raise typer.Exit(code=1) from exc
    finally:
        mon.disconnect()
    if confirmed is None:
        typer.echo(f"Relays (unconfirmed): {format_relays(mon.state.relays)}")
    else:
        typer.echo(f"Relays: {format_relays(confirmed)}")


@relay_app.command("toggle")
def relay_toggle(
    ctx: typer.Context,
    relay: int = typer.Argument(..., min=1, max=4, help="Relay number (1-4)."),
    wait: float = typer.Option(2.0, "--wait", help="Seconds to wait for the device status."),
) -> None:
    """Flip one relay relative to the device's reported state."""

    _run_relay_command(ctx.obj, lambda mon: mon.commands.toggle_relay(relay), wait)


@relay_app.command("on")
def relay_all_on(
    ctx: typer.Context,
    wait: float = typer.Option(2.0, "--wait", help="Seconds to wait for the device status."),
) -> None:
    """Switch every relay on."""

    _run_relay_command(ctx.obj, lambda mon: mon.commands.turn_all_on(), wait)


@relay_app.command("off")
def relay_all_off(
    ctx: typer.Context,
    wait: float = typer.Option(2.0, "--wait", help="Seconds to wait for the device status."),
) -> None:
    """Switch every relay off."""

    _run_relay_command(ctx.obj, lambda mon: mon.commands.turn_all_off(), wait)


@relay_app.command("status")
def relay_status(
    ctx: typer.Context,
    wait: float = typer.Option(2.0, "--wait", help="Seconds to wait for the device status."),
) -> None:
    """Ask the device for its relay state."""

    _run_relay_command(ctx.obj, None, wait)


def run() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    run()
