#!/usr/bin/env python3
import json
import logging
import time
from typing import List, Optional

import typer

from cocktailbot.config import BartenderConfig, load_config
from cocktailbot.errors import (BartenderError, DeviceBusyError, DeviceUnreachableError,
                                NotFoundError, ProtocolUnsupportedError, ValidationError)
from cocktailbot.probe import probe_function_codes, suggest_read_order
from cocktailbot.service import Bartender
from cocktailbot.status import StatusSnapshot

app = typer.Typer(add_completion=False, help="Drive the cocktail robot over Modbus TCP.")

ConfigOpt = typer.Option(None, "--config", "-c", help="YAML config file")
HostOpt = typer.Option(None, help="Robot IP address (overrides config)")
PortOpt = typer.Option(None, help="Robot Modbus TCP port (overrides config)")
SimulateOpt = typer.Option(False, "--simulate", help="Use the in-process simulator instead of a robot")
LogLevelOpt = typer.Option("WARNING", "--log-level", help="Logging level")


def _setup(config_path: Optional[str], host: Optional[str], port: Optional[int], log_level: str) -> BartenderConfig:
    logging.basicConfig(level=log_level.upper(), format="%(asctime)s %(levelname)s %(name)s %(message)s")
    try:
        config = load_config(config_path)
    except ValidationError as e:
        typer.echo(f"Config error: {e}", err=True)
        raise typer.Exit(code=1)
    if host:
        config.device.host = host
    if port:
        config.device.port = port
    return config


def _open(config: BartenderConfig, simulate: bool) -> Bartender:
    bartender = Bartender.from_config(config, simulate=simulate)
    bartender.connect()
    return bartender


def _fail(e: BartenderError) -> None:
    if isinstance(e, NotFoundError):
        kind = "Not found"
    elif isinstance(e, DeviceBusyError):
        kind = "Robot busy"
    elif isinstance(e, DeviceUnreachableError):
        kind = "Robot unreachable"
    elif isinstance(e, ProtocolUnsupportedError):
        kind = "Modbus function not supported"
    elif isinstance(e, ValidationError):
        kind = "Invalid request"
    else:
        kind = "Error"
    typer.echo(f"{kind}: {e}", err=True)
    raise typer.Exit(code=1)


def format_status(snapshot: StatusSnapshot) -> str:
    state = snapshot.state
    raised = [k for k, v in state.flags.items() if v]
    line = f"connected={snapshot.connected} progress={state.progress()}% flags={','.join(raised) or '-'}"
    if snapshot.error:
        line += f" error={snapshot.error}"
    return line


def wait_until_done(bartender: Bartender, poll: float = 0.5, timeout: Optional[float] = None) -> None:
    """Block until the completion monitor has reset every job."""
    limit = timeout if timeout is not None else bartender.timing.safety_timeout + 2 * bartender.timing.poll_interval
    t0 = time.monotonic()
    last = None
    while bartender.monitor.has_active_job() and time.monotonic() - t0 < limit:
        line = format_status(bartender.status())
        if line != last:
            typer.echo(line)
            last = line
        time.sleep(poll)


def interactive_loop(bartender: Bartender) -> None:
    """Run the interactive REPL-style CLI for robot control."""
    typer.echo("Connected to bartender robot")
    typer.echo("Commands: menu, order <id>, custom <ingredient...>, status, health, wait, exit")

    while True:
        try:
            cmd = input("bartender> ").strip().split()
            if not cmd:
                continue

            if cmd[0] in ("exit", "quit"):
                typer.echo("Exiting...")
                break

            elif cmd[0] == "menu":
                for c in bartender.list_cocktails():
                    typer.echo(f"{c.id:18} {c.name} ({c.category}, trigger {c.trigger_address})")

            elif cmd[0] == "order":
                if len(cmd) < 2:
                    typer.echo("Usage: order <cocktail-id>")
                    continue
                typer.echo(bartender.trigger(cmd[1]).message)

            elif cmd[0] == "custom":
                if len(cmd) < 2:
                    typer.echo("Usage: custom <ingredient> [ingredient...]")
                    continue
                result = bartender.trigger_custom(cmd[1:])
                typer.echo(f"{result.message}: {', '.join(result.ingredients)} extras={result.extras}")

            elif cmd[0] == "status":
                typer.echo(format_status(bartender.status()))

            elif cmd[0] == "health":
                typer.echo(json.dumps(bartender.health().to_dict()))

            elif cmd[0] == "wait":
                wait_until_done(bartender)

            else:
                typer.echo("Unknown command")

        except (KeyboardInterrupt, EOFError):
            typer.echo("\nExiting...")
            break
        except BartenderError as e:
            typer.echo(f"Error: {e}")

    bartender.close()


@app.command()
def menu(config: Optional[str] = ConfigOpt, category: Optional[str] = typer.Option(None, help="Filter by category")):
    """List the cocktails on the menu."""
    cfg = _setup(config, None, None, "WARNING")
    cocktails = cfg.menu.by_category(category) if category else list(cfg.menu)
    for c in cocktails:
        steps = " -> ".join(s.label for s in c.steps)
        typer.echo(f"{c.id:18} {c.name:22} trigger {c.trigger_address}  {steps}")


@app.command()
def order(
    cocktail_id: str = typer.Argument(..., help="Cocktail id, e.g. mojito"),
    wait: bool = typer.Option(True, "--wait/--no-wait", help="Stay until the drink is ready and coils are reset"),
    config: Optional[str] = ConfigOpt,
    host: Optional[str] = HostOpt,
    port: Optional[int] = PortOpt,
    simulate: bool = SimulateOpt,
    log_level: str = LogLevelOpt,
):
    """Order a cocktail from the menu."""
    cfg = _setup(config, host, port, log_level)
    bartender = _open(cfg, simulate)
    try:
        result = bartender.trigger(cocktail_id)
        typer.echo(f"{result.message} (job {result.job_id})")
        if wait:
            wait_until_done(bartender)
            typer.echo("Drink ready, trigger coils reset")
    except BartenderError as e:
        _fail(e)
    finally:
        bartender.close()


@app.command()
def custom(
    ingredients: List[str] = typer.Argument(..., help="Ingredient ids, e.g. mint ice soda"),
    wait: bool = typer.Option(True, "--wait/--no-wait", help="Stay until the drink is ready and coils are reset"),
    config: Optional[str] = ConfigOpt,
    host: Optional[str] = HostOpt,
    port: Optional[int] = PortOpt,
    simulate: bool = SimulateOpt,
    log_level: str = LogLevelOpt,
):
    """Order a custom drink from individual ingredients."""
    cfg = _setup(config, host, port, log_level)
    bartender = _open(cfg, simulate)
    try:
        result = bartender.trigger_custom(ingredients)
        extras = ", ".join(k for k, v in result.extras.items() if v) or "none"
        typer.echo(f"{result.message}: {', '.join(result.ingredients)} (extras: {extras})")
        if wait:
            wait_until_done(bartender)
            typer.echo("Drink ready, trigger coils reset")
    except BartenderError as e:
        _fail(e)
    finally:
        bartender.close()


@app.command()
def status(
    config: Optional[str] = ConfigOpt,
    host: Optional[str] = HostOpt,
    port: Optional[int] = PortOpt,
    simulate: bool = SimulateOpt,
    as_json: bool = typer.Option(False, "--json", help="Print the snapshot as JSON"),
    log_level: str = LogLevelOpt,
):
    """Read the robot state once."""
    cfg = _setup(config, host, port, log_level)
    bartender = _open(cfg, simulate)
    try:
        snapshot = bartender.status()
        typer.echo(json.dumps(snapshot.to_dict(), indent=2) if as_json else format_status(snapshot))
    finally:
        bartender.close()


@app.command()
def health(
    config: Optional[str] = ConfigOpt,
    host: Optional[str] = HostOpt,
    port: Optional[int] = PortOpt,
    simulate: bool = SimulateOpt,
    log_level: str = LogLevelOpt,
):
    """Check the Modbus connection; exits 1 when unhealthy."""
    cfg = _setup(config, host, port, log_level)
    bartender = Bartender.from_config(cfg, simulate=simulate)
    try:
        report = bartender.health()
        typer.echo(json.dumps(report.to_dict(), indent=2))
    finally:
        bartender.close()
    if not report.healthy:
        raise typer.Exit(code=1)


@app.command()
def watch(
    config: Optional[str] = ConfigOpt,
    host: Optional[str] = HostOpt,
    port: Optional[int] = PortOpt,
    log_level: str = LogLevelOpt,
):
    """Print status changes until the drink is ready (Ctrl+C to stop)."""
    cfg = _setup(config, host, port, log_level)
    bartender = _open(cfg, False)
    typer.echo("Watching robot status... (Ctrl+C to stop)")
    handle = bartender.watch_status(lambda s: typer.echo(format_status(s)))
    try:
        while not handle.cancelled:
            time.sleep(0.2)
        typer.echo("Drink ready")
    except KeyboardInterrupt:
        handle.cancel()
        typer.echo("Stopped status watch")
    finally:
        bartender.close()


@app.command()
def probe(
    address: int = typer.Argument(..., help="Address to probe, e.g. 92"),
    count: int = typer.Option(1, help="Number of bits to read"),
    config: Optional[str] = ConfigOpt,
    host: Optional[str] = HostOpt,
    port: Optional[int] = PortOpt,
    simulate: bool = SimulateOpt,
    log_level: str = LogLevelOpt,
):
    """Test which Modbus read functions the robot supports on an address."""
    cfg = _setup(config, host, port, log_level)
    bartender = _open(cfg, simulate)
    try:
        results = probe_function_codes(bartender.transport, address, count)
        for r in results:
            typer.echo(r.describe())
        suggested = suggest_read_order(results)
        typer.echo(f"Suggested read_order: {[k.value for k in suggested]}")
    finally:
        bartender.close()


@app.command()
def shell(
    config: Optional[str] = ConfigOpt,
    host: Optional[str] = HostOpt,
    port: Optional[int] = PortOpt,
    simulate: bool = SimulateOpt,
    log_level: str = LogLevelOpt,
):
    """Interactive session against one robot."""
    cfg = _setup(config, host, port, log_level)
    bartender = Bartender.from_config(cfg, simulate=simulate)
    if not bartender.connect():
        typer.echo(f"Failed to connect to robot at {cfg.device.host}:{cfg.device.port}", err=True)
        raise typer.Exit(code=1)
    interactive_loop(bartender)


@app.command()
def simulator(
    host: Optional[str] = typer.Option(None, help="Listen address (overrides config)"),
    port: Optional[int] = typer.Option(None, help="Port for the Modbus TCP server (overrides config)"),
    config: Optional[str] = ConfigOpt,
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level"),
):
    """Run the robot simulator as a Modbus TCP server."""
    from cocktailbot.server import run_simulator_server

    cfg = _setup(config, None, None, log_level)
    run_simulator_server(cfg, host=host, port=port)


if __name__ == "__main__":
    app()
