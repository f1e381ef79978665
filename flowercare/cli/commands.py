"""
Command line interface for the Flower Care Exporter.
"""

import asyncio
import sys
from typing import Dict, Optional, Tuple

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .. import __version__
from ..ble.miflora import MifloraReader, Reading, ReadError
from ..service.daemon import FlowercareDaemon, FlowercareDaemonError
from ..utils.config import Config, ConfigurationError, Sensor, parse_sensor
from ..utils.logging import PerformanceMonitor, setup_logging


console = Console(stderr=True)


def build_config(env_file: Optional[str] = None, **options) -> Config:
    """
    Create a configuration where the given command line options override the
    environment. Options that were not given are left to the environment.
    """
    sensors: Tuple[str, ...] = options.pop("sensors", ()) or ()
    keys = {
        "addr": "FLOWERCARE_LISTEN_ADDR",
        "adapter": "BLE_ADAPTER",
        "refresh_duration": "REFRESH_INTERVAL",
        "stale_duration": "STALE_AFTER",
        "retry_min": "RETRY_MIN_DURATION",
        "retry_max": "RETRY_MAX_DURATION",
        "retry_factor": "RETRY_FACTOR",
        "cool_down_period": "COOLDOWN_PERIOD",
        "log_level": "LOG_LEVEL",
    }

    overrides: Dict[str, str] = {}
    for option, key in keys.items():
        value = options.get(option)
        if value is not None:
            overrides[key] = str(value)
    if sensors:
        overrides["FLOWERCARE_SENSORS"] = ",".join(sensors)

    return Config(env_file=env_file, overrides=overrides)


def render_reading(sensor: Sensor, reading: Reading) -> Table:
    """Render one reading as a two column table."""
    table = Table(title=str(sensor), show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="white")

    table.add_row("Time", reading.timestamp.isoformat(timespec="seconds"))
    table.add_row("Firmware", reading.firmware_version)
    table.add_row("Battery", f"{reading.battery_percent}%")
    table.add_row("Temperature", f"{reading.temperature_celsius:.1f}°C")
    table.add_row("Moisture", f"{reading.moisture_percent}%")
    table.add_row("Light", f"{reading.light_lux} lx")
    table.add_row("Conductivity", f"{reading.conductivity} µS/cm")
    return table


def render_summary(summary: dict) -> Table:
    """Render the configuration summary."""
    table = Table(title="Configuration")
    table.add_column("Section", style="cyan")
    table.add_column("Setting", style="magenta")
    table.add_column("Value", style="white")

    for section, values in summary.items():
        if isinstance(values, dict):
            for key, value in values.items():
                table.add_row(section, key, str(value))
        else:
            table.add_row(section, "", ", ".join(values) if isinstance(values, list) else str(values))
    return table


@click.group()
@click.version_option(version=__version__, prog_name="flowercare-exporter")
def cli():
    """Flower Care Exporter - Prometheus metrics from Mi Flora sensors."""
    pass


@cli.command()
@click.option("--addr", "-a", default=None, help="Address to listen on for connections.")
@click.option("--sensor", "-s", "sensors", multiple=True,
              help="MAC-address of sensor to collect data from, optionally prefixed with 'name='. "
                   "Can be specified multiple times.")
@click.option("--adapter", "-i", default=None, help="Bluetooth device to use for communication.")
@click.option("--refresh-duration", "-r", default=None,
              help="Interval used for refreshing data from bluetooth devices.")
@click.option("--stale-duration", default=None,
              help="Duration after which data is considered stale and is not used for metrics anymore.")
@click.option("--retry-min", default=None, help="Minimum wait time before retrying a failed sensor.")
@click.option("--retry-max", default=None, help="Maximum wait time before retrying a failed sensor.")
@click.option("--retry-factor", default=None, type=float, help="Growth factor of the retry wait time.")
@click.option("--cool-down-period", default=None,
              help="Time to wait between subsequent access to Bluetooth device.")
@click.option("--log-level", default=None,
              type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'], case_sensitive=False),
              help="Logging level.")
@click.option("--env-file", default=None, type=click.Path(dir_okay=False), help="Environment file to load.")
def run(env_file, **options):
    """Run the exporter."""
    config = build_config(env_file=env_file, **options)

    try:
        asyncio.run(FlowercareDaemon(config).start())
    except ConfigurationError as e:
        console.print(f"[red]Error in configuration: {e}[/red]")
        sys.exit(2)
    except FlowercareDaemonError as e:
        console.print(f"[red]Exporter failed: {e}[/red]")
        sys.exit(1)


@cli.command()
@click.argument("address")
@click.option("--adapter", "-i", default=None, help="Bluetooth device to use for communication.")
@click.option("--env-file", default=None, type=click.Path(dir_okay=False), help="Environment file to load.")
def read(address, adapter, env_file):
    """Read a single sensor once and print its values."""
    config = build_config(env_file=env_file, adapter=adapter)
    try:
        sensor = parse_sensor(address)
    except ConfigurationError as e:
        raise click.BadParameter(str(e), param_hint="ADDRESS")

    production_logger = setup_logging(config)
    reader = MifloraReader(
        config.ble_adapter,
        production_logger.get_logger('flowercare.ble'),
        PerformanceMonitor(production_logger.get_logger('flowercare.performance')),
        connect_timeout=config.ble_connect_timeout
    )

    try:
        with console.status(f"Reading {sensor} on {config.ble_adapter}..."):
            reading = asyncio.run(reader.read_sensor(sensor.address))
    except ReadError as e:
        console.print(f"[red]Reading failed: {e}[/red]")
        sys.exit(1)

    Console().print(render_reading(sensor, reading))


@cli.command(name="config")
@click.option("--env-file", default=None, type=click.Path(dir_okay=False), help="Environment file to load.")
def show_config(env_file):
    """Validate and print the configuration."""
    config = build_config(env_file=env_file)

    try:
        config.validate_configuration()
    except ConfigurationError as e:
        console.print(Panel(str(e), title="Invalid configuration", border_style="red"))
        sys.exit(2)

    Console().print(render_summary(config.get_summary()))
