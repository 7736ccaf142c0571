"""Command-line interface for the height monitor."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

import click
from loguru import logger

from stratum_height_monitor import __version__


def find_config_file() -> Optional[Path]:
    """
    Find the configuration file in common locations.

    Returns:
        Path to config file or None.
    """
    search_paths = [
        Path("config.yaml"),
        Path("config.yml"),
        Path.home() / ".config" / "stratum-height-monitor" / "config.yaml",
        Path("/etc/stratum-height-monitor/config.yaml"),
    ]

    if sys.platform == "win32":
        search_paths.append(
            Path.home() / "AppData" / "Local" / "stratum-height-monitor" / "config.yaml"
        )

    for path in search_paths:
        if path.exists():
            return path

    return None


@click.group()
@click.version_option(version=__version__, prog_name="stratum-height-monitor")
def main():
    """Watch Stratum mining pools and notify on block height changes."""
    pass


@main.command()
@click.option(
    "-c",
    "--config",
    "config_path",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    default=None,
    help="Override log level from config",
)
def start(config_path: Optional[Path], log_level: Optional[str]):
    """Start monitoring the configured endpoints."""
    from stratum_height_monitor.config.loader import ConfigError, load_config
    from stratum_height_monitor.daemon import MonitorDaemon

    if config_path is None:
        config_path = find_config_file()
        if config_path is None:
            click.echo("Error: No configuration file found", err=True)
            click.echo("Please specify a config file with -c/--config", err=True)
            sys.exit(1)

    click.echo(f"Using configuration: {config_path}")

    try:
        config = load_config(config_path)
    except ConfigError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)

    if log_level:
        config.logging.level = log_level.upper()

    try:
        MonitorDaemon(config).run_foreground()
    except KeyboardInterrupt:
        click.echo("\nShutdown requested...")
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        sys.exit(1)


@main.command()
@click.argument("config_path", type=click.Path(exists=True, path_type=Path))
def validate(config_path: Path):
    """Check a configuration file and show what would be monitored."""
    from stratum_height_monitor.config.loader import ConfigError, enabled_senders, load_config

    try:
        config = load_config(config_path)
    except ConfigError as e:
        click.echo(f"✗ {e}", err=True)
        sys.exit(1)

    senders = enabled_senders(config)
    click.echo(
        f"✓ Configuration valid: {len(config.endpoints)} endpoints, "
        f"{len(senders)} enabled senders"
    )

    click.echo("\nEndpoints:")
    for endpoint in config.endpoints:
        pool_type = f", {endpoint.pool_type}" if endpoint.pool_type else ""
        click.echo(f"  - {endpoint.name}: {endpoint.address} ({endpoint.coin_type}{pool_type})")

    click.echo("\nSenders:")
    for name in ("slack", "database"):
        click.echo(f"  - {name}: {'enabled' if name in senders else 'disabled'}")
    click.echo(
        f"\nSession: reconnect {config.session.reconnect_max_retries + 1} attempts, "
        f"{config.dispatch.max_concurrent_deliveries} concurrent deliveries per endpoint"
    )


@main.command()
@click.option(
    "-o",
    "--output",
    "output_path",
    type=click.Path(path_type=Path),
    default=Path("config.yaml"),
    show_default=True,
    help="Where to write the sample configuration",
)
def init(output_path: Path):
    """Create a sample configuration file."""
    if output_path.exists():
        if not click.confirm(f"{output_path} already exists. Overwrite?"):
            click.echo("Skipping config file creation.")
            return

    output_path.write_text(SAMPLE_CONFIG, encoding="utf-8")
    click.echo(f"Created {output_path}")
    click.echo("Edit this file to configure your pools and notification senders.")


SAMPLE_CONFIG = """# Stratum Height Monitor Configuration

endpoints:
  - name: "btc-pool1"
    host: "pool1.example.com"
    port: 3333
    username: "wallet_address.monitor"
    password: "x"
    coin_type: "btc"              # btc, bch, bsv, ltc, doge, dgb, nmc
    pool_type: "ckpool"           # Free-form tag carried into notifications
    timeout: 30                   # Connect timeout (seconds)

  - name: "bch-pool2"
    host: "pool2.example.com"
    port: 3333
    username: "wallet_address.monitor"
    coin_type: "bch"

session:
  initial_retry_interval: 10      # Seconds between dial attempts on startup
  reconnect_retry_interval: 5     # Seconds between dial attempts after a disconnect
  reconnect_max_retries: 3        # Endpoint is given up after 1 + N failed reconnects
  read_error_delay: 1             # Pause after a read failure (seconds)
  write_timeout: 30               # Send to pool timeout (seconds)

dispatch:
  max_concurrent_deliveries: 8    # In-flight deliveries per endpoint
  shutdown_timeout: 10            # Wait for deliveries on shutdown (seconds)

senders:
  slack:
    webhook_url: null             # Incoming webhook URL (null disables)
    channel: null
    username: "stratum-height-monitor"
    timeout: 10
  database:
    path: null                    # SQLite file (null disables)
    table: "notifications"

logging:
  level: "INFO"                   # DEBUG, INFO, WARNING, ERROR
  file: null                      # Log file path (null for console only)
  rotation: "50 MB"               # Log rotation size
  retention: 10                   # Keep N rotated files
  log_traffic: false              # Log raw stratum frames at DEBUG
  format: "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {message}"
"""


if __name__ == "__main__":
    main()
