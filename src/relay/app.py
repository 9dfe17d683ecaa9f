"""
Water Controller Relay

Reads controller telemetry from a serial port and broadcasts it to WebSocket
clients as JSON messages.
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from rich.console import Console
from rich.table import Table

from ..utils.logging import (
    configure_debug_logging, parse_log_level, setup_logger, silence_external_loggers
)
from .config import RelayConfig, RetryPolicy
from .exceptions import ConfigurationError, RelayError
from .hub import FanOutHub
from .ingest import SerialIngestLoop
from .serial_port import list_serial_devices
from .server import SubscriberServer
from .supervisor import Supervisor


LOGGER_NAME = "water_relay"

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2


class RelayApplication:
    """
    Wires the hub, serial ingest loop, WebSocket server and supervisor.
    """

    def __init__(self, config: RelayConfig, logger: Optional[logging.Logger] = None):
        self.config = config
        self.logger = logger or logging.getLogger(LOGGER_NAME)
        self.hub = FanOutHub(config.hub_capacity, logger=self.logger.getChild("hub"))
        self.ingest = SerialIngestLoop.from_config(
            config, self.hub, logger=self.logger.getChild("serial")
        )
        self.server = SubscriberServer.from_config(
            config, self.hub, logger=self.logger.getChild("websocket")
        )
        self.supervisor = Supervisor(config.restart, logger=self.logger.getChild("supervisor"))
        self.supervisor.add_unit("serial-ingest", self.ingest.run)
        self.supervisor.add_unit("websocket-server", self.server.run)

    def stop(self) -> None:
        self.logger.info("Shutdown requested")
        self.supervisor.stop()

    async def run(self) -> None:
        """
        Run until stopped by a signal or by an unrecoverable failure.

        Raises:
            ConfigurationError: On unrecoverable configuration problems
            SupervisorError: If a unit exhausts its restart budget
        """
        loop = asyncio.get_running_loop()
        installed = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.stop)
                installed.append(sig)
            except (NotImplementedError, RuntimeError):
                self.logger.debug(f"Cannot install handler for {sig.name}")

        self.logger.info(
            f"Relaying {self.config.serial_port} ({self.config.baud_rate} baud) "
            f"to {self.config.ws_url}"
        )
        try:
            await self.supervisor.run()
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)
            self.hub.close()
            stats = self.ingest.stats
            self.logger.info(
                f"Relay stopped: {stats.lines_read} lines, {stats.frames_published} frames, "
                f"{stats.parse_errors} parse errors, {stats.reconnects} reconnects"
            )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="water-relay",
        description="Relay water controller serial data to WebSocket clients",
    )
    parser.add_argument("--port", "-p", dest="serial_port", help="Serial port path (e.g. /dev/ttyACM0)")
    parser.add_argument("--baud-rate", "-b", type=int, help="Baud rate (default: 115200)")
    parser.add_argument("--read-timeout", type=float, help="Serial read timeout in seconds (default: 0.1)")
    parser.add_argument("--ws-host", help="WebSocket server host (default: 127.0.0.1)")
    parser.add_argument("--ws-port", type=int, help="WebSocket server port (default: 8080)")
    parser.add_argument("--ws-path", help="WebSocket endpoint path (default: /ws)")
    parser.add_argument("--retry-delay", type=float, help="Seconds between serial reconnect attempts")
    parser.add_argument("--max-retries", type=int,
                        help="Give up after this many failed serial opens (default: unlimited)")
    parser.add_argument("--log-level", "-l", default="info",
                        choices=["trace", "debug", "info", "warn", "error"], help="Log level")
    parser.add_argument("--rich-logs", action="store_true", help="Render logs with rich")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("devices", help="List available serial devices")
    return parser


def config_from_args(args: argparse.Namespace, base: Optional[RelayConfig] = None) -> RelayConfig:
    """Overlay command line flags on an environment-derived configuration."""
    config = base or RelayConfig.from_env()

    for name in ("serial_port", "baud_rate", "read_timeout", "ws_host", "ws_port", "ws_path"):
        value = getattr(args, name, None)
        if value is not None:
            setattr(config, name, value)

    if args.retry_delay is not None or args.max_retries is not None:
        config.serial_retry = RetryPolicy(
            delay=config.serial_retry.delay if args.retry_delay is None else args.retry_delay,
            max_attempts=config.serial_retry.max_attempts if args.max_retries is None else args.max_retries,
        )
    return config


def list_devices_command(console: Optional[Console] = None) -> int:
    """Print the serial devices the system knows about."""
    console = console or Console()
    devices = list_serial_devices()

    if not devices:
        console.print("[yellow]No serial ports detected[/yellow]")
        return EXIT_OK

    table = Table(title="Available Serial Ports", show_header=True, header_style="bold magenta")
    table.add_column("Device", style="cyan")
    table.add_column("Description", style="white")
    table.add_column("Hardware ID", style="blue")
    for device in devices:
        table.add_row(device.device, device.description, device.hwid)

    console.print(table)
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the relay."""
    parser = build_parser()
    args = parser.parse_args(argv)

    level = logging.DEBUG if args.verbose else parse_log_level(args.log_level)
    logger = setup_logger(LOGGER_NAME, level=level, rich_output=args.rich_logs)
    if args.verbose:
        configure_debug_logging(logger)
    silence_external_loggers()

    if args.command == "devices":
        return list_devices_command()

    try:
        config = config_from_args(args).validate()
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        return EXIT_CONFIG_ERROR

    logger.info("water-controller-relay starting")
    app = RelayApplication(config, logger)

    try:
        asyncio.run(app.run())
    except ConfigurationError as e:
        logger.error(f"Relay stopped: {e}")
        return EXIT_CONFIG_ERROR
    except RelayError as e:
        logger.error(f"Relay failed: {e}")
        return EXIT_FAILURE
    except KeyboardInterrupt:
        logger.info("Relay interrupted by user")

    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
