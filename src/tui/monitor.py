"""
Terminal monitor for the relay feed.

Connects to a running relay and renders the latest button and controller
state, a short message history and the connection status.
"""

import argparse
import asyncio
import logging
import sys
from collections import deque
from datetime import datetime
from typing import Deque, List, Optional, Tuple

from rich import box
from rich.console import Console
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ..relay.client import (
    DEFAULT_WS_URL, STATUS_CONNECTED, STATUS_CONNECTING, STATUS_DISCONNECTED, RelayClient
)
from ..relay.config import RetryPolicy
from ..relay.exceptions import RelayError
from ..relay.messages import ButtonInputMessage, ControllerInputMessage, WireMessage, encode_message


HISTORY_SIZE = 100

LEVEL_LABELS = {0: "NOINPUT", 1: "LOW", 2: "HIGH"}
LEVEL_STYLES = {0: "dim", 1: "yellow", 2: "bold red"}
STATUS_STYLES = {
    STATUS_CONNECTED: "bold green",
    STATUS_CONNECTING: "yellow",
    STATUS_DISCONNECTED: "red",
}


class MonitorState:
    """
    Latest values seen on the feed plus a bounded history.
    """

    def __init__(self, history_size: int = HISTORY_SIZE):
        self.button_pushed = False
        self.controller = {"left": 0, "right": 0, "up": 0, "down": 0}
        self.history: Deque[Tuple[datetime, str]] = deque(maxlen=history_size)
        self.status = STATUS_DISCONNECTED
        self.status_changed_at: Optional[datetime] = None
        self.message_count = 0

    def apply(self, message: WireMessage) -> None:
        if isinstance(message, ButtonInputMessage):
            self.button_pushed = message.is_pushed
        elif isinstance(message, ControllerInputMessage):
            self.controller = {
                "left": message.left,
                "right": message.right,
                "up": message.up,
                "down": message.down,
            }
        else:
            raise TypeError(f"Unsupported message: {message!r}")

        self.message_count += 1
        self.history.append((datetime.now(), encode_message(message)))

    def set_status(self, status: str) -> None:
        self.status = status
        self.status_changed_at = datetime.now()


class RelayMonitorTUI:
    """
    Live dashboard fed by a RelayClient.
    """

    def __init__(self, client: RelayClient, state: Optional[MonitorState] = None):
        self.client = client
        self.state = state or MonitorState()
        self.console = Console()
        self.client.on_status = self.state.set_status

    def create_header_panel(self) -> Panel:
        header_text = Text()
        header_text.append("WATER CONTROLLER RELAY MONITOR\n", style="bold cyan")
        header_text.append(f"URL: {self.client.url}\n", style="white")
        header_text.append("Status: ", style="white")
        header_text.append(self.state.status, style=STATUS_STYLES.get(self.state.status, "white"))
        if self.state.status_changed_at is not None:
            header_text.append(
                f" (since {self.state.status_changed_at.strftime('%H:%M:%S')})", style="dim"
            )
        header_text.append(f"\nMessages: {self.state.message_count}", style="white")
        return Panel(header_text, title="Connection", border_style="blue")

    def create_input_panel(self) -> Panel:
        table = Table(show_header=True, header_style="bold magenta", box=box.ROUNDED)
        table.add_column("Input", style="cyan", width=12)
        table.add_column("Value")

        if self.state.button_pushed:
            table.add_row("Button", Text("PUSHED", style="bold green"))
        else:
            table.add_row("Button", Text("released", style="dim"))

        for direction in ("up", "right", "down", "left"):
            value = self.state.controller[direction]
            label = LEVEL_LABELS.get(value, str(value))
            table.add_row(direction.capitalize(), Text(label, style=LEVEL_STYLES.get(value, "white")))

        return Panel(table, title="Controller", border_style="green")

    def create_history_panel(self, rows: int = 15) -> Panel:
        history_text = Text()
        for timestamp, text in list(self.state.history)[-rows:]:
            history_text.append(f"{timestamp.strftime('%H:%M:%S.%f')[:-3]} ", style="dim")
            style = "green" if '"button-input"' in text else "white"
            history_text.append(f"{text}\n", style=style)
        return Panel(history_text, title="History", border_style="magenta")

    def create_layout(self) -> Layout:
        layout = Layout()
        layout.split_column(
            Layout(name="header", size=6),
            Layout(name="main"),
            Layout(name="footer", size=3),
        )
        layout["main"].split_row(
            Layout(name="inputs"),
            Layout(name="history", ratio=2),
        )

        layout["header"].update(self.create_header_panel())
        layout["inputs"].update(self.create_input_panel())
        layout["history"].update(self.create_history_panel())
        footer_text = Text("Press Ctrl+C to quit", style="bold white on black", justify="center")
        layout["footer"].update(Panel(footer_text, border_style="white"))
        return layout

    async def run(self) -> None:
        with Live(
            console=self.console,
            refresh_per_second=10,
            screen=True,
            get_renderable=self.create_layout,
        ):
            async for message in self.client.messages():
                self.state.apply(message)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the relay monitor."""
    parser = argparse.ArgumentParser(description="Terminal monitor for water-controller-relay")
    parser.add_argument("--url", "-u", default=DEFAULT_WS_URL, help="Relay WebSocket URL")
    parser.add_argument("--retry-delay", type=float, default=2.0, help="Seconds between reconnects")

    args = parser.parse_args(argv)

    # Keep log records off the dashboard screen
    logger = logging.getLogger("water_relay.monitor")
    logger.addHandler(logging.NullHandler())
    logger.propagate = False

    client = RelayClient(args.url, retry=RetryPolicy(delay=args.retry_delay), logger=logger)
    monitor = RelayMonitorTUI(client)

    try:
        asyncio.run(monitor.run())
        return 0
    except KeyboardInterrupt:
        print("\nMonitor interrupted by user")
        return 0
    except RelayError as e:
        Console().print(f"[red]Error: {e}[/red]")
        return 1


if __name__ == "__main__":
    sys.exit(main())
