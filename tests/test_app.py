"""
Tests for the relay application and its command line.
"""

import asyncio
import io
import threading
import time
from unittest.mock import AsyncMock, patch

import pytest
from rich.console import Console
from websockets.asyncio.client import connect
from src.relay.app import (
    EXIT_CONFIG_ERROR, EXIT_FAILURE, EXIT_OK, RelayApplication, build_parser,
    config_from_args, list_devices_command, main
)
from src.relay.config import RelayConfig, RestartPolicy, RetryPolicy
from src.relay.exceptions import SerialConnectionError, SupervisorError
from src.relay.serial_port import SerialDeviceInfo


class FakeSerialPort:
    """Fake serial device fed from a list of chunks."""

    def __init__(self, *chunks):
        self.chunks = list(chunks)
        self.pending = bytearray()
        self.closed = False

    def read(self, size=1):
        while not self.pending:
            if not self.chunks:
                time.sleep(0.005)
                return b""
            chunk = self.chunks.pop(0)
            if isinstance(chunk, Exception):
                raise chunk
            self.pending.extend(chunk)
        byte = bytes(self.pending[:1])
        del self.pending[:1]
        return byte

    def close(self):
        self.closed = True


class GatedOpener:
    """Opener that waits for a gate before handing out prepared ports."""

    def __init__(self, gate, *ports):
        self.gate = gate
        self.ports = list(ports)
        self.calls = []

    def __call__(self, port_name, baud_rate, timeout):
        self.gate.wait(5.0)
        self.calls.append(port_name)
        if not self.ports:
            raise SerialConnectionError(f"no device at {port_name}")
        return self.ports.pop(0)


class TestCommandLine:
    """Test cases for argument parsing."""

    def setup_method(self):
        """Set up test fixtures."""
        self.parser = build_parser()

    def test_flags_override_config(self):
        """Test that flags replace configured values."""
        args = self.parser.parse_args([
            "--port", "/dev/ttyUSB0", "-b", "9600", "--ws-host", "0.0.0.0",
            "--ws-port", "9001", "--ws-path", "/feed",
        ])

        config = config_from_args(args, base=RelayConfig())

        assert config.serial_port == "/dev/ttyUSB0"
        assert config.baud_rate == 9600
        assert config.ws_url == "ws://0.0.0.0:9001/feed"

    def test_missing_flags_keep_config(self):
        """Test that absent flags leave the base configuration alone."""
        base = RelayConfig(serial_port="/dev/ttyS1", serial_retry=RetryPolicy(delay=3.0))
        config = config_from_args(self.parser.parse_args([]), base=base)

        assert config.serial_port == "/dev/ttyS1"
        assert config.serial_retry.delay == 3.0
        assert config.baud_rate == 115200

    def test_retry_flags(self):
        """Test that retry flags build a new policy."""
        args = self.parser.parse_args(["--max-retries", "4"])
        config = config_from_args(args, base=RelayConfig(serial_retry=RetryPolicy(delay=0.5)))

        assert config.serial_retry == RetryPolicy(delay=0.5, max_attempts=4)

    def test_devices_subcommand(self):
        """Test that the devices subcommand is recognized."""
        assert self.parser.parse_args(["devices"]).command == "devices"
        assert self.parser.parse_args([]).command is None

    def test_invalid_log_level(self):
        """Test that unknown log levels are rejected by argparse."""
        with pytest.raises(SystemExit):
            self.parser.parse_args(["--log-level", "loud"])


class TestListDevices:
    """Test cases for the devices command."""

    @patch("src.relay.app.list_serial_devices")
    def test_lists_devices(self, mock_list):
        """Test that detected devices are printed in a table."""
        mock_list.return_value = [SerialDeviceInfo("/dev/ttyACM0", "Arduino Uno", "USB VID:PID=2341:0043")]
        output = io.StringIO()

        assert list_devices_command(Console(file=output, width=120)) == EXIT_OK
        assert "/dev/ttyACM0" in output.getvalue()
        assert "Arduino Uno" in output.getvalue()

    @patch("src.relay.app.list_serial_devices", return_value=[])
    def test_no_devices(self, mock_list):
        """Test the message shown when nothing is connected."""
        output = io.StringIO()

        list_devices_command(Console(file=output))
        assert "No serial ports detected" in output.getvalue()


class TestMain:
    """Test cases for the relay entry point."""

    @patch("src.relay.app.list_devices_command", return_value=EXIT_OK)
    def test_devices(self, mock_devices):
        """Test that the devices subcommand does not start the relay."""
        assert main(["devices"]) == EXIT_OK
        mock_devices.assert_called_once()

    def test_invalid_configuration(self):
        """Test the exit code for an invalid configuration."""
        assert main(["--ws-path", "no-slash"]) == EXIT_CONFIG_ERROR

    @patch("src.relay.app.RelayApplication.run", new_callable=AsyncMock)
    def test_runs_application(self, mock_run):
        """Test a clean run returns success."""
        assert main(["--port", "/dev/ttyTEST"]) == EXIT_OK
        mock_run.assert_awaited_once()

    @patch("src.relay.app.RelayApplication.run", new_callable=AsyncMock)
    def test_supervisor_failure(self, mock_run):
        """Test that an exhausted restart budget exits with failure."""
        mock_run.side_effect = SupervisorError("serial-ingest gave up")
        assert main(["--port", "/dev/ttyTEST"]) == EXIT_FAILURE


class TestRelayApplication:
    """Test cases for RelayApplication wiring."""

    def test_wiring(self):
        """Test that both units share the hub."""
        app = RelayApplication(RelayConfig(hub_capacity=5))

        assert app.ingest.hub is app.hub
        assert app.server.hub is app.hub
        assert app.hub.capacity == 5
        assert set(app.supervisor.units) == {"serial-ingest", "websocket-server"}

    @pytest.mark.asyncio
    async def test_stop_shuts_everything_down(self):
        """Test that stop ends run and closes the hub."""
        config = RelayConfig(
            serial_port="/dev/does-not-exist",
            ws_port=0,
            serial_retry=RetryPolicy(delay=0.01),
            restart=RestartPolicy(delay=0.01),
        )
        app = RelayApplication(config)

        task = asyncio.create_task(app.run())
        await asyncio.wait_for(app.server.ready.wait(), timeout=2.0)
        while app.ingest.stats.open_failures == 0:
            await asyncio.sleep(0.01)
        app.stop()
        await asyncio.wait_for(task, timeout=5.0)

        assert app.hub.closed
        assert app.ingest.stats.open_failures >= 1

    @pytest.mark.asyncio
    async def test_serial_reconnect_keeps_clients_connected(self):
        """Test that a broken serial link is reopened while clients stay connected."""
        first = FakeSerialPort(b"0,0,0,0,0,0,0,0,0\n", BrokenPipeError("broken pipe"))
        second = FakeSerialPort(b"1,0,0,0,0,0,0,0,0\n")
        gate = threading.Event()
        opener = GatedOpener(gate, first, second)
        config = RelayConfig(
            serial_port="/dev/ttyTEST",
            ws_port=0,
            serial_retry=RetryPolicy(delay=0.01),
            restart=RestartPolicy(delay=0.01),
        )
        app = RelayApplication(config)
        app.ingest.opener = opener

        task = asyncio.create_task(app.run())
        try:
            await asyncio.wait_for(app.server.ready.wait(), timeout=2.0)
            url = f"ws://127.0.0.1:{app.server.bound_port}{config.ws_path}"
            async with connect(url) as websocket:
                while app.hub.subscriber_count == 0:
                    await asyncio.sleep(0.005)
                gate.set()

                received = [await asyncio.wait_for(websocket.recv(), 2.0) for _ in range(4)]

                assert received == [
                    '{"type":"button-input","isPushed":false}',
                    '{"type":"controller-input","left":0,"right":0,"up":0,"down":0}',
                    '{"type":"button-input","isPushed":true}',
                    '{"type":"controller-input","left":0,"right":0,"up":0,"down":0}',
                ]
                assert app.server.connection_count == 1
        finally:
            gate.set()
            app.stop()
            await asyncio.wait_for(task, timeout=5.0)

        assert first.closed
        assert len(opener.calls) == 2
        assert app.ingest.stats.reconnects == 1
        assert app.supervisor.restarts == {"serial-ingest": 0, "websocket-server": 0}
