"""
Serial device access for the controller link.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

import serial
from serial.tools import list_ports

from .exceptions import ConfigurationError, SerialConnectionError


MAX_LINE_BYTES = 1024


@dataclass(frozen=True)
class SerialDeviceInfo:
    device: str
    description: str
    hwid: str


def list_serial_devices() -> List[SerialDeviceInfo]:
    """Enumerate serial devices visible to the operating system."""
    return [
        SerialDeviceInfo(
            device=port.device,
            description=port.description or "n/a",
            hwid=port.hwid or "n/a",
        )
        for port in sorted(list_ports.comports(), key=lambda p: p.device)
    ]


def open_serial_port(port_name: str, baud_rate: int, timeout: float) -> serial.Serial:
    """
    Open a serial device for reading.

    Raises:
        ConfigurationError: If pyserial rejects the parameters themselves
        SerialConnectionError: If the device cannot be opened
    """
    try:
        return serial.Serial(port_name, baud_rate, timeout=timeout)
    except ValueError as e:
        raise ConfigurationError(
            f"invalid serial settings for {port_name} at {baud_rate} baud: {e}"
        ) from e
    except (serial.SerialException, OSError) as e:
        raise SerialConnectionError(
            f"failed to open serial port {port_name} at {baud_rate} baud: {e}"
        ) from e


class SerialLineReader:
    """
    Assembles newline-terminated lines from a serial device one byte at a time.

    ``read_line`` returns ``None`` when the read times out; the partial line
    is kept and completed by the next call.
    """

    def __init__(self, port: Any, logger: Optional[logging.Logger] = None):
        self.port = port
        self.logger = logger or logging.getLogger(__name__)
        self._buffer = bytearray()

    @classmethod
    def open(
        cls,
        port_name: str,
        baud_rate: int,
        timeout: float,
        opener: Callable[[str, int, float], Any] = open_serial_port,
        logger: Optional[logging.Logger] = None,
    ) -> "SerialLineReader":
        return cls(opener(port_name, baud_rate, timeout), logger=logger)

    @property
    def partial(self) -> bytes:
        """Bytes received since the last complete line."""
        return bytes(self._buffer)

    def read_line(self) -> Optional[str]:
        """
        Read until a newline or a timeout.

        Returns:
            The line without its terminator, or None on timeout

        Raises:
            SerialConnectionError: On any I/O error other than a timeout
        """
        while True:
            try:
                chunk = self.port.read(1)
            except (serial.SerialException, OSError) as e:
                raise SerialConnectionError(f"serial read failed: {e}") from e

            if not chunk:
                return None

            byte = chunk[0]
            if byte == 0x0A:
                line = self._buffer.decode("ascii", errors="replace")
                self._buffer.clear()
                return line
            if byte == 0x0D:
                continue
            if len(self._buffer) >= MAX_LINE_BYTES:
                self.logger.warning(
                    f"Discarding {len(self._buffer)} bytes without a line terminator"
                )
                self._buffer.clear()
            self._buffer.append(byte)

    def close(self) -> None:
        try:
            self.port.close()
        except (serial.SerialException, OSError) as e:
            self.logger.warning(f"Error while closing serial port: {e}")
