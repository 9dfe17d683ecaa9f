"""
Serial ingest loop.

Owns the serial device, turns every received line into wire messages and
publishes them to the hub. The device is read continuously, with or without
subscribers, so the controller never backs up and late subscribers never see
stale data.

Connection handling is an explicit state machine:

    CLOSED -> OPENING -> READING -> (CLOSED | READING)

Blocking device calls run on a dedicated single-thread executor; parsing
and publishing happen on the event loop thread.
"""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from .config import RelayConfig, RetryPolicy
from .exceptions import EncodingError, ParseError, RetryExhaustedError, SerialConnectionError
from .hub import FanOutHub
from .messages import encode_frame
from .protocol import parse_line
from .serial_port import SerialLineReader, open_serial_port


class IngestState(Enum):
    CLOSED = "closed"
    OPENING = "opening"
    READING = "reading"


@dataclass
class IngestStats:
    lines_read: int = 0
    frames_published: int = 0
    parse_errors: int = 0
    encode_errors: int = 0
    open_failures: int = 0
    reconnects: int = 0


class SerialIngestLoop:
    """
    Reads the controller's serial stream and feeds the hub.
    """

    def __init__(
        self,
        hub: FanOutHub,
        port_name: str,
        baud_rate: int,
        read_timeout: float = 0.1,
        retry: Optional[RetryPolicy] = None,
        opener: Callable[[str, int, float], Any] = open_serial_port,
        logger: Optional[logging.Logger] = None,
    ):
        self.hub = hub
        self.port_name = port_name
        self.baud_rate = baud_rate
        self.read_timeout = read_timeout
        self.retry = retry or RetryPolicy()
        self.opener = opener
        self.logger = logger or logging.getLogger(__name__)
        self.state = IngestState.CLOSED
        self.stats = IngestStats()
        self._reader: Optional[SerialLineReader] = None

    @classmethod
    def from_config(
        cls,
        config: RelayConfig,
        hub: FanOutHub,
        logger: Optional[logging.Logger] = None,
    ) -> "SerialIngestLoop":
        return cls(
            hub,
            config.serial_port,
            config.baud_rate,
            read_timeout=config.read_timeout,
            retry=config.serial_retry,
            logger=logger,
        )

    def _set_state(self, state: IngestState) -> None:
        if state is not self.state:
            self.logger.debug(f"Serial ingest {self.state.value} -> {state.value}")
            self.state = state

    def _open(self) -> None:
        # Stored from the executor thread so a cancelled open is still closed
        self._reader = SerialLineReader.open(
            self.port_name,
            self.baud_rate,
            self.read_timeout,
            opener=self.opener,
            logger=self.logger,
        )

    def _close_reader(self) -> None:
        reader, self._reader = self._reader, None
        if reader is not None:
            reader.close()
            self.logger.info(f"Serial port {self.port_name} closed")

    async def run(self) -> None:
        """
        Run until cancelled.

        Raises:
            RetryExhaustedError: If a capped retry policy runs out while opening
            ConfigurationError: If the serial settings are rejected outright
        """
        loop = asyncio.get_running_loop()
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="serial-ingest")
        failures = 0
        self._set_state(IngestState.OPENING)

        try:
            while True:
                if self.state is IngestState.OPENING:
                    self.logger.info(f"Opening serial port {self.port_name} at {self.baud_rate} baud")
                    try:
                        await loop.run_in_executor(executor, self._open)
                    except SerialConnectionError as e:
                        failures += 1
                        self.stats.open_failures += 1
                        if not self.retry.allows(failures):
                            self.logger.error(f"Giving up on serial port {self.port_name}: {e}")
                            raise RetryExhaustedError("opening serial port", failures, e)
                        self.logger.warning(
                            f"{e}; retrying in {self.retry.delay:.1f}s "
                            f"({self.retry.describe(failures)})"
                        )
                        await asyncio.sleep(self.retry.delay)
                        continue

                    failures = 0
                    self.logger.info(f"Serial port {self.port_name} ready; entering read loop")
                    self._set_state(IngestState.READING)

                elif self.state is IngestState.READING:
                    try:
                        line = await loop.run_in_executor(executor, self._reader.read_line)
                    except SerialConnectionError as e:
                        self.logger.warning(f"Serial connection lost: {e}")
                        self._close_reader()
                        self._set_state(IngestState.CLOSED)
                        continue

                    if line is not None:
                        self.handle_line(line)

                else:
                    self.stats.reconnects += 1
                    self.logger.info(f"Reopening serial port in {self.retry.delay:.1f}s")
                    await asyncio.sleep(self.retry.delay)
                    self._set_state(IngestState.OPENING)
        finally:
            # Close on the executor so an in-flight read finishes first
            executor.submit(self._close_reader)
            executor.shutdown(wait=False)
            self._set_state(IngestState.CLOSED)

    def handle_line(self, line: str) -> bool:
        """
        Parse, encode and publish one line.

        Returns:
            bool: True if the line was published, False if it was rejected
        """
        self.stats.lines_read += 1

        try:
            frame = parse_line(line)
        except ParseError as e:
            self.stats.parse_errors += 1
            self.logger.warning(
                f"Rejected serial line {line!r}: {e}",
                extra={"raw_line": line, "reason": type(e).__name__},
            )
            return False

        try:
            messages = encode_frame(frame)
        except EncodingError as e:
            self.stats.encode_errors += 1
            self.logger.error(f"Failed to encode {frame}: {e}")
            return False

        self.logger.debug(f"Parsed {frame}")
        for message in messages:
            self.hub.publish(message)
        self.stats.frames_published += 1
        return True
