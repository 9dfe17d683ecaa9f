"""
WebSocket client for the relay feed.

Connects to the relay, decodes every message and either logs it (the
``water-relay-client`` command) or hands it to a consumer such as the
terminal monitor.
"""

import argparse
import asyncio
import logging
import sys
from typing import AsyncIterator, Callable, List, Optional

from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from ..utils.logging import parse_log_level, setup_logger, silence_external_loggers
from .config import DEFAULT_WS_HOST, DEFAULT_WS_PATH, DEFAULT_WS_PORT, RetryPolicy
from .exceptions import ConfigurationError, MessageDecodingError, RelayError, RetryExhaustedError
from .messages import WireMessage, decode_message, encode_message


DEFAULT_WS_URL = f"ws://{DEFAULT_WS_HOST}:{DEFAULT_WS_PORT}{DEFAULT_WS_PATH}"

STATUS_CONNECTING = "connecting"
STATUS_CONNECTED = "connected"
STATUS_DISCONNECTED = "disconnected"


class RelayClient:
    """
    Subscribes to a relay and yields decoded messages.
    """

    def __init__(
        self,
        url: str = DEFAULT_WS_URL,
        retry: Optional[RetryPolicy] = None,
        on_status: Optional[Callable[[str], None]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.url = url
        self.retry = retry or RetryPolicy(delay=2.0)
        self.on_status = on_status
        self.logger = logger or logging.getLogger(__name__)
        self.received = 0
        self.invalid = 0

    def _notify(self, status: str) -> None:
        if self.on_status is not None:
            self.on_status(status)

    async def messages(self, reconnect: bool = True) -> AsyncIterator[WireMessage]:
        """
        Yield messages from the relay.

        Args:
            reconnect: Reconnect after a drop, following the retry policy

        Raises:
            ConfigurationError: If the URL is invalid
            RetryExhaustedError: If the retry policy runs out
        """
        failures = 0
        while True:
            self._notify(STATUS_CONNECTING)
            self.logger.info(f"Connecting to WebSocket server: {self.url}")
            try:
                async with connect(self.url) as connection:
                    failures = 0
                    self.logger.info("Connected to WebSocket server")
                    self._notify(STATUS_CONNECTED)
                    async for text in connection:
                        try:
                            message = decode_message(text)
                        except MessageDecodingError as e:
                            self.invalid += 1
                            self.logger.warning(f"Ignoring invalid message {text!r}: {e}")
                            continue
                        self.received += 1
                        yield message
                    self.logger.info("Server closed connection")
            except InvalidURI as e:
                raise ConfigurationError(f"invalid WebSocket URL {self.url!r}: {e}") from e
            except ConnectionClosed as e:
                self.logger.error(f"Error receiving WebSocket message: {e}")
            except (OSError, asyncio.TimeoutError, InvalidHandshake) as e:
                failures += 1
                self.logger.error(f"Failed to connect to WebSocket server: {e}")
            finally:
                self._notify(STATUS_DISCONNECTED)

            if not reconnect:
                return
            if failures and not self.retry.allows(failures):
                raise RetryExhaustedError("connecting to relay", failures)
            self.logger.info(f"Reconnecting in {self.retry.delay:.1f}s")
            await asyncio.sleep(self.retry.delay)


async def log_messages(client: RelayClient, reconnect: bool = True) -> None:
    async for message in client.messages(reconnect=reconnect):
        client.logger.info(f"Received: {encode_message(message)}")


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the logging client."""
    parser = argparse.ArgumentParser(description="WebSocket client for water-controller-relay")
    parser.add_argument("--url", "-u", default=DEFAULT_WS_URL, help="Relay WebSocket URL")
    parser.add_argument("--once", action="store_true", help="Exit when the connection closes")
    parser.add_argument("--retry-delay", type=float, default=2.0, help="Seconds between reconnects")
    parser.add_argument("--log-level", "-l", default="info",
                        choices=["trace", "debug", "info", "warn", "error"], help="Log level")

    args = parser.parse_args(argv)

    logger = setup_logger("water_relay.client", level=parse_log_level(args.log_level))
    silence_external_loggers()

    client = RelayClient(args.url, retry=RetryPolicy(delay=args.retry_delay), logger=logger)
    try:
        asyncio.run(log_messages(client, reconnect=not args.once))
    except ConfigurationError as e:
        logger.error(str(e))
        return 2
    except RelayError as e:
        logger.error(f"Client failed: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Client interrupted by user")

    logger.info(f"Client disconnected after {client.received} messages")
    return 0


if __name__ == "__main__":
    sys.exit(main())
