"""
WebSocket server streaming hub messages to clients.

The feed is one-way: anything a client sends is read and discarded.
"""

import asyncio
import logging
import socket
from http import HTTPStatus
from typing import Optional, Set

from websockets.asyncio.server import ServerConnection, serve
from websockets.exceptions import ConnectionClosed
from websockets.http11 import Request, Response

from .config import RelayConfig
from .exceptions import ConfigurationError, ServerBindError, SubscriptionClosed
from .hub import FanOutHub, Subscription


class SubscriberServer:
    """
    Accepts WebSocket clients and attaches each one to the hub.

    Every connection runs a send task (hub -> client) and a receive task
    (client -> discard). When either ends the other is cancelled and the
    subscription released.
    """

    def __init__(
        self,
        hub: FanOutHub,
        host: str,
        port: int,
        path: str = "/ws",
        logger: Optional[logging.Logger] = None,
    ):
        self.hub = hub
        self.host = host
        self.port = port
        self.path = path
        self.logger = logger or logging.getLogger(__name__)
        self.bound_port: Optional[int] = None
        self.ready = asyncio.Event()
        self._connections: Set[ServerConnection] = set()

    @classmethod
    def from_config(
        cls,
        config: RelayConfig,
        hub: FanOutHub,
        logger: Optional[logging.Logger] = None,
    ) -> "SubscriberServer":
        return cls(hub, config.ws_host, config.ws_port, path=config.ws_path, logger=logger)

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def _process_request(self, connection: ServerConnection, request: Request) -> Optional[Response]:
        if request.path.split("?", 1)[0] != self.path:
            self.logger.info(f"Rejecting request for unknown path {request.path}")
            return connection.respond(HTTPStatus.NOT_FOUND, "Not Found\n")
        return None

    async def run(self) -> None:
        """
        Serve until cancelled.

        Raises:
            ConfigurationError: If the host name cannot be resolved
            ServerBindError: If the address cannot be bound
        """
        try:
            async with serve(
                self._handle_connection,
                self.host,
                self.port,
                process_request=self._process_request,
            ) as server:
                self.bound_port = next(iter(server.sockets)).getsockname()[1]
                self.logger.info(f"WebSocket server listening on {self.host}:{self.bound_port}")
                self.logger.info(f"Connect to: ws://{self.host}:{self.bound_port}{self.path}")
                self.ready.set()
                await server.serve_forever()
        except socket.gaierror as e:
            raise ConfigurationError(f"cannot resolve WebSocket host {self.host!r}: {e}") from e
        except OSError as e:
            raise ServerBindError(f"failed to bind {self.host}:{self.port}: {e}") from e
        finally:
            self.ready.clear()
            self.bound_port = None

    async def _handle_connection(self, connection: ServerConnection) -> None:
        peer = connection.remote_address
        try:
            subscription = self.hub.subscribe()
        except SubscriptionClosed:
            self.logger.info(f"Refusing client {peer}: relay is shutting down")
            await connection.close(1001, "relay shutting down")
            return

        self._connections.add(connection)
        self.logger.info(
            f"WebSocket client connected: {peer} ({len(self._connections)} connected)"
        )

        send_task = asyncio.create_task(
            self._send_loop(connection, subscription), name=f"ws-send-{subscription.id}"
        )
        recv_task = asyncio.create_task(
            self._receive_loop(connection), name=f"ws-recv-{subscription.id}"
        )
        try:
            await asyncio.wait({send_task, recv_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            send_task.cancel()
            recv_task.cancel()
            results = await asyncio.gather(send_task, recv_task, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    self.logger.warning(f"Connection task for {peer} failed: {result!r}")
            subscription.close()
            self._connections.discard(connection)
            self.logger.info(
                f"WebSocket client disconnected: {peer} "
                f"(dropped={subscription.dropped}, {len(self._connections)} connected)"
            )

    async def _send_loop(self, connection: ServerConnection, subscription: Subscription) -> None:
        async for message in subscription:
            try:
                await connection.send(message)
            except ConnectionClosed as e:
                self.logger.debug(f"Failed to send message to client: {e}")
                return
        self.logger.debug(f"Subscription {subscription.id} ended; closing stream")

    async def _receive_loop(self, connection: ServerConnection) -> None:
        try:
            async for message in connection:
                self.logger.debug(f"Received message from client (ignored): {message!r}")
        except ConnectionClosed as e:
            self.logger.warning(f"WebSocket error: {e}")
        else:
            self.logger.debug("Client requested close")
