"""
Tests for the WebSocket subscriber server, using a real loopback server.
"""

import asyncio

import pytest
from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed, InvalidStatus
from src.relay.config import RelayConfig
from src.relay.exceptions import ServerBindError
from src.relay.hub import FanOutHub
from src.relay.server import SubscriberServer


async def wait_until(predicate, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


class TestSubscriberServer:
    """Test cases for SubscriberServer."""

    def setup_method(self):
        """Set up test fixtures."""
        self.hub = FanOutHub()
        self.server = SubscriberServer(self.hub, "127.0.0.1", 0)

    async def start(self):
        task = asyncio.create_task(self.server.run())
        await asyncio.wait_for(self.server.ready.wait(), timeout=2.0)
        return task

    async def stop(self, task):
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        assert not self.server.ready.is_set()
        assert self.server.bound_port is None

    @property
    def url(self):
        return f"ws://127.0.0.1:{self.server.bound_port}/ws"

    def test_from_config(self):
        """Test that address and path are taken from the configuration."""
        config = RelayConfig(ws_host="0.0.0.0", ws_port=9001, ws_path="/feed")
        server = SubscriberServer.from_config(config, self.hub)

        assert (server.host, server.port, server.path) == ("0.0.0.0", 9001, "/feed")

    @pytest.mark.asyncio
    async def test_client_receives_published_messages(self):
        """Test that messages published after connecting are delivered in order."""
        task = await self.start()
        try:
            async with connect(self.url) as websocket:
                await wait_until(lambda: self.hub.subscriber_count == 1)

                self.hub.publish('{"type":"button-input","isPushed":true}')
                self.hub.publish('{"type":"controller-input","left":0,"right":0,"up":1,"down":0}')

                assert await asyncio.wait_for(websocket.recv(), 2.0) == '{"type":"button-input","isPushed":true}'
                assert await asyncio.wait_for(websocket.recv(), 2.0) == (
                    '{"type":"controller-input","left":0,"right":0,"up":1,"down":0}'
                )
        finally:
            await self.stop(task)

    @pytest.mark.asyncio
    async def test_every_client_gets_every_message(self):
        """Test fan-out to two concurrent clients."""
        task = await self.start()
        try:
            async with connect(self.url) as first, connect(self.url) as second:
                await wait_until(lambda: self.hub.subscriber_count == 2)
                assert self.server.connection_count == 2

                self.hub.publish("frame-1")

                assert await asyncio.wait_for(first.recv(), 2.0) == "frame-1"
                assert await asyncio.wait_for(second.recv(), 2.0) == "frame-1"
        finally:
            await self.stop(task)

    @pytest.mark.asyncio
    async def test_client_messages_are_ignored(self):
        """Test that text sent by a client does not disturb the feed."""
        task = await self.start()
        try:
            async with connect(self.url) as websocket:
                await wait_until(lambda: self.hub.subscriber_count == 1)
                await websocket.send("hello relay")

                self.hub.publish("frame")
                assert await asyncio.wait_for(websocket.recv(), 2.0) == "frame"
        finally:
            await self.stop(task)

    @pytest.mark.asyncio
    async def test_disconnect_unsubscribes(self):
        """Test that a closed client releases its subscription."""
        task = await self.start()
        try:
            async with connect(self.url):
                await wait_until(lambda: self.hub.subscriber_count == 1)

            await wait_until(lambda: self.hub.subscriber_count == 0)
            await wait_until(lambda: self.server.connection_count == 0)
            assert self.hub.publish("nobody") == 0
        finally:
            await self.stop(task)

    @pytest.mark.asyncio
    async def test_unknown_path_is_rejected(self):
        """Test that only the configured path is upgraded."""
        task = await self.start()
        try:
            with pytest.raises(InvalidStatus) as exc_info:
                async with connect(f"ws://127.0.0.1:{self.server.bound_port}/other"):
                    pass
            assert exc_info.value.response.status_code == 404
            assert self.hub.subscriber_count == 0
        finally:
            await self.stop(task)

    @pytest.mark.asyncio
    async def test_hub_close_ends_connections(self):
        """Test that closing the hub closes client streams."""
        task = await self.start()
        try:
            async with connect(self.url) as websocket:
                await wait_until(lambda: self.hub.subscriber_count == 1)
                self.hub.close()

                with pytest.raises(ConnectionClosed):
                    await asyncio.wait_for(websocket.recv(), 2.0)
        finally:
            await self.stop(task)

    @pytest.mark.asyncio
    async def test_port_in_use(self):
        """Test that a bind failure raises ServerBindError."""
        task = await self.start()
        try:
            other = SubscriberServer(FanOutHub(), "127.0.0.1", self.server.bound_port)
            with pytest.raises(ServerBindError):
                await asyncio.wait_for(other.run(), timeout=2.0)
        finally:
            await self.stop(task)
