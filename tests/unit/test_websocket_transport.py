"""Unit tests for WebSocket transport implementation.

Tests the queued outbound channel and the per-connection handler using
mocked WebSocket connections.
"""

import asyncio
import json
from collections.abc import AsyncIterator, Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock, call

import pytest
from websockets.exceptions import ConnectionClosed
from websockets.protocol import State

from signaling.metrics import MetricsCollector
from signaling.registry import ConnectionRegistry
from signaling.router import MessageRouter
from signaling.transport.websocket_transport import (
    CLOSE_TRY_AGAIN_LATER,
    WebSocketChannel,
    WebSocketTransport,
)


class FakeWebSocket:
    """WebSocket stand-in yielding scripted inbound messages."""

    def __init__(self, inbound: list[str | bytes]) -> None:
        self.inbound = inbound
        self.state = State.OPEN
        self.remote_address = ("127.0.0.1", 12345)
        self.send = AsyncMock()
        self.close = AsyncMock(side_effect=self._close)

    async def _close(self, *args: Any, **kwargs: Any) -> None:
        self.state = State.CLOSED

    def __aiter__(self) -> AsyncIterator[str | bytes]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[str | bytes]:
        for message in self.inbound:
            await asyncio.sleep(0)
            yield message


async def _drain(rounds: int = 10) -> None:
    """Let background writer tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class TestWebSocketChannel:
    """Test WebSocket channel implementation."""

    @pytest.fixture
    def mock_websocket(self) -> MagicMock:
        """Create mock WebSocket connection."""
        ws = MagicMock()
        ws.state = State.OPEN
        ws.remote_address = ("127.0.0.1", 12345)
        ws.send = AsyncMock()
        ws.close = AsyncMock()
        return ws

    def test_channel_initialization(self, mock_websocket: MagicMock) -> None:
        channel = WebSocketChannel(mock_websocket, "ws-test")

        assert channel.channel_id == "ws-test"
        assert channel.is_connected is True

    @pytest.mark.asyncio
    async def test_send_is_queued_in_order(self, mock_websocket: MagicMock) -> None:
        channel = WebSocketChannel(mock_websocket, "ws-test")
        channel.start()

        channel.send("first")
        channel.send("second")
        channel.send("third")
        await _drain()

        assert mock_websocket.send.await_args_list == [call("first"), call("second"), call("third")]
        await channel.close()

    @pytest.mark.asyncio
    async def test_send_when_queue_full(self, mock_websocket: MagicMock) -> None:
        """A slow peer cannot grow the queue without bound."""
        channel = WebSocketChannel(mock_websocket, "ws-test", queue_size=2)

        channel.send("a")
        channel.send("b")
        with pytest.raises(ConnectionError, match="Outbound queue full"):
            channel.send("c")

    @pytest.mark.asyncio
    async def test_send_after_socket_closed(self, mock_websocket: MagicMock) -> None:
        channel = WebSocketChannel(mock_websocket, "ws-test")
        mock_websocket.state = State.CLOSED

        assert channel.is_connected is False
        with pytest.raises(ConnectionError, match="closed"):
            channel.send("late")

    @pytest.mark.asyncio
    async def test_writer_stops_on_connection_closed(self, mock_websocket: MagicMock) -> None:
        mock_websocket.send = AsyncMock(side_effect=ConnectionClosed(None, None))
        channel = WebSocketChannel(mock_websocket, "ws-test")
        channel.start()

        channel.send("doomed")
        await _drain()

        assert channel.is_connected is False
        with pytest.raises(ConnectionError):
            channel.send("after")
        await channel.close()

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, mock_websocket: MagicMock) -> None:
        channel = WebSocketChannel(mock_websocket, "ws-test")
        channel.start()

        await channel.close()
        await channel.close()

        assert channel.is_connected is False
        assert mock_websocket.close.await_count == 2

    @pytest.mark.asyncio
    async def test_close_tolerates_socket_errors(self, mock_websocket: MagicMock) -> None:
        mock_websocket.close = AsyncMock(side_effect=RuntimeError("boom"))
        channel = WebSocketChannel(mock_websocket, "ws-test")

        await channel.close()

        assert channel.is_connected is False


class TestWebSocketTransport:
    """Test transport lifecycle and the per-connection handler."""

    @pytest.fixture
    def transport(
        self,
        registry: ConnectionRegistry,
        router: MessageRouter,
        metrics: MetricsCollector,
    ) -> WebSocketTransport:
        return WebSocketTransport(registry, router, port=9000, metrics=metrics)

    def test_transport_properties(self, transport: WebSocketTransport) -> None:
        assert transport.transport_type == "websocket"
        assert transport.is_running is False
        assert transport.port == 9000

    @pytest.mark.asyncio
    async def test_stop_when_not_running(self, transport: WebSocketTransport) -> None:
        await transport.stop()
        assert transport.is_running is False

    @pytest.mark.asyncio
    async def test_start_twice_rejected(self, transport: WebSocketTransport) -> None:
        transport._running = True
        with pytest.raises(RuntimeError, match="already running"):
            await transport.start()

    @pytest.mark.asyncio
    async def test_handler_routes_and_unregisters(
        self,
        transport: WebSocketTransport,
        registry: ConnectionRegistry,
        metrics: MetricsCollector,
        make_channel: Callable[..., Any],
    ) -> None:
        """Inbound frames are routed; the entry is gone once the socket ends."""
        peer = make_channel("peer")
        b = registry.register(peer)
        websocket = FakeWebSocket(
            [
                "garbage",
                json.dumps({"type": "offer", "target": b, "sender": "spoof", "offer": "X"}),
                json.dumps({"type": "ice_candidate", "target": b, "candidate": "c1"}),
            ]
        )

        await transport._handle_connection(websocket)  # type: ignore[arg-type]

        offer, candidate = peer.messages()
        assert offer["type"] == "offer"
        assert offer["offer"] == "X"
        assert offer["sender"] != "spoof"
        assert candidate == {"type": "ice_candidate", "candidate": "c1", "sender": offer["sender"]}

        # Only the pre-registered peer remains
        assert registry.identities() == [b]
        assert offer["sender"] not in registry
        assert metrics.get_summary()["connections_active"] == 0
        assert metrics.get_summary()["messages_malformed"] == 1
        websocket.close.assert_awaited()

    @pytest.mark.asyncio
    async def test_handler_announces_identity_first(
        self, transport: WebSocketTransport, registry: ConnectionRegistry
    ) -> None:
        websocket = FakeWebSocket(["{}", "{}", "{}"])

        await transport._handle_connection(websocket)  # type: ignore[arg-type]

        first = json.loads(websocket.send.await_args_list[0].args[0])
        assert first["type"] == "client-id"
        assert len(first["id"]) == 8
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_handler_rejects_at_connection_limit(
        self,
        registry: ConnectionRegistry,
        router: MessageRouter,
        metrics: MetricsCollector,
        make_channel: Callable[..., Any],
    ) -> None:
        transport = WebSocketTransport(registry, router, max_connections=1, metrics=metrics)
        registry.register(make_channel("existing"))
        websocket = FakeWebSocket([])

        await transport._handle_connection(websocket)  # type: ignore[arg-type]

        websocket.close.assert_awaited_once_with(
            code=CLOSE_TRY_AGAIN_LATER, reason="Server at connection limit"
        )
        websocket.send.assert_not_awaited()
        assert len(registry) == 1
        assert metrics.get_summary()["connections_rejected"] == 1
