"""Integration test fixtures and utilities.

Provides shared fixtures for:
- Free port allocation
- Relay server lifecycle on real sockets
- Connected WebSocket peers with their assigned identities
"""

import asyncio
import json
import logging
import socket
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import pytest_asyncio
from websockets.asyncio.client import ClientConnection, connect

from signaling.config import HealthConfig, RelayConfig, TransportConfig, WebSocketConfig
from signaling.metrics import MetricsCollector
from signaling.server import RelayServer

logger = logging.getLogger(__name__)


# ============================================================================
# Utility Functions for Port Allocation
# ============================================================================


def get_free_port() -> int:
    """Get a free TCP port for binding.

    Notes:
        The port is freed immediately after discovery, so there's a small
        race window, but this is acceptable for tests.
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        s.listen(1)
        port: int = s.getsockname()[1]
    return port


# ============================================================================
# Relay Server Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def relay_server() -> AsyncIterator[RelayServer]:
    """Run a relay on loopback with its own ports and metrics."""
    config = RelayConfig(
        transport=TransportConfig(
            websocket=WebSocketConfig(host="127.0.0.1", port=get_free_port(), max_connections=50)
        ),
        health=HealthConfig(host="127.0.0.1", port=get_free_port()),
    )
    server = RelayServer(config, metrics=MetricsCollector())
    await server.start()
    logger.info(f"Relay started on port {config.transport.websocket.port}")

    yield server

    await server.stop()


@dataclass
class Peer:
    """Connected client and the identity the relay assigned to it."""

    ws: ClientConnection
    identity: str

    async def send_json(self, message: dict[str, Any]) -> None:
        await self.ws.send(json.dumps(message))

    async def recv_json(self, timeout: float = 2.0) -> dict[str, Any]:
        raw = await asyncio.wait_for(self.ws.recv(), timeout=timeout)
        data: dict[str, Any] = json.loads(raw)
        return data

    async def expect_silence(self, timeout: float = 0.3) -> None:
        """Assert nothing arrives within timeout."""
        try:
            raw = await asyncio.wait_for(self.ws.recv(), timeout=timeout)
        except TimeoutError:
            return
        raise AssertionError(f"Unexpected message: {raw!r}")


@pytest_asyncio.fixture
async def connect_peer(relay_server: RelayServer) -> AsyncIterator[Callable[[], Awaitable[Peer]]]:
    """Factory connecting peers to the relay; every peer is closed on teardown."""
    url = f"ws://127.0.0.1:{relay_server.transport.port}"
    clients: list[ClientConnection] = []

    async def _connect() -> Peer:
        ws = await connect(url)
        clients.append(ws)
        announcement = json.loads(await asyncio.wait_for(ws.recv(), timeout=2.0))
        assert announcement["type"] == "client-id"
        return Peer(ws=ws, identity=announcement["id"])

    yield _connect

    for ws in clients:
        await ws.close()
