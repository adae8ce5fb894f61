"""Shared fixtures for relay unit tests."""

import json
from collections.abc import Callable
from typing import Any

import pytest

from signaling.metrics import MetricsCollector
from signaling.registry import ConnectionRegistry
from signaling.router import MessageRouter
from signaling.transport.base import Channel


class RecordingChannel(Channel):
    """In-memory channel that records every message sent to it."""

    def __init__(self, channel_id: str = "test-channel") -> None:
        self._channel_id = channel_id
        self._connected = True
        self.fail_sends = False
        self.sent: list[str] = []

    def send(self, message: str) -> None:
        """Record message."""
        if not self._connected:
            raise ConnectionError("Not connected")
        if self.fail_sends:
            raise ConnectionError("Send failed")
        self.sent.append(message)

    async def close(self) -> None:
        """Mock close."""
        self._connected = False

    @property
    def channel_id(self) -> str:
        return self._channel_id

    @property
    def is_connected(self) -> bool:
        return self._connected

    def disconnect(self) -> None:
        """Simulate the underlying socket going away."""
        self._connected = False

    def messages(self) -> list[dict[str, Any]]:
        """Decoded messages in send order."""
        return [json.loads(m) for m in self.sent]


@pytest.fixture
def metrics() -> MetricsCollector:
    """Fresh metrics collector, isolated from the global singleton."""
    return MetricsCollector()


@pytest.fixture
def registry() -> ConnectionRegistry:
    """Empty connection registry."""
    return ConnectionRegistry()


@pytest.fixture
def router(registry: ConnectionRegistry, metrics: MetricsCollector) -> MessageRouter:
    """Router bound to the test registry and metrics."""
    return MessageRouter(registry, metrics)


@pytest.fixture
def make_channel() -> Callable[[str], RecordingChannel]:
    """Factory for recording channels."""

    def _make(channel_id: str = "test-channel") -> RecordingChannel:
        return RecordingChannel(channel_id)

    return _make
