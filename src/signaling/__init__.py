"""WebRTC signaling relay.

Accepts WebSocket peers, assigns each an identity, and forwards offers,
answers and ICE candidates between them.
"""

from signaling.config import RelayConfig
from signaling.connection import Connection, ConnectionState
from signaling.registry import ConnectionRegistry, generate_identity
from signaling.router import MessageRouter, RouteResult

__all__ = [
    "Connection",
    "ConnectionRegistry",
    "ConnectionState",
    "MessageRouter",
    "RelayConfig",
    "RouteResult",
    "generate_identity",
]
