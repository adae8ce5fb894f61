"""Transport layer for peer connections.

Provides abstraction over the listener that accepts peers and the channels
the relay writes forwarded messages to.
"""

from signaling.transport.base import Channel, Transport
from signaling.transport.websocket_transport import (
    WebSocketChannel,
    WebSocketTransport,
)

__all__ = [
    "Channel",
    "Transport",
    "WebSocketChannel",
    "WebSocketTransport",
]
