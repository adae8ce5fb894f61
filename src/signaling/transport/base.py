"""Base transport abstraction for peer connections.

Defines the interface that transport implementations must provide so the
registry and router can deliver messages without knowing about sockets.
"""

from abc import ABC, abstractmethod


class Channel(ABC):
    """Outbound write capability of a single peer connection.

    The registry holds one channel per live connection; the router writes
    forwarded messages to it.
    """

    @abstractmethod
    def send(self, message: str) -> None:
        """Queue a text message for delivery to the peer.

        Fire-and-forget: returns as soon as the message is queued. Messages
        are delivered in the order they were queued.

        Args:
            message: JSON-encoded message

        Raises:
            ConnectionError: If the channel is closed or cannot accept more data
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the channel and release its resources.

        Safe to call more than once.
        """
        pass

    @property
    @abstractmethod
    def channel_id(self) -> str:
        """Transport-level identifier for logging."""
        pass

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Check if the channel can still accept writes."""
        pass


class Transport(ABC):
    """Base transport implementation.

    Manages the lifecycle of a listener (e.g., WebSocket server) and drives
    one connection lifecycle per accepted client.
    """

    @abstractmethod
    async def start(self) -> None:
        """Start the transport server.

        Bind the listener and begin accepting connections. Returns once the
        server is ready.

        Raises:
            RuntimeError: If the transport fails to start
            OSError: If port binding fails
        """
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Stop the transport server, closing all active connections."""
        pass

    @property
    @abstractmethod
    def transport_type(self) -> str:
        """Transport type identifier (e.g., 'websocket')."""
        pass

    @property
    @abstractmethod
    def is_running(self) -> bool:
        """Check if the transport server is currently running."""
        pass
