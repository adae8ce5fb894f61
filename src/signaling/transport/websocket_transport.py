"""WebSocket transport implementation.

Accepts peer connections over WebSocket and drives each through the
connection lifecycle: register on accept, route every inbound frame, and
unregister when the socket closes.
"""

import asyncio
import logging
import uuid
from typing import Any

from websockets.asyncio.server import ServerConnection, serve
from websockets.exceptions import ConnectionClosed, ConnectionClosedError
from websockets.protocol import State

from signaling.connection import Connection
from signaling.metrics import MetricsCollector, get_metrics_collector
from signaling.registry import ConnectionRegistry
from signaling.router import MessageRouter
from signaling.transport.base import Channel, Transport

logger = logging.getLogger(__name__)

# Close code sent when the connection limit is reached ("Try Again Later")
CLOSE_TRY_AGAIN_LATER = 1013


class WebSocketChannel(Channel):
    """WebSocket-backed outbound channel.

    Messages are queued and written by a dedicated writer task, so ``send``
    never blocks the caller and per-channel ordering is preserved.
    """

    def __init__(self, websocket: ServerConnection, channel_id: str, queue_size: int = 64) -> None:
        """Initialize WebSocket channel.

        Args:
            websocket: WebSocket connection
            channel_id: Transport-level identifier for logging
            queue_size: Maximum number of undelivered outbound messages
        """
        self._websocket = websocket
        self._channel_id = channel_id
        self._connected = True
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=queue_size)
        self._writer_task: asyncio.Task[None] | None = None

    @property
    def channel_id(self) -> str:
        return self._channel_id

    @property
    def is_connected(self) -> bool:
        """Check if the channel can still accept writes."""
        return self._connected and self._websocket.state == State.OPEN

    def start(self) -> None:
        """Start the writer task. Must be called from the event loop."""
        if self._writer_task is None:
            self._writer_task = asyncio.create_task(self._writer_loop())

    def send(self, message: str) -> None:
        """Queue a message for the writer task.

        Raises:
            ConnectionError: If the connection is closed or the queue is full
        """
        if not self.is_connected:
            raise ConnectionError("WebSocket connection is closed")

        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull as e:
            raise ConnectionError(
                f"Outbound queue full ({self._queue.maxsize} messages pending)"
            ) from e

    async def _writer_loop(self) -> None:
        """Write queued messages to the socket until it closes."""
        try:
            while True:
                message = await self._queue.get()
                await self._websocket.send(message)
        except ConnectionClosed:
            logger.debug(
                "Writer stopped, connection closed",
                extra={"channel_id": self._channel_id},
            )
        except Exception as e:
            logger.error(
                "Writer failed",
                extra={"channel_id": self._channel_id, "error": str(e)},
            )
        finally:
            self._connected = False

    async def close(self) -> None:
        """Stop the writer and close the socket. Safe to call more than once."""
        self._connected = False

        if self._writer_task is not None:
            self._writer_task.cancel()
            try:
                await self._writer_task
            except asyncio.CancelledError:
                pass
            self._writer_task = None

        try:
            await self._websocket.close()
        except Exception as e:
            logger.warning(
                "Error during channel close",
                extra={"channel_id": self._channel_id, "error": str(e)},
            )


class WebSocketTransport(Transport):
    """WebSocket transport server.

    Runs one connection lifecycle per accepted client.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        router: MessageRouter,
        host: str = "0.0.0.0",  # noqa: S104
        port: int = 8080,
        max_connections: int = 1000,
        max_message_size: int = 2**20,
        send_queue_size: int = 64,
        metrics: MetricsCollector | None = None,
    ) -> None:
        """Initialize WebSocket transport.

        Args:
            registry: Connection registry
            router: Message router
            host: Bind host address
            port: Bind port
            max_connections: Maximum concurrent registered connections
            max_message_size: Maximum inbound frame size in bytes
            send_queue_size: Outbound queue bound per connection
            metrics: Metrics collector (defaults to the global collector)
        """
        self._registry = registry
        self._router = router
        self._host = host
        self._port = port
        self._max_connections = max_connections
        self._max_message_size = max_message_size
        self._send_queue_size = send_queue_size
        self._metrics = metrics or get_metrics_collector()
        self._server: Any = None  # websockets Server
        self._running = False

        logger.info(
            "WebSocket transport initialized",
            extra={"host": host, "port": port, "max_connections": max_connections},
        )

    @property
    def transport_type(self) -> str:
        return "websocket"

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def port(self) -> int:
        """Configured bind port."""
        return self._port

    async def start(self) -> None:
        """Start the WebSocket server.

        Raises:
            RuntimeError: If the transport is already running or fails to start
            OSError: If port binding fails
        """
        if self._running:
            raise RuntimeError("WebSocket transport is already running")

        logger.info("Starting WebSocket server", extra={"host": self._host, "port": self._port})

        try:
            self._server = await serve(
                self._handle_connection,
                self._host,
                self._port,
                max_size=self._max_message_size,
            )
            self._running = True

            logger.info("WebSocket server started", extra={"host": self._host, "port": self._port})

        except OSError as e:
            logger.error(
                "Failed to bind WebSocket server",
                extra={"host": self._host, "port": self._port, "error": str(e)},
            )
            raise
        except Exception as e:
            logger.error("Failed to start WebSocket server", extra={"error": str(e)})
            raise RuntimeError(f"Failed to start WebSocket transport: {e}") from e

    async def stop(self) -> None:
        """Stop the WebSocket server and close all connections."""
        if not self._running:
            return

        logger.info("Stopping WebSocket server")

        self._running = False

        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

        logger.info("WebSocket server stopped")

    async def _handle_connection(self, websocket: ServerConnection) -> None:
        """Handle an incoming WebSocket connection for its whole lifetime.

        Args:
            websocket: WebSocket connection
        """
        channel_id = f"ws-{uuid.uuid4().hex[:12]}"

        if len(self._registry) >= self._max_connections:
            self._metrics.record_connection_rejected()
            logger.warning(
                "Connection limit reached, rejecting connection",
                extra={"channel_id": channel_id, "max_connections": self._max_connections},
            )
            await websocket.close(code=CLOSE_TRY_AGAIN_LATER, reason="Server at connection limit")
            return

        channel = WebSocketChannel(websocket, channel_id, queue_size=self._send_queue_size)
        channel.start()
        connection = Connection(channel, self._registry, self._router, self._metrics)

        try:
            identity = connection.open()
            logger.info(
                "New WebSocket connection",
                extra={
                    "identity": identity,
                    "channel_id": channel_id,
                    "remote": websocket.remote_address,
                },
            )

            async for raw_message in websocket:
                connection.handle_message(raw_message)

        except ConnectionClosedError as e:
            logger.info(
                "WebSocket connection closed with error",
                extra={"identity": connection.identity, "channel_id": channel_id, "error": str(e)},
            )
        except Exception as e:
            logger.error(
                "Error in connection handler",
                extra={"identity": connection.identity, "channel_id": channel_id, "error": str(e)},
            )
        finally:
            connection.close()
            await channel.close()
            logger.info(
                "WebSocket connection closed",
                extra={"identity": connection.identity, "channel_id": channel_id},
            )
