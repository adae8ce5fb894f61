"""Transport-agnostic connection lifecycle.

Drives a single peer connection through its states: registration and identity
announcement on open, routing while open, and exactly-once unregistration on
close, regardless of which side ended the connection.
"""

import logging
import time
from enum import Enum
from typing import TYPE_CHECKING

from signaling.metrics import MetricsCollector, get_metrics_collector
from signaling.protocol import ClientIdMessage
from signaling.registry import ConnectionRegistry
from signaling.router import MessageRouter, RouteResult

if TYPE_CHECKING:
    from signaling.transport.base import Channel

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Connection state machine states.

    State Transitions:
    - CONNECTING → OPEN (on accept: registered, identity announced)
    - CONNECTING → CLOSED (connection lost before registration)
    - OPEN → CLOSED (on close or error, from either side)

    CLOSED is terminal.
    """

    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


# Valid state transitions
VALID_TRANSITIONS: dict[ConnectionState, set[ConnectionState]] = {
    ConnectionState.CONNECTING: {ConnectionState.OPEN, ConnectionState.CLOSED},
    ConnectionState.OPEN: {ConnectionState.CLOSED},
    ConnectionState.CLOSED: set(),  # Terminal state
}


class Connection:
    """Lifecycle of one peer connection."""

    def __init__(
        self,
        channel: "Channel",
        registry: ConnectionRegistry,
        router: MessageRouter,
        metrics: MetricsCollector | None = None,
    ) -> None:
        """Initialize connection in CONNECTING state.

        Args:
            channel: Outbound channel of the accepted connection
            registry: Registry to register with
            router: Router for inbound messages
            metrics: Metrics collector (defaults to the global collector)
        """
        self.channel = channel
        self.state = ConnectionState.CONNECTING
        self.identity: str | None = None
        self._registry = registry
        self._router = router
        self._metrics = metrics or get_metrics_collector()
        self._opened_at: float | None = None

    @property
    def is_open(self) -> bool:
        return self.state == ConnectionState.OPEN

    def open(self) -> str:
        """Register the connection and announce its identity.

        The identity announcement is queued on the channel before any other
        message can be routed to it.

        Returns:
            Identity assigned to this connection

        Raises:
            ValueError: If the connection is not CONNECTING
        """
        if self.state != ConnectionState.CONNECTING:
            raise ValueError(f"Cannot open connection in state {self.state.value}")

        identity = self._registry.register(self.channel)
        self.identity = identity
        self._opened_at = time.monotonic()
        self.transition_state(ConnectionState.OPEN)
        self._metrics.record_connection_open()

        try:
            self.channel.send(ClientIdMessage(id=identity).model_dump_json())
        except ConnectionError as e:
            logger.warning(
                "Failed to announce identity",
                extra={"identity": identity, "error": str(e)},
            )

        return identity

    def handle_message(self, raw: str | bytes) -> RouteResult | None:
        """Route an inbound message with this connection as sender.

        Args:
            raw: Message as received from the transport

        Returns:
            Routing outcome, or None if the connection is not open
        """
        if self.state != ConnectionState.OPEN or self.identity is None:
            logger.debug(
                "Ignoring message on connection that is not open",
                extra={"channel_id": self.channel.channel_id, "state": self.state.value},
            )
            return None

        return self._router.route(self.identity, raw)

    def close(self) -> None:
        """Enter CLOSED and unregister. Only the first call has any effect."""
        if self.state == ConnectionState.CLOSED:
            return

        was_open = self.state == ConnectionState.OPEN
        self.transition_state(ConnectionState.CLOSED)

        if was_open and self.identity is not None:
            self._registry.unregister(self.identity)
            duration = time.monotonic() - (self._opened_at or time.monotonic())
            self._metrics.record_connection_close(duration)

    def transition_state(self, new_state: ConnectionState) -> None:
        """Transition connection to a new state with validation.

        Args:
            new_state: Target state

        Raises:
            ValueError: If transition is invalid
        """
        if new_state not in VALID_TRANSITIONS.get(self.state, set()):
            raise ValueError(f"Invalid state transition: {self.state.value} → {new_state.value}")

        old_state = self.state
        self.state = new_state

        logger.debug(
            "Connection state transition",
            extra={
                "identity": self.identity,
                "channel_id": self.channel.channel_id,
                "from_state": old_state.value,
                "to_state": new_state.value,
            },
        )
