"""Message routing between registered peers.

The router holds no state of its own: each call is a function of the current
registry contents and one inbound message. Negotiation envelopes are forwarded
to their target with the authenticated sender identity; everything else is
dropped without affecting the sending connection.
"""

import logging
from enum import Enum

from signaling.metrics import MetricsCollector, get_metrics_collector
from signaling.protocol import EnvelopeError, UnknownEnvelope, parse_envelope
from signaling.registry import ConnectionRegistry

logger = logging.getLogger(__name__)


class RouteResult(Enum):
    """Outcome of routing a single inbound message."""

    FORWARDED = "forwarded"
    UNKNOWN_TARGET = "unknown_target"
    SEND_FAILED = "send_failed"
    MALFORMED = "malformed"
    UNKNOWN_TYPE = "unknown_type"


class MessageRouter:
    """Forwards negotiation envelopes to their target peer."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        metrics: MetricsCollector | None = None,
    ) -> None:
        """Initialize router.

        Args:
            registry: Registry used to resolve targets
            metrics: Metrics collector (defaults to the global collector)
        """
        self._registry = registry
        self._metrics = metrics or get_metrics_collector()

    def route(self, sender: str, raw: str | bytes) -> RouteResult:
        """Route one inbound message.

        Args:
            sender: Identity of the connection the message arrived on
            raw: Message as received from the transport

        Returns:
            How the message was handled
        """
        self._metrics.record_message_received()
        result = self._route(sender, raw)
        self._metrics.record_message_outcome(result.value)
        return result

    def _route(self, sender: str, raw: str | bytes) -> RouteResult:
        try:
            envelope = parse_envelope(raw)
        except EnvelopeError as e:
            logger.warning(
                "Discarding malformed message",
                extra={"sender": sender, "error": str(e), "size": len(raw)},
            )
            return RouteResult.MALFORMED

        if isinstance(envelope, UnknownEnvelope):
            logger.warning(
                "Discarding message with unknown type",
                extra={"sender": sender, "type": envelope.type},
            )
            return RouteResult.UNKNOWN_TYPE

        channel = self._registry.lookup(envelope.target)
        if channel is None:
            logger.debug(
                "Target not connected, dropping message",
                extra={"sender": sender, "target": envelope.target, "type": envelope.type},
            )
            return RouteResult.UNKNOWN_TARGET

        try:
            channel.send(envelope.forward(sender).to_json())
        except ConnectionError as e:
            logger.warning(
                "Failed to forward message, dropping",
                extra={
                    "sender": sender,
                    "target": envelope.target,
                    "type": envelope.type,
                    "error": str(e),
                },
            )
            return RouteResult.SEND_FAILED

        logger.debug(
            "Message forwarded",
            extra={"sender": sender, "target": envelope.target, "type": envelope.type},
        )
        return RouteResult.FORWARDED
