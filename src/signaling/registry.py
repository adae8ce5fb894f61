"""Connection registry: live identity → channel mapping.

The registry is the only shared mutable state in the relay. All access goes
through ``register``/``lookup``/``unregister``, which are mutually exclusive.
"""

import logging
import secrets
import string
import threading
from collections.abc import Callable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from signaling.transport.base import Channel

logger = logging.getLogger(__name__)

IDENTITY_ALPHABET = string.digits + string.ascii_lowercase
DEFAULT_IDENTITY_LENGTH = 8

# Bound on regeneration attempts before giving up on a collision-free identity
MAX_IDENTITY_ATTEMPTS = 100


def generate_identity(length: int = DEFAULT_IDENTITY_LENGTH) -> str:
    """Generate a short random base-36 identity.

    Identities are routing labels, not capabilities.

    Args:
        length: Number of characters

    Returns:
        Random lowercase alphanumeric string
    """
    return "".join(secrets.choice(IDENTITY_ALPHABET) for _ in range(length))


class ConnectionRegistry:
    """Registry of live connections keyed by identity.

    Thread-safety: All public methods are thread-safe via mutex.
    """

    def __init__(
        self,
        identity_length: int = DEFAULT_IDENTITY_LENGTH,
        identity_factory: Callable[[int], str] = generate_identity,
    ) -> None:
        """Initialize an empty registry.

        Args:
            identity_length: Length of generated identities
            identity_factory: Identity generator (injectable for tests)
        """
        self._identity_length = identity_length
        self._identity_factory = identity_factory
        self._channels: dict[str, "Channel"] = {}
        self._lock = threading.Lock()

    def register(self, channel: "Channel") -> str:
        """Assign a fresh identity to a channel and insert it.

        Args:
            channel: Outbound channel of the newly accepted connection

        Returns:
            Identity not held by any other live connection

        Raises:
            RuntimeError: If no free identity was found
        """
        with self._lock:
            for _ in range(MAX_IDENTITY_ATTEMPTS):
                identity = self._identity_factory(self._identity_length)
                if identity not in self._channels:
                    self._channels[identity] = channel
                    break
            else:
                raise RuntimeError(
                    f"Could not allocate a unique identity after {MAX_IDENTITY_ATTEMPTS} attempts"
                )
            size = len(self._channels)

        logger.info(
            "Connection registered",
            extra={"identity": identity, "channel_id": channel.channel_id, "registered": size},
        )
        return identity

    def lookup(self, identity: str) -> "Channel | None":
        """Resolve an identity to its channel.

        Args:
            identity: Identity to resolve

        Returns:
            Channel of the live connection, or None if the identity is unknown
            or its connection is no longer open
        """
        with self._lock:
            channel = self._channels.get(identity)

        if channel is None or not channel.is_connected:
            return None
        return channel

    def unregister(self, identity: str) -> bool:
        """Remove an identity. Idempotent.

        Args:
            identity: Identity to remove

        Returns:
            True if an entry was removed, False if it was already absent
        """
        with self._lock:
            channel = self._channels.pop(identity, None)
            size = len(self._channels)

        if channel is None:
            return False

        logger.info(
            "Connection unregistered",
            extra={"identity": identity, "channel_id": channel.channel_id, "registered": size},
        )
        return True

    def identities(self) -> list[str]:
        """Snapshot of currently registered identities."""
        with self._lock:
            return list(self._channels)

    def __len__(self) -> int:
        with self._lock:
            return len(self._channels)

    def __contains__(self, identity: object) -> bool:
        with self._lock:
            return identity in self._channels
