"""
Authentication Handshake
========================
Binds a freshly opened channel to the current identity by sending
``{"type": "auth", "userId": <int>, "userType": <str>}``.

The exchange is fire-and-forget unless ``require_ack`` is set, in which
case a connection counts as bound only once the server echoes ``auth_ack``.
"""

from typing import Any, Dict, Optional

from ...core.logger import StructuredLogger, get_logger
from ...domain.models.events import HandshakeMessage
from ...domain.models.session import Identity
from .channel import TransportChannel


class AuthHandshake:
    """
    Tracks which channel generation carries an auth message.

    Features:
    - Sends auth on every open when an identity is known
    - Re-sends when an identity appears or changes while the channel is open
    - ``is_bound`` is per connection: a reconnect unbinds until the next send
    """

    def __init__(self,
                 channel: TransportChannel,
                 require_ack: bool = False,
                 logger: Optional[StructuredLogger] = None):
        self.channel = channel
        self.require_ack = require_ack
        self.logger = logger or get_logger(__name__)

        self._identity: Optional[Identity] = None
        self._sent_generation: Optional[int] = None
        self._bound_generation: Optional[int] = None
        self._messages_sent = 0
        self._acks_received = 0

    @property
    def identity(self) -> Optional[Identity]:
        return self._identity

    @property
    def is_bound(self) -> bool:
        """True when the live connection has been bound to an identity."""
        return (
            self.channel.is_connected
            and self._bound_generation is not None
            and self._bound_generation == self.channel.generation
        )

    async def on_channel_open(self) -> None:
        if self._identity is None:
            self.logger.info("auth_handshake.skipped", {"reason": "no_identity"})
            return
        await self._send_auth()

    async def set_identity(self, identity: Optional[Identity]) -> None:
        """Update the identity; a new identity on an open channel is announced immediately."""
        previous, self._identity = self._identity, identity
        if identity is None:
            self._sent_generation = None
            self._bound_generation = None
            return
        if identity != previous and self.channel.is_connected:
            await self._send_auth()

    def handle_ack(self, payload: Dict[str, Any]) -> None:
        generation = self.channel.generation
        self._acks_received += 1
        if self._sent_generation != generation:
            self.logger.warning("auth_handshake.unexpected_ack", {"generation": generation})
            return
        self._bound_generation = generation
        self.logger.info("auth_handshake.acknowledged", {
            "generation": generation,
            "user_id": payload.get("userId", payload.get("user_id"))
        })

    async def _send_auth(self) -> None:
        identity = self._identity
        message = HandshakeMessage(user_id=identity.id, user_type=identity.role.value)
        generation = self.channel.generation

        sent = await self.channel.send(message.to_wire())
        if not sent:
            self.logger.warning("auth_handshake.send_failed", {
                "user_id": identity.id,
                "status": self.channel.status.value
            })
            return

        self._messages_sent += 1
        self._sent_generation = generation
        if not self.require_ack:
            self._bound_generation = generation
        self.logger.info("auth_handshake.sent", {
            "user_id": identity.id,
            "user_type": identity.role.value,
            "generation": generation,
            "awaiting_ack": self.require_ack
        })

    def get_stats(self) -> Dict[str, Any]:
        return {
            "bound": self.is_bound,
            "require_ack": self.require_ack,
            "messages_sent": self._messages_sent,
            "acks_received": self._acks_received,
            "user_id": self._identity.id if self._identity else None,
        }
