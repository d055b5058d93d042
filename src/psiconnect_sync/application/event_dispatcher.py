"""
Event Dispatcher - Routes push events to side effects
=====================================================
Classifies inbound server events and triggers cache invalidation and
notifications, filtered by who sent the message and who it is for.

Routing:
- new_message   recipient is me, sender is not → invalidate "received", notify
- message_sent  sender is me                  → invalidate "sent", low-priority notice
- auth_ack      forwarded to the handshake
- anything else ignored
"""

from collections import OrderedDict
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from pydantic import ValidationError

from ..core.exceptions import MalformedEventError
from ..core.logger import StructuredLogger, get_logger
from ..domain.interfaces.notifications import NotificationSink
from ..domain.models.events import (
    EventKind,
    InboundEvent,
    MessagePayload,
    Notification,
    NotificationPriority,
)
from ..domain.models.session import Identity
from ..infrastructure.config.settings import RequestSettings
from ..infrastructure.http.request_layer import RequestLayer
from ..infrastructure.transport.handshake import AuthHandshake

IdentityProvider = Callable[[], Optional[Identity]]


class EventDispatcher:
    """
    Consumes each decoded inbound event exactly once.

    Features:
    - Identity filtering (self-echo and foreign messages never notify)
    - Duplicate suppression over a bounded window of recent event keys
    - Connection gate: events are ignored until the handshake bound the channel
    - Malformed events dropped with a counter, never raised
    """

    def __init__(self,
                 request_layer: RequestLayer,
                 notifications: NotificationSink,
                 identity_provider: IdentityProvider,
                 handshake: Optional[AuthHandshake] = None,
                 settings: Optional[RequestSettings] = None,
                 logger: Optional[StructuredLogger] = None,
                 dedup_capacity: int = 256):
        self.request_layer = request_layer
        self.notifications = notifications
        self.identity_provider = identity_provider
        self.handshake = handshake
        self.settings = settings or RequestSettings()
        self.logger = logger or get_logger(__name__)

        self._dedup_capacity = dedup_capacity
        self._seen: "OrderedDict[Tuple[Any, ...], None]" = OrderedDict()
        self._handlers: Dict[str, Callable[[InboundEvent], Awaitable[None]]] = {
            EventKind.NEW_MESSAGE.value: self._on_new_message,
            EventKind.MESSAGE_SENT.value: self._on_message_sent,
        }

        self._stats = {
            "received": 0,
            "dispatched": 0,
            "notified": 0,
            "filtered": 0,
            "duplicates": 0,
            "ignored_unknown": 0,
            "ignored_unbound": 0,
            "malformed": 0,
        }

    async def handle(self, data: Any) -> None:
        """Entry point for the channel's ``on_message``."""
        self._stats["received"] += 1
        event = InboundEvent.from_wire(data)
        if event is None:
            self._stats["malformed"] += 1
            self.logger.debug("event_dispatcher.malformed_dropped", {
                "reason": "not_a_typed_object",
                "sample": str(data)[:200]
            })
            return

        if event.kind == EventKind.AUTH_ACK.value:
            if self.handshake is not None:
                self.handshake.handle_ack(event.payload)
            return

        if self.handshake is not None and not self.handshake.is_bound:
            self._stats["ignored_unbound"] += 1
            self.logger.debug("event_dispatcher.ignored_unbound", {"kind": event.kind})
            return

        handler = self._handlers.get(event.kind)
        if handler is None:
            self._stats["ignored_unknown"] += 1
            self.logger.debug("event_dispatcher.ignored_unknown", {"kind": event.kind})
            return

        try:
            await handler(event)
        except MalformedEventError as e:
            self._stats["malformed"] += 1
            self.logger.warning("event_dispatcher.malformed_dropped", {
                "kind": event.kind,
                "reason": e.reason
            })

    async def _on_new_message(self, event: InboundEvent) -> None:
        message = self._parse_message(event)
        me = self.identity_provider()
        if me is None or message.recipient_id != me.id or message.sender_id == me.id:
            self._stats["filtered"] += 1
            return
        if self._is_duplicate(event.kind, message):
            return

        self._stats["dispatched"] += 1
        await self.request_layer.invalidate(self.settings.received_cache_key)
        await self._notify(Notification(
            title="New message",
            body=message.subject or "",
            priority=NotificationPriority.NORMAL,
            kind=event.kind
        ))

    async def _on_message_sent(self, event: InboundEvent) -> None:
        message = self._parse_message(event)
        me = self.identity_provider()
        if me is None or message.sender_id != me.id:
            self._stats["filtered"] += 1
            return
        if self._is_duplicate(event.kind, message):
            return

        self._stats["dispatched"] += 1
        await self.request_layer.invalidate(self.settings.sent_cache_key)
        await self._notify(Notification(
            title="Message sent",
            body=message.subject or "",
            priority=NotificationPriority.LOW,
            kind=event.kind
        ))

    async def _notify(self, notification: Notification) -> None:
        self._stats["notified"] += 1
        await self.notifications.notify(notification)

    @staticmethod
    def _parse_message(event: InboundEvent) -> MessagePayload:
        raw = event.payload.get("message")
        if not isinstance(raw, dict):
            raise MalformedEventError("missing message object", raw=event.payload)
        try:
            return MessagePayload.model_validate(raw)
        except ValidationError as e:
            raise MalformedEventError(f"invalid message: {e.error_count()} error(s)", raw=raw) from e

    def _is_duplicate(self, kind: str, message: MessagePayload) -> bool:
        """
        Remember the event key; True if it was already handled.

        Only events carrying a message id can be recognized as redeliveries.
        """
        if message.id is None:
            return False
        key = (kind, message.id)

        if key in self._seen:
            self._stats["duplicates"] += 1
            self._seen.move_to_end(key)
            self.logger.debug("event_dispatcher.duplicate_suppressed", {"kind": kind, "key": str(key)})
            return True

        self._seen[key] = None
        if len(self._seen) > self._dedup_capacity:
            self._seen.popitem(last=False)
        return False

    def reset(self) -> None:
        """Forget handled events; used when the identity changes."""
        self._seen.clear()

    def get_stats(self) -> Dict[str, Any]:
        return {**self._stats, "dedup_window": len(self._seen)}
