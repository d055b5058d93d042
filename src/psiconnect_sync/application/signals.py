"""
UI Signal Adapters
==================
Implementations of the notification and navigation ports that publish to the
EventBus, so any UI layer can subscribe without the sync core knowing it.
"""

from typing import Optional

from ..core.event_bus import EventBus
from ..core.logger import StructuredLogger, get_logger
from ..domain.interfaces.navigation import Navigator
from ..domain.interfaces.notifications import NotificationSink
from ..domain.models.events import Notification


class EventBusNotificationSink(NotificationSink):
    """Publishes notifications on ``notification.raised``."""

    def __init__(self, event_bus: EventBus):
        self.event_bus = event_bus

    async def notify(self, notification: Notification) -> None:
        await self.event_bus.publish("notification.raised", notification.to_dict())


class EventBusNavigator(Navigator):
    """Publishes hard navigations on ``navigation.requested`` and remembers the path."""

    def __init__(self,
                 event_bus: EventBus,
                 initial_path: str = "/",
                 logger: Optional[StructuredLogger] = None):
        self.event_bus = event_bus
        self.logger = logger or get_logger(__name__)
        self._current_path = initial_path

    @property
    def current_path(self) -> str:
        return self._current_path

    def set_current_path(self, path: str) -> None:
        self._current_path = path

    async def hard_navigate(self, path: str, reason: str = "") -> None:
        self.logger.info("navigator.hard_navigate", {"path": path, "reason": reason})
        self._current_path = path.split("?", 1)[0]
        await self.event_bus.publish("navigation.requested", {"path": path, "reason": reason})
