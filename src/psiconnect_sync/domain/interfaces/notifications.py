"""
Notification Interfaces - Ports for user-visible notifications
==============================================================
"""

from abc import ABC, abstractmethod

from ..models.events import Notification


class NotificationSink(ABC):
    """Receives notifications raised by the Event Dispatcher."""

    @abstractmethod
    async def notify(self, notification: Notification) -> None:
        pass
