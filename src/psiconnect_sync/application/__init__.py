from .event_dispatcher import EventDispatcher
from .realtime_client import RealtimeSyncClient
from .session_store import SessionStore
from .signals import EventBusNavigator, EventBusNotificationSink

__all__ = [
    "EventBusNavigator",
    "EventBusNotificationSink",
    "EventDispatcher",
    "RealtimeSyncClient",
    "SessionStore",
]
