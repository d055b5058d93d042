"""
Domain Interfaces - Ports
=========================
Abstract collaborators injected into the sync components.
"""

from .navigation import Navigator
from .notifications import NotificationSink
from .storage import KeyValueStore

__all__ = ['KeyValueStore', 'Navigator', 'NotificationSink']
