"""
Domain Models - Core Entities
=============================
Pure data models for sessions, connections and push events.
"""

from .session import Identity, Role, SessionState, SessionStatus
from .connection import (
    ABNORMAL_CLOSURE,
    NORMAL_CLOSURE,
    ConnectionEvent,
    ConnectionStatus,
    ReconnectDecision,
    ReconnectPolicy,
    should_reconnect_on_visible,
    transition,
)
from .events import (
    EventKind,
    HandshakeMessage,
    InboundEvent,
    MessagePayload,
    Notification,
    NotificationPriority,
)

__all__ = [
    # Session
    'Identity', 'Role', 'SessionState', 'SessionStatus',
    # Connection
    'ABNORMAL_CLOSURE', 'NORMAL_CLOSURE', 'ConnectionEvent', 'ConnectionStatus',
    'ReconnectDecision', 'ReconnectPolicy', 'should_reconnect_on_visible', 'transition',
    # Events
    'EventKind', 'HandshakeMessage', 'InboundEvent', 'MessagePayload',
    'Notification', 'NotificationPriority',
]
