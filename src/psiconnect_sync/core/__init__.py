"""
Core module for the PsiConnect sync client
"""

from .event_bus import EventBus
from .logger import StructuredLogger, get_logger

__all__ = [
    'EventBus',
    'StructuredLogger',
    'get_logger',
]
