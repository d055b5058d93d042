"""
PsiConnect realtime session-synchronization client
==================================================
Keeps an authenticated, auto-reconnecting push channel to the PsiConnect
server and keeps locally cached state consistent with server-pushed events.
"""

from .application.realtime_client import RealtimeSyncClient
from .infrastructure.config.settings import AppSettings

__version__ = "0.1.0"

__all__ = ["AppSettings", "RealtimeSyncClient", "__version__"]
