"""
Core Exceptions - PsiConnect Sync
=================================
Centralized exception definitions for the realtime session-synchronization client.

Only request/response failures reach callers. Transport failures are recovered
inside the channel and surfaced through callbacks, never raised.
"""

from typing import Optional


class RealtimeSyncError(Exception):
    """Base exception for the synchronization client."""
    pass


class RequestError(RealtimeSyncError):
    """
    Raised when the server answers a request with a non-2xx status.

    The message keeps the ``"<status>: <body>"`` shape so callers matching on
    the status prefix keep working.
    """
    def __init__(self, status: int, detail: str = "", method: str = "", path: str = ""):
        self.status = status
        self.detail = detail
        self.method = method
        self.path = path
        self.message = f"{status}: {detail}" if detail else str(status)
        super().__init__(self.message)


class AuthenticationError(RequestError):
    """
    Raised on a 401 response.

    This is the only error class allowed to force the session into
    ``UNAUTHENTICATED``.
    """
    def __init__(self, detail: str = "Unauthorized", method: str = "", path: str = ""):
        super().__init__(401, detail, method=method, path=path)


class TransientNetworkError(RealtimeSyncError):
    """
    Raised for network-level failures: timeouts, DNS errors, refused connections.

    Never escalated to an authentication failure.
    """
    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        self.message = message
        super().__init__(message)


class MalformedEventError(RealtimeSyncError):
    """Raised while decoding an inbound push event that cannot be interpreted."""
    def __init__(self, reason: str, raw: object = None):
        self.reason = reason
        self.raw = raw
        self.message = f"Malformed event: {reason}"
        super().__init__(self.message)


class InvalidTransitionError(RealtimeSyncError):
    """Raised by the connection state machine for a transition it does not allow."""
    def __init__(self, status: object, event: object):
        self.status = status
        self.event = event
        self.message = f"Invalid transition from {status} on {event}"
        super().__init__(self.message)
