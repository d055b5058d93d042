from .channel import TransportChannel, resolve_endpoint_url
from .handshake import AuthHandshake

__all__ = ["AuthHandshake", "TransportChannel", "resolve_endpoint_url"]
