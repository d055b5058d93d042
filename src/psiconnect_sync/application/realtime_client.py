"""
Realtime Sync Client - Composition root
=======================================
Assembles the sync subsystem from settings and wires the components:

    SessionStore ──identity──► AuthHandshake ──► TransportChannel
         ▲                                           │
    RequestLayer ◄──invalidate── EventDispatcher ◄───┘

The channel exists only while an identity is known: it is connected when
the identity appears and closed cleanly when it goes away.
"""

from typing import Any, Dict, Optional

from ..core.event_bus import EventBus
from ..core.logger import StructuredLogger, get_logger
from ..domain.interfaces.navigation import Navigator
from ..domain.interfaces.notifications import NotificationSink
from ..domain.interfaces.storage import KeyValueStore
from ..domain.models.connection import ConnectionStatus
from ..domain.models.session import Identity, SessionState
from ..infrastructure.config.settings import AppSettings
from ..infrastructure.http.request_layer import RequestLayer
from ..infrastructure.storage.marker_store import (
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
    SessionMarkers
)
from ..infrastructure.transport.channel import Connector, TransportChannel
from ..infrastructure.transport.handshake import AuthHandshake
from .event_dispatcher import EventDispatcher
from .session_store import SessionStore
from .signals import EventBusNavigator, EventBusNotificationSink


class RealtimeSyncClient:
    """
    Client-side realtime session synchronization.

    Constructor injection only; every collaborator has a default built from
    ``settings`` so tests can replace just the edges (marker store, navigator,
    websocket connector, HTTP session).
    """

    def __init__(self,
                 settings: Optional[AppSettings] = None,
                 event_bus: Optional[EventBus] = None,
                 logger: Optional[StructuredLogger] = None,
                 store: Optional[KeyValueStore] = None,
                 navigator: Optional[Navigator] = None,
                 notifications: Optional[NotificationSink] = None,
                 connector: Optional[Connector] = None,
                 http_session: Any = None):
        self.settings = settings or AppSettings()
        self._owns_event_bus = event_bus is None
        self.event_bus = event_bus or EventBus()
        self.logger = logger or get_logger(__name__)

        session_settings = self.settings.session
        self.request_layer = RequestLayer(
            session_settings.base_url,
            settings=self.settings.request,
            event_bus=self.event_bus,
            session=http_session
        )
        self.markers = SessionMarkers(
            store if store is not None else self._build_store(),
            identity_key=session_settings.identity_marker_key,
            session_key=session_settings.session_marker_key
        )
        self.navigator = navigator or EventBusNavigator(self.event_bus)
        self.notifications = notifications or EventBusNotificationSink(self.event_bus)

        self.session_store = SessionStore(
            self.request_layer,
            self.markers,
            self.navigator,
            settings=session_settings,
            event_bus=self.event_bus
        )
        self.channel = TransportChannel(
            session_settings.base_url,
            settings=self.settings.transport,
            connector=connector,
            headers_provider=self.request_layer.cookie_header,
            on_open=self._on_channel_open,
            on_message=self._on_channel_message,
            on_error=self._on_channel_error,
            on_status_change=self._on_channel_status_change
        )
        self.handshake = AuthHandshake(
            self.channel,
            require_ack=self.settings.transport.require_auth_ack
        )
        self.dispatcher = EventDispatcher(
            self.request_layer,
            self.notifications,
            identity_provider=lambda: self.session_store.identity,
            handshake=self.handshake,
            settings=self.settings.request
        )
        self.session_store.add_listener(self._on_session_change)

        self._started = False

    def _build_store(self) -> KeyValueStore:
        marker_file = self.settings.session.marker_file
        if marker_file:
            return JsonFileKeyValueStore(marker_file)
        return InMemoryKeyValueStore()

    # ===== Lifecycle =====

    async def start(self) -> SessionState:
        """Seed the session, start revalidation, connect if an identity is known."""
        if self._started:
            return self.session_store.state
        self._started = True
        state = await self.session_store.initialize()
        self.logger.info("realtime_client.started", {
            "base_url": self.settings.session.base_url,
            "endpoint": self.settings.transport.endpoint,
            "status": state.status.value
        })
        return state

    async def shutdown(self) -> None:
        """Unmount: cancel every timer and close the channel with code 1000."""
        self._started = False
        await self.session_store.shutdown()
        await self.channel.disconnect()
        await self.request_layer.close()
        if self._owns_event_bus:
            await self.event_bus.shutdown()
        self.logger.info("realtime_client.shutdown_completed")

    async def __aenter__(self) -> "RealtimeSyncClient":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()

    # ===== Operations =====

    async def send(self, message: Any) -> bool:
        return await self.channel.send(message)

    async def reconnect(self) -> None:
        if not self._started:
            self.logger.warning("realtime_client.reconnect_skipped", {"reason": "not_started"})
            return
        if self.session_store.identity is None:
            self.logger.warning("realtime_client.reconnect_skipped", {"reason": "no_identity"})
            return
        await self.channel.reconnect()

    async def on_visibility_change(self, visible: bool) -> None:
        self.session_store.set_visible(visible)
        if self._started and self.session_store.identity is not None:
            await self.channel.handle_visibility_change(visible)

    async def on_focus(self) -> SessionState:
        return await self.session_store.on_focus()

    async def on_network_online(self) -> SessionState:
        return await self.session_store.on_network_reconnect()

    async def login(self, username: str, password: str) -> Identity:
        return await self.session_store.login(username, password)

    async def register(self, user_data: Dict[str, Any]) -> Identity:
        return await self.session_store.register(user_data)

    async def logout(self) -> None:
        await self.session_store.logout()

    def can_render_protected(self) -> bool:
        return self.session_store.can_render_protected()

    async def get_stats(self) -> Dict[str, Any]:
        return {
            "session": self.session_store.get_stats(),
            "channel": self.channel.get_stats(),
            "handshake": self.handshake.get_stats(),
            "dispatcher": self.dispatcher.get_stats(),
            "event_bus": await self.event_bus.health_check(),
        }

    # ===== Wiring =====

    async def _on_session_change(self, previous: SessionState, current: SessionState) -> None:
        await self.handshake.set_identity(current.identity)

        if current.identity is None:
            self.dispatcher.reset()
            if self.channel.endpoint is not None or self.channel.status != ConnectionStatus.CLOSED:
                await self.channel.disconnect()
            return

        if not self._started:
            return
        if previous.identity is None:
            await self.channel.connect(self.settings.transport.endpoint)
        elif previous.identity != current.identity:
            self.dispatcher.reset()

    async def _on_channel_open(self) -> None:
        await self.handshake.on_channel_open()

    async def _on_channel_message(self, data: Any) -> None:
        await self.dispatcher.handle(data)

    async def _on_channel_error(self, error: Exception) -> None:
        await self.event_bus.publish("connection.error", {
            "error": str(error),
            "error_type": type(error).__name__
        })

    async def _on_channel_status_change(self, previous: ConnectionStatus, current: ConnectionStatus) -> None:
        await self.event_bus.publish("connection.status_changed", {
            "previous": previous.value,
            "status": current.value,
            "attempt": self.channel.reconnect_attempts
        })
