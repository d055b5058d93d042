"""
Session Store - Authenticated identity and its revalidation policy
==================================================================
Mediates between the server-verified session (cookie-backed, checked via
the "who am I" endpoint) and the locally persisted fallback markers.

Policy:
- Seed optimistically from the last known identity marker, then revalidate
- Only a 401 forces Unauthenticated; network and server errors keep the state
- Login/register set Authenticated immediately and persist the markers
- Logout clears markers first, then calls the server, then navigates away
"""

import asyncio
import inspect
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import quote

from ..core.event_bus import EventBus
from ..core.exceptions import (
    AuthenticationError,
    RealtimeSyncError,
    RequestError,
    TransientNetworkError,
)
from ..core.logger import StructuredLogger, get_logger
from ..domain.interfaces.navigation import Navigator
from ..domain.models.session import Identity, SessionState
from ..infrastructure.config.settings import SessionSettings
from ..infrastructure.http.request_layer import RequestLayer
from ..infrastructure.storage.marker_store import SessionMarkers

StateListener = Callable[[SessionState, SessionState], Any]


class SessionStore:
    """
    Session state machine with permissive revalidation.

    Features:
    - Revalidation on a visible-only timer, on focus, on network reconnect
      and on demand; concurrent triggers share one request
    - Bounded retries per revalidation cycle for transient failures
    - Listeners notified with ``(previous, current)`` on every change
    - Route guard that also honours the local session markers
    """

    def __init__(self,
                 request_layer: RequestLayer,
                 markers: SessionMarkers,
                 navigator: Navigator,
                 settings: Optional[SessionSettings] = None,
                 event_bus: Optional[EventBus] = None,
                 logger: Optional[StructuredLogger] = None):
        self.request_layer = request_layer
        self.markers = markers
        self.navigator = navigator
        self.settings = settings or SessionSettings()
        self.event_bus = event_bus
        self.logger = logger or get_logger(__name__)

        self._state = SessionState.unknown()
        self._listeners: List[StateListener] = []
        self._revalidation_task: Optional[asyncio.Task] = None
        self._periodic_task: Optional[asyncio.Task] = None
        self._visible = True

        self._revalidations = 0
        self._revalidation_failures = 0
        self._forced_logouts = 0

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def identity(self) -> Optional[Identity]:
        return self._state.identity

    @property
    def is_visible(self) -> bool:
        return self._visible

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: StateListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # ===== Lifecycle =====

    async def initialize(self, start_periodic: bool = True) -> SessionState:
        """
        Seed from the identity marker and kick off the first revalidation.

        Returns the seeded state; the revalidation result arrives through
        the listeners (or ``await revalidate()`` to wait for it).
        """
        identity = self.markers.load_identity()
        if identity is not None:
            self.request_layer.cache.set_data(self.settings.me_path, identity.to_dict())
            await self._set_state(SessionState.authenticated(identity), reason="seeded_from_marker")

        self._ensure_revalidation("initial")
        if start_periodic:
            self.start_periodic_revalidation()
        return self._state

    def start_periodic_revalidation(self) -> None:
        if self._periodic_task is None or self._periodic_task.done():
            self._periodic_task = asyncio.create_task(
                self._periodic_revalidation(), name="session_store_revalidation"
            )

    async def shutdown(self) -> None:
        """Cancel the revalidation timer and any in-flight revalidation."""
        tasks = [t for t in (self._periodic_task, self._revalidation_task) if t is not None and not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._periodic_task = None
        self._revalidation_task = None

    # ===== Revalidation =====

    async def revalidate(self, reason: str = "on_demand") -> SessionState:
        """Check the session with the server; returns the resulting state."""
        task = self._ensure_revalidation(reason)
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if not task.cancelled():
                raise
            # Superseded by login or logout
            return self._state

    async def on_focus(self) -> SessionState:
        return await self.revalidate(reason="focus")

    async def on_network_reconnect(self) -> SessionState:
        return await self.revalidate(reason="network_online")

    def set_visible(self, visible: bool) -> None:
        """Page visibility; the periodic timer only revalidates while visible."""
        self._visible = visible

    def _ensure_revalidation(self, reason: str) -> asyncio.Task:
        task = self._revalidation_task
        if task is None or task.done():
            task = asyncio.create_task(self._run_revalidation(reason), name=f"session_revalidate:{reason}")
            self._revalidation_task = task
        else:
            self.logger.debug("session_store.revalidation_coalesced", {"reason": reason})
        return task

    async def _run_revalidation(self, reason: str) -> SessionState:
        self._revalidations += 1
        attempts = self.settings.revalidation_retries + 1

        for attempt in range(1, attempts + 1):
            try:
                payload = await self.request_layer.get_json(self.settings.me_path)
            except AuthenticationError:
                await self._handle_unauthorized(reason)
                return self._state
            except (TransientNetworkError, RequestError) as e:
                self._revalidation_failures += 1
                self.logger.warning("session_store.revalidation_failed", {
                    "reason": reason,
                    "attempt": attempt,
                    "max_attempts": attempts,
                    "error": str(e),
                    "error_type": type(e).__name__
                })
                if attempt < attempts:
                    await asyncio.sleep(self.settings.revalidation_retry_delay_seconds)
                    continue
                self.logger.info("session_store.state_retained", {
                    "reason": reason,
                    "status": self._state.status.value
                })
                return self._state

            identity = self._identity_from_response(payload)
            if identity is None:
                self.logger.warning("session_store.unexpected_me_payload", {
                    "reason": reason,
                    "payload_type": type(payload).__name__
                })
                return self._state

            await self._apply_identity(identity, reason=f"revalidated:{reason}")
            return self._state

        return self._state

    async def _periodic_revalidation(self) -> None:
        interval = self.settings.revalidation_interval_seconds
        while True:
            await asyncio.sleep(interval)
            if not self._visible:
                continue
            try:
                await self.revalidate(reason="periodic")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.error("session_store.periodic_revalidation_error", {
                    "error": str(e),
                    "error_type": type(e).__name__
                }, exc_info=True)

    async def _handle_unauthorized(self, reason: str) -> None:
        was_authenticated = self._state.is_authenticated
        self._forced_logouts += 1
        self.markers.clear()
        self.request_layer.cache.set_data(self.settings.me_path, None)
        await self._set_state(SessionState.unauthenticated(), reason=f"unauthorized:{reason}")

        if not was_authenticated:
            return
        current = self.navigator.current_path
        if current.startswith(self.settings.login_entry_path):
            return
        target = f"{self.settings.login_entry_path}?returnTo={quote(current, safe='/')}"
        await self.navigator.hard_navigate(target, reason="session_expired")

    # ===== Explicit transitions =====

    async def login(self, username: str, password: str) -> Identity:
        """
        Authenticate with credentials.

        Raises:
            AuthenticationError: Bad credentials
            RequestError: Any other rejection
            TransientNetworkError: Server unreachable
        """
        payload = await self.request_layer.request(
            "POST", self.settings.login_path, {"username": username, "password": password}
        )
        return await self._complete_authentication(payload, reason="login")

    async def register(self, user_data: Dict[str, Any]) -> Identity:
        """Create an account; the server signs the new user in on success."""
        payload = await self.request_layer.request("POST", self.settings.register_path, user_data)
        return await self._complete_authentication(payload, reason="register")

    async def logout(self) -> None:
        """
        End the session. Local state is cleared before the server is asked,
        and navigation happens whatever the server answers.
        """
        await self._cancel_revalidation()
        self.markers.clear()
        self.request_layer.cache.clear()
        self.request_layer.cache.set_data(self.settings.me_path, None)
        await self._set_state(SessionState.unauthenticated(), reason="logout")

        try:
            await self.request_layer.request(self.settings.logout_method, self.settings.logout_path)
        except RealtimeSyncError as e:
            self.logger.warning("session_store.server_logout_failed", {
                "error": str(e),
                "error_type": type(e).__name__
            })
        finally:
            await self.navigator.hard_navigate(self.settings.logout_redirect_path, reason="logout")

    def can_render_protected(self) -> bool:
        """Route guard: authenticated, or a local marker still claims a session."""
        return self._state.is_authenticated or self.markers.has_active_session()

    # ===== Helpers =====

    async def _complete_authentication(self, payload: Any, reason: str) -> Identity:
        identity = self._identity_from_response(payload)
        if identity is None:
            raise RealtimeSyncError(f"{reason} response carried no valid user record")
        await self._cancel_revalidation()
        await self._apply_identity(identity, reason=reason)
        return identity

    async def _cancel_revalidation(self) -> None:
        """Drop an in-flight revalidation so it cannot overwrite an explicit transition."""
        task = self._revalidation_task
        self._revalidation_task = None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    def _identity_from_response(self, payload: Any) -> Optional[Identity]:
        if isinstance(payload, dict) and isinstance(payload.get("user"), dict):
            payload = payload["user"]
        if not isinstance(payload, dict):
            return None
        try:
            return Identity.from_payload(payload)
        except ValueError as e:
            self.logger.warning("session_store.identity_invalid", {"error": str(e)})
            return None

    async def _apply_identity(self, identity: Identity, reason: str) -> None:
        self.markers.persist(identity)
        self.request_layer.cache.set_data(self.settings.me_path, identity.to_dict())
        await self._set_state(SessionState.authenticated(identity), reason=reason)

    async def _set_state(self, new_state: SessionState, reason: str) -> None:
        previous = self._state
        if new_state == previous:
            return
        self._state = new_state

        self.logger.info("session_store.state_changed", {
            "previous": previous.status.value,
            "status": new_state.status.value,
            "user_id": new_state.identity.id if new_state.identity else None,
            "reason": reason
        })

        for listener in list(self._listeners):
            try:
                result = listener(previous, new_state)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self.logger.error("session_store.listener_error", {
                    "listener": getattr(listener, "__name__", repr(listener)),
                    "error": str(e)
                }, exc_info=True)

        if self.event_bus is not None:
            await self.event_bus.publish("session.state_changed", {
                "previous": previous.status.value,
                **new_state.to_dict()
            })

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self._state.to_dict(),
            "visible": self._visible,
            "revalidations": self._revalidations,
            "revalidation_failures": self._revalidation_failures,
            "forced_logouts": self._forced_logouts,
            "revalidation_in_flight": self._revalidation_task is not None and not self._revalidation_task.done(),
        }
