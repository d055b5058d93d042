"""
Transport Channel - Single auto-reconnecting push connection
============================================================

Owns exactly one underlying WebSocket and presents a stable interface
(``status``, ``send``, ``reconnect``, ``disconnect``) regardless of churn.

Features:
- One live connection per channel: every connect tears down the previous
  handle, the pending reconnect timer and any in-flight open first
- Connection generations: callbacks from a superseded connection are ignored
- Fixed-budget, fixed-delay reconnection after abnormal closes
- Immediate reconnect when the page becomes visible again
- Malformed frames are delivered raw instead of dropped
- Errors go to ``on_error`` and the log, never to the caller
"""

import asyncio
import inspect
import json
from typing import Any, Awaitable, Callable, Dict, Optional
from urllib.parse import urlsplit

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from ...core.logger import StructuredLogger, get_logger
from ...domain.models.connection import (
    ABNORMAL_CLOSURE,
    NORMAL_CLOSURE,
    ConnectionEvent,
    ConnectionStatus,
    ReconnectPolicy,
    should_reconnect_on_visible,
    transition,
)
from ..config.settings import TransportSettings

Connector = Callable[..., Awaitable[Any]]
Callback = Optional[Callable[..., Any]]


def resolve_endpoint_url(endpoint: str, base_url: str) -> str:
    """
    Derive the WebSocket URL for ``endpoint``.

    Absolute ``ws://``/``wss://`` endpoints are used verbatim; paths are
    joined to the page host with ``wss`` for an https page, ``ws`` otherwise.
    """
    if endpoint.startswith(("ws://", "wss://")):
        return endpoint
    page = urlsplit(base_url)
    scheme = "wss" if page.scheme == "https" else "ws"
    path = endpoint if endpoint.startswith("/") else f"/{endpoint}"
    return f"{scheme}://{page.netloc}{path}"


class TransportChannel:
    """
    Auto-reconnecting WebSocket channel.

    Callbacks may be plain functions or coroutines:
    - on_open()
    - on_message(data)           decoded JSON, or the raw text when undecodable
    - on_close(code, reason)
    - on_error(exception)
    - on_status_change(previous, current)

    Args:
        base_url: Origin of the page; decides ws vs wss for path endpoints
        settings: Transport configuration
        logger: Structured logger
        connector: ``websockets.connect``-compatible factory (injectable for tests)
        headers_provider: Returns extra handshake headers (e.g. the session cookie)
    """

    def __init__(self,
                 base_url: str,
                 settings: Optional[TransportSettings] = None,
                 logger: Optional[StructuredLogger] = None,
                 connector: Optional[Connector] = None,
                 headers_provider: Optional[Callable[[], Dict[str, str]]] = None,
                 on_open: Callback = None,
                 on_message: Callback = None,
                 on_close: Callback = None,
                 on_error: Callback = None,
                 on_status_change: Callback = None):
        self.base_url = base_url
        self.settings = settings or TransportSettings()
        self.logger = logger or get_logger(__name__)
        self._connector = connector or websockets.connect
        self._headers_provider = headers_provider

        self.on_open = on_open
        self.on_message = on_message
        self.on_close = on_close
        self.on_error = on_error
        self.on_status_change = on_status_change

        self.policy = ReconnectPolicy(
            max_attempts=self.settings.reconnect_attempts,
            delay_seconds=self.settings.reconnect_interval_seconds,
            enabled=self.settings.should_reconnect
        )

        self._status = ConnectionStatus.CLOSED
        self._endpoint: Optional[str] = None
        self._websocket: Any = None
        self._generation = 0
        self._reconnect_attempts = 0
        self._connection_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None

        # Statistics
        self._total_connections = 0
        self._total_reconnects = 0
        self._total_messages = 0
        self._decode_failures = 0
        self._send_failures = 0
        self._errors = 0

    # ===== Public state =====

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def is_connected(self) -> bool:
        return self._status == ConnectionStatus.OPEN

    @property
    def is_connecting(self) -> bool:
        return self._status in (ConnectionStatus.CONNECTING, ConnectionStatus.RECONNECTING)

    @property
    def generation(self) -> int:
        """Identifier of the current connection; bumps on every connect or teardown."""
        return self._generation

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    @property
    def endpoint(self) -> Optional[str]:
        return self._endpoint

    # ===== Public operations =====

    async def connect(self, endpoint: Optional[str]) -> None:
        """
        Open a connection to ``endpoint``, replacing any existing one.

        An absent endpoint means the channel does not apply in the current
        auth state: the channel is torn down and left CLOSED, without error.
        """
        if not endpoint:
            await self._teardown()
            self._endpoint = None
            await self._apply(ConnectionEvent.CLOSED)
            self.logger.info("transport_channel.no_endpoint", {"action": "not_connecting"})
            return

        self._endpoint = endpoint
        await self._open()

    async def reconnect(self) -> None:
        """Manual reconnect with a fresh retry budget."""
        if not self._endpoint:
            self.logger.warning("transport_channel.reconnect_without_endpoint")
            return
        self._reconnect_attempts = 0
        await self._open()

    async def disconnect(self) -> None:
        """
        Intentional close: cancel timers, close with code 1000, stay CLOSED.

        The reconnection algorithm never runs after this.
        """
        had_socket = self._websocket is not None
        if self._status in (ConnectionStatus.CONNECTING, ConnectionStatus.OPEN):
            await self._apply(ConnectionEvent.CLOSE_REQUESTED)

        await self._teardown()
        await self._apply(ConnectionEvent.CLOSED)

        self.logger.info("transport_channel.disconnected", {
            "endpoint": self._endpoint,
            "had_socket": had_socket
        })
        if had_socket:
            await self._invoke(self.on_close, NORMAL_CLOSURE, "client disconnect")

    async def send(self, message: Any) -> bool:
        """
        Transmit ``message`` if the channel is OPEN.

        Strings are sent verbatim, anything else as JSON. Nothing is queued:
        a closed channel drops the message and returns False.
        """
        if self._status != ConnectionStatus.OPEN or self._websocket is None:
            self._send_failures += 1
            self.logger.warning("transport_channel.send_dropped", {
                "status": self._status.value,
                "reason": "connection_not_open"
            })
            return False

        try:
            payload = message if isinstance(message, str) else json.dumps(message)
        except (TypeError, ValueError) as e:
            self._send_failures += 1
            self.logger.error("transport_channel.serialize_failed", {
                "error": str(e),
                "message_type": type(message).__name__
            })
            return False

        try:
            await self._websocket.send(payload)
        except (WebSocketException, OSError) as e:
            self._send_failures += 1
            self.logger.warning("transport_channel.send_failed", {
                "error": str(e),
                "error_type": type(e).__name__
            })
            return False
        return True

    async def handle_visibility_change(self, visible: bool) -> None:
        """
        Page visibility callback. Becoming visible while not OPEN reconnects
        immediately, whatever is left of the retry budget.
        """
        if not self._endpoint or not should_reconnect_on_visible(self._status, visible):
            return

        self.logger.info("transport_channel.visible_reconnect", {
            "status": self._status.value,
            "attempts_used": self._reconnect_attempts
        })
        self._reconnect_attempts = 0
        await self._open()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "status": self._status.value,
            "endpoint": self._endpoint,
            "generation": self._generation,
            "reconnect_attempts": self._reconnect_attempts,
            "max_reconnect_attempts": self.policy.max_attempts,
            "reconnect_pending": self._reconnect_task is not None and not self._reconnect_task.done(),
            "total_connections": self._total_connections,
            "total_reconnects": self._total_reconnects,
            "total_messages": self._total_messages,
            "decode_failures": self._decode_failures,
            "send_failures": self._send_failures,
            "errors": self._errors,
        }

    # ===== Connection lifecycle =====

    async def _open(self) -> None:
        """Tear down whatever exists, then start a fresh connection attempt."""
        await self._teardown()

        self._generation += 1
        generation = self._generation
        url = resolve_endpoint_url(self._endpoint, self.base_url)

        await self._apply(ConnectionEvent.CONNECT_REQUESTED)
        self.logger.info("transport_channel.connecting", {
            "url": url,
            "generation": generation,
            "attempt": self._reconnect_attempts
        })
        self._connection_task = asyncio.create_task(
            self._run_connection(generation, url),
            name=f"transport_channel:{generation}"
        )

    async def _teardown(self) -> None:
        """
        Invalidate the current generation, cancel timers and in-flight work,
        and close the live socket with a clean close code.
        """
        self._generation += 1
        current = asyncio.current_task()

        cancelled = []
        for task in (self._reconnect_task, self._connection_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
                cancelled.append(task)
        self._reconnect_task = None
        self._connection_task = None

        websocket, self._websocket = self._websocket, None
        if websocket is not None:
            await self._close_quietly(websocket)

        if cancelled:
            await asyncio.gather(*cancelled, return_exceptions=True)

    async def _run_connection(self, generation: int, url: str) -> None:
        try:
            websocket = await self._connector(url, **self._connect_kwargs())
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if generation != self._generation:
                return
            await self._report_error("transport_channel.connect_failed", e, url=url)
            await self._handle_close(generation, ABNORMAL_CLOSURE, str(e))
            return

        if generation != self._generation:
            # Superseded while the handshake was in flight
            await self._close_quietly(websocket)
            return

        self._websocket = websocket
        self._reconnect_attempts = 0
        self._total_connections += 1
        await self._apply(ConnectionEvent.OPENED)
        self.logger.info("transport_channel.opened", {"url": url, "generation": generation})
        await self._invoke(self.on_open)

        reason = ""
        try:
            async for raw in websocket:
                if generation != self._generation:
                    break
                await self._handle_raw(raw)
        except ConnectionClosed as e:
            reason = str(e)
        except asyncio.CancelledError:
            raise
        except (WebSocketException, OSError) as e:
            if generation == self._generation:
                await self._report_error("transport_channel.receive_failed", e, url=url)
            reason = str(e)

        if generation != self._generation:
            return

        close_code = getattr(websocket, "close_code", None)
        if close_code is None:
            close_code = ABNORMAL_CLOSURE
        await self._handle_close(generation, close_code, reason or getattr(websocket, "close_reason", "") or "")

    async def _handle_close(self, generation: int, code: int, reason: str) -> None:
        self._websocket = None
        await self._apply(ConnectionEvent.CLOSED)
        self.logger.info("transport_channel.closed", {
            "code": code,
            "reason": reason,
            "generation": generation
        })

        await self._invoke(self.on_close, code, reason)
        if generation != self._generation:
            # on_close started a new connection or disconnected
            return

        decision = self.policy.decide(code, intentional=False, attempts_made=self._reconnect_attempts)
        if decision.reconnect:
            self._reconnect_attempts = decision.attempt
            await self._apply(ConnectionEvent.RECONNECT_SCHEDULED)
            self.logger.info("transport_channel.reconnect_scheduled", {
                "attempt": decision.attempt,
                "max_attempts": self.policy.max_attempts,
                "delay_seconds": decision.delay_seconds
            })
            self._reconnect_task = asyncio.create_task(
                self._reconnect_after(decision.delay_seconds, decision.attempt),
                name=f"transport_channel_reconnect:{decision.attempt}"
            )
        elif decision.reason == "budget_exhausted":
            self.logger.error("transport_channel.max_reconnect_attempts_reached", {
                "attempts": self._reconnect_attempts,
                "action": "manual_reconnect_required"
            })

    async def _reconnect_after(self, delay: float, attempt: int) -> None:
        await asyncio.sleep(delay)
        if not self._endpoint:
            return
        self._total_reconnects += 1
        self.logger.info("transport_channel.reconnecting", {
            "attempt": attempt,
            "max_attempts": self.policy.max_attempts
        })
        await self._open()

    # ===== Helpers =====

    def _connect_kwargs(self) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {
            "ping_interval": self.settings.ping_interval_seconds,
            "ping_timeout": self.settings.ping_timeout_seconds,
            "close_timeout": self.settings.close_timeout_seconds,
        }
        if self._headers_provider is not None:
            headers = self._headers_provider()
            if headers:
                kwargs["additional_headers"] = headers
        return kwargs

    async def _handle_raw(self, raw: Any) -> None:
        if isinstance(raw, (bytes, bytearray)):
            raw = bytes(raw).decode("utf-8", errors="replace")
        self._total_messages += 1
        try:
            data = json.loads(raw)
        except ValueError as e:
            self._decode_failures += 1
            self.logger.warning("transport_channel.decode_failed", {
                "error": str(e),
                "message_sample": str(raw)[:200]
            })
            data = raw
        await self._invoke(self.on_message, data)

    async def _close_quietly(self, websocket: Any) -> None:
        try:
            await asyncio.wait_for(
                websocket.close(code=NORMAL_CLOSURE, reason="superseded"),
                timeout=self.settings.close_timeout_seconds
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.debug("transport_channel.close_error", {
                "error": str(e),
                "error_type": type(e).__name__
            })

    async def _apply(self, event: ConnectionEvent) -> None:
        previous = self._status
        self._status = transition(previous, event)
        if self._status != previous:
            await self._invoke(self.on_status_change, previous, self._status)

    async def _report_error(self, event_type: str, error: Exception, **context) -> None:
        self._errors += 1
        self.logger.error(event_type, {
            "error": str(error),
            "error_type": type(error).__name__,
            **context
        })
        await self._invoke(self.on_error, error)

    async def _invoke(self, callback: Callback, *args) -> None:
        if callback is None:
            return
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.error("transport_channel.callback_failed", {
                "callback": getattr(callback, "__name__", repr(callback)),
                "error": str(e),
                "error_type": type(e).__name__
            }, exc_info=True)
