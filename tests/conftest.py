"""
Shared fixtures for psiconnect_sync tests
=========================================
Fakes for the websocket connector and the structured logger, plus a small
polling helper for asserting on background tasks.
"""

import asyncio
from unittest.mock import MagicMock

import pytest
from websockets.exceptions import ConnectionClosedError

from psiconnect_sync.core.logger import StructuredLogger

_CLOSE = object()


class FakeWebSocket:
    """In-memory stand-in for a websockets ClientConnection."""

    def __init__(self, url, headers=None):
        self.url = url
        self.headers = headers or {}
        self.sent = []
        self.closed = False
        self.close_code = None
        self.close_reason = ""
        self._incoming = asyncio.Queue()

    async def send(self, data):
        if self.closed:
            raise ConnectionClosedError(None, None)
        self.sent.append(data)

    def push(self, message):
        """Server → client frame."""
        self._incoming.put_nowait(message)

    def drop(self, code=1006, reason=""):
        """Server side or network drop."""
        if self.closed:
            return
        self.closed = True
        self.close_code = code
        self.close_reason = reason
        self._incoming.put_nowait(_CLOSE)

    async def close(self, code=1000, reason=""):
        self.drop(code, reason)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._incoming.get()
        if item is _CLOSE:
            raise StopAsyncIteration
        return item


class FakeConnector:
    """Callable replacing ``websockets.connect``; records every attempt."""

    def __init__(self):
        self.sockets = []
        self.calls = []
        self.call_times = []
        self.fail = False

    async def __call__(self, url, **kwargs):
        self.calls.append((url, kwargs))
        self.call_times.append(asyncio.get_running_loop().time())
        if self.fail:
            raise OSError("connection refused")
        websocket = FakeWebSocket(url, kwargs.get("additional_headers"))
        self.sockets.append(websocket)
        return websocket

    @property
    def live(self):
        return [ws for ws in self.sockets if not ws.closed]

    @property
    def last(self):
        return self.sockets[-1]


async def wait_until(predicate, timeout=1.0, interval=0.001):
    """Poll ``predicate`` until it is truthy or fail after ``timeout`` seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)


@pytest.fixture
def logger():
    """Mock StructuredLogger for capturing log calls"""
    mock_logger = MagicMock(spec=StructuredLogger)
    mock_logger.info = MagicMock()
    mock_logger.warning = MagicMock()
    mock_logger.error = MagicMock()
    mock_logger.debug = MagicMock()
    return mock_logger


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture(name="wait_until")
def wait_until_fixture():
    return wait_until
