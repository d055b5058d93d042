"""
Request Layer - Request/response path to the API server
=======================================================
Every non-push operation goes through here: session endpoints, queries,
mutations. Cookies persist across requests in the session's cookie jar,
which is what keeps the server-side session alive.

Error mapping:
- 401                     → AuthenticationError
- other non-2xx           → RequestError("<status>: <body>")
- timeout / DNS / refused → TransientNetworkError
"""

import asyncio
import json
from typing import Any, Dict, Literal, Optional

import aiohttp
from yarl import URL

from ...core.event_bus import EventBus
from ...core.exceptions import AuthenticationError, RequestError, TransientNetworkError
from ...core.logger import StructuredLogger, get_logger
from ..config.settings import RequestSettings
from .query_cache import QueryCache

UnauthorizedBehavior = Literal["throw", "return_none"]

DEFAULT_HEADERS = {
    "Accept": "application/json",
    "X-Requested-With": "XMLHttpRequest",
    "Cache-Control": "no-cache, no-store, max-age=0",
    "Pragma": "no-cache",
}


class RequestLayer:
    """
    HTTP client plus the query cache it owns.

    Features:
    - Shared aiohttp session with cookie jar (created lazily)
    - Uniform error mapping (see module docstring)
    - Cached queries with one automatic retry for non-401 failures
    """

    def __init__(self,
                 base_url: str,
                 settings: Optional[RequestSettings] = None,
                 event_bus: Optional[EventBus] = None,
                 logger: Optional[StructuredLogger] = None,
                 session: Optional[aiohttp.ClientSession] = None):
        self.base_url = base_url.rstrip("/")
        self.settings = settings or RequestSettings()
        self.logger = logger or get_logger(__name__)
        self.cache = QueryCache(
            stale_time=self.settings.stale_time_seconds,
            event_bus=event_bus,
            logger=self.logger
        )
        self._session = session
        self._owns_session = session is None

    def _url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        if not path.startswith("/"):
            path = "/" + path
        return f"{self.base_url}{path}"

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                cookie_jar=aiohttp.CookieJar(unsafe=True),
                timeout=aiohttp.ClientTimeout(total=self.settings.timeout_seconds),
                headers=DEFAULT_HEADERS,
            )
            self._owns_session = True
        return self._session

    def cookie_header(self) -> Dict[str, str]:
        """Session cookies as a ``Cookie`` header, for the push channel handshake."""
        if self._session is None or self._session.closed:
            return {}
        cookies = self._session.cookie_jar.filter_cookies(URL(self.base_url))
        if not cookies:
            return {}
        return {"Cookie": "; ".join(f"{name}={morsel.value}" for name, morsel in cookies.items())}

    async def request(self, method: str, path: str, data: Optional[Dict[str, Any]] = None) -> Any:
        """
        Perform one request and return the decoded JSON body (None when empty).

        Raises:
            AuthenticationError: On 401
            RequestError: On any other non-2xx status
            TransientNetworkError: On network-level failure or timeout
        """
        method = method.upper()
        url = self._url(path)
        session = self._get_session()

        self.logger.debug("request_layer.request", {"method": method, "path": path})

        try:
            async with session.request(method, url, json=data) as response:
                text = await response.text(errors="replace")
                status = response.status
        except asyncio.TimeoutError as e:
            self.logger.warning("request_layer.timeout", {"method": method, "path": path})
            raise TransientNetworkError(f"{method} {path} timed out", cause=e) from e
        except aiohttp.ClientError as e:
            self.logger.warning("request_layer.network_error", {
                "method": method,
                "path": path,
                "error": str(e),
                "error_type": type(e).__name__
            })
            raise TransientNetworkError(f"{method} {path} failed: {e}", cause=e) from e

        self.logger.debug("request_layer.response", {"method": method, "path": path, "status": status})

        if status == 401:
            raise AuthenticationError(text or "Unauthorized", method=method, path=path)
        if status < 200 or status >= 300:
            raise RequestError(status, text or "", method=method, path=path)

        if not text:
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return text

    async def get_json(self, path: str, on_401: UnauthorizedBehavior = "throw") -> Any:
        """GET ``path``; with ``on_401="return_none"`` a 401 yields None instead of raising."""
        try:
            return await self.request("GET", path)
        except AuthenticationError:
            if on_401 == "return_none":
                self.logger.debug("request_layer.unauthenticated_null", {"path": path})
                return None
            raise

    async def _get_with_retry(self, path: str, on_401: UnauthorizedBehavior) -> Any:
        attempt = 0
        while True:
            try:
                return await self.get_json(path, on_401=on_401)
            except AuthenticationError:
                raise
            except (RequestError, TransientNetworkError) as e:
                attempt += 1
                if attempt > self.settings.query_retries:
                    raise
                self.logger.debug("request_layer.query_retry", {
                    "path": path,
                    "attempt": attempt,
                    "error": str(e)
                })

    async def query(self,
                    key: str,
                    path: Optional[str] = None,
                    on_401: UnauthorizedBehavior = "throw",
                    force: bool = False) -> Any:
        """
        Cached GET: fresh data is served from the cache, stale data is refetched.

        The key becomes an active query, so invalidating it refetches it.
        ``path`` defaults to ``key``.
        """
        resource = path or key

        async def fetcher():
            return await self._get_with_retry(resource, on_401)

        self.cache.register(key, fetcher)
        return await self.cache.fetch(key, fetcher, force=force)

    async def invalidate(self, key: str) -> bool:
        return await self.cache.invalidate(key)

    async def close(self) -> None:
        await self.cache.close()
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
