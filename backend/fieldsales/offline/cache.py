"""
Offline cache layer for the client's HTTP traffic.

``OfflineCacheTransport`` sits between an ``httpx.AsyncClient`` and the real
transport and applies the same strategies as the web app's service worker:

- GET ``/api/*``: network first; on network failure serve the last cached
  200 response, else a 503 JSON error.
- other same-origin GETs: cache first; on a miss fetch and cache; on network
  failure fall back to the cached ``/``, else a 503 text response.
- non-GET and cross-origin requests pass straight through.

Only 200 responses are cached. ``install()`` precaches the shell routes and
``activate()`` deletes caches left over from older versions. An API response
replayed from the cache after a network failure carries
``X-Served-From-Cache: true``.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import httpx

logger = logging.getLogger(__name__)

OFFLINE_MESSAGE = "No connection"

SERVED_FROM_CACHE_HEADER = "X-Served-From-Cache"

# The body is stored decoded, so these no longer describe it
HOP_HEADERS = {"content-encoding", "content-length", "transfer-encoding"}


@dataclass
class CachedResponse:
    status_code: int
    headers: List[Tuple[str, str]]
    content: bytes

    def to_response(self, request: httpx.Request, stale: bool = False) -> httpx.Response:
        headers = list(self.headers)
        if stale:
            headers.append((SERVED_FROM_CACHE_HEADER, "true"))
        return httpx.Response(
            self.status_code,
            headers=headers,
            content=self.content,
            request=request,
        )


class CacheStorage:
    """Named caches of GET responses keyed by absolute URL."""

    def __init__(self):
        self._caches: Dict[str, Dict[str, CachedResponse]] = {}

    def open(self, name: str) -> Dict[str, CachedResponse]:
        return self._caches.setdefault(name, {})

    def keys(self) -> List[str]:
        return list(self._caches)

    def delete(self, name: str) -> bool:
        return self._caches.pop(name, None) is not None

    def match(self, url: str) -> Optional[CachedResponse]:
        for cache in self._caches.values():
            if url in cache:
                return cache[url]
        return None


class OfflineCacheTransport(httpx.AsyncBaseTransport):
    def __init__(
        self,
        transport: httpx.AsyncBaseTransport,
        origin: str,
        shell_routes: Optional[List[str]] = None,
        cache_version: str = "v1",
        storage: Optional[CacheStorage] = None,
    ):
        self.transport = transport
        self.origin = httpx.URL(origin)
        self.shell_routes = list(shell_routes or [])
        self.storage = storage or CacheStorage()
        self.static_cache = f"fieldsales-static-{cache_version}"
        self.runtime_cache = f"fieldsales-runtime-{cache_version}"

    @classmethod
    def from_settings(cls, settings, transport: httpx.AsyncBaseTransport, storage: Optional[CacheStorage] = None):
        return cls(
            transport,
            origin=settings.api_base_url,
            shell_routes=settings.shell_routes,
            cache_version=settings.cache_version,
            storage=storage,
        )

    def _same_origin(self, url: httpx.URL) -> bool:
        return (url.scheme, url.host, url.port) == (self.origin.scheme, self.origin.host, self.origin.port)

    async def _fetch(self, request: httpx.Request) -> httpx.Response:
        response = await self.transport.handle_async_request(request)
        await response.aread()
        return response

    def _store(self, cache_name: str, request: httpx.Request, response: httpx.Response) -> None:
        if response.status_code != 200:
            return
        self.storage.open(cache_name)[str(request.url)] = CachedResponse(
            status_code=response.status_code,
            headers=[
                (k, v) for k, v in response.headers.multi_items()
                if k.lower() not in HOP_HEADERS
            ],
            content=response.content,
        )

    async def install(self) -> int:
        """Precache the shell routes. Missing routes are skipped, not fatal."""
        cached = 0
        for route in self.shell_routes:
            request = httpx.Request("GET", self.origin.join(route))
            try:
                response = await self._fetch(request)
            except httpx.TransportError as e:
                logger.warning(f"Could not precache {route}: {e}")
                continue
            if response.status_code == 200:
                self._store(self.static_cache, request, response)
                cached += 1
            else:
                logger.warning(f"Could not precache {route}: HTTP {response.status_code}")
        logger.info(f"Precached {cached}/{len(self.shell_routes)} shell routes")
        return cached

    def activate(self) -> List[str]:
        """Delete every cache that does not belong to the current version."""
        current = {self.static_cache, self.runtime_cache}
        removed = [name for name in self.storage.keys() if name not in current]
        for name in removed:
            self.storage.delete(name)
            logger.info(f"Removed old cache {name}")
        return removed

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        if request.method != "GET" or not self._same_origin(request.url):
            return await self.transport.handle_async_request(request)

        if request.url.path.startswith("/api/"):
            return await self._network_first(request)
        return await self._cache_first(request)

    async def _network_first(self, request: httpx.Request) -> httpx.Response:
        try:
            response = await self._fetch(request)
        except httpx.TransportError:
            logger.info(f"Network failed, trying cache: {request.url}")
            cached = self.storage.match(str(request.url))
            if cached is not None:
                return cached.to_response(request, stale=True)
            return httpx.Response(503, json={"error": OFFLINE_MESSAGE}, request=request)

        self._store(self.runtime_cache, request, response)
        return response

    async def _cache_first(self, request: httpx.Request) -> httpx.Response:
        cached = self.storage.match(str(request.url))
        if cached is not None:
            return cached.to_response(request)

        try:
            response = await self._fetch(request)
        except httpx.TransportError as e:
            logger.info(f"Network failed for {request.url}: {e}")
            shell = self.storage.match(str(self.origin.join("/")))
            if shell is not None:
                return shell.to_response(request)
            return httpx.Response(
                503,
                text=OFFLINE_MESSAGE,
                request=request,
            )

        self._store(self.runtime_cache, request, response)
        return response

    async def aclose(self) -> None:
        await self.transport.aclose()
