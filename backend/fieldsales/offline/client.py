"""Assembles the offline client from ClientSettings.

One ``OfflineClient`` per signed-in agent. ``start()`` prepares the cache,
begins health probing and wires reconnection to the sync engine; ``aclose()``
undoes all of it.
"""

import logging
from typing import Callable, List, Optional

import httpx

from fieldsales.offline.api_client import FieldSalesApiClient
from fieldsales.offline.bus import EventBus
from fieldsales.offline.cache import CacheStorage, OfflineCacheTransport
from fieldsales.offline.config import ClientSettings
from fieldsales.offline.connectivity import ConnectivityMonitor, HealthProbe
from fieldsales.offline.controller import CheckinController
from fieldsales.offline.geolocation import GeolocationProvider, JustificationPrompt
from fieldsales.offline.store import PendingEventStore, SqlitePendingEventStore
from fieldsales.offline.sync_engine import SyncEngine

logger = logging.getLogger(__name__)


class OfflineClient:
    def __init__(
        self,
        settings: ClientSettings,
        token: str,
        prompt: JustificationPrompt,
        geolocation: Optional[GeolocationProvider] = None,
        store: Optional[PendingEventStore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        online: bool = True,
    ):
        self.settings = settings
        upstream = transport or httpx.AsyncHTTPTransport()
        self.cache = OfflineCacheTransport.from_settings(settings, upstream, storage=CacheStorage())
        self.store = store or SqlitePendingEventStore(settings.queue_db_path)
        self.api = FieldSalesApiClient.from_settings(settings, token=token, transport=self.cache)
        self.bus = EventBus()
        self.monitor = ConnectivityMonitor(online=online)
        # The probe bypasses the cache so a cached /health never reads as online
        self._probe_http = httpx.AsyncClient(
            base_url=settings.api_base_url,
            timeout=settings.request_timeout_seconds,
            transport=upstream,
        )
        self.probe = HealthProbe(
            self.monitor,
            self._probe_http,
            interval_seconds=settings.connectivity_probe_interval_seconds,
        )
        self.sync_engine = SyncEngine.from_settings(settings, self.store, self.api, bus=self.bus)
        self.controller = CheckinController(
            self.store,
            self.api,
            self.monitor,
            prompt,
            geolocation=geolocation,
            bus=self.bus,
            sync_engine=self.sync_engine,
            geolocation_timeout_seconds=settings.geolocation_timeout_seconds,
            geolocation_high_accuracy=settings.geolocation_high_accuracy,
            active_visit_refresh_seconds=settings.active_visit_refresh_seconds,
        )
        self._unsubscribe: List[Callable[[], None]] = []

    async def start(self) -> None:
        if self.monitor.is_online():
            await self.cache.install()
        self.cache.activate()
        self._unsubscribe.append(self.sync_engine.attach(self.monitor))
        self.probe.start()
        self.controller.start()
        if self.monitor.is_online():
            await self.sync_engine.sync_pending_events()
        logger.info(f"Offline client started against {self.settings.api_base_url}")

    async def aclose(self) -> None:
        await self.controller.stop()
        await self.probe.stop()
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe = []
        self.controller.close()
        await self.monitor.wait_idle()
        await self._probe_http.aclose()
        await self.api.aclose()
        if isinstance(self.store, SqlitePendingEventStore):
            self.store.close()
