"""Offline-first client for field devices.

Queues check-in/check-out, company and sale mutations while the device has
no connectivity and replays them, in order, once it comes back online.
"""

from fieldsales.offline.bus import EventBus
from fieldsales.offline.client import OfflineClient
from fieldsales.offline.config import ClientSettings
from fieldsales.offline.connectivity import ConnectivityMonitor, HealthProbe
from fieldsales.offline.controller import ActionOutcome, ActiveVisit, CheckinController
from fieldsales.offline.events import EventType, PendingEvent
from fieldsales.offline.store import InMemoryPendingEventStore, PendingEventStore, SqlitePendingEventStore
from fieldsales.offline.sync_engine import SyncEngine, SyncResult

__all__ = [
    "ActionOutcome",
    "ActiveVisit",
    "CheckinController",
    "ClientSettings",
    "ConnectivityMonitor",
    "EventBus",
    "EventType",
    "HealthProbe",
    "InMemoryPendingEventStore",
    "OfflineClient",
    "PendingEvent",
    "PendingEventStore",
    "SqlitePendingEventStore",
    "SyncEngine",
    "SyncResult",
]
