"""Offline mutation queue and local cache for intermittently connected clients."""

from safetrust.offline.connectivity import ConnectivityMonitor
from safetrust.offline.models import ActionStatus, ActionType, EntityType
from safetrust.offline.queue import OfflineQueue
from safetrust.offline.remote import RemoteAPI, UnsupportedActionError
from safetrust.offline.store import OfflineStore

__all__ = [
    "ActionStatus",
    "ActionType",
    "ConnectivityMonitor",
    "EntityType",
    "OfflineQueue",
    "OfflineStore",
    "RemoteAPI",
    "UnsupportedActionError",
]
