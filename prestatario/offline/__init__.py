# =============================================================================
# prestatario/offline/__init__.py
# Offline-First Layer for Prestatario
# =============================================================================
"""
Offline-First Layer

Reads go to Supabase first and fall back to the local SQLite copy; writes
made while offline are queued and replayed in order once the backend is
reachable again.

Architecture:
------------
                 OfflineRuntime (offline/runtime.py)
                          │
      ┌──────────────┬────┴─────────┬──────────────┐
      ▼              ▼              ▼              ▼
 CachedReader    SyncEngine   ConnectionMonitor  NetworkCache
      │              │              ▲
      └──────┬───────┘              │ mark_online / mark_offline
             ▼                      │
        LocalStore            RemoteStore (Supabase)

Usage:
------
from prestatario.offline.runtime import OfflineRuntime

with OfflineRuntime.from_settings(settings) as runtime:
    result = runtime.load_loans(user_id)
    print(result.source)          # remote / cache / empty
    print(runtime.pending_count)  # queued writes
"""

from prestatario.offline.connection_manager import (
    ConnectionMonitor,
    ConnectionState,
    ConnectionStatus,
    Subscription,
    check_host,
)

from prestatario.offline.local_store import (
    LocalStore,
    COLLECTIONS,
)

from prestatario.offline.cached_reader import (
    CachedReader,
    ReadResult,
)

from prestatario.offline.sync_engine import (
    SyncEngine,
    SubmitResult,
    DrainReport,
)

from prestatario.offline.network_cache import (
    NetworkCache,
    CacheStorage,
    CachedResponse,
)

__all__ = [
    # Connection
    "ConnectionMonitor",
    "ConnectionState",
    "ConnectionStatus",
    "Subscription",
    "check_host",
    # Local store
    "LocalStore",
    "COLLECTIONS",
    # Reads
    "CachedReader",
    "ReadResult",
    # Queue
    "SyncEngine",
    "SubmitResult",
    "DrainReport",
    # Network cache
    "NetworkCache",
    "CacheStorage",
    "CachedResponse",
]
