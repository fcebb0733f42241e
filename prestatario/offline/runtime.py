# =============================================================================
# prestatario/offline/runtime.py
# Offline Runtime - wires store, monitor, reader, queue and network cache
# =============================================================================
"""
OfflineRuntime owns every piece of the offline layer for one app process.

Usage:
    runtime = OfflineRuntime.from_settings(load_settings())
    with runtime:
        loans = runtime.load_loans(user_id)
        runtime.loans.add_payment(user_id, loan_id, 100)
"""

from __future__ import annotations
from typing import Optional

from prestatario.config import Settings
from prestatario.data.supabase_client import RemoteStore, get_supabase_client
from prestatario.errors import NetworkCacheError
from prestatario.logging import get_logger
from prestatario.offline.cached_reader import CachedReader, ReadResult
from prestatario.offline.connection_manager import ConnectionMonitor, check_host
from prestatario.offline.local_store import LocalStore
from prestatario.offline.network_cache import CacheStorage, NetworkCache
from prestatario.offline.sync_engine import SyncEngine, SyncState
from prestatario.services.loan_service import LoanService
from prestatario.state.view_state import ViewState

logger = get_logger(__name__)


class OfflineRuntime:
    """Composition root of the offline layer."""

    def __init__(
        self,
        settings: Settings,
        remote,
        monitor: ConnectionMonitor,
        store: Optional[LocalStore] = None,
        network_cache: Optional[NetworkCache] = None,
    ):
        self.settings = settings
        self.remote = remote
        self.monitor = monitor
        self.store = store or LocalStore(settings.local_db_path, settings.store_version)
        self.network_cache = network_cache

        self.view = ViewState(store=self.store)
        self.engine = SyncEngine(self.store, remote, monitor, overlay=self.view.overlay)
        self.reader = CachedReader(remote, self.store, monitor)
        self.loans = LoanService(remote, self.engine, monitor, self.store)
        self._opened = False

    @classmethod
    def from_settings(cls, settings: Settings) -> OfflineRuntime:
        """
        Build a runtime talking to the configured Supabase project.

        Raises:
            ConfigurationError: Supabase credentials are missing
        """
        client = get_supabase_client(settings)
        monitor = ConnectionMonitor(
            check=lambda: check_host(settings.supabase_url, settings.connection_timeout)
        )
        remote = RemoteStore(client, monitor)
        network_cache = NetworkCache(
            settings.base_url,
            CacheStorage(settings.network_cache_dir),
            settings.cache_name,
            shell_assets=settings.shell_assets,
            excluded_hosts=[settings.supabase_host],
        )
        return cls(settings, remote, monitor, network_cache=network_cache)

    @property
    def is_open(self) -> bool:
        return self._opened

    @property
    def is_online(self) -> bool:
        return self.monitor.is_online

    @property
    def pending_count(self) -> int:
        return self.engine.pending_count

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def open(self) -> OfflineRuntime:
        if self._opened:
            return self

        self.store.open()
        self.monitor.initialize()
        self.engine.start()
        self.engine.add_drain_listener(self._on_drain)

        if self.network_cache is not None:
            try:
                self.network_cache.register()
            except NetworkCacheError as e:
                logger.warning(f"Network cache not installed: {e.message}")
            self.network_cache.add_sync_handler(self.engine.request_drain)

        self._opened = True

        # Writes queued by a previous session
        if self.monitor.is_online and self.engine.pending_count:
            self.engine.drain()

        return self

    def close(self) -> None:
        if not self._opened:
            return
        if self.network_cache is not None:
            self.network_cache.remove_sync_handler(self.engine.request_drain)
        self.engine.remove_drain_listener(self._on_drain)
        self.engine.stop()
        self.store.close()
        self._opened = False

    def __enter__(self) -> OfflineRuntime:
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False

    # =========================================================================
    # SYNC
    # =========================================================================

    def _on_drain(self, state: SyncState) -> None:
        # Queue entries left the overlay: confirmed views are out of date
        if not state.is_syncing:
            self.view.invalidate()

    @property
    def sync_epoch(self) -> int:
        """Bumped after every drain; pages compare it to know data moved."""
        return self.view.epoch

    # =========================================================================
    # READS
    # =========================================================================

    def current_user_id(self) -> Optional[str]:
        return self.remote.current_user_id()

    def _load(self, user_id: Optional[str], collection: str, scope: Optional[str], read) -> ReadResult:
        for _ in range(2):
            token = self.view.begin_read(user_id, collection, scope)
            result = read()
            # A drain finished while reading: read once more
            if self.view.commit_read(user_id, collection, token, result.records, scope=scope):
                break
        return ReadResult(records=self.view.render(user_id, collection, scope), source=result.source)

    def load_loans(self, user_id: Optional[str], status: Optional[str] = None) -> ReadResult:
        """Loans as the list view shows them, pending writes included."""
        return self._load(user_id, "loans", status, lambda: self.reader.read_loans(user_id, status))

    def load_contacts(self, user_id: Optional[str]) -> ReadResult:
        return self._load(user_id, "contacts", None, lambda: self.reader.read_contacts(user_id))

    def load_payments(self, user_id: Optional[str], loan_id: str) -> ReadResult:
        return self._load(user_id, "payments", loan_id, lambda: self.reader.read_payments(user_id, loan_id))

    def load_profile(self, user_id: Optional[str]) -> ReadResult:
        return self._load(user_id, "profile", None, lambda: self.reader.read_profile(user_id))
