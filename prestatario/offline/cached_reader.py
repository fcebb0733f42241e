# =============================================================================
# prestatario/offline/cached_reader.py
# Cache-Populating Read Path
# =============================================================================
"""
CachedReader - remote first, local copy as fallback.

Per read:
1. Fetch from Supabase.
2. Records came back: mirror each one into the local store, return them.
3. Nothing came back while offline, or the fetch failed outright: serve the
   cached records for the same user instead.
4. Nothing cached either: the genuine empty state.

An empty answer while online is trusted as "no records". An empty answer
while offline is treated as a probable side effect of being offline; this
can't tell apart a user who really has no records.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from prestatario.errors import LocalStorageError, RemoteUnreachableError
from prestatario.logging import get_logger
from prestatario.offline.connection_manager import ConnectionMonitor
from prestatario.offline.local_store import LocalStore

logger = get_logger(__name__)

SOURCE_REMOTE = "remote"
SOURCE_CACHE = "cache"
SOURCE_EMPTY = "empty"


@dataclass
class ReadResult:
    """Records returned by a read and where they came from."""
    records: List[Dict[str, Any]] = field(default_factory=list)
    source: str = SOURCE_EMPTY

    @property
    def from_cache(self) -> bool:
        return self.source == SOURCE_CACHE

    def __len__(self) -> int:
        return len(self.records)


class CachedReader:
    """
    Read helpers used by the list views.

    Usage:
        reader = CachedReader(remote, store, monitor)
        result = reader.read_loans(user_id)
        if result.from_cache:
            st.caption("Showing saved data")
    """

    def __init__(self, remote, store: LocalStore, monitor: ConnectionMonitor):
        self.remote = remote
        self.store = store
        self.monitor = monitor

    def read(
        self,
        collection: str,
        fetch: Callable[[], List[Dict[str, Any]]],
        load_cached: Callable[[], List[Dict[str, Any]]],
    ) -> ReadResult:
        """
        Generic read-through for one collection.

        Args:
            collection: Local collection the records are mirrored into
            fetch: Remote fetch; may raise RemoteUnreachableError
            load_cached: Local lookup used on fallback
        """
        try:
            records = fetch()
            failed = False
        except RemoteUnreachableError as e:
            logger.info(f"Remote read of {collection} failed, trying cache: {e.message}")
            records = []
            failed = True

        if records:
            self._mirror(collection, records)
            return ReadResult(records=records, source=SOURCE_REMOTE)

        if not failed and not self.monitor.is_offline:
            return ReadResult(records=[], source=SOURCE_REMOTE)

        try:
            cached = load_cached()
        except LocalStorageError as e:
            logger.warning(f"Cache unavailable for {collection}: {e.message}")
            cached = []

        if cached:
            logger.debug(f"Serving {len(cached)} cached records from {collection}")
            return ReadResult(records=cached, source=SOURCE_CACHE)
        return ReadResult(records=[], source=SOURCE_EMPTY)

    def _mirror(self, collection: str, records: List[Dict[str, Any]]) -> None:
        # Best effort: a failing cache must not hide fresh data
        try:
            self.store.put_many(collection, records)
        except LocalStorageError as e:
            logger.warning(f"Could not cache {collection}: {e.message}")

    # =========================================================================
    # COLLECTION READS
    # =========================================================================

    def read_loans(self, user_id: Optional[str], status: Optional[str] = None) -> ReadResult:
        """Loans of a user, newest first; `status` filters unless 'all'."""
        if not user_id:
            return ReadResult()

        def load_cached():
            loans = self.store.get_by_index("loans", "by-user", user_id)
            if status and status != "all":
                loans = [loan for loan in loans if loan.get("status") == status]
            return sorted(loans, key=lambda loan: loan.get("created_at") or "", reverse=True)

        return self.read(
            "loans",
            lambda: self.remote.list_loans(user_id, status),
            load_cached,
        )

    def read_contacts(self, user_id: Optional[str]) -> ReadResult:
        """Contacts of a user, by name."""
        if not user_id:
            return ReadResult()

        def load_cached():
            contacts = self.store.get_by_index("contacts", "by-user", user_id)
            return sorted(contacts, key=lambda contact: contact.get("name") or "")

        return self.read(
            "contacts",
            lambda: self.remote.list_contacts(user_id),
            load_cached,
        )

    def read_payments(self, user_id: Optional[str], loan_id: str) -> ReadResult:
        """Payments of one loan, newest first."""
        if not user_id:
            return ReadResult()

        def load_cached():
            payments = [
                p for p in self.store.get_by_index("payments", "by-loan", loan_id)
                if p.get("user_id") == user_id
            ]
            return sorted(payments, key=lambda p: p.get("created_at") or "", reverse=True)

        return self.read(
            "payments",
            lambda: self.remote.list_payments(user_id, loan_id),
            load_cached,
        )

    def read_profile(self, user_id: Optional[str]) -> ReadResult:
        """The user's profile as a one-record result."""
        if not user_id:
            return ReadResult()

        def fetch():
            profile = self.remote.get_profile(user_id)
            return [profile] if profile else []

        def load_cached():
            profile = self.store.get("profile", user_id)
            return [profile] if profile else []

        return self.read("profile", fetch, load_cached)
