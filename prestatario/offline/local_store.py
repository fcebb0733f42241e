# =============================================================================
# prestatario/offline/local_store.py
# Local SQLite Store for Offline Operations
# =============================================================================
"""
LocalStore - per-device copy of the user's records plus the offline write queue.

Features:
- Four record collections keyed by the remote primary key
- Secondary lookups by a denormalized foreign key (user, loan, status)
- FIFO queue of operations captured while offline
- Reference-counted open/close owned by the app's composition root
- Storage failures surface as LocalStorageError so callers can ignore them
"""

from __future__ import annotations
import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import numpy as np
import pandas as pd

from prestatario.domain.models import OperationKind, QueuedOperation
from prestatario.errors import LocalStorageError
from prestatario.logging import get_logger

logger = get_logger(__name__)


# collection -> {index name: record field}
COLLECTIONS: Dict[str, Dict[str, str]] = {
    "loans": {"by-status": "status", "by-user": "user_id"},
    "contacts": {"by-user": "user_id"},
    "payments": {"by-loan": "loan_id"},
    "profile": {},
}

QUEUE_SCHEMA = """
    CREATE TABLE IF NOT EXISTS sync_queue (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        kind TEXT NOT NULL,
        payload_json TEXT NOT NULL,
        created_at TEXT NOT NULL,
        attempts INTEGER DEFAULT 0,
        last_attempt TEXT,
        last_error TEXT
    )
"""


def _column(index_name: str) -> str:
    return "idx_" + index_name.replace("-", "_")


def _json_default(value: Any) -> Any:
    """Serialize values json can't handle on its own."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, np.integer):
        return int(value)
    if isinstance(value, (np.floating, Decimal)):
        return float(value)
    if isinstance(value, np.ndarray):
        return value.tolist()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def dumps(value: Any) -> str:
    return json.dumps(value, default=_json_default)


class LocalStore:
    """
    SQLite-backed store mirroring the remote collections.

    Usage:
        store = LocalStore(path)
        with store:
            store.put("loans", loan)
            store.get_by_index("payments", "by-loan", loan["id"])
    """

    def __init__(self, db_path: Path, version: int = 1):
        """
        Args:
            db_path: Path to the SQLite database file
            version: Schema version; a change rebuilds the cache collections
        """
        self.db_path = Path(db_path)
        self.version = version
        self._conn: Optional[sqlite3.Connection] = None
        self._refcount = 0
        self._lock = threading.RLock()

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    @property
    def refcount(self) -> int:
        return self._refcount

    def open(self) -> LocalStore:
        """Acquire a reference; the first one connects and creates the schema."""
        with self._lock:
            if self._refcount == 0:
                try:
                    self.db_path.parent.mkdir(parents=True, exist_ok=True)
                    self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
                    self._conn.row_factory = sqlite3.Row
                    self._create_schema()
                except (sqlite3.Error, OSError) as e:
                    self._conn = None
                    raise LocalStorageError(f"Cannot open local store: {e}") from e
                logger.info(f"Local store opened at: {self.db_path}")
            self._refcount += 1
        return self

    def close(self) -> None:
        """Release a reference; the last one closes the connection."""
        with self._lock:
            if self._refcount == 0:
                return
            self._refcount -= 1
            if self._refcount == 0 and self._conn is not None:
                self._conn.close()
                self._conn = None
                logger.info("Local store closed")

    def __enter__(self) -> LocalStore:
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False

    def _create_schema(self) -> None:
        conn = self._conn
        stored_version = conn.execute("PRAGMA user_version").fetchone()[0]
        if stored_version and stored_version != self.version:
            logger.info(f"Local store version {stored_version} -> {self.version}, rebuilding caches")
            for name in COLLECTIONS:
                conn.execute(f"DROP TABLE IF EXISTS {name}")

        for name, indexes in COLLECTIONS.items():
            index_columns = "".join(f", {_column(i)} TEXT" for i in indexes)
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {name} (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    data_json TEXT NOT NULL,
                    cached_at TEXT NOT NULL{index_columns}
                )
                """
            )
            for index_name in indexes:
                col = _column(index_name)
                conn.execute(f"CREATE INDEX IF NOT EXISTS {name}_{col} ON {name} ({col})")

        conn.execute(QUEUE_SCHEMA)
        conn.execute(f"PRAGMA user_version = {int(self.version)}")
        conn.commit()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for store transactions; wraps sqlite errors."""
        with self._lock:
            if self._conn is None:
                raise LocalStorageError("Local store is not open")
            conn = self._conn
            try:
                yield conn
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise LocalStorageError(f"Local store operation failed: {e}") from e
            except Exception:
                conn.rollback()
                raise

    def _check_collection(self, collection: str) -> Dict[str, str]:
        if collection not in COLLECTIONS:
            raise KeyError(f"Unknown collection: {collection}")
        return COLLECTIONS[collection]

    # =========================================================================
    # RECORD COLLECTIONS
    # =========================================================================

    def _upsert(self, conn: sqlite3.Connection, collection: str, record: Dict[str, Any]) -> None:
        indexes = COLLECTIONS[collection]
        if record.get("id") in (None, ""):
            raise ValueError(f"Record for '{collection}' has no id")

        columns = ["id", "data_json", "cached_at"] + [_column(i) for i in indexes]
        values = [str(record["id"]), dumps(record), datetime.now().isoformat()]
        values += [record.get(field) for field in indexes.values()]
        updates = ", ".join(f"{c} = excluded.{c}" for c in columns[1:])

        # ON CONFLICT keeps the row's seq, so first insertion order is preserved
        conn.execute(
            f"INSERT INTO {collection} ({', '.join(columns)}) "
            f"VALUES ({', '.join('?' for _ in columns)}) "
            f"ON CONFLICT(id) DO UPDATE SET {updates}",
            values,
        )

    def put(self, collection: str, record: Dict[str, Any]) -> None:
        """Insert or overwrite a record by its primary key."""
        self._check_collection(collection)
        with self.transaction() as conn:
            self._upsert(conn, collection, record)

    def put_many(self, collection: str, records: List[Dict[str, Any]]) -> int:
        """Upsert several records in one transaction."""
        self._check_collection(collection)
        if not records:
            return 0
        with self.transaction() as conn:
            for record in records:
                self._upsert(conn, collection, record)
        logger.debug(f"Cached {len(records)} records in {collection}")
        return len(records)

    def get(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Get a single record by primary key."""
        self._check_collection(collection)
        with self.transaction() as conn:
            row = conn.execute(
                f"SELECT data_json FROM {collection} WHERE id = ?", [str(record_id)]
            ).fetchone()
        return json.loads(row["data_json"]) if row else None

    def get_all(self, collection: str) -> List[Dict[str, Any]]:
        """All records of a collection, in insertion order."""
        self._check_collection(collection)
        with self.transaction() as conn:
            rows = conn.execute(f"SELECT data_json FROM {collection} ORDER BY seq").fetchall()
        return [json.loads(row["data_json"]) for row in rows]

    def get_by_index(self, collection: str, index_name: str, value: Any) -> List[Dict[str, Any]]:
        """All records whose secondary key equals value."""
        indexes = self._check_collection(collection)
        if index_name not in indexes:
            raise KeyError(f"Collection '{collection}' has no index '{index_name}'")
        with self.transaction() as conn:
            rows = conn.execute(
                f"SELECT data_json FROM {collection} WHERE {_column(index_name)} = ? ORDER BY seq",
                [value],
            ).fetchall()
        return [json.loads(row["data_json"]) for row in rows]

    def count(self, collection: str) -> int:
        self._check_collection(collection)
        with self.transaction() as conn:
            return conn.execute(f"SELECT COUNT(*) AS n FROM {collection}").fetchone()["n"]

    def to_dataframe(self, collection: str, index_name: Optional[str] = None,
                     value: Any = None) -> pd.DataFrame:
        """
        Load a collection (optionally filtered by an index) into a DataFrame.
        """
        if index_name:
            records = self.get_by_index(collection, index_name, value)
        else:
            records = self.get_all(collection)
        return pd.DataFrame(records)

    # =========================================================================
    # OPERATION QUEUE
    # =========================================================================

    def enqueue(self, kind: OperationKind, payload: Dict[str, Any]) -> QueuedOperation:
        """Append an operation to the queue. No remote call is made."""
        created_at = datetime.now().isoformat()
        with self.transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO sync_queue (kind, payload_json, created_at) VALUES (?, ?, ?)",
                [kind.value, dumps(payload), created_at],
            )
            op_id = cursor.lastrowid
        logger.info(f"Queued {kind.value} as operation #{op_id}")
        return QueuedOperation(id=op_id, kind=kind, payload=json.loads(dumps(payload)),
                               created_at=created_at)

    def dequeue(self, op_id: int) -> bool:
        """Remove a queue entry once its remote write is confirmed."""
        with self.transaction() as conn:
            cursor = conn.execute("DELETE FROM sync_queue WHERE id = ?", [op_id])
            return cursor.rowcount > 0

    def get_queue(self) -> List[QueuedOperation]:
        """Queued operations in FIFO order."""
        with self.transaction() as conn:
            rows = conn.execute("SELECT * FROM sync_queue ORDER BY id ASC").fetchall()
        return [
            QueuedOperation(
                id=row["id"],
                kind=OperationKind(row["kind"]),
                payload=json.loads(row["payload_json"]),
                created_at=row["created_at"],
                attempts=row["attempts"],
                last_error=row["last_error"],
            )
            for row in rows
        ]

    def record_attempt(self, op_id: int, error: str) -> None:
        """Note a failed replay attempt; the entry stays queued."""
        with self.transaction() as conn:
            conn.execute(
                """
                UPDATE sync_queue
                SET attempts = attempts + 1, last_attempt = ?, last_error = ?
                WHERE id = ?
                """,
                [datetime.now().isoformat(), error, op_id],
            )

    def pending_count(self) -> int:
        with self.transaction() as conn:
            return conn.execute("SELECT COUNT(*) AS n FROM sync_queue").fetchone()["n"]
