# =============================================================================
# prestatario/offline/sync_engine.py
# Mutation Queue and Drain
# =============================================================================
"""
SyncEngine - never lose a write made while offline.

Features:
- submit(): direct remote write when online, queue when offline
- drain(): FIFO replay, stops at the first unreachable error
- Drains automatically when the connection monitor flips online
- request_drain() entry point for background-sync signals
- Drain listeners told when a cycle begins so views can refresh
"""

from __future__ import annotations
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from prestatario.domain.models import OperationKind, QueuedOperation
from prestatario.errors import (
    LocalStorageError,
    QueueReplayError,
    RemoteRejectedError,
    RemoteUnreachableError,
)
from prestatario.logging import get_logger, LogContext
from prestatario.offline.connection_manager import (
    ConnectionMonitor,
    ConnectionState,
    ConnectionStatus,
    Subscription,
)
from prestatario.offline.local_store import LocalStore
from prestatario.offline.operations import apply_operation
from prestatario.state.view_state import PendingOverlay

logger = get_logger(__name__)


@dataclass
class SubmitResult:
    """Outcome of SyncEngine.submit()."""
    kind: OperationKind
    queued: bool
    operation: Optional[QueuedOperation] = None
    result: Optional[Dict[str, Any]] = None


@dataclass
class DrainReport:
    """Outcome of one drain cycle."""
    started_at: datetime = field(default_factory=datetime.now)
    applied: List[int] = field(default_factory=list)
    rejected: List[int] = field(default_factory=list)
    remaining: int = 0
    skipped: bool = False
    error: Optional[QueueReplayError] = None

    @property
    def halted(self) -> bool:
        return self.error is not None


@dataclass
class SyncState:
    """Current sync state."""
    is_syncing: bool = False
    last_sync: Optional[datetime] = None
    last_sync_success: Optional[datetime] = None
    total_synced: int = 0
    total_rejected: int = 0


DrainListener = Callable[[SyncState], None]


class SyncEngine:
    """
    Queues writes while offline and replays them in order once back online.

    Usage:
        engine = SyncEngine(store, remote, monitor)
        engine.start()
        engine.submit(OperationKind.CREATE_LOAN, loan)
    """

    def __init__(
        self,
        store: LocalStore,
        remote,
        monitor: ConnectionMonitor,
        overlay: Optional[PendingOverlay] = None,
    ):
        self.store = store
        self.remote = remote
        self.monitor = monitor
        self.overlay = overlay if overlay is not None else PendingOverlay()
        self._state = SyncState()
        self._drain_lock = threading.Lock()
        self._listeners: List[DrainListener] = []
        self._subscription: Optional[Subscription] = None

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_syncing(self) -> bool:
        return self._state.is_syncing

    @property
    def pending_count(self) -> int:
        return self.store.pending_count()

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self) -> None:
        """Load the persisted queue into the overlay and follow the monitor."""
        self.overlay.replace_all(self.store.get_queue())
        if self._subscription is None:
            self._subscription = self.monitor.subscribe(self._on_connection_change)
        logger.info(f"SyncEngine started with {len(self.overlay)} pending operations")

    def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        logger.info("SyncEngine stopped")

    def _on_connection_change(self, state: ConnectionState) -> None:
        if state.status == ConnectionStatus.ONLINE:
            logger.info("Connection restored, draining queue")
            self.drain()

    # =========================================================================
    # WRITES
    # =========================================================================

    def submit(self, kind: OperationKind, payload: Dict[str, Any]) -> SubmitResult:
        """
        Perform a write now, or queue it if that isn't possible.

        Online with an empty queue the write goes straight to the backend.
        Online with pending entries it queues behind them and drains, so it
        can't overtake them. Offline it is queued.

        Raises:
            RemoteRejectedError: the backend refused a direct write
            LocalStorageError: the write had to be queued and the store failed
        """
        if self.monitor.is_online and not self._has_pending():
            try:
                result = apply_operation(self.remote, kind, payload)
                return SubmitResult(kind=kind, queued=False, result=result)
            except RemoteUnreachableError:
                logger.info(f"{kind.value} could not reach the backend, queueing")

        operation = self._enqueue(kind, payload)

        if self.monitor.is_online:
            report = self.drain()
            if operation.id in report.applied:
                return SubmitResult(kind=kind, queued=False, operation=operation)

        return SubmitResult(kind=kind, queued=True, operation=operation)

    def _has_pending(self) -> bool:
        try:
            return self.store.pending_count() > 0
        except LocalStorageError as e:
            logger.warning(f"Cannot read queue, writing directly: {e}")
            return False

    def _enqueue(self, kind: OperationKind, payload: Dict[str, Any]) -> QueuedOperation:
        operation = self.store.enqueue(kind, payload)
        self.overlay.add(operation)
        return operation

    # =========================================================================
    # DRAIN
    # =========================================================================

    def request_drain(self, tag: Optional[str] = None) -> Optional[DrainReport]:
        """Background-sync entry point; drains only when online."""
        if not self.monitor.is_online:
            logger.debug(f"Sync signal {tag!r} ignored: offline")
            return None
        return self.drain()

    def drain(self) -> DrainReport:
        """
        Replay queued operations in FIFO order.

        An entry is dequeued only after its remote write succeeded. A
        rejected entry is dropped and reported. An unreachable backend stops
        the drain and leaves that entry and everything after it queued.
        """
        report = DrainReport()
        if not self._drain_lock.acquire(blocking=False):
            report.skipped = True
            return report

        try:
            self._state.is_syncing = True
            self._state.last_sync = report.started_at
            self._notify_listeners()

            with LogContext(logger, "Draining mutation queue"):
                self._replay(report)
        finally:
            self._state.is_syncing = False
            self._drain_lock.release()
            self._notify_listeners()

        return report

    def _replay(self, report: DrainReport) -> None:
        try:
            queue = self.store.get_queue()
        except LocalStorageError as e:
            logger.error(f"Cannot read queue: {e}")
            report.error = QueueReplayError(f"Queue unavailable: {e.message}")
            return

        for index, op in enumerate(queue):
            try:
                result = apply_operation(self.remote, op.kind, op.payload)
            except RemoteRejectedError as e:
                logger.warning(f"Operation #{op.id} ({op.kind.value}) rejected, dropping: {e.message}")
                if not self._dequeue(op, report):
                    report.remaining = len(queue) - index
                    return
                self.overlay.discard(op.id)
                report.rejected.append(op.id)
                self._state.total_rejected += 1
                continue
            except RemoteUnreachableError as e:
                try:
                    self.store.record_attempt(op.id, e.message)
                except LocalStorageError as store_error:
                    logger.warning(f"Cannot record attempt on #{op.id}: {store_error.message}")
                report.error = QueueReplayError(
                    f"Replay stopped: {e.message}", operation_id=op.id, kind=op.kind.value
                )
                report.remaining = len(queue) - index
                logger.info(f"Drain halted at operation #{op.id}, {report.remaining} left")
                return

            self._mirror(op, result)
            # At-least-once: a crash here resends op on the next drain
            report.applied.append(op.id)
            self._state.total_synced += 1
            if not self._dequeue(op, report):
                report.remaining = len(queue) - index
                return
            self.overlay.confirm(op.id)

        self._state.last_sync_success = datetime.now()

    def _mirror(self, op: QueuedOperation, result: Optional[Dict[str, Any]]) -> None:
        """Cache what a replayed write produced, so views know it was applied."""
        records = []
        if op.kind == OperationKind.CREATE_LOAN:
            records = [("loans", op.payload)]
        elif op.kind == OperationKind.ADD_PAYMENT:
            records = [("payments", op.payload), ("loans", result)]
        try:
            for collection, record in records:
                if record:
                    self.store.put(collection, record)
        except LocalStorageError as e:
            logger.warning(f"Could not cache result of operation #{op.id}: {e.message}")

    def _dequeue(self, op: QueuedOperation, report: DrainReport) -> bool:
        """
        Remove a finished entry from the queue.

        The remote write already happened, so a failing store only stops
        the drain; the entry stays queued and is resent, harmlessly, later.
        """
        try:
            self.store.dequeue(op.id)
            return True
        except LocalStorageError as e:
            logger.error(f"Cannot dequeue operation #{op.id}, stopping drain: {e.message}")
            report.error = QueueReplayError(
                f"Queue not updated: {e.message}", operation_id=op.id, kind=op.kind.value
            )
            return False

    # =========================================================================
    # LISTENERS
    # =========================================================================

    def add_drain_listener(self, listener: DrainListener) -> None:
        """Register a callback run when a drain begins and when it ends."""
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_drain_listener(self, listener: DrainListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify_listeners(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception as e:
                logger.error(f"Error in drain listener: {e}", exc_info=True)

    def get_status_display(self) -> Dict[str, Any]:
        """Get sync status for UI display."""
        return {
            "is_syncing": self._state.is_syncing,
            "last_sync": self._state.last_sync.isoformat() if self._state.last_sync else None,
            "last_success": self._state.last_sync_success.isoformat() if self._state.last_sync_success else None,
            "pending_count": self.pending_count,
            "total_synced": self._state.total_synced,
            "total_rejected": self._state.total_rejected,
        }
