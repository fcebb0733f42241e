# =============================================================================
# prestatario/state/view_state.py
# Confirmed State + Pending Overlay for List Views
# =============================================================================
"""
What a view shows is computed, never patched in place:

    rendered = confirmed records  ⊕  effects of still-queued operations

ConfirmedState holds the last records a read returned. PendingOverlay holds
the operations waiting in the queue; an entry leaves the overlay as soon as
the queue confirms (or the backend rejects) it. Reads are stamped with a
per-view generation token so a slow, older read can't overwrite a newer one.
"""

from __future__ import annotations
import threading
from collections import OrderedDict
from copy import deepcopy
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Set, Tuple

from prestatario.domain.loans import derive_status
from prestatario.domain.models import LoanStatus, OperationKind, QueuedOperation, _as_float
from prestatario.errors import LocalStorageError
from prestatario.logging import get_logger

if TYPE_CHECKING:
    from prestatario.offline.local_store import LocalStore

logger = get_logger(__name__)

PENDING_FLAG = "_pending"

# (user_id, collection, scope)
ViewKey = Tuple[Optional[str], str, Optional[str]]


@dataclass
class ConfirmedState:
    """Records last confirmed by a read, per (user, collection, scope)."""
    records: Dict[ViewKey, List[Dict[str, Any]]] = field(default_factory=dict)

    def replace(self, key: ViewKey, records: List[Dict[str, Any]]) -> None:
        self.records[key] = list(records)

    def get(self, key: ViewKey) -> List[Dict[str, Any]]:
        return self.records.get(key, [])


class PendingOverlay:
    """Queued operations, in queue order, keyed by queue id."""

    def __init__(self):
        self._operations: "OrderedDict[int, QueuedOperation]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._operations)

    def __contains__(self, op_id: int) -> bool:
        return op_id in self._operations

    def add(self, operation: QueuedOperation) -> None:
        self._operations[operation.id] = operation

    def confirm(self, op_id: int) -> bool:
        """Drop an entry whose remote write is confirmed."""
        return self._operations.pop(op_id, None) is not None

    def discard(self, op_id: int) -> bool:
        """Drop an entry the backend rejected."""
        return self._operations.pop(op_id, None) is not None

    def replace_all(self, operations: List[QueuedOperation]) -> None:
        self._operations = OrderedDict((op.id, op) for op in operations)

    def operations(self, kind: Optional[OperationKind] = None) -> List[QueuedOperation]:
        ops = list(self._operations.values())
        if kind is not None:
            ops = [op for op in ops if op.kind == kind]
        return ops


class ViewState:
    """
    Confirmed state plus pending overlay, with generation-guarded reads.

    Every view is keyed by the user it belongs to, and a user's render only
    ever sees operations queued for that same user.

    Usage:
        token = view.begin_read(user_id, "loans")
        records = reader.read_loans(user_id).records
        view.commit_read(user_id, "loans", token, records)
        rows = view.render(user_id, "loans")
    """

    def __init__(self, store: Optional[LocalStore] = None):
        self.confirmed = ConfirmedState()
        self.overlay = PendingOverlay()
        self.store = store
        self.epoch = 0
        self._generations: Dict[ViewKey, int] = {}
        self._lock = threading.Lock()

    # =========================================================================
    # READ GENERATIONS
    # =========================================================================

    def begin_read(self, user_id: Optional[str], collection: str, scope: Optional[str] = None) -> int:
        """Start a read and return its generation token."""
        key = (user_id, collection, scope)
        with self._lock:
            self._generations[key] = self._generations.get(key, 0) + 1
            return self._generations[key]

    def commit_read(
        self,
        user_id: Optional[str],
        collection: str,
        token: int,
        records: List[Dict[str, Any]],
        scope: Optional[str] = None,
    ) -> bool:
        """
        Store a read's records unless a newer read has started since.

        Returns:
            True if the records were applied
        """
        key = (user_id, collection, scope)
        with self._lock:
            if token != self._generations.get(key):
                logger.debug(f"Dropping stale read of {key} (token {token})")
                return False
            self.confirmed.replace(key, records)
            return True

    def invalidate(self) -> None:
        """
        Mark every view out of date after the queue changed remotely.

        Reads started before this call can no longer commit.
        """
        with self._lock:
            for key in self._generations:
                self._generations[key] += 1
            self.epoch += 1

    # =========================================================================
    # RENDERING
    # =========================================================================

    def _pending(self, user_id: Optional[str], kind: OperationKind) -> List[QueuedOperation]:
        return [op for op in self.overlay.operations(kind) if op.payload.get("user_id") == user_id]

    def render(self, user_id: Optional[str], collection: str, scope: Optional[str] = None) -> List[Dict[str, Any]]:
        """Confirmed records with the user's pending operations applied on top."""
        if not user_id:
            return []
        base = deepcopy(self.confirmed.get((user_id, collection, scope)))

        if collection == "loans":
            return self._render_loans(user_id, base, scope)
        if collection == "payments":
            return self._render_payments(user_id, base, scope)
        if collection == "profile":
            return self._render_profile(user_id, base)
        return base

    def _known_payment_ids(self, user_id: str, loan_id: str) -> Set[str]:
        """Payments of a loan already seen confirmed, in a view or the cache."""
        known = {p["id"] for p in self.confirmed.get((user_id, "payments", loan_id))}
        if self.store is not None:
            try:
                known.update(p["id"] for p in self.store.get_by_index("payments", "by-loan", loan_id))
            except LocalStorageError as e:
                logger.warning(f"Cannot read cached payments of loan {loan_id}: {e.message}")
        return known

    def _render_loans(self, user_id: str, loans: List[Dict[str, Any]], status: Optional[str]) -> List[Dict[str, Any]]:
        by_id = {loan["id"]: loan for loan in loans}

        created = []
        for op in self._pending(user_id, OperationKind.CREATE_LOAN):
            if op.payload["id"] in by_id:
                continue
            if status not in (None, "all", LoanStatus.ACTIVE.value):
                continue
            loan = {**op.payload, PENDING_FLAG: True}
            by_id[loan["id"]] = loan
            created.append(loan)

        known: Dict[str, Set[str]] = {}
        for op in self._pending(user_id, OperationKind.ADD_PAYMENT):
            loan_id = op.payload["loan_id"]
            loan = by_id.get(loan_id)
            if loan is None:
                continue
            if loan_id not in known:
                known[loan_id] = self._known_payment_ids(user_id, loan_id)
            # Applied remotely but not yet dequeued: already in total_paid
            if op.payload["id"] in known[loan_id]:
                continue
            amount = _as_float(loan.get("amount"))
            total_paid = _as_float(loan.get("total_paid")) + _as_float(op.payload.get("amount"))
            loan["total_paid"] = total_paid
            loan["status"] = derive_status(amount, total_paid, loan.get("status"))
            loan[PENDING_FLAG] = True

        # Pending creates are the newest loans
        return list(reversed(created)) + loans

    def _render_payments(
        self, user_id: str, payments: List[Dict[str, Any]], loan_id: Optional[str]
    ) -> List[Dict[str, Any]]:
        known = {p["id"] for p in payments}
        pending = [
            {**op.payload, PENDING_FLAG: True}
            for op in self._pending(user_id, OperationKind.ADD_PAYMENT)
            if op.payload["id"] not in known
            and (loan_id is None or op.payload["loan_id"] == loan_id)
        ]
        return list(reversed(pending)) + payments

    def _render_profile(self, user_id: str, profiles: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        for op in self._pending(user_id, OperationKind.UPDATE_PROFILE):
            for profile in profiles:
                if profile.get("id") == user_id:
                    profile.update({k: v for k, v in op.payload.items() if k != "user_id"})
                    profile[PENDING_FLAG] = True
        return profiles
