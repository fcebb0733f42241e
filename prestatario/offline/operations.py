# =============================================================================
# prestatario/offline/operations.py
# Remote Effects of Queueable Writes
# =============================================================================
"""
One function per OperationKind, shared by the online path and the queue
replay so both produce the same remote effect. Each one is safe to apply
twice: creates upsert on the client-generated id, and loan totals are
recomputed from the stored payments instead of incremented.
"""

from __future__ import annotations
from typing import Any, Callable, Dict

from prestatario.domain.loans import recompute_loan
from prestatario.domain.models import OperationKind
from prestatario.errors import RemoteRejectedError
from prestatario.logging import get_logger

logger = get_logger(__name__)


def create_loan(remote, payload: Dict[str, Any]) -> Dict[str, Any]:
    remote.insert_loan(payload)
    return payload


def add_payment(remote, payload: Dict[str, Any]) -> Dict[str, Any]:
    user_id = payload["user_id"]
    loan_id = payload["loan_id"]

    loan = remote.get_loan(user_id, loan_id)
    if loan is None:
        raise RemoteRejectedError("Loan not found", operation="add_payment")

    remote.insert_payment(payload)
    payments = remote.list_payments(user_id, loan_id)
    updates = recompute_loan(loan, payments)
    remote.update_loan(user_id, loan_id, updates)
    logger.debug(f"Loan {loan_id} recomputed: {updates}")
    return {**loan, **updates}


def update_profile(remote, payload: Dict[str, Any]) -> Dict[str, Any]:
    updates = {k: v for k, v in payload.items() if k != "user_id"}
    remote.update_profile(payload["user_id"], updates)
    return payload


OPERATIONS: Dict[OperationKind, Callable[[Any, Dict[str, Any]], Dict[str, Any]]] = {
    OperationKind.CREATE_LOAN: create_loan,
    OperationKind.ADD_PAYMENT: add_payment,
    OperationKind.UPDATE_PROFILE: update_profile,
}


def apply_operation(remote, kind: OperationKind, payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Perform the remote write for an operation.

    Raises:
        RemoteUnreachableError: the backend could not be reached
        RemoteRejectedError: the backend refused the write
    """
    return OPERATIONS[kind](remote, payload)
