# =============================================================================
# prestatario/domain/loans.py
# Balance and Status Arithmetic
# =============================================================================

from __future__ import annotations
from datetime import date
from typing import Any, Dict, Iterable, Optional

from .models import LoanStatus, _as_float


def remaining_balance(loan: Dict[str, Any]) -> float:
    """Amount still owed on a loan record."""
    return _as_float(loan.get("amount")) - _as_float(loan.get("total_paid"))


def derive_status(amount: float, total_paid: float, current: str, reopen: bool = False) -> str:
    """
    Status implied by the amount paid so far.

    A fully paid loan is returned. A returned loan stays returned unless
    `reopen` is set (a payment was deleted and it is no longer fully paid),
    in which case it goes back to active. Otherwise the current status
    (active or overdue) is kept.
    """
    if total_paid >= amount:
        return LoanStatus.RETURNED.value
    if current == LoanStatus.RETURNED.value:
        return LoanStatus.ACTIVE.value if reopen else current
    return current or LoanStatus.ACTIVE.value


def recompute_loan(
    loan: Dict[str, Any],
    payments: Iterable[Dict[str, Any]],
    today: Optional[date] = None,
    allow_reopen: bool = False,
) -> Dict[str, Any]:
    """
    Rebuild a loan's total_paid/status/returned_date from its payments.

    The total is summed from the payments rather than incremented, so
    applying the same payment twice cannot inflate it.

    Args:
        loan: Loan record (needs amount, status, returned_date)
        payments: Payment records of that loan
        today: Date used for returned_date (default: today)
        allow_reopen: Let a returned loan that is no longer fully paid go
            back to active; only set when a payment was deleted

    Returns:
        Dict of column updates for the loan
    """
    today = today or date.today()
    amount = _as_float(loan.get("amount"))
    total_paid = round(sum(_as_float(p.get("amount")) for p in payments), 2)
    current = loan.get("status") or LoanStatus.ACTIVE.value
    status = derive_status(amount, total_paid, current, reopen=allow_reopen)

    updates: Dict[str, Any] = {"total_paid": total_paid, "status": status}
    if status == LoanStatus.RETURNED.value:
        updates["returned_date"] = loan.get("returned_date") or today.isoformat()
    elif current == LoanStatus.RETURNED.value:
        updates["returned_date"] = None
    return updates
