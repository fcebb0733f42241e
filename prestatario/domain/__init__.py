# =============================================================================
# prestatario/domain/__init__.py
# Domain Records and Balance Arithmetic
# =============================================================================

from .models import (
    LoanStatus,
    OperationKind,
    Loan,
    Contact,
    Payment,
    Profile,
    QueuedOperation,
)

from .loans import (
    remaining_balance,
    derive_status,
    recompute_loan,
)

__all__ = [
    "LoanStatus",
    "OperationKind",
    "Loan",
    "Contact",
    "Payment",
    "Profile",
    "QueuedOperation",
    "remaining_balance",
    "derive_status",
    "recompute_loan",
]
