# =============================================================================
# prestatario/services/__init__.py
# Service Layer for Prestatario
# Separates business logic from UI presentation
# =============================================================================
"""
Usage Example:
-------------
    from prestatario.services import LoanService

    result = runtime.loans.create_loan(user_id, "Ana", 500, date.today())
    if result.success:
        st.success("Loan saved")
    else:
        st.error(result.error)
"""

from .base_service import BaseService, ServiceResult
from .loan_service import LoanService

__all__ = [
    "BaseService",
    "ServiceResult",
    "LoanService",
]
