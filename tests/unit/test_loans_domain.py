# =============================================================================
# tests/unit/test_loans_domain.py
# Unit Tests for balance arithmetic and record views
# =============================================================================

from datetime import date

from prestatario.domain import (
    Loan,
    LoanStatus,
    Payment,
    derive_status,
    recompute_loan,
    remaining_balance,
)

TODAY = date(2024, 3, 15)


class TestDeriveStatus:
    """Test status transitions"""

    def test_fully_paid_is_returned(self):
        assert derive_status(500.0, 500.0, "active") == "returned"
        assert derive_status(500.0, 650.0, "overdue") == "returned"

    def test_partial_keeps_current(self):
        assert derive_status(500.0, 100.0, "active") == "active"
        assert derive_status(500.0, 100.0, "overdue") == "overdue"

    def test_returned_reverts_to_active_only_on_reopen(self):
        assert derive_status(500.0, 499.99, "returned", reopen=True) == "active"
        assert derive_status(500.0, 499.99, "returned") == "returned"


class TestRecomputeLoan:
    """Test recomputation from payments"""

    def test_total_is_sum_of_payments(self, loan_factory, payment_factory):
        loan = loan_factory(amount=1000.0, total_paid=999.0)
        payments = [payment_factory(amount=100.0), payment_factory(amount="50.50")]

        updates = recompute_loan(loan, payments, today=TODAY)

        assert updates == {"total_paid": 150.5, "status": "active"}

    def test_transition_sets_returned_date(self, loan_factory, payment_factory):
        loan = loan_factory(amount=300.0)

        updates = recompute_loan(loan, [payment_factory(amount=300.0)], today=TODAY)

        assert updates["status"] == "returned"
        assert updates["returned_date"] == "2024-03-15"

    def test_existing_returned_date_kept(self, loan_factory, payment_factory):
        loan = loan_factory(amount=300.0, status="returned", returned_date="2024-02-01")

        updates = recompute_loan(loan, [payment_factory(amount=300.0)], today=TODAY)

        assert updates["returned_date"] == "2024-02-01"

    def test_reversal_clears_returned_date(self, loan_factory, payment_factory):
        loan = loan_factory(amount=300.0, total_paid=300.0, status="returned", returned_date="2024-02-01")

        updates = recompute_loan(loan, [payment_factory(amount=100.0)], today=TODAY, allow_reopen=True)

        assert updates["status"] == "active"
        assert updates["returned_date"] is None

    def test_partial_payment_keeps_returned_loan_returned(self, loan_factory, payment_factory):
        loan = loan_factory(amount=1000.0, status="returned", returned_date="2024-02-01")

        updates = recompute_loan(loan, [payment_factory(amount=100.0)], today=TODAY)

        assert updates == {"total_paid": 100.0, "status": "returned", "returned_date": "2024-02-01"}

    def test_no_payments(self, loan_factory):
        assert recompute_loan(loan_factory(), [], today=TODAY)["total_paid"] == 0


class TestRecordViews:
    """Test dataclass views over records"""

    def test_remaining_balance(self, loan_factory):
        assert remaining_balance(loan_factory(amount="1000", total_paid=None)) == 1000.0
        assert remaining_balance(loan_factory(amount=1000.0, total_paid=400.0)) == 600.0

    def test_loan_from_record(self, loan_factory):
        record = loan_factory(
            total_paid=250.0,
            status="overdue",
            contact={"id": "c1", "user_id": "user-1", "name": "Ana"},
        )

        loan = Loan.from_record(record)

        assert loan.status == LoanStatus.OVERDUE
        assert loan.remaining == 750.0
        assert loan.contact.name == "Ana"
        assert loan.to_record()["status"] == "overdue"

    def test_payment_from_record(self, payment_factory):
        payment = Payment.from_record(payment_factory(amount="75"))
        assert payment.amount == 75.0
        assert payment.to_record()["loan_id"] == "loan-1"
