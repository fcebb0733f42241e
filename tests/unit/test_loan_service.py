# =============================================================================
# tests/unit/test_loan_service.py
# Unit Tests for LoanService
# =============================================================================

from datetime import date

import pytest

from prestatario.offline.sync_engine import SyncEngine
from prestatario.services.loan_service import LoanService

USER = "user-1"


@pytest.fixture
def service(fake_remote, engine, monitor, store):
    return LoanService(fake_remote, engine, monitor, store)


@pytest.fixture
def offline_service(fake_remote, store, offline_monitor):
    engine = SyncEngine(store, fake_remote, offline_monitor)
    engine.start()
    yield LoanService(fake_remote, engine, offline_monitor, store)
    engine.stop()


class TestCreateLoan:
    """Test loan creation"""

    def test_online_create(self, service, fake_remote, store):
        result = service.create_loan(USER, "  Ana ", 1500, date(2024, 3, 1), due_date="2024-04-01")

        assert result.success
        assert result.metadata["queued"] is False
        loan = fake_remote.loans[result.data["id"]]
        assert loan["borrower_name"] == "Ana"
        assert loan["status"] == "active"
        assert loan["total_paid"] == 0.0
        assert loan["loan_date"] == "2024-03-01"
        assert loan["due_date"] == "2024-04-01"
        assert store.get("loans", loan["id"]) is not None

    def test_offline_create_is_queued(self, offline_service, fake_remote, store):
        result = offline_service.create_loan(USER, "Ana", 1500, "2024-03-01")

        assert result.success
        assert result.metadata["queued"] is True
        assert fake_remote.loans == {}
        assert store.pending_count() == 1

    @pytest.mark.parametrize("name,amount,loan_date", [
        ("", 100, "2024-03-01"),
        ("Ana", 0, "2024-03-01"),
        ("Ana", -5, "2024-03-01"),
        ("Ana", 100, None),
        ("Ana", 100, "01/03/2024"),
    ])
    def test_validation(self, service, fake_remote, name, amount, loan_date):
        result = service.create_loan(USER, name, amount, loan_date)

        assert not result.success
        assert result.error_code == "DATA_001"
        assert fake_remote.calls == []

    def test_requires_user(self, service):
        result = service.create_loan(None, "Ana", 100, "2024-03-01")

        assert not result.success
        assert result.error_code == "DATA_001"


class TestPayments:
    """Test payment registration and deletion"""

    def test_add_payment_online_updates_loan(self, service, fake_remote, store, loan_factory):
        fake_remote.loans["loan-1"] = loan_factory(amount=1000.0)

        result = service.add_payment(USER, "loan-1", 400, notes="first")

        assert result.success
        assert result.metadata["queued"] is False
        assert fake_remote.loans["loan-1"]["total_paid"] == 400.0
        assert store.get("loans", "loan-1")["total_paid"] == 400.0
        assert store.get("payments", result.data["id"])["notes"] == "first"

    def test_add_payment_rejects_non_positive(self, service):
        result = service.add_payment(USER, "loan-1", 0)
        assert result.error_code == "DATA_001"

    def test_add_payment_unknown_loan_rejected(self, service):
        result = service.add_payment(USER, "missing", 50)

        assert not result.success
        assert result.error_code == "REMOTE_001"

    def test_add_payment_offline_is_queued(self, offline_service, store):
        result = offline_service.add_payment(USER, "loan-1", 50)

        assert result.metadata["queued"] is True
        assert store.pending_count() == 1

    def test_delete_payment_reverts_returned_loan(self, service, fake_remote, loan_factory, payment_factory):
        fake_remote.loans["loan-1"] = loan_factory(
            amount=300.0, total_paid=300.0, status="returned", returned_date="2024-02-01"
        )
        fake_remote.payments["p1"] = payment_factory(id="p1", amount=200.0)
        fake_remote.payments["p2"] = payment_factory(id="p2", amount=100.0)

        result = service.delete_payment(USER, "loan-1", "p2")

        assert result.success
        loan = fake_remote.loans["loan-1"]
        assert loan["total_paid"] == 200.0
        assert loan["status"] == "active"
        assert loan["returned_date"] is None

    def test_delete_payment_needs_connection(self, offline_service, fake_remote):
        result = offline_service.delete_payment(USER, "loan-1", "p1")

        assert not result.success
        assert result.error_code == "NET_001"
        assert fake_remote.calls == []


class TestLoanMaintenance:
    """Test online-only loan actions"""

    def test_mark_returned(self, service, fake_remote, loan_factory):
        fake_remote.loans["loan-1"] = loan_factory()

        result = service.mark_returned(USER, "loan-1")

        assert result.success
        assert result.data["status"] == "returned"
        assert result.data["returned_date"] == date.today().isoformat()

    def test_partial_payment_after_mark_returned_stays_returned(self, service, fake_remote, loan_factory):
        fake_remote.loans["loan-1"] = loan_factory(amount=1000.0)
        service.mark_returned(USER, "loan-1")

        result = service.add_payment(USER, "loan-1", 100)

        assert result.success
        loan = fake_remote.loans["loan-1"]
        assert loan["total_paid"] == 100.0
        assert loan["status"] == "returned"
        assert loan["returned_date"] == date.today().isoformat()

    def test_delete_loan(self, service, fake_remote, loan_factory):
        fake_remote.loans["loan-1"] = loan_factory()

        assert service.delete_loan(USER, "loan-1").success
        assert fake_remote.loans == {}

    def test_delete_loan_offline(self, offline_service):
        assert offline_service.delete_loan(USER, "loan-1").error_code == "NET_001"


class TestContactsAndProfile:
    """Test contact CRUD and currency"""

    def test_contact_lifecycle(self, service, fake_remote):
        created = service.create_contact(USER, "Luis", phone="809-555-0101")
        contact_id = created.data["id"]

        assert fake_remote.contacts[contact_id]["name"] == "Luis"
        assert service.update_contact(USER, contact_id, "Luis P.").success
        assert fake_remote.contacts[contact_id]["name"] == "Luis P."
        assert service.delete_contact(USER, contact_id).success
        assert fake_remote.contacts == {}

    def test_contact_needs_name(self, service):
        assert service.create_contact(USER, "   ").error_code == "DATA_001"

    def test_contact_offline(self, offline_service):
        assert offline_service.create_contact(USER, "Luis").error_code == "NET_001"

    def test_update_currency(self, service, fake_remote):
        fake_remote.profiles[USER] = {"id": USER, "currency": "DOP"}

        result = service.update_currency(USER, "USD")

        assert result.success
        assert fake_remote.profiles[USER]["currency"] == "USD"

    def test_unsupported_currency(self, service):
        result = service.update_currency(USER, "EUR")

        assert result.error_code == "DATA_001"

    def test_update_currency_offline_is_queued(self, offline_service):
        result = offline_service.update_currency(USER, "USD")
        assert result.metadata["queued"] is True


class TestReports:
    """Test pandas-backed summaries"""

    def test_dashboard_stats(self, service, sample_loans):
        stats = service.dashboard_stats(sample_loans)

        assert stats == {
            "total_active": 1,
            "total_amount_out": 1250.0,
            "overdue_count": 1,
            "total_loans": 3,
        }

    def test_dashboard_stats_empty(self, service):
        stats = service.dashboard_stats([])
        assert stats["total_loans"] == 0
        assert stats["total_amount_out"] == 0.0

    def test_debt_by_person_groups_case_insensitively(self, service, sample_loans):
        df = service.debt_by_person(sample_loans)

        assert list(df["name"]) == ["Ana", "Luis"]
        assert list(df["total"]) == [1300.0, 500.0]
        assert list(df["count"]) == [2, 1]

    def test_debt_by_person_empty(self, service):
        assert service.debt_by_person([]).empty

    def test_contact_summary(self, service, sample_loans):
        summary = service.contact_summary(sample_loans)

        assert summary["total_borrowed"] == 1800.0
        assert summary["total_paid"] == 550.0
        assert summary["balance"] == 1250.0
        assert summary["active_loans"] == 2

    def test_monthly_report(self, service, loan_factory, payment_factory):
        loans = [
            loan_factory(id="a", amount=1000.0, loan_date="2024-01-10"),
            loan_factory(id="b", amount=500.0, loan_date="2024-03-02"),
            loan_factory(id="c", amount=200.0, loan_date="2023-06-01"),
        ]
        payments = [
            payment_factory(id="p1", amount=250.0, payment_date="2024-02-01"),
            payment_factory(id="p2", amount="50", payment_date="2024-03-20"),
        ]

        report = service.monthly_report(loans, payments, today=date(2024, 3, 15))
        monthly = report["monthly"]

        assert list(monthly["month"]) == ["2023-10", "2023-11", "2023-12", "2024-01", "2024-02", "2024-03"]
        assert list(monthly["label"]) == ["oct", "nov", "dic", "ene", "feb", "mar"]
        assert list(monthly["lent"]) == [0.0, 0.0, 0.0, 1000.0, 0.0, 500.0]
        assert list(monthly["collected"]) == [0.0, 0.0, 0.0, 0.0, 250.0, 50.0]
        assert report["total_lent"] == 1700.0
        assert report["total_collected"] == 300.0
        assert report["balance"] == 1400.0

    def test_monthly_report_empty(self, service):
        report = service.monthly_report([], [], today=date(2024, 3, 15))

        assert len(report["monthly"]) == 6
        assert report["monthly"]["lent"].sum() == 0.0
        assert report["balance"] == 0.0

    def test_report_falls_back_to_cache(self, service, fake_remote, store, loan_factory, payment_factory):
        store.put("loans", loan_factory(amount=800.0, loan_date="2024-03-01"))
        store.put("payments", payment_factory(amount=300.0, payment_date="2024-03-05"))
        store.put("payments", payment_factory(id="pay-x", user_id="user-2", amount=999.0))
        fake_remote.offline = True

        result = service.report(USER, today=date(2024, 3, 15))

        assert result.success
        assert result.metadata["source"] == "cache"
        assert result.data["total_lent"] == 800.0
        assert result.data["total_collected"] == 300.0


class TestSearch:
    """Test borrower and contact search"""

    @pytest.fixture
    def records(self, fake_remote, store, loan_factory):
        loans = [
            loan_factory(id="l1", borrower_name="Ana Pérez", loan_date="2024-03-01"),
            loan_factory(id="l2", borrower_name="Luis", status="returned"),
            loan_factory(id="l3", borrower_name="Mariana", status="overdue"),
            loan_factory(id="l4", borrower_name="Ana", user_id="user-2"),
        ]
        contacts = [
            {"id": "c1", "user_id": USER, "name": "ANA", "phone": "809-555-0101"},
            {"id": "c2", "user_id": USER, "name": "Pedro", "phone": None},
        ]
        for loan in loans:
            fake_remote.loans[loan["id"]] = loan
        for contact in contacts:
            fake_remote.contacts[contact["id"]] = contact
        store.put_many("loans", loans)
        store.put_many("contacts", contacts)

    def test_remote_search_ignores_case(self, service, records):
        result = service.search(USER, "ana")

        assert result.metadata["source"] == "remote"
        assert [(h["type"], h["id"]) for h in result.data] == [
            ("loan", "l1"), ("loan", "l3"), ("contact", "c1"),
        ]
        assert result.data[0]["subtitle"] == "Préstamo del 01/03/2024 · Activo"
        assert result.data[1]["subtitle"].endswith("Vencido")
        assert result.data[2]["subtitle"] == "📞 809-555-0101"

    def test_offline_search_uses_cache(self, service, fake_remote, records):
        fake_remote.offline = True

        result = service.search(USER, "ANA")

        assert result.metadata["source"] == "cache"
        assert sorted(h["id"] for h in result.data) == ["c1", "l1", "l3"]

    def test_contact_without_phone(self, service, records):
        hit = service.search(USER, "ped").data[0]
        assert hit["subtitle"] == "Sin teléfono"

    def test_limit_applies_per_type(self, service, fake_remote, loan_factory):
        for i in range(7):
            fake_remote.loans[f"x{i}"] = loan_factory(id=f"x{i}", borrower_name=f"Ana {i}")

        assert len(service.search(USER, "ana").data) == 5

    def test_blank_query_finds_nothing(self, service, records):
        assert service.search(USER, "   ").data == []
