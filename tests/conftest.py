# =============================================================================
# tests/conftest.py
# Pytest Configuration and Fixtures
# =============================================================================

import copy
import pytest
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

from prestatario.config import Settings
from prestatario.errors import RemoteRejectedError, RemoteUnreachableError
from prestatario.offline.connection_manager import ConnectionMonitor
from prestatario.offline.local_store import LocalStore
from prestatario.offline.sync_engine import SyncEngine


USER_ID = "user-1"


# =============================================================================
# SAMPLE DATA FIXTURES
# =============================================================================

def make_loan(**overrides) -> Dict[str, Any]:
    """Build a loan record shaped like a Supabase row"""
    loan = {
        "id": "loan-1",
        "user_id": USER_ID,
        "contact_id": None,
        "borrower_name": "Ana",
        "amount": 1000.0,
        "total_paid": 0.0,
        "description": None,
        "loan_date": "2024-01-10",
        "due_date": None,
        "returned_date": None,
        "status": "active",
        "interest_rate": 0,
        "installments": 1,
        "tags": [],
        "created_at": "2024-01-10T10:00:00+00:00",
        "updated_at": "2024-01-10T10:00:00+00:00",
    }
    loan.update(overrides)
    return loan


def make_payment(**overrides) -> Dict[str, Any]:
    """Build a loan_payments record"""
    payment = {
        "id": "pay-1",
        "loan_id": "loan-1",
        "user_id": USER_ID,
        "amount": 250.0,
        "payment_date": "2024-02-01",
        "notes": None,
        "created_at": "2024-02-01T09:00:00+00:00",
    }
    payment.update(overrides)
    return payment


@pytest.fixture
def sample_loans() -> List[Dict[str, Any]]:
    """Three loans of one user, oldest first"""
    return [
        make_loan(id="loan-1", borrower_name="Ana", amount=1000.0, total_paid=250.0,
                  created_at="2024-01-10T10:00:00+00:00"),
        make_loan(id="loan-2", borrower_name="Luis", amount=500.0, status="overdue",
                  created_at="2024-01-11T10:00:00+00:00"),
        make_loan(id="loan-3", borrower_name="ana", amount=300.0, total_paid=300.0,
                  status="returned", returned_date="2024-01-20",
                  created_at="2024-01-12T10:00:00+00:00"),
    ]


# =============================================================================
# FAKE REMOTE STORE
# =============================================================================

class FakeRemoteStore:
    """
    In-memory stand-in for RemoteStore with the same method names.

    `offline = True` makes every call fail at the transport level;
    `reject` holds operation names the backend refuses.
    """

    def __init__(self, monitor: Optional[ConnectionMonitor] = None, user_id: Optional[str] = USER_ID):
        self.monitor = monitor
        self.user_id = user_id
        self.loans: Dict[str, Dict[str, Any]] = {}
        self.contacts: Dict[str, Dict[str, Any]] = {}
        self.payments: Dict[str, Dict[str, Any]] = {}
        self.profiles: Dict[str, Dict[str, Any]] = {}
        self.offline = False
        self.reject = set()
        self.calls: List[str] = []

    def _call(self, operation: str) -> None:
        self.calls.append(operation)
        if self.offline:
            if self.monitor is not None:
                self.monitor.mark_offline("connection refused")
            raise RemoteUnreachableError(f"Backend unreachable during {operation}", operation=operation)
        if operation in self.reject:
            raise RemoteRejectedError("Rejected by backend", operation=operation)
        if self.monitor is not None:
            self.monitor.mark_online()

    def current_user_id(self) -> Optional[str]:
        return self.user_id

    # Loans
    def list_loans(self, user_id, status=None):
        self._call("list_loans")
        rows = [l for l in self.loans.values() if l["user_id"] == user_id]
        if status and status != "all":
            rows = [l for l in rows if l["status"] == status]
        rows.sort(key=lambda l: l["created_at"], reverse=True)
        return copy.deepcopy(rows)

    def get_loan(self, user_id, loan_id):
        self._call("get_loan")
        loan = self.loans.get(loan_id)
        if loan is None or loan["user_id"] != user_id:
            return None
        return copy.deepcopy(loan)

    def insert_loan(self, record):
        self._call("insert_loan")
        if record["id"] not in self.loans:
            self.loans[record["id"]] = copy.deepcopy(record)
        return [copy.deepcopy(self.loans[record["id"]])]

    def update_loan(self, user_id, loan_id, updates):
        self._call("update_loan")
        loan = self.loans.get(loan_id)
        if loan is None or loan["user_id"] != user_id:
            return []
        loan.update(copy.deepcopy(updates))
        return [copy.deepcopy(loan)]

    def delete_loan(self, user_id, loan_id):
        self._call("delete_loan")
        self.loans.pop(loan_id, None)
        for pid in [p for p, row in self.payments.items() if row["loan_id"] == loan_id]:
            del self.payments[pid]

    # Contacts
    def list_contacts(self, user_id):
        self._call("list_contacts")
        rows = [c for c in self.contacts.values() if c["user_id"] == user_id]
        return copy.deepcopy(sorted(rows, key=lambda c: c["name"]))

    def insert_contact(self, record):
        self._call("insert_contact")
        self.contacts.setdefault(record["id"], copy.deepcopy(record))
        return [copy.deepcopy(self.contacts[record["id"]])]

    def update_contact(self, user_id, contact_id, updates):
        self._call("update_contact")
        if contact_id in self.contacts:
            self.contacts[contact_id].update(updates)
        return []

    def delete_contact(self, user_id, contact_id):
        self._call("delete_contact")
        self.contacts.pop(contact_id, None)

    # Payments
    def list_payments(self, user_id, loan_id):
        self._call("list_payments")
        rows = [p for p in self.payments.values()
                if p["loan_id"] == loan_id and p["user_id"] == user_id]
        rows.sort(key=lambda p: p["created_at"], reverse=True)
        return copy.deepcopy(rows)

    def insert_payment(self, record):
        self._call("insert_payment")
        self.payments.setdefault(record["id"], copy.deepcopy(record))
        return [copy.deepcopy(self.payments[record["id"]])]

    def delete_payment(self, user_id, payment_id):
        self._call("delete_payment")
        self.payments.pop(payment_id, None)

    def list_user_payments(self, user_id):
        self._call("list_user_payments")
        return copy.deepcopy([p for p in self.payments.values() if p["user_id"] == user_id])

    # Search
    def search_loans(self, user_id, query, limit=5):
        self._call("search_loans")
        rows = [l for l in self.loans.values()
                if l["user_id"] == user_id and query.lower() in l["borrower_name"].lower()]
        return copy.deepcopy(rows[:limit])

    def search_contacts(self, user_id, query, limit=5):
        self._call("search_contacts")
        rows = [c for c in self.contacts.values()
                if c["user_id"] == user_id and query.lower() in c["name"].lower()]
        return copy.deepcopy(rows[:limit])

    # Profile
    def get_profile(self, user_id):
        self._call("get_profile")
        profile = self.profiles.get(user_id)
        return copy.deepcopy(profile) if profile else None

    def update_profile(self, user_id, updates):
        self._call("update_profile")
        if user_id in self.profiles:
            self.profiles[user_id].update(updates)
        return []


# =============================================================================
# OFFLINE LAYER FIXTURES
# =============================================================================

@pytest.fixture
def store(tmp_path):
    """Open LocalStore backed by a temporary SQLite file"""
    local_store = LocalStore(tmp_path / "prestatario.db")
    local_store.open()
    yield local_store
    local_store.close()


@pytest.fixture
def monitor():
    """ConnectionMonitor that starts online"""
    return ConnectionMonitor(initial=True)


@pytest.fixture
def offline_monitor():
    """ConnectionMonitor that starts offline"""
    return ConnectionMonitor(initial=False)


@pytest.fixture
def fake_remote():
    """Empty in-memory remote store"""
    return FakeRemoteStore()


@pytest.fixture
def engine(store, fake_remote, monitor):
    """Started SyncEngine over the temporary store"""
    sync_engine = SyncEngine(store, fake_remote, monitor)
    sync_engine.start()
    yield sync_engine
    sync_engine.stop()


@pytest.fixture
def test_settings(tmp_path):
    """Settings pointing at a temporary data directory"""
    return Settings(
        supabase_url="https://abc.supabase.co",
        supabase_key="anon-key",
        base_url="http://localhost:8501",
        data_dir=tmp_path / "local_data",
    )


# =============================================================================
# MOCK FIXTURES
# =============================================================================

@pytest.fixture
def mock_supabase():
    """
    Mock Supabase client whose query builder chains back to itself.

    Set `mock_supabase.builder.execute.return_value.data` to control rows.
    """
    builder = MagicMock()
    for method in ("select", "eq", "ilike", "order", "limit", "upsert", "update", "delete", "insert"):
        getattr(builder, method).return_value = builder
    builder.execute.return_value = MagicMock(data=[])

    mock_client = MagicMock()
    mock_client.table.return_value = builder
    mock_client.builder = builder
    return mock_client


# =============================================================================
# FACTORY FIXTURES
# =============================================================================

@pytest.fixture
def loan_factory():
    """make_loan(**overrides) as a fixture"""
    return make_loan


@pytest.fixture
def payment_factory():
    """make_payment(**overrides) as a fixture"""
    return make_payment


@pytest.fixture
def remote_factory():
    """Build a FakeRemoteStore wired to a given monitor"""
    return FakeRemoteStore
