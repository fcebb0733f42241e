# =============================================================================
# prestatario/services/loan_service.py
# Loan Service - Writes, Reports and Search for Loans, Payments, Contacts
# =============================================================================

from __future__ import annotations
import uuid
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

import pandas as pd

from .base_service import BaseService, ServiceResult
from prestatario.config import SUPPORTED_CURRENCIES
from prestatario.domain.loans import recompute_loan
from prestatario.domain.models import LoanStatus, OperationKind
from prestatario.errors import (
    DataValidationError,
    LocalStorageError,
    RemoteUnreachableError,
)
from prestatario.offline.connection_manager import ConnectionMonitor
from prestatario.offline.local_store import LocalStore
from prestatario.offline.sync_engine import SyncEngine

DateLike = Union[date, str, None]

SEARCH_LIMIT = 5
REPORT_MONTHS = 6

MONTH_LABELS = ["ene", "feb", "mar", "abr", "may", "jun", "jul", "ago", "sep", "oct", "nov", "dic"]
STATUS_LABELS = {
    LoanStatus.ACTIVE.value: "Activo",
    LoanStatus.OVERDUE.value: "Vencido",
    LoanStatus.RETURNED.value: "Devuelto",
}


def _iso_date(value: DateLike) -> Optional[str]:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value.isoformat()
    try:
        return date.fromisoformat(str(value)).isoformat()
    except ValueError:
        raise DataValidationError("Invalid date", expected="YYYY-MM-DD", actual=str(value))


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _display_date(value: Any) -> str:
    try:
        return date.fromisoformat(str(value)[:10]).strftime("%d/%m/%Y")
    except ValueError:
        return ""


class LoanService(BaseService):
    """
    Write operations and reports behind the loan screens.

    Creating loans, adding payments and changing the currency work offline
    (they go through the SyncEngine). Everything else needs a connection.

    Usage:
        service = LoanService(remote, engine, monitor, store)
        result = service.create_loan(user_id, "Ana", 500, date.today())
        if result.success and result.metadata["queued"]:
            st.info("Saved offline, will sync later")
    """

    def __init__(
        self,
        remote,
        engine: SyncEngine,
        monitor: ConnectionMonitor,
        store: Optional[LocalStore] = None,
    ):
        super().__init__()
        self.remote = remote
        self.engine = engine
        self.monitor = monitor
        self.store = store

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _require_user(self, user_id: Optional[str]) -> str:
        if not user_id:
            raise DataValidationError("Not authenticated", field="user_id")
        return user_id

    def _require_online(self, action: str) -> None:
        if self.monitor.is_offline:
            raise RemoteUnreachableError(f"{action} needs an internet connection", operation=action)

    def _mirror(self, collection: str, record: Optional[Dict[str, Any]]) -> None:
        if self.store is None or not record:
            return
        try:
            self.store.put(collection, record)
        except LocalStorageError as e:
            self.logger.warning(f"Could not cache {collection} record: {e.message}")

    def _refresh_loan(self, user_id: str, loan_id: str) -> Dict[str, Any]:
        """Recompute a loan's totals from its remote payments."""
        loan = self.remote.get_loan(user_id, loan_id)
        if loan is None:
            raise DataValidationError("Loan not found", field="loan_id", actual=loan_id)
        payments = self.remote.list_payments(user_id, loan_id)
        updates = {**recompute_loan(loan, payments, allow_reopen=True), "updated_at": _now()}
        self.remote.update_loan(user_id, loan_id, updates)
        loan = {**loan, **updates}
        self._mirror("loans", loan)
        return loan

    # =========================================================================
    # LOANS
    # =========================================================================

    def create_loan(
        self,
        user_id: Optional[str],
        borrower_name: str,
        amount: float,
        loan_date: DateLike,
        due_date: DateLike = None,
        contact_id: Optional[str] = None,
        description: Optional[str] = None,
        interest_rate: float = 0,
        installments: int = 1,
        tags: Optional[List[str]] = None,
    ) -> ServiceResult:
        """Create a loan (queued when offline)."""
        def _create():
            owner = self._require_user(user_id)
            if not borrower_name or not borrower_name.strip():
                raise DataValidationError("Borrower name is required", field="borrower_name")
            if not amount or float(amount) <= 0:
                raise DataValidationError("Amount must be greater than zero", field="amount")
            if not loan_date:
                raise DataValidationError("Loan date is required", field="loan_date")

            now = _now()
            record = {
                "id": str(uuid.uuid4()),
                "user_id": owner,
                "contact_id": contact_id or None,
                "borrower_name": borrower_name.strip(),
                "amount": float(amount),
                "total_paid": 0.0,
                "description": description or None,
                "loan_date": _iso_date(loan_date),
                "due_date": _iso_date(due_date),
                "returned_date": None,
                "status": LoanStatus.ACTIVE.value,
                "interest_rate": interest_rate,
                "installments": installments,
                "tags": list(tags or []),
                "created_at": now,
                "updated_at": now,
            }
            outcome = self.engine.submit(OperationKind.CREATE_LOAN, record)
            if not outcome.queued:
                self._mirror("loans", record)
            return ServiceResult.ok(record, metadata={"queued": outcome.queued})

        return self.safe_execute("Creating loan", _create)

    def mark_returned(self, user_id: Optional[str], loan_id: str) -> ServiceResult:
        def _mark():
            owner = self._require_user(user_id)
            self._require_online("Marking a loan as returned")
            updates = {
                "status": LoanStatus.RETURNED.value,
                "returned_date": date.today().isoformat(),
                "updated_at": _now(),
            }
            self.remote.update_loan(owner, loan_id, updates)
            loan = self.remote.get_loan(owner, loan_id)
            self._mirror("loans", loan)
            return loan

        return self.safe_execute("Marking loan as returned", _mark)

    def delete_loan(self, user_id: Optional[str], loan_id: str) -> ServiceResult:
        def _delete():
            owner = self._require_user(user_id)
            self._require_online("Deleting a loan")
            self.remote.delete_loan(owner, loan_id)
            return loan_id

        return self.safe_execute("Deleting loan", _delete)

    # =========================================================================
    # PAYMENTS
    # =========================================================================

    def add_payment(
        self,
        user_id: Optional[str],
        loan_id: str,
        amount: float,
        notes: Optional[str] = None,
        payment_date: DateLike = None,
    ) -> ServiceResult:
        """Register a repayment (queued when offline)."""
        def _add():
            owner = self._require_user(user_id)
            if not amount or float(amount) <= 0:
                raise DataValidationError("Payment amount must be greater than zero", field="amount")

            record = {
                "id": str(uuid.uuid4()),
                "loan_id": loan_id,
                "user_id": owner,
                "amount": float(amount),
                "payment_date": _iso_date(payment_date) or date.today().isoformat(),
                "notes": notes or None,
                "created_at": _now(),
            }
            outcome = self.engine.submit(OperationKind.ADD_PAYMENT, record)
            if not outcome.queued:
                self._mirror("payments", record)
                self._mirror("loans", outcome.result)
            return ServiceResult.ok(record, metadata={"queued": outcome.queued})

        return self.safe_execute("Adding payment", _add)

    def delete_payment(self, user_id: Optional[str], loan_id: str, payment_id: str) -> ServiceResult:
        """Delete a payment and recompute the loan (may revert it to active)."""
        def _delete():
            owner = self._require_user(user_id)
            self._require_online("Deleting a payment")
            self.remote.delete_payment(owner, payment_id)
            return self._refresh_loan(owner, loan_id)

        return self.safe_execute("Deleting payment", _delete)

    # =========================================================================
    # CONTACTS
    # =========================================================================

    def create_contact(
        self,
        user_id: Optional[str],
        name: str,
        phone: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> ServiceResult:
        def _create():
            owner = self._require_user(user_id)
            if not name or not name.strip():
                raise DataValidationError("Name is required", field="name")
            self._require_online("Creating a contact")
            now = _now()
            record = {
                "id": str(uuid.uuid4()),
                "user_id": owner,
                "name": name.strip(),
                "phone": phone or None,
                "notes": notes or None,
                "created_at": now,
                "updated_at": now,
            }
            self.remote.insert_contact(record)
            self._mirror("contacts", record)
            return record

        return self.safe_execute("Creating contact", _create)

    def update_contact(
        self,
        user_id: Optional[str],
        contact_id: str,
        name: str,
        phone: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> ServiceResult:
        def _update():
            owner = self._require_user(user_id)
            if not name or not name.strip():
                raise DataValidationError("Name is required", field="name")
            self._require_online("Updating a contact")
            updates = {
                "name": name.strip(),
                "phone": phone or None,
                "notes": notes or None,
                "updated_at": _now(),
            }
            self.remote.update_contact(owner, contact_id, updates)
            return {"id": contact_id, **updates}

        return self.safe_execute("Updating contact", _update)

    def delete_contact(self, user_id: Optional[str], contact_id: str) -> ServiceResult:
        def _delete():
            owner = self._require_user(user_id)
            self._require_online("Deleting a contact")
            self.remote.delete_contact(owner, contact_id)
            return contact_id

        return self.safe_execute("Deleting contact", _delete)

    # =========================================================================
    # PROFILE
    # =========================================================================

    def update_currency(self, user_id: Optional[str], currency: str) -> ServiceResult:
        """Change the preferred currency (queued when offline)."""
        def _update():
            owner = self._require_user(user_id)
            if currency not in SUPPORTED_CURRENCIES:
                raise DataValidationError(
                    "Unsupported currency",
                    field="currency",
                    expected=", ".join(SUPPORTED_CURRENCIES),
                    actual=currency,
                )
            payload = {"user_id": owner, "currency": currency}
            outcome = self.engine.submit(OperationKind.UPDATE_PROFILE, payload)
            return ServiceResult.ok(payload, metadata={"queued": outcome.queued})

        return self.safe_execute("Updating currency", _update)

    # =========================================================================
    # REPORTS
    # =========================================================================

    @staticmethod
    def _loans_frame(loans: List[Dict[str, Any]]) -> pd.DataFrame:
        df = pd.DataFrame(loans)
        if df.empty:
            return pd.DataFrame(columns=["borrower_name", "amount", "total_paid", "status"])
        for column in ("amount", "total_paid"):
            if column not in df.columns:
                df[column] = 0.0
            df[column] = pd.to_numeric(df[column], errors="coerce").fillna(0.0)
        if "status" not in df.columns:
            df["status"] = LoanStatus.ACTIVE.value
        return df

    def dashboard_stats(self, loans: List[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Headline numbers for the dashboard.

        Returns:
            Dict with total_active, total_amount_out (amount - total_paid over
            active and overdue loans), overdue_count and total_loans
        """
        df = self._loans_frame(loans)
        active = df[df["status"] == LoanStatus.ACTIVE.value]
        overdue = df[df["status"] == LoanStatus.OVERDUE.value]
        outstanding = pd.concat([active, overdue])

        return {
            "total_active": int(len(active)),
            "total_amount_out": float((outstanding["amount"] - outstanding["total_paid"]).sum()),
            "overdue_count": int(len(overdue)),
            "total_loans": int(len(df)),
        }

    def debt_by_person(self, loans: List[Dict[str, Any]]) -> pd.DataFrame:
        """Total lent per borrower (case-insensitive), largest first."""
        df = self._loans_frame(loans)
        if df.empty:
            return pd.DataFrame(columns=["name", "total", "count"])

        df["key"] = df["borrower_name"].str.lower()
        grouped = (
            df.groupby("key", sort=False)
            .agg(name=("borrower_name", "first"), total=("amount", "sum"), count=("amount", "size"))
            .sort_values("total", ascending=False, kind="stable")
            .reset_index(drop=True)
        )
        return grouped

    def contact_summary(self, loans: List[Dict[str, Any]]) -> Dict[str, Any]:
        """Borrowed/paid/balance figures for one contact's loans."""
        df = self._loans_frame(loans)
        total_borrowed = float(df["amount"].sum())
        total_paid = float(df["total_paid"].sum())
        active_loans = int(df["status"].isin([LoanStatus.ACTIVE.value, LoanStatus.OVERDUE.value]).sum())
        return {
            "total_borrowed": total_borrowed,
            "total_paid": total_paid,
            "active_loans": active_loans,
            "balance": total_borrowed - total_paid,
        }

    @staticmethod
    def _total(records: List[Dict[str, Any]]) -> float:
        df = pd.DataFrame(records)
        if df.empty or "amount" not in df.columns:
            return 0.0
        return float(pd.to_numeric(df["amount"], errors="coerce").fillna(0.0).sum())

    @staticmethod
    def _sum_by_month(records: List[Dict[str, Any]], date_column: str) -> pd.Series:
        df = pd.DataFrame(records)
        if df.empty or date_column not in df.columns or "amount" not in df.columns:
            return pd.Series(dtype=float)
        amounts = pd.to_numeric(df["amount"], errors="coerce").fillna(0.0)
        return amounts.groupby(df[date_column].astype(str).str[:7]).sum()

    def monthly_report(
        self,
        loans: List[Dict[str, Any]],
        payments: List[Dict[str, Any]],
        today: Optional[date] = None,
        months: int = REPORT_MONTHS,
    ) -> Dict[str, Any]:
        """
        Amounts lent and collected per month over the last `months` months.

        Loans count in the month of their loan_date, payments in the month of
        their payment_date. The totals cover every record, not just the window.

        Returns:
            Dict with "monthly" (DataFrame of month, label, lent, collected,
            oldest month first), total_lent, total_collected and balance
        """
        today = today or date.today()
        periods = pd.period_range(end=pd.Timestamp(today).to_period("M"), periods=months, freq="M")
        keys = [period.strftime("%Y-%m") for period in periods]

        lent = self._sum_by_month(loans, "loan_date")
        collected = self._sum_by_month(payments, "payment_date")
        monthly = pd.DataFrame({
            "month": keys,
            "label": [MONTH_LABELS[period.month - 1] for period in periods],
            "lent": [float(lent.get(key, 0.0)) for key in keys],
            "collected": [float(collected.get(key, 0.0)) for key in keys],
        })

        total_lent = self._total(loans)
        total_collected = self._total(payments)
        return {
            "monthly": monthly,
            "total_lent": total_lent,
            "total_collected": total_collected,
            "balance": total_lent - total_collected,
        }

    def _cached_report_data(self, user_id: str) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
        if self.store is None:
            return [], []
        try:
            loans = self.store.get_by_index("loans", "by-user", user_id)
            payments = [p for p in self.store.get_all("payments") if p.get("user_id") == user_id]
        except LocalStorageError as e:
            self.logger.warning(f"Cache unavailable for the report: {e.message}")
            return [], []
        return loans, payments

    def report(self, user_id: Optional[str], today: Optional[date] = None) -> ServiceResult:
        """Monthly report of a user's loans and payments (cached data when offline)."""
        def _report():
            owner = self._require_user(user_id)
            try:
                loans = self.remote.list_loans(owner)
                payments = self.remote.list_user_payments(owner)
                source = "remote"
            except RemoteUnreachableError as e:
                self.logger.info(f"Building report from cache: {e.message}")
                loans, payments = self._cached_report_data(owner)
                source = "cache"
            return ServiceResult.ok(
                self.monthly_report(loans, payments, today=today),
                metadata={"source": source},
            )

        return self.safe_execute("Building report", _report)

    # =========================================================================
    # SEARCH
    # =========================================================================

    @staticmethod
    def _loan_hit(loan: Dict[str, Any]) -> Dict[str, Any]:
        status = STATUS_LABELS.get(loan.get("status"), STATUS_LABELS[LoanStatus.ACTIVE.value])
        return {
            "type": "loan",
            "id": loan.get("id"),
            "title": loan.get("borrower_name"),
            "subtitle": f"Préstamo del {_display_date(loan.get('loan_date'))} · {status}",
            "amount": float(loan.get("amount") or 0),
        }

    @staticmethod
    def _contact_hit(contact: Dict[str, Any]) -> Dict[str, Any]:
        phone = contact.get("phone")
        return {
            "type": "contact",
            "id": contact.get("id"),
            "title": contact.get("name"),
            "subtitle": f"📞 {phone}" if phone else "Sin teléfono",
        }

    def _search_cached(
        self, user_id: str, term: str, limit: int
    ) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
        if self.store is None:
            return [], []
        needle = term.lower()
        try:
            loans = self.store.get_by_index("loans", "by-user", user_id)
            contacts = self.store.get_by_index("contacts", "by-user", user_id)
        except LocalStorageError as e:
            self.logger.warning(f"Cache unavailable for search: {e.message}")
            return [], []
        loans = [l for l in loans if needle in (l.get("borrower_name") or "").lower()]
        contacts = [c for c in contacts if needle in (c.get("name") or "").lower()]
        return loans[:limit], contacts[:limit]

    def search(self, user_id: Optional[str], query: str, limit: int = SEARCH_LIMIT) -> ServiceResult:
        """
        Find loans by borrower name and contacts by name, ignoring case.

        Supabase answers with `ilike`; when it can't be reached the cached
        collections are searched instead. A blank query finds nothing.

        Returns:
            ServiceResult with loan hits then contact hits (at most `limit`
            of each) and metadata["source"] set to "remote" or "cache"
        """
        def _search():
            owner = self._require_user(user_id)
            term = (query or "").strip()
            if not term:
                return ServiceResult.ok([], metadata={"source": "remote"})
            try:
                loans = self.remote.search_loans(owner, term, limit)
                contacts = self.remote.search_contacts(owner, term, limit)
                source = "remote"
            except RemoteUnreachableError as e:
                self.logger.info(f"Searching cached records: {e.message}")
                loans, contacts = self._search_cached(owner, term, limit)
                source = "cache"
            hits = [self._loan_hit(l) for l in loans] + [self._contact_hit(c) for c in contacts]
            return ServiceResult.ok(hits, metadata={"source": source})

        return self.safe_execute("Searching", _search)
