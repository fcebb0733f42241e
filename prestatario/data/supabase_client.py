# =============================================================================
# prestatario/data/supabase_client.py
# Supabase Client Configuration and Remote Store for Prestatario
# =============================================================================

from __future__ import annotations
from typing import Any, Callable, Dict, List, Optional

import httpx
import streamlit as st
from postgrest.exceptions import APIError
from supabase import Client, create_client

from prestatario.config import Settings
from prestatario.errors import RemoteRejectedError, RemoteUnreachableError
from prestatario.logging import get_logger
from prestatario.offline.connection_manager import ConnectionMonitor

logger = get_logger(__name__)

# Remote table names
LOANS_TABLE = "loans"
CONTACTS_TABLE = "contacts"
PAYMENTS_TABLE = "loan_payments"
PROFILES_TABLE = "profiles"

LOAN_SELECT = "*, contact:contacts(*)"


def get_supabase_client(settings: Settings) -> Client:
    """
    Create a Supabase client from settings.

    Raises:
        ConfigurationError: if URL or key are missing
    """
    url, key = settings.require_supabase()
    return create_client(url, key)


@st.cache_resource(ttl=3600)  # Cache for 1 hour, then refresh
def get_cached_supabase_client(url: str, key: str) -> Client:
    """Supabase client reused across Streamlit sessions."""
    return create_client(url, key)


class RemoteStore:
    """
    CRUD access to the Supabase tables, scoped to a user.

    Transport failures raise RemoteUnreachableError and flip the connection
    monitor offline; backend refusals raise RemoteRejectedError. Every
    successful call flips the monitor online.
    """

    def __init__(self, client: Client, monitor: Optional[ConnectionMonitor] = None):
        self.client = client
        self.monitor = monitor

    # =========================================================================
    # EXECUTION
    # =========================================================================

    def _run(self, operation: str, build: Callable[[], Any]) -> Any:
        """Execute a query builder and translate its failures."""
        try:
            response = build().execute()
        except APIError as e:
            logger.warning(f"{operation} rejected by Supabase: {e.message}")
            raise RemoteRejectedError(
                e.message or "Operation rejected",
                operation=operation,
                remote_code=e.code,
            ) from e
        except httpx.TransportError as e:
            logger.warning(f"{operation} failed, backend unreachable: {e}")
            if self.monitor is not None:
                self.monitor.mark_offline(str(e))
            raise RemoteUnreachableError(
                f"Backend unreachable during {operation}",
                operation=operation,
            ) from e

        if self.monitor is not None:
            self.monitor.mark_online()
        return response.data

    # =========================================================================
    # AUTH
    # =========================================================================

    def current_user_id(self) -> Optional[str]:
        """Id of the signed-in user, or None when there is no session."""
        try:
            session = self.client.auth.get_session()
        except Exception as e:
            logger.debug(f"No auth session available: {e}")
            return None
        if session is None or session.user is None:
            return None
        return session.user.id

    # =========================================================================
    # LOANS
    # =========================================================================

    def list_loans(self, user_id: str, status: Optional[str] = None) -> List[Dict[str, Any]]:
        """Loans of a user (newest first), with the linked contact joined in."""
        def build():
            query = (
                self.client.table(LOANS_TABLE)
                .select(LOAN_SELECT)
                .eq("user_id", user_id)
                .order("created_at", desc=True)
            )
            if status and status != "all":
                query = query.eq("status", status)
            return query

        return self._run("list_loans", build) or []

    def get_loan(self, user_id: str, loan_id: str) -> Optional[Dict[str, Any]]:
        rows = self._run(
            "get_loan",
            lambda: self.client.table(LOANS_TABLE)
            .select("*")
            .eq("id", loan_id)
            .eq("user_id", user_id)
            .limit(1),
        )
        return rows[0] if rows else None

    def insert_loan(self, record: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Insert a loan; replaying the same client id is a no-op."""
        return self._run(
            "insert_loan",
            lambda: self.client.table(LOANS_TABLE).upsert(
                record, on_conflict="id", ignore_duplicates=True
            ),
        ) or []

    def update_loan(self, user_id: str, loan_id: str, updates: Dict[str, Any]) -> List[Dict[str, Any]]:
        return self._run(
            "update_loan",
            lambda: self.client.table(LOANS_TABLE)
            .update(updates)
            .eq("id", loan_id)
            .eq("user_id", user_id),
        ) or []

    def delete_loan(self, user_id: str, loan_id: str) -> None:
        self._run(
            "delete_loan",
            lambda: self.client.table(LOANS_TABLE)
            .delete()
            .eq("id", loan_id)
            .eq("user_id", user_id),
        )

    # =========================================================================
    # CONTACTS
    # =========================================================================

    def list_contacts(self, user_id: str) -> List[Dict[str, Any]]:
        return self._run(
            "list_contacts",
            lambda: self.client.table(CONTACTS_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .order("name"),
        ) or []

    def insert_contact(self, record: Dict[str, Any]) -> List[Dict[str, Any]]:
        return self._run(
            "insert_contact",
            lambda: self.client.table(CONTACTS_TABLE).upsert(
                record, on_conflict="id", ignore_duplicates=True
            ),
        ) or []

    def update_contact(self, user_id: str, contact_id: str, updates: Dict[str, Any]) -> List[Dict[str, Any]]:
        return self._run(
            "update_contact",
            lambda: self.client.table(CONTACTS_TABLE)
            .update(updates)
            .eq("id", contact_id)
            .eq("user_id", user_id),
        ) or []

    def delete_contact(self, user_id: str, contact_id: str) -> None:
        self._run(
            "delete_contact",
            lambda: self.client.table(CONTACTS_TABLE)
            .delete()
            .eq("id", contact_id)
            .eq("user_id", user_id),
        )

    # =========================================================================
    # PAYMENTS
    # =========================================================================

    def list_payments(self, user_id: str, loan_id: str) -> List[Dict[str, Any]]:
        """Payments of one loan, newest first."""
        return self._run(
            "list_payments",
            lambda: self.client.table(PAYMENTS_TABLE)
            .select("*")
            .eq("loan_id", loan_id)
            .eq("user_id", user_id)
            .order("created_at", desc=True),
        ) or []

    def insert_payment(self, record: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Insert a payment; replaying the same client id is a no-op."""
        return self._run(
            "insert_payment",
            lambda: self.client.table(PAYMENTS_TABLE).upsert(
                record, on_conflict="id", ignore_duplicates=True
            ),
        ) or []

    def delete_payment(self, user_id: str, payment_id: str) -> None:
        self._run(
            "delete_payment",
            lambda: self.client.table(PAYMENTS_TABLE)
            .delete()
            .eq("id", payment_id)
            .eq("user_id", user_id),
        )

    def list_user_payments(self, user_id: str) -> List[Dict[str, Any]]:
        """Every payment of a user, for the monthly report."""
        return self._run(
            "list_user_payments",
            lambda: self.client.table(PAYMENTS_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .order("payment_date"),
        ) or []

    # =========================================================================
    # SEARCH
    # =========================================================================

    def search_loans(self, user_id: str, query: str, limit: int = 5) -> List[Dict[str, Any]]:
        """Loans whose borrower name contains `query`, case-insensitively."""
        return self._run(
            "search_loans",
            lambda: self.client.table(LOANS_TABLE)
            .select("id, borrower_name, amount, status, loan_date")
            .eq("user_id", user_id)
            .ilike("borrower_name", f"%{query}%")
            .limit(limit),
        ) or []

    def search_contacts(self, user_id: str, query: str, limit: int = 5) -> List[Dict[str, Any]]:
        return self._run(
            "search_contacts",
            lambda: self.client.table(CONTACTS_TABLE)
            .select("id, name, phone")
            .eq("user_id", user_id)
            .ilike("name", f"%{query}%")
            .limit(limit),
        ) or []

    # =========================================================================
    # PROFILE
    # =========================================================================

    def get_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        rows = self._run(
            "get_profile",
            lambda: self.client.table(PROFILES_TABLE).select("*").eq("id", user_id).limit(1),
        )
        return rows[0] if rows else None

    def update_profile(self, user_id: str, updates: Dict[str, Any]) -> List[Dict[str, Any]]:
        return self._run(
            "update_profile",
            lambda: self.client.table(PROFILES_TABLE).update(updates).eq("id", user_id),
        ) or []
