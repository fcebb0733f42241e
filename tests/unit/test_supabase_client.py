# =============================================================================
# tests/unit/test_supabase_client.py
# Unit Tests for RemoteStore and settings
# =============================================================================

import pytest
import httpx
from unittest.mock import MagicMock
from postgrest.exceptions import APIError

from prestatario.config import Settings, load_settings
from prestatario.data.supabase_client import RemoteStore, get_supabase_client
from prestatario.errors import ConfigurationError, RemoteRejectedError, RemoteUnreachableError
from prestatario.offline.connection_manager import ConnectionMonitor


class TestErrorTranslation:
    """Test how Supabase failures surface"""

    def test_success_returns_data_and_marks_online(self, mock_supabase):
        monitor = ConnectionMonitor(initial=False)
        mock_supabase.builder.execute.return_value.data = [{"id": "a"}]

        rows = RemoteStore(mock_supabase, monitor).list_contacts("user-1")

        assert rows == [{"id": "a"}]
        assert monitor.is_online

    def test_transport_error_is_unreachable(self, mock_supabase):
        monitor = ConnectionMonitor(initial=True)
        mock_supabase.builder.execute.side_effect = httpx.ConnectError("connection refused")

        with pytest.raises(RemoteUnreachableError) as exc_info:
            RemoteStore(mock_supabase, monitor).list_loans("user-1")

        assert exc_info.value.code == "NET_001"
        assert monitor.is_offline

    def test_api_error_is_rejection(self, mock_supabase):
        monitor = ConnectionMonitor(initial=True)
        mock_supabase.builder.execute.side_effect = APIError(
            {"message": "new row violates row-level security policy", "code": "42501"}
        )

        with pytest.raises(RemoteRejectedError) as exc_info:
            RemoteStore(mock_supabase, monitor).insert_loan({"id": "a"})

        assert exc_info.value.code == "REMOTE_001"
        assert exc_info.value.details["remote_code"] == "42501"
        assert monitor.is_online

    def test_works_without_monitor(self, mock_supabase):
        assert RemoteStore(mock_supabase).list_contacts("user-1") == []


class TestQueries:
    """Test the queries sent to Supabase"""

    def test_list_loans_scoped_and_filtered(self, mock_supabase):
        RemoteStore(mock_supabase).list_loans("user-1", "active")

        mock_supabase.table.assert_called_with("loans")
        mock_supabase.builder.select.assert_called_with("*, contact:contacts(*)")
        mock_supabase.builder.eq.assert_any_call("user_id", "user-1")
        mock_supabase.builder.eq.assert_any_call("status", "active")
        mock_supabase.builder.order.assert_called_with("created_at", desc=True)

    def test_list_loans_all_has_no_status_filter(self, mock_supabase):
        RemoteStore(mock_supabase).list_loans("user-1", "all")

        calls = [c.args for c in mock_supabase.builder.eq.call_args_list]
        assert ("user_id", "user-1") in calls
        assert not any(args[0] == "status" for args in calls)

    def test_inserts_are_idempotent_upserts(self, mock_supabase):
        RemoteStore(mock_supabase).insert_payment({"id": "p1"})

        mock_supabase.table.assert_called_with("loan_payments")
        mock_supabase.builder.upsert.assert_called_once_with(
            {"id": "p1"}, on_conflict="id", ignore_duplicates=True
        )

    def test_get_loan_missing_returns_none(self, mock_supabase):
        assert RemoteStore(mock_supabase).get_loan("user-1", "nope") is None

    def test_update_profile(self, mock_supabase):
        RemoteStore(mock_supabase).update_profile("user-1", {"currency": "USD"})

        mock_supabase.table.assert_called_with("profiles")
        mock_supabase.builder.update.assert_called_once_with({"currency": "USD"})
        mock_supabase.builder.eq.assert_called_with("id", "user-1")

    def test_search_loans_uses_ilike(self, mock_supabase):
        RemoteStore(mock_supabase).search_loans("user-1", "ana")

        mock_supabase.table.assert_called_with("loans")
        mock_supabase.builder.eq.assert_called_with("user_id", "user-1")
        mock_supabase.builder.ilike.assert_called_once_with("borrower_name", "%ana%")
        mock_supabase.builder.limit.assert_called_once_with(5)

    def test_search_contacts_uses_ilike(self, mock_supabase):
        RemoteStore(mock_supabase).search_contacts("user-1", "luis", limit=3)

        mock_supabase.table.assert_called_with("contacts")
        mock_supabase.builder.ilike.assert_called_once_with("name", "%luis%")
        mock_supabase.builder.limit.assert_called_once_with(3)

    def test_list_user_payments(self, mock_supabase):
        RemoteStore(mock_supabase).list_user_payments("user-1")

        mock_supabase.table.assert_called_with("loan_payments")
        mock_supabase.builder.eq.assert_called_once_with("user_id", "user-1")


class TestCurrentUser:
    """Test identity lookup"""

    def test_no_session(self, mock_supabase):
        mock_supabase.auth.get_session.return_value = None
        assert RemoteStore(mock_supabase).current_user_id() is None

    def test_session_user(self, mock_supabase):
        session = MagicMock()
        session.user.id = "user-1"
        mock_supabase.auth.get_session.return_value = session

        assert RemoteStore(mock_supabase).current_user_id() == "user-1"


class TestSettings:
    """Test configuration loading"""

    def test_secrets_take_precedence(self, monkeypatch, tmp_path):
        monkeypatch.setenv("SUPABASE_URL", "https://env.supabase.co")
        settings = load_settings({
            "supabase": {"url": "https://abc.supabase.co", "key": "k"},
            "app": {"data_dir": str(tmp_path)},
        })

        assert settings.supabase_url == "https://abc.supabase.co"
        assert settings.supabase_host == "abc.supabase.co"
        assert settings.local_db_path == tmp_path / "prestatario.db"

    def test_environment_fallback(self, monkeypatch):
        monkeypatch.setenv("SUPABASE_URL", "https://env.supabase.co")
        monkeypatch.setenv("SUPABASE_KEY", "env-key")
        monkeypatch.setenv("PRESTATARIO_BASE_URL", "https://prestatario.example.com")

        settings = load_settings({})

        assert settings.has_supabase
        assert settings.base_url == "https://prestatario.example.com"

    def test_cache_name_follows_store_version(self):
        assert Settings(store_version=3).cache_name == "prestatario-cache-v3"

    def test_missing_credentials_raise_on_client_request(self, monkeypatch):
        monkeypatch.delenv("SUPABASE_URL", raising=False)
        monkeypatch.delenv("SUPABASE_KEY", raising=False)
        settings = load_settings({})

        assert not settings.has_supabase
        with pytest.raises(ConfigurationError):
            get_supabase_client(settings)
