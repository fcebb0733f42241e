# =============================================================================
# prestatario/ui/components.py
# Offline Banner and Sync Status Widgets
# =============================================================================

from typing import Any, Dict, Optional

import streamlit as st

from prestatario.config import DEFAULT_CURRENCY, SUPPORTED_CURRENCIES
from prestatario.offline.connection_manager import ConnectionMonitor
from prestatario.offline.sync_engine import SyncEngine
from prestatario.state.view_state import PENDING_FLAG

OFFLINE_MESSAGE = "Sin conexión - Mostrando datos guardados"


def format_money(amount: Any, currency: Optional[str] = None) -> str:
    """Format an amount with its currency code, e.g. 'DOP 1,250.00'."""
    code = currency if currency in SUPPORTED_CURRENCIES else DEFAULT_CURRENCY
    try:
        value = float(amount or 0)
    except (TypeError, ValueError):
        value = 0.0
    return f"{code} {value:,.2f}"


def render_offline_banner(monitor: ConnectionMonitor) -> bool:
    """
    Show the persistent offline banner while the backend is unreachable.

    Returns:
        True if the banner was shown
    """
    if not monitor.is_offline:
        return False

    st.markdown(
        f"""
        <div style='
            margin: 0 0 1rem 0;
            padding: 0.6rem 1rem;
            border-radius: 10px;
            background: rgba(234, 179, 8, 0.12);
            border: 1px solid rgba(234, 179, 8, 0.35);
            color: #a16207;
            font-weight: 600;
            text-align: center;
        '>📡 {OFFLINE_MESSAGE}</div>
        """,
        unsafe_allow_html=True,
    )
    return True


def render_sync_status(engine: SyncEngine) -> Dict[str, Any]:
    """Sidebar card with the queued-write count and last sync time."""
    status = engine.get_status_display()
    pending = status["pending_count"]

    if status["is_syncing"]:
        st.sidebar.info("🔄 Sincronizando...")
    elif pending:
        st.sidebar.warning(f"⏳ {pending} cambio(s) pendiente(s) de sincronizar")
    else:
        st.sidebar.success("✅ Todo sincronizado")

    if status["last_success"]:
        st.sidebar.caption(f"Última sincronización: {status['last_success'][:19].replace('T', ' ')}")
    if status["total_rejected"]:
        st.sidebar.caption(f"{status['total_rejected']} cambio(s) rechazado(s) por el servidor")

    return status


def render_pending_badge(record: Dict[str, Any]) -> str:
    """Label suffix for records that still wait in the queue."""
    return " ⏳ pendiente" if record.get(PENDING_FLAG) else ""
