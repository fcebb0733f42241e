# =============================================================================
# app.py
# Prestatario - Streamlit entry point
# =============================================================================
from __future__ import annotations
from datetime import date

import streamlit as st

from prestatario.config import DEFAULT_CURRENCY, SUPPORTED_CURRENCIES, load_settings
from prestatario.errors import ErrorContext, PrestatarioError, handle_error, safe_execute
from prestatario.logging import setup_logging
from prestatario.offline.runtime import OfflineRuntime
from prestatario.ui import format_money, render_offline_banner, render_pending_badge, render_sync_status

# ============================================================================
# PAGE CONFIGURATION
# ============================================================================
st.set_page_config(
    page_title="Prestatario",
    page_icon="💸",
    layout="centered",
)


@st.cache_resource
def get_runtime() -> OfflineRuntime:
    """One runtime per server process, opened on first use."""
    setup_logging()
    runtime = OfflineRuntime.from_settings(load_settings())
    return runtime.open()


try:
    runtime = get_runtime()
except PrestatarioError as e:
    handle_error(e, user_message="No se pudo iniciar la aplicación")
    st.stop()

render_offline_banner(runtime.monitor)
render_sync_status(runtime.engine)

# A drain finished since this session's last run
last_epoch = st.session_state.get("sync_epoch")
if last_epoch is not None and last_epoch != runtime.sync_epoch:
    st.toast("Cambios sincronizados")
st.session_state["sync_epoch"] = runtime.sync_epoch

if runtime.pending_count and st.sidebar.button("🔄 Sincronizar ahora", use_container_width=True):
    with ErrorContext("Sincronizando cambios pendientes", show_success=True, success_message="Sincronización terminada"):
        runtime.engine.request_drain("manual")

user_id = runtime.current_user_id()
if not user_id:
    st.info("Inicia sesión para ver tus préstamos.")
    st.stop()

# ============================================================================
# PROFILE
# ============================================================================
profile_result = runtime.load_profile(user_id)
profile = profile_result.records[0] if profile_result.records else {}
currency = profile.get("currency") or DEFAULT_CURRENCY

codes = list(SUPPORTED_CURRENCIES)
selected = st.sidebar.selectbox(
    "Moneda",
    codes,
    index=codes.index(currency) if currency in codes else 0,
    format_func=lambda code: f"{code} - {SUPPORTED_CURRENCIES[code]}",
)
if selected != currency:
    result = runtime.loans.update_currency(user_id, selected)
    if result.success:
        st.rerun()
    st.sidebar.error(result.error)

# ============================================================================
# LOANS
# ============================================================================
st.title("💸 Prestatario")

status_filter = st.radio(
    "Estado",
    ["all", "active", "overdue", "returned"],
    format_func={"all": "Todos", "active": "Activos", "overdue": "Vencidos", "returned": "Devueltos"}.get,
    horizontal=True,
)
loans_result = safe_execute(
    runtime.load_loans,
    user_id,
    status_filter,
    error_message="No se pudieron cargar los préstamos",
)
if loans_result is None:
    st.stop()
loans = loans_result.records

stats = runtime.loans.dashboard_stats(loans)
col1, col2, col3 = st.columns(3)
col1.metric("Activos", stats["total_active"])
col2.metric("Por cobrar", format_money(stats["total_amount_out"], currency))
col3.metric("Vencidos", stats["overdue_count"])

if loans_result.from_cache:
    st.caption("Mostrando datos guardados en este dispositivo.")

if not loans:
    st.info("No hay préstamos todavía.")

for loan in loans:
    remaining = float(loan.get("amount") or 0) - float(loan.get("total_paid") or 0)
    label = f"{loan.get('borrower_name')} · {format_money(remaining, currency)}{render_pending_badge(loan)}"
    with st.expander(label):
        st.write(f"Prestado: {format_money(loan.get('amount'), currency)}")
        st.write(f"Pagado: {format_money(loan.get('total_paid'), currency)}")
        st.write(f"Estado: {loan.get('status')}")

        with st.form(f"payment_{loan['id']}", clear_on_submit=True):
            amount = st.number_input("Abono", min_value=0.0, step=100.0, key=f"amount_{loan['id']}")
            notes = st.text_input("Nota", key=f"notes_{loan['id']}")
            if st.form_submit_button("Registrar abono"):
                result = runtime.loans.add_payment(user_id, loan["id"], amount, notes=notes)
                if result.success:
                    st.success("Guardado sin conexión" if result.metadata.get("queued") else "Abono registrado")
                    st.rerun()
                else:
                    st.error(result.error)

with st.sidebar.expander("Deudas por persona"):
    debts = runtime.loans.debt_by_person(loans)
    if not debts.empty:
        st.dataframe(debts, hide_index=True, use_container_width=True)

query = st.sidebar.text_input("🔎 Buscar", placeholder="Persona o contacto")
if query:
    search_result = runtime.loans.search(user_id, query)
    if not search_result.data:
        st.sidebar.caption("Sin resultados")
    for hit in search_result.data or []:
        suffix = f" · {format_money(hit['amount'], currency)}" if "amount" in hit else ""
        st.sidebar.write(f"**{hit['title']}**{suffix}  \n{hit['subtitle']}")

# ============================================================================
# REPORT
# ============================================================================
with st.expander("📊 Reporte de los últimos 6 meses"):
    report_result = runtime.loans.report(user_id)
    if report_result.success:
        report = report_result.data
        col1, col2, col3 = st.columns(3)
        col1.metric("Prestado", format_money(report["total_lent"], currency))
        col2.metric("Cobrado", format_money(report["total_collected"], currency))
        col3.metric("Balance", format_money(report["balance"], currency))
        st.bar_chart(report["monthly"].set_index("label")[["lent", "collected"]])
    else:
        st.error(report_result.error)

# ============================================================================
# NEW LOAN
# ============================================================================
st.subheader("Nuevo préstamo")
with st.form("new_loan", clear_on_submit=True):
    borrower = st.text_input("Persona")
    amount = st.number_input("Monto", min_value=0.0, step=100.0)
    loan_date = st.date_input("Fecha", value=date.today())
    due_date = st.date_input("Vence", value=None)
    description = st.text_area("Descripción")
    if st.form_submit_button("Guardar"):
        result = runtime.loans.create_loan(
            user_id,
            borrower,
            amount,
            loan_date,
            due_date=due_date,
            description=description,
        )
        if result.success:
            st.success("Guardado sin conexión" if result.metadata.get("queued") else "Préstamo creado")
            st.rerun()
        else:
            st.error(result.error)
