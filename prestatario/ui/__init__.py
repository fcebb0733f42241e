# =============================================================================
# prestatario/ui/__init__.py
# Streamlit UI Components
# =============================================================================

from .components import (
    format_money,
    render_offline_banner,
    render_sync_status,
    render_pending_badge,
)

__all__ = [
    "format_money",
    "render_offline_banner",
    "render_sync_status",
    "render_pending_badge",
]
