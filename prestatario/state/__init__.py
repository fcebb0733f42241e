# =============================================================================
# prestatario/state/__init__.py
# View State for Prestatario
# =============================================================================

from .view_state import (
    ConfirmedState,
    PendingOverlay,
    ViewState,
    PENDING_FLAG,
)

__all__ = [
    "ConfirmedState",
    "PendingOverlay",
    "ViewState",
    "PENDING_FLAG",
]
