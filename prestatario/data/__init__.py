# =============================================================================
# prestatario/data/__init__.py
# Remote Data Access (Supabase)
# =============================================================================

from .supabase_client import (
    RemoteStore,
    get_supabase_client,
    get_cached_supabase_client,
)

__all__ = [
    "RemoteStore",
    "get_supabase_client",
    "get_cached_supabase_client",
]
