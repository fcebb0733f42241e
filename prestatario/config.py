# =============================================================================
# prestatario/config.py
# Application Settings (Streamlit secrets with environment fallback)
# =============================================================================
"""
Settings for the Prestatario app.

Expected secrets in .streamlit/secrets.toml:

    [supabase]
    url = "https://your-project.supabase.co"
    key = "your-anon-key"

    [app]
    base_url = "https://prestatario.example.com"

Environment variables SUPABASE_URL, SUPABASE_KEY, PRESTATARIO_BASE_URL and
PRESTATARIO_DATA_DIR are used when secrets are not configured.
"""

from __future__ import annotations
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlparse

import streamlit as st

from prestatario.errors import ConfigurationError
from prestatario.logging import get_logger

logger = get_logger(__name__)

# Bump together with SHELL_ASSETS: the network cache deletes every other
# cache version on activation, and the local store rebuilds its collections.
STORE_VERSION = 1
CACHE_PREFIX = "prestatario-cache"

SHELL_ASSETS: Tuple[str, ...] = ("/", "/manifest.json")

SUPPORTED_CURRENCIES: Dict[str, str] = {
    "DOP": "Peso Dominicano",
    "USD": "Dólar Estadounidense",
}
DEFAULT_CURRENCY = "DOP"

DEFAULT_DATA_DIR = Path(__file__).parent.parent / "local_data"


@dataclass
class Settings:
    """Resolved application settings."""
    supabase_url: str = ""
    supabase_key: str = ""
    base_url: str = "http://localhost:8501"
    data_dir: Path = DEFAULT_DATA_DIR
    store_version: int = STORE_VERSION
    shell_assets: Tuple[str, ...] = SHELL_ASSETS
    connection_timeout: float = 5.0

    @property
    def local_db_path(self) -> Path:
        return self.data_dir / "prestatario.db"

    @property
    def network_cache_dir(self) -> Path:
        return self.data_dir / "network_cache"

    @property
    def cache_name(self) -> str:
        return f"{CACHE_PREFIX}-v{self.store_version}"

    @property
    def supabase_host(self) -> Optional[str]:
        if not self.supabase_url:
            return None
        return urlparse(self.supabase_url).hostname

    @property
    def has_supabase(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)

    def require_supabase(self) -> Tuple[str, str]:
        """Return (url, key) or raise if credentials are missing."""
        if not self.supabase_url:
            raise ConfigurationError("Supabase URL is not configured", config_key="supabase.url")
        if not self.supabase_key:
            raise ConfigurationError("Supabase key is not configured", config_key="supabase.key")
        return self.supabase_url, self.supabase_key


def _read_secrets() -> Dict[str, Any]:
    """Read Streamlit secrets, returning {} when no secrets file exists."""
    try:
        return {section: dict(values) for section, values in st.secrets.items()
                if hasattr(values, "items")}
    except Exception as e:
        # st.secrets raises when no secrets.toml is present
        logger.debug(f"Streamlit secrets not available: {e}")
        return {}


def load_settings(secrets: Optional[Dict[str, Any]] = None) -> Settings:
    """
    Build Settings from Streamlit secrets, falling back to environment variables.

    Args:
        secrets: Pre-loaded secrets mapping (mainly for tests)

    Returns:
        Settings instance
    """
    secrets = _read_secrets() if secrets is None else secrets
    supabase = secrets.get("supabase", {})
    app = secrets.get("app", {})

    data_dir = app.get("data_dir") or os.getenv("PRESTATARIO_DATA_DIR")

    settings = Settings(
        supabase_url=supabase.get("url") or os.getenv("SUPABASE_URL", ""),
        supabase_key=supabase.get("key") or os.getenv("SUPABASE_KEY", ""),
        base_url=app.get("base_url") or os.getenv("PRESTATARIO_BASE_URL", Settings.base_url),
        data_dir=Path(data_dir) if data_dir else DEFAULT_DATA_DIR,
    )

    if not settings.has_supabase:
        logger.warning("Supabase credentials not configured; running cache-only")

    return settings
