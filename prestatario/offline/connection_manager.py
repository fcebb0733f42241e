# =============================================================================
# prestatario/offline/connection_manager.py
# Online/Offline Detection
# =============================================================================
"""
ConnectionMonitor - tracks whether the Supabase backend is reachable.

Features:
- Initial status from a one-shot socket check (or an explicit value)
- Event driven afterwards: the remote client reports transport
  successes/failures through mark_online()/mark_offline()
- Subscribers notified on every transition, never on repeated signals
- Subscriptions are cancellable handles so views don't leak listeners
"""

from __future__ import annotations
import socket
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional
from urllib.parse import urlparse

from prestatario.logging import get_logger

logger = get_logger(__name__)


class ConnectionStatus(Enum):
    """Connection status states."""
    ONLINE = "online"
    OFFLINE = "offline"
    UNKNOWN = "unknown"


@dataclass
class ConnectionState:
    """Current connection state with metadata."""
    status: ConnectionStatus = ConnectionStatus.UNKNOWN
    last_change: Optional[datetime] = None
    last_online: Optional[datetime] = None
    error_message: Optional[str] = None


ConnectionCallback = Callable[[ConnectionState], None]


def check_host(url: str, timeout: float = 5.0) -> bool:
    """
    Check whether the host of `url` accepts a TCP connection.

    Args:
        url: Any URL on the host to check (e.g. the Supabase project URL)
        timeout: Socket timeout in seconds

    Returns:
        True if the connection succeeded
    """
    parsed = urlparse(url)
    host = parsed.hostname
    if not host:
        return False
    port = parsed.port or (443 if parsed.scheme == "https" else 80)

    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError as e:
        logger.debug(f"Check of {host}:{port} failed: {e}")
        return False


class Subscription:
    """Handle returned by ConnectionMonitor.subscribe()."""

    def __init__(self, monitor: ConnectionMonitor, callback: ConnectionCallback):
        self._monitor = monitor
        self.callback = callback
        self.active = True

    def cancel(self) -> None:
        if self.active:
            self._monitor.unsubscribe(self.callback)
            self.active = False

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.cancel()
        return False


class ConnectionMonitor:
    """
    Online/offline signal for the rest of the app.

    Usage:
        monitor = ConnectionMonitor(check=lambda: check_host(url))
        monitor.initialize()
        with monitor.subscribe(on_change):
            ...
    """

    def __init__(
        self,
        check: Optional[Callable[[], bool]] = None,
        initial: Optional[bool] = None,
    ):
        """
        Args:
            check: One-shot connectivity check used by initialize()
            initial: Explicit starting state; skips the check when given
        """
        self._check = check
        self._state = ConnectionState()
        self._callbacks: List[ConnectionCallback] = []
        self._lock = threading.RLock()
        if initial is not None:
            self._state.status = ConnectionStatus.ONLINE if initial else ConnectionStatus.OFFLINE
            self._state.last_change = datetime.now()
            if initial:
                self._state.last_online = self._state.last_change

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def status(self) -> ConnectionStatus:
        return self._state.status

    @property
    def is_online(self) -> bool:
        return self._state.status == ConnectionStatus.ONLINE

    @property
    def is_offline(self) -> bool:
        return self._state.status == ConnectionStatus.OFFLINE

    @property
    def subscriber_count(self) -> int:
        return len(self._callbacks)

    def initialize(self) -> ConnectionState:
        """Set the starting status from the check, if it is still unknown."""
        if self._state.status != ConnectionStatus.UNKNOWN:
            return self._state

        if self._check is None:
            # Nothing to check against; assume the network until told otherwise
            self._set_status(ConnectionStatus.ONLINE)
        else:
            try:
                reachable = self._check()
            except Exception as e:
                logger.warning(f"Connectivity check failed: {e}")
                reachable = False
            self._set_status(ConnectionStatus.ONLINE if reachable else ConnectionStatus.OFFLINE)

        logger.info(f"ConnectionMonitor initialized. Status: {self._state.status.value}")
        return self._state

    def mark_online(self) -> None:
        """Platform signal: the backend answered."""
        self._set_status(ConnectionStatus.ONLINE)

    def mark_offline(self, reason: Optional[str] = None) -> None:
        """Platform signal: the backend could not be reached."""
        self._set_status(ConnectionStatus.OFFLINE, reason)

    def _set_status(self, status: ConnectionStatus, error: Optional[str] = None) -> None:
        with self._lock:
            old_status = self._state.status
            if status == ConnectionStatus.ONLINE:
                self._state.last_online = datetime.now()
                self._state.error_message = None
            elif error:
                self._state.error_message = error

            if old_status == status:
                return

            self._state.status = status
            self._state.last_change = datetime.now()
            callbacks = list(self._callbacks)

        logger.info(f"Connection status changed: {old_status.value} -> {status.value}")
        for callback in callbacks:
            try:
                callback(self._state)
            except Exception as e:
                logger.error(f"Error in connection callback: {e}", exc_info=True)

    def subscribe(self, callback: ConnectionCallback) -> Subscription:
        """
        Register a callback for status transitions.

        Returns:
            Subscription; cancel it (or leave its `with` block) on teardown
        """
        with self._lock:
            if callback not in self._callbacks:
                self._callbacks.append(callback)
        return Subscription(self, callback)

    def unsubscribe(self, callback: ConnectionCallback) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    def get_status_display(self) -> dict:
        """Get status information for UI display."""
        return {
            "status": self._state.status.value,
            "is_online": self.is_online,
            "last_change": self._state.last_change.isoformat() if self._state.last_change else None,
            "last_online": self._state.last_online.isoformat() if self._state.last_online else None,
            "error": self._state.error_message,
        }
