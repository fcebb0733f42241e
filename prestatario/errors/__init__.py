# =============================================================================
# prestatario/errors/__init__.py
# Centralized Error Handling for Prestatario
# =============================================================================

from .exceptions import (
    PrestatarioError,
    RemoteUnreachableError,
    NoCachedResponseError,
    NetworkCacheError,
    RemoteRejectedError,
    LocalStorageError,
    QueueReplayError,
    DataValidationError,
    ConfigurationError,
)

from .handlers import (
    handle_error,
    safe_execute,
    ErrorContext,
)

__all__ = [
    # Exceptions
    "PrestatarioError",
    "RemoteUnreachableError",
    "NoCachedResponseError",
    "NetworkCacheError",
    "RemoteRejectedError",
    "LocalStorageError",
    "QueueReplayError",
    "DataValidationError",
    "ConfigurationError",
    # Handlers
    "handle_error",
    "safe_execute",
    "ErrorContext",
]
