# =============================================================================
# prestatario/errors/exceptions.py
# Custom Exception Hierarchy for Prestatario
# =============================================================================

from typing import Optional, Dict, Any


class PrestatarioError(Exception):
    """
    Base exception for all Prestatario errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "NET_001")
        details: Additional context as a dictionary
        recoverable: Whether the error can be recovered from
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "PR_000"
        self.details = details or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        base = f"[{self.code}] {self.message}"
        if self.details:
            base += f" | Details: {self.details}"
        return base

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization"""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


# =============================================================================
# NETWORK / REMOTE EXCEPTIONS
# =============================================================================

class RemoteUnreachableError(PrestatarioError):
    """Raised when the remote store cannot be reached at the transport level"""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        code: str = "NET_001",
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if operation:
            details["operation"] = operation

        super().__init__(
            message=message,
            code=code,
            details=details,
            **kwargs,
        )


class NoCachedResponseError(RemoteUnreachableError):
    """Raised when the network failed and the network cache has no match"""

    def __init__(self, message: str, url: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if url:
            details["url"] = url

        super().__init__(
            message=message,
            code="NET_002",
            details=details,
            **kwargs,
        )


class NetworkCacheError(PrestatarioError):
    """Raised when the shell assets cannot be pre-cached"""

    def __init__(
        self,
        message: str,
        cache_name: Optional[str] = None,
        url: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if cache_name:
            details["cache_name"] = cache_name
        if url:
            details["url"] = url

        super().__init__(
            message=message,
            code="NET_003",
            details=details,
            **kwargs,
        )


class RemoteRejectedError(PrestatarioError):
    """Raised when the remote store refuses an operation (validation, RLS)"""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        remote_code: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if operation:
            details["operation"] = operation
        if remote_code:
            details["remote_code"] = remote_code

        super().__init__(
            message=message,
            code="REMOTE_001",
            details=details,
            **kwargs,
        )


# =============================================================================
# LOCAL STORAGE / SYNC EXCEPTIONS
# =============================================================================

class LocalStorageError(PrestatarioError):
    """Raised when the on-device store is unavailable or out of space"""

    def __init__(
        self,
        message: str,
        collection: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if collection:
            details["collection"] = collection

        super().__init__(
            message=message,
            code="STORE_001",
            details=details,
            **kwargs,
        )


class QueueReplayError(PrestatarioError):
    """Describes a drain that stopped on a queued operation"""

    def __init__(
        self,
        message: str,
        operation_id: Optional[int] = None,
        kind: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if operation_id is not None:
            details["operation_id"] = operation_id
        if kind:
            details["kind"] = kind

        super().__init__(
            message=message,
            code="SYNC_001",
            details=details,
            **kwargs,
        )


# =============================================================================
# DATA / CONFIGURATION EXCEPTIONS
# =============================================================================

class DataValidationError(PrestatarioError):
    """Raised when user input fails validation checks"""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        expected: Optional[str] = None,
        actual: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if field:
            details["field"] = field
        if expected:
            details["expected"] = expected
        if actual:
            details["actual"] = actual

        super().__init__(
            message=message,
            code="DATA_001",
            details=details,
            **kwargs,
        )


class ConfigurationError(PrestatarioError):
    """Raised when configuration is invalid or missing"""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key

        super().__init__(
            message=message,
            code="CONFIG_001",
            details=details,
            recoverable=False,
            **kwargs,
        )
