"""Custom exceptions for kvstress.

All kvstress-specific exceptions inherit from KvStressError for unified error handling.
Each exception preserves the original cause chain for debugging.
"""

from __future__ import annotations

from typing import Any


class KvStressError(Exception):
    """Base exception for all kvstress errors.
    
    Attributes:
        message: Human-readable error description
        context: Optional dictionary with additional debugging context
        original_error: Original exception that caused this error (if any)
    """

    def __init__(
        self,
        message: str,
        *args: object,
        context: dict[str, Any] | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message, *args)
        self.message = message
        self.context = context or {}
        self.original_error = original_error
    
    def __str__(self) -> str:
        """Return formatted error message with context if available."""
        base = self.message
        if self.context:
            ctx_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            base = f"{base} [{ctx_str}]"
        if self.original_error:
            base = f"{base} (caused by: {type(self.original_error).__name__}: {self.original_error})"
        return base
    
    def with_context(self, **kwargs: Any) -> "KvStressError":
        """Add context to this error and return self for chaining."""
        self.context.update(kwargs)
        return self


class ConfigurationError(KvStressError):
    """Raised when run parameters are invalid or the config file cannot be loaded.
    
    Common causes:
    - threads <= 0
    - both requests_per_thread and duration_seconds are zero (undefined mode)
    - read_ratio outside [0, 1]
    - invalid YAML syntax or field values
    """


class OperationTimeout(KvStressError):
    """Raised by a cache client when a single operation timed out.

    The engine counts it as a timeout; it never escapes a run.
    """


class OperationError(KvStressError):
    """Raised by a cache client for any other single-operation failure.

    The engine counts it as an error; it never escapes a run.
    """


class MetricsCollectionError(KvStressError):
    """Raised when server metrics (INFO) cannot be captured or parsed.
    
    The collector logs it and falls back to a zeroed snapshot.
    """


class ClientConnectionError(KvStressError):
    """Raised when the target cache cannot be reached before a run starts."""


class SecretResolutionError(KvStressError):
    """Raised when a connection string cannot be resolved from a secret ARN.
    
    Common causes:
    - Malformed ARN
    - Secret not found or access denied
    - Empty or unsupported secret payload
    """
