"""
Structured error types for forget-spine.

Every failure the decaying-distribution engine can raise is a subclass of
:class:`ForgetError`, which carries a category, a retryable flag, structured
context and an optional chained cause. Handlers and workers log
``error.to_dict()`` instead of formatting messages by hand.

Manifesto:
    - **Typed Error Hierarchy:** Store, parse, validation, config and
      conflict failures are distinct types with distinct handling
    - **Local Failures:** Store errors stay inside one request or one worker
      iteration, they never abort the process
    - **Rich Context:** Errors carry the distribution and field they concern
    - **Error Chaining:** The underlying redis/transport exception is kept
      as ``cause``

Architecture:
    ::

        ForgetError (category, retryable, context, cause)
        ├── StoreUnavailableError      STORAGE   transport/protocol failure
        │   └── StoreTimeoutError      STORAGE   deadline exceeded
        ├── ConcurrentUpdateError      CONFLICT  guarded persist lost a race
        ├── FieldParseError            PARSE     malformed stored value
        ├── ValidationError            VALIDATION bad request parameter
        └── ConfigError                CONFIG    fatal at startup
            └── InvalidConfigError

Propagation:
    - ``StoreUnavailableError``: 503 to the caller, job dropped by workers
    - ``FieldParseError``: logged per field, field treated as absent
    - ``ValidationError``: 400 before any store access
    - ``ConfigError``: the process must not begin serving
    - ``ConcurrentUpdateError``: the update pipeline reloads and retries

Examples:
    >>> err = StoreUnavailableError("HGETALL failed").with_context(distribution="orders")
    >>> err.to_dict()["context"]
    {'distribution': 'orders'}
    >>> ConcurrentUpdateError("changed").retryable
    True

Tags:
    error-handling, exception-hierarchy, forget-spine, observability
"""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field as dataclass_field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Error categories used for classification, logging and HTTP mapping."""

    STORAGE = "STORAGE"           # Backing store transport, protocol, timeout
    CONFLICT = "CONFLICT"         # Concurrent write detected
    PARSE = "PARSE"               # Malformed stored value
    VALIDATION = "VALIDATION"     # Bad request parameter
    CONFIG = "CONFIG"             # Missing or invalid settings
    INTERNAL = "INTERNAL"         # Bugs, unexpected state


@dataclass
class ErrorContext:
    """Structured metadata attached to an error.

    Attributes:
        distribution: Name of the distribution involved
        field: Data label or reserved key involved
        operation: Store operation or service call that failed
        metadata: Additional key-value pairs
    """

    distribution: str | None = None
    field: str | None = None
    operation: str | None = None
    metadata: dict[str, Any] = dataclass_field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["distribution", "field", "operation"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class ForgetError(Exception):
    """
    Base exception for all forget-spine errors.

    Subclasses set ``default_category`` and ``default_retryable``; both can be
    overridden per instance.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> ForgetError:
        """
        Add context to this error (fluent API).

        Usage:
            raise StoreUnavailableError("HGETALL failed").with_context(
                distribution="orders", operation="get_all"
            )
        """
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }

        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict

        if self.cause is not None:
            result["cause"] = str(self.cause)

        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# STORE ERRORS
# =============================================================================


class StoreUnavailableError(ForgetError):
    """
    Transport or protocol failure talking to the backing store.

    Never retried automatically: the request fails with a generic error and
    a refresh job that hits it is dropped.
    """

    default_category = ErrorCategory.STORAGE
    default_retryable = False


class StoreTimeoutError(StoreUnavailableError):
    """A store round trip exceeded its deadline."""

    def __init__(self, message: str, *, timeout: float | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.timeout = timeout

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.timeout is not None:
            result["timeout"] = self.timeout
        return result


class ConcurrentUpdateError(ForgetError):
    """
    A guarded write found the record changed since it was loaded.

    Raised by ``persist`` when the stored ``_Z``/``_T`` no longer match the
    revision captured by ``fill``. Retryable: reload, decay, persist again.
    """

    default_category = ErrorCategory.CONFLICT
    default_retryable = True


# =============================================================================
# DATA ERRORS
# =============================================================================


class FieldParseError(ForgetError):
    """A stored value could not be parsed (malformed count or rate)."""

    default_category = ErrorCategory.PARSE
    default_retryable = False

    def __init__(self, message: str, *, raw: Any = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.raw = raw

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.raw is not None:
            result["raw"] = repr(self.raw)
        return result


class ValidationError(ForgetError):
    """
    A request parameter is missing or malformed.

    Never retryable. Reported to the caller before any store access.
    """

    default_category = ErrorCategory.VALIDATION
    default_retryable = False

    def __init__(
        self,
        message: str,
        *,
        param: str | None = None,
        value: Any = None,
        constraint: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.param = param
        self.value = value
        self.constraint = constraint

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.param:
            result["param"] = self.param
        if self.value is not None:
            result["value"] = repr(self.value)
        if self.constraint:
            result["constraint"] = self.constraint
        return result


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================


class ConfigError(ForgetError):
    """
    Configuration error.

    Fatal at startup: a malformed or unreachable store endpoint stops the
    process before it serves any request.
    """

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class InvalidConfigError(ConfigError):
    """Configuration value is invalid."""

    def __init__(self, key: str, value: Any, message: str | None = None, **kwargs: Any):
        self.key = key
        self.value = value
        super().__init__(message or f"Invalid configuration for {key}: {value!r}", **kwargs)


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "ForgetError",
    "StoreUnavailableError",
    "StoreTimeoutError",
    "ConcurrentUpdateError",
    "FieldParseError",
    "ValidationError",
    "ConfigError",
    "InvalidConfigError",
]
