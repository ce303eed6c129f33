"""
Structured error types for the enrichment pipeline.

Every failure an adapter raises on purpose is a :class:`NexusError`. The
batch orchestrator and circuit breaker make their decisions from the
error's *type*, never from its message text.

Manifesto:
    - **Typed hierarchy:** A rate-limit signal is a ``RateLimitError``,
      not a string containing "rate limit"
    - **Explicit retry semantics:** Each error knows if it's retryable
    - **Rich context:** Errors carry source/entity/url for logging
    - **Error chaining:** Preserve the original exception as ``cause``

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                        NexusError                             │
        │  (category, retryable, retry_after, context, cause)          │
        ├──────────────────────────────────────────────────────────────┤
        │  TransientError          SourceError          ConfigError    │
        │  (retryable=True)        (SOURCE)             (CONFIG)       │
        │       │                      │                     │         │
        │  NetworkError          SourceUnavailable     UnknownSource   │
        │  UpstreamTimeoutError  UpstreamResponse                      │
        │  RateLimitError        ParseError           StorageError     │
        └──────────────────────────────────────────────────────────────┘

    ``RateLimitError`` is the only type that can abort a batch early.
    "Entity not found" is not an error at all: adapters return ``None``.

Examples:
    >>> err = RateLimitError("GitHub rate limit exceeded", reset_at="1700000000")
    >>> err.retryable
    True
    >>> is_rate_limited(err)
    True
    >>> SourceError("bad payload").with_context(source_name="sec-edgar").context.source_name
    'sec-edgar'

Tags:
    error-handling, exception-hierarchy, rate-limit, retry-logic,
    error-context, enrichment

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    # Infrastructure errors (usually transient)
    NETWORK = "NETWORK"           # Connection, timeout, DNS, rate limit
    STORAGE = "STORAGE"           # Content store

    # Source/data errors
    SOURCE = "SOURCE"             # Upstream API returned an error
    PARSE = "PARSE"               # Payload could not be decoded/mapped

    # Configuration errors (never retryable)
    CONFIG = "CONFIG"

    # Application errors
    PIPELINE = "PIPELINE"

    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Attributes:
        source_name: Enrichment source (e.g. ``"sec-edgar"``)
        entity: Entity identity within the source (ticker, org, ...)
        url: URL that was being accessed
        http_status: HTTP status code if applicable
        metadata: Additional key-value pairs
    """

    source_name: str | None = None
    entity: str | None = None
    url: str | None = None
    http_status: int | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["source_name", "entity", "url", "http_status"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class NexusError(Exception):
    """
    Base exception for all enrichment pipeline errors.

    Subclasses set ``default_category`` and ``default_retryable`` so that
    callers rarely need to pass them explicitly.

    Examples:
        >>> error = NexusError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.retryable
        False
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        retry_after: int | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.retry_after = retry_after
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> NexusError:
        """
        Add context to this error (fluent API).

        Usage:
            raise SourceError("Failed").with_context(
                source_name="fcc-licenses",
                url="https://data.fcc.gov/api/license-view/",
            )
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key):
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
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# TRANSIENT ERRORS (Usually Retryable)
# =============================================================================


class TransientError(NexusError):
    """
    Temporary upstream failure that may succeed later.

    Timeouts, connection resets and 5xx-style outages land here. The batch
    orchestrator records them per entity and keeps going.
    """

    default_category = ErrorCategory.NETWORK
    default_retryable = True


class NetworkError(TransientError):
    """Connection, DNS or transport-level failure."""


class UpstreamTimeoutError(TransientError):
    """The per-call request timeout fired."""


class RateLimitError(TransientError):
    """
    The source's own rate limit is exhausted.

    Structurally different from "this one entity failed": the upstream has
    said *stop*. Sources configured with ``abort_on_rate_limit`` end their
    batch early when they see this.
    """

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        *,
        retry_after: int | None = None,
        reset_at: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, retry_after=retry_after, **kwargs)
        self.reset_at = reset_at

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.reset_at is not None:
            result["reset_at"] = self.reset_at
        return result


# =============================================================================
# SOURCE ERRORS
# =============================================================================


class SourceError(NexusError):
    """Error reported by an upstream data source. Not retryable by default."""

    default_category = ErrorCategory.SOURCE
    default_retryable = False


class SourceUnavailableError(SourceError):
    """Upstream answered with a 5xx status."""

    default_retryable = True


class UpstreamResponseError(SourceError):
    """Upstream answered with an unexpected non-2xx status."""

    def __init__(self, message: str, *, status_code: int, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.status_code = status_code
        self.context.http_status = status_code


class ParseError(SourceError):
    """Upstream payload could not be decoded or mapped."""

    default_category = ErrorCategory.PARSE


# =============================================================================
# CONFIGURATION / STORAGE ERRORS
# =============================================================================


class ConfigError(NexusError):
    """Configuration error. Never retryable."""

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class UnknownSourceError(ConfigError):
    """No adapter is registered under the requested name."""

    def __init__(self, name: str, available: list[str] | None = None):
        self.source_name = name
        self.available = available or []
        detail = f" Available: {', '.join(self.available)}" if self.available else ""
        super().__init__(f"Unknown enrichment source: {name!r}.{detail}")


class StorageError(NexusError):
    """The content store rejected or failed a write."""

    default_category = ErrorCategory.STORAGE
    default_retryable = False


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: BaseException) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, NexusError):
        return error.retryable
    return False


def is_rate_limited(error: BaseException) -> bool:
    """Check if an error is a source-wide rate-limit signal."""
    return isinstance(error, RateLimitError)


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "NexusError",
    "TransientError",
    "NetworkError",
    "UpstreamTimeoutError",
    "RateLimitError",
    "SourceError",
    "SourceUnavailableError",
    "UpstreamResponseError",
    "ParseError",
    "ConfigError",
    "UnknownSourceError",
    "StorageError",
    "is_retryable",
    "is_rate_limited",
]
