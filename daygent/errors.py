"""
Error taxonomy for the Daygent LLM proxy.

Every rejection or failure surfaced by the proxy is a ProxyError carrying a
stable ``kind`` so callers can render a specific message.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Stable error kinds reported to callers."""
    VALIDATION = "validation"
    RATE_LIMITED = "rate_limited"
    QUOTA_EXCEEDED = "quota_exceeded"
    NO_CREDENTIALS = "no_credentials"
    PROVIDER_ERROR = "provider_error"
    INTERNAL = "internal"


class ProviderErrorReason(str, Enum):
    """Subdivision of upstream provider failures."""
    INVALID_CREDENTIALS = "invalid_credentials"
    RATE_LIMITED = "provider_rate_limited"
    MALFORMED_RESPONSE = "malformed_response"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    UPSTREAM = "upstream_error"


class ProxyError(Exception):
    """Base class for all proxy errors."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        """Render the caller-facing error payload."""
        return {"kind": self.kind.value, "message": self.message}


class ValidationError(ProxyError, ValueError):
    """Raised when an inbound request payload is invalid."""

    kind = ErrorKind.VALIDATION

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"Invalid {field}: {message}")

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["field"] = self.field
        return payload


class RateLimitedError(ProxyError):
    """Raised when a workspace exceeds one of its call-rate windows."""

    kind = ErrorKind.RATE_LIMITED

    def __init__(self, retry_after_seconds: int, window: Optional[str] = None):
        self.retry_after_seconds = retry_after_seconds
        self.window = window
        super().__init__(
            f"Too many requests, try again in {retry_after_seconds} seconds"
        )

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["retryAfterSeconds"] = self.retry_after_seconds
        return payload


class QuotaExceededError(ProxyError):
    """Raised when a workspace's monthly spend has reached its limit."""

    kind = ErrorKind.QUOTA_EXCEEDED

    def __init__(self, message: str, usage=None):
        self.usage = usage
        super().__init__(message)


class NoCredentialsError(ProxyError):
    """Raised when no usable API key exists for the requested provider."""

    kind = ErrorKind.NO_CREDENTIALS


class ProviderError(ProxyError):
    """Raised when the upstream LLM provider call fails."""

    kind = ErrorKind.PROVIDER_ERROR
    reason: ProviderErrorReason = ProviderErrorReason.UPSTREAM

    def __init__(
        self,
        provider: str,
        message: str,
        status_code: Optional[int] = None,
    ):
        self.provider = provider
        self.status_code = status_code
        super().__init__(message)

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["provider"] = self.provider
        payload["reason"] = self.reason.value
        if self.status_code is not None:
            payload["status"] = self.status_code
        return payload


class InvalidCredentialsError(ProviderError):
    """Upstream rejected the API key (HTTP 401)."""

    reason = ProviderErrorReason.INVALID_CREDENTIALS


class ProviderRateLimitedError(ProviderError):
    """Upstream rate limited the call (HTTP 429)."""

    reason = ProviderErrorReason.RATE_LIMITED

    def __init__(
        self,
        provider: str,
        message: str,
        status_code: Optional[int] = 429,
        retry_after: Optional[str] = None,
    ):
        self.retry_after = retry_after
        super().__init__(provider, message, status_code)

    def to_dict(self) -> dict:
        payload = super().to_dict()
        if self.retry_after is not None:
            payload["retryAfter"] = self.retry_after
        return payload


class MalformedResponseError(ProviderError):
    """Upstream returned a response that could not be normalized."""

    reason = ProviderErrorReason.MALFORMED_RESPONSE


class ProviderTimeoutError(ProviderError):
    """Upstream did not answer within the hard timeout."""

    reason = ProviderErrorReason.TIMEOUT


class ProviderCancelledError(ProviderError):
    """The in-flight call was aborted by the caller's cancel signal."""

    reason = ProviderErrorReason.CANCELLED


class InternalError(ProxyError):
    """Unexpected failure, e.g. persistence unavailable."""

    kind = ErrorKind.INTERNAL


class WorkspaceNotFoundError(InternalError):
    """Raised when a workspace row does not exist."""

    def __init__(self, workspace_id: str):
        self.workspace_id = workspace_id
        super().__init__(f"Workspace '{workspace_id}' not found")
