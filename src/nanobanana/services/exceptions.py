"""Service error hierarchy for image generation and caching.

This module defines the exception hierarchy for service-level errors:
- ServiceError: Base for all service errors
- ValidationError: Request parameters rejected before any I/O
- RateLimited / ProviderError / MalformedResponse: Upstream provider failures
- StorageError: Generation cache read/write failures

Callers branch on the exception class. Messages are for logs and failure
records only and are never returned to HTTP clients.
"""


class ServiceError(Exception):
    """Base exception for all service errors."""

    pass


class ConfigurationError(ServiceError):
    """Required configuration (e.g. provider API key) is missing."""

    pass


class ValidationError(ServiceError):
    """Client-supplied parameters were rejected.

    Attributes:
        violations: Violation codes such as "missing_prompt" or "invalid_width"
    """

    def __init__(self, violations: list[str]):
        self.violations = list(violations)
        super().__init__(f"Validation failed: {', '.join(self.violations)}")


class RateLimited(ServiceError):
    """Provider answered 429. Not retried automatically."""

    def __init__(self, message: str = "Rate limited by API provider"):
        super().__init__(message)


class ProviderError(ServiceError):
    """Provider failed to produce a result.

    Attributes:
        status: HTTP status from the provider, or None for transport failures
        message: Best-effort error message extracted from the response
    """

    def __init__(self, status: int | None, message: str):
        self.status = status
        self.message = message
        prefix = f"{status}" if status is not None else "transport"
        super().__init__(f"Provider error ({prefix}): {message}")


class MalformedResponse(ServiceError):
    """Provider answered 2xx but the body had no usable image data."""

    pass


class StorageError(ServiceError):
    """Generation cache read or write failed."""

    pass
