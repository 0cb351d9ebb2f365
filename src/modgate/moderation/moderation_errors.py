"""
Exception hierarchy for the moderation pipeline.

Validation errors are raised before any remote call is made and are never
retried. Provider errors describe transport failures of the remote backend;
the service turns them into error decisions rather than letting them escape.
"""

from __future__ import annotations

from typing import Any


class ModerationError(Exception):
    """Base class for every modgate error."""

    def __init__(self, message: str, code: str = "MODERATION_ERROR", details: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.details = details


class ValidationError(ModerationError):
    """Input rejected before any remote work began."""

    def __init__(self, message: str, code: str = "VALIDATION_ERROR", details: Any = None) -> None:
        super().__init__(message, code, details)


class PolicyValidationError(ValidationError):
    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(message, "POLICY_VALIDATION_ERROR", details)


class ContentValidationError(ValidationError):
    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(message, "CONTENT_VALIDATION_ERROR", details)


class VideoValidationError(ValidationError):
    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(message, "VIDEO_VALIDATION_ERROR", details)


class ProviderError(ModerationError):
    """The remote backend failed or answered with a non-success status."""

    def __init__(self, message: str, status_code: int | None = None, provider: str | None = None) -> None:
        super().__init__(message, "PROVIDER_ERROR", {"status_code": status_code, "provider": provider})
        self.status_code = status_code
        self.provider = provider


class ProviderTimeoutError(ProviderError):
    """No scores arrived within the allowed time."""

    def __init__(self, message: str = "Moderation backend timed out", provider: str | None = None) -> None:
        super().__init__(message, status_code=None, provider=provider)
        self.code = "PROVIDER_TIMEOUT"
