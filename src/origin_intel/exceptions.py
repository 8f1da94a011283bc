"""
Exception classes for the passive intelligence engine.

All exceptions inherit from OriginIntelError and provide structured
error information with codes, messages, and optional details.
"""

from typing import Optional

from .enums import ErrorCode


class OriginIntelError(Exception):
    """Base exception for all origin intelligence errors."""

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[dict] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"

    def to_dict(self) -> dict:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(OriginIntelError):
    """Raised when a source is misconfigured or disabled."""

    pass


class NoCredentialError(ConfigurationError):
    """Raised when a source has no usable credential at its rotation cursor."""

    pass


class UnknownSourceError(OriginIntelError):
    """Raised when an operation names a source that was never registered."""

    def __init__(self, source: str) -> None:
        super().__init__(
            code=ErrorCode.UNKNOWN_SOURCE.value,
            message=f"source not registered: {source}",
            details={"source": source},
        )
        self.source = source


class RateLimitError(OriginIntelError):
    """Raised when a provider signals rate limiting (HTTP 429, exhausted quota)."""

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[dict] = None,
        retry_after: Optional[float] = None,
    ) -> None:
        super().__init__(code, message, details)
        self.retry_after = retry_after


class ValidationError(OriginIntelError):
    """Raised when a source validation probe fails."""

    pass


class AuthenticationError(ValidationError):
    """Raised when a provider rejects the supplied credential."""

    pass


class ProbeError(ValidationError):
    """Raised when a provider answers a probe with an unexpected response."""

    pass


class NetworkError(OriginIntelError):
    """Raised when network operations fail."""

    pass
