"""
Data models for the passive intelligence engine.

This module defines credentials, per-source status snapshots, and the
PassiveIP observation record shared by fetchers, the aggregator and the
confidence scorer.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Union

from .enums import ErrorCode, SourceState
from .exceptions import ConfigurationError


def mask_secret(value: str) -> str:
    """Render a secret as ***abcd (last four characters only)."""
    if not value:
        return "***"
    return f"***{value[-4:]}" if len(value) > 4 else "***"


@dataclass(frozen=True)
class APIKey:
    """Single-string credential used by most providers."""

    value: str

    def __repr__(self) -> str:
        return f"APIKey({mask_secret(self.value)})"


@dataclass(frozen=True)
class CredentialPair:
    """ID/secret credential for providers that authenticate with two values."""

    id: str
    secret: str

    def __repr__(self) -> str:
        return f"CredentialPair(id={self.id!r}, secret={mask_secret(self.secret)})"


Credential = Union[APIKey, CredentialPair]


def parse_credential(raw: Any, paired: bool = False) -> Credential:
    """
    Build a credential from a configuration value.

    Args:
        raw: A string key, an "id:secret" string, a {"id", "secret"} mapping,
             or an existing credential
        paired: True for sources that require an ID/secret pair

    Returns:
        APIKey or CredentialPair

    Raises:
        ConfigurationError: If the value cannot be turned into a credential
    """
    if isinstance(raw, (APIKey, CredentialPair)):
        return raw

    if isinstance(raw, dict):
        cred_id = raw.get("id") or raw.get("api_id")
        secret = raw.get("secret") or raw.get("api_secret")
        if cred_id and secret:
            return CredentialPair(id=str(cred_id), secret=str(secret))
        raise ConfigurationError(
            code=ErrorCode.NO_CREDENTIAL.value,
            message="credential mapping needs both 'id' and 'secret'",
            details={"keys": sorted(raw.keys())},
        )

    if isinstance(raw, str):
        value = raw.strip()
        if paired:
            cred_id, sep, secret = value.partition(":")
            if not sep or not cred_id or not secret:
                raise ConfigurationError(
                    code=ErrorCode.NO_CREDENTIAL.value,
                    message="paired credential must be formatted as 'id:secret'",
                )
            return CredentialPair(id=cred_id, secret=secret)
        return APIKey(value=value)

    raise ConfigurationError(
        code=ErrorCode.NO_CREDENTIAL.value,
        message=f"unsupported credential type: {type(raw).__name__}",
    )


@dataclass
class SourceStatus:
    """Per-source state held by the status registry."""

    source: str
    status: SourceState = SourceState.UNCHECKED
    last_error: Optional[str] = None
    rate_limit_end: Optional[datetime] = None  # only while RATE_LIMITED
    requests_made: int = 0


@dataclass
class PassiveIP:
    """One observation of a candidate origin IP from one source."""

    ip: str
    source: str
    confidence: float = 0.0
    first_seen: Optional[datetime] = None
    last_seen: Optional[datetime] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Convert the observation to a JSON-friendly dictionary."""
        return {
            "ip": self.ip,
            "source": self.source,
            "confidence": self.confidence,
            "first_seen": self.first_seen.isoformat() if self.first_seen else None,
            "last_seen": self.last_seen.isoformat() if self.last_seen else None,
            "metadata": dict(self.metadata),
        }
