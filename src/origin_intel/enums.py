"""
Enumeration types for the passive intelligence engine.

These enums provide type-safe constants for source identifiers, source
states, error codes, and logging levels throughout the system.
"""

from enum import Enum


class PassiveSource(Enum):
    """Known passive intelligence providers."""

    SHODAN = "shodan"
    CENSYS = "censys"
    SECURITYTRAILS = "securitytrails"
    VIRUSTOTAL = "virustotal"
    ZOOMEYE = "zoomeye"
    CT = "ct"
    VIEWDNS = "viewdns"
    DNSDUMPSTER = "dnsdumpster"
    WAYBACK = "wayback"
    DNS = "dns"


class SourceState(Enum):
    """Lifecycle state of a source in the failover manager."""

    UNCHECKED = "unchecked"
    AVAILABLE = "available"
    RATE_LIMITED = "rate_limited"
    ERROR = "error"
    DISABLED = "disabled"


class ErrorCode(Enum):
    """Error codes carried by OriginIntelError subclasses."""

    NO_CREDENTIAL = "no_credential"
    SOURCE_DISABLED = "source_disabled"
    UNKNOWN_SOURCE = "unknown_source"
    RATE_LIMITED = "rate_limited"
    AUTH_FAILED = "auth_failed"
    BAD_RESPONSE = "bad_response"
    NETWORK_ERROR = "network_error"
    TIMEOUT = "timeout"


class LogLevel(Enum):
    """Logging severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
