"""
Origin Intel - Passive intelligence aggregation for origin-IP discovery.

This package collects candidate origin-server IPs for CDN/WAF-fronted domains
from multiple passive sources, rotating API credentials and failing over
between sources on rate limits, and ranks the candidates with a multi-factor
confidence score.
"""

__version__ = "0.1.0"
__author__ = "Origin Intel Team"

from origin_intel.exceptions import (
    OriginIntelError,
    ConfigurationError,
    NoCredentialError,
    UnknownSourceError,
    RateLimitError,
    ValidationError,
    AuthenticationError,
    ProbeError,
    NetworkError,
)
from origin_intel.enums import (
    PassiveSource,
    SourceState,
    ErrorCode,
    LogLevel,
)
from origin_intel.models import (
    APIKey,
    CredentialPair,
    Credential,
    SourceStatus,
    PassiveIP,
    parse_credential,
)
from origin_intel.config import (
    ScoringConfig,
    FailoverConfig,
    SourceConfig,
    LoggingConfig,
    SystemConfig,
    ConfigValidationResult,
    create_default_config,
    load_config_from_file,
    load_credentials_from_env,
    merge_credentials,
    validate_config,
)
from origin_intel.audit_logger import (
    AuditLogger,
    LogEntry,
)
from origin_intel.credential_store import (
    CredentialStore,
)
from origin_intel.status_registry import (
    StatusRegistry,
)
from origin_intel.failover_manager import (
    FailoverManager,
    is_rate_limit_error,
)
from origin_intel.aggregator import (
    group_by_ip,
    iter_with_groups,
    count_distinct_sources,
    dedupe_by_ip,
    normalize_observations,
    merge_observations,
)
from origin_intel.scorer import (
    ConfidenceScorer,
    clamp,
    CDN_ASNS,
    GENERIC_HOSTING_KEYWORDS,
)
from origin_intel.validators import (
    ValidatorRegistry,
    default_registry,
    validate_all_sources,
    filter_requested_sources,
)
from origin_intel.collector import (
    PassiveCollector,
    SourceFetcher,
    CollectionResult,
)

__all__ = [
    # Exceptions
    "OriginIntelError",
    "ConfigurationError",
    "NoCredentialError",
    "UnknownSourceError",
    "RateLimitError",
    "ValidationError",
    "AuthenticationError",
    "ProbeError",
    "NetworkError",
    # Enums
    "PassiveSource",
    "SourceState",
    "ErrorCode",
    "LogLevel",
    # Models
    "APIKey",
    "CredentialPair",
    "Credential",
    "SourceStatus",
    "PassiveIP",
    "parse_credential",
    # Configuration
    "ScoringConfig",
    "FailoverConfig",
    "SourceConfig",
    "LoggingConfig",
    "SystemConfig",
    "ConfigValidationResult",
    "create_default_config",
    "load_config_from_file",
    "load_credentials_from_env",
    "merge_credentials",
    "validate_config",
    # Audit Logger
    "AuditLogger",
    "LogEntry",
    # Credential Store / Status Registry
    "CredentialStore",
    "StatusRegistry",
    # Failover Manager
    "FailoverManager",
    "is_rate_limit_error",
    # Aggregator
    "group_by_ip",
    "iter_with_groups",
    "count_distinct_sources",
    "dedupe_by_ip",
    "normalize_observations",
    "merge_observations",
    # Scorer
    "ConfidenceScorer",
    "clamp",
    "CDN_ASNS",
    "GENERIC_HOSTING_KEYWORDS",
    # Validators
    "ValidatorRegistry",
    "default_registry",
    "validate_all_sources",
    "filter_requested_sources",
    # Collector
    "PassiveCollector",
    "SourceFetcher",
    "CollectionResult",
]
