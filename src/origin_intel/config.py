"""
Configuration dataclasses for the passive intelligence engine.

This module defines all configuration structures used throughout the system,
including confidence scoring weights, failover behaviour, per-source
credentials, and logging, plus loaders for JSON configuration files and
environment-provided API keys.
"""

import json
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

from dotenv import load_dotenv

from .enums import PassiveSource
from .exceptions import ConfigurationError
from .models import Credential, CredentialPair, parse_credential


# Sources that authenticate with an ID/secret pair instead of a single key
PAIRED_SOURCES = frozenset({PassiveSource.CENSYS.value})

# Environment variables holding comma-separated credentials per source
ENV_CREDENTIAL_VARS = {
    PassiveSource.SHODAN.value: "SHODAN_API_KEYS",
    PassiveSource.CENSYS.value: "CENSYS_CREDENTIALS",
    PassiveSource.SECURITYTRAILS.value: "SECURITYTRAILS_API_KEYS",
    PassiveSource.VIRUSTOTAL.value: "VIRUSTOTAL_API_KEYS",
    PassiveSource.ZOOMEYE.value: "ZOOMEYE_API_KEYS",
}

DEFAULT_SOURCE_WEIGHTS = {
    PassiveSource.SECURITYTRAILS.value: 1.0,
    PassiveSource.SHODAN.value: 0.9,
    PassiveSource.CENSYS.value: 0.9,
    PassiveSource.VIRUSTOTAL.value: 0.8,
    PassiveSource.DNS.value: 0.8,
    PassiveSource.ZOOMEYE.value: 0.7,
    PassiveSource.CT.value: 0.7,
    PassiveSource.VIEWDNS.value: 0.6,
    PassiveSource.DNSDUMPSTER.value: 0.6,
    PassiveSource.WAYBACK.value: 0.4,
}


@dataclass
class ScoringConfig:
    """Tunable weights for the confidence scorer."""

    base_score: float = 0.3
    source_weights: dict[str, float] = field(
        default_factory=lambda: dict(DEFAULT_SOURCE_WEIGHTS)
    )
    default_source_weight: float = 0.5
    multi_source_bonus: float = 0.25  # per additional source
    single_source_penalty: float = -0.10
    recent_threshold_days: int = 30
    moderate_threshold_days: int = 365
    recent_bonus: float = 0.10
    moderate_bonus: float = 0.05
    stale_penalty: float = -0.10
    reverse_dns_bonus: float = 0.15
    asn_match_bonus: float = 0.05
    whois_match_bonus: float = 0.10
    geo_match_bonus: float = 0.05
    generic_hosting_penalty: float = -0.15
    min_confidence: float = 0.3

    @classmethod
    def default(cls) -> "ScoringConfig":
        """Return the documented default scoring policy."""
        return cls()


@dataclass
class FailoverConfig:
    """Credential rotation and source failover behaviour."""

    enabled: bool = True
    rate_limit_cooldown_seconds: float = 900.0
    validation_timeout_seconds: float = 10.0


@dataclass
class SourceConfig:
    """Configuration for a single passive source."""

    name: str
    enabled: bool = True
    credentials: list[Credential] = field(default_factory=list)


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "info"
    output_format: str = "text"  # 'json', 'text', 'both'


@dataclass
class SystemConfig:
    """Main configuration combining all sub-configurations."""

    sources: list[SourceConfig] = field(default_factory=list)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    failover: FailoverConfig = field(default_factory=FailoverConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    fetch_timeout_seconds: float = 30.0
    silent_errors: bool = False

    def get_source(self, name: str) -> Optional[SourceConfig]:
        """Return the configuration for a source, if present."""
        for source in self.sources:
            if source.name == name:
                return source
        return None


@dataclass
class ConfigValidationResult:
    """Result of configuration validation."""

    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def create_default_config() -> SystemConfig:
    """Create a configuration with every known source enabled and no credentials."""
    return SystemConfig(
        sources=[SourceConfig(name=source.value) for source in PassiveSource],
    )


def _parse_credentials(name: str, raw_list: list) -> list[Credential]:
    paired = name in PAIRED_SOURCES
    return [parse_credential(raw, paired=paired) for raw in raw_list if raw]


def _parse_scoring(data: dict) -> ScoringConfig:
    defaults = ScoringConfig()
    weights = dict(DEFAULT_SOURCE_WEIGHTS)
    weights.update(
        {str(k).lower(): float(v) for k, v in data.get("source_weights", {}).items()}
    )
    return ScoringConfig(
        base_score=data.get("base_score", defaults.base_score),
        source_weights=weights,
        default_source_weight=data.get("default_source_weight", defaults.default_source_weight),
        multi_source_bonus=data.get("multi_source_bonus", defaults.multi_source_bonus),
        single_source_penalty=data.get("single_source_penalty", defaults.single_source_penalty),
        recent_threshold_days=data.get("recent_threshold_days", defaults.recent_threshold_days),
        moderate_threshold_days=data.get("moderate_threshold_days", defaults.moderate_threshold_days),
        recent_bonus=data.get("recent_bonus", defaults.recent_bonus),
        moderate_bonus=data.get("moderate_bonus", defaults.moderate_bonus),
        stale_penalty=data.get("stale_penalty", defaults.stale_penalty),
        reverse_dns_bonus=data.get("reverse_dns_bonus", defaults.reverse_dns_bonus),
        asn_match_bonus=data.get("asn_match_bonus", defaults.asn_match_bonus),
        whois_match_bonus=data.get("whois_match_bonus", defaults.whois_match_bonus),
        geo_match_bonus=data.get("geo_match_bonus", defaults.geo_match_bonus),
        generic_hosting_penalty=data.get("generic_hosting_penalty", defaults.generic_hosting_penalty),
        min_confidence=data.get("min_confidence", defaults.min_confidence),
    )


def load_config_from_file(config_path: Path) -> Optional[SystemConfig]:
    """
    Load configuration from a JSON file.

    Args:
        config_path: Path to the configuration file

    Returns:
        SystemConfig if successful, None otherwise
    """
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)

        sources = []
        for source_data in data.get("sources", []):
            name = source_data["name"].strip().lower()
            sources.append(SourceConfig(
                name=name,
                enabled=source_data.get("enabled", True),
                credentials=_parse_credentials(name, source_data.get("credentials", [])),
            ))

        failover_data = data.get("failover", {})
        failover = FailoverConfig(
            enabled=failover_data.get("enabled", True),
            rate_limit_cooldown_seconds=failover_data.get("rate_limit_cooldown_seconds", 900.0),
            validation_timeout_seconds=failover_data.get("validation_timeout_seconds", 10.0),
        )

        logging_data = data.get("logging", {})
        logging_config = LoggingConfig(
            level=logging_data.get("level", "info"),
            output_format=logging_data.get("output_format", "text"),
        )

        return SystemConfig(
            sources=sources,
            scoring=_parse_scoring(data.get("scoring", {})),
            failover=failover,
            logging=logging_config,
            fetch_timeout_seconds=data.get("fetch_timeout_seconds", 30.0),
            silent_errors=data.get("silent_errors", False),
        )

    except (json.JSONDecodeError, KeyError, TypeError, AttributeError, ConfigurationError) as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        return None
    except FileNotFoundError:
        return None


def load_credentials_from_env(
    env_file: Optional[Union[str, Path]] = None,
) -> dict[str, list[Credential]]:
    """
    Read per-source credentials from the environment (and an optional .env file).

    Variables hold comma-separated values; Censys expects "id:secret" entries.
    Placeholder values starting with "YOUR_" are skipped.

    Args:
        env_file: Optional path to a .env file; existing variables win

    Returns:
        Mapping of source id to its ordered credential list (sources without
        any value are omitted)
    """
    load_dotenv(dotenv_path=env_file, override=False)

    credentials: dict[str, list[Credential]] = {}
    for source, var in ENV_CREDENTIAL_VARS.items():
        raw = os.getenv(var, "")
        values = [
            part.strip() for part in raw.replace(";", ",").split(",")
            if part.strip() and not part.strip().upper().startswith("YOUR_")
        ]
        if values:
            credentials[source] = _parse_credentials(source, values)
    return credentials


def merge_credentials(
    config: SystemConfig,
    credentials: dict[str, list[Credential]],
) -> SystemConfig:
    """
    Fill in credentials for sources that have none configured.

    Sources missing from the config are appended as enabled sources.
    File-configured credentials always take precedence.
    """
    for name, creds in credentials.items():
        source = config.get_source(name)
        if source is None:
            config.sources.append(SourceConfig(name=name, credentials=list(creds)))
        elif not source.credentials:
            source.credentials = list(creds)
    return config


def validate_config(config: SystemConfig) -> ConfigValidationResult:
    """
    Validate the system configuration.

    Checks:
    - Source names are unique and paired sources carry ID/secret credentials
    - Scoring weights and thresholds are within their bounds
    - Failover cooldown and timeouts are positive

    Returns:
        ConfigValidationResult with validation status
    """
    errors: list[str] = []
    warnings: list[str] = []
    known = {source.value for source in PassiveSource}

    seen: set[str] = set()
    for source in config.sources:
        if not source.name:
            errors.append("Source name is empty")
            continue
        if source.name in seen:
            errors.append(f"Source '{source.name}' configured more than once")
        seen.add(source.name)
        if source.name not in known:
            warnings.append(f"Source '{source.name}' is not a known provider")
        if source.name in PAIRED_SOURCES and any(
            not isinstance(cred, CredentialPair) for cred in source.credentials
        ):
            errors.append(f"Source '{source.name}' requires ID/secret credential pairs")

    scoring = config.scoring
    if not 0.0 <= scoring.base_score <= 1.0:
        errors.append(f"base_score out of range: {scoring.base_score}")
    if not 0.0 <= scoring.min_confidence <= 1.0:
        errors.append(f"min_confidence out of range: {scoring.min_confidence}")
    for name, weight in scoring.source_weights.items():
        if not 0.0 <= weight <= 1.0:
            errors.append(f"Weight for '{name}' out of range: {weight}")
    if scoring.recent_threshold_days > scoring.moderate_threshold_days:
        errors.append("recent_threshold_days must not exceed moderate_threshold_days")
    for label, value in (
        ("single_source_penalty", scoring.single_source_penalty),
        ("stale_penalty", scoring.stale_penalty),
        ("generic_hosting_penalty", scoring.generic_hosting_penalty),
    ):
        if value > 0:
            errors.append(f"{label} must be zero or negative: {value}")
    for label, value in (
        ("multi_source_bonus", scoring.multi_source_bonus),
        ("recent_bonus", scoring.recent_bonus),
        ("moderate_bonus", scoring.moderate_bonus),
        ("reverse_dns_bonus", scoring.reverse_dns_bonus),
        ("asn_match_bonus", scoring.asn_match_bonus),
        ("whois_match_bonus", scoring.whois_match_bonus),
        ("geo_match_bonus", scoring.geo_match_bonus),
    ):
        if value < 0:
            errors.append(f"{label} must be zero or positive: {value}")
    if scoring.recent_bonus < scoring.moderate_bonus:
        warnings.append("recent_bonus is lower than moderate_bonus")

    if config.failover.rate_limit_cooldown_seconds <= 0:
        errors.append("rate_limit_cooldown_seconds must be positive")
    if config.failover.validation_timeout_seconds <= 0:
        errors.append("validation_timeout_seconds must be positive")
    if config.fetch_timeout_seconds <= 0:
        errors.append("fetch_timeout_seconds must be positive")

    if config.logging.output_format not in ("json", "text", "both"):
        errors.append(f"Unsupported log output format: {config.logging.output_format}")

    return ConfigValidationResult(
        valid=len(errors) == 0,
        errors=errors,
        warnings=warnings,
    )
