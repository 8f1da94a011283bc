"""
Confidence Scorer for passive origin-IP candidates.

Turns a list of PassiveIP observations into confidence values in [0.0, 1.0]
using the configured policy: source reliability, cross-source agreement,
recency, corroborating metadata, and a penalty for generic cloud hosting.
The scorer never raises on malformed metadata; unusable values simply
contribute nothing.
"""

import re
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Sequence

import idna

from .aggregator import count_distinct_sources
from .config import ScoringConfig
from .models import PassiveIP

# Source weight is scaled down so base + weight stays well below 1.0
PER_SOURCE_SCALE = 0.2

# CDN / WAF networks: an IP announced from these is an edge node, not an origin
CDN_ASNS = frozenset({
    "13335",   # Cloudflare
    "209242",  # Cloudflare Spectrum
    "20940",   # Akamai
    "16625",   # Akamai
    "54113",   # Fastly
    "19551",   # Imperva Incapsula
    "30148",   # Sucuri
    "12989",   # StackPath
    "22822",   # Limelight / Edgio
    "15133",   # Edgecast
    "60068",   # CDN77
})

GENERIC_HOSTING_KEYWORDS = (
    "hosting",
    "digitalocean",
    "linode",
    "vultr",
    "ovh",
    "hetzner",
    "amazon",
    "aws",
    "google cloud",
    "azure",
    "microsoft",
    "contabo",
    "choopa",
    "leaseweb",
    "godaddy",
    "hostinger",
    "namecheap",
    "bluehost",
    "scaleway",
    "oracle cloud",
    "alibaba",
)

# Second-level labels that sit under a country code (example.co.uk)
_COUNTRY_SLDS = frozenset({"co", "com", "net", "org", "ac", "gov", "edu"})

_COUNTRY_CODE = re.compile(r"^[A-Za-z]{2}$")

# Two-letter values geo databases emit that name no single country
NON_COUNTRY_CODES = frozenset({
    "XX", "ZZ", "AA",  # placeholders / user-assigned
    "EU", "AP",        # regional RIR allocations
    "UN",
})


def clamp(value: float, lower: float = 0.0, upper: float = 1.0) -> float:
    """Clamp value into [lower, upper]."""
    return max(lower, min(upper, value))


def _text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _is_unset(moment: Optional[datetime]) -> bool:
    return moment is None or moment.year <= 1


def normalize_domain(domain: str) -> str:
    """Lowercase ASCII (IDNA) form of a domain; falls back to lowercase text."""
    cleaned = domain.strip().rstrip(".").lower()
    if not cleaned:
        return cleaned
    try:
        return idna.encode(cleaned, uts46=True).decode("ascii")
    except idna.IDNAError:
        return cleaned


def registrable_label(domain: str) -> str:
    """
    Label that names the organisation behind a domain.

    "example.com" -> "example", "www.example.co.uk" -> "example".
    """
    labels = [label for label in domain.split(".") if label]
    if not labels:
        return ""
    if len(labels) == 1:
        return labels[0]
    if len(labels) >= 3 and len(labels[-1]) == 2 and labels[-2] in _COUNTRY_SLDS:
        return labels[-3]
    return labels[-2]


def normalize_asn(value: Any) -> Optional[str]:
    """
    Digits of an autonomous system number.

    Accepts "AS13335", "as13335", "13335" and 13335; anything else is None.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value) if value > 0 else None
    text = _text(value)
    if text is None:
        return None
    text = text.upper()
    if text.startswith("AS"):
        text = text[2:].strip()
    return text if text.isdigit() else None


class ConfidenceScorer:
    """
    Scores passive observations for one target domain.

    Each record is scored against the whole observation list, so the
    multi-source bonus reflects every source that reported the same IP.
    """

    def __init__(self, domain: str, config: Optional[ScoringConfig] = None):
        """
        Initialize the scorer.

        Args:
            domain: Target domain (normalised to lowercase IDNA form)
            config: Scoring policy; None selects ScoringConfig.default()
        """
        self._config = config or ScoringConfig.default()
        self._domain = normalize_domain(domain)
        self._domain_text = domain.strip().rstrip(".").lower()
        self._label = registrable_label(self._domain_text or self._domain)
        # Whole-word match against the WHOIS organisation
        self._label_pattern = (
            re.compile(rf"\b{re.escape(self._label)}\b") if self._label else None
        )

    @property
    def domain(self) -> str:
        return self._domain

    @property
    def config(self) -> ScoringConfig:
        return self._config

    def score_ip(self, record: PassiveIP, all_records: Sequence[PassiveIP]) -> float:
        """Confidence for one record, clamped to [0.0, 1.0]."""
        return self.score_breakdown(record, all_records)["total"]

    def score_breakdown(
        self,
        record: PassiveIP,
        all_records: Sequence[PassiveIP],
        now: Optional[datetime] = None,
    ) -> dict[str, float]:
        """
        Per-factor contributions for one record.

        Returns:
            Mapping of factor name to its contribution, plus "total" holding
            the clamped sum
        """
        cfg = self._config
        metadata = record.metadata if isinstance(record.metadata, dict) else {}

        factors = {
            "base": cfg.base_score,
            "source_weight": self.get_source_weight(record.source) * PER_SOURCE_SCALE,
        }

        source_count = self.count_sources(record.ip, all_records)
        if source_count > 1:
            bonus = cfg.multi_source_bonus * (source_count - 1)
            factors["source_count"] = min(bonus, 1.0 - cfg.base_score)
        elif source_count == 1:
            factors["source_count"] = cfg.single_source_penalty
        else:
            factors["source_count"] = 0.0

        factors["recency"] = self.calculate_recency(record.last_seen, now)
        factors["reverse_dns"] = cfg.reverse_dns_bonus if self.has_reverse_dns_match(metadata) else 0.0
        factors["asn"] = cfg.asn_match_bonus if self.has_asn_match(metadata) else 0.0
        factors["whois"] = cfg.whois_match_bonus if self.has_whois_match(metadata) else 0.0
        factors["geo"] = cfg.geo_match_bonus if self.has_geo_match(metadata) else 0.0
        factors["generic_hosting"] = (
            cfg.generic_hosting_penalty if self.is_generic_hosting(metadata) else 0.0
        )

        factors["total"] = clamp(sum(factors.values()))
        return factors

    def score_all(self, records: list[PassiveIP]) -> list[PassiveIP]:
        """
        Score every record against the whole list and filter by min_confidence.

        Confidence is written onto each record in place. Records below the
        threshold are dropped; survivors keep their input order.
        """
        now = datetime.now(timezone.utc)
        scores = [self.score_breakdown(record, records, now)["total"] for record in records]
        for record, score in zip(records, scores):
            record.confidence = score
        return [record for record in records if record.confidence >= self._config.min_confidence]

    def calculate_recency(self, last_seen: Optional[datetime], now: Optional[datetime] = None) -> float:
        """
        Recency contribution for a last-seen timestamp.

        An unset timestamp contributes 0.0. Naive timestamps are read as UTC.
        """
        if _is_unset(last_seen):
            return 0.0
        if last_seen.tzinfo is None:
            last_seen = last_seen.replace(tzinfo=timezone.utc)
        now = now or datetime.now(timezone.utc)

        age_days = (now - last_seen).total_seconds() / 86400
        cfg = self._config
        if age_days <= cfg.recent_threshold_days:
            return cfg.recent_bonus
        if age_days <= cfg.moderate_threshold_days:
            return cfg.moderate_bonus
        return cfg.stale_penalty

    def count_sources(self, ip: str, records: Iterable[PassiveIP]) -> int:
        return count_distinct_sources(ip, records)

    def get_source_weight(self, source: str) -> float:
        key = str(source).strip().lower()
        return self._config.source_weights.get(key, self._config.default_source_weight)

    def has_reverse_dns_match(self, metadata: dict) -> bool:
        """True when a PTR record names the target domain."""
        if not self._domain:
            return False
        for key in ("reverse_dns", "ptr_record"):
            value = _text(metadata.get(key))
            if value is None:
                continue
            value = value.lower().rstrip(".")
            if self._domain in value or (self._domain_text and self._domain_text in value):
                return True
        return False

    def has_asn_match(self, metadata: dict) -> bool:
        """True for an announced ASN that does not belong to a CDN or WAF."""
        asn = normalize_asn(metadata.get("asn"))
        return asn is not None and asn not in CDN_ASNS

    def has_whois_match(self, metadata: dict) -> bool:
        """True when the WHOIS organisation mentions the domain's name."""
        org = _text(metadata.get("whois_org"))
        if org is None or self._label_pattern is None:
            return False
        return self._label_pattern.search(org.lower()) is not None

    def has_geo_match(self, metadata: dict) -> bool:
        """True for a usable two-letter country code (never "UNKNOWN" or a placeholder)."""
        code = _text(metadata.get("country_code"))
        if code is None or not _COUNTRY_CODE.match(code):
            return False
        return code.upper() not in NON_COUNTRY_CODES

    def is_generic_hosting(self, metadata: dict) -> bool:
        for key in ("hosting_provider", "organization"):
            value = _text(metadata.get(key))
            if value is None:
                continue
            lowered = value.lower()
            if any(keyword in lowered for keyword in GENERIC_HOSTING_KEYWORDS):
                return True
        return False
