"""
Passive Collector for origin-IP discovery.

This module provides the orchestration layer that runs passive sources for
one domain. It integrates:
- Source selection from the failover manager's available sources
- Concurrent fetch tasks with per-fetch timeouts
- Credential rotation on rate limits and substitution of exhausted sources
- Normalisation, confidence scoring and deduplication of the results
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Iterable, Mapping, Optional

from .aggregator import RawResult, dedupe_by_ip, normalize_observations
from .audit_logger import AuditLogger
from .config import ScoringConfig, SystemConfig
from .exceptions import NoCredentialError
from .failover_manager import FailoverManager, describe_error, is_rate_limit_error
from .models import Credential, PassiveIP
from .scorer import ConfidenceScorer, normalize_domain
from .validators import filter_requested_sources

FetchFunction = Callable[[str, Optional[Credential], float], Awaitable[list[RawResult]]]


@dataclass
class SourceFetcher:
    """Async fetch callable for one source and whether it needs a credential."""

    fetch: FetchFunction
    requires_credential: bool = True


@dataclass
class CollectionResult:
    """Result of one passive collection run."""

    domain: str
    observations: list[PassiveIP] = field(default_factory=list)
    scored: list[PassiveIP] = field(default_factory=list)
    candidates: list[PassiveIP] = field(default_factory=list)
    sources_used: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)
    duration_ms: float = 0.0

    def to_dict(self) -> dict:
        return {
            "domain": self.domain,
            "candidates": [record.to_dict() for record in self.candidates],
            "sources_used": list(self.sources_used),
            "errors": dict(self.errors),
            "observation_count": len(self.observations),
            "duration_ms": self.duration_ms,
        }


class PassiveCollector:
    """
    Runs passive sources concurrently against one shared FailoverManager.

    Each source runs in its own task. A rate-limited source is retried with
    the next credential; a source that fails for good is replaced by another
    available source that nobody has claimed yet (when failover is enabled).
    """

    COMPONENT = "PassiveCollector"

    def __init__(
        self,
        manager: FailoverManager,
        fetchers: Mapping[str, SourceFetcher],
        scoring_config: Optional[ScoringConfig] = None,
        fetch_timeout: float = 30.0,
        logger: Optional[AuditLogger] = None,
        silent_errors: bool = False,
    ) -> None:
        """
        Initialize the passive collector.

        Args:
            manager: Failover manager shared by every fetch task
            fetchers: Source id to fetcher mapping
            scoring_config: Optional scoring policy (defaults apply when None)
            fetch_timeout: Seconds allowed for a single fetch call
            logger: Optional audit logger
            silent_errors: Suppress the advisory warning on exhausted credentials
        """
        self._manager = manager
        self._fetchers = {str(name).strip().lower(): fetcher for name, fetcher in fetchers.items()}
        self._scoring_config = scoring_config
        self._fetch_timeout = fetch_timeout
        self._logger = logger
        self._silent_errors = silent_errors

    @classmethod
    def from_config(
        cls,
        config: SystemConfig,
        fetchers: Mapping[str, SourceFetcher],
        logger: Optional[AuditLogger] = None,
    ) -> "PassiveCollector":
        """Build a collector and its failover manager from a SystemConfig."""
        return cls(
            manager=FailoverManager.from_config(config, logger=logger),
            fetchers=fetchers,
            scoring_config=config.scoring,
            fetch_timeout=config.fetch_timeout_seconds,
            logger=logger,
            silent_errors=config.silent_errors,
        )

    @property
    def manager(self) -> FailoverManager:
        return self._manager

    async def collect(
        self,
        domain: str,
        sources: Optional[Iterable[str]] = None,
    ) -> CollectionResult:
        """
        Collect, score and deduplicate candidate origin IPs for a domain.

        Args:
            domain: Target domain
            sources: Requested sources; None or empty selects every available one

        Returns:
            CollectionResult with the scored candidates and per-source errors
        """
        start_time = time.perf_counter()
        observed_at = datetime.now(timezone.utc)
        target = normalize_domain(domain)
        if not target:
            raise ValueError("domain must not be empty")

        for source in self._fetchers:
            self._manager.register_source(source)
            self._manager.reset_rotation(source)

        available = [s for s in self._manager.get_available_sources() if s in self._fetchers]
        selected = filter_requested_sources(sources, available)

        self._log_info("Starting collection", {
            "domain": target,
            "sources": selected,
        })

        claimed = set(selected)
        errors: dict[str, str] = {}
        per_task = await asyncio.gather(*(
            self._run_source(target, source, claimed, errors, observed_at) for source in selected
        ))

        sources_used: list[str] = []
        observations: list[PassiveIP] = []
        for collected in per_task:
            for source, records in collected:
                sources_used.append(source)
                observations.extend(records)

        scorer = ConfidenceScorer(target, self._scoring_config)
        scored = scorer.score_all(observations)
        candidates = dedupe_by_ip(scored)

        result = CollectionResult(
            domain=target,
            observations=observations,
            scored=scored,
            candidates=candidates,
            sources_used=sources_used,
            errors=errors,
            duration_ms=(time.perf_counter() - start_time) * 1000,
        )

        self._log_info("Collection complete", {
            "domain": target,
            "sources_used": result.sources_used,
            "observations": len(observations),
            "candidates": len(candidates),
            "failed_sources": sorted(errors),
            "duration_ms": round(result.duration_ms, 2),
        })
        return result

    async def _run_source(
        self,
        domain: str,
        source: str,
        claimed: set[str],
        errors: dict[str, str],
        observed_at: datetime,
    ) -> list[tuple[str, list[PassiveIP]]]:
        """Fetch one source, substituting other sources until one succeeds."""
        current: Optional[str] = source
        while current is not None:
            records = await self._fetch_source(domain, current, errors, observed_at)
            if records is not None:
                return [(current, records)]
            current = self._claim_substitute(current, claimed)
        return []

    async def _fetch_source(
        self,
        domain: str,
        source: str,
        errors: dict[str, str],
        observed_at: datetime,
    ) -> Optional[list[PassiveIP]]:
        """
        Run a source's fetcher, rotating credentials on rate limits.

        Returns:
            The normalised observations, or None when the source could not deliver
        """
        fetcher = self._fetchers[source]

        while True:
            credential: Optional[Credential] = None
            if fetcher.requires_credential:
                try:
                    credential = self._manager.get_current_credential(source)
                except NoCredentialError as e:
                    errors[source] = describe_error(e)
                    self._log_warn("Skipping source without credential", {"source": source})
                    return None

            self._manager.increment_requests(source)
            try:
                raw = await asyncio.wait_for(
                    fetcher.fetch(domain, credential, self._fetch_timeout),
                    self._fetch_timeout,
                )
            except asyncio.TimeoutError:
                message = f"fetch timed out after {self._fetch_timeout}s"
                self._manager.mark_error(source, message)
                errors[source] = message
                return None
            except Exception as exc:
                message = describe_error(exc)
                if not is_rate_limit_error(exc):
                    self._manager.mark_error(source, exc)
                    errors[source] = message
                    return None

                retry_after = getattr(exc, "retry_after", None)
                cooldown = retry_after if retry_after and retry_after > 0 else None
                if self._manager.mark_rate_limited(source, cooldown, reason=message):
                    continue

                errors[source] = message
                if not self._silent_errors:
                    self._log_warn("All credentials rate limited", {
                        "source": source,
                        "key_count": self._manager.credential_count(source),
                        "hint": "add more keys or wait for the cooldown",
                    })
                return None

            try:
                return normalize_observations(source, list(raw or []), observed_at)
            except (TypeError, AttributeError, ValueError) as exc:
                message = f"malformed response: {describe_error(exc)}"
                self._manager.mark_error(source, message)
                errors[source] = message
                return None

    def _claim_substitute(self, failed: str, claimed: set[str]) -> Optional[str]:
        """Claim an unused available source that has a fetcher."""
        skip = set(claimed)
        while True:
            candidate = self._manager.get_next_available_source(failed, skip=skip)
            if candidate is None:
                return None
            if candidate in self._fetchers:
                claimed.add(candidate)
                self._log_info("Failing over to another source", {
                    "from": failed,
                    "to": candidate,
                })
                return candidate
            skip.add(candidate)

    def _log_info(self, message: str, data: dict) -> None:
        """Log an info message if logger is available."""
        if self._logger:
            self._logger.info(self.COMPONENT, message, data)

    def _log_warn(self, message: str, data: dict) -> None:
        """Log a warning if logger is available."""
        if self._logger:
            self._logger.warn(self.COMPONENT, message, data)
