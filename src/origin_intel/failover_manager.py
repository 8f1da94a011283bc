"""
Failover Manager for the passive intelligence engine.

Single authority over "can source X run right now, and with which credential".
Combines the CredentialStore and the StatusRegistry behind one operation set
that concurrently running fetch tasks share.

State machine per source:
- unchecked -> available on a successful validation probe
- unchecked|available -> error on a validation failure that is not a rate limit
- unchecked|available|error -> rate_limited when a rate limit is reported
- rate_limited is never left automatically; an elapsed rate_limit_end only
  makes the source count as usable again
- disabled is terminal and set from configuration only
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Awaitable, Callable, Iterable, Optional, Union

from .credential_store import CredentialStore
from .enums import ErrorCode, PassiveSource, SourceState
from .exceptions import ConfigurationError, RateLimitError, UnknownSourceError
from .models import Credential, SourceStatus
from .status_registry import StatusRegistry

if TYPE_CHECKING:
    from .audit_logger import AuditLogger
    from .config import SystemConfig

Probe = Callable[[], Awaitable[None]]
SourceId = Union[str, PassiveSource]

# Phrases that mark an error message as rate-limit shaped (matched lowercase)
RATE_LIMIT_PHRASES = (
    "rate limit",
    "429",
    "too many requests",
    "quota exceeded",
)

DEFAULT_COOLDOWN_SECONDS = 900.0

_USABLE_STATES = (SourceState.AVAILABLE, SourceState.UNCHECKED)


def is_rate_limit_error(error: Optional[BaseException]) -> bool:
    """
    Check if an error indicates provider rate limiting.

    Args:
        error: The exception raised by a probe or fetcher (None is allowed)

    Returns:
        True for RateLimitError instances and for any error whose text
        contains a rate-limit phrase (case-insensitive)
    """
    if error is None:
        return False
    if isinstance(error, RateLimitError):
        return True
    text = str(error).lower()
    return any(phrase in text for phrase in RATE_LIMIT_PHRASES)


def describe_error(error: BaseException) -> str:
    """Readable message for an exception, falling back to its type name."""
    return str(error) or type(error).__name__


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FailoverManager:
    """
    Credential rotation and rate-limit failover across passive sources.

    Every public operation is atomic with respect to the source it touches and
    safe to call from many threads or asyncio tasks at once. Operations on
    different sources never contend on a shared lock. Only validate_source
    awaits, and only on the caller-supplied probe.
    """

    COMPONENT = "FailoverManager"

    def __init__(
        self,
        failover_enabled: bool = True,
        rate_limit_cooldown: float = DEFAULT_COOLDOWN_SECONDS,
        logger: Optional[AuditLogger] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """
        Initialize the failover manager.

        Args:
            failover_enabled: Allow substituting one source for another
            rate_limit_cooldown: Cooldown (seconds) applied when a probe is
                                 rate limited without a provider-supplied value
            logger: Optional audit logger for state transitions
            clock: Source of timezone-aware "now" (injectable for tests)
        """
        if rate_limit_cooldown <= 0:
            raise ValueError("rate_limit_cooldown must be positive")
        self._failover = failover_enabled
        self._cooldown = rate_limit_cooldown
        self._logger = logger
        self._clock = clock
        self._credentials = CredentialStore()
        self._registry = StatusRegistry()

    @classmethod
    def from_config(
        cls,
        config: SystemConfig,
        logger: Optional[AuditLogger] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> "FailoverManager":
        """
        Build a manager with every configured source registered.

        Sources marked as not enabled are put in the terminal DISABLED state.
        """
        manager = cls(
            failover_enabled=config.failover.enabled,
            rate_limit_cooldown=config.failover.rate_limit_cooldown_seconds,
            logger=logger,
            clock=clock,
        )
        for source in config.sources:
            manager.set_credentials(source.name, source.credentials)
            if not source.enabled:
                manager.disable_source(source.name)
        return manager

    @property
    def failover_enabled(self) -> bool:
        return self._failover

    @staticmethod
    def _source_id(source: SourceId) -> str:
        if isinstance(source, PassiveSource):
            return source.value
        return str(source).strip().lower()

    def _require(self, source: SourceId) -> str:
        source_id = self._source_id(source)
        if source_id not in self._registry:
            raise UnknownSourceError(source_id)
        return source_id

    # -- registration -----------------------------------------------------

    def register_source(self, source: SourceId) -> None:
        """Create an UNCHECKED entry; existing entries are left untouched."""
        source_id = self._source_id(source)
        if self._registry.register(source_id):
            self._log_debug("Source registered", {"source": source_id})

    def disable_source(self, source: SourceId) -> None:
        """Put a source in the terminal DISABLED state (source not configured)."""
        source_id = self._source_id(source)
        self._registry.register(source_id)

        def _disable(status: SourceStatus) -> None:
            status.status = SourceState.DISABLED
            status.rate_limit_end = None

        self._registry.update(source_id, _disable)
        self._log_info("Source disabled", {"source": source_id})

    # -- credentials ------------------------------------------------------

    def set_credentials(self, source: SourceId, credentials: Iterable[Credential]) -> None:
        """
        Replace a source's credential list and reset its rotation cursor.

        An empty list is legal; the source then has no usable credential.
        The source is registered if it was not already.
        """
        source_id = self._source_id(source)
        self.register_source(source_id)
        self._credentials.set(source_id, list(credentials))

    def get_current_credential(self, source: SourceId) -> Credential:
        """
        Return the credential at the current rotation cursor.

        Raises:
            UnknownSourceError: If the source was never registered
            NoCredentialError: If the list is empty or exhausted
        """
        return self._credentials.current(self._require(source))

    def rotate_credential(self, source: SourceId) -> bool:
        """
        Advance to the next credential.

        Returns:
            False when the list is already on its last credential; the cursor
            is then left unchanged

        Raises:
            UnknownSourceError: If the source was never registered
        """
        source_id = self._require(source)
        rotated = self._credentials.rotate(source_id)
        if rotated:
            self._log_info(
                "Rotated to next credential",
                {"source": source_id, "key_index": self._credentials.position(source_id)},
            )
        return rotated

    def reset_rotation(self, source: SourceId) -> None:
        """Return to the primary credential (used between independent scans)."""
        self._credentials.reset(self._require(source))

    def has_credentials(self, source: SourceId) -> bool:
        return self.credential_count(source) > 0

    def credential_count(self, source: SourceId) -> int:
        return self._credentials.count(self._require(source))

    # -- status transitions -----------------------------------------------

    async def validate_source(
        self,
        source: SourceId,
        probe: Probe,
        timeout: Optional[float] = None,
    ) -> None:
        """
        Run a health-check probe and record its outcome.

        Success marks the source AVAILABLE and clears last_error. A
        rate-limit-shaped failure marks it RATE_LIMITED using the provider's
        retry_after when present, else the configured cooldown. Any other
        failure, including a timeout or cancellation, marks it ERROR.

        Args:
            source: Source to validate
            probe: Async callable that raises on failure
            timeout: Optional limit in seconds for the probe

        Raises:
            UnknownSourceError: If the source was never registered
            ConfigurationError: If the source is disabled
            Exception: Whatever the probe raised, unchanged
        """
        source_id = self._require(source)
        if self._registry.snapshot(source_id).status == SourceState.DISABLED:
            raise ConfigurationError(
                code=ErrorCode.SOURCE_DISABLED.value,
                message=f"source is disabled: {source_id}",
                details={"source": source_id},
            )

        try:
            if timeout is None:
                await probe()
            else:
                await asyncio.wait_for(probe(), timeout)
        except asyncio.CancelledError:
            self._record_error(source_id, "validation cancelled")
            raise
        except asyncio.TimeoutError:
            self._record_error(source_id, f"validation timed out after {timeout}s")
            raise
        except Exception as exc:
            if is_rate_limit_error(exc):
                retry_after = getattr(exc, "retry_after", None)
                cooldown = retry_after if retry_after and retry_after > 0 else self._cooldown
                self._record_rate_limit(source_id, cooldown, describe_error(exc))
            else:
                self._record_error(source_id, describe_error(exc))
            raise

        def _available(status: SourceStatus) -> None:
            if status.status == SourceState.DISABLED:
                return
            status.status = SourceState.AVAILABLE
            status.last_error = None
            status.rate_limit_end = None

        self._registry.update(source_id, _available)
        self._log_info("Source validated", {"source": source_id})

    def mark_rate_limited(
        self,
        source: SourceId,
        cooldown_seconds: Optional[float] = None,
        reason: Optional[str] = None,
    ) -> bool:
        """
        Record a rate-limit event and try to rotate to a fresh credential.

        Args:
            source: Source that was rate limited
            cooldown_seconds: Seconds until the limit lifts (defaults to the configured cooldown)
            reason: Optional error text to keep as last_error

        Returns:
            True if rotation succeeded and a fresh credential can be retried,
            False if credentials are exhausted (source stays RATE_LIMITED)

        Raises:
            UnknownSourceError: If the source was never registered
            ValueError: If cooldown_seconds is not positive
        """
        source_id = self._require(source)
        if cooldown_seconds is None:
            cooldown_seconds = self._cooldown
        if cooldown_seconds <= 0:
            raise ValueError("cooldown_seconds must be positive")

        if not self._record_rate_limit(source_id, cooldown_seconds, reason):
            return False

        rotated = self.rotate_credential(source_id)
        if not rotated:
            self._log_warn("Credentials exhausted", {"source": source_id})
        return rotated

    def mark_error(self, source: SourceId, error: Union[BaseException, str]) -> None:
        """Record a non rate-limit failure reported by a fetch task."""
        source_id = self._require(source)
        message = error if isinstance(error, str) else describe_error(error)
        self._record_error(source_id, message)

    def increment_requests(self, source: SourceId) -> None:
        """Count a provider request (observability only)."""
        source_id = self._require(source)

        def _increment(status: SourceStatus) -> None:
            status.requests_made += 1

        self._registry.update(source_id, _increment)

    def _record_rate_limit(self, source_id: str, cooldown: float, reason: Optional[str]) -> bool:
        end = self._clock() + timedelta(seconds=cooldown)

        def _rate_limit(status: SourceStatus) -> bool:
            if status.status == SourceState.DISABLED:
                return False
            status.status = SourceState.RATE_LIMITED
            status.rate_limit_end = end
            if reason:
                status.last_error = reason
            return True

        recorded = self._registry.update(source_id, _rate_limit)
        if recorded:
            self._log_warn(
                "Source rate limited",
                {"source": source_id, "cooldown_seconds": cooldown, "until": end.isoformat()},
            )
        return recorded

    def _record_error(self, source_id: str, message: str) -> None:
        def _error(status: SourceStatus) -> None:
            if status.status == SourceState.DISABLED:
                return
            status.status = SourceState.ERROR
            status.last_error = message
            status.rate_limit_end = None

        self._registry.update(source_id, _error)
        if self._logger:
            self._logger.log_error(self.COMPONENT, "Source marked as error", source=source_id,
                                   additional_data={"reason": message})

    # -- queries ----------------------------------------------------------

    def get_status(self, source: SourceId) -> SourceStatus:
        """
        Snapshot of a source's status.

        Raises:
            UnknownSourceError: If the source was never registered
        """
        return self._registry.snapshot(self._source_id(source))

    def all_status(self) -> dict[str, SourceStatus]:
        """Snapshot of every registered source, in registration order."""
        return self._registry.snapshot_all()

    def _is_usable(self, status: SourceStatus, now: datetime) -> bool:
        if status.status in _USABLE_STATES:
            return True
        if status.status == SourceState.RATE_LIMITED:
            return status.rate_limit_end is not None and status.rate_limit_end <= now
        return False

    def get_available_sources(self) -> list[str]:
        """
        Sources that are safe to attempt now.

        That is AVAILABLE or UNCHECKED sources, plus RATE_LIMITED sources whose
        rate_limit_end has already passed. Callers should treat the result as
        a set.
        """
        now = self._clock()
        return [
            source for source, status in self._registry.snapshot_all().items()
            if self._is_usable(status, now)
        ]

    def get_next_available_source(
        self,
        excluding: SourceId,
        skip: Iterable[SourceId] = (),
    ) -> Optional[str]:
        """
        Pick another usable source to substitute for `excluding`.

        Args:
            excluding: The source being replaced
            skip: Further sources the caller already used or claimed

        Returns:
            A source id, or None when failover is disabled or nothing is left
        """
        if not self._failover:
            return None
        excluded = {self._source_id(excluding)}
        excluded.update(self._source_id(s) for s in skip)
        for source in self.get_available_sources():
            if source not in excluded:
                return source
        return None

    # -- logging helpers --------------------------------------------------

    def _log_debug(self, message: str, data: dict) -> None:
        if self._logger:
            self._logger.debug(self.COMPONENT, message, data)

    def _log_info(self, message: str, data: dict) -> None:
        if self._logger:
            self._logger.info(self.COMPONENT, message, data)

    def _log_warn(self, message: str, data: dict) -> None:
        if self._logger:
            self._logger.warn(self.COMPONENT, message, data)
