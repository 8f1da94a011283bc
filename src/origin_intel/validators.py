"""
Source validation probes for the passive intelligence engine.

Each passive source has a lightweight health check that confirms the
provider is reachable and the current credential is accepted. Probes are
async callables that return None on success and raise a typed exception on
failure; the FailoverManager runs them and records the outcome.

HTTP status mapping used by every probe:
- 200: healthy
- 401 / 403: AuthenticationError
- 429: RateLimitError (retry_after taken from the Retry-After header)
- anything else: ProbeError
- transport failures and timeouts: NetworkError
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterable, Optional

import httpx

from .enums import ErrorCode, PassiveSource, SourceState
from .exceptions import (
    AuthenticationError,
    NetworkError,
    NoCredentialError,
    ProbeError,
    RateLimitError,
    UnknownSourceError,
)
from .models import APIKey, Credential, CredentialPair

if TYPE_CHECKING:
    from .failover_manager import FailoverManager

Probe = Callable[[], Awaitable[None]]
ProbeFactory = Callable[["ValidatorRegistry", Optional[Credential]], Probe]

SHODAN_URL = "https://api.shodan.io/account/profile"
CENSYS_URL = "https://search.censys.io/api/v2/account"
SECURITYTRAILS_URL = "https://api.securitytrails.com/v1/account/usage"
VIRUSTOTAL_URL = "https://www.virustotal.com/api/v3/domains/google.com"
ZOOMEYE_URL = "https://api.zoomeye.org/resources-info"
CT_URL = "https://crt.sh/"
VIEWDNS_URL = "https://viewdns.info/reverseip/"
WAYBACK_URL = "https://web.archive.org/cdx/search/cdx"

# Fields every crt.sh JSON entry carries
CT_REQUIRED_FIELDS = ("issuer_ca_id", "issuer_name", "common_name", "name_value", "id")

VIRUSTOTAL_KEY_LENGTH = 64

PLACEHOLDER_MARKER = "YOUR_"


def _retry_after(response: httpx.Response) -> Optional[float]:
    """Seconds from a Retry-After header (delta-seconds or HTTP-date)."""
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        try:
            moment = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        seconds = (moment - datetime.now(timezone.utc)).total_seconds()
    return seconds if seconds > 0 else None


def check_response(source: str, response: httpx.Response) -> None:
    """
    Raise the exception matching a probe response's status code.

    Raises:
        AuthenticationError: 401 or 403
        RateLimitError: 429
        ProbeError: Any other non-200 status
    """
    status = response.status_code
    if status == 200:
        return
    details = {"source": source, "http_status": status}
    if status in (401, 403):
        raise AuthenticationError(
            code=ErrorCode.AUTH_FAILED.value,
            message=f"{source} credential is invalid",
            details=details,
        )
    if status == 429:
        raise RateLimitError(
            code=ErrorCode.RATE_LIMITED.value,
            message=f"{source} rate limit exceeded",
            details=details,
            retry_after=_retry_after(response),
        )
    raise ProbeError(
        code=ErrorCode.BAD_RESPONSE.value,
        message=f"{source} returned status {status}",
        details=details,
    )


def _missing_credential(source: str, reason: str = "not configured") -> NoCredentialError:
    return NoCredentialError(
        code=ErrorCode.NO_CREDENTIAL.value,
        message=f"{source} credential {reason}",
        details={"source": source},
    )


def require_api_key(source: str, credential: Optional[Credential]) -> str:
    """
    Return the key of an APIKey credential.

    Raises:
        NoCredentialError: If the credential is missing, not a single key,
                           empty, or still a YOUR_... placeholder
    """
    if not isinstance(credential, APIKey):
        raise _missing_credential(source)
    key = credential.value.strip()
    if not key or PLACEHOLDER_MARKER in key.upper():
        raise _missing_credential(source)
    return key


def require_pair(source: str, credential: Optional[Credential]) -> CredentialPair:
    """Return an ID/secret credential, raising NoCredentialError otherwise."""
    if not isinstance(credential, CredentialPair):
        raise _missing_credential(source)
    if not credential.id or not credential.secret:
        raise _missing_credential(source)
    if PLACEHOLDER_MARKER in credential.id.upper() or PLACEHOLDER_MARKER in credential.secret.upper():
        raise _missing_credential(source)
    return credential


def http_probe(
    registry: "ValidatorRegistry",
    source: str,
    url: str,
    params: Optional[dict] = None,
    headers: Optional[dict] = None,
    auth: Optional[tuple[str, str]] = None,
    check_body: Optional[Callable[[httpx.Response], None]] = None,
) -> Probe:
    """
    Build a GET probe against one provider endpoint.

    Args:
        registry: Registry supplying the HTTP client settings
        source: Source id used in error messages
        url: Endpoint to query
        params: Optional query parameters
        headers: Optional request headers
        auth: Optional basic-auth pair
        check_body: Optional callback validating a 200 response body

    Returns:
        Async probe raising on failure
    """
    request_headers = {"Accept": "application/json"}
    request_headers.update(headers or {})

    async def probe() -> None:
        try:
            async with registry.client() as client:
                response = await client.get(
                    url,
                    params=params,
                    headers=request_headers,
                    auth=auth,
                )
        except httpx.TimeoutException as e:
            raise NetworkError(
                code=ErrorCode.TIMEOUT.value,
                message=f"{source} request timed out after {registry.timeout}s",
                details={"source": source},
            ) from e
        except httpx.HTTPError as e:
            raise NetworkError(
                code=ErrorCode.NETWORK_ERROR.value,
                message=f"{source} request failed: {e}",
                details={"source": source},
            ) from e

        check_response(source, response)
        if check_body is not None:
            check_body(response)

    return probe


def check_ct_body(response: httpx.Response) -> None:
    """Verify a crt.sh answer is a JSON array of certificate entries."""
    source = PassiveSource.CT.value
    try:
        entries = response.json()
    except ValueError as e:
        raise ProbeError(
            code=ErrorCode.BAD_RESPONSE.value,
            message=f"{source} returned invalid JSON",
            details={"source": source},
        ) from e

    if not isinstance(entries, list):
        raise ProbeError(
            code=ErrorCode.BAD_RESPONSE.value,
            message=f"{source} returned {type(entries).__name__} instead of a list",
            details={"source": source},
        )

    if entries:
        first: Any = entries[0]
        if not isinstance(first, dict):
            raise ProbeError(
                code=ErrorCode.BAD_RESPONSE.value,
                message=f"{source} entries are not objects",
                details={"source": source},
            )
        for name in CT_REQUIRED_FIELDS:
            if name not in first:
                raise ProbeError(
                    code=ErrorCode.BAD_RESPONSE.value,
                    message=f"{source} response missing field: {name}",
                    details={"source": source, "field": name},
                )


# -- probe factories ------------------------------------------------------

def shodan_probe(registry: "ValidatorRegistry", credential: Optional[Credential]) -> Probe:
    key = require_api_key(PassiveSource.SHODAN.value, credential)
    return http_probe(registry, PassiveSource.SHODAN.value, SHODAN_URL, params={"key": key})


def censys_probe(registry: "ValidatorRegistry", credential: Optional[Credential]) -> Probe:
    pair = require_pair(PassiveSource.CENSYS.value, credential)
    return http_probe(
        registry,
        PassiveSource.CENSYS.value,
        CENSYS_URL,
        auth=(pair.id, pair.secret),
    )


def securitytrails_probe(registry: "ValidatorRegistry", credential: Optional[Credential]) -> Probe:
    key = require_api_key(PassiveSource.SECURITYTRAILS.value, credential)
    return http_probe(
        registry,
        PassiveSource.SECURITYTRAILS.value,
        SECURITYTRAILS_URL,
        headers={"APIKEY": key},
    )


def virustotal_probe(registry: "ValidatorRegistry", credential: Optional[Credential]) -> Probe:
    source = PassiveSource.VIRUSTOTAL.value
    key = require_api_key(source, credential)
    if len(key) != VIRUSTOTAL_KEY_LENGTH:
        raise _missing_credential(source, f"must be {VIRUSTOTAL_KEY_LENGTH} characters")
    return http_probe(registry, source, VIRUSTOTAL_URL, headers={"x-apikey": key})


def zoomeye_probe(registry: "ValidatorRegistry", credential: Optional[Credential]) -> Probe:
    key = require_api_key(PassiveSource.ZOOMEYE.value, credential)
    return http_probe(
        registry,
        PassiveSource.ZOOMEYE.value,
        ZOOMEYE_URL,
        headers={"API-KEY": key},
    )


def ct_probe(registry: "ValidatorRegistry", credential: Optional[Credential]) -> Probe:
    return http_probe(
        registry,
        PassiveSource.CT.value,
        CT_URL,
        params={"output": "json", "q": "example.com"},
        check_body=check_ct_body,
    )


def viewdns_probe(registry: "ValidatorRegistry", credential: Optional[Credential]) -> Probe:
    return http_probe(
        registry,
        PassiveSource.VIEWDNS.value,
        VIEWDNS_URL,
        params={"host": "8.8.8.8", "t": "1"},
    )


def wayback_probe(registry: "ValidatorRegistry", credential: Optional[Credential]) -> Probe:
    return http_probe(
        registry,
        PassiveSource.WAYBACK.value,
        WAYBACK_URL,
        params={"url": "example.com", "output": "json", "limit": "1"},
    )


def noop_probe(registry: "ValidatorRegistry", credential: Optional[Credential]) -> Probe:
    """Sources with nothing to check ahead of use (DNS, DNSDumpster)."""

    async def probe() -> None:
        return None

    return probe


class ValidatorRegistry:
    """
    Maps source ids to probe factories and owns the HTTP client settings.

    A factory receives the registry and the source's current credential
    (None for keyless sources) and returns a ready-to-run probe.
    """

    def __init__(
        self,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize the registry.

        Args:
            timeout: Per-request timeout in seconds for HTTP probes
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self._timeout = timeout
        self._transport = transport
        self._factories: dict[str, ProbeFactory] = {}

    @property
    def timeout(self) -> float:
        return self._timeout

    def client(self) -> httpx.AsyncClient:
        """Fresh AsyncClient configured with the registry's timeout and transport."""
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self._timeout),
            transport=self._transport,
            follow_redirects=True,
        )

    def register(self, source: str, factory: ProbeFactory) -> None:
        self._factories[str(source).strip().lower()] = factory

    def build(self, source: str, credential: Optional[Credential] = None) -> Probe:
        """
        Build the probe for a source.

        Raises:
            UnknownSourceError: If no factory is registered for the source
            NoCredentialError: If the credential is missing or unusable
        """
        source_id = str(source).strip().lower()
        factory = self._factories.get(source_id)
        if factory is None:
            raise UnknownSourceError(source_id)
        return factory(self, credential)

    def sources(self) -> list[str]:
        return list(self._factories)

    def __contains__(self, source: str) -> bool:
        return str(source).strip().lower() in self._factories


def default_registry(
    timeout: float = 10.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ValidatorRegistry:
    """Registry with a probe for every known passive source."""
    registry = ValidatorRegistry(timeout=timeout, transport=transport)
    registry.register(PassiveSource.SHODAN.value, shodan_probe)
    registry.register(PassiveSource.CENSYS.value, censys_probe)
    registry.register(PassiveSource.SECURITYTRAILS.value, securitytrails_probe)
    registry.register(PassiveSource.VIRUSTOTAL.value, virustotal_probe)
    registry.register(PassiveSource.ZOOMEYE.value, zoomeye_probe)
    registry.register(PassiveSource.CT.value, ct_probe)
    registry.register(PassiveSource.VIEWDNS.value, viewdns_probe)
    registry.register(PassiveSource.WAYBACK.value, wayback_probe)
    registry.register(PassiveSource.DNSDUMPSTER.value, noop_probe)
    registry.register(PassiveSource.DNS.value, noop_probe)
    return registry


async def validate_all_sources(
    manager: FailoverManager,
    registry: ValidatorRegistry,
    sources: Optional[Iterable[str]] = None,
    timeout: Optional[float] = None,
) -> dict[str, bool]:
    """
    Validate sources concurrently through the failover manager.

    Each source is probed with its current credential; the manager records
    the outcome. One failing source never aborts the others.

    Args:
        manager: FailoverManager holding credentials and status
        registry: Probe factories
        sources: Sources to check (defaults to every registered source)
        timeout: Optional per-probe timeout in seconds

    Returns:
        Mapping of source id to whether its probe succeeded. Unregistered,
        disabled and probe-less sources map to False.
    """
    statuses = manager.all_status()
    targets = list(statuses) if sources is None else [str(s).strip().lower() for s in sources]

    async def _validate(source: str) -> tuple[str, bool]:
        status = statuses.get(source)
        if status is None or status.status == SourceState.DISABLED or source not in registry:
            return source, False

        credential = manager.get_current_credential(source) if manager.has_credentials(source) else None
        try:
            probe = registry.build(source, credential)
        except NoCredentialError as e:
            manager.mark_error(source, e)
            return source, False

        try:
            await manager.validate_source(source, probe, timeout=timeout)
        except Exception:
            return source, False
        return source, True

    results = await asyncio.gather(*(_validate(source) for source in targets))
    return dict(results)


def filter_requested_sources(
    requested: Optional[Iterable[str]],
    available: Iterable[str],
) -> list[str]:
    """
    Restrict requested sources to the available ones.

    An empty or missing request selects every available source (auto mode).
    Otherwise the result keeps request order and drops duplicates.
    """
    available_list = [str(s).strip().lower() for s in available]
    wanted = [str(s).strip().lower() for s in (requested or [])]
    if not wanted:
        return available_list

    allowed = set(available_list)
    filtered: list[str] = []
    for source in wanted:
        if source in allowed and source not in filtered:
            filtered.append(source)
    return filtered
