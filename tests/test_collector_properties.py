"""
Property-based tests for the Passive Collector.

Fetchers are plain async functions so the tests exercise rotation, failover,
timeouts and scoring without any network access.
"""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from io import StringIO

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from origin_intel.audit_logger import AuditLogger
from origin_intel.config import FailoverConfig, ScoringConfig, SourceConfig, SystemConfig
from origin_intel.enums import ErrorCode, LogLevel, SourceState
from origin_intel.exceptions import RateLimitError
from origin_intel.collector import CollectionResult, PassiveCollector, SourceFetcher
from origin_intel.failover_manager import FailoverManager
from origin_intel.models import APIKey, PassiveIP


def static_fetcher(ips: list, requires_credential: bool = True) -> SourceFetcher:
    """Fetcher that always returns the same results."""

    async def fetch(domain, credential, timeout):
        return list(ips)

    return SourceFetcher(fetch=fetch, requires_credential=requires_credential)


def recording_fetcher(calls: list, outcomes: dict) -> SourceFetcher:
    """Fetcher whose outcome depends on the credential it receives."""

    async def fetch(domain, credential, timeout):
        calls.append(credential)
        outcome = outcomes[credential.value]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    return SourceFetcher(fetch=fetch)


def rate_limited(message: str = "rate limit exceeded") -> RateLimitError:
    return RateLimitError(code=ErrorCode.RATE_LIMITED.value, message=message)


class TestCollectionProperty:
    """Property-based tests for end-to-end collection."""

    @given(
        results=st.dictionaries(
            st.sampled_from(["shodan", "censys", "securitytrails", "ct", "dns"]),
            st.lists(st.sampled_from(["1.2.3.4", "5.6.7.8", "192.0.2.1", "bogus"]), max_size=6),
            min_size=1,
        ),
    )
    @settings(max_examples=50, deadline=None)
    def test_candidates_are_unique_and_above_threshold(self, results: dict) -> None:
        """
        *For any* set of successful sources, collect SHALL return one
        candidate per IP, each at or above min_confidence.
        """
        manager = FailoverManager()
        fetchers = {}
        for source, ips in results.items():
            manager.set_credentials(source, [APIKey(f"{source}-key-1")])
            fetchers[source] = static_fetcher(ips)
        collector = PassiveCollector(manager, fetchers)

        result = asyncio.run(collector.collect("example.com"))

        ips = [candidate.ip for candidate in result.candidates]
        assert len(ips) == len(set(ips))
        assert all(c.confidence >= ScoringConfig().min_confidence for c in result.candidates)
        assert set(ips) <= {"1.2.3.4", "5.6.7.8", "192.0.2.1"}
        assert result.sources_used == list(results)
        assert result.errors == {}

    def test_agreeing_sources_rank_higher(self) -> None:
        manager = FailoverManager()
        manager.set_credentials("shodan", [APIKey("shodan-key-1")])
        manager.set_credentials("censys", [APIKey("censys-key-1")])
        collector = PassiveCollector(manager, {
            "shodan": static_fetcher(["1.2.3.4"]),
            "censys": static_fetcher(["1.2.3.4", "5.6.7.8"]),
        })

        result = asyncio.run(collector.collect("Example.COM"))

        assert isinstance(result, CollectionResult)
        assert result.domain == "example.com"
        scores = {candidate.ip: candidate.confidence for candidate in result.candidates}
        assert scores["1.2.3.4"] > scores["5.6.7.8"]
        assert len(result.observations) == 3
        assert result.duration_ms >= 0

        summary = result.to_dict()
        assert summary["observation_count"] == 3
        assert [c["ip"] for c in summary["candidates"]] == [c.ip for c in result.candidates]
        assert summary["candidates"][0]["last_seen"] is not None
        assert json.loads(json.dumps(summary)) == summary

    def test_passive_ip_results_keep_metadata(self) -> None:
        manager = FailoverManager()
        record = PassiveIP(ip="1.2.3.4", source="ignored", metadata={"reverse_dns": "origin.example.com"})
        collector = PassiveCollector(manager, {"ct": static_fetcher([record], requires_credential=False)})

        result = asyncio.run(collector.collect("example.com"))

        [candidate] = result.candidates
        assert candidate.source == "ct"
        assert candidate.metadata == {"reverse_dns": "origin.example.com"}

    def test_requested_sources_restrict_selection(self) -> None:
        manager = FailoverManager()
        calls = []

        async def fetch(domain, credential, timeout):
            calls.append(domain)
            return ["1.2.3.4"]

        collector = PassiveCollector(manager, {
            "ct": SourceFetcher(fetch=fetch, requires_credential=False),
            "dns": static_fetcher(["5.6.7.8"], requires_credential=False),
        })

        result = asyncio.run(collector.collect("example.com", sources=["ct"]))

        assert result.sources_used == ["ct"]
        assert calls == ["example.com"]

    def test_empty_domain_is_rejected(self) -> None:
        collector = PassiveCollector(FailoverManager(), {})
        with pytest.raises(ValueError):
            asyncio.run(collector.collect("  "))


class TestRotationDuringCollectionProperty:
    """Tests for credential rotation while fetching."""

    def test_rate_limit_rotates_to_next_credential(self) -> None:
        manager = FailoverManager()
        manager.set_credentials("shodan", [APIKey("key-one"), APIKey("key-two")])
        calls = []
        collector = PassiveCollector(manager, {
            "shodan": recording_fetcher(calls, {
                "key-one": rate_limited("HTTP 429"),
                "key-two": ["1.2.3.4"],
            }),
        })

        result = asyncio.run(collector.collect("example.com"))

        assert calls == [APIKey("key-one"), APIKey("key-two")]
        assert result.sources_used == ["shodan"]
        assert result.errors == {}
        assert manager.get_status("shodan").requests_made == 2

    def test_each_collection_starts_from_primary_credential(self) -> None:
        manager = FailoverManager()
        manager.set_credentials("shodan", [APIKey("key-one"), APIKey("key-two")])
        manager.rotate_credential("shodan")
        calls = []
        collector = PassiveCollector(manager, {
            "shodan": recording_fetcher(calls, {"key-one": ["1.2.3.4"], "key-two": ["5.6.7.8"]}),
        })

        asyncio.run(collector.collect("example.com"))

        assert calls == [APIKey("key-one")]

    def test_text_shaped_rate_limit_is_recognised(self) -> None:
        manager = FailoverManager()
        manager.set_credentials("zoomeye", [APIKey("key-one"), APIKey("key-two")])
        calls = []
        collector = PassiveCollector(manager, {
            "zoomeye": recording_fetcher(calls, {
                "key-one": RuntimeError("Too Many Requests"),
                "key-two": ["1.2.3.4"],
            }),
        })

        result = asyncio.run(collector.collect("example.com"))

        assert len(calls) == 2
        assert result.sources_used == ["zoomeye"]


class TestFailoverDuringCollectionProperty:
    """Tests for substituting exhausted or failing sources."""

    def _exhausted_setup(self, failover_enabled: bool):
        manager = FailoverManager(failover_enabled=failover_enabled)
        manager.set_credentials("shodan", [APIKey("only-key")])
        manager.set_credentials("zoomeye", [APIKey("zoomeye-key")])
        calls = []
        fetchers = {
            "shodan": recording_fetcher(calls, {"only-key": rate_limited()}),
            "zoomeye": recording_fetcher(calls, {"zoomeye-key": ["1.2.3.4"]}),
        }
        return manager, fetchers, calls

    def test_exhausted_source_fails_over_to_unclaimed_source(self) -> None:
        manager, fetchers, calls = self._exhausted_setup(failover_enabled=True)
        collector = PassiveCollector(manager, fetchers)

        result = asyncio.run(collector.collect("example.com", sources=["shodan"]))

        assert result.sources_used == ["zoomeye"]
        assert "shodan" in result.errors
        assert manager.get_status("shodan").status == SourceState.RATE_LIMITED
        assert [c.ip for c in result.candidates] == ["1.2.3.4"]

    def test_no_failover_when_disabled(self) -> None:
        manager, fetchers, calls = self._exhausted_setup(failover_enabled=False)
        collector = PassiveCollector(manager, fetchers)

        result = asyncio.run(collector.collect("example.com", sources=["shodan"]))

        assert result.sources_used == []
        assert result.candidates == []
        assert calls == [APIKey("only-key")]

    def test_substitute_never_runs_twice(self) -> None:
        """A source already selected SHALL NOT also be claimed as a substitute."""
        manager, fetchers, calls = self._exhausted_setup(failover_enabled=True)
        collector = PassiveCollector(manager, fetchers)

        result = asyncio.run(collector.collect("example.com"))

        assert result.sources_used == ["zoomeye"]
        assert calls.count(APIKey("zoomeye-key")) == 1

    def test_generic_error_marks_error_and_fails_over(self) -> None:
        manager = FailoverManager()
        manager.set_credentials("virustotal", [APIKey("vt-key")])
        manager.register_source("ct")
        collector = PassiveCollector(manager, {
            "virustotal": recording_fetcher([], {"vt-key": ValueError("malformed response")}),
            "ct": static_fetcher(["5.6.7.8"], requires_credential=False),
        })

        result = asyncio.run(collector.collect("example.com", sources=["virustotal"]))

        status = manager.get_status("virustotal")
        assert status.status == SourceState.ERROR
        assert status.last_error == "malformed response"
        assert result.errors == {"virustotal": "malformed response"}
        assert result.sources_used == ["ct"]

    def test_missing_credential_skips_source(self) -> None:
        manager = FailoverManager(failover_enabled=False)
        manager.set_credentials("shodan", [])
        collector = PassiveCollector(manager, {
            "shodan": static_fetcher(["1.2.3.4"]),
            "dns": static_fetcher(["5.6.7.8"], requires_credential=False),
        })

        result = asyncio.run(collector.collect("example.com"))

        assert result.sources_used == ["dns"]
        assert "shodan" in result.errors

    def test_slow_fetch_times_out(self) -> None:
        manager = FailoverManager(failover_enabled=False)

        async def slow(domain, credential, timeout):
            await asyncio.sleep(5)
            return ["1.2.3.4"]

        collector = PassiveCollector(
            manager,
            {"wayback": SourceFetcher(fetch=slow, requires_credential=False)},
            fetch_timeout=0.01,
        )

        result = asyncio.run(collector.collect("example.com"))

        assert result.sources_used == []
        assert "timed out" in result.errors["wayback"]
        assert manager.get_status("wayback").status == SourceState.ERROR


class TestAdvisoryLoggingProperty:
    """Tests for the exhausted-credential advisory."""

    @given(silent=st.booleans())
    @settings(max_examples=10, deadline=None)
    def test_silent_errors_suppresses_advisory(self, silent: bool) -> None:
        logger = AuditLogger(output_stream=StringIO(), level=LogLevel.DEBUG)
        manager = FailoverManager(failover_enabled=False)
        manager.set_credentials("shodan", [APIKey("only-key")])
        collector = PassiveCollector(
            manager,
            {"shodan": recording_fetcher([], {"only-key": rate_limited()})},
            logger=logger,
            silent_errors=silent,
        )

        result = asyncio.run(collector.collect("example.com"))

        advisories = [e for e in logger.entries if e.message == "All credentials rate limited"]
        assert len(advisories) == (0 if silent else 1)
        assert "shodan" in result.errors

    def test_from_config_wires_policy(self) -> None:
        config = SystemConfig(
            sources=[
                SourceConfig(name="shodan", credentials=[APIKey("shodan-key-1")]),
                SourceConfig(name="censys", enabled=False),
            ],
            failover=FailoverConfig(enabled=True),
            scoring=ScoringConfig(min_confidence=0.9),
            silent_errors=True,
        )
        collector = PassiveCollector.from_config(config, {
            "shodan": static_fetcher(["1.2.3.4"]),
            "censys": static_fetcher(["5.6.7.8"]),
        })

        result = asyncio.run(collector.collect("example.com"))

        assert result.sources_used == ["shodan"]
        assert result.candidates == []
        assert [o.ip for o in result.observations] == ["1.2.3.4"]
        assert collector.manager.get_status("censys").status == SourceState.DISABLED


class TestMalformedPayloadProperty:
    """Tests for fetchers that return unusable data."""

    def test_malformed_record_keeps_other_sources(self) -> None:
        manager = FailoverManager()
        broken = PassiveIP(ip="198.51.100.7", source="wayback", metadata=None,
                           last_seen=datetime.now(timezone.utc), first_seen="yesterday")
        collector = PassiveCollector(manager, {
            "ct": static_fetcher(["203.0.113.5"], requires_credential=False),
            "wayback": static_fetcher([broken, PassiveIP(ip=12345, source="wayback")],
                                      requires_credential=False),
        })

        result = asyncio.run(collector.collect("example.com"))

        assert {c.ip for c in result.candidates} == {"203.0.113.5", "198.51.100.7"}
        assert result.sources_used == ["ct", "wayback"]
        assert result.errors == {}

    @given(payload=st.sampled_from([42, 3.5, object(), True]))
    @settings(max_examples=10, deadline=None)
    def test_non_iterable_payload_is_a_source_error(self, payload) -> None:
        """
        *For any* non-iterable fetcher payload, the source SHALL be marked as
        an error while the other sources' candidates are still returned.
        """
        manager = FailoverManager(failover_enabled=False)

        async def fetch(domain, credential, timeout):
            return payload

        collector = PassiveCollector(manager, {
            "ct": static_fetcher(["203.0.113.5"], requires_credential=False),
            "viewdns": SourceFetcher(fetch=fetch, requires_credential=False),
        })

        result = asyncio.run(collector.collect("example.com"))

        assert [c.ip for c in result.candidates] == ["203.0.113.5"]
        assert result.sources_used == ["ct"]
        assert result.errors["viewdns"].startswith("malformed response")
        assert manager.get_status("viewdns").status == SourceState.ERROR

    def test_malformed_payload_fails_over(self) -> None:
        manager = FailoverManager()

        async def fetch(domain, credential, timeout):
            return 7

        collector = PassiveCollector(manager, {
            "viewdns": SourceFetcher(fetch=fetch, requires_credential=False),
            "wayback": static_fetcher(["192.0.2.9"], requires_credential=False),
        })

        result = asyncio.run(collector.collect("example.com", sources=["viewdns"]))

        assert result.sources_used == ["wayback"]
        assert "viewdns" in result.errors


class TestCooldownProperty:
    """Tests for the cooldown applied when credentials run out."""

    def test_manager_cooldown_applies_without_retry_after(self) -> None:
        now = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
        manager = FailoverManager(failover_enabled=False, rate_limit_cooldown=60.0, clock=lambda: now)
        manager.set_credentials("shodan", [APIKey("only-key")])
        collector = PassiveCollector(manager, {
            "shodan": recording_fetcher([], {"only-key": rate_limited()}),
        })

        asyncio.run(collector.collect("example.com"))

        assert manager.get_status("shodan").rate_limit_end == now + timedelta(seconds=60)

    def test_retry_after_overrides_manager_cooldown(self) -> None:
        now = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
        manager = FailoverManager(failover_enabled=False, rate_limit_cooldown=60.0, clock=lambda: now)
        manager.set_credentials("shodan", [APIKey("only-key")])
        error = RateLimitError(code=ErrorCode.RATE_LIMITED.value, message="HTTP 429", retry_after=5.0)
        collector = PassiveCollector(manager, {
            "shodan": recording_fetcher([], {"only-key": error}),
        })

        asyncio.run(collector.collect("example.com"))

        assert manager.get_status("shodan").rate_limit_end == now + timedelta(seconds=5)
