"""
Aggregation helpers for passive observations.

Pure functions over PassiveIP lists: grouping by IP, counting distinct
sources per IP, stable deduplication, and turning raw fetcher output into
PassiveIP records. Input records are never mutated.
"""

import ipaddress
from datetime import datetime
from typing import Iterable, Iterator, Mapping, Optional, Sequence, Union

from .models import PassiveIP

RawResult = Union[str, PassiveIP]


def _moment(value) -> Optional[datetime]:
    return value if isinstance(value, datetime) else None


def _confidence(value) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    return float(value)


def group_by_ip(records: Iterable[PassiveIP]) -> dict[str, list[PassiveIP]]:
    """
    Group observations by IP address.

    Returns:
        Mapping of IP to its observations; keys follow the order in which
        each IP first appears
    """
    groups: dict[str, list[PassiveIP]] = {}
    for record in records:
        groups.setdefault(record.ip, []).append(record)
    return groups


def iter_with_groups(records: Sequence[PassiveIP]) -> Iterator[tuple[PassiveIP, list[PassiveIP]]]:
    """Yield each record together with every observation sharing its IP."""
    groups = group_by_ip(records)
    for record in records:
        yield record, groups[record.ip]


def count_distinct_sources(ip: str, records: Iterable[PassiveIP]) -> int:
    """Number of distinct sources that reported `ip` in `records`."""
    return len({record.source for record in records if record.ip == ip})


def dedupe_by_ip(records: Iterable[PassiveIP]) -> list[PassiveIP]:
    """
    Keep one observation per IP.

    The highest-confidence record wins; on a tie the earliest one is kept.
    Each IP stays at the position of its first appearance.
    """
    best: dict[str, PassiveIP] = {}
    for record in records:
        current = best.get(record.ip)
        if current is None or record.confidence > current.confidence:
            best[record.ip] = record
    return list(best.values())


def _is_ipv4(value: str) -> bool:
    try:
        ipaddress.IPv4Address(value)
    except ValueError:
        return False
    return True


def normalize_observations(
    source: str,
    raw: Iterable[RawResult],
    observed_at: datetime,
) -> list[PassiveIP]:
    """
    Convert raw fetcher output into PassiveIP records for `source`.

    Plain strings become records seen at `observed_at`. PassiveIP values are
    copied with their source forced to `source`; malformed metadata, times or
    confidence values are dropped from the copy. Anything that is not a valid
    IPv4 address is dropped.

    Args:
        source: Source id the results came from
        raw: Strings or PassiveIP records returned by a fetcher
        observed_at: Timestamp used for plain-string results

    Returns:
        New list of PassiveIP records
    """
    normalized: list[PassiveIP] = []
    for item in raw:
        if isinstance(item, PassiveIP):
            if not isinstance(item.ip, str):
                continue
            ip = item.ip.strip()
            if not _is_ipv4(ip):
                continue
            normalized.append(PassiveIP(
                ip=ip,
                source=source,
                confidence=_confidence(item.confidence),
                first_seen=_moment(item.first_seen),
                last_seen=_moment(item.last_seen),
                metadata=dict(item.metadata) if isinstance(item.metadata, Mapping) else {},
            ))
        elif isinstance(item, str):
            ip = item.strip()
            if not _is_ipv4(ip):
                continue
            normalized.append(PassiveIP(
                ip=ip,
                source=source,
                first_seen=observed_at,
                last_seen=observed_at,
            ))
    return normalized


def merge_observations(
    results: Mapping[str, Iterable[RawResult]],
    observed_at: datetime,
) -> list[PassiveIP]:
    """Flatten per-source fetcher output into one list, in mapping order."""
    merged: list[PassiveIP] = []
    for source, raw in results.items():
        merged.extend(normalize_observations(source, raw, observed_at))
    return merged
