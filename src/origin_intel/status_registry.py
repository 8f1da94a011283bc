"""
Source Status Registry for the passive intelligence engine.

Keeps one SourceStatus per registered source behind a per-source lock.
Reads hand out copies so callers can never mutate registry state directly.
"""

import threading
from dataclasses import dataclass, field, replace
from typing import Callable, TypeVar

from .exceptions import UnknownSourceError
from .models import SourceStatus

T = TypeVar("T")


@dataclass
class _StatusSlot:
    status: SourceStatus
    lock: threading.Lock = field(default_factory=threading.Lock)


class StatusRegistry:
    """Thread-safe map of source id to SourceStatus."""

    def __init__(self) -> None:
        # Insertion order doubles as registration order
        self._slots: dict[str, _StatusSlot] = {}
        self._slots_lock = threading.Lock()

    def register(self, source: str) -> bool:
        """
        Create an UNCHECKED entry if the source is new.

        Returns:
            True if the source was newly registered
        """
        with self._slots_lock:
            if source in self._slots:
                return False
            self._slots[source] = _StatusSlot(status=SourceStatus(source=source))
            return True

    def __contains__(self, source: str) -> bool:
        return source in self._slots

    def sources(self) -> list[str]:
        with self._slots_lock:
            return list(self._slots)

    def _slot(self, source: str) -> _StatusSlot:
        slot = self._slots.get(source)
        if slot is None:
            raise UnknownSourceError(source)
        return slot

    def update(self, source: str, mutate: Callable[[SourceStatus], T]) -> T:
        """
        Apply a mutation to a source's status while holding its lock.

        Raises:
            UnknownSourceError: If the source was never registered
        """
        slot = self._slot(source)
        with slot.lock:
            return mutate(slot.status)

    def snapshot(self, source: str) -> SourceStatus:
        """
        Return a copy of a source's status.

        Raises:
            UnknownSourceError: If the source was never registered
        """
        slot = self._slot(source)
        with slot.lock:
            return replace(slot.status)

    def snapshot_all(self) -> dict[str, SourceStatus]:
        return {source: self.snapshot(source) for source in self.sources()}
