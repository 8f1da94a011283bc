"""
Credential Store for the passive intelligence engine.

Holds the ordered credential list of every source together with a rotation
cursor. Each source has its own lock, so rotating one source never waits on
another. The store is owned by the FailoverManager; nothing else should hold
a reference to it.
"""

import threading
from dataclasses import dataclass, field
from typing import Optional

from .enums import ErrorCode
from .exceptions import NoCredentialError
from .models import Credential


@dataclass
class _CredentialRing:
    credentials: tuple[Credential, ...] = ()
    cursor: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock)


class CredentialStore:
    """
    Per-source credential lists with a monotonic rotation cursor.

    The cursor only moves forward (rotate) or back to zero (reset / replace).
    """

    def __init__(self) -> None:
        self._rings: dict[str, _CredentialRing] = {}
        self._rings_lock = threading.Lock()

    def _ring(self, source: str) -> Optional[_CredentialRing]:
        return self._rings.get(source)

    def _ensure_ring(self, source: str) -> _CredentialRing:
        with self._rings_lock:
            ring = self._rings.get(source)
            if ring is None:
                ring = _CredentialRing()
                self._rings[source] = ring
            return ring

    def set(self, source: str, credentials: list[Credential]) -> None:
        """Replace the list for a source and reset its cursor to 0."""
        ring = self._ensure_ring(source)
        with ring.lock:
            ring.credentials = tuple(credentials)
            ring.cursor = 0

    def current(self, source: str) -> Credential:
        """
        Return the credential at the current cursor.

        Raises:
            NoCredentialError: If the list is empty or the cursor is out of range
        """
        ring = self._ring(source)
        if ring is None:
            raise NoCredentialError(
                code=ErrorCode.NO_CREDENTIAL.value,
                message=f"no credential configured for {source}",
                details={"source": source},
            )
        with ring.lock:
            if not 0 <= ring.cursor < len(ring.credentials):
                raise NoCredentialError(
                    code=ErrorCode.NO_CREDENTIAL.value,
                    message=f"no credential configured for {source}",
                    details={"source": source, "index": ring.cursor},
                )
            return ring.credentials[ring.cursor]

    def rotate(self, source: str) -> bool:
        """
        Advance the cursor by one.

        Returns:
            True if a next credential exists, False if the list is exhausted
            (cursor left on the last valid index)
        """
        ring = self._ring(source)
        if ring is None:
            return False
        with ring.lock:
            if ring.cursor + 1 >= len(ring.credentials):
                return False
            ring.cursor += 1
            return True

    def reset(self, source: str) -> None:
        """Move the cursor back to the primary credential."""
        ring = self._ring(source)
        if ring is None:
            return
        with ring.lock:
            ring.cursor = 0

    def count(self, source: str) -> int:
        ring = self._ring(source)
        if ring is None:
            return 0
        with ring.lock:
            return len(ring.credentials)

    def position(self, source: str) -> int:
        """Current cursor index (0 when the source has no list)."""
        ring = self._ring(source)
        if ring is None:
            return 0
        with ring.lock:
            return ring.cursor
