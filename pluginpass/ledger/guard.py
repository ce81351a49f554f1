"""
Concurrency Guard - serializes every mutation of the ledger.

Reads never take the guard. Anything that writes (upserts, claims) holds
it for the duration of a fresh re-read plus the write, and gives up with
ContentionError rather than waiting forever.
"""

import logging
import threading
from contextlib import contextmanager
from functools import lru_cache
from typing import Iterator, Optional

from .errors import ContentionError

logger = logging.getLogger(__name__)


class ConcurrencyGuard:
    """Process-wide mutex with a bounded wait."""

    def __init__(self, timeout_seconds: float = 5.0):
        self.timeout_seconds = timeout_seconds
        self._lock = threading.Lock()

    @contextmanager
    def hold(self, timeout: Optional[float] = None, purpose: str = "mutation") -> Iterator[None]:
        """
        Hold the guard for the body of a with-block.

        Args:
            timeout: Seconds to wait (defaults to the guard's timeout)
            purpose: Short label for log messages

        Raises:
            ContentionError: guard not acquired in time
        """
        wait = self.timeout_seconds if timeout is None else timeout
        if not self._lock.acquire(timeout=wait):
            logger.warning(f"Ledger lock contention: {purpose} gave up after {wait:g}s")
            raise ContentionError(f"ledger busy, could not acquire lock within {wait:g}s")
        try:
            yield
        finally:
            self._lock.release()

    def locked(self) -> bool:
        return self._lock.locked()


@lru_cache
def get_guard() -> ConcurrencyGuard:
    """Get the shared guard instance for this process."""
    return ConcurrencyGuard()
