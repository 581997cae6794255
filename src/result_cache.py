import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from activity_schema import DetectionResult

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    key: str
    result: DetectionResult
    expires_at: float


class ResultCache:
    """
    Time-to-live memoization of detector results keyed by context key.

    Expiry is purely time based: a lookup hits only while ``now < expires_at``. Expired
    slots are overwritten by the next ``store`` for the same key. When ``max_entries`` is
    set, exceeding it purges expired entries only; live entries are never evicted.
    """

    def __init__(
        self,
        ttl: float,
        *,
        name: str = "detector",
        max_entries: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl < 0:
            raise ValueError("Cache TTL must be non-negative.")
        self.ttl = ttl
        self.name = name
        self.max_entries = max_entries
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}

    def lookup(self, key: str) -> Tuple[Optional[DetectionResult], bool]:
        entry = self._entries.get(key)
        if entry is None:
            return None, False
        if self._clock() < entry.expires_at:
            logger.debug("%s cache hit for %s", self.name, key)
            return entry.result, True
        return None, False

    def store(self, key: str, result: DetectionResult) -> None:
        self._entries[key] = CacheEntry(key=key, result=result, expires_at=self._clock() + self.ttl)
        if self.max_entries is not None and len(self._entries) > self.max_entries:
            self.purge_expired()

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if now >= entry.expires_at]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Purged %d expired %s cache entries", len(expired), self.name)
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
