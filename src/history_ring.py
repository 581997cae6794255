from __future__ import annotations

from collections import deque
from datetime import datetime
from typing import Callable, Deque, Generic, Iterator, List, Optional, TypeVar

T = TypeVar("T")


class HistoryRing(Generic[T]):
    """Fixed-capacity ring that keeps insertion order and drops the oldest entries first."""

    def __init__(self, capacity: int, timestamp_of: Optional[Callable[[T], datetime]] = None) -> None:
        if capacity < 1:
            raise ValueError("HistoryRing capacity must be at least 1.")
        self.capacity = capacity
        self._items: Deque[T] = deque(maxlen=capacity)
        self._timestamp_of = timestamp_of or (lambda item: getattr(item, "timestamp"))

    def append(self, item: T) -> None:
        self._items.append(item)

    def extend(self, items) -> None:
        self._items.extend(items)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._items))

    def __bool__(self) -> bool:
        return bool(self._items)

    def items(self) -> List[T]:
        return list(self._items)

    def last(self) -> Optional[T]:
        return self._items[-1] if self._items else None

    def since(self, cutoff: datetime) -> List[T]:
        """Entries with timestamp >= cutoff, oldest first."""
        return [item for item in self._items if self._timestamp_of(item) >= cutoff]

    def latest(self, limit: int) -> List[T]:
        """Up to ``limit`` entries, most recent first."""
        if limit <= 0:
            return []
        result: List[T] = []
        for item in reversed(self._items):
            result.append(item)
            if len(result) >= limit:
                break
        return result

    def find_latest(self, predicate: Callable[[T], bool]) -> Optional[T]:
        for item in reversed(self._items):
            if predicate(item):
                return item
        return None

    def remove_older_than(self, cutoff: datetime) -> int:
        kept = [item for item in self._items if self._timestamp_of(item) >= cutoff]
        removed = len(self._items) - len(kept)
        if removed:
            self._items = deque(kept, maxlen=self.capacity)
        return removed

    def clear(self) -> None:
        self._items.clear()
