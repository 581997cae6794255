import logging
from datetime import datetime, timedelta
from typing import List, Optional

from activity_schema import FusedResult, StabilizedActivity, utcnow
from constants import UNKNOWN_CATEGORY
from history_ring import HistoryRing

logger = logging.getLogger(__name__)


class TemporalStabilizer:
    """
    Sliding-window hysteresis over fused results.

    A new ``StabilizedActivity`` is committed only when the trailing window holds at least
    ``min_count`` results, all sharing one category, with mean confidence at or above
    ``commit_threshold``. Anything else holds the last committed value.
    """

    def __init__(
        self,
        window_seconds: float = 20.0,
        min_count: int = 3,
        commit_threshold: float = 0.6,
        capacity: int = 30,
    ) -> None:
        if min_count < 1:
            raise ValueError("min_count must be at least 1.")
        if min_count > capacity:
            raise ValueError("min_count cannot exceed the history capacity.")
        self.window = timedelta(seconds=window_seconds)
        self.min_count = min_count
        self.commit_threshold = commit_threshold
        self._history: HistoryRing[FusedResult] = HistoryRing(capacity)
        self._current: Optional[StabilizedActivity] = None

    @property
    def current(self) -> Optional[StabilizedActivity]:
        return self._current

    def window_results(self, now: Optional[datetime] = None) -> List[FusedResult]:
        now = now or utcnow()
        return self._history.since(now - self.window)

    def observe(self, fused: FusedResult, now: Optional[datetime] = None) -> Optional[StabilizedActivity]:
        """Record ``fused`` and return the new commit, or None when holding."""
        self._history.append(fused)
        window = self.window_results(now or fused.timestamp)

        if len(window) < self.min_count:
            return None
        categories = {result.primary_category for result in window}
        if len(categories) != 1:
            return None
        category = categories.pop()
        if category == UNKNOWN_CATEGORY:
            return None

        average = sum(result.overall_confidence for result in window) / len(window)
        if average < self.commit_threshold:
            return None

        previous = self._current
        self._current = StabilizedActivity(label=category, confidence=average, committed_at=now or fused.timestamp)
        if previous is None or previous.label != category:
            logger.info("Activity stabilized to %s (confidence %.2f)", category, average)
        return self._current

    def discard_older_than(self, cutoff: datetime) -> int:
        return self._history.remove_older_than(cutoff)

    def reset(self) -> None:
        self._history.clear()
        self._current = None
