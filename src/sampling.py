import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

logger = logging.getLogger(__name__)

LABEL_SIMILARITY_WEIGHT = 0.8
CONTEXT_SIMILARITY_WEIGHT = 0.2


@dataclass(frozen=True)
class SamplingPolicy:
    """Cadence tuning for one detector family (or the fusion cycle)."""

    base_interval: float
    max_interval: float
    grow_factor: float = 1.2
    shrink_factor: float = 0.8
    debounce_count: int = 5
    high_similarity: float = 0.8

    def __post_init__(self) -> None:
        if self.base_interval <= 0:
            raise ValueError("base_interval must be positive.")
        if self.max_interval < self.base_interval:
            raise ValueError("max_interval must be >= base_interval.")
        if self.grow_factor < 1.0 or not 0.0 < self.shrink_factor <= 1.0:
            raise ValueError("grow_factor must be >= 1 and shrink_factor within (0, 1].")


@dataclass
class SamplingState:
    base_interval: float
    max_interval: float
    current_interval: float
    consecutive_stable_count: int = 0
    last_label: Optional[str] = None
    last_context_key: Optional[str] = None
    has_previous: bool = field(default=False)


def result_similarity(
    label_a: Optional[str],
    key_a: Optional[str],
    label_b: Optional[str],
    key_b: Optional[str],
) -> float:
    """Weighted label/context equality in [0, 1]; labels dominate."""
    label_match = 1.0 if label_a is not None and label_b is not None and label_a.lower() == label_b.lower() else 0.0
    key_match = 1.0 if key_a is not None and key_a == key_b else 0.0
    return label_match * LABEL_SIMILARITY_WEIGHT + key_match * CONTEXT_SIMILARITY_WEIGHT


class AdaptiveSamplingController:
    """
    Owns the polling interval of each registered family.

    Stable results (similarity above the policy threshold for more than ``debounce_count``
    consecutive rounds) stretch the interval toward ``max_interval``; divergent or missing
    results shrink it back toward ``base_interval``. Callers read ``interval(family)`` when
    scheduling the next round, so changes never apply retroactively.
    """

    def __init__(self) -> None:
        self._policies: Dict[str, SamplingPolicy] = {}
        self._states: Dict[str, SamplingState] = {}

    def register(self, family: str, policy: SamplingPolicy) -> SamplingState:
        self._policies[family] = policy
        state = SamplingState(
            base_interval=policy.base_interval,
            max_interval=policy.max_interval,
            current_interval=policy.base_interval,
        )
        self._states[family] = state
        return state

    def families(self):
        return list(self._states)

    def state(self, family: str) -> SamplingState:
        return self._states[family]

    def interval(self, family: str) -> float:
        return self._states[family].current_interval

    def reset(self, family: str) -> None:
        self.register(family, self._policies[family])

    def adapt(self, family: str, label: Optional[str], context_key: Optional[str]) -> bool:
        """
        Feed the newest accepted result (``label=None`` means no usable result this round).

        Returns True when the interval changed.
        """
        state = self._states[family]
        if label is None:
            state.last_label = None
            state.last_context_key = None
            state.has_previous = False
            return self.adapt_score(family, 0.0)

        if not state.has_previous:
            state.last_label = label
            state.last_context_key = context_key
            state.has_previous = True
            return False

        score = result_similarity(state.last_label, state.last_context_key, label, context_key)
        state.last_label = label
        state.last_context_key = context_key
        return self.adapt_score(family, score)

    def adapt_score(self, family: str, score: float) -> bool:
        policy = self._policies[family]
        state = self._states[family]

        if score > policy.high_similarity:
            state.consecutive_stable_count += 1
            if state.consecutive_stable_count <= policy.debounce_count:
                return False
            proposed = min(state.current_interval * policy.grow_factor, state.max_interval)
        else:
            state.consecutive_stable_count = 0
            proposed = max(state.current_interval * policy.shrink_factor, state.base_interval)

        proposed = min(max(proposed, state.base_interval), state.max_interval)
        if proposed == state.current_interval:
            return False

        direction = "Increasing" if proposed > state.current_interval else "Decreasing"
        state.current_interval = proposed
        logger.debug("%s %s interval to %.2fs", direction, family, proposed)
        return True
