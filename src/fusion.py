import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from activity_schema import ActivityRecord, DetectionResult, FusedResult, SourceKind, utcnow
from classifier import AppCategoryClassifier, Classification, Classifier, KeywordClassifier
from constants import UNKNOWN_CATEGORY
from history_ring import HistoryRing

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FusionWeights:
    """
    Base weight per source kind plus reliability multipliers for text sources.

    Base weights must sum to at most 1.0 so the overall confidence stays bounded.
    """

    accessibility: float = 0.4
    ocr: float = 0.3
    application_state: float = 0.2
    historical: float = 0.1
    reliability: Mapping[SourceKind, float] = field(
        default_factory=lambda: {SourceKind.ACCESSIBILITY: 1.0, SourceKind.OCR: 0.8}
    )

    def __post_init__(self) -> None:
        weights = (self.accessibility, self.ocr, self.application_state, self.historical)
        if any(weight < 0 for weight in weights):
            raise ValueError("Fusion weights must be non-negative.")
        if sum(weights) > 1.0 + 1e-9:
            raise ValueError(f"Fusion weights sum to {sum(weights):.3f}; they must not exceed 1.0.")

    def base(self, kind: SourceKind) -> float:
        return {
            SourceKind.ACCESSIBILITY: self.accessibility,
            SourceKind.OCR: self.ocr,
            SourceKind.APPLICATION_STATE: self.application_state,
            SourceKind.HISTORICAL: self.historical,
        }[kind]

    def effective(self, kind: SourceKind) -> float:
        return self.base(kind) * self.reliability.get(kind, 1.0)


@dataclass(frozen=True)
class HistoricalPolicy:
    """How far back the recency signal may look and how fast it fades."""

    max_age_seconds: Optional[float] = 600.0
    half_life_seconds: Optional[float] = None

    def decay(self, age_seconds: float) -> Optional[float]:
        if self.max_age_seconds is not None and age_seconds > self.max_age_seconds:
            return None
        if not self.half_life_seconds:
            return 1.0
        return 0.5 ** (max(age_seconds, 0.0) / self.half_life_seconds)


def historical_signal(
    history: HistoryRing[ActivityRecord],
    context_key: str,
    policy: HistoricalPolicy,
    now: Optional[datetime] = None,
) -> Optional[DetectionResult]:
    """Recency opinion from the latest non-unknown activity seen for the same context key."""
    now = now or utcnow()
    record = history.find_latest(lambda item: item.context_key == context_key and item.category != UNKNOWN_CATEGORY)
    if record is None:
        return None
    factor = policy.decay((now - record.timestamp).total_seconds())
    if factor is None:
        return None
    return DetectionResult(
        source_kind=SourceKind.HISTORICAL,
        label=record.category,
        confidence=record.confidence * factor,
        context_key=context_key,
        timestamp=now,
    )


def default_classifiers() -> Dict[SourceKind, Classifier]:
    keywords = KeywordClassifier()
    return {
        SourceKind.ACCESSIBILITY: keywords,
        SourceKind.OCR: keywords,
        SourceKind.APPLICATION_STATE: AppCategoryClassifier(),
    }


class FusionEngine:
    """
    Merges one round of detector results into a single ``FusedResult``.

    Each usable live result is classified by the classifier registered for its source kind
    and contributes ``local_confidence * result.confidence * effective_weight`` to its
    category. The highest category wins; ties go to the category reached first in source
    priority order. Historical results only reinforce categories a live source supports.
    """

    def __init__(
        self,
        weights: Optional[FusionWeights] = None,
        classifiers: Optional[Mapping[SourceKind, Classifier]] = None,
        *,
        context_chars: int = 100,
    ) -> None:
        self.weights = weights or FusionWeights()
        self.classifiers = dict(default_classifiers() if classifiers is None else classifiers)
        self.context_chars = context_chars

    def fuse(self, results: Sequence[DetectionResult], now: Optional[datetime] = None) -> Optional[FusedResult]:
        if not results:
            return None

        ordered = sorted(results, key=lambda r: r.source_kind.priority)
        scores: Dict[str, float] = {}
        contributing: List[SourceKind] = []
        descriptors: List[str] = []
        insights: List[Tuple[str, str]] = []
        total = 0.0
        context_key = next((r.context_key for r in ordered if r.source_kind.is_live), ordered[0].context_key)

        for result in ordered:
            descriptors.append(self._describe(result))
            if not result.usable:
                continue

            if result.source_kind is SourceKind.HISTORICAL:
                category, local = result.label, 1.0
                if category not in scores:
                    logger.debug("Ignoring historical '%s' without live support", category)
                    continue
            else:
                category, local = self._classify(result)
                if category == UNKNOWN_CATEGORY:
                    # A classifier fallback is not evidence for any category.
                    logger.debug("No category for %s result", result.source_kind.value)
                    continue

            contribution = local * result.confidence * self.weights.effective(result.source_kind)
            if contribution <= 0:
                continue
            scores[category] = scores.get(category, 0.0) + contribution
            total += contribution
            if result.source_kind not in contributing:
                contributing.append(result.source_kind)
            insights.extend(result.metadata.get("insights", ()))

        primary = _pick_primary(scores)
        return FusedResult(
            primary_category=primary,
            overall_confidence=min(total, 1.0) if scores else 0.0,
            category_scores=scores,
            contributing_sources=tuple(contributing),
            context=" | ".join(descriptors),
            timestamp=now or utcnow(),
            context_key=context_key,
            insights=tuple(dict.fromkeys(insights)),
        )

    def _classify(self, result: DetectionResult) -> Classification:
        classifier = self.classifiers.get(result.source_kind)
        if classifier is None:
            return result.label or UNKNOWN_CATEGORY, 1.0
        return classifier.classify(result.content or result.label)

    def _describe(self, result: DetectionResult) -> str:
        descriptor = result.describe(self.context_chars)
        elements = result.metadata.get("element_count")
        if elements and result.usable:
            descriptor += f" | UI Elements: {elements}"
        return descriptor


def _pick_primary(scores: Dict[str, float]) -> str:
    primary = UNKNOWN_CATEGORY
    best = 0.0
    # Strict comparison keeps the first-inserted category on ties.
    for category, score in scores.items():
        if score > best:
            primary, best = category, score
    return primary
