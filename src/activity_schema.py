from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from constants import UNKNOWN_CATEGORY
from detector_errors import DetectorError

FocusBounds = Tuple[int, int, int, int]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SourceKind(str, Enum):
    """Signal source families. Declaration order is the fusion tie-break priority."""

    ACCESSIBILITY = "accessibility"
    OCR = "ocr"
    APPLICATION_STATE = "application_state"
    HISTORICAL = "historical"

    @property
    def priority(self) -> int:
        return list(SourceKind).index(self)

    @property
    def is_live(self) -> bool:
        return self is not SourceKind.HISTORICAL


@dataclass(frozen=True)
class CaptureContext:
    """Identity of the window/app being observed for one sampling round."""

    app_identity: str
    window_identity: str
    app_name: str = ""
    bounds: Optional[FocusBounds] = None

    @property
    def context_key(self) -> str:
        digest = hashlib.sha1(self.window_identity.encode("utf-8")).hexdigest()[:12]
        return f"{self.app_identity}:{digest}"


@dataclass(frozen=True)
class DetectionResult:
    """
    One detector's opinion for one sampling round.

    A result carrying ``error`` is excluded from fusion. A result flagged ``no_content``
    is a valid "nothing found" answer with zero confidence, not a failure.
    """

    source_kind: SourceKind
    label: str
    confidence: float
    context_key: str
    timestamp: datetime = field(default_factory=utcnow)
    content: str = ""
    no_content: bool = False
    error: Optional[DetectorError] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            object.__setattr__(self, "confidence", min(max(float(self.confidence), 0.0), 1.0))

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def usable(self) -> bool:
        """True when the result may carry weight in fusion."""
        if self.error is not None or self.no_content:
            return False
        return bool((self.content or self.label).strip())

    @classmethod
    def failed(
        cls,
        source_kind: SourceKind,
        context_key: str,
        error: DetectorError,
    ) -> "DetectionResult":
        return cls(source_kind=source_kind, label="", confidence=0.0, context_key=context_key, error=error)

    @classmethod
    def empty(cls, source_kind: SourceKind, context_key: str, reason: str = "no content") -> "DetectionResult":
        return cls(
            source_kind=source_kind,
            label="",
            confidence=0.0,
            context_key=context_key,
            no_content=True,
            metadata={"reason": reason},
        )

    def describe(self, max_chars: int = 100) -> str:
        """Short descriptor used in fusion context traces."""
        tag = _SOURCE_TAGS[self.source_kind]
        if self.error is not None:
            return f"{tag}: unavailable ({self.error.kind})"
        if not self.usable:
            return f"{tag}: no content"
        text = " ".join((self.content or self.label).split())
        return f"{tag}: {text[:max_chars]}"


_SOURCE_TAGS = {
    SourceKind.ACCESSIBILITY: "AX",
    SourceKind.OCR: "OCR",
    SourceKind.APPLICATION_STATE: "App",
    SourceKind.HISTORICAL: "Recent",
}


@dataclass(frozen=True)
class FusedResult:
    """Per-cycle fusion output. overall_confidence is min(sum of contributions, 1.0)."""

    primary_category: str
    overall_confidence: float
    category_scores: Dict[str, float]
    contributing_sources: Tuple[SourceKind, ...]
    context: str
    timestamp: datetime = field(default_factory=utcnow)
    context_key: str = ""
    insights: Tuple[Tuple[str, str], ...] = ()

    @property
    def is_unknown(self) -> bool:
        return self.primary_category == UNKNOWN_CATEGORY


@dataclass(frozen=True)
class StabilizedActivity:
    label: str
    confidence: float
    committed_at: datetime = field(default_factory=utcnow)


@dataclass
class ActivityRecord:
    """
    History entry for one fusion cycle.

    Kept in the orchestrator's activity ring and handed to ``on_entry`` observers, which may
    archive ``to_payload()`` outside the process.
    """

    fused: FusedResult
    context_key: str
    app_identity: str
    window_title: str
    sources: Tuple[DetectionResult, ...] = ()
    processing_seconds: float = 0.0

    @property
    def timestamp(self) -> datetime:
        return self.fused.timestamp

    @property
    def category(self) -> str:
        return self.fused.primary_category

    @property
    def confidence(self) -> float:
        return self.fused.overall_confidence

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "timestamp": self.timestamp,
            "category": self.category,
            "confidence": round(self.confidence, 4),
            "category_scores": {k: round(v, 4) for k, v in self.fused.category_scores.items()},
            "contributing_sources": [kind.value for kind in self.fused.contributing_sources],
            "context": self.fused.context or None,
            "context_key": self.context_key,
            "app_identity": self.app_identity,
            "window_title": self.window_title or None,
            "insights": [{"type": kind, "value": value} for kind, value in self.fused.insights] or None,
            "processing_seconds": round(self.processing_seconds, 4),
            "failed_sources": [r.source_kind.value for r in self.sources if r.error is not None] or None,
        }
        # Drop keys whose value is None to keep archived documents lean.
        return {k: v for k, v in payload.items() if v is not None}


@dataclass
class ActivityStatistics:
    count: int
    average_confidence: float
    top_categories: List[Tuple[str, int]]
    context_switch_count: int
    average_processing_time: float = 0.0
    current_activity: Optional[StabilizedActivity] = None

    @property
    def is_healthy(self) -> bool:
        return self.average_confidence > 0.6 and self.average_processing_time < 2.0
