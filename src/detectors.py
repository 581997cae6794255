import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Sequence, Tuple

from activity_schema import CaptureContext, DetectionResult, SourceKind
from constants import ACCESSIBILITY_FAMILY, APPLICATION_STATE_FAMILY, OCR_FAMILY
from detector_errors import DetectorError, DetectorTimeoutError, TransientExtractionError
from result_cache import ResultCache
from task_text import (
    extract_insights,
    is_meaningful_task_name,
    keep_recognized_fragments,
    task_from_content,
    task_from_ocr_text,
    task_from_title,
)

logger = logging.getLogger(__name__)

GENERIC_APPS = {"safari", "chrome", "google chrome", "finder", "mail", "messages"}


# Collaborator contracts -----------------------------------------------------


@dataclass
class ExtractedContent:
    text: str = ""
    elements: List[Any] = field(default_factory=list)
    error: Optional[str] = None
    title: str = ""


@dataclass
class RecognizedText:
    text: str = ""
    regions: List[Tuple[str, float]] = field(default_factory=list)
    error: Optional[str] = None


class ContextProvider(ABC):
    @abstractmethod
    def capture_context(self) -> Optional[CaptureContext]:
        pass


class ContentExtractor(ABC):
    @abstractmethod
    def extract_content(self, window_identity: str) -> ExtractedContent:
        pass


class ImageCapturer(ABC):
    @abstractmethod
    def capture_image(self, window_identity: str):
        """Return an image of the window (or screen), or None when nothing was captured."""


class TextRecognizer(ABC):
    @abstractmethod
    def recognize_text(self, image) -> RecognizedText:
        pass


async def call_collaborator(fn: Callable[..., Any], *args: Any, timeout: float, what: str = "collaborator") -> Any:
    """
    Await ``fn(*args)`` under ``timeout``.

    Coroutine functions are awaited directly; blocking callables run in a worker thread so
    they never stall the event loop. Expiry raises ``DetectorTimeoutError``.
    """
    if inspect.iscoroutinefunction(fn):
        awaitable = fn(*args)
    else:
        awaitable = asyncio.to_thread(fn, *args)
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise DetectorTimeoutError(f"{what} timed out after {timeout:.1f}s") from exc


# Adapters -------------------------------------------------------------------


class DetectorAdapter(ABC):
    """
    Uniform contract around one signal source.

    ``detect`` returns a ``DetectionResult`` for "found something" and for "found nothing"
    (``DetectionResult.empty``). Hard failures raise ``DetectorError`` subclasses; the
    orchestrator turns those into error results at the fan-out join.
    """

    family: str = ""
    source_kind: SourceKind = SourceKind.ACCESSIBILITY

    def __init__(self, *, call_timeout: float = 5.0) -> None:
        self.call_timeout = call_timeout

    @abstractmethod
    async def detect(self, context: CaptureContext) -> DetectionResult:
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(family={self.family!r})"


class AccessibilityDetector(DetectorAdapter):
    family = ACCESSIBILITY_FAMILY
    source_kind = SourceKind.ACCESSIBILITY

    def __init__(self, extractor: ContentExtractor, *, call_timeout: float = 5.0) -> None:
        super().__init__(call_timeout=call_timeout)
        self.extractor = extractor

    async def detect(self, context: CaptureContext) -> DetectionResult:
        extracted: ExtractedContent = await call_collaborator(
            self.extractor.extract_content,
            context.window_identity,
            timeout=self.call_timeout,
            what="accessibility extraction",
        )
        if extracted.error:
            raise TransientExtractionError(extracted.error, family=self.family)

        content = (extracted.text or "").strip()
        title = (extracted.title or "").strip()
        if not content and not title:
            logger.debug("No accessible content for %s", context.context_key)
            return DetectionResult.empty(self.source_kind, context.context_key)

        label = task_from_content(content) if content else task_from_title(title)
        return DetectionResult(
            source_kind=self.source_kind,
            label=label,
            confidence=self._confidence(content, label, context.app_name),
            context_key=context.context_key,
            content=content or title,
            metadata={"element_count": len(extracted.elements)},
        )

    @staticmethod
    def _confidence(content: str, label: str, app_name: str) -> float:
        confidence = 0.5
        if content:
            confidence += 0.3
        if is_meaningful_task_name(label):
            confidence += 0.2
        if app_name.strip().lower() in GENERIC_APPS:
            confidence -= 0.1
        return min(max(confidence, 0.0), 1.0)


class OCRDetector(DetectorAdapter):
    """
    Screen capture plus text recognition; the expensive family.

    Keeps a private result cache keyed by context so repeated detections of an unchanged
    window inside ``cache_ttl`` skip the capture and recognition calls entirely.
    """

    family = OCR_FAMILY
    source_kind = SourceKind.OCR

    def __init__(
        self,
        capturer: ImageCapturer,
        recognizer: TextRecognizer,
        *,
        call_timeout: float = 5.0,
        cache_ttl: float = 5.0,
    ) -> None:
        super().__init__(call_timeout=call_timeout)
        self.capturer = capturer
        self.recognizer = recognizer
        self._cache = ResultCache(cache_ttl, name="ocr-private", max_entries=100)

    async def detect(self, context: CaptureContext) -> DetectionResult:
        cached, hit = self._cache.lookup(context.context_key)
        if hit:
            return cached

        image = await call_collaborator(
            self.capturer.capture_image,
            context.window_identity,
            timeout=self.call_timeout,
            what="screen capture",
        )
        if image is None:
            raise TransientExtractionError("screen capture returned no image", family=self.family)

        recognized: RecognizedText = await call_collaborator(
            self.recognizer.recognize_text,
            image,
            timeout=self.call_timeout,
            what="text recognition",
        )
        if recognized.error:
            raise TransientExtractionError(recognized.error, family=self.family)

        result = self._build_result(context, recognized)
        self._cache.store(context.context_key, result)
        return result

    def _build_result(self, context: CaptureContext, recognized: RecognizedText) -> DetectionResult:
        fragments = keep_recognized_fragments(recognized.regions)
        if not fragments and recognized.text.strip():
            # Engines without per-region output get a neutral confidence.
            fragments = keep_recognized_fragments([(recognized.text, 0.5)])
        if not fragments:
            return DetectionResult.empty(self.source_kind, context.context_key)

        text = " ".join(fragment for fragment, _ in fragments)
        confidence = sum(score for _, score in fragments) / len(fragments)
        return DetectionResult(
            source_kind=self.source_kind,
            label=task_from_ocr_text(text),
            confidence=confidence,
            context_key=context.context_key,
            content=text,
            metadata={"region_count": len(fragments), "insights": extract_insights(text)},
        )


class ApplicationStateDetector(DetectorAdapter):
    """Foreground application identity; cheap and always available when context is."""

    family = APPLICATION_STATE_FAMILY
    source_kind = SourceKind.APPLICATION_STATE

    async def detect(self, context: CaptureContext) -> DetectionResult:
        identity = context.app_identity.strip()
        if not identity or identity.lower() == "unknown":
            return DetectionResult.empty(self.source_kind, context.context_key, reason="no foreground app")
        metadata = {"app_name": context.app_name}
        title = context.window_identity
        if " - " in title:
            metadata["document_name"] = title.split(" - ")[0]
        return DetectionResult(
            source_kind=self.source_kind,
            label=context.app_name or identity,
            confidence=1.0,
            context_key=context.context_key,
            content=identity,
            metadata=metadata,
        )


def families_of(detectors: Sequence[DetectorAdapter]) -> List[str]:
    families = [detector.family for detector in detectors]
    if len(set(families)) != len(families):
        raise ValueError(f"Duplicate detector families: {families}")
    return families


__all__ = [
    "AccessibilityDetector",
    "ApplicationStateDetector",
    "ContentExtractor",
    "ContextProvider",
    "DetectorAdapter",
    "DetectorError",
    "ExtractedContent",
    "ImageCapturer",
    "OCRDetector",
    "RecognizedText",
    "TextRecognizer",
    "call_collaborator",
    "families_of",
]
