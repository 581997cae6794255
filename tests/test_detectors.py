import asyncio
import sys
import unittest
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from activity_schema import CaptureContext, SourceKind
from detector_errors import DetectorTimeoutError, TransientExtractionError
from detectors import (
    AccessibilityDetector,
    ApplicationStateDetector,
    ContentExtractor,
    ExtractedContent,
    ImageCapturer,
    OCRDetector,
    RecognizedText,
    TextRecognizer,
    call_collaborator,
    families_of,
)

CONTEXT = CaptureContext(app_identity="com.microsoft.VSCode", window_identity="auth.py - api", app_name="Code")


class _Extractor(ContentExtractor):
    def __init__(self, content: ExtractedContent) -> None:
        self.content = content

    def extract_content(self, window_identity: str) -> ExtractedContent:
        return self.content


class _SlowExtractor(ContentExtractor):
    async def extract_content(self, window_identity: str) -> ExtractedContent:
        await asyncio.sleep(1)
        return ExtractedContent(text="late")


class _Capturer(ImageCapturer):
    def __init__(self, image="frame") -> None:
        self.image = image

    def capture_image(self, window_identity: str):
        return self.image


class _Recognizer(TextRecognizer):
    def __init__(self, recognized: RecognizedText) -> None:
        self.recognized = recognized
        self.calls = 0

    async def recognize_text(self, image) -> RecognizedText:
        self.calls += 1
        return self.recognized


class CallCollaboratorTests(unittest.IsolatedAsyncioTestCase):
    async def test_runs_sync_and_async_callables(self) -> None:
        async def double(value):
            return value * 2

        self.assertEqual(await call_collaborator(len, "abc", timeout=1.0), 3)
        self.assertEqual(await call_collaborator(double, 4, timeout=1.0), 8)

    async def test_timeout_becomes_detector_timeout(self) -> None:
        async def stall():
            await asyncio.sleep(1)

        with self.assertRaises(DetectorTimeoutError):
            await call_collaborator(stall, timeout=0.01)


class AccessibilityDetectorTests(unittest.IsolatedAsyncioTestCase):
    async def test_content_yields_confident_task(self) -> None:
        extracted = ExtractedContent(text="Fix login bug in auth.py", elements=["a", "b", "c"])
        result = await AccessibilityDetector(_Extractor(extracted)).detect(CONTEXT)

        self.assertEqual(result.source_kind, SourceKind.ACCESSIBILITY)
        self.assertEqual(result.label, "Fix login bug in auth")
        self.assertAlmostEqual(result.confidence, 1.0)
        self.assertEqual(result.metadata["element_count"], 3)
        self.assertEqual(result.context_key, CONTEXT.context_key)

    async def test_title_fallback_in_generic_app(self) -> None:
        context = CaptureContext(app_identity="com.apple.Safari", window_identity="Quarterly plan", app_name="Safari")
        result = await AccessibilityDetector(_Extractor(ExtractedContent(title="Quarterly plan"))).detect(context)

        self.assertEqual(result.label, "Quarterly plan")
        self.assertAlmostEqual(result.confidence, 0.6)

    async def test_nothing_found_is_an_empty_result(self) -> None:
        result = await AccessibilityDetector(_Extractor(ExtractedContent())).detect(CONTEXT)

        self.assertTrue(result.no_content)
        self.assertEqual(result.confidence, 0.0)
        self.assertIsNone(result.error)

    async def test_extractor_error_is_transient(self) -> None:
        detector = AccessibilityDetector(_Extractor(ExtractedContent(error="AX tree unavailable")))

        with self.assertRaises(TransientExtractionError):
            await detector.detect(CONTEXT)

    async def test_slow_extractor_times_out(self) -> None:
        with self.assertRaises(DetectorTimeoutError):
            await AccessibilityDetector(_SlowExtractor(), call_timeout=0.01).detect(CONTEXT)


class OCRDetectorTests(unittest.IsolatedAsyncioTestCase):
    async def test_recognized_regions_are_filtered_and_cached(self) -> None:
        recognized = RecognizedText(
            regions=[
                ("File", 0.99),
                ("Quarterly report for https://example.com", 0.9),
                ("Budget analysis", 0.7),
            ]
        )
        recognizer = _Recognizer(recognized)
        detector = OCRDetector(_Capturer(), recognizer)

        first = await detector.detect(CONTEXT)
        second = await detector.detect(CONTEXT)

        self.assertIs(first, second)
        self.assertEqual(recognizer.calls, 1)
        self.assertAlmostEqual(first.confidence, 0.8)
        self.assertEqual(first.label, "report analysis")
        self.assertEqual(first.metadata["region_count"], 2)
        self.assertIn(("url", "https://example.com"), first.metadata["insights"])

    async def test_plain_text_gets_neutral_confidence(self) -> None:
        detector = OCRDetector(_Capturer(), _Recognizer(RecognizedText(text="Sprint planning notes")))

        result = await detector.detect(CONTEXT)

        self.assertAlmostEqual(result.confidence, 0.5)
        self.assertEqual(result.content, "Sprint planning notes")

    async def test_no_text_is_empty(self) -> None:
        result = await OCRDetector(_Capturer(), _Recognizer(RecognizedText())).detect(CONTEXT)

        self.assertTrue(result.no_content)

    async def test_missing_image_and_recognizer_error_are_transient(self) -> None:
        with self.assertRaises(TransientExtractionError):
            await OCRDetector(_Capturer(image=None), _Recognizer(RecognizedText(text="x"))).detect(CONTEXT)
        with self.assertRaises(TransientExtractionError):
            await OCRDetector(_Capturer(), _Recognizer(RecognizedText(error="engine crashed"))).detect(CONTEXT)


class ApplicationStateDetectorTests(unittest.IsolatedAsyncioTestCase):
    async def test_reports_foreground_app(self) -> None:
        result = await ApplicationStateDetector().detect(CONTEXT)

        self.assertEqual(result.label, "Code")
        self.assertEqual(result.content, "com.microsoft.VSCode")
        self.assertEqual(result.confidence, 1.0)
        self.assertEqual(result.metadata["document_name"], "auth.py")

    async def test_unknown_app_is_empty(self) -> None:
        result = await ApplicationStateDetector().detect(CaptureContext(app_identity="Unknown", window_identity=""))

        self.assertTrue(result.no_content)


class FamiliesTests(unittest.TestCase):
    def test_duplicate_families_rejected(self) -> None:
        with self.assertRaises(ValueError):
            families_of([ApplicationStateDetector(), ApplicationStateDetector()])


if __name__ == "__main__":
    unittest.main()
