import json
import sys
import tempfile
import unittest
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from activity_schema import SourceKind
from constants import ACCESSIBILITY_FAMILY, OCR_FAMILY
from settings_store import FocusSettings, load_settings


class SettingsStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.path = Path(self._tmp.name) / "settings.json"

    def test_missing_file_yields_defaults(self) -> None:
        settings = load_settings(self.path, environ={})

        self.assertEqual(settings, FocusSettings())
        self.assertEqual(settings.detector(OCR_FAMILY).sampling.base_interval, 10.0)
        self.assertEqual(settings.detector(OCR_FAMILY).sampling.grow_factor, 1.3)
        self.assertEqual(settings.detector(ACCESSIBILITY_FAMILY).sampling.max_interval, 10.0)
        self.assertAlmostEqual(settings.weights.effective(SourceKind.OCR), 0.24)

    def test_file_overrides_defaults(self) -> None:
        self.path.write_text(
            json.dumps(
                {
                    "weights": {"ocr": 0.2, "reliability": {"ocr": 0.5}},
                    "detectors": {OCR_FAMILY: {"cache_ttl": 30, "sampling": {"max_interval": 90}}},
                    "commit_threshold": 0.75,
                    "historical": {"half_life_seconds": 120},
                }
            ),
            encoding="utf-8",
        )

        settings = load_settings(self.path, environ={})

        self.assertEqual(settings.weights.ocr, 0.2)
        self.assertEqual(settings.weights.reliability[SourceKind.OCR], 0.5)
        self.assertEqual(settings.weights.reliability[SourceKind.ACCESSIBILITY], 1.0)
        self.assertEqual(settings.detector(OCR_FAMILY).cache_ttl, 30.0)
        self.assertEqual(settings.detector(OCR_FAMILY).sampling.max_interval, 90.0)
        self.assertEqual(settings.detector(OCR_FAMILY).sampling.base_interval, 10.0)
        self.assertEqual(settings.commit_threshold, 0.75)
        self.assertEqual(settings.historical.half_life_seconds, 120)
        self.assertEqual(settings.historical.max_age_seconds, 600.0)

    def test_invalid_file_falls_back_with_warning(self) -> None:
        self.path.write_text("{not json", encoding="utf-8")

        with self.assertLogs("settings_store", level="WARNING"):
            settings = load_settings(self.path, environ={})

        self.assertEqual(settings, FocusSettings())

    def test_environment_overrides_file(self) -> None:
        self.path.write_text(json.dumps({"detector_timeout": 4.0}), encoding="utf-8")
        environ = {
            "FOCUSLENS_DETECTOR_TIMEOUT": "3",
            "FOCUSLENS_STABILIZATION_MIN_COUNT": "4",
            "FOCUSLENS_OCR_ENABLED": "0",
        }

        settings = load_settings(self.path, environ=environ)

        self.assertEqual(settings.detector_timeout, 3.0)
        self.assertEqual(settings.stabilization_min_count, 4)
        self.assertFalse(settings.detector(OCR_FAMILY).enabled)
        self.assertTrue(settings.detector(ACCESSIBILITY_FAMILY).enabled)

    def test_invalid_environment_value_is_ignored(self) -> None:
        with self.assertLogs("settings_store", level="WARNING"):
            settings = load_settings(self.path, environ={"FOCUSLENS_COMMIT_THRESHOLD": "high"})

        self.assertEqual(settings.commit_threshold, 0.6)

    def test_unknown_family_gets_fallback_settings(self) -> None:
        fallback = FocusSettings().detector("clipboard")

        self.assertTrue(fallback.enabled)
        self.assertEqual(fallback.sampling.base_interval, 2.0)


if __name__ == "__main__":
    unittest.main()
