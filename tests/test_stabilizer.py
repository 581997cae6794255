import sys
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from activity_schema import FusedResult, SourceKind
from stabilizer import TemporalStabilizer

T0 = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


def _fused(category: str, confidence: float, seconds: float) -> FusedResult:
    return FusedResult(
        primary_category=category,
        overall_confidence=confidence,
        category_scores={category: confidence},
        contributing_sources=(SourceKind.ACCESSIBILITY,),
        context="",
        timestamp=T0 + timedelta(seconds=seconds),
    )


class TemporalStabilizerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.stabilizer = TemporalStabilizer(window_seconds=10.0, min_count=3, commit_threshold=0.8)

    def test_commits_on_third_uniform_confident_result(self) -> None:
        self.assertIsNone(self.stabilizer.observe(_fused("coding", 0.85, 0)))
        self.assertIsNone(self.stabilizer.observe(_fused("coding", 0.85, 2)))
        self.assertIsNone(self.stabilizer.current)

        committed = self.stabilizer.observe(_fused("coding", 0.85, 4))

        self.assertEqual(committed.label, "coding")
        self.assertAlmostEqual(committed.confidence, 0.85)
        self.assertEqual(committed.committed_at, T0 + timedelta(seconds=4))
        self.assertIs(self.stabilizer.current, committed)

    def test_alternating_categories_never_commit(self) -> None:
        for step in range(20):
            category = "coding" if step % 2 == 0 else "browsing"
            self.assertIsNone(self.stabilizer.observe(_fused(category, 0.95, step)))
        self.assertIsNone(self.stabilizer.current)

    def test_low_average_confidence_holds(self) -> None:
        for step in range(3):
            self.stabilizer.observe(_fused("coding", 0.7, step))
        self.assertIsNone(self.stabilizer.current)

    def test_unknown_is_never_committed(self) -> None:
        for step in range(5):
            self.stabilizer.observe(_fused("unknown", 1.0, step))
        self.assertIsNone(self.stabilizer.current)

    def test_results_outside_window_do_not_count(self) -> None:
        self.stabilizer.observe(_fused("coding", 0.9, 0))
        self.stabilizer.observe(_fused("coding", 0.9, 1))

        self.assertIsNone(self.stabilizer.observe(_fused("coding", 0.9, 12)))

    def test_mixed_window_holds_previous_commit(self) -> None:
        for step in range(3):
            self.stabilizer.observe(_fused("coding", 0.9, step))
        committed = self.stabilizer.current

        self.assertIsNone(self.stabilizer.observe(_fused("browsing", 0.9, 3)))
        self.assertIs(self.stabilizer.current, committed)

    def test_reset_clears_commit(self) -> None:
        for step in range(3):
            self.stabilizer.observe(_fused("coding", 0.9, step))
        self.stabilizer.reset()

        self.assertIsNone(self.stabilizer.current)
        self.assertEqual(self.stabilizer.window_results(T0 + timedelta(seconds=3)), [])

    def test_min_count_validation(self) -> None:
        with self.assertRaises(ValueError):
            TemporalStabilizer(min_count=0)
        with self.assertRaises(ValueError):
            TemporalStabilizer(min_count=5, capacity=3)


if __name__ == "__main__":
    unittest.main()
