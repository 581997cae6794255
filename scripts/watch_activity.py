#!/usr/bin/env python3
"""Watch the focused window and print stabilized activity as it changes."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from api_models import GeminiTextRecognizer  # noqa: E402
from constants import OCR_FAMILY  # noqa: E402
from db import ActivityArchive  # noqa: E402
from detectors import (  # noqa: E402
    AccessibilityDetector,
    ApplicationStateDetector,
    DetectorAdapter,
    OCRDetector,
)
from monitor import ActiveWindowInspector, ScreenCapturer  # noqa: E402
from orchestrator import ActivityOrchestrator  # noqa: E402
from settings_store import load_settings  # noqa: E402

logger = logging.getLogger("focuslens")


def build_detectors(inspector: ActiveWindowInspector, call_timeout: float, ocr_cache_ttl: float) -> List[DetectorAdapter]:
    return [
        AccessibilityDetector(inspector, call_timeout=call_timeout),
        OCRDetector(
            ScreenCapturer(inspector),
            GeminiTextRecognizer(),
            call_timeout=call_timeout,
            cache_ttl=ocr_cache_ttl,
        ),
        ApplicationStateDetector(call_timeout=call_timeout),
    ]


async def watch(duration: Optional[float], settings_path: Optional[Path], archive: bool) -> None:
    settings = load_settings(settings_path)
    inspector = ActiveWindowInspector()
    store = ActivityArchive() if archive else None
    if store is not None and not store.enabled:
        logger.warning("Archiving requested but FOCUSLENS_MONGO_URI is not reachable; continuing without it.")
        store = None

    def on_commit(activity) -> None:
        print(f"[{activity.committed_at:%H:%M:%S}] {activity.label} ({activity.confidence:.0%})")

    def on_permission_denied(family, error) -> None:
        print(f"Detector '{family}' unavailable: {error}", file=sys.stderr)

    orchestrator = ActivityOrchestrator(
        inspector,
        build_detectors(inspector, settings.collaborator_timeout, settings.detector(OCR_FAMILY).cache_ttl),
        settings=settings,
        on_commit=on_commit,
        on_entry=store.publish_activity if store is not None else None,
        on_permission_denied=on_permission_denied,
    )
    orchestrator.start()
    try:
        if duration is None:
            await asyncio.Event().wait()
        else:
            await asyncio.sleep(duration)
    finally:
        await orchestrator.stop()
        stats = orchestrator.get_statistics()
        print(
            f"{stats.count} cycles, average confidence {stats.average_confidence:.2f}, "
            f"{stats.context_switch_count} context switches"
        )
        for category, count in stats.top_categories:
            print(f"  {category}: {count}")
        if store is not None:
            store.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Infer the current activity from the focused window.")
    parser.add_argument("--duration", type=float, default=None, help="Seconds to watch (default: until Ctrl-C)")
    parser.add_argument("--settings", type=Path, default=None, help="Path to a settings JSON file")
    parser.add_argument("--archive", action="store_true", help="Archive every cycle to MongoDB")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        asyncio.run(watch(args.duration, args.settings, args.archive))
    except KeyboardInterrupt:
        print("Stopped.")


if __name__ == "__main__":
    main()
