import logging
import platform
import threading
import time
from dataclasses import dataclass
from typing import List, Optional, Tuple

import mss
from PIL import Image

from activity_schema import CaptureContext, FocusBounds
from detector_errors import PermissionDeniedError, TransientExtractionError
from detectors import ContentExtractor, ContextProvider, ExtractedContent, ImageCapturer

try:
    from AppKit import NSWorkspace  # type: ignore
    from Quartz import (  # type: ignore
        CGWindowListCopyWindowInfo,
        kCGWindowListOptionOnScreenOnly,
        kCGNullWindowID,
    )
except ImportError:  # pragma: no cover - optional on non-mac systems
    NSWorkspace = None
    CGWindowListCopyWindowInfo = None
    kCGWindowListOptionOnScreenOnly = None
    kCGNullWindowID = None

logger = logging.getLogger(__name__)


@dataclass
class ActiveWindowSnapshot:
    """Represents the current active window, including geometry if available."""

    app: str = "Unknown"
    title: str = "Unknown"
    bundle_id: str = ""
    bounds: Optional[FocusBounds] = None


class ActiveWindowInspector(ContextProvider, ContentExtractor):
    """
    Frontmost window metadata via AppKit/Quartz, cached briefly to avoid redundant OS calls.

    Serves both as the context provider (which app and window are focused) and as a
    lightweight content extractor that reports the focused window title.
    """

    def __init__(self, cache_max_age: float = 0.25) -> None:
        self.cache_max_age = cache_max_age
        self._lock = threading.Lock()
        self._cache = ActiveWindowSnapshot()
        self._last_fetch = 0.0

    @property
    def available(self) -> bool:
        return platform.system() == "Darwin" and NSWorkspace is not None and CGWindowListCopyWindowInfo is not None

    def snapshot(self, *, cache_max_age: Optional[float] = None) -> ActiveWindowSnapshot:
        max_age = self.cache_max_age if cache_max_age is None else cache_max_age
        now = time.time()
        with self._lock:
            if max_age >= 0 and now - self._last_fetch <= max_age:
                return self._cache
            self._cache = self._fetch_snapshot()
            self._last_fetch = now
            return self._cache

    def capture_context(self) -> Optional[CaptureContext]:
        if not self.available:
            raise PermissionDeniedError("Window inspection requires macOS with pyobjc installed.")
        snapshot = self.snapshot()
        if snapshot.app == "Unknown" and not snapshot.bundle_id:
            return None
        logger.debug("Focused %s / %r at %s", snapshot.app, snapshot.title, _format_focus_bounds(snapshot.bounds))
        return CaptureContext(
            app_identity=snapshot.bundle_id or snapshot.app,
            window_identity=snapshot.title,
            app_name=snapshot.app,
            bounds=snapshot.bounds,
        )

    def extract_content(self, window_identity: str) -> ExtractedContent:
        if not self.available:
            raise PermissionDeniedError("Accessibility inspection requires macOS with pyobjc installed.")
        snapshot = self.snapshot()
        title = snapshot.title if snapshot.title != "Unknown" else ""
        if title and title != window_identity:
            logger.debug("Focused window changed from %r to %r", window_identity, title)
        return ExtractedContent(title=title or window_identity)

    def _fetch_snapshot(self) -> ActiveWindowSnapshot:
        if not self.available:
            return ActiveWindowSnapshot()

        try:
            workspace = NSWorkspace.sharedWorkspace()
            active_app = workspace.frontmostApplication()
            app_name = active_app.localizedName() if active_app else "Unknown"
            bundle_id = (active_app.bundleIdentifier() or "") if active_app else ""
            pid = active_app.processIdentifier() if active_app else None

            window_title = "Unknown"
            bounds: Optional[FocusBounds] = None
            if pid:
                windows = CGWindowListCopyWindowInfo(kCGWindowListOptionOnScreenOnly, kCGNullWindowID)
                window_title, bounds = self._extract_window_details(pid, windows)
            return ActiveWindowSnapshot(app=app_name, title=window_title, bundle_id=bundle_id, bounds=bounds)
        except Exception as exc:
            logger.warning("Failed to read frontmost window: %s", exc)
            return ActiveWindowSnapshot()

    @staticmethod
    def _extract_window_details(pid: int, windows: List[dict]) -> Tuple[str, Optional[FocusBounds]]:
        for window in windows or []:
            if window.get("kCGWindowOwnerPID") != pid:
                continue
            if window.get("kCGWindowLayer", 0) != 0:
                continue
            name = window.get("kCGWindowName") or "Unknown"
            bounds_dict = window.get("kCGWindowBounds") or {}
            width = int(bounds_dict.get("Width", 0))
            height = int(bounds_dict.get("Height", 0))
            if width <= 0 or height <= 0:
                continue
            bounds = (
                int(bounds_dict.get("X", 0)),
                int(bounds_dict.get("Y", 0)),
                width,
                height,
            )
            return name, bounds
        return "Unknown", None


class ScreenCapturer(ImageCapturer):
    """Grabs the virtual screen with mss, cropped to the focused window when its bounds are known."""

    def __init__(
        self,
        inspector: Optional[ActiveWindowInspector] = None,
        max_size: Tuple[int, int] = (1920, 1080),
    ) -> None:
        self.inspector = inspector
        self.max_size = max_size

    def capture_image(self, window_identity: str) -> Optional[Image.Image]:
        bounds = None
        if self.inspector is not None:
            snapshot = self.inspector.snapshot()
            if snapshot.title == window_identity:
                bounds = snapshot.bounds

        try:
            with mss.mss() as sct:
                monitor = sct.monitors[0]  # full virtual screen
                raw = sct.grab(monitor)
                img = Image.frombytes("RGB", raw.size, raw.bgra, "raw", "BGRX")
        except Exception as exc:
            raise TransientExtractionError(f"Screen grab failed: {exc}") from exc

        if bounds:
            img = crop_to_bounds(img, bounds, monitor)
        img.thumbnail(self.max_size, Image.LANCZOS)
        logger.debug("Captured %sx%s frame for %r", img.width, img.height, window_identity)
        return img


def crop_to_bounds(img: Image.Image, bounds: FocusBounds, monitor: dict) -> Image.Image:
    """Crop a full-screen grab to window bounds given in screen points."""
    x, y, width, height = bounds
    # Retina grabs are larger than the logical monitor size.
    scale = img.width / max(int(monitor.get("width", img.width)), 1)
    left = int((x - monitor.get("left", 0)) * scale)
    top = int((y - monitor.get("top", 0)) * scale)
    box = (
        max(left, 0),
        max(top, 0),
        min(left + int(width * scale), img.width),
        min(top + int(height * scale), img.height),
    )
    if box[2] <= box[0] or box[3] <= box[1]:
        return img
    return img.crop(box)


def _format_focus_bounds(bounds: Optional[FocusBounds]) -> str:
    if not bounds:
        return "Unknown"
    x, y, width, height = bounds
    return f"x={x}, y={y}, width={width}, height={height}"
