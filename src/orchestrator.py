import asyncio
import logging
import time
from collections import Counter
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from activity_schema import (
    ActivityRecord,
    ActivityStatistics,
    CaptureContext,
    DetectionResult,
    FusedResult,
    StabilizedActivity,
    utcnow,
)
from constants import FUSION_FAMILY
from detector_errors import (
    DetectorError,
    DetectorTimeoutError,
    PermissionDeniedError,
    TransientExtractionError,
)
from detectors import ContextProvider, DetectorAdapter, call_collaborator, families_of
from fusion import FusionEngine, historical_signal
from history_ring import HistoryRing
from result_cache import ResultCache
from sampling import AdaptiveSamplingController
from settings_store import FocusSettings
from stabilizer import TemporalStabilizer

logger = logging.getLogger(__name__)

CommitCallback = Callable[[StabilizedActivity], None]
EntryCallback = Callable[[ActivityRecord], None]
PermissionCallback = Callable[[str, PermissionDeniedError], None]


class ActivityOrchestrator:
    """
    Owns the detection pipeline and every piece of mutable state behind it.

    Each detector family gets a task that keeps its result cache warm at the family's
    adaptive cadence, and one more task runs fusion cycles at the fusion cadence. A cycle
    captures the focused context, fans out cache-checked detection to every enabled family
    concurrently, joins, fuses, stabilizes, adapts cadences and publishes to observers.
    All of it runs on one event loop; cycles are serialized by a lock.
    """

    def __init__(
        self,
        context_provider: ContextProvider,
        detectors: Sequence[DetectorAdapter],
        *,
        settings: Optional[FocusSettings] = None,
        fusion_engine: Optional[FusionEngine] = None,
        stabilizer: Optional[TemporalStabilizer] = None,
        sampling: Optional[AdaptiveSamplingController] = None,
        on_commit: Optional[CommitCallback] = None,
        on_entry: Optional[EntryCallback] = None,
        on_permission_denied: Optional[PermissionCallback] = None,
        clock: Callable[[], datetime] = utcnow,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        families_of(detectors)
        self.settings = settings or FocusSettings()
        self.context_provider = context_provider
        self.fusion_engine = fusion_engine or FusionEngine(self.settings.weights)
        self.stabilizer = stabilizer or TemporalStabilizer(
            window_seconds=self.settings.stabilization_window_seconds,
            min_count=self.settings.stabilization_min_count,
            commit_threshold=self.settings.commit_threshold,
            capacity=self.settings.stabilizer_capacity,
        )
        self.sampling = sampling or AdaptiveSamplingController()
        self.on_commit = on_commit
        self.on_entry = on_entry
        self.on_permission_denied = on_permission_denied
        self._clock = clock
        self._monotonic = monotonic

        self.detectors: List[DetectorAdapter] = []
        self._caches: Dict[str, ResultCache] = {}
        for detector in detectors:
            config = self.settings.detector(detector.family)
            if not config.enabled:
                logger.info("Detector family %s disabled by settings", detector.family)
                continue
            self.detectors.append(detector)
            self._caches[detector.family] = ResultCache(
                config.cache_ttl,
                name=detector.family,
                max_entries=self.settings.cache_max_entries,
                clock=monotonic,
            )
            if detector.family not in self.sampling.families():
                self.sampling.register(detector.family, config.sampling)
        if FUSION_FAMILY not in self.sampling.families():
            self.sampling.register(FUSION_FAMILY, self.settings.fusion_sampling)

        self._history: HistoryRing[ActivityRecord] = HistoryRing(self.settings.activity_history_capacity)
        self._processing_times: HistoryRing[Tuple[datetime, float]] = HistoryRing(
            self.settings.processing_samples, timestamp_of=lambda sample: sample[0]
        )
        self._disabled: Dict[str, PermissionDeniedError] = {}
        self._cycle_lock = asyncio.Lock()
        self._tasks: List[asyncio.Task] = []
        self._forced: set = set()
        # One detection per (family, context key) at a time, shared by family task and cycle.
        self._in_flight: Dict[Tuple[str, str], asyncio.Task] = {}
        self._closed = False

    # Lifecycle ----------------------------------------------------------------

    def start(self) -> None:
        """Schedule the family and fusion tasks on the running event loop."""
        if self.is_running:
            return
        loop = asyncio.get_running_loop()
        self._closed = False
        self._tasks = [
            loop.create_task(self._family_loop(detector), name=f"focuslens-{detector.family}")
            for detector in self.detectors
        ]
        self._tasks.append(loop.create_task(self._fusion_loop(), name="focuslens-fusion"))
        logger.info("Activity orchestrator started with families: %s", ", ".join(d.family for d in self.detectors))

    async def stop(self) -> None:
        """Cancel all scheduled and in-flight work; nothing is published afterwards."""
        self._closed = True
        current = asyncio.current_task()
        pending = [
            task
            for task in [*self._tasks, *self._forced, *self._in_flight.values()]
            if task is not current and not task.done()
        ]
        self._tasks = []
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        logger.info("Activity orchestrator stopped")

    @property
    def is_running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    async def _family_loop(self, detector: DetectorAdapter) -> None:
        family = detector.family
        while not self._closed:
            await asyncio.sleep(self.sampling.interval(family))
            if family in self._disabled:
                continue
            context = await self._capture_context()
            if context is None:
                continue
            await self._refresh(detector, context)

    async def _fusion_loop(self) -> None:
        while not self._closed:
            try:
                await self.run_cycle()
            except Exception:
                logger.exception("Fusion cycle failed")
            await asyncio.sleep(self.sampling.interval(FUSION_FAMILY))

    # Cycle --------------------------------------------------------------------

    async def force_immediate_cycle(self) -> Optional[StabilizedActivity]:
        """
        Run one cycle now, outside the fusion cadence, and return the stabilized activity
        after it (None until something has committed). Returns None if stopped meanwhile.
        """
        task = asyncio.ensure_future(self.run_cycle())
        self._forced.add(task)
        try:
            await task
        except asyncio.CancelledError:
            if self._closed and task.cancelled():
                return None
            raise
        finally:
            self._forced.discard(task)
        if self._closed:
            return None
        return self.stabilizer.current

    async def run_cycle(self) -> Optional[FusedResult]:
        async with self._cycle_lock:
            if self._closed:
                return None
            started = self._monotonic()
            context = await self._capture_context()
            if context is None:
                return None

            active = [detector for detector in self.detectors if detector.family not in self._disabled]
            results: List[DetectionResult] = list(
                await asyncio.gather(*(self._detect_cached(detector, context) for detector in active))
            )
            if not results:
                return None

            now = self._clock()
            if self.fusion_engine.weights.historical > 0:
                recent = historical_signal(self._history, context.context_key, self.settings.historical, now)
                if recent is not None:
                    results.append(recent)

            fused = self.fusion_engine.fuse(results, now=now)
            if fused is None or self._closed:
                return None

            record = ActivityRecord(
                fused=fused,
                context_key=context.context_key,
                app_identity=context.app_identity,
                window_title=context.window_identity,
                sources=tuple(results),
                processing_seconds=self._monotonic() - started,
            )
            self._history.append(record)
            self._processing_times.append((now, record.processing_seconds))

            previous = self.stabilizer.current
            committed = self.stabilizer.observe(fused, now=now)
            self.sampling.adapt(
                FUSION_FAMILY,
                None if fused.is_unknown else fused.primary_category,
                fused.context_key,
            )

            self._notify(self.on_entry, record)
            if committed is not None and (previous is None or previous.label != committed.label):
                self._notify(self.on_commit, committed)
            return fused

    async def _capture_context(self) -> Optional[CaptureContext]:
        try:
            return await call_collaborator(
                self.context_provider.capture_context,
                timeout=self.settings.collaborator_timeout,
                what="context capture",
            )
        except DetectorError as exc:
            logger.warning("Context capture failed: %s", exc)
        except Exception:
            logger.exception("Unexpected error capturing context")
        return None

    async def _detect_cached(self, detector: DetectorAdapter, context: CaptureContext) -> DetectionResult:
        cached, hit = self._caches[detector.family].lookup(context.context_key)
        if hit:
            return cached
        return await self._refresh(detector, context)

    async def _refresh(self, detector: DetectorAdapter, context: CaptureContext) -> DetectionResult:
        """
        Fresh detection for one family; never raises anything but cancellation.

        Concurrent callers for the same family and context key share one detection. A
        cancelled caller leaves the shared detection running for the others; ``stop``
        cancels it.
        """
        slot = (detector.family, context.context_key)
        task = self._in_flight.get(slot)
        if task is None:
            task = asyncio.ensure_future(self._detect_fresh(detector, context))
            self._in_flight[slot] = task
            task.add_done_callback(lambda done: self._release(slot, done))
        return await asyncio.shield(task)

    def _release(self, slot: Tuple[str, str], task: asyncio.Task) -> None:
        if self._in_flight.get(slot) is task:
            del self._in_flight[slot]

    async def _detect_fresh(self, detector: DetectorAdapter, context: CaptureContext) -> DetectionResult:
        family = detector.family
        key = context.context_key
        try:
            result = await asyncio.wait_for(detector.detect(context), timeout=self.settings.detector_timeout)
        except asyncio.TimeoutError:
            error = DetectorTimeoutError(
                f"{family} detection exceeded {self.settings.detector_timeout:.1f}s", family=family
            )
            logger.warning("Detector %s timed out", family)
            result = DetectionResult.failed(detector.source_kind, key, error)
        except PermissionDeniedError as exc:
            self._disable(family, exc)
            result = DetectionResult.failed(detector.source_kind, key, exc)
        except DetectorError as exc:
            logger.warning("Detector %s failed this round: %s", family, exc)
            result = DetectionResult.failed(detector.source_kind, key, exc)
        except Exception as exc:
            logger.exception("Unexpected error in detector %s", family)
            error = TransientExtractionError(str(exc) or exc.__class__.__name__, family=family)
            result = DetectionResult.failed(detector.source_kind, key, error)

        if self._closed:
            return result
        if result.ok:
            self._caches[family].store(key, result)
        if result.usable:
            self.sampling.adapt(family, result.label, key)
        else:
            self.sampling.adapt(family, None, None)
        return result

    # Permissions --------------------------------------------------------------

    def _disable(self, family: str, error: PermissionDeniedError) -> None:
        if family in self._disabled:
            return
        self._disabled[family] = error
        logger.warning("Detector family %s disabled: %s", family, error)
        if self.on_permission_denied is not None and not self._closed:
            try:
                self.on_permission_denied(family, error)
            except Exception:
                logger.exception("on_permission_denied observer failed")

    def disabled_families(self) -> List[str]:
        return list(self._disabled)

    def reenable_detector(self, family: str) -> bool:
        """Re-admit a family disabled by a permission failure once the user has fixed it."""
        if self._disabled.pop(family, None) is None:
            return False
        self._caches[family].clear()
        self.sampling.reset(family)
        logger.info("Detector family %s re-enabled", family)
        return True

    # Queries ------------------------------------------------------------------

    def current_activity(self) -> Optional[StabilizedActivity]:
        return self.stabilizer.current

    def get_history(self, since: Optional[datetime] = None, limit: Optional[int] = None) -> List[ActivityRecord]:
        """Activity records, most recent first."""
        records = self._history.since(since) if since is not None else self._history.items()
        records.reverse()
        if limit is not None:
            records = records[: max(limit, 0)]
        return records

    def get_statistics(self, window: timedelta = timedelta(hours=24)) -> ActivityStatistics:
        """
        Summarize the records inside ``window``. ``average_processing_time`` covers the cycles
        inside the window among the last ``settings.processing_samples`` cycles.
        """
        cutoff = self._clock() - window
        records = self._history.since(cutoff)
        samples = [seconds for _, seconds in self._processing_times.since(cutoff)]
        average_processing = sum(samples) / len(samples) if samples else 0.0
        if not records:
            return ActivityStatistics(
                count=0,
                average_confidence=0.0,
                top_categories=[],
                context_switch_count=0,
                average_processing_time=average_processing,
                current_activity=self.stabilizer.current,
            )

        switches = sum(
            1
            for before, after in zip(records, records[1:])
            if before.category != after.category or before.app_identity != after.app_identity
        )
        return ActivityStatistics(
            count=len(records),
            average_confidence=sum(record.confidence for record in records) / len(records),
            top_categories=Counter(record.category for record in records).most_common(5),
            context_switch_count=switches,
            average_processing_time=average_processing,
            current_activity=self.stabilizer.current,
        )

    def clear_history_older_than(self, cutoff: datetime) -> int:
        removed = self._history.remove_older_than(cutoff)
        self.stabilizer.discard_older_than(cutoff)
        if removed:
            logger.info("Cleared %d activity records older than %s", removed, cutoff.isoformat())
        return removed

    # Observers ----------------------------------------------------------------

    def _notify(self, callback: Optional[Callable], payload) -> None:
        if callback is None or self._closed:
            return
        try:
            callback(payload)
        except Exception:
            logger.exception("Observer %r failed", callback)
