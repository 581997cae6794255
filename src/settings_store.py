import json
import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from activity_schema import SourceKind
from constants import (
    ACCESSIBILITY_FAMILY,
    APPLICATION_STATE_FAMILY,
    OCR_FAMILY,
    SETTINGS_DIR_NAME,
)
from fusion import FusionWeights, HistoricalPolicy
from sampling import SamplingPolicy

logger = logging.getLogger(__name__)

SETTINGS_DIR = Path.home() / SETTINGS_DIR_NAME
SETTINGS_PATH = SETTINGS_DIR / "settings.json"


@dataclass(frozen=True)
class DetectorSettings:
    sampling: SamplingPolicy
    cache_ttl: float
    enabled: bool = True


def _default_detectors() -> Dict[str, DetectorSettings]:
    return {
        ACCESSIBILITY_FAMILY: DetectorSettings(
            sampling=SamplingPolicy(base_interval=2.0, max_interval=10.0),
            cache_ttl=1.0,
        ),
        OCR_FAMILY: DetectorSettings(
            sampling=SamplingPolicy(
                base_interval=10.0,
                max_interval=60.0,
                grow_factor=1.3,
                shrink_factor=0.7,
                debounce_count=3,
            ),
            cache_ttl=60.0,
        ),
        APPLICATION_STATE_FAMILY: DetectorSettings(
            sampling=SamplingPolicy(base_interval=2.0, max_interval=10.0),
            cache_ttl=0.5,
        ),
    }


@dataclass(frozen=True)
class FocusSettings:
    """Tunables for the fusion core. Read-only once loaded."""

    weights: FusionWeights = field(default_factory=FusionWeights)
    detectors: Mapping[str, DetectorSettings] = field(default_factory=_default_detectors)
    fusion_sampling: SamplingPolicy = field(
        default_factory=lambda: SamplingPolicy(base_interval=2.0, max_interval=10.0)
    )
    stabilization_window_seconds: float = 20.0
    stabilization_min_count: int = 3
    commit_threshold: float = 0.6
    stabilizer_capacity: int = 30
    detector_timeout: float = 8.0
    collaborator_timeout: float = 5.0
    activity_history_capacity: int = 1000
    processing_samples: int = 50
    cache_max_entries: int = 100
    historical: HistoricalPolicy = field(default_factory=HistoricalPolicy)

    def detector(self, family: str) -> DetectorSettings:
        return self.detectors.get(family) or DetectorSettings(
            sampling=SamplingPolicy(base_interval=2.0, max_interval=10.0),
            cache_ttl=1.0,
        )


def load_settings(path: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None) -> FocusSettings:
    """Defaults, overlaid by the JSON settings file, overlaid by FOCUSLENS_* variables."""
    path = path or SETTINGS_PATH
    environ = os.environ if environ is None else environ
    data: Dict[str, Any] = {}
    if path.exists():
        try:
            loaded = json.loads(path.read_text(encoding="utf-8"))
            if isinstance(loaded, dict):
                data = loaded
            else:
                logger.warning("Ignoring settings file %s: expected a JSON object.", path)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Failed to read settings file %s: %s", path, exc)

    settings = settings_from_dict(data)
    return apply_environment(settings, environ)


def settings_from_dict(data: Mapping[str, Any]) -> FocusSettings:
    defaults = FocusSettings()
    weights_data = data.get("weights") or {}
    weights = FusionWeights(
        accessibility=float(weights_data.get("accessibility", defaults.weights.accessibility)),
        ocr=float(weights_data.get("ocr", defaults.weights.ocr)),
        application_state=float(weights_data.get("application_state", defaults.weights.application_state)),
        historical=float(weights_data.get("historical", defaults.weights.historical)),
        reliability={
            **defaults.weights.reliability,
            **{SourceKind(k): float(v) for k, v in (weights_data.get("reliability") or {}).items()},
        },
    )

    detectors = dict(defaults.detectors)
    for family, overrides in (data.get("detectors") or {}).items():
        base = detectors.get(family) or DetectorSettings(
            sampling=SamplingPolicy(base_interval=2.0, max_interval=10.0), cache_ttl=1.0
        )
        detectors[family] = DetectorSettings(
            sampling=_sampling_from_dict(base.sampling, overrides.get("sampling") or {}),
            cache_ttl=float(overrides.get("cache_ttl", base.cache_ttl)),
            enabled=bool(overrides.get("enabled", base.enabled)),
        )

    historical_data = data.get("historical") or {}
    historical = HistoricalPolicy(
        max_age_seconds=historical_data.get("max_age_seconds", defaults.historical.max_age_seconds),
        half_life_seconds=historical_data.get("half_life_seconds", defaults.historical.half_life_seconds),
    )

    scalars = {
        name: data[name]
        for name in (
            "stabilization_window_seconds",
            "stabilization_min_count",
            "commit_threshold",
            "stabilizer_capacity",
            "detector_timeout",
            "collaborator_timeout",
            "activity_history_capacity",
            "processing_samples",
            "cache_max_entries",
        )
        if name in data
    }
    return replace(
        defaults,
        weights=weights,
        detectors=detectors,
        fusion_sampling=_sampling_from_dict(defaults.fusion_sampling, data.get("fusion_sampling") or {}),
        historical=historical,
        **scalars,
    )


def apply_environment(settings: FocusSettings, environ: Mapping[str, str]) -> FocusSettings:
    overrides: Dict[str, Any] = {}
    for name, cast in (
        ("detector_timeout", float),
        ("collaborator_timeout", float),
        ("commit_threshold", float),
        ("stabilization_window_seconds", float),
        ("stabilization_min_count", int),
    ):
        raw = environ.get(f"FOCUSLENS_{name.upper()}")
        if raw is None or not raw.strip():
            continue
        try:
            overrides[name] = cast(raw)
        except ValueError:
            logger.warning("Ignoring invalid FOCUSLENS_%s=%r", name.upper(), raw)

    ocr_flag = environ.get("FOCUSLENS_OCR_ENABLED")
    if ocr_flag is not None and OCR_FAMILY in settings.detectors:
        detectors = dict(settings.detectors)
        detectors[OCR_FAMILY] = replace(detectors[OCR_FAMILY], enabled=ocr_flag.strip().lower() in {"1", "true", "yes", "on"})
        overrides["detectors"] = detectors

    return replace(settings, **overrides) if overrides else settings


def _sampling_from_dict(base: SamplingPolicy, data: Mapping[str, Any]) -> SamplingPolicy:
    if not data:
        return base
    return SamplingPolicy(
        base_interval=float(data.get("base_interval", base.base_interval)),
        max_interval=float(data.get("max_interval", base.max_interval)),
        grow_factor=float(data.get("grow_factor", base.grow_factor)),
        shrink_factor=float(data.get("shrink_factor", base.shrink_factor)),
        debounce_count=int(data.get("debounce_count", base.debounce_count)),
        high_similarity=float(data.get("high_similarity", base.high_similarity)),
    )
