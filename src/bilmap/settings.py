"""Render settings loading helpers."""

from __future__ import annotations

import json
import math
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Mapping

from bilmap.encoders.base import BYTE_ORDERS
from bilmap.encoders.registry import list_encoders

ENV_SETTINGS = "BILMAP_SETTINGS"
DEFAULT_SETTINGS_NAME = "bilmap.json"


@dataclass(frozen=True)
class RenderSettings:
    """Process-level defaults applied to every render."""

    densify_pts: int = 21
    fill_value: float | None = None
    byte_order: str = "big"
    max_pixels: int = 64_000_000
    default_compression: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {field.name: getattr(self, field.name) for field in fields(self)}


def _coerce_settings(payload: Mapping[str, Any]) -> RenderSettings:
    known = {field.name for field in fields(RenderSettings)}
    unknown = sorted(set(payload) - known)
    if unknown:
        raise ValueError(f"Unknown settings: {', '.join(unknown)}")
    settings = RenderSettings(**dict(payload))
    if not isinstance(settings.densify_pts, int) or settings.densify_pts < 0:
        raise ValueError("densify_pts must be a non-negative integer.")
    if settings.byte_order not in BYTE_ORDERS:
        raise ValueError(f"byte_order must be one of {', '.join(BYTE_ORDERS)}.")
    if not isinstance(settings.max_pixels, int) or settings.max_pixels <= 0:
        raise ValueError("max_pixels must be a positive integer.")
    if settings.default_compression is not None:
        compressions = sorted(
            {name for encoder in list_encoders().values() for name in encoder.spec().compressions}
        )
        if str(settings.default_compression).lower() not in compressions:
            raise ValueError(
                f"default_compression must be one of {', '.join(compressions)}."
            )
    if settings.fill_value is not None:
        value = float(settings.fill_value)
        if math.isinf(value):
            raise ValueError("fill_value must be finite or NaN.")
    return settings


def _load_candidate(candidate: Path) -> RenderSettings | None:
    """Load settings from a single candidate path."""
    if not candidate.exists():
        return None
    try:
        payload = json.loads(candidate.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Settings file {candidate} is not valid JSON") from exc
    if not isinstance(payload, dict):
        raise ValueError(f"Settings file {candidate} must contain a JSON object.")
    return _coerce_settings(payload)


def load_settings(path: Path | None = None) -> RenderSettings:
    """Load render settings from JSON config, if available."""
    if path:
        return _load_candidate(path) or RenderSettings()
    env_path = os.environ.get(ENV_SETTINGS)
    if env_path:
        return _load_candidate(Path(env_path)) or RenderSettings()
    return _load_candidate(Path.cwd() / DEFAULT_SETTINGS_NAME) or RenderSettings()
