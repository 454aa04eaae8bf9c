"""Stage timing helpers for renders."""

from __future__ import annotations

import os
import tracemalloc
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from time import perf_counter
from typing import Any, Iterator

ENV_PROFILE_DIR = "BILMAP_PROFILE_DIR"


@dataclass(frozen=True)
class StageTiming:
    """Duration of one pipeline stage."""

    name: str
    seconds: float


class PerfTracker:
    """Record per-stage durations and, optionally, peak traced memory."""

    def __init__(self, *, enabled: bool = True, track_memory: bool = False) -> None:
        self.enabled = enabled
        self.track_memory = track_memory
        self._stages: list[StageTiming] = []
        self._started: float | None = None
        self._stopped: float | None = None
        self._peak_mb: float | None = None
        self._owns_tracing = False

    def start(self) -> None:
        if not self.enabled:
            return
        self._started = perf_counter()
        if self.track_memory and not tracemalloc.is_tracing():
            tracemalloc.start()
            self._owns_tracing = True

    def stop(self) -> None:
        if not self.enabled or self._stopped is not None:
            return
        self._stopped = perf_counter()
        if self.track_memory and tracemalloc.is_tracing():
            _, peak = tracemalloc.get_traced_memory()
            self._peak_mb = peak / (1024 * 1024)
            if self._owns_tracing:
                tracemalloc.stop()
                self._owns_tracing = False

    @contextmanager
    def stage(self, name: str) -> Iterator[None]:
        """Time a named stage, including stages that raise."""
        if not self.enabled:
            yield
            return
        start = perf_counter()
        try:
            yield
        finally:
            self._stages.append(StageTiming(name=name, seconds=perf_counter() - start))

    @property
    def stages(self) -> tuple[StageTiming, ...]:
        return tuple(self._stages)

    def summary(self) -> dict[str, Any]:
        """Return a JSON-serializable summary of captured timings."""
        if not self.enabled:
            return {}
        total = 0.0
        if self._started is not None and self._stopped is not None:
            total = max(0.0, self._stopped - self._started)
        summary: dict[str, Any] = {
            "total_seconds": round(total, 6),
            "stages": [
                {"name": stage.name, "seconds": round(stage.seconds, 6)}
                for stage in self._stages
            ],
        }
        if self._peak_mb is not None:
            summary["peak_memory_mb"] = round(self._peak_mb, 3)
        return summary


def resolve_metrics_path(metrics_json: str | None) -> Path | None:
    """Resolve the metrics output path from CLI or environment defaults."""
    if metrics_json:
        return Path(metrics_json)
    profile_dir = os.environ.get(ENV_PROFILE_DIR)
    if profile_dir:
        return Path(profile_dir) / "render_metrics.json"
    return None
