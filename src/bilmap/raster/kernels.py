"""Interpolation kernels used by the scale and reproject stages."""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Mapping

import numpy as np

from bilmap.errors import RequestError

SampleResult = tuple[np.ndarray, np.ndarray]
Sampler = Callable[[np.ndarray, np.ndarray, np.ndarray, np.ndarray], SampleResult]

FRACTION_TOLERANCE = 1e-9


@dataclass(frozen=True)
class Kernel:
    """Named interpolation kernel."""

    name: str
    sample: Sampler
    preserves_values: bool
    description: str


def _snap_indices(coords: np.ndarray) -> np.ndarray:
    """Snap coordinates within tolerance of an integer onto that integer."""
    nearest = np.rint(coords)
    return np.where(np.abs(coords - nearest) < FRACTION_TOLERANCE, nearest, coords)


def sample_nearest(
    data: np.ndarray,
    invalid: np.ndarray,
    cols: np.ndarray,
    rows: np.ndarray,
) -> SampleResult:
    """Pick the source sample whose cell contains each point.

    ``cols``/``rows`` are corner-based fractional pixel coordinates already
    restricted to the source extent. Returns ``(values, ok)`` with shape
    ``(bands, *cols.shape)``.
    """
    height, width = data.shape[1:]
    col_idx = np.clip(np.floor(_snap_indices(cols)).astype(np.int64), 0, width - 1)
    row_idx = np.clip(np.floor(_snap_indices(rows)).astype(np.int64), 0, height - 1)
    values = data[:, row_idx, col_idx]
    ok = ~invalid[:, row_idx, col_idx]
    return values, ok


def _neighbors(coords: np.ndarray, size: int) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Return lower/upper neighbour indices and the blend fraction."""
    centered = _snap_indices(np.clip(coords - 0.5, 0.0, size - 1))
    lower = np.clip(np.floor(centered).astype(np.int64), 0, size - 1)
    upper = np.minimum(lower + 1, size - 1)
    fraction = centered - lower
    return lower, upper, fraction


def sample_bilinear(
    data: np.ndarray,
    invalid: np.ndarray,
    cols: np.ndarray,
    rows: np.ndarray,
) -> SampleResult:
    """Blend the four surrounding pixel centers by distance.

    Nodata neighbours are dropped and the remaining weights renormalized,
    so results always lie within the range of the valid contributors.
    """
    height, width = data.shape[1:]
    x0, x1, fx = _neighbors(cols, width)
    y0, y1, fy = _neighbors(rows, height)
    corners = (
        (y0, x0, (1.0 - fx) * (1.0 - fy)),
        (y0, x1, fx * (1.0 - fy)),
        (y1, x0, (1.0 - fx) * fy),
        (y1, x1, fx * fy),
    )
    out_shape = (data.shape[0],) + cols.shape
    total = np.zeros(out_shape, dtype=np.float64)
    weight_sum = np.zeros(out_shape, dtype=np.float64)
    low = np.full(out_shape, np.inf)
    high = np.full(out_shape, -np.inf)
    for row_idx, col_idx, weight in corners:
        values = data[:, row_idx, col_idx].astype(np.float64)
        use = ~invalid[:, row_idx, col_idx] & (weight > 0)
        weight = np.broadcast_to(weight, out_shape)
        total += np.where(use, weight * np.where(use, values, 0.0), 0.0)
        weight_sum += np.where(use, weight, 0.0)
        low = np.where(use, np.minimum(low, values), low)
        high = np.where(use, np.maximum(high, values), high)
    ok = weight_sum > 0
    with np.errstate(invalid="ignore", divide="ignore"):
        blended = np.where(ok, total / np.where(ok, weight_sum, 1.0), 0.0)
    blended = np.clip(blended, np.where(ok, low, 0.0), np.where(ok, high, 0.0))
    return blended, ok


KERNELS: Mapping[str, Kernel] = MappingProxyType(
    {
        "nearest": Kernel(
            name="nearest",
            sample=sample_nearest,
            preserves_values=True,
            description="Closest source sample; safe for categorical and elevation data.",
        ),
        "bilinear": Kernel(
            name="bilinear",
            sample=sample_bilinear,
            preserves_values=False,
            description="Distance-weighted blend of four neighbours; for continuous imagery.",
        ),
    }
)


def get_kernel(name: str | Kernel) -> Kernel:
    """Return the kernel registered under ``name``."""
    if isinstance(name, Kernel):
        return name
    try:
        return KERNELS[str(name).lower()]
    except KeyError as exc:
        choices = ", ".join(sorted(KERNELS))
        raise RequestError(f"Unknown interpolation: {name} (expected one of {choices})") from exc


def kernel_names() -> tuple[str, ...]:
    """Return registered kernel names in a stable order."""
    return tuple(KERNELS)
