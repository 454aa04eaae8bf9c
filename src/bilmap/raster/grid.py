"""Grid geometry construction and pixel/world conversions."""

from __future__ import annotations

import math
from typing import NamedTuple

import numpy as np
from rasterio.transform import Affine

from bilmap.errors import InvalidGridError
from bilmap.raster.models import Envelope, GridGeometry, PixelAnchor

SNAP_TOLERANCE = 1e-6


class PixelWindow(NamedTuple):
    """Integer pixel window inside a grid."""

    col_off: int
    row_off: int
    width: int
    height: int


def _require_dimension(name: str, value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, np.integer)):
        raise InvalidGridError(f"{name} must be an integer, got {value!r}")
    if value <= 0:
        raise InvalidGridError(f"{name} must be positive, got {value}")
    return int(value)


def build_grid_geometry(
    width: int,
    height: int,
    envelope: Envelope,
    anchor: PixelAnchor = PixelAnchor.CENTER,
) -> GridGeometry:
    """Build a north-up grid geometry covering ``envelope``.

    Resolutions are ``envelope.width / width`` and ``envelope.height /
    height``; both must be finite and strictly positive, so degenerate or
    empty envelopes are rejected with :class:`InvalidGridError`.
    """
    width = _require_dimension("width", width)
    height = _require_dimension("height", height)
    res_x = envelope.width / width
    res_y = envelope.height / height
    for label, res in (("x", res_x), ("y", res_y)):
        if not math.isfinite(res) or res <= 0:
            raise InvalidGridError(
                f"Invalid {label} resolution {res!r} for envelope {envelope.as_tuple()} "
                f"and size {width}x{height}"
            )
    return GridGeometry(width=width, height=height, envelope=envelope, anchor=PixelAnchor(anchor))


def grid_from_transform(
    transform: Affine,
    width: int,
    height: int,
    crs: str,
) -> GridGeometry:
    """Rebuild a grid geometry from a north-up corner-based affine."""
    if transform.b != 0 or transform.d != 0:
        raise InvalidGridError("Rotated or sheared grids are not supported.")
    if transform.a <= 0 or transform.e >= 0:
        raise InvalidGridError(
            f"Expected a north-up transform, got scale ({transform.a}, {transform.e})"
        )
    envelope = Envelope(
        transform.c,
        transform.f + transform.e * height,
        transform.c + transform.a * width,
        transform.f,
        crs,
    )
    return build_grid_geometry(width, height, envelope)


def world_to_pixel(
    grid: GridGeometry, xs: np.ndarray, ys: np.ndarray
) -> tuple[np.ndarray, np.ndarray]:
    """Return fractional corner-based (col, row) coordinates for world points."""
    res_x, res_y = grid.resolution
    cols = (np.asarray(xs, dtype=np.float64) - grid.envelope.minx) / res_x
    rows = (grid.envelope.maxy - np.asarray(ys, dtype=np.float64)) / res_y
    return cols, rows


def _snap(value: float) -> float:
    nearest = round(value)
    if abs(value - nearest) < SNAP_TOLERANCE:
        return float(nearest)
    return value


def pixel_window(grid: GridGeometry, envelope: Envelope) -> PixelWindow | None:
    """Return the smallest pixel window covering ``envelope``.

    The window is snapped outward to whole pixels and clipped to the grid.
    ``None`` means the envelope does not overlap the grid.
    """
    if envelope.is_empty:
        return None
    res_x, res_y = grid.resolution
    col_start = math.floor(_snap((envelope.minx - grid.envelope.minx) / res_x))
    col_stop = math.ceil(_snap((envelope.maxx - grid.envelope.minx) / res_x))
    row_start = math.floor(_snap((grid.envelope.maxy - envelope.maxy) / res_y))
    row_stop = math.ceil(_snap((grid.envelope.maxy - envelope.miny) / res_y))
    col_start = max(0, col_start)
    row_start = max(0, row_start)
    col_stop = min(grid.width, col_stop)
    row_stop = min(grid.height, row_stop)
    if col_stop <= col_start or row_stop <= row_start:
        return None
    return PixelWindow(col_start, row_start, col_stop - col_start, row_stop - row_start)


def window_envelope(grid: GridGeometry, window: PixelWindow) -> Envelope:
    """Return the world envelope of a pixel window."""
    res_x, res_y = grid.resolution
    env = grid.envelope

    # grid edges are reused verbatim so full-extent windows keep exact bounds
    def x_edge(col: int) -> float:
        if col == 0:
            return env.minx
        if col == grid.width:
            return env.maxx
        return env.minx + col * res_x

    def y_edge(row: int) -> float:
        if row == 0:
            return env.maxy
        if row == grid.height:
            return env.miny
        return env.maxy - row * res_y

    return Envelope(
        x_edge(window.col_off),
        y_edge(window.row_off + window.height),
        x_edge(window.col_off + window.width),
        y_edge(window.row_off),
        grid.crs,
    )


def window_grid(grid: GridGeometry, window: PixelWindow) -> GridGeometry:
    """Return the grid geometry of a pixel window at the parent resolution."""
    return build_grid_geometry(
        window.width, window.height, window_envelope(grid, window), grid.anchor
    )


def decimation_factor(window: PixelWindow, approx_width: int, approx_height: int) -> int:
    """Return the integer read decimation that keeps at least the requested detail."""
    factor = min(window.width // max(1, approx_width), window.height // max(1, approx_height))
    return max(1, int(factor))
