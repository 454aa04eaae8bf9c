"""Data models shared by the raster windowing and resampling stages."""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Tuple

import numpy as np
from rasterio.transform import Affine, from_bounds

from bilmap.errors import InvalidGridError

Bounds = Tuple[float, float, float, float]


class PixelAnchor(str, Enum):
    """Pixel location that integer grid indices map onto."""

    CENTER = "center"
    CORNER = "corner"


@dataclass(frozen=True)
class Envelope:
    """Axis-aligned bounding box tagged with a CRS identifier.

    An envelope with ``minx > maxx`` or ``miny > maxy`` is empty. Empty
    envelopes are valid values; stages that cannot work with them reject
    them explicitly.
    """

    minx: float
    miny: float
    maxx: float
    maxy: float
    crs: str

    @classmethod
    def from_bounds(cls, bounds: Bounds, crs: str) -> "Envelope":
        minx, miny, maxx, maxy = bounds
        return cls(float(minx), float(miny), float(maxx), float(maxy), str(crs))

    @property
    def is_empty(self) -> bool:
        return not (self.minx <= self.maxx and self.miny <= self.maxy)

    @property
    def width(self) -> float:
        return self.maxx - self.minx

    @property
    def height(self) -> float:
        return self.maxy - self.miny

    def as_tuple(self) -> Bounds:
        return (self.minx, self.miny, self.maxx, self.maxy)

    def with_crs(self, crs: str) -> "Envelope":
        """Return the same bounds labelled with another CRS identifier."""
        return replace(self, crs=str(crs))

    def almost_equals(self, other: "Envelope", *, rel_tol: float = 1e-9) -> bool:
        """Compare bounds with a tolerance scaled to the envelope size."""
        span = max(abs(self.width), abs(self.height), abs(other.width), abs(other.height))
        abs_tol = rel_tol * max(span, 1.0)
        return all(
            math.isclose(a, b, rel_tol=rel_tol, abs_tol=abs_tol)
            for a, b in zip(self.as_tuple(), other.as_tuple())
        )


@dataclass(frozen=True)
class GridGeometry:
    """Pixel grid coupled to a world envelope through a north-up affine."""

    width: int
    height: int
    envelope: Envelope
    anchor: PixelAnchor = PixelAnchor.CENTER

    @property
    def crs(self) -> str:
        return self.envelope.crs

    @property
    def shape(self) -> tuple[int, int]:
        return (self.height, self.width)

    @property
    def resolution(self) -> tuple[float, float]:
        return (
            self.envelope.width / self.width,
            self.envelope.height / self.height,
        )

    @property
    def corner_transform(self) -> Affine:
        """Map (col, row) pixel-corner indices to world coordinates."""
        return from_bounds(*self.envelope.as_tuple(), self.width, self.height)

    @property
    def center_transform(self) -> Affine:
        """Map (col, row) pixel-center indices to world coordinates."""
        return self.corner_transform * Affine.translation(0.5, 0.5)

    @property
    def transform(self) -> Affine:
        """Grid-to-world transform in this grid's anchor convention."""
        if self.anchor is PixelAnchor.CENTER:
            return self.center_transform
        return self.corner_transform

    def pixel_centers(self) -> tuple[np.ndarray, np.ndarray]:
        """Return world X/Y arrays (rows x cols) of every pixel center."""
        res_x, res_y = self.resolution
        cols = self.envelope.minx + (np.arange(self.width, dtype=np.float64) + 0.5) * res_x
        rows = self.envelope.maxy - (np.arange(self.height, dtype=np.float64) + 0.5) * res_y
        return np.meshgrid(cols, rows)

    def same_grid(self, other: "GridGeometry", *, rel_tol: float = 1e-9) -> bool:
        """Return True when both grids share dimensions and footprint."""
        return (
            self.width == other.width
            and self.height == other.height
            and self.envelope.almost_equals(other.envelope, rel_tol=rel_tol)
        )


@dataclass(frozen=True, eq=False)
class Coverage:
    """Georeferenced sample grid with shape ``(bands, rows, cols)``."""

    data: np.ndarray
    grid: GridGeometry
    nodata: float | None = None
    name: str = "coverage"
    band_names: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if self.data.ndim != 3:
            raise InvalidGridError(
                f"Coverage data must be (bands, rows, cols); got {self.data.ndim} dimensions."
            )
        if self.data.shape[1:] != self.grid.shape:
            raise InvalidGridError(
                f"Coverage data shape {self.data.shape[1:]} does not match grid "
                f"shape {self.grid.shape}."
            )

    @property
    def band_count(self) -> int:
        return int(self.data.shape[0])

    @property
    def dtype(self) -> np.dtype:
        return self.data.dtype

    @property
    def crs(self) -> str:
        return self.grid.crs

    @property
    def envelope(self) -> Envelope:
        return self.grid.envelope

    @property
    def width(self) -> int:
        return self.grid.width

    @property
    def height(self) -> int:
        return self.grid.height

    def nodata_mask(self) -> np.ndarray:
        """Return a boolean mask where samples equal the nodata value."""
        return nodata_mask(self.data, self.nodata)


def nodata_mask(data: np.ndarray, nodata: float | None) -> np.ndarray:
    """Return a boolean mask where nodata values are present."""
    if nodata is None:
        if np.issubdtype(data.dtype, np.floating):
            return np.isnan(data)
        return np.zeros(data.shape, dtype=bool)
    if np.isnan(nodata):
        if np.issubdtype(data.dtype, np.floating):
            return np.isnan(data)
        return np.zeros(data.shape, dtype=bool)
    return data == nodata
