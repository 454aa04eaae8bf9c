"""Coverage sources and the windowed read adapter."""

from __future__ import annotations

import logging
import math
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, Protocol

import numpy as np
import rasterio
from rasterio.enums import Resampling
from rasterio.errors import RasterioError
from rasterio.windows import Window

from bilmap.errors import BilmapError, ProjectionError, SourceUnavailableError
from bilmap.raster.crs import intersect, same_crs
from bilmap.raster.grid import (
    PixelWindow,
    build_grid_geometry,
    decimation_factor,
    grid_from_transform,
    pixel_window,
    window_envelope,
)
from bilmap.raster.models import Bounds, Coverage, Envelope

LOGGER = logging.getLogger(__name__)


class CoverageSource(Protocol):
    """Accessor for a georeferenced raster that supports windowed reads."""

    def original_envelope(self) -> Envelope:
        ...

    def native_crs(self) -> str:
        ...

    def read_window(
        self, envelope: Envelope, approx_width: int, approx_height: int
    ) -> Coverage | None:
        ...


@dataclass(frozen=True)
class SourceInfo:
    """Metadata describing a coverage source on disk."""

    path: Path
    crs: str
    bounds: Bounds
    width: int
    height: int
    band_count: int
    dtype: str
    nodata: float | None
    resolution: tuple[float, float]

    def as_dict(self) -> dict[str, Any]:
        return {
            "path": str(self.path),
            "crs": self.crs,
            "bounds": list(self.bounds),
            "width": self.width,
            "height": self.height,
            "band_count": self.band_count,
            "dtype": self.dtype,
            "nodata": self.nodata,
            "resolution": list(self.resolution),
        }


def _decimated_indices(offset: int, length: int, out_length: int) -> np.ndarray:
    """Return nearest source indices for an evenly decimated read."""
    positions = (np.arange(out_length, dtype=np.float64) + 0.5) * (length / out_length)
    return offset + np.minimum(np.floor(positions).astype(np.int64), length - 1)


def _output_shape(window: PixelWindow, factor: int) -> tuple[int, int]:
    return (
        max(1, math.ceil(window.height / factor)),
        max(1, math.ceil(window.width / factor)),
    )


class RasterioSource:
    """File-backed coverage source read through rasterio.

    The dataset is opened for each call so no file handle outlives a
    request.
    """

    def __init__(self, path: Path | str, *, name: str | None = None) -> None:
        self.path = Path(path)
        self.name = name or self.path.stem

    @contextmanager
    def _open(self) -> Iterator[Any]:
        try:
            with rasterio.open(self.path) as dataset:
                yield dataset
        except RasterioError as exc:
            raise SourceUnavailableError(f"Unable to read coverage source {self.path}") from exc

    @staticmethod
    def _crs_of(dataset: Any, path: Path) -> str:
        if dataset.crs is None:
            raise SourceUnavailableError(f"Coverage source {path} does not declare a CRS.")
        return dataset.crs.to_string()

    def native_crs(self) -> str:
        with self._open() as dataset:
            return self._crs_of(dataset, self.path)

    def original_envelope(self) -> Envelope:
        with self._open() as dataset:
            bounds = dataset.bounds
            return Envelope(
                bounds.left,
                bounds.bottom,
                bounds.right,
                bounds.top,
                self._crs_of(dataset, self.path),
            )

    def info(self) -> SourceInfo:
        """Collect metadata about the backing dataset."""
        with self._open() as dataset:
            bounds = dataset.bounds
            return SourceInfo(
                path=self.path,
                crs=self._crs_of(dataset, self.path),
                bounds=(bounds.left, bounds.bottom, bounds.right, bounds.top),
                width=dataset.width,
                height=dataset.height,
                band_count=dataset.count,
                dtype=dataset.dtypes[0],
                nodata=dataset.nodata,
                resolution=(abs(dataset.res[0]), abs(dataset.res[1])),
            )

    def read_window(
        self, envelope: Envelope, approx_width: int, approx_height: int
    ) -> Coverage | None:
        with self._open() as dataset:
            crs = self._crs_of(dataset, self.path)
            grid = grid_from_transform(dataset.transform, dataset.width, dataset.height, crs)
            window = pixel_window(grid, envelope)
            if window is None:
                return None
            factor = decimation_factor(window, approx_width, approx_height)
            out_height, out_width = _output_shape(window, factor)
            try:
                data = dataset.read(
                    window=Window(window.col_off, window.row_off, window.width, window.height),
                    out_shape=(dataset.count, out_height, out_width),
                    resampling=Resampling.nearest,
                )
            except RasterioError as exc:
                raise SourceUnavailableError(
                    f"Failed to read window {tuple(window)} from {self.path}"
                ) from exc
            LOGGER.debug(
                "Read window %s from %s at decimation %d -> %dx%d",
                tuple(window),
                self.path.name,
                factor,
                out_width,
                out_height,
            )
            return Coverage(
                data=data,
                grid=build_grid_geometry(out_width, out_height, window_envelope(grid, window)),
                nodata=dataset.nodata,
                name=self.name,
                band_names=tuple(
                    description or f"band_{index}"
                    for index, description in enumerate(dataset.descriptions, start=1)
                ),
            )


class ArraySource:
    """In-memory coverage source over an existing :class:`Coverage`."""

    def __init__(self, coverage: Coverage) -> None:
        self._coverage = coverage

    @property
    def name(self) -> str:
        return self._coverage.name

    def native_crs(self) -> str:
        return self._coverage.crs

    def original_envelope(self) -> Envelope:
        return self._coverage.envelope

    def read_window(
        self, envelope: Envelope, approx_width: int, approx_height: int
    ) -> Coverage | None:
        coverage = self._coverage
        window = pixel_window(coverage.grid, envelope)
        if window is None:
            return None
        factor = decimation_factor(window, approx_width, approx_height)
        out_height, out_width = _output_shape(window, factor)
        rows = _decimated_indices(window.row_off, window.height, out_height)
        cols = _decimated_indices(window.col_off, window.width, out_width)
        data = coverage.data[:, rows[:, None], cols[None, :]]
        return Coverage(
            data=data,
            grid=build_grid_geometry(
                out_width, out_height, window_envelope(coverage.grid, window)
            ),
            nodata=coverage.nodata,
            name=coverage.name,
            band_names=coverage.band_names,
        )


def read_window(
    source: CoverageSource,
    envelope: Envelope,
    width: int,
    height: int,
) -> Coverage | None:
    """Read the minimal source window overlapping ``envelope``.

    ``envelope`` must already be expressed in the source CRS. Returns
    ``None`` when it does not intersect the source extent; callers must
    check for that before continuing.
    """
    try:
        native = source.native_crs()
        extent = source.original_envelope()
    except BilmapError:
        raise
    except Exception as exc:
        raise SourceUnavailableError("Coverage source metadata is unavailable") from exc
    if not same_crs(envelope.crs, native):
        raise ProjectionError(
            f"Window envelope is in {envelope.crs} but the source is in {native}"
        )
    if intersect(envelope, extent.with_crs(envelope.crs)).is_empty:
        LOGGER.info(
            "Requested envelope %s misses source extent %s",
            envelope.as_tuple(),
            extent.as_tuple(),
        )
        return None
    try:
        coverage = source.read_window(envelope, width, height)
    except BilmapError:
        raise
    except Exception as exc:
        raise SourceUnavailableError("Coverage source could not service the window") from exc
    if coverage is None:
        LOGGER.info("Coverage source returned no data for %s", envelope.as_tuple())
    return coverage
