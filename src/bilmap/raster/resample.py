"""Crop, scale and reproject stages of the rendering pipeline.

Every stage takes a :class:`Coverage` and returns a new one; input sample
buffers are never written to. Sampling works backwards: each destination
pixel center is mapped into the source grid and read with the selected
kernel, so destination pixels are always initialized.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

import numpy as np

from bilmap.errors import EmptyIntersectionError, InvalidGridError, ProjectionError, RequestError
from bilmap.raster.crs import intersect, same_crs, transform_points
from bilmap.raster.grid import build_grid_geometry, pixel_window, window_grid, world_to_pixel
from bilmap.raster.kernels import Kernel, get_kernel
from bilmap.raster.models import Coverage, Envelope, GridGeometry

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResampleRequest:
    """Typed parameters for a single resampling pass."""

    source: Coverage
    target_grid: GridGeometry
    interpolation: str = "nearest"
    fill_value: float | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.source, Coverage):
            raise TypeError("ResampleRequest.source must be a Coverage.")
        if not isinstance(self.target_grid, GridGeometry):
            raise TypeError("ResampleRequest.target_grid must be a GridGeometry.")
        if self.target_grid.width <= 0 or self.target_grid.height <= 0:
            raise InvalidGridError("Target grid must have positive dimensions.")
        get_kernel(self.interpolation)
        if self.fill_value is not None:
            resolve_fill_value(self.source.dtype, self.source.nodata, self.fill_value)

    @property
    def kernel(self) -> Kernel:
        return get_kernel(self.interpolation)

    @property
    def target_crs(self) -> str:
        return self.target_grid.crs


def resolve_fill_value(
    dtype: np.dtype, nodata: float | None, fill_value: float | None
) -> float:
    """Return the value written to destination pixels without source data."""
    value = fill_value if fill_value is not None else nodata
    if np.issubdtype(dtype, np.integer):
        if value is None:
            return 0
        if not math.isfinite(value):
            raise RequestError(f"Fill value {value} cannot be stored as {np.dtype(dtype).name}")
        info = np.iinfo(dtype)
        if not info.min <= value <= info.max:
            raise RequestError(
                f"Fill value {value} is outside the {np.dtype(dtype).name} range"
            )
        return int(value)
    if value is None:
        return float("nan")
    return float(value)


def _cast_samples(values: np.ndarray, dtype: np.dtype) -> np.ndarray:
    if values.dtype == dtype:
        return values
    if np.issubdtype(dtype, np.integer):
        return np.rint(values).astype(dtype)
    return values.astype(dtype)


def intersection_in_source(destination_in_source: Envelope, source_extent: Envelope) -> Envelope:
    """Intersect the destination footprint with the source extent (source CRS)."""
    return intersect(destination_in_source, source_extent)


def crop(coverage: Coverage, envelope: Envelope) -> Coverage:
    """Restrict a coverage to the whole pixels covering ``envelope``."""
    if envelope.is_empty:
        raise EmptyIntersectionError(
            f"Requested area {envelope.as_tuple()} does not overlap coverage {coverage.name}"
        )
    if not same_crs(envelope.crs, coverage.crs):
        raise ProjectionError(f"Crop envelope is in {envelope.crs}, coverage in {coverage.crs}")
    window = pixel_window(coverage.grid, envelope)
    if window is None:
        raise EmptyIntersectionError(
            f"Requested area {envelope.as_tuple()} does not overlap coverage {coverage.name}"
        )
    data = coverage.data[
        :,
        window.row_off : window.row_off + window.height,
        window.col_off : window.col_off + window.width,
    ].copy()
    return Coverage(
        data=data,
        grid=window_grid(coverage.grid, window),
        nodata=coverage.nodata,
        name=coverage.name,
        band_names=coverage.band_names,
    )


def resample(request: ResampleRequest) -> Coverage:
    """Sample ``request.source`` onto ``request.target_grid``.

    Destination pixel centers are transformed into the source CRS, located
    in the source grid and read with the request kernel. Pixels that fall
    outside the source grid, fail to transform, or only see nodata receive
    the fill value, which also becomes the output nodata.
    """
    source = request.source
    target = request.target_grid
    dtype = source.dtype
    if same_crs(source.crs, target.crs) and source.grid.same_grid(target):
        data = source.data.copy()
        nodata = source.nodata
        if request.fill_value is not None:
            nodata = resolve_fill_value(dtype, source.nodata, request.fill_value)
            data[source.nodata_mask()] = nodata
        return assemble(
            data, target, nodata=nodata, name=source.name, band_names=source.band_names
        )

    fill = resolve_fill_value(dtype, source.nodata, request.fill_value)
    xs, ys = target.pixel_centers()
    src_xs, src_ys = transform_points(xs, ys, target.crs, source.crs)
    cols, rows = world_to_pixel(source.grid, src_xs, src_ys)
    with np.errstate(invalid="ignore"):
        inside = (
            np.isfinite(cols)
            & np.isfinite(rows)
            & (cols >= 0)
            & (cols <= source.width)
            & (rows >= 0)
            & (rows <= source.height)
        )
    cols = np.where(inside, cols, 0.0)
    rows = np.where(inside, rows, 0.0)
    values, ok = request.kernel.sample(source.data, source.nodata_mask(), cols, rows)
    ok &= inside[np.newaxis, :, :]
    data = np.where(ok, _cast_samples(values, dtype), np.asarray(fill).astype(dtype))
    missing = int(np.count_nonzero(~ok))
    nodata: float | None = fill
    if missing:
        LOGGER.debug("%d destination samples set to fill value %s", missing, fill)
    elif source.nodata is None and request.fill_value is None:
        nodata = None
    return assemble(data, target, nodata=nodata, name=source.name, band_names=source.band_names)


def scale(
    coverage: Coverage,
    width: int,
    height: int,
    interpolation: str = "nearest",
    *,
    fill_value: float | None = None,
) -> Coverage:
    """Resample onto ``width`` x ``height`` pixels over the same envelope and CRS."""
    target = build_grid_geometry(width, height, coverage.envelope, coverage.grid.anchor)
    if coverage.width == target.width and coverage.height == target.height:
        return Coverage(
            data=coverage.data.copy(),
            grid=coverage.grid,
            nodata=coverage.nodata,
            name=coverage.name,
            band_names=coverage.band_names,
        )
    LOGGER.debug(
        "Scaling %dx%d -> %dx%d (%s)",
        coverage.width,
        coverage.height,
        width,
        height,
        interpolation,
    )
    return resample(ResampleRequest(coverage, target, interpolation, fill_value))


def scaled_dimensions(
    coverage: Coverage, destination: Envelope, width: int, height: int
) -> tuple[int, int]:
    """Return pixel counts for scaling ``coverage`` ahead of reprojection.

    ``destination`` is the destination footprint in the coverage CRS. The
    counts keep the scaled grid at least as fine as the destination and
    never exceed the coverage's own, so scaling only thins oversampled reads.
    """
    if destination.is_empty or destination.width <= 0 or destination.height <= 0:
        return coverage.width, coverage.height
    res_x = destination.width / width
    res_y = destination.height / height
    out_width = math.ceil(round(coverage.envelope.width / res_x, 9))
    out_height = math.ceil(round(coverage.envelope.height / res_y, 9))
    return (
        min(coverage.width, max(1, out_width)),
        min(coverage.height, max(1, out_height)),
    )


def reproject(
    coverage: Coverage,
    target_grid: GridGeometry,
    interpolation: str = "nearest",
    *,
    fill_value: float | None = None,
) -> Coverage:
    """Resample a coverage into ``target_grid`` and its CRS."""
    LOGGER.debug("Reprojecting %s -> %s (%s)", coverage.crs, target_grid.crs, interpolation)
    return resample(ResampleRequest(coverage, target_grid, interpolation, fill_value))


def assemble(
    data: np.ndarray,
    grid: GridGeometry,
    *,
    nodata: float | None,
    name: str = "coverage",
    band_names: tuple[str, ...] = (),
) -> Coverage:
    """Wrap a final sample buffer with its grid geometry and CRS."""
    return Coverage(data=data, grid=grid, nodata=nodata, name=name, band_names=band_names)


def filled_coverage(
    grid: GridGeometry,
    *,
    band_count: int,
    dtype: np.dtype,
    nodata: float | None,
    fill_value: float | None = None,
    name: str = "coverage",
) -> Coverage:
    """Return a coverage whose every sample is the fill value."""
    fill = resolve_fill_value(np.dtype(dtype), nodata, fill_value)
    data = np.full((band_count, grid.height, grid.width), fill, dtype=dtype)
    return assemble(data, grid, nodata=fill, name=name)
