"""Raster windowing, resampling and reprojection helpers."""

from bilmap.raster.crs import (
    canonical_crs,
    intersect,
    normalize_crs,
    same_crs,
    transform_envelope,
    transform_points,
    transformer,
)
from bilmap.raster.grid import build_grid_geometry, grid_from_transform, pixel_window
from bilmap.raster.kernels import KERNELS, get_kernel
from bilmap.raster.models import Coverage, Envelope, GridGeometry, PixelAnchor
from bilmap.raster.resample import (
    ResampleRequest,
    assemble,
    crop,
    reproject,
    resample,
    scale,
    scaled_dimensions,
)
from bilmap.raster.source import ArraySource, CoverageSource, RasterioSource, read_window

__all__ = [
    "ArraySource",
    "Coverage",
    "CoverageSource",
    "Envelope",
    "GridGeometry",
    "KERNELS",
    "PixelAnchor",
    "RasterioSource",
    "ResampleRequest",
    "assemble",
    "canonical_crs",
    "build_grid_geometry",
    "crop",
    "get_kernel",
    "grid_from_transform",
    "intersect",
    "normalize_crs",
    "pixel_window",
    "read_window",
    "reproject",
    "resample",
    "same_crs",
    "scale",
    "scaled_dimensions",
    "transform_envelope",
    "transform_points",
    "transformer",
]
