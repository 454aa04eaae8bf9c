"""Render pipeline: request -> grid -> window read -> crop/scale/reproject -> encode."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, BinaryIO, Callable, Mapping

import numpy as np

from bilmap.encoders.base import EncodeOptions, Encoder
from bilmap.encoders.registry import get_encoder
from bilmap.errors import (
    BilmapError,
    EmptyIntersectionError,
    PipelineAbortedError,
    RequestError,
    SourceUnavailableError,
)
from bilmap.perf import PerfTracker
from bilmap.raster.crs import same_crs, transform_envelope
from bilmap.raster.grid import build_grid_geometry
from bilmap.raster.kernels import get_kernel
from bilmap.raster.models import Coverage, Envelope, GridGeometry
from bilmap.raster.resample import (
    crop,
    filled_coverage,
    intersection_in_source,
    reproject,
    scale,
    scaled_dimensions,
)
from bilmap.raster.source import CoverageSource, read_window
from bilmap.request import MapRequest, validate_single_layer
from bilmap.settings import RenderSettings

LOGGER = logging.getLogger(__name__)

AbortCheck = Callable[[], bool]


@dataclass(frozen=True)
class RenderResult:
    """Summary of a completed render."""

    output_format: str
    mime_type: str
    bytes_written: int
    grid: GridGeometry
    dtype: str
    band_count: int
    nodata: float | None = None
    filled_on_miss: bool = False
    timings: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class _SourceProfile:
    crs: str
    extent: Envelope


def _check_abort(should_abort: AbortCheck | None, stage: str) -> None:
    if should_abort is not None and should_abort():
        raise PipelineAbortedError(f"Render aborted before {stage}")


def _source_profile(source: CoverageSource) -> _SourceProfile:
    try:
        return _SourceProfile(crs=source.native_crs(), extent=source.original_envelope())
    except BilmapError:
        raise
    except Exception as exc:
        raise SourceUnavailableError("Coverage source metadata is unavailable") from exc


def validate_request(request: MapRequest, settings: RenderSettings) -> None:
    """Check request preconditions before any source access."""
    validate_single_layer(request)
    get_kernel(request.interpolation)
    pixels = request.width * request.height
    if pixels > settings.max_pixels:
        raise RequestError(
            f"Requested {request.width}x{request.height} exceeds the {settings.max_pixels} "
            "pixel limit"
        )


def resolve_encoder(
    request: MapRequest, settings: RenderSettings
) -> tuple[Encoder, EncodeOptions]:
    """Return the encoder and validated options for a request."""
    encoder = get_encoder(request.output_format)
    spec = encoder.spec()
    compression = request.compression
    # the settings default only applies to formats that accept it
    if not compression and settings.default_compression:
        if settings.default_compression.lower() in spec.compressions:
            compression = settings.default_compression
    options = EncodeOptions(compression=compression, byte_order=settings.byte_order)
    options.resolved_compression(spec)
    options.byte_order_code()
    return encoder, options


def _miss_coverage(
    source: CoverageSource,
    profile: _SourceProfile,
    target_grid: GridGeometry,
    settings: RenderSettings,
) -> Coverage:
    """Build the explicit all-fill coverage used for fill-on-miss requests."""
    sample = read_window(source, profile.extent, 1, 1)
    if sample is None:
        band_count, dtype, nodata = 1, np.dtype("float32"), None
    else:
        band_count, dtype, nodata = sample.band_count, sample.dtype, sample.nodata
    LOGGER.info(
        "Request misses the source extent; emitting fill coverage",
        extra={"layer": getattr(source, "name", None)},
    )
    return filled_coverage(
        target_grid,
        band_count=band_count,
        dtype=dtype,
        nodata=nodata,
        fill_value=settings.fill_value,
        name=getattr(source, "name", "coverage"),
    )


def _run_stages(
    request: MapRequest,
    source: CoverageSource,
    *,
    settings: RenderSettings | None = None,
    should_abort: AbortCheck | None = None,
    perf: PerfTracker | None = None,
) -> tuple[Coverage, bool]:
    settings = settings or RenderSettings()
    perf = perf or PerfTracker(enabled=False)
    layer = getattr(source, "name", None)

    _check_abort(should_abort, "grid")
    with perf.stage("grid"):
        target_grid = build_grid_geometry(request.width, request.height, request.envelope())

    _check_abort(should_abort, "transform")
    with perf.stage("transform"):
        profile = _source_profile(source)
        destination_in_source = transform_envelope(
            target_grid.envelope, profile.crs, densify_pts=settings.densify_pts
        )
    LOGGER.debug(
        "Destination %s in %s -> %s in %s",
        target_grid.envelope.as_tuple(),
        target_grid.crs,
        destination_in_source.as_tuple(),
        profile.crs,
        extra={"layer": layer},
    )

    _check_abort(should_abort, "read")
    with perf.stage("read"):
        window = read_window(source, destination_in_source, request.width, request.height)

    _check_abort(should_abort, "crop")
    try:
        if window is None:
            raise EmptyIntersectionError(
                f"Requested area {request.bbox} in {request.crs} does not overlap "
                f"the source extent {profile.extent.as_tuple()}"
            )
        with perf.stage("crop"):
            intersection = intersection_in_source(
                destination_in_source, profile.extent.with_crs(destination_in_source.crs)
            )
            cropped = crop(window, intersection)
    except EmptyIntersectionError:
        if not request.fill_on_miss:
            raise
        return _miss_coverage(source, profile, target_grid, settings), True
    del window
    LOGGER.debug(
        "Cropped window %dx%d at resolution %s",
        cropped.width,
        cropped.height,
        cropped.grid.resolution,
        extra={"layer": layer},
    )

    _check_abort(should_abort, "scale")
    with perf.stage("scale"):
        if same_crs(cropped.crs, target_grid.crs):
            # one sampling pass straight into the destination grid
            scaled = cropped
        else:
            width, height = scaled_dimensions(
                cropped, destination_in_source, request.width, request.height
            )
            scaled = scale(
                cropped,
                width,
                height,
                request.interpolation,
                fill_value=settings.fill_value,
            )
    del cropped

    _check_abort(should_abort, "reproject")
    with perf.stage("reproject"):
        final = reproject(
            scaled,
            target_grid,
            request.interpolation,
            fill_value=settings.fill_value,
        )
    return final, False


def render_coverage(
    request: MapRequest,
    source: CoverageSource,
    *,
    settings: RenderSettings | None = None,
    should_abort: AbortCheck | None = None,
    perf: PerfTracker | None = None,
) -> Coverage:
    """Run every stage up to (not including) encoding and return the final coverage."""
    settings = settings or RenderSettings()
    validate_request(request, settings)
    coverage, _ = _run_stages(
        request, source, settings=settings, should_abort=should_abort, perf=perf
    )
    return coverage


def render_map(
    request: MapRequest,
    source: CoverageSource,
    stream: BinaryIO,
    *,
    settings: RenderSettings | None = None,
    should_abort: AbortCheck | None = None,
    perf: PerfTracker | None = None,
) -> RenderResult:
    """Render ``request`` from ``source`` and write the encoded bytes to ``stream``.

    Nothing is written unless every stage succeeds; the encoder receives
    the fully assembled coverage.
    """
    settings = settings or RenderSettings()
    perf = perf or PerfTracker(enabled=True)
    perf.start()
    try:
        validate_request(request, settings)
        encoder, options = resolve_encoder(request, settings)
        coverage, missed = _run_stages(
            request,
            source,
            settings=settings,
            should_abort=should_abort,
            perf=perf,
        )
        _check_abort(should_abort, "encode")
        with perf.stage("encode"):
            written = encoder.encode(coverage, stream, options)
    finally:
        perf.stop()
    spec = encoder.spec()
    summary = perf.summary()
    LOGGER.info(
        "Rendered %dx%d %s (%d bytes) in %.3fs",
        coverage.width,
        coverage.height,
        spec.name,
        written,
        summary.get("total_seconds", 0.0),
        extra={"layer": getattr(source, "name", None)},
    )
    return RenderResult(
        output_format=spec.name,
        mime_type=spec.mime_type,
        bytes_written=written,
        grid=coverage.grid,
        dtype=coverage.dtype.name,
        band_count=coverage.band_count,
        nodata=coverage.nodata,
        filled_on_miss=missed,
        timings=summary,
    )
