from __future__ import annotations

import io

import numpy as np
import pytest

from bilmap.errors import (
    EmptyIntersectionError,
    PipelineAbortedError,
    RequestError,
    SourceUnavailableError,
)
from bilmap import pipeline
from bilmap.perf import PerfTracker
from bilmap.pipeline import render_coverage, render_map, resolve_encoder
from bilmap.raster.crs import transform_envelope
from bilmap.raster.models import Envelope
from bilmap.raster.source import ArraySource, RasterioSource
from bilmap.request import MapRequest
from bilmap.settings import RenderSettings
from tests.utils import make_coverage, write_raster


def _values() -> np.ndarray:
    return np.arange(3600, dtype=np.int16).reshape(60, 60)


def _source(nodata=-9999) -> ArraySource:
    return ArraySource(make_coverage(_values(), bounds=(0.0, 0.0, 60.0, 60.0), nodata=nodata))


class _SpySource:
    """Source that records every call it receives."""

    def __init__(self, inner: ArraySource) -> None:
        self.inner = inner
        self.calls: list[str] = []
        self.name = "spy"

    def native_crs(self) -> str:
        self.calls.append("native_crs")
        return self.inner.native_crs()

    def original_envelope(self) -> Envelope:
        self.calls.append("original_envelope")
        return self.inner.original_envelope()

    def read_window(self, envelope, approx_width, approx_height):
        self.calls.append("read_window")
        return self.inner.read_window(envelope, approx_width, approx_height)


def test_render_map_same_crs_window() -> None:
    request = MapRequest(bbox=(10.0, 10.0, 40.0, 40.0), crs="EPSG:4326", width=30, height=30)
    stream = io.BytesIO()

    result = render_map(request, _source(), stream)

    assert result.output_format == "raw-bil"
    assert result.mime_type == "image/bil"
    assert result.bytes_written == 30 * 30 * 2
    assert result.grid.envelope.as_tuple() == (10.0, 10.0, 40.0, 40.0)
    assert result.dtype == "int16"
    assert not result.filled_on_miss
    assert stream.getvalue() == _values()[20:50, 10:40].astype(">i2").tobytes()


def test_render_map_records_stage_timings() -> None:
    request = MapRequest(bbox=(10.0, 10.0, 40.0, 40.0), crs="EPSG:4326", width=30, height=30)
    perf = PerfTracker()

    result = render_map(request, _source(), io.BytesIO(), perf=perf)

    names = [stage["name"] for stage in result.timings["stages"]]
    assert names == ["grid", "transform", "read", "crop", "scale", "reproject", "encode"]
    assert result.timings["total_seconds"] >= 0


def test_render_coverage_partial_overlap_is_filled() -> None:
    request = MapRequest(bbox=(50.0, 50.0, 70.0, 70.0), crs="EPSG:4326", width=20, height=20)

    coverage = render_coverage(request, _source())

    assert coverage.data.shape == (1, 20, 20)
    assert coverage.nodata == -9999
    np.testing.assert_array_equal(coverage.data[0, 10:, :10], _values()[0:10, 50:60])
    assert (coverage.data[0, :10, :] == -9999).all()
    assert (coverage.data[0, :, 10:] == -9999).all()


def test_render_map_outside_extent_raises() -> None:
    request = MapRequest(bbox=(100.0, 70.0, 120.0, 80.0), crs="EPSG:4326", width=10, height=10)
    stream = io.BytesIO()

    with pytest.raises(EmptyIntersectionError):
        render_map(request, _source(), stream)
    assert stream.getvalue() == b""


def test_render_map_fill_on_miss() -> None:
    request = MapRequest(
        bbox=(100.0, 70.0, 120.0, 80.0),
        crs="EPSG:4326",
        width=10,
        height=5,
        fill_on_miss=True,
    )
    stream = io.BytesIO()

    result = render_map(request, _source(), stream)

    assert result.filled_on_miss
    assert result.nodata == -9999
    decoded = np.frombuffer(stream.getvalue(), dtype=">i2")
    assert decoded.shape == (50,)
    assert (decoded == -9999).all()


def test_render_map_rejects_multiple_layers_before_reading() -> None:
    spy = _SpySource(_source())
    request = MapRequest(
        bbox=(10.0, 10.0, 40.0, 40.0),
        crs="EPSG:4326",
        width=30,
        height=30,
        layers=("dem", "ortho"),
    )

    with pytest.raises(RequestError, match="Cannot combine layers"):
        render_map(request, spy, io.BytesIO())
    assert spy.calls == []


def test_render_map_rejects_unknown_format_before_reading() -> None:
    spy = _SpySource(_source())
    request = MapRequest(
        bbox=(10.0, 10.0, 40.0, 40.0),
        crs="EPSG:4326",
        width=30,
        height=30,
        output_format="image/png",
    )

    with pytest.raises(RequestError):
        render_map(request, spy, io.BytesIO())
    assert spy.calls == []


def test_render_map_enforces_pixel_limit() -> None:
    request = MapRequest(bbox=(10.0, 10.0, 40.0, 40.0), crs="EPSG:4326", width=30, height=30)

    with pytest.raises(RequestError):
        render_map(request, _source(), io.BytesIO(), settings=RenderSettings(max_pixels=100))


def test_render_map_abort_writes_nothing() -> None:
    request = MapRequest(bbox=(10.0, 10.0, 40.0, 40.0), crs="EPSG:4326", width=30, height=30)
    spy = _SpySource(_source())
    checks: list[int] = []

    def _should_abort() -> bool:
        checks.append(1)
        return len(checks) > 2

    stream = io.BytesIO()
    with pytest.raises(PipelineAbortedError):
        render_map(request, spy, stream, should_abort=_should_abort)
    assert stream.getvalue() == b""
    assert "read_window" not in spy.calls


def test_render_map_reprojects_to_request_crs() -> None:
    values = np.linspace(0.0, 100.0, 3600, dtype=np.float32).reshape(60, 60)
    source = ArraySource(make_coverage(values, bounds=(0.0, 0.0, 60.0, 60.0)))
    envelope = transform_envelope(Envelope(10.0, 10.0, 20.0, 20.0, "EPSG:4326"), "EPSG:3857")
    request = MapRequest(
        bbox=envelope.as_tuple(),
        crs="EPSG:3857",
        width=16,
        height=16,
        output_format="raw-bil-float32",
        interpolation="bilinear",
    )
    stream = io.BytesIO()

    result = render_map(request, source, stream)

    assert result.grid.crs == "EPSG:3857"
    assert result.bytes_written == 16 * 16 * 4
    decoded = np.frombuffer(stream.getvalue(), dtype=">f4")
    assert np.isfinite(decoded).all()
    assert decoded.min() >= values.min()
    assert decoded.max() <= values.max()


def test_render_map_geotiff_from_file(tmp_path) -> None:
    path = tmp_path / "dem.tif"
    write_raster(path, _values(), bounds=(0.0, 0.0, 60.0, 60.0), nodata=-9999)
    request = MapRequest(
        bbox=(0.0, 0.0, 60.0, 60.0),
        crs="EPSG:4326",
        width=6,
        height=6,
        output_format="image/tiff",
        compression="deflate",
    )

    result = render_map(request, RasterioSource(path), io.BytesIO())

    assert result.output_format == "geotiff"
    assert result.grid.shape == (6, 6)


def test_render_map_missing_source(tmp_path) -> None:
    request = MapRequest(bbox=(0.0, 0.0, 1.0, 1.0), crs="EPSG:4326", width=1, height=1)

    with pytest.raises(SourceUnavailableError):
        render_map(request, RasterioSource(tmp_path / "missing.tif"), io.BytesIO())


def test_render_coverage_offset_bbox_keeps_source_registration() -> None:
    values = np.tile(np.arange(100, dtype=np.int16), (100, 1))
    source = ArraySource(make_coverage(values, bounds=(0.0, 0.0, 100.0, 100.0)))
    request = MapRequest(
        bbox=(0.25, 0.25, 10.25, 10.25), crs="EPSG:4326", width=10, height=10
    )

    coverage = render_coverage(request, source)

    assert coverage.data.shape == (1, 10, 10)
    for row in coverage.data[0]:
        assert row.tolist() == list(range(10))


def test_render_coverage_subwindow_scenario() -> None:
    values = (np.arange(10000).reshape(100, 100) % 256).astype(np.uint8)
    source = ArraySource(make_coverage(values, bounds=(0.0, 0.0, 10.0, 10.0)))
    request = MapRequest(bbox=(2.0, 2.0, 8.0, 8.0), crs="EPSG:4326", width=60, height=60)

    coverage = render_coverage(request, source)

    assert coverage.data.shape == (1, 60, 60)
    assert coverage.envelope.almost_equals(Envelope(2.0, 2.0, 8.0, 8.0, "EPSG:4326"))
    assert coverage.dtype == np.uint8
    np.testing.assert_array_equal(coverage.data[0], values[20:80, 20:80])


def test_default_compression_only_applies_where_supported() -> None:
    settings = RenderSettings(default_compression="lzw")
    bil_request = MapRequest(bbox=(10.0, 10.0, 40.0, 40.0), crs="EPSG:4326", width=30, height=30)
    tif_request = MapRequest(
        bbox=(10.0, 10.0, 40.0, 40.0),
        crs="EPSG:4326",
        width=30,
        height=30,
        output_format="geotiff",
    )

    _, bil_options = resolve_encoder(bil_request, settings)
    _, tif_options = resolve_encoder(tif_request, settings)
    result = render_map(bil_request, _source(), io.BytesIO(), settings=settings)

    assert bil_options.compression is None
    assert tif_options.compression == "lzw"
    assert result.bytes_written == 30 * 30 * 2


def test_render_map_validates_request_once(monkeypatch) -> None:
    calls: list[MapRequest] = []
    original = pipeline.validate_request

    def _counting(request, settings) -> None:
        calls.append(request)
        original(request, settings)

    monkeypatch.setattr(pipeline, "validate_request", _counting)
    request = MapRequest(bbox=(10.0, 10.0, 40.0, 40.0), crs="EPSG:4326", width=30, height=30)

    render_map(request, _source(), io.BytesIO())

    assert len(calls) == 1
