from __future__ import annotations

import numpy as np
import pytest

from bilmap.errors import ProjectionError
from bilmap.raster.crs import (
    intersect,
    normalize_crs,
    same_crs,
    transform_envelope,
    transform_points,
)
from bilmap.raster.models import Envelope


def test_transform_envelope_axis_order() -> None:
    envelope = Envelope(2.0, 1.0, 2.5, 1.5, "EPSG:4326")
    result = transform_envelope(envelope, "EPSG:3857")

    assert result.crs == "EPSG:3857"
    assert result.minx < result.maxx
    assert result.miny < result.maxy
    assert 200000 < result.minx < 300000
    assert 100000 < result.miny < 200000


def test_transform_envelope_round_trip_encloses_original() -> None:
    envelope = Envelope(10.0, 20.0, 11.0, 21.0, "EPSG:4326")
    mercator = transform_envelope(envelope, "EPSG:3857")
    back = transform_envelope(mercator, "EPSG:4326")

    assert back.minx <= envelope.minx + 1e-9
    assert back.miny <= envelope.miny + 1e-9
    assert back.maxx >= envelope.maxx - 1e-9
    assert back.maxy >= envelope.maxy - 1e-9
    assert back.almost_equals(envelope, rel_tol=1e-6)


def test_transform_envelope_same_crs_relabels() -> None:
    envelope = Envelope(0.0, 0.0, 1.0, 1.0, "epsg:4326")
    result = transform_envelope(envelope, "EPSG:4326")

    assert result.as_tuple() == envelope.as_tuple()
    assert result.crs == "EPSG:4326"


def test_transform_envelope_rejects_empty() -> None:
    with pytest.raises(ProjectionError):
        transform_envelope(Envelope(1.0, 0.0, 0.0, 1.0, "EPSG:4326"), "EPSG:3857")


def test_transform_envelope_rejects_non_finite_result() -> None:
    with pytest.raises(ProjectionError):
        transform_envelope(Envelope(-180.0, -90.0, 180.0, 90.0, "EPSG:4326"), "EPSG:3857")


def test_unknown_crs_raises_projection_error() -> None:
    with pytest.raises(ProjectionError):
        normalize_crs("EPSG:999999")
    with pytest.raises(ProjectionError):
        transform_envelope(Envelope(0.0, 0.0, 1.0, 1.0, "EPSG:4326"), "not-a-crs")


def test_same_crs_accepts_equivalent_identifiers() -> None:
    assert same_crs("EPSG:4326", "epsg:4326")
    assert not same_crs("EPSG:4326", "EPSG:3857")


def test_transform_points_preserves_shape() -> None:
    xs = np.array([[0.0, 1.0], [2.0, 3.0]])
    ys = np.zeros_like(xs)
    out_xs, out_ys = transform_points(xs, ys, "EPSG:4326", "EPSG:3857")

    assert out_xs.shape == (2, 2)
    assert out_ys.shape == (2, 2)
    assert out_xs[0, 0] == pytest.approx(0.0)
    assert out_xs[0, 1] == pytest.approx(111319.49, rel=1e-6)


def test_intersect_is_commutative() -> None:
    a = Envelope(0.0, 0.0, 10.0, 10.0, "EPSG:4326")
    b = Envelope(5.0, -5.0, 15.0, 5.0, "EPSG:4326")

    assert intersect(a, b) == intersect(b, a)
    assert intersect(a, b).as_tuple() == (5.0, 0.0, 10.0, 5.0)


def test_intersect_disjoint_is_empty() -> None:
    a = Envelope(0.0, 0.0, 1.0, 1.0, "EPSG:4326")
    b = Envelope(2.0, 2.0, 3.0, 3.0, "EPSG:4326")

    assert intersect(a, b).is_empty


def test_intersect_requires_matching_crs() -> None:
    a = Envelope(0.0, 0.0, 1.0, 1.0, "EPSG:4326")
    b = Envelope(0.0, 0.0, 1.0, 1.0, "EPSG:3857")

    with pytest.raises(ProjectionError):
        intersect(a, b)


def test_intersect_commutes_for_equivalent_identifiers() -> None:
    a = Envelope(0.0, 0.0, 10.0, 10.0, "EPSG:4326")
    b = Envelope(5.0, 5.0, 15.0, 15.0, "epsg:4326")

    assert intersect(a, b) == intersect(b, a)
    assert intersect(a, b).crs == "EPSG:4326"
