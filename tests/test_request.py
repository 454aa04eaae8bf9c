from __future__ import annotations

import json

import pytest

from bilmap.contracts import validate_map_request
from bilmap.errors import RequestError
from bilmap.request import (
    MapRequest,
    load_map_request,
    normalize_map_request,
    parse_bbox,
    validate_single_layer,
)


def test_normalize_map_request_defaults() -> None:
    request = normalize_map_request(
        {"bbox": "10, 20, 30, 40", "srs": "EPSG:4326", "width": 256, "height": 128}
    )

    assert request.bbox == (10.0, 20.0, 30.0, 40.0)
    assert request.crs == "EPSG:4326"
    assert request.output_format == "raw-bil"
    assert request.interpolation == "nearest"
    assert request.layers == ()
    assert request.envelope().as_tuple() == (10.0, 20.0, 30.0, 40.0)


def test_normalize_map_request_options() -> None:
    request = normalize_map_request(
        {
            "bbox": [0, 0, 1, 1],
            "crs": "EPSG:3857",
            "width": 2,
            "height": 2,
            "format": "image/tiff",
            "interpolation": "bilinear",
            "compression": "deflate",
            "layers": "dem, ortho",
            "fill_on_miss": True,
        }
    )

    assert request.output_format == "image/tiff"
    assert request.compression == "deflate"
    assert request.layers == ("dem", "ortho")
    assert request.fill_on_miss is True
    with pytest.raises(RequestError, match="Cannot combine layers"):
        validate_single_layer(request)


@pytest.mark.parametrize(
    "payload",
    [
        {"crs": "EPSG:4326", "width": 1, "height": 1},
        {"bbox": [0, 0, 1, 1], "width": 1, "height": 1},
        {"bbox": [0, 0, 1, 1], "crs": "EPSG:4326", "width": 0, "height": 1},
        {"bbox": [0, 0, 1], "crs": "EPSG:4326", "width": 1, "height": 1},
        {
            "bbox": [0, 0, 1, 1],
            "crs": "EPSG:4326",
            "width": 1,
            "height": 1,
            "interpolation": "cubic",
        },
    ],
)
def test_validate_map_request_rejects_invalid(payload) -> None:
    with pytest.raises(RequestError):
        validate_map_request(payload)


def test_parse_bbox_errors() -> None:
    with pytest.raises(RequestError):
        parse_bbox("a,b,c,d")
    with pytest.raises(RequestError):
        parse_bbox(42)
    assert parse_bbox((1, 2, 3, 4)) == (1.0, 2.0, 3.0, 4.0)


def test_load_map_request_round_trip(tmp_path) -> None:
    path = tmp_path / "request.json"
    original = MapRequest(bbox=(0.0, 0.0, 1.0, 1.0), crs="EPSG:4326", width=4, height=4)
    path.write_text(json.dumps(original.as_dict()), encoding="utf-8")

    assert load_map_request(path) == original


def test_load_map_request_invalid_json(tmp_path) -> None:
    path = tmp_path / "request.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(RequestError):
        load_map_request(path)
    path.write_text("[1, 2]", encoding="utf-8")
    with pytest.raises(RequestError):
        load_map_request(path)
