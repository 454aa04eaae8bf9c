"""Map request context loading and normalization helpers."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from bilmap.contracts import validate_map_request
from bilmap.errors import RequestError
from bilmap.raster.models import Bounds, Envelope

DEFAULT_FORMAT = "raw-bil"
DEFAULT_INTERPOLATION = "nearest"


@dataclass(frozen=True)
class MapRequest:
    """Single-layer request context, immutable for one response."""

    bbox: Bounds
    crs: str
    width: int
    height: int
    output_format: str = DEFAULT_FORMAT
    interpolation: str = DEFAULT_INTERPOLATION
    compression: str | None = None
    layers: tuple[str, ...] = ()
    fill_on_miss: bool = False

    def envelope(self) -> Envelope:
        """Return the requested bounding box as an envelope in the request CRS."""
        return Envelope.from_bounds(self.bbox, self.crs)

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "bbox": list(self.bbox),
            "crs": self.crs,
            "width": self.width,
            "height": self.height,
            "format": self.output_format,
            "interpolation": self.interpolation,
            "layers": list(self.layers),
            "fill_on_miss": self.fill_on_miss,
        }
        if self.compression:
            payload["compression"] = self.compression
        return payload


def parse_bbox(value: object) -> Bounds:
    """Parse ``minx,miny,maxx,maxy`` from a string or a 4-item sequence."""
    if isinstance(value, str):
        parts: list[Any] = [part.strip() for part in value.split(",")]
    elif isinstance(value, (list, tuple)):
        parts = list(value)
    else:
        raise RequestError(f"Bounding box must be a string or list, got {type(value).__name__}")
    if len(parts) != 4:
        raise RequestError(f"Bounding box needs 4 values, got {len(parts)}")
    try:
        minx, miny, maxx, maxy = (float(part) for part in parts)
    except (TypeError, ValueError) as exc:
        raise RequestError(f"Bounding box values must be numeric: {value}") from exc
    return (minx, miny, maxx, maxy)


def _normalize_layers(payload: Mapping[str, Any]) -> tuple[str, ...]:
    layers = payload.get("layers")
    if layers is None and payload.get("layer") is not None:
        layers = [payload["layer"]]
    if layers is None:
        return ()
    if isinstance(layers, str):
        layers = layers.split(",")
    return tuple(str(layer).strip() for layer in layers if str(layer).strip())


def normalize_map_request(payload: Mapping[str, Any]) -> MapRequest:
    """Validate a raw request payload and normalize it into a :class:`MapRequest`."""
    validate_map_request(payload)
    crs = payload.get("crs") or payload.get("srs")
    output_format = payload.get("output_format") or payload.get("format") or DEFAULT_FORMAT
    return MapRequest(
        bbox=parse_bbox(payload["bbox"]),
        crs=str(crs),
        width=int(payload["width"]),
        height=int(payload["height"]),
        output_format=str(output_format),
        interpolation=str(payload.get("interpolation") or DEFAULT_INTERPOLATION).lower(),
        compression=payload.get("compression"),
        layers=_normalize_layers(payload),
        fill_on_miss=bool(payload.get("fill_on_miss", False)),
    )


def load_map_request(path: Path) -> MapRequest:
    """Load and validate a JSON map request from disk."""
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise RequestError(f"Unable to read map request {path}") from exc
    if not isinstance(payload, Mapping):
        raise RequestError("Map request must be a JSON object.")
    return normalize_map_request(payload)


def validate_single_layer(request: MapRequest) -> None:
    """Reject requests that name more than one layer."""
    if len(request.layers) > 1:
        raise RequestError("Cannot combine layers into BIL output")
