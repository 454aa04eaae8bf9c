"""CRS normalization, envelope transformation and intersection helpers."""

from __future__ import annotations

from functools import lru_cache

import numpy as np
from pyproj import CRS, Transformer
from pyproj.exceptions import CRSError, ProjError

from bilmap.errors import ProjectionError
from bilmap.raster.models import Envelope

DEFAULT_DENSIFY_PTS = 21


@lru_cache(maxsize=128)
def _resolve_identifier(value: str) -> CRS:
    try:
        return CRS.from_user_input(value)
    except CRSError as exc:
        raise ProjectionError(f"Unknown CRS: {value}") from exc


def normalize_crs(value: str | CRS) -> CRS:
    """Normalize CRS input into a pyproj CRS object."""
    if isinstance(value, CRS):
        return value
    if not value:
        raise ProjectionError("A CRS identifier is required.")
    return _resolve_identifier(str(value))


def canonical_crs(value: str | CRS) -> str:
    """Return the canonical identifier string for a CRS (e.g. ``EPSG:4326``)."""
    return normalize_crs(value).to_string()


def same_crs(a: str | CRS, b: str | CRS) -> bool:
    """Return True when both inputs resolve to the same CRS definition."""
    if isinstance(a, str) and isinstance(b, str) and a == b:
        return True
    return normalize_crs(a) == normalize_crs(b)


def transformer(src: str | CRS, dst: str | CRS) -> Transformer:
    """Return a transformer that respects lon/lat axis order."""
    try:
        return Transformer.from_crs(normalize_crs(src), normalize_crs(dst), always_xy=True)
    except (CRSError, ProjError) as exc:
        raise ProjectionError(f"No transform available from {src} to {dst}") from exc


def transform_points(
    xs: np.ndarray,
    ys: np.ndarray,
    src: str | CRS,
    dst: str | CRS,
) -> tuple[np.ndarray, np.ndarray]:
    """Transform coordinate arrays; points that fail come back non-finite."""
    xs = np.asarray(xs, dtype=np.float64)
    ys = np.asarray(ys, dtype=np.float64)
    if same_crs(src, dst):
        return xs.copy(), ys.copy()
    tx = transformer(src, dst)
    try:
        out_xs, out_ys = tx.transform(xs.ravel(), ys.ravel(), errcheck=False)
    except ProjError as exc:
        raise ProjectionError(f"Coordinate transform from {src} to {dst} failed") from exc
    out_xs = np.asarray(out_xs, dtype=np.float64).reshape(xs.shape)
    out_ys = np.asarray(out_ys, dtype=np.float64).reshape(ys.shape)
    return out_xs, out_ys


def _linspace(start: float, stop: float, count: int) -> list[float]:
    """Return evenly spaced values between start and stop inclusive."""
    if count <= 1:
        return [start]
    step = (stop - start) / (count - 1)
    return [start + step * index for index in range(count)]


def _edge_points(envelope: Envelope, densify_pts: int) -> tuple[list[float], list[float]]:
    minx, miny, maxx, maxy = envelope.as_tuple()
    if densify_pts <= 0:
        return [minx, minx, maxx, maxx], [miny, maxy, miny, maxy]
    steps = densify_pts + 2
    xs: list[float] = []
    ys: list[float] = []
    for x in _linspace(minx, maxx, steps):
        xs.extend([x, x])
        ys.extend([miny, maxy])
    for y in _linspace(miny, maxy, steps):
        xs.extend([minx, maxx])
        ys.extend([y, y])
    return xs, ys


def transform_envelope(
    envelope: Envelope,
    dst_crs: str,
    *,
    densify_pts: int = DEFAULT_DENSIFY_PTS,
) -> Envelope:
    """Transform an envelope into ``dst_crs`` and return its bounding box.

    The corners and ``densify_pts`` intermediate points per edge are
    transformed, so curved edges in the target CRS are enclosed. Any
    non-finite result raises :class:`ProjectionError`.
    """
    if envelope.is_empty:
        raise ProjectionError("Cannot transform an empty envelope.")
    if same_crs(envelope.crs, dst_crs):
        return envelope.with_crs(dst_crs)
    xs, ys = _edge_points(envelope, densify_pts)
    out_xs, out_ys = transform_points(np.array(xs), np.array(ys), envelope.crs, dst_crs)
    if not (np.all(np.isfinite(out_xs)) and np.all(np.isfinite(out_ys))):
        raise ProjectionError(
            f"Envelope {envelope.as_tuple()} does not transform cleanly from "
            f"{envelope.crs} to {dst_crs}"
        )
    return Envelope(
        float(out_xs.min()),
        float(out_ys.min()),
        float(out_xs.max()),
        float(out_ys.max()),
        str(dst_crs),
    )


def intersect(a: Envelope, b: Envelope) -> Envelope:
    """Return the intersection of two envelopes that share a CRS.

    The result is empty (``minx > maxx`` or ``miny > maxy``) when the
    inputs do not overlap. It is labelled with the canonical CRS string so
    the operation is symmetric for equivalent identifiers.
    """
    if not same_crs(a.crs, b.crs):
        raise ProjectionError(f"Cannot intersect envelopes in {a.crs} and {b.crs}")
    return Envelope(
        max(a.minx, b.minx),
        max(a.miny, b.miny),
        min(a.maxx, b.maxx),
        min(a.maxy, b.maxy),
        canonical_crs(a.crs),
    )
