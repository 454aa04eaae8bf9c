from __future__ import annotations

import os
from pathlib import Path
from typing import Sequence, Tuple

import numpy as np
import rasterio
from rasterio.transform import from_bounds

from bilmap.raster.grid import build_grid_geometry
from bilmap.raster.models import Coverage, Envelope


def write_raster(
    path: Path,
    data: np.ndarray,
    *,
    bounds: Tuple[float, float, float, float],
    crs: str = "EPSG:4326",
    nodata: float | None = None,
    descriptions: Sequence[str] | None = None,
) -> None:
    if data.ndim == 2:
        data = data[np.newaxis, :, :]
    count, height, width = data.shape
    transform = from_bounds(*bounds, width=width, height=height)
    path.parent.mkdir(parents=True, exist_ok=True)
    with rasterio.open(
        path,
        "w",
        driver="GTiff",
        height=height,
        width=width,
        count=count,
        dtype=data.dtype,
        crs=crs,
        transform=transform,
        nodata=nodata,
    ) as dataset:
        dataset.write(data)
        for index, description in enumerate(descriptions or (), start=1):
            dataset.set_band_description(index, description)


def make_coverage(
    data: np.ndarray,
    *,
    bounds: Tuple[float, float, float, float],
    crs: str = "EPSG:4326",
    nodata: float | None = None,
    name: str = "test",
) -> Coverage:
    if data.ndim == 2:
        data = data[np.newaxis, :, :]
    grid = build_grid_geometry(data.shape[2], data.shape[1], Envelope.from_bounds(bounds, crs))
    return Coverage(data=data, grid=grid, nodata=nodata, name=name)


def with_src_env(base_env: dict[str, str] | None = None) -> dict[str, str]:
    """Return an environment with repo src/ on PYTHONPATH."""
    env = dict(base_env or os.environ)
    src_path = str(Path(__file__).resolve().parents[1] / "src")
    entries = [entry for entry in env.get("PYTHONPATH", "").split(os.pathsep) if entry]
    if src_path not in entries:
        entries.insert(0, src_path)
    env["PYTHONPATH"] = os.pathsep.join(entries)
    return env
