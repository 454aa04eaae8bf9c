"""GeoTIFF container encoder."""

from __future__ import annotations

from typing import Any, BinaryIO

from rasterio.errors import RasterioError
from rasterio.io import MemoryFile

from bilmap.encoders.base import EncodeOptions, EncoderSpec, write_payload
from bilmap.errors import EncodingError
from bilmap.raster.crs import normalize_crs
from bilmap.raster.models import Coverage

GEOTIFF_COMPRESSIONS = ("lzw", "deflate", "none")


def geotiff_profile(coverage: Coverage, compression: str) -> dict[str, Any]:
    """Return the rasterio creation profile for ``coverage``."""
    profile: dict[str, Any] = {
        "driver": "GTiff",
        "width": coverage.width,
        "height": coverage.height,
        "count": coverage.band_count,
        "dtype": coverage.dtype.name,
        "crs": normalize_crs(coverage.crs).to_wkt(),
        "transform": coverage.grid.corner_transform,
        "nodata": coverage.nodata,
    }
    if compression != "none":
        profile["compress"] = compression
    return profile


class GeoTiffEncoder:
    """Encode a coverage as a single GeoTIFF with lossless compression."""

    def spec(self) -> EncoderSpec:
        return EncoderSpec(
            name="geotiff",
            mime_type="image/tiff",
            extension=".tif",
            aliases=("application/bandstif", "image/geotiff", "GeoTIFF"),
            compressions=GEOTIFF_COMPRESSIONS,
            default_compression="lzw",
        )

    def encode(self, coverage: Coverage, stream: BinaryIO, options: EncodeOptions) -> int:
        compression = options.resolved_compression(self.spec())
        profile = geotiff_profile(coverage, compression)
        try:
            with MemoryFile() as memfile:
                with memfile.open(**profile) as dataset:
                    dataset.write(coverage.data)
                    for index, band_name in enumerate(coverage.band_names, start=1):
                        dataset.set_band_description(index, band_name)
                    dataset.update_tags(name=coverage.name)
                payload = memfile.read()
        except RasterioError as exc:
            raise EncodingError("Unable to build GeoTIFF payload") from exc
        return write_payload(stream, payload)
