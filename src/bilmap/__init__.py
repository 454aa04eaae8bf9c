"""Coordinate-aware raster windowing, resampling and BIL/GeoTIFF export."""

__version__ = "0.3.0"
