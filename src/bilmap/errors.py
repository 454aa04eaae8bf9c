"""Typed failures raised by the map rendering pipeline."""

from __future__ import annotations


class BilmapError(Exception):
    """Base class for all pipeline failures."""

    exit_code = 1


class RequestError(BilmapError):
    """The caller violated a request precondition (e.g. multiple layers)."""

    exit_code = 2


class InvalidGridError(BilmapError):
    """Pixel dimensions or derived resolutions are unusable."""

    exit_code = 5


class ProjectionError(BilmapError):
    """A CRS could not be resolved or a coordinate transform failed."""

    exit_code = 5


class SourceUnavailableError(BilmapError):
    """The backing coverage source could not service a window read."""

    exit_code = 4


class EmptyIntersectionError(BilmapError):
    """The requested window does not overlap the source data."""

    exit_code = 3


class EncodingError(BilmapError):
    """The output could not be serialized or written."""

    exit_code = 6


class PipelineAbortedError(BilmapError):
    """A cooperative abort was requested between pipeline stages."""

    exit_code = 7
