"""Encoder registry for named output formats."""

from __future__ import annotations

import logging
from functools import lru_cache
from importlib import metadata
from typing import Callable, cast

from bilmap.encoders.base import Encoder
from bilmap.encoders.bil import byte8_bil, float32_bil, native_bil
from bilmap.encoders.geotiff import GeoTiffEncoder
from bilmap.errors import RequestError

EncoderFactory = Callable[[], Encoder]
ENCODER_ENTRYPOINT_GROUP = "bilmap.encoders"

LOGGER = logging.getLogger(__name__)

_BUILTIN_ENCODERS: dict[str, EncoderFactory] = {
    "raw-bil": native_bil,
    "raw-bil-byte8": byte8_bil,
    "raw-bil-float32": float32_bil,
    "geotiff": GeoTiffEncoder,
}


def _load_encoder_entrypoints() -> dict[str, EncoderFactory]:
    """Load encoder factories from package entrypoints."""
    factories: dict[str, EncoderFactory] = {}
    try:
        entry_points = metadata.entry_points(group=ENCODER_ENTRYPOINT_GROUP)
    except Exception as exc:  # pragma: no cover - entrypoint discovery failures are rare
        LOGGER.warning("Failed to read encoder entrypoints: %s", exc)
        return factories
    for entry_point in entry_points:
        try:
            candidate = entry_point.load()
        except Exception as exc:
            LOGGER.warning("Failed to load encoder entrypoint '%s': %s", entry_point.name, exc)
            continue
        if not callable(candidate):
            LOGGER.warning("Encoder entrypoint '%s' is not callable.", entry_point.name)
            continue
        factories[entry_point.name] = cast(EncoderFactory, candidate)
    return factories


@lru_cache(maxsize=1)
def _encoders() -> dict[str, Encoder]:
    """Instantiate built-in and entrypoint encoders once per process."""
    factories = dict(_BUILTIN_ENCODERS)
    for name, factory in _load_encoder_entrypoints().items():
        if name in factories:
            LOGGER.warning("Encoder '%s' already registered; skipping entrypoint.", name)
            continue
        factories[name] = factory
    encoders: dict[str, Encoder] = {}
    for name, factory in factories.items():
        try:
            encoders[name] = factory()
        except Exception as exc:
            LOGGER.warning("Skipping encoder '%s' because it failed to initialize: %s", name, exc)
    return encoders


@lru_cache(maxsize=1)
def _lookup() -> dict[str, str]:
    """Map lower-cased names, mime types and aliases onto encoder names."""
    lookup: dict[str, str] = {}
    for name, encoder in _encoders().items():
        for key in encoder.spec().names():
            lookup.setdefault(key.lower(), name)
    return lookup


def initialize_encoders() -> tuple[str, ...]:
    """Register encoders before the first render; repeated calls are no-ops."""
    return tuple(_encoders())


def refresh_encoders() -> None:
    """Clear cached encoders and reload on demand."""
    _encoders.cache_clear()
    _lookup.cache_clear()


def get_encoder(name: str) -> Encoder:
    """Return the encoder for a format name, mime type or alias."""
    try:
        return _encoders()[_lookup()[str(name).lower()]]
    except KeyError as exc:
        raise RequestError(f"Unknown output format: {name}") from exc


def list_encoders() -> dict[str, Encoder]:
    """Return a mapping of format names to encoders."""
    return dict(_encoders())
