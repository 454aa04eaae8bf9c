"""Shared encoder types and protocol for output formats."""

from __future__ import annotations

from dataclasses import dataclass
from typing import BinaryIO, Protocol

from bilmap.errors import EncodingError, RequestError
from bilmap.raster.models import Coverage

BYTE_ORDERS = {"big": ">", "little": "<"}


@dataclass(frozen=True)
class EncoderSpec:
    """Describe an output format and what it accepts."""

    name: str
    mime_type: str
    extension: str
    aliases: tuple[str, ...] = ()
    compressions: tuple[str, ...] = ("none",)
    default_compression: str = "none"
    dtype: str | None = None
    tiled: bool = False
    multivalued: bool = False
    palette: bool = False

    def names(self) -> tuple[str, ...]:
        """Return every identifier this format answers to."""
        return (self.name, self.mime_type, *self.aliases)

    def capabilities(self) -> dict[str, bool]:
        """Return the map-producer capabilities of this format.

        Built-in formats render one whole window per request: no tiled
        requests, no multi-valued (multi-layer) requests and no palettes.
        """
        return {"tiled": self.tiled, "multivalued": self.multivalued, "palette": self.palette}


@dataclass(frozen=True)
class EncodeOptions:
    """Per-request encoding options."""

    compression: str | None = None
    byte_order: str = "big"

    def resolved_compression(self, spec: EncoderSpec) -> str:
        """Return the compression to use, validated against ``spec``."""
        compression = (self.compression or spec.default_compression).lower()
        if compression not in spec.compressions:
            allowed = ", ".join(spec.compressions)
            raise RequestError(
                f"Compression '{compression}' is not supported by {spec.name} (allowed: {allowed})"
            )
        return compression

    def byte_order_code(self) -> str:
        try:
            return BYTE_ORDERS[self.byte_order]
        except KeyError as exc:
            raise RequestError(f"Unknown byte order: {self.byte_order}") from exc


class Encoder(Protocol):
    """Protocol implemented by output format encoders."""

    def spec(self) -> EncoderSpec:
        ...

    def encode(self, coverage: Coverage, stream: BinaryIO, options: EncodeOptions) -> int:
        ...


def write_payload(stream: BinaryIO, payload: bytes) -> int:
    """Write a fully assembled payload to ``stream`` in one call."""
    try:
        stream.write(payload)
        stream.flush()
    except (OSError, ValueError) as exc:
        raise EncodingError("Failed to write encoded output") from exc
    return len(payload)
