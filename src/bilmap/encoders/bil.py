"""Raw band-interleaved-by-line (BIL) encoders."""

from __future__ import annotations

from typing import BinaryIO

import numpy as np

from bilmap.encoders.base import EncodeOptions, EncoderSpec, write_payload
from bilmap.errors import EncodingError
from bilmap.raster.models import Coverage, GridGeometry

PIXEL_TYPES = {"i": "SIGNEDINT", "u": "UNSIGNEDINT", "f": "FLOAT"}


def _convert(data: np.ndarray, dtype: np.dtype) -> np.ndarray:
    """Convert samples into the output sample type."""
    if data.dtype == dtype:
        return data
    if np.issubdtype(dtype, np.integer):
        info = np.iinfo(dtype)
        values = data.astype(np.float64)
        values = np.nan_to_num(values, nan=0.0, posinf=info.max, neginf=info.min)
        return np.clip(np.rint(values), info.min, info.max).astype(dtype)
    return data.astype(dtype)


def bil_bytes(data: np.ndarray, dtype: np.dtype | str, byte_order: str = ">") -> bytes:
    """Serialize ``(bands, rows, cols)`` samples row by row, bands within rows."""
    target = np.dtype(dtype)
    if target.itemsize > 1:
        target = target.newbyteorder(byte_order)
    samples = _convert(data, np.dtype(dtype)).astype(target, copy=False)
    return np.ascontiguousarray(samples.transpose(1, 0, 2)).tobytes()


def bil_header(
    grid: GridGeometry,
    *,
    band_count: int,
    dtype: np.dtype | str,
    nodata: float | None = None,
    byte_order: str = ">",
) -> str:
    """Return an ESRI-style ``.hdr`` sidecar describing a BIL payload."""
    sample = np.dtype(dtype)
    res_x, res_y = grid.resolution
    center = grid.center_transform
    ulx, uly = center * (0, 0)
    lines = [
        ("BYTEORDER", "M" if byte_order == ">" else "I"),
        ("LAYOUT", "BIL"),
        ("NROWS", grid.height),
        ("NCOLS", grid.width),
        ("NBANDS", band_count),
        ("NBITS", sample.itemsize * 8),
        ("PIXELTYPE", PIXEL_TYPES.get(sample.kind, "UNSIGNEDINT")),
        ("BANDROWBYTES", grid.width * sample.itemsize),
        ("TOTALROWBYTES", grid.width * sample.itemsize * band_count),
        ("ULXMAP", repr(float(ulx))),
        ("ULYMAP", repr(float(uly))),
        ("XDIM", repr(float(res_x))),
        ("YDIM", repr(float(res_y))),
    ]
    if nodata is not None:
        lines.append(("NODATA", nodata))
    return "".join(f"{key:<14}{value}\n" for key, value in lines)


class RawBilEncoder:
    """Encode a coverage as headerless BIL samples."""

    def __init__(
        self,
        name: str,
        mime_type: str,
        *,
        dtype: str | None = None,
        aliases: tuple[str, ...] = (),
    ) -> None:
        self._spec = EncoderSpec(
            name=name,
            mime_type=mime_type,
            extension=".bil",
            aliases=aliases,
            dtype=dtype,
        )

    def spec(self) -> EncoderSpec:
        return self._spec

    def sample_dtype(self, coverage: Coverage) -> np.dtype:
        """Return the output sample type for ``coverage``."""
        return np.dtype(self._spec.dtype) if self._spec.dtype else coverage.dtype

    def encode(self, coverage: Coverage, stream: BinaryIO, options: EncodeOptions) -> int:
        options.resolved_compression(self._spec)
        try:
            payload = bil_bytes(
                coverage.data, self.sample_dtype(coverage), options.byte_order_code()
            )
        except (TypeError, ValueError) as exc:
            raise EncodingError(f"Unable to encode samples as {self._spec.name}") from exc
        return write_payload(stream, payload)


def native_bil() -> RawBilEncoder:
    return RawBilEncoder("raw-bil", "image/bil", aliases=("rawBIL", "bil"))


def byte8_bil() -> RawBilEncoder:
    return RawBilEncoder(
        "raw-bil-byte8",
        "application/bil8",
        dtype="uint8",
        aliases=("rawBILByte8", "application/bandstifbyte8"),
    )


def float32_bil() -> RawBilEncoder:
    return RawBilEncoder(
        "raw-bil-float32",
        "application/bil32",
        dtype="float32",
        aliases=("rawBILFloat32", "application/bandstiffloat32"),
    )
