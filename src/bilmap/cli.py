"""Command-line interface for bilmap."""

from __future__ import annotations

import argparse
import json
import logging
import os
from pathlib import Path

from bilmap import __version__
from bilmap.encoders.base import BYTE_ORDERS
from bilmap.encoders.bil import RawBilEncoder, bil_header
from bilmap.encoders.registry import get_encoder, initialize_encoders, list_encoders
from bilmap.errors import BilmapError, RequestError
from bilmap.logging_utils import LogOptions, configure_logging
from bilmap.perf import PerfTracker, resolve_metrics_path
from bilmap.pipeline import RenderResult, render_map
from bilmap.raster.kernels import kernel_names
from bilmap.raster.source import RasterioSource
from bilmap.request import MapRequest, load_map_request, normalize_map_request
from bilmap.settings import load_settings

LOGGER = logging.getLogger("bilmap.cli")


def _add_render_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the render subcommand and its arguments."""
    render = subparsers.add_parser("render", help="Render a coverage window to BIL or GeoTIFF.")
    render.add_argument("--source", required=True, help="Path to the source raster.")
    render.add_argument("--request", help="Path to a JSON map request.")
    render.add_argument("--bbox", help="Bounding box as minx,miny,maxx,maxy.")
    render.add_argument("--crs", help="CRS of the bounding box and output grid.")
    render.add_argument("--width", type=int, help="Output width in pixels.")
    render.add_argument("--height", type=int, help="Output height in pixels.")
    render.add_argument(
        "--format",
        default=None,
        help="Output format name or mime type (default: raw-bil).",
    )
    render.add_argument(
        "--interpolation",
        choices=kernel_names(),
        default=None,
        help="Interpolation kernel for scaling and reprojection.",
    )
    render.add_argument("--compression", help="Compression for container formats.")
    render.add_argument(
        "--layer",
        action="append",
        help="Layer name (repeatable; only one layer is supported).",
    )
    render.add_argument(
        "--fill-on-miss",
        action="store_true",
        help="Emit a fill-valued image when the request misses the source.",
    )
    render.add_argument("--settings", help="Path to a JSON settings file.")
    render.add_argument(
        "--header",
        action="store_true",
        help="Write an ESRI .hdr sidecar next to raw BIL output.",
    )
    render.add_argument("--metrics-json", help="Optional path for stage timing JSON.")
    render.add_argument("--output", required=True, help="Output file path.")


def _add_info_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the info subcommand."""
    info = subparsers.add_parser("info", help="Describe a source raster as JSON.")
    info.add_argument("--source", required=True, help="Path to the source raster.")


def _add_formats_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the formats subcommand."""
    subparsers.add_parser("formats", help="List available output formats.")


def _add_version_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the version subcommand."""
    subparsers.add_parser("version", help="Print the current version.")


def _request_from_args(args: argparse.Namespace) -> MapRequest:
    """Build a map request from a JSON file and/or CLI flags."""
    if args.request:
        payload = load_map_request(Path(args.request)).as_dict()
    else:
        missing = [
            flag
            for flag, value in (
                ("--bbox", args.bbox),
                ("--crs", args.crs),
                ("--width", args.width),
                ("--height", args.height),
            )
            if value is None
        ]
        if missing:
            raise RequestError(f"Missing required options: {', '.join(missing)}")
        payload = {
            "bbox": args.bbox,
            "crs": args.crs,
            "width": args.width,
            "height": args.height,
        }
    if args.format:
        payload["format"] = args.format
    if args.interpolation:
        payload["interpolation"] = args.interpolation
    if args.compression:
        payload["compression"] = args.compression
    if args.layer:
        payload["layers"] = list(args.layer)
    if args.fill_on_miss:
        payload["fill_on_miss"] = True
    return normalize_map_request(payload)


def _write_header(output: Path, result: RenderResult, request: MapRequest, byte_order: str) -> Path:
    encoder = get_encoder(request.output_format)
    spec = encoder.spec()
    dtype = spec.dtype or result.dtype
    header_path = output.with_suffix(".hdr")
    header_path.write_text(
        bil_header(
            result.grid,
            band_count=result.band_count,
            dtype=dtype,
            nodata=result.nodata,
            byte_order=BYTE_ORDERS[byte_order],
        ),
        encoding="utf-8",
    )
    return header_path


def _run_render(args: argparse.Namespace) -> int:
    try:
        settings = load_settings(Path(args.settings) if args.settings else None)
    except ValueError as exc:
        LOGGER.error("Invalid settings: %s", exc)
        return RequestError.exit_code
    request = _request_from_args(args)
    source = RasterioSource(Path(args.source))
    output = Path(args.output)
    output.parent.mkdir(parents=True, exist_ok=True)
    partial = output.with_name(output.name + ".part")
    perf = PerfTracker(enabled=True, track_memory=bool(args.metrics_json))
    try:
        with partial.open("wb") as stream:
            result = render_map(request, source, stream, settings=settings, perf=perf)
        os.replace(partial, output)
    finally:
        if partial.exists():
            partial.unlink()
    LOGGER.info("Wrote %s (%s, %d bytes)", output, result.mime_type, result.bytes_written)
    if args.header and isinstance(get_encoder(request.output_format), RawBilEncoder):
        header_path = _write_header(output, result, request, settings.byte_order)
        LOGGER.info("Wrote header %s", header_path)
    metrics_path = resolve_metrics_path(args.metrics_json)
    if metrics_path:
        metrics_path.parent.mkdir(parents=True, exist_ok=True)
        metrics_path.write_text(json.dumps(result.timings, indent=2), encoding="utf-8")
    return 0


def _run_info(args: argparse.Namespace) -> int:
    info = RasterioSource(Path(args.source)).info()
    print(json.dumps(info.as_dict(), indent=2))
    return 0


def _run_formats() -> int:
    for name, encoder in sorted(list_encoders().items()):
        spec = encoder.spec()
        compressions = ",".join(spec.compressions)
        capabilities = ",".join(
            f"{key}={'yes' if value else 'no'}" for key, value in spec.capabilities().items()
        )
        print(f"{name}\t{spec.mime_type}\t{compressions}\t{capabilities}")
    return 0


def main(argv: list[str] | None = None) -> int:
    """Run the CLI entrypoint and return an exit code."""
    parser = argparse.ArgumentParser(
        prog="bilmap",
        description="BILMAP coverage window renderer",
    )
    parser.add_argument("--version", action="version", version=__version__)
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase log verbosity (repeatable).",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Reduce log output to warnings and errors.",
    )
    parser.add_argument(
        "--log-json",
        action="store_true",
        help="Emit logs as JSON on stderr.",
    )
    parser.add_argument(
        "--log-file",
        help="Optional path for JSON log output.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    _add_render_parser(subparsers)
    _add_info_parser(subparsers)
    _add_formats_parser(subparsers)
    _add_version_parser(subparsers)

    args = parser.parse_args(argv)
    log_file_value = getattr(args, "log_file", None)
    configure_logging(
        LogOptions(
            verbose=args.verbose or 0,
            quiet=bool(args.quiet),
            log_file=Path(log_file_value) if log_file_value else None,
            json_console=bool(args.log_json),
        )
    )
    initialize_encoders()

    if args.command == "version":
        print(__version__)
        return 0
    try:
        if args.command == "formats":
            return _run_formats()
        if args.command == "info":
            return _run_info(args)
        if args.command == "render":
            return _run_render(args)
    except BilmapError as exc:
        LOGGER.error("%s: %s", type(exc).__name__, exc)
        return exc.exit_code
    parser.error(f"Unknown command: {args.command}")
    return 2
