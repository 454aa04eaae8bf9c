"""Schema validation helpers for request payloads."""

from __future__ import annotations

import json
from importlib import resources
from typing import Any, Mapping

import jsonschema

from bilmap.errors import RequestError


def _load_schema(name: str) -> dict[str, Any]:
    """Load a JSON schema bundled in the package."""
    with resources.files("bilmap.schemas").joinpath(name).open("r", encoding="utf-8") as handle:
        return json.load(handle)


def validate_map_request(payload: Mapping[str, Any]) -> None:
    """Validate a map request payload against the schema."""
    schema = _load_schema("map_request.schema.json")
    try:
        jsonschema.validate(dict(payload), schema)
    except jsonschema.ValidationError as exc:
        location = "/".join(str(part) for part in exc.absolute_path) or "<root>"
        raise RequestError(f"Invalid map request at {location}: {exc.message}") from exc
