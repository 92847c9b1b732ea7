"""Validate task outputs against their declared output schema.

Task definitions declare output shapes as JSON-Schema objects. The supported
subset (``type``, ``required``, ``properties``, ``items``, ``enum``) is
translated into pydantic types once per distinct schema, and outputs are
validated with a ``TypeAdapter``. Unknown keywords are ignored; unknown
properties are allowed.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from functools import lru_cache
from typing import Any, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictFloat,
    StrictInt,
    StrictStr,
    TypeAdapter,
    ValidationError,
    create_model,
)

_SCALARS: dict[str, Any] = {
    "string": StrictStr,
    "integer": StrictInt,
    "number": Union[StrictInt, StrictFloat],
    "boolean": StrictBool,
    "null": type(None),
}


class _OpenModel(BaseModel):
    model_config = ConfigDict(extra="allow")


def _model_name(hint: str) -> str:
    cleaned = "".join(ch if ch.isalnum() else "_" for ch in hint).strip("_")
    return cleaned or "Output"


def _annotation(schema: Mapping[str, Any], name: str) -> Any:
    enum = schema.get("enum")
    if isinstance(enum, list) and enum:
        return Literal[tuple(enum)]

    declared = schema.get("type")
    if isinstance(declared, list):
        members = [_annotation({**schema, "type": t}, name) for t in declared]
        return Union[tuple(members)] if len(members) > 1 else members[0]

    if declared == "object" or (declared is None and "properties" in schema):
        properties = schema.get("properties")
        if not isinstance(properties, Mapping):
            properties = {}
        required = set(schema.get("required") or [])
        if not properties and not required:
            return dict[str, Any]
        fields: dict[str, Any] = {}
        # Field names are positional; the JSON key travels as the alias so any
        # key (hyphens, "json", leading underscores) is accepted.
        keys = list(properties) + sorted(required - set(properties))
        for idx, prop in enumerate(keys):
            prop_schema = properties.get(prop)
            if not isinstance(prop_schema, Mapping):
                prop_schema = {}
            ann = _annotation(prop_schema, f"{name}_{prop}")
            if prop in required:
                fields[f"f{idx}"] = (ann, Field(..., alias=prop))
            else:
                fields[f"f{idx}"] = (Optional[ann], Field(None, alias=prop))
        return create_model(_model_name(name), __base__=_OpenModel, **fields)

    if declared == "array":
        items = schema.get("items")
        if isinstance(items, Mapping) and items:
            return list[_annotation(items, f"{name}_item")]  # type: ignore[misc]
        return list[Any]

    if isinstance(declared, str) and declared in _SCALARS:
        return _SCALARS[declared]

    if "required" in schema:
        return _annotation({**schema, "type": "object"}, name)

    return Any


@lru_cache(maxsize=256)
def _adapter(schema_key: str, name: str) -> TypeAdapter[Any]:
    schema = json.loads(schema_key)
    return TypeAdapter(_annotation(schema, name))


def _format_error(error: Mapping[str, Any]) -> str:
    loc = ".".join(str(part) for part in error.get("loc", ()) if part not in ("",))
    msg = error.get("msg", "invalid")
    return f"{loc}: {msg}" if loc else str(msg)


def validate_output(schema: Mapping[str, Any] | None, value: object, *, name: str = "Output") -> list[str]:
    """Return a list of violations (empty when ``value`` matches ``schema``)."""

    if not schema:
        return []
    key = json.dumps(schema, sort_keys=True, default=str)
    adapter = _adapter(key, _model_name(name))

    if (schema.get("type") == "object" or "required" in schema) and not isinstance(value, dict):
        return [f"expected object, got {type(value).__name__}"]

    try:
        adapter.validate_python(value)
    except ValidationError as e:
        return [_format_error(err) for err in e.errors()]
    return []
