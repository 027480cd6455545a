"""Shared validation functions for handler registration.

Pure functions with no MCP or Click dependencies.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from jsonschema.exceptions import SchemaError
from jsonschema.validators import validator_for

from sfcontext.errors import InvalidSchemaError

# Names double as module-style identifiers, so keep them free of separators.
_HANDLER_NAME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9_]*$")
_PROMPT_NAME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9_-]*$")
_MAX_NAME_LENGTH = 128


def validate_handler_name(name: Any, *, allow_dash: bool = False) -> str | None:
    """Return an error message if *name* is not a usable handler name, else None."""
    if not isinstance(name, str) or not name:
        return "name must be a non-empty string"
    if len(name) > _MAX_NAME_LENGTH:
        return f"name must be at most {_MAX_NAME_LENGTH} characters"
    pattern = _PROMPT_NAME_RE if allow_dash else _HANDLER_NAME_RE
    if not pattern.match(name):
        allowed = "letters, digits, '_' and '-'" if allow_dash else "letters, digits and '_'"
        return f"invalid name {name!r}: must start with a letter and contain only {allowed}"
    return None


def validate_input_schema(name: str, schema: Any) -> dict[str, Any]:
    """Check that *schema* is a JSON Schema describing an object.

    Returns the schema as a plain dict.  Raises InvalidSchemaError when it is
    missing, not a mapping, not an object schema, or rejected by the JSON
    Schema meta-schema.
    """
    if schema is None:
        raise InvalidSchemaError(name, "input schema is required")
    if not isinstance(schema, Mapping):
        raise InvalidSchemaError(name, f"expected a mapping, got {type(schema).__name__}")
    schema = dict(schema)
    if schema.get("type") != "object":
        raise InvalidSchemaError(name, "top-level 'type' must be 'object'")
    properties = schema.get("properties", {})
    if not isinstance(properties, Mapping):
        raise InvalidSchemaError(name, "'properties' must be a mapping")
    required = schema.get("required", [])
    if not isinstance(required, list) or not all(isinstance(r, str) for r in required):
        raise InvalidSchemaError(name, "'required' must be a list of strings")
    missing = [r for r in required if r not in properties]
    if missing:
        raise InvalidSchemaError(name, f"required properties not declared: {', '.join(missing)}")

    try:
        validator_for(schema).check_schema(schema)
    except SchemaError as exc:
        raise InvalidSchemaError(name, exc.message) from exc
    return schema
