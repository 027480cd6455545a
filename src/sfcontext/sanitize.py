"""Redaction of sensitive fields before data leaves the process.

Pure functions, no MCP dependencies.  Used for published resources and for
tool-call logging.
"""

from __future__ import annotations

import copy
from collections.abc import Iterable, Mapping
from typing import Any

DEFAULT_SENSITIVE_FIELDS: frozenset[str] = frozenset(
    {"accessToken", "access_token", "password", "client_secret", "clientSecret"}
)

REDACTED = "[REDACTED]"


def _redact(value: Any) -> str:
    if isinstance(value, str) and value:
        return f"[REDACTED - length: {len(value)}]"
    return REDACTED


def sanitize_sensitive_data(obj: Any, fields_to_redact: Iterable[str] = DEFAULT_SENSITIVE_FIELDS) -> Any:
    """Return a deep copy of *obj* with every sensitive key's value redacted.

    Mapping keys found in *fields_to_redact* are replaced by a marker that keeps
    the original string length.  Lists and tuples pass through; only their
    mapping elements are sanitized.  Any other value (sets, bytearrays, custom
    objects) is deep-copied, so the result never shares mutable state with
    *obj*.
    """
    fields = fields_to_redact if isinstance(fields_to_redact, frozenset | set) else frozenset(fields_to_redact)
    return _sanitize(obj, fields)


def _sanitize(obj: Any, fields: frozenset[str] | set[str]) -> Any:
    if isinstance(obj, Mapping):
        result: dict[Any, Any] = {}
        for key, value in obj.items():
            if key in fields:
                result[key] = _redact(value)
            else:
                result[key] = _sanitize(value, fields)
        return result
    if isinstance(obj, list | tuple):
        items = [_sanitize(item, fields) if isinstance(item, Mapping) else copy.deepcopy(item) for item in obj]
        return items if isinstance(obj, list) else tuple(items)
    return copy.deepcopy(obj)
