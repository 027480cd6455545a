"""The ``serverContextUtils`` tool: introspection of the running server."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import Any

from mcp.types import TextContent

from sfcontext.capabilities import attach_resource
from sfcontext.mcp_tools.common import CallContext, _error
from sfcontext.registry import HandlerCategory, HandlerDescriptor, tool
from sfcontext.sanitize import sanitize_sensitive_data

logger = logging.getLogger(__name__)

TOOL_NAME = "serverContextUtils"
SNAPSHOT_URI_PREFIX = "mcp://server/state/"

ACTIONS = ("getCurrentDatetime", "getState", "saveStateSnapshot", "clearCache")

_DESCRIPTION = """\
Utilities for the server itself.

Actions:
- getCurrentDatetime: current date and time with the server's timezone.
- getState: sanitized snapshot of the server state (phase, workspace, org context).
- saveStateSnapshot: write the sanitized state to the workspace tmp directory and attach it as a resource.
- clearCache: drop every resource published at runtime.
"""


def register() -> list[HandlerDescriptor]:
    return [
        tool(
            TOOL_NAME,
            _DESCRIPTION,
            {
                "type": "object",
                "properties": {
                    "action": {
                        "type": "string",
                        "enum": list(ACTIONS),
                        "description": "The action to perform",
                    },
                },
                "required": ["action"],
            },
            _handle_context_utils,
            title="Server Context Utils",
            annotations={"readOnlyHint": False, "idempotentHint": False, "openWorldHint": False},
        ),
    ]


def _state_payload(ctx: CallContext) -> dict[str, Any]:
    return {
        "state": sanitize_sensitive_data(ctx.state.get().to_dict()),
        "client": ctx.capabilities.to_dict(),
        "resources": [entry["uri"] for entry in ctx.resources],
        "handlers": {category.value: list(ctx.registry.names(category)) for category in HandlerCategory},
    }


async def _handle_context_utils(arguments: dict[str, Any], ctx: CallContext) -> Any:
    action = arguments.get("action")
    match action:
        case "getCurrentDatetime":
            now = datetime.now().astimezone()
            return {
                "now": now.isoformat(),
                "nowUtc": now.astimezone(UTC).isoformat(),
                "timezone": now.tzname(),
            }
        case "getState":
            return _state_payload(ctx)
        case "saveStateSnapshot":
            return await _save_state_snapshot(ctx)
        case "clearCache":
            ctx.resources.clear()
            return {"action": action, "status": "success"}
        case _:
            return _error(f"Unknown action {action!r}. Valid actions: {', '.join(ACTIONS)}", "validation_error")


async def _save_state_snapshot(ctx: CallContext) -> list[Any]:
    payload = _state_payload(ctx)
    path = await ctx.temp_files.write("stateSnapshot", payload)
    entry = ctx.resources.publish(
        f"{SNAPSHOT_URI_PREFIX}{path.name}",
        path.name,
        "Sanitized snapshot of the server state",
        json.dumps(payload, indent=3, default=str),
        mime_type="application/json",
        annotations={"audience": ["user", "assistant"]},
    )
    content: list[Any] = [TextContent(type="text", text=f"State snapshot saved to {path}")]
    outcome = attach_resource(content, entry, ctx.capabilities)
    logger.debug("State snapshot %s attachment: %s", path.name, outcome)
    return content
