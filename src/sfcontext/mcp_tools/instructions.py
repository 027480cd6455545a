"""Static agent instructions exposed as ``mcp://server/instructions.md``."""

from __future__ import annotations

from sfcontext.mcp_tools.common import CallContext
from sfcontext.registry import HandlerDescriptor, resource

INSTRUCTIONS_URI = "mcp://server/instructions.md"

_INSTRUCTIONS = """\
# Working with this server

This server brokers tool calls between you and the connected org.

## Ground rules
- Call `serverContextUtils` with `getState` when you need to know the workspace or connection state.
- Files the server writes land in `{temp_dir}` under the primary workspace and are removed after {retention} days.
- Never echo credentials back to the user; the server redacts them from every state dump.
- Use `getCurrentDatetime` rather than guessing today's date.

## Workspace
{workspace}
"""


def register() -> list[HandlerDescriptor]:
    return [
        resource(
            "instructions.md",
            INSTRUCTIONS_URI,
            "How an agent should use this server",
            _read_instructions,
            mime_type="text/markdown",
            title="Agent instructions",
        ),
    ]


async def _read_instructions(ctx: CallContext) -> str:
    workspace = ctx.state.workspace_path
    return _INSTRUCTIONS.format(
        temp_dir=f"{ctx.temp_files.subdir}/",
        retention=ctx.temp_files.retention_days,
        workspace="\n".join(f"- {path}" for path in workspace) or "- (not resolved yet)",
    )
