"""Built-in prompts."""

from __future__ import annotations

from mcp.types import GetPromptResult, PromptMessage, TextContent

from sfcontext.mcp_tools.common import CallContext
from sfcontext.registry import HandlerCategory, HandlerDescriptor, prompt

TOOLS_BASIC_RUN = "tools-basic-run"

_TOOLS_BASIC_RUN_TEXT = """\
Execute a sanity check of every tool this server exposes. Run it without asking \
the user for any input.

OBJECTIVE: call each tool below at least once, using read-only operations only. \
Do not create, update or delete anything.

TOOLS:
{tools}

For each call, record whether it succeeded. Finish with a table of tool name, \
arguments used and outcome (OK or the error message).
"""


def register() -> list[HandlerDescriptor]:
    return [
        prompt(
            TOOLS_BASIC_RUN,
            "Ask the agent to exercise every registered tool once",
            {"type": "object", "properties": {}},
            _tools_basic_run,
            title="Test tools",
        ),
    ]


def _summary(description: str) -> str:
    lines = description.strip().splitlines()
    return lines[0] if lines else ""


async def _tools_basic_run(arguments: dict[str, str], ctx: CallContext) -> GetPromptResult:
    tools = [f"- {d.name}: {_summary(d.description)}" for d in ctx.registry.list_all(HandlerCategory.TOOL)]
    text = _TOOLS_BASIC_RUN_TEXT.format(tools="\n".join(tools) or "- (no tools registered)")
    return GetPromptResult(
        description="Exercise every registered tool once",
        messages=[PromptMessage(role="user", content=TextContent(type="text", text=text))],
    )

