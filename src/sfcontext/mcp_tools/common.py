"""Pure helpers and shared types for the MCP handler modules.

This module has NO dependency on ``mcp_server`` module globals, so
collaborator modules can import it freely without circular imports.
"""

from __future__ import annotations

import json
import weakref
from dataclasses import dataclass, field
from typing import Any

from mcp.types import CallToolResult, TextContent

from sfcontext.capabilities import CapabilityCache, ClientCapabilitySet
from sfcontext.config import ServerConfig
from sfcontext.errors import SfContextError
from sfcontext.registry import HandlerRegistry
from sfcontext.resources import ResourceStore
from sfcontext.state import ProcessState
from sfcontext.tempfiles import TempFileManager


@dataclass
class ServerContext:
    """Everything a running server shares between requests."""

    config: ServerConfig
    state: ProcessState
    registry: HandlerRegistry
    resources: ResourceStore
    temp_files: TempFileManager
    capabilities: CapabilityCache = field(default_factory=CapabilityCache)
    sessions: weakref.WeakSet[Any] = field(default_factory=weakref.WeakSet)


@dataclass(frozen=True)
class CallContext:
    """Handed to every handler implementation alongside its arguments."""

    server: ServerContext
    capabilities: ClientCapabilitySet

    @property
    def state(self) -> ProcessState:
        return self.server.state

    @property
    def temp_files(self) -> TempFileManager:
        return self.server.temp_files

    @property
    def resources(self) -> ResourceStore:
        return self.server.resources

    @property
    def registry(self) -> HandlerRegistry:
        return self.server.registry


def _text(content: object) -> list[TextContent]:
    if isinstance(content, str):
        return [TextContent(type="text", text=content)]
    return [TextContent(type="text", text=json.dumps(content, indent=2, default=str))]


def _error(message: str, code: str, **details: Any) -> CallToolResult:
    """Structured error response for a single request."""
    return CallToolResult(content=_text({"error": message, "code": code, **details}), isError=True)


def _error_from(exc: SfContextError) -> CallToolResult:
    return _error(str(exc), exc.code)
