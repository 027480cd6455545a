"""MCP server wiring for sfcontext.

Maps the protocol's list/call/get/read requests onto the handler registry,
runs the phased startup, and serves over stdio or streamable HTTP.

Usage:
    sfcontext-mcp                          # stdio, workspace from cwd
    sfcontext-mcp --transport http         # streamable HTTP on 127.0.0.1:3000/mcp
    sfcontext serve --workspace /path/to/project
"""

from __future__ import annotations

import asyncio
import contextlib
import importlib
import logging
import signal
import time
from collections.abc import AsyncIterator, Awaitable, Callable, Coroutine, Iterable, Mapping
from types import ModuleType
from typing import Any

from mcp.server import Server
from mcp.server.lowlevel.helper_types import ReadResourceContents
from mcp.server.stdio import stdio_server
from mcp.types import (
    Annotations,
    AudioContent,
    CallToolResult,
    EmbeddedResource,
    GetPromptResult,
    ImageContent,
    LoggingLevel,
    Prompt,
    PromptArgument,
    Resource,
    ResourceLink,
    RootsListChangedNotification,
    TextContent,
    Tool,
    ToolAnnotations,
)

from sfcontext.capabilities import ClientCapabilitySet
from sfcontext.config import SERVER_NAME, ServerConfig, load_config
from sfcontext.errors import (
    HandlerNotFoundError,
    ServerNotReadyError,
    ServerShuttingDownError,
    SfContextError,
)
from sfcontext.initialization import LOG_SUBDIR, BoundTransport, PhaseRunner
from sfcontext.logging import ClientLogHandler, attach_client_handler, set_client_level, setup_logging
from sfcontext.mcp_tools.common import CallContext, ServerContext, _error, _error_from, _text
from sfcontext.ports import HTTP_HOST, find_available_port
from sfcontext.registry import HandlerCategory, HandlerDescriptor, HandlerRegistry
from sfcontext.resources import ResourceStore, publish_org_context
from sfcontext.sanitize import sanitize_sensitive_data
from sfcontext.state import ProcessState, WorkspaceSource
from sfcontext.workspace import adopt_client_roots, select_strategy

logger = logging.getLogger(__name__)

# Built-in handler modules, loaded during HANDLERS_REGISTERED.
DEFAULT_HANDLER_MODULES = (
    "sfcontext.mcp_tools.context_utils",
    "sfcontext.mcp_tools.prompts",
    "sfcontext.mcp_tools.instructions",
)

HTTP_PATH = "/mcp"

_CONTENT_TYPES = (TextContent, ImageContent, AudioContent, ResourceLink, EmbeddedResource)

# ---------------------------------------------------------------------------
# Server setup
# ---------------------------------------------------------------------------

server = Server(SERVER_NAME)
_ctx: ServerContext | None = None
_background_tasks: set[asyncio.Task[None]] = set()


def _get_ctx() -> ServerContext:
    if _ctx is None:
        msg = "Server not initialized"
        raise RuntimeError(msg)
    return _ctx


def _current_session() -> Any:
    try:
        return server.request_context.session
    except LookupError:
        # Called outside a protocol request (tests, in-process embedding).
        return None


async def _call_context(ctx: ServerContext) -> CallContext:
    session = _current_session()
    if session is None:
        return CallContext(server=ctx, capabilities=ClientCapabilitySet())
    if session not in ctx.sessions:
        ctx.sessions.add(session)
        # First request from this client: the roots request is bounded by the
        # strategy timeout, so the handler sees the client's workspace.
        await _adopt_roots_from(ctx, session)
    return CallContext(server=ctx, capabilities=ctx.capabilities.for_session(session))


def _session_roots(session: Any) -> Callable[[], Awaitable[list[str]]]:
    async def list_roots() -> list[str]:
        result = await session.list_roots()
        return [str(root.uri) for root in result.roots]

    return list_roots


async def _adopt_roots_from(ctx: ServerContext, session: Any) -> None:
    """Let a roots-capable client replace a cwd-fallback workspace."""
    if ctx.state.workspace_source is not WorkspaceSource.FALLBACK:
        return
    strategy = select_strategy(ctx.capabilities.for_session(session), list_roots=_session_roots(session))
    if await adopt_client_roots(ctx.state, strategy) is None:
        return
    try:
        base_dir = ctx.temp_files.ensure_base_dir()
    except OSError:
        logger.warning("Temp directory unavailable under the client workspace; logs stay in place", exc_info=True)
        return
    setup_logging(base_dir / LOG_SUBDIR, level=ctx.config.log_level)


def _spawn(coro: Coroutine[Any, Any, None]) -> None:
    task = asyncio.get_running_loop().create_task(coro)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)


def _notify_resources_changed() -> None:
    """Tell every known session that the resource list changed."""
    if _ctx is None:
        return
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return
    for session in list(_ctx.sessions):
        _spawn(_send_resource_list_changed(session))


async def _send_resource_list_changed(session: Any) -> None:
    try:
        await session.send_resource_list_changed()
    except Exception:
        logger.debug("Failed to send resources/list_changed", exc_info=True)


def _as_content(result: Any) -> list[Any] | CallToolResult:
    if isinstance(result, CallToolResult):
        return result
    if isinstance(result, _CONTENT_TYPES):
        return [result]
    if isinstance(result, list | tuple) and result and all(isinstance(item, _CONTENT_TYPES) for item in result):
        return list(result)
    return _text(result)


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


def _tool_from(descriptor: HandlerDescriptor) -> Tool:
    return Tool(
        name=descriptor.name,
        title=descriptor.title,
        description=descriptor.description,
        inputSchema=descriptor.input_schema or {"type": "object", "properties": {}},
        annotations=ToolAnnotations(**descriptor.annotations) if descriptor.annotations else None,
    )


@server.list_tools()  # type: ignore[untyped-decorator,no-untyped-call]
async def list_tools() -> list[Tool]:
    return [_tool_from(d) for d in _get_ctx().registry.list_all(HandlerCategory.TOOL)]


@server.call_tool()  # type: ignore[untyped-decorator]
async def call_tool(name: str, arguments: dict[str, Any] | None) -> list[Any] | CallToolResult:
    ctx = _get_ctx()
    arguments = arguments or {}
    safe_args = sanitize_sensitive_data(arguments)

    if ctx.state.shutting_down:
        logger.warning("tool_rejected", extra={"tool": name, "args_data": safe_args, "error": "shutting_down"})
        return _error_from(ServerShuttingDownError())
    if not ctx.state.is_ready:
        phase = ctx.state.initialization_phase.name
        logger.warning("tool_rejected", extra={"tool": name, "args_data": safe_args, "error": "not_ready"})
        return _error_from(ServerNotReadyError(phase))

    try:
        descriptor = ctx.registry.lookup(HandlerCategory.TOOL, name)
    except HandlerNotFoundError as exc:
        logger.warning("tool_error", extra={"tool": name, "args_data": safe_args, "error": exc.code})
        return _error_from(exc)

    t0 = time.monotonic()
    try:
        result = await descriptor.implementation(arguments, await _call_context(ctx))
    except SfContextError as exc:
        logger.error("tool_error", extra={"tool": name, "args_data": safe_args, "error": exc.code}, exc_info=True)
        return _error_from(exc)
    except Exception as exc:
        logger.error("tool_error", extra={"tool": name, "args_data": safe_args, "error": "handler_error"}, exc_info=True)
        return _error(str(exc) or type(exc).__name__, "handler_error")

    duration_ms = round((time.monotonic() - t0) * 1000, 1)
    logger.info("tool_call", extra={"tool": name, "args_data": safe_args, "duration_ms": duration_ms})
    return _as_content(result)


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------


def _prompt_arguments(schema: Mapping[str, Any] | None) -> list[PromptArgument]:
    if not schema:
        return []
    required = set(schema.get("required", []))
    return [
        PromptArgument(name=arg, description=prop.get("description"), required=arg in required)
        for arg, prop in schema.get("properties", {}).items()
    ]


@server.list_prompts()  # type: ignore[untyped-decorator,no-untyped-call]
async def list_prompts() -> list[Prompt]:
    return [
        Prompt(
            name=d.name,
            title=d.title,
            description=d.description,
            arguments=_prompt_arguments(d.input_schema),
        )
        for d in _get_ctx().registry.list_all(HandlerCategory.PROMPT)
    ]


@server.get_prompt()  # type: ignore[untyped-decorator,no-untyped-call]
async def get_prompt(name: str, arguments: dict[str, str] | None = None) -> GetPromptResult:
    ctx = _get_ctx()
    descriptor = ctx.registry.lookup(HandlerCategory.PROMPT, name)
    arguments = arguments or {}
    missing = [a.name for a in _prompt_arguments(descriptor.input_schema) if a.required and a.name not in arguments]
    if missing:
        msg = f"Missing required arguments for prompt {name!r}: {', '.join(missing)}"
        raise ValueError(msg)
    result: GetPromptResult = await descriptor.implementation(arguments, await _call_context(ctx))
    logger.debug("Prompt %s rendered", name)
    return result


# ---------------------------------------------------------------------------
# Resources
# ---------------------------------------------------------------------------


@server.list_resources()  # type: ignore[untyped-decorator,no-untyped-call]
async def list_resources() -> list[Resource]:
    ctx = _get_ctx()
    listed = [
        Resource(
            uri=d.uri,  # type: ignore[arg-type]
            name=d.name,
            title=d.title,
            description=d.description,
            mimeType=d.mime_type,
        )
        for d in ctx.registry.list_all(HandlerCategory.RESOURCE)
    ]
    listed.extend(
        Resource(
            uri=entry["uri"],
            name=entry["name"],
            description=entry["description"],
            mimeType=entry["mimeType"],
            annotations=Annotations(**entry["annotations"]),
        )
        for entry in ctx.resources
    )
    return listed


@server.read_resource()  # type: ignore[untyped-decorator,no-untyped-call]
async def read_resource(uri: Any) -> Iterable[ReadResourceContents]:
    ctx = _get_ctx()
    key = str(uri)
    entry = ctx.resources.get(key)
    if entry is not None:
        return [ReadResourceContents(content=entry["text"], mime_type=entry["mimeType"])]
    try:
        descriptor = ctx.registry.lookup_resource(key)
    except HandlerNotFoundError:
        msg = f"Unknown resource: {uri}"
        raise ValueError(msg) from None
    text = await descriptor.implementation(await _call_context(ctx))
    return [ReadResourceContents(content=text, mime_type=descriptor.mime_type)]


# ---------------------------------------------------------------------------
# Logging and notifications
# ---------------------------------------------------------------------------


@server.set_logging_level()  # type: ignore[untyped-decorator,no-untyped-call]
async def set_logging_level(level: LoggingLevel) -> None:
    ctx = _get_ctx()
    ctx.state.set_log_level(level)
    set_client_level(level)
    logger.debug("Client log level set to %s", level)


async def _on_roots_list_changed(notification: RootsListChangedNotification) -> None:
    if _ctx is None:
        return
    ctx = _ctx
    if ctx.state.workspace_source is WorkspaceSource.FALLBACK:
        for session in list(ctx.sessions):
            await _adopt_roots_from(ctx, session)
        return
    logger.info("Client roots changed; workspace stays %s for this process", ", ".join(ctx.state.workspace_path))


server.notification_handlers[RootsListChangedNotification] = _on_roots_list_changed


# ---------------------------------------------------------------------------
# Transports
# ---------------------------------------------------------------------------


class StdioTransport:
    name = "stdio"

    def __init__(self, app: Server[Any, Any]) -> None:
        self._app = app
        self._stack = contextlib.AsyncExitStack()
        self._streams: tuple[Any, Any] | None = None
        self._task: asyncio.Task[None] | None = None
        self._stopping = False

    async def bind(self) -> StdioTransport:
        self._streams = await self._stack.enter_async_context(stdio_server())
        return self

    async def serve(self) -> None:
        if self._streams is None:
            msg = "stdio transport is not bound"
            raise RuntimeError(msg)
        read_stream, write_stream = self._streams
        self._task = asyncio.ensure_future(
            self._app.run(read_stream, write_stream, self._app.create_initialization_options())
        )
        try:
            await self._task
        except asyncio.CancelledError:
            if not self._stopping:
                raise

    def request_stop(self) -> None:
        self._stopping = True
        if self._task is not None:
            self._task.cancel()

    async def close(self) -> None:
        await self._stack.aclose()


class HttpTransport:
    name = "http"

    def __init__(self, app: Server[Any, Any], port: int) -> None:
        self._app = app
        self.requested_port = port
        self.port: int | None = None
        self._uvicorn: Any = None

    async def bind(self) -> HttpTransport:
        import uvicorn
        from mcp.server.streamable_http_manager import StreamableHTTPSessionManager
        from starlette.applications import Starlette
        from starlette.routing import Mount

        self.port = find_available_port(self.requested_port)
        session_manager = StreamableHTTPSessionManager(app=self._app, json_response=False, stateless=False)

        async def _handle_mcp(scope: Any, receive: Any, send: Any) -> None:
            await session_manager.handle_request(scope, receive, send)

        @contextlib.asynccontextmanager
        async def _lifespan(_app: Starlette) -> AsyncIterator[None]:
            async with session_manager.run():
                yield

        asgi_app = Starlette(routes=[Mount(HTTP_PATH, app=_handle_mcp)], lifespan=_lifespan)
        self._uvicorn = uvicorn.Server(uvicorn.Config(asgi_app, host=HTTP_HOST, port=self.port, log_level="warning"))
        logger.info("Streamable HTTP endpoint at http://%s:%d%s", HTTP_HOST, self.port, HTTP_PATH)
        return self

    async def serve(self) -> None:
        await self._uvicorn.serve()

    def request_stop(self) -> None:
        if self._uvicorn is not None:
            self._uvicorn.should_exit = True

    async def close(self) -> None:
        return None


async def bind_transport(config: ServerConfig) -> BoundTransport:
    if config.transport == "http":
        return await HttpTransport(server, config.http_port).bind()
    return await StdioTransport(server).bind()


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------


def load_handler_modules(names: Iterable[str] = DEFAULT_HANDLER_MODULES) -> list[ModuleType]:
    return [importlib.import_module(name) for name in names]


def create_server_context(runner: PhaseRunner) -> ServerContext:
    """Build the request-time context from a runner that reached READY."""
    if runner.config is None or runner.temp_files is None:
        msg = "runner has not completed initialization"
        raise RuntimeError(msg)
    ctx = ServerContext(
        config=runner.config,
        state=runner.state,
        registry=runner.registry,
        resources=ResourceStore(runner.config.max_resources, on_change=_notify_resources_changed),
        temp_files=runner.temp_files,
    )
    publish_org_context(ctx.state, ctx.resources)
    attach_client_handler(ClientLogHandler(lambda: list(ctx.sessions), ctx.state.log_level))
    return ctx


def _install_signal_handlers(state: ProcessState, transport: BoundTransport) -> None:
    loop = asyncio.get_running_loop()

    def _on_signal(signame: str) -> None:
        logger.info("Received %s, shutting down", signame)
        state.begin_shutdown()
        transport.request_stop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _on_signal, sig.name)
        except (NotImplementedError, RuntimeError):
            logger.debug("Cannot install handler for %s on this platform", sig.name)


async def _run(cli: Mapping[str, Any] | None, environ: Mapping[str, str] | None) -> None:
    global _ctx

    state = ProcessState()
    runner = PhaseRunner(
        state,
        HandlerRegistry(),
        lambda: load_config(cli, environ),
        modules=load_handler_modules(),
        transport_binder=bind_transport,
    )
    await runner.run()
    _ctx = create_server_context(runner)

    transport = runner.transport
    if transport is None:
        return
    logger.info("mcp_server_start", extra={"tool": "server", "args_data": {"transport": transport.name}})
    _install_signal_handlers(state, transport)
    try:
        await transport.serve()
    finally:
        state.begin_shutdown()
        await transport.close()
        logger.info("mcp_server_stop", extra={"tool": "server"})


def run_server(cli: Mapping[str, Any] | None = None, environ: Mapping[str, str] | None = None) -> None:
    """Start the server and block until the transport closes.

    Startup errors propagate unchanged; the CLI turns them into exit code 1.
    """
    asyncio.run(_run(cli, environ))
