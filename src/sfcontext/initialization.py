"""Phased server startup.

    CREATED -> CONFIG_LOADED -> WORKSPACE_RESOLVED -> HANDSHAKE_VALIDATED
            -> HANDLERS_REGISTERED -> TRANSPORT_BOUND -> READY

Phases run strictly in order.  The first failure moves the process to the
terminal FAILED state and the original exception propagates unchanged:
there is no rollback and no retry.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from pathlib import Path
from types import ModuleType
from typing import Protocol

import httpx

from sfcontext.config import ServerConfig
from sfcontext.errors import PhaseOrderError
from sfcontext.handshake import HandshakeValidator
from sfcontext.logging import setup_logging
from sfcontext.registry import HandlerRegistry
from sfcontext.state import InitializationPhase, PhaseFailure, ProcessState, WorkspaceSource
from sfcontext.tempfiles import TempFileManager
from sfcontext.workspace import ClientWorkspaceStrategy, WorkspaceResolver

logger = logging.getLogger(__name__)

LOG_SUBDIR = "logs"


class BoundTransport(Protocol):
    """A transport whose endpoint is open but not yet serving."""

    name: str

    async def serve(self) -> None: ...

    def request_stop(self) -> None: ...

    async def close(self) -> None: ...


TransportBinder = Callable[[ServerConfig], Awaitable[BoundTransport | None]]
ConfigSource = ServerConfig | Callable[[], ServerConfig]


class PhaseRunner:
    """Drive one process through its initialization phases.

    Everything that touches the outside world is injected: the configuration
    source, the handler modules, the client workspace strategy, the transport
    binder and (for tests) the handshake HTTP transport.
    """

    def __init__(
        self,
        state: ProcessState,
        registry: HandlerRegistry,
        config_source: ConfigSource,
        *,
        modules: Iterable[ModuleType] = (),
        workspace_strategy: ClientWorkspaceStrategy | None = None,
        transport_binder: TransportBinder | None = None,
        handshake_transport: httpx.AsyncBaseTransport | None = None,
        cwd: str | Path | None = None,
    ) -> None:
        self.state = state
        self.registry = registry
        self._config_source = config_source
        self._modules = list(modules)
        self._workspace_strategy = workspace_strategy
        self._transport_binder = transport_binder
        self._handshake_transport = handshake_transport
        self._cwd = cwd

        self.config: ServerConfig | None = None
        self.temp_files: TempFileManager | None = None
        self.validator: HandshakeValidator | None = None
        self.transport: BoundTransport | None = None

    @property
    def failure(self) -> PhaseFailure | None:
        return self.state.failure

    async def run(self) -> None:
        """Run every phase up to READY, re-raising the first failure."""
        if self.state.initialization_phase is not InitializationPhase.CREATED:
            # One attempt per process; a failed or finished start is not resumed.
            raise PhaseOrderError(self.state.initialization_phase, InitializationPhase.CONFIG_LOADED)
        steps: list[tuple[InitializationPhase, Callable[[], Awaitable[None]]]] = [
            (InitializationPhase.CONFIG_LOADED, self._load_config),
            (InitializationPhase.WORKSPACE_RESOLVED, self._resolve_workspace),
            (InitializationPhase.HANDSHAKE_VALIDATED, self._validate_handshake),
            (InitializationPhase.HANDLERS_REGISTERED, self._register_handlers),
            (InitializationPhase.TRANSPORT_BOUND, self._bind_transport),
            (InitializationPhase.READY, self._mark_ready),
        ]
        for phase, action in steps:
            t0 = time.monotonic()
            try:
                await action()
            except Exception as exc:
                self.state.mark_failed(phase, exc)
                logger.error(
                    "Initialization failed during %s: %s",
                    phase.name,
                    exc,
                    extra={"phase": phase.name, "error": type(exc).__name__},
                )
                raise
            self.state.mark_phase(phase)
            duration_ms = round((time.monotonic() - t0) * 1000, 1)
            logger.debug("Phase %s complete", phase.name, extra={"phase": phase.name, "duration_ms": duration_ms})

    # -- phases ------------------------------------------------------------

    async def _load_config(self) -> None:
        source = self._config_source
        config = source() if callable(source) else source
        setup_logging(level=config.log_level)
        self.state.set_log_level(config.log_level)
        self.config = config

    async def _resolve_workspace(self) -> None:
        config = self._require_config()
        resolver = WorkspaceResolver(config.workspace_override, self._workspace_strategy, cwd=self._cwd)
        paths = await resolver.resolve()
        self.state.set_workspace_path(paths, source=resolver.source or WorkspaceSource.FALLBACK)

        self.temp_files = TempFileManager(self.state, subdir=config.temp_subdir, retention_days=config.retention_days)
        base_dir = self.temp_files.ensure_base_dir()
        setup_logging(base_dir / LOG_SUBDIR, level=config.log_level)
        self.temp_files.cleanup_obsolete(base_dir)

    async def _validate_handshake(self) -> None:
        config = self._require_config()
        self.validator = HandshakeValidator(
            self.state,
            login_url=config.login_url,
            secret=config.secret,
            bypass=config.bypass_handshake,
            timeout=config.handshake_timeout,
            strict_ssl=config.strict_ssl,
            transport=self._handshake_transport,
        )
        await self.validator.validate()

    async def _register_handlers(self) -> None:
        for module in self._modules:
            count = self.registry.register_module(module)
            logger.debug("Registered %d handlers from %s", count, module.__name__)
        logger.info("Registered %d handlers", len(self.registry))

    async def _bind_transport(self) -> None:
        if self._transport_binder is None:
            logger.debug("No transport binder supplied; running without a transport")
            return
        self.transport = await self._transport_binder(self._require_config())
        if self.transport is not None:
            logger.info("Transport %s bound", self.transport.name)

    async def _mark_ready(self) -> None:
        self.registry.seal()
        logger.info("Server ready", extra={"args_data": {"workspace": list(self.state.workspace_path)}})

    def _require_config(self) -> ServerConfig:
        if self.config is None:
            msg = "configuration has not been loaded"
            raise RuntimeError(msg)
        return self.config
