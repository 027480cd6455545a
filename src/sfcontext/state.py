"""Process-wide state shared by every server component.

One ``ProcessState`` is built per process and handed to each component at
construction time.  The initialization runner and the handshake validator are
the only writers; everything else reads through :meth:`ProcessState.get`.
"""

from __future__ import annotations

import copy
import enum
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from sfcontext.errors import PhaseOrderError, WorkspaceAlreadySetError

logger = logging.getLogger(__name__)


class InitializationPhase(enum.IntEnum):
    CREATED = 0
    CONFIG_LOADED = 1
    WORKSPACE_RESOLVED = 2
    HANDSHAKE_VALIDATED = 3
    HANDLERS_REGISTERED = 4
    TRANSPORT_BOUND = 5
    READY = 6
    # Terminal; reachable from any phase.
    FAILED = 99


class WorkspaceSource(enum.StrEnum):
    """Where the workspace paths came from."""

    EXPLICIT = "explicit"
    CLIENT = "client"
    # Only the process cwd; client roots may still replace it.
    FALLBACK = "fallback"


@dataclass(frozen=True)
class PhaseFailure:
    phase: InitializationPhase
    cause: BaseException


@dataclass(frozen=True)
class StateSnapshot:
    initialization_phase: InitializationPhase
    handshake_validated: bool
    workspace_path: tuple[str, ...]
    workspace_source: WorkspaceSource | None
    shutting_down: bool
    org_context: dict[str, Any]
    started_at: datetime
    log_level: str

    @property
    def primary_workspace(self) -> str | None:
        return self.workspace_path[0] if self.workspace_path else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "initialization_phase": self.initialization_phase.name,
            "handshake_validated": self.handshake_validated,
            "workspace_path": list(self.workspace_path),
            "workspace_source": self.workspace_source.value if self.workspace_source else None,
            "shutting_down": self.shutting_down,
            "org_context": self.org_context,
            "started_at": self.started_at.isoformat(),
            "log_level": self.log_level,
        }


@dataclass
class ProcessState:
    """Mutable record of process-wide flags.

    Runs on a single event loop, so no lock is taken: writes only happen from
    the initialization runner and the handshake validator.
    """

    initialization_phase: InitializationPhase = InitializationPhase.CREATED
    handshake_validated: bool = False
    workspace_path: tuple[str, ...] = ()
    workspace_source: WorkspaceSource | None = None
    shutting_down: bool = False
    org_context: dict[str, Any] = field(default_factory=dict)
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    log_level: str = "info"
    failure: PhaseFailure | None = None

    def get(self) -> StateSnapshot:
        """Return a read-only snapshot. ``org_context`` is deep-copied."""
        return StateSnapshot(
            initialization_phase=self.initialization_phase,
            handshake_validated=self.handshake_validated,
            workspace_path=self.workspace_path,
            workspace_source=self.workspace_source,
            shutting_down=self.shutting_down,
            org_context=copy.deepcopy(self.org_context),
            started_at=self.started_at,
            log_level=self.log_level,
        )

    def mark_phase(self, phase: InitializationPhase) -> None:
        if phase <= self.initialization_phase:
            raise PhaseOrderError(self.initialization_phase, phase)
        logger.debug("Initialization phase %s -> %s", self.initialization_phase.name, phase.name)
        self.initialization_phase = phase

    def mark_failed(self, phase: InitializationPhase, cause: BaseException) -> None:
        """Move to the terminal FAILED state, remembering where it happened."""
        if self.initialization_phase is InitializationPhase.FAILED:
            return
        self.failure = PhaseFailure(phase=phase, cause=cause)
        self.initialization_phase = InitializationPhase.FAILED

    def mark_handshake_validated(self) -> None:
        self.handshake_validated = True

    def set_workspace_path(
        self,
        paths: list[str] | tuple[str, ...],
        source: WorkspaceSource = WorkspaceSource.EXPLICIT,
    ) -> None:
        if self.workspace_path:
            raise WorkspaceAlreadySetError(self.workspace_path)
        if not paths:
            msg = "Workspace path list must contain at least one entry"
            raise ValueError(msg)
        self.workspace_path = tuple(paths)
        self.workspace_source = source

    def adopt_client_workspace(self, paths: list[str] | tuple[str, ...]) -> bool:
        """Replace a cwd fallback with client-declared roots.

        Returns False (and changes nothing) unless the current workspace is
        the fallback; an explicit or already adopted workspace is kept.
        """
        if self.workspace_source is not WorkspaceSource.FALLBACK:
            return False
        if not paths:
            msg = "Workspace path list must contain at least one entry"
            raise ValueError(msg)
        self.workspace_path = tuple(paths)
        self.workspace_source = WorkspaceSource.CLIENT
        return True

    def begin_shutdown(self) -> None:
        if not self.shutting_down:
            logger.info("Shutdown requested; refusing new work")
        self.shutting_down = True

    def set_org_context(self, org_context: dict[str, Any]) -> None:
        self.org_context = dict(org_context)

    def set_log_level(self, level: str) -> None:
        self.log_level = level

    @property
    def is_ready(self) -> bool:
        return self.initialization_phase is InitializationPhase.READY
