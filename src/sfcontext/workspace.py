"""Workspace root resolution.

Sources, in priority order (all matching sources are merged):

1. Explicit override: ``--workspace``, or ``WORKSPACE_FOLDER_PATHS`` when the
   flag is absent (resolved once by :func:`sfcontext.config.load_config`),
   comma-separated.
2. Roots declared by the connected client, through the client's
   :class:`ClientWorkspaceStrategy`.
3. The process's current working directory, only when 1 and 2 are empty.
   A cwd fallback is replaced by the client's roots once a roots-capable
   client connects (:func:`adopt_client_roots`).

Resolution is lexical: paths are made absolute and normalized but never
checked for existence.  Tools report missing directories when they use them.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Awaitable, Callable, Iterable
from pathlib import Path
from typing import TYPE_CHECKING, Protocol
from urllib.parse import unquote, urlparse
from urllib.request import url2pathname

from sfcontext.state import ProcessState, WorkspaceSource

if TYPE_CHECKING:
    from sfcontext.capabilities import ClientCapabilitySet

logger = logging.getLogger(__name__)

ROOTS_LIST_TIMEOUT = 4.0

RootsProvider = Callable[[], Awaitable[Iterable[str]]]


def _uri_to_path(uri: str) -> str:
    parsed = urlparse(uri)
    path = url2pathname(unquote(parsed.path))
    if parsed.netloc and parsed.netloc != "localhost":
        # UNC-style file://host/share/...
        path = f"//{parsed.netloc}{path}"
    return path


def normalize_path(raw: str, cwd: str | Path) -> str | None:
    """Turn *raw* (path or ``file://`` URI) into an absolute, normalized path.

    Returns None for blank input.
    """
    text = raw.strip()
    if not text:
        return None
    if text.startswith("file://"):
        text = _uri_to_path(text)
    if not os.path.isabs(text):
        text = os.path.join(str(cwd), text)
    return os.path.normpath(text)


def parse_override(value: str | None, cwd: str | Path) -> list[str]:
    """Split a comma-separated override into normalized paths."""
    if not value:
        return []
    paths = (normalize_path(part, cwd) for part in value.split(","))
    return [p for p in paths if p]


def _dedupe(paths: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for p in paths:
        if p not in seen:
            seen.add(p)
            result.append(p)
    return result


def resolve_workspace_paths(
    override: str | None,
    client_roots: Iterable[str] = (),
    cwd: str | Path | None = None,
) -> tuple[str, ...]:
    """Merge the override and client roots, falling back to *cwd*.

    Never returns an empty tuple.
    """
    base = Path.cwd() if cwd is None else Path(cwd)
    merged = _declared_paths(override, client_roots, base)
    if not merged:
        merged = [os.path.normpath(str(base.absolute()))]
    return tuple(merged)


def _declared_paths(override: str | None, client_roots: Iterable[str], base: Path) -> list[str]:
    merged = parse_override(override, base)
    for root in client_roots:
        normalized = normalize_path(root, base)
        if normalized:
            merged.append(normalized)
    return _dedupe(merged)


# ---------------------------------------------------------------------------
# Client strategies
# ---------------------------------------------------------------------------


class ClientWorkspaceStrategy(Protocol):
    """How one client family exposes its workspace roots."""

    name: str

    async def client_roots(self) -> list[str]: ...


class NullWorkspaceStrategy:
    """Clients that declare no roots (or no client connected yet)."""

    name = "none"

    async def client_roots(self) -> list[str]:
        return []


class RootsWorkspaceStrategy:
    """Clients supporting the MCP roots API (VS Code and compatible).

    Only ``file://`` roots are used.  A slow or failing client is treated as
    declaring no roots.
    """

    name = "roots"

    def __init__(self, list_roots: RootsProvider, *, timeout: float = ROOTS_LIST_TIMEOUT) -> None:
        self._list_roots = list_roots
        self._timeout = timeout

    async def client_roots(self) -> list[str]:
        try:
            async with asyncio.timeout(self._timeout):
                uris = list(await self._list_roots())
        except TimeoutError:
            logger.debug("Client did not answer roots/list within %.1fs", self._timeout)
            return []
        except Exception:
            logger.debug("Failed to get workspace roots from client", exc_info=True)
            return []
        return [uri for uri in uris if isinstance(uri, str) and uri.startswith("file://")]


def select_strategy(
    capabilities: ClientCapabilitySet | None = None,
    *,
    list_roots: RootsProvider | None = None,
) -> ClientWorkspaceStrategy:
    """Pick the strategy for a client from its declared capabilities.

    Clients that export their folders through ``WORKSPACE_FOLDER_PATHS``
    (Cursor) are already covered by the explicit override, so they get the
    null strategy like any client without the roots capability.
    """
    if capabilities is not None and capabilities.roots and list_roots is not None:
        return RootsWorkspaceStrategy(list_roots)
    return NullWorkspaceStrategy()


async def adopt_client_roots(
    state: ProcessState,
    strategy: ClientWorkspaceStrategy,
    *,
    cwd: str | Path | None = None,
) -> tuple[str, ...] | None:
    """Replace a cwd-fallback workspace with the roots *strategy* reports.

    Returns the adopted paths, or None when the workspace was set explicitly,
    was already adopted, or the client declares no usable roots.
    """
    if state.workspace_source is not WorkspaceSource.FALLBACK:
        return None
    roots = await strategy.client_roots()
    base = Path.cwd() if cwd is None else Path(cwd)
    paths = _declared_paths(None, roots, base)
    # Another session may have won while the roots request was in flight.
    if not paths or not state.adopt_client_workspace(paths):
        return None
    logger.info(
        "Workspace switched to client roots %s",
        ", ".join(paths),
        extra={"args_data": {"strategy": strategy.name}},
    )
    return tuple(paths)


class WorkspaceResolver:
    def __init__(
        self,
        override: str | None,
        strategy: ClientWorkspaceStrategy | None = None,
        *,
        cwd: str | Path | None = None,
    ) -> None:
        self.override = override
        self.strategy: ClientWorkspaceStrategy = strategy or NullWorkspaceStrategy()
        self.cwd = cwd
        self.source: WorkspaceSource | None = None

    async def resolve(self) -> tuple[str, ...]:
        roots = await self.strategy.client_roots()
        paths = resolve_workspace_paths(self.override, roots, self.cwd)
        base = Path.cwd() if self.cwd is None else Path(self.cwd)
        if parse_override(self.override, base):
            self.source = WorkspaceSource.EXPLICIT
        elif _declared_paths(None, roots, base):
            self.source = WorkspaceSource.CLIENT
        else:
            self.source = WorkspaceSource.FALLBACK
        logger.info(
            "Workspace resolved to %s",
            ", ".join(paths),
            extra={"args_data": {"strategy": self.strategy.name, "override": self.override, "source": self.source}},
        )
        return paths
