"""Tests for workspace root resolution."""

from __future__ import annotations

import asyncio
import os
from pathlib import Path

import pytest

from sfcontext.capabilities import ClientCapabilitySet
from sfcontext.state import ProcessState, WorkspaceSource
from sfcontext.workspace import (
    NullWorkspaceStrategy,
    RootsWorkspaceStrategy,
    WorkspaceResolver,
    adopt_client_roots,
    normalize_path,
    parse_override,
    resolve_workspace_paths,
    select_strategy,
)


class TestNormalize:
    def test_relative_made_absolute(self, tmp_path: Path) -> None:
        assert normalize_path("sub/../proj", tmp_path) == os.path.join(str(tmp_path), "proj")

    def test_file_uri(self) -> None:
        assert normalize_path("file:///home/user/my%20proj", "/") == "/home/user/my proj"

    def test_blank(self) -> None:
        assert normalize_path("   ", "/") is None

    def test_override_split(self, tmp_path: Path) -> None:
        assert parse_override("/a, /b ,,", tmp_path) == ["/a", "/b"]


class TestResolve:
    def test_override_only(self, tmp_path: Path) -> None:
        assert resolve_workspace_paths("/home/user/project", cwd=tmp_path) == ("/home/user/project",)

    def test_override_then_roots_deduplicated(self, tmp_path: Path) -> None:
        paths = resolve_workspace_paths("/a,/b", ["file:///b", "file:///c"], cwd=tmp_path)
        assert paths == ("/a", "/b", "/c")

    def test_cwd_fallback(self, tmp_path: Path) -> None:
        assert resolve_workspace_paths(None, [], cwd=tmp_path) == (os.path.normpath(str(tmp_path)),)

    def test_nonexistent_paths_kept(self, tmp_path: Path) -> None:
        missing = str(tmp_path / "does-not-exist")
        assert resolve_workspace_paths(missing, cwd=tmp_path) == (missing,)

    def test_never_empty(self, tmp_path: Path) -> None:
        assert resolve_workspace_paths(" , ", cwd=tmp_path)


class TestStrategies:
    async def test_null(self) -> None:
        assert await NullWorkspaceStrategy().client_roots() == []

    async def test_roots_keeps_file_uris_only(self) -> None:
        async def list_roots() -> list[str]:
            return ["file:///repo", "https://example.com/x"]

        assert await RootsWorkspaceStrategy(list_roots).client_roots() == ["file:///repo"]

    async def test_roots_timeout_means_no_roots(self) -> None:
        async def slow() -> list[str]:
            await asyncio.sleep(10)
            return ["file:///late"]

        assert await RootsWorkspaceStrategy(slow, timeout=0.01).client_roots() == []

    async def test_roots_failure_means_no_roots(self) -> None:
        async def broken() -> list[str]:
            raise RuntimeError("client went away")

        assert await RootsWorkspaceStrategy(broken).client_roots() == []


class TestSelectStrategy:
    def test_roots_capable_client(self) -> None:
        async def list_roots() -> list[str]:
            return []

        caps = ClientCapabilitySet(roots=True, client_name="Visual Studio Code")
        assert isinstance(select_strategy(caps, list_roots=list_roots), RootsWorkspaceStrategy)

    def test_roots_capable_without_provider(self) -> None:
        assert isinstance(select_strategy(ClientCapabilitySet(roots=True)), NullWorkspaceStrategy)

    def test_client_without_roots(self) -> None:
        async def list_roots() -> list[str]:
            return ["file:///ignored"]

        caps = ClientCapabilitySet(client_name="cursor-vscode")
        assert isinstance(select_strategy(caps, list_roots=list_roots), NullWorkspaceStrategy)

    def test_fallback_null(self) -> None:
        assert isinstance(select_strategy(), NullWorkspaceStrategy)


def _roots(*uris: str) -> RootsWorkspaceStrategy:
    async def list_roots() -> list[str]:
        return list(uris)

    return RootsWorkspaceStrategy(list_roots)


class TestResolver:
    async def test_merges_strategy_roots(self, tmp_path: Path) -> None:
        resolver = WorkspaceResolver("/a", _roots("file:///b"), cwd=tmp_path)
        assert await resolver.resolve() == ("/a", "/b")
        assert resolver.source is WorkspaceSource.EXPLICIT

    async def test_client_roots_only(self, tmp_path: Path) -> None:
        resolver = WorkspaceResolver(None, _roots("file:///repo"), cwd=tmp_path)
        assert await resolver.resolve() == ("/repo",)
        assert resolver.source is WorkspaceSource.CLIENT

    async def test_blank_override_is_fallback(self, tmp_path: Path) -> None:
        resolver = WorkspaceResolver(" , ", cwd=tmp_path)
        assert await resolver.resolve() == (os.path.normpath(str(tmp_path)),)
        assert resolver.source is WorkspaceSource.FALLBACK

    async def test_defaults_to_cwd(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        resolver = WorkspaceResolver(None)
        assert await resolver.resolve() == (os.path.normpath(str(Path.cwd())),)
        assert resolver.source is WorkspaceSource.FALLBACK


class TestAdoptClientRoots:
    @staticmethod
    def _fallback_state(tmp_path: Path) -> ProcessState:
        state = ProcessState()
        state.set_workspace_path([str(tmp_path)], source=WorkspaceSource.FALLBACK)
        return state

    async def test_fallback_replaced(self, tmp_path: Path) -> None:
        state = self._fallback_state(tmp_path)
        adopted = await adopt_client_roots(state, _roots("file:///repo", "file:///lib"), cwd=tmp_path)
        assert adopted == ("/repo", "/lib")
        assert state.workspace_path == ("/repo", "/lib")
        assert state.workspace_source is WorkspaceSource.CLIENT

    async def test_explicit_kept(self, tmp_path: Path) -> None:
        state = ProcessState()
        state.set_workspace_path(["/chosen"])
        assert await adopt_client_roots(state, _roots("file:///repo"), cwd=tmp_path) is None
        assert state.workspace_path == ("/chosen",)

    async def test_adopted_once(self, tmp_path: Path) -> None:
        state = self._fallback_state(tmp_path)
        await adopt_client_roots(state, _roots("file:///first"), cwd=tmp_path)
        assert await adopt_client_roots(state, _roots("file:///second"), cwd=tmp_path) is None
        assert state.workspace_path == ("/first",)

    async def test_no_usable_roots(self, tmp_path: Path) -> None:
        state = self._fallback_state(tmp_path)
        assert await adopt_client_roots(state, _roots("https://example.com/x"), cwd=tmp_path) is None
        assert await adopt_client_roots(state, NullWorkspaceStrategy(), cwd=tmp_path) is None
        assert state.workspace_path == (str(tmp_path),)
        assert state.workspace_source is WorkspaceSource.FALLBACK
