"""Tests for the process-wide state record."""

from __future__ import annotations

import pytest

from sfcontext.errors import PhaseOrderError, StateError, WorkspaceAlreadySetError
from sfcontext.state import InitializationPhase, ProcessState, WorkspaceSource


class TestPhases:
    def test_starts_created(self, state: ProcessState) -> None:
        assert state.get().initialization_phase is InitializationPhase.CREATED
        assert not state.is_ready

    def test_advances_in_order(self, state: ProcessState) -> None:
        state.mark_phase(InitializationPhase.CONFIG_LOADED)
        state.mark_phase(InitializationPhase.WORKSPACE_RESOLVED)
        assert state.get().initialization_phase is InitializationPhase.WORKSPACE_RESOLVED

    def test_may_skip_forward(self, state: ProcessState) -> None:
        state.mark_phase(InitializationPhase.HANDSHAKE_VALIDATED)
        assert state.initialization_phase is InitializationPhase.HANDSHAKE_VALIDATED

    def test_rejects_repeat(self, state: ProcessState) -> None:
        state.mark_phase(InitializationPhase.CONFIG_LOADED)
        with pytest.raises(PhaseOrderError):
            state.mark_phase(InitializationPhase.CONFIG_LOADED)

    def test_rejects_backwards(self, state: ProcessState) -> None:
        state.mark_phase(InitializationPhase.HANDSHAKE_VALIDATED)
        with pytest.raises(PhaseOrderError) as exc_info:
            state.mark_phase(InitializationPhase.WORKSPACE_RESOLVED)
        assert isinstance(exc_info.value, StateError)
        assert state.initialization_phase is InitializationPhase.HANDSHAKE_VALIDATED

    def test_failed_is_terminal(self, state: ProcessState) -> None:
        cause = RuntimeError("boom")
        state.mark_phase(InitializationPhase.CONFIG_LOADED)
        state.mark_failed(InitializationPhase.WORKSPACE_RESOLVED, cause)
        assert state.initialization_phase is InitializationPhase.FAILED
        assert state.failure is not None
        assert state.failure.phase is InitializationPhase.WORKSPACE_RESOLVED
        assert state.failure.cause is cause
        with pytest.raises(PhaseOrderError):
            state.mark_phase(InitializationPhase.READY)

    def test_second_failure_keeps_first(self, state: ProcessState) -> None:
        first = ValueError("first")
        state.mark_failed(InitializationPhase.CONFIG_LOADED, first)
        state.mark_failed(InitializationPhase.READY, ValueError("second"))
        assert state.failure is not None
        assert state.failure.cause is first


class TestHandshakeFlag:
    def test_idempotent(self, state: ProcessState) -> None:
        state.mark_handshake_validated()
        state.mark_handshake_validated()
        assert state.get().handshake_validated is True


class TestWorkspace:
    def test_set_once(self, state: ProcessState) -> None:
        state.set_workspace_path(["/a", "/b"])
        snap = state.get()
        assert snap.workspace_path == ("/a", "/b")
        assert snap.primary_workspace == "/a"

    def test_reassignment_rejected(self, state: ProcessState) -> None:
        state.set_workspace_path(["/a"])
        with pytest.raises(WorkspaceAlreadySetError):
            state.set_workspace_path(["/b"])
        assert state.workspace_path == ("/a",)

    def test_empty_rejected(self, state: ProcessState) -> None:
        with pytest.raises(ValueError, match="at least one"):
            state.set_workspace_path([])

    def test_primary_none_when_unset(self, state: ProcessState) -> None:
        assert state.get().primary_workspace is None

    def test_source_recorded(self, state: ProcessState) -> None:
        state.set_workspace_path(["/a"])
        assert state.get().workspace_source is WorkspaceSource.EXPLICIT

    def test_fallback_adopts_client_roots(self, state: ProcessState) -> None:
        state.set_workspace_path(["/cwd"], source=WorkspaceSource.FALLBACK)
        assert state.adopt_client_workspace(["/repo"]) is True
        assert state.workspace_path == ("/repo",)
        assert state.workspace_source is WorkspaceSource.CLIENT
        assert state.adopt_client_workspace(["/other"]) is False
        assert state.workspace_path == ("/repo",)

    def test_explicit_not_adopted(self, state: ProcessState) -> None:
        state.set_workspace_path(["/a"])
        assert state.adopt_client_workspace(["/repo"]) is False
        assert state.workspace_path == ("/a",)

    def test_adopt_empty_rejected(self, state: ProcessState) -> None:
        state.set_workspace_path(["/cwd"], source=WorkspaceSource.FALLBACK)
        with pytest.raises(ValueError, match="at least one"):
            state.adopt_client_workspace([])


class TestShutdown:
    def test_begin_shutdown_idempotent(self, state: ProcessState) -> None:
        state.begin_shutdown()
        state.begin_shutdown()
        assert state.get().shutting_down is True


class TestSnapshot:
    def test_org_context_is_copied(self, state: ProcessState) -> None:
        state.set_org_context({"user": {"name": "ada"}})
        snap = state.get()
        snap.org_context["user"]["name"] = "mallory"
        assert state.get().org_context["user"]["name"] == "ada"

    def test_to_dict(self, state: ProcessState) -> None:
        state.set_log_level("debug")
        data = state.get().to_dict()
        assert data["initialization_phase"] == "CREATED"
        assert data["log_level"] == "debug"
        assert data["workspace_path"] == []
        assert data["workspace_source"] is None
        assert "started_at" in data

    def test_snapshot_is_frozen(self, state: ProcessState) -> None:
        snap = state.get()
        with pytest.raises(AttributeError):
            snap.shutting_down = True  # type: ignore[misc]
