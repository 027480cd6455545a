"""Shared pytest fixtures for sfcontext tests."""

from __future__ import annotations

import logging
from collections.abc import Generator
from pathlib import Path

import pytest
from click.testing import CliRunner

from sfcontext.config import ServerConfig
from sfcontext.logging import LOGGER_NAME
from sfcontext.registry import HandlerRegistry
from sfcontext.state import InitializationPhase, ProcessState
from sfcontext.tempfiles import TempFileManager
from tests._helpers import LOGIN_URL


@pytest.fixture(autouse=True)
def _reset_sfcontext_logger() -> Generator[None, None, None]:
    """Undo setup_logging between tests so caplog keeps working."""
    logger = logging.getLogger(LOGGER_NAME)
    saved_handlers = logger.handlers[:]
    saved_level = logger.level
    saved_propagate = logger.propagate
    yield
    for handler in logger.handlers[:]:
        if handler not in saved_handlers:
            logger.removeHandler(handler)
            handler.close()
    logger.setLevel(saved_level)
    logger.propagate = saved_propagate


@pytest.fixture
def state() -> ProcessState:
    return ProcessState()


@pytest.fixture
def registry() -> HandlerRegistry:
    return HandlerRegistry()


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    ws = tmp_path / "project"
    ws.mkdir()
    return ws


@pytest.fixture
def ready_state(workspace: Path) -> ProcessState:
    """State as it looks after a successful startup."""
    s = ProcessState()
    s.set_workspace_path([str(workspace)])
    s.mark_handshake_validated()
    for phase in InitializationPhase:
        if InitializationPhase.CREATED < phase <= InitializationPhase.READY:
            s.mark_phase(phase)
    return s


@pytest.fixture
def temp_files(ready_state: ProcessState) -> TempFileManager:
    return TempFileManager(ready_state)


@pytest.fixture
def config(workspace: Path) -> ServerConfig:
    return ServerConfig(workspace_override=str(workspace), secret="s3cret", login_url=LOGIN_URL)


@pytest.fixture
def cli_runner() -> CliRunner:
    return CliRunner()
