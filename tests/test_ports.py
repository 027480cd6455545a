"""Tests for HTTP port selection."""

from __future__ import annotations

import socket
from collections.abc import Generator

import pytest

from sfcontext.errors import ConfigurationError
from sfcontext.ports import _is_port_free, find_available_port


@pytest.fixture
def busy_port() -> Generator[int, None, None]:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    sock.listen(1)
    try:
        yield sock.getsockname()[1]
    finally:
        sock.close()


class TestFindAvailablePort:
    def test_busy_port_detected(self, busy_port: int) -> None:
        assert not _is_port_free(busy_port)

    def test_skips_busy_port(self, busy_port: int, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("sfcontext.ports._is_port_free", lambda port, host="127.0.0.1": port != busy_port)
        assert find_available_port(busy_port) == busy_port + 1

    def test_returns_start_when_free(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("sfcontext.ports._is_port_free", lambda port, host="127.0.0.1": True)
        assert find_available_port(3000) == 3000

    def test_gives_up_after_max_attempts(self, monkeypatch: pytest.MonkeyPatch) -> None:
        tried: list[int] = []

        def never_free(port: int, host: str = "127.0.0.1") -> bool:
            tried.append(port)
            return False

        monkeypatch.setattr("sfcontext.ports._is_port_free", never_free)
        with pytest.raises(ConfigurationError, match="3000-3009"):
            find_available_port(3000)
        assert tried == list(range(3000, 3010))
