"""Tests for the remote access handshake."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from sfcontext.errors import (
    ConfigurationError,
    HandshakeEndpointMissingError,
    HandshakeError,
    HandshakeRejectedError,
    HandshakeSecretMissingError,
    HandshakeTimeoutError,
)
from sfcontext.handshake import HandshakeStatus, HandshakeValidator
from sfcontext.state import ProcessState
from tests._helpers import LOGIN_URL, handshake_transport


def _validator(
    state: ProcessState, transport: httpx.AsyncBaseTransport | None = None, **kwargs: object
) -> HandshakeValidator:
    options: dict[str, object] = {"login_url": LOGIN_URL, "secret": "s3cret", "transport": transport}
    options.update(kwargs)
    return HandshakeValidator(state, **options)  # type: ignore[arg-type]


class TestSuccess:
    async def test_posts_secret(self, state: ProcessState) -> None:
        calls: list[httpx.Request] = []
        validator = _validator(state, handshake_transport(calls=calls))
        await validator.validate()
        assert state.handshake_validated
        assert validator.status is HandshakeStatus.VALIDATED
        assert len(calls) == 1
        assert calls[0].method == "POST"
        assert str(calls[0].url) == LOGIN_URL
        assert json.loads(calls[0].content) == {"password": "s3cret"}

    async def test_memoized(self, state: ProcessState) -> None:
        calls: list[httpx.Request] = []
        validator = _validator(state, handshake_transport(calls=calls))
        await validator.validate()
        await validator.validate()
        assert len(calls) == 1

    async def test_concurrent_first_calls_share_one_request(self, state: ProcessState) -> None:
        calls: list[httpx.Request] = []

        async def slow(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            await asyncio.sleep(0.05)
            return httpx.Response(200, json={"success": True})

        validator = _validator(state, httpx.MockTransport(slow))
        await asyncio.gather(*(validator.validate() for _ in range(5)))
        assert len(calls) == 1

    async def test_already_validated_state_skips_request(self, state: ProcessState) -> None:
        state.mark_handshake_validated()
        calls: list[httpx.Request] = []
        validator = _validator(state, handshake_transport(calls=calls))
        await validator.validate()
        assert calls == []


class TestBypass:
    async def test_bypass_skips_request_and_logs(self, state: ProcessState, caplog: pytest.LogCaptureFixture) -> None:
        calls: list[httpx.Request] = []
        validator = _validator(state, handshake_transport(calls=calls), bypass=True, secret=None)
        with caplog.at_level("WARNING", logger="sfcontext.handshake"):
            await validator.validate()
        assert state.handshake_validated
        assert calls == []
        assert any("bypassed" in r.getMessage() for r in caplog.records)


class TestConfigurationFailures:
    async def test_missing_secret(self, state: ProcessState) -> None:
        calls: list[httpx.Request] = []
        validator = _validator(state, handshake_transport(calls=calls), secret=None)
        with pytest.raises(HandshakeSecretMissingError) as exc_info:
            await validator.validate()
        assert isinstance(exc_info.value, ConfigurationError)
        assert "$PASSWORD" in str(exc_info.value)
        assert calls == []
        assert not state.handshake_validated

    async def test_missing_endpoint(self, state: ProcessState) -> None:
        validator = _validator(state, handshake_transport(), login_url="")
        with pytest.raises(HandshakeEndpointMissingError):
            await validator.validate()
        assert validator.status is HandshakeStatus.FAILED


class TestRejection:
    async def test_success_false_carries_message(self, state: ProcessState) -> None:
        transport = handshake_transport(200, {"success": False, "message": "Invalid password"})
        with pytest.raises(HandshakeRejectedError, match="Invalid password") as exc_info:
            await _validator(state, transport).validate()
        assert exc_info.value.remote_message == "Invalid password"
        assert not state.handshake_validated

    async def test_non_2xx(self, state: ProcessState) -> None:
        transport = handshake_transport(401, {"success": True, "message": "Unauthorized"})
        with pytest.raises(HandshakeRejectedError) as exc_info:
            await _validator(state, transport).validate()
        assert exc_info.value.status_code == 401

    async def test_invalid_json(self, state: ProcessState) -> None:
        with pytest.raises(HandshakeRejectedError):
            await _validator(state, handshake_transport(200, raw=b"<html>")).validate()

    async def test_failure_memoized_without_retry(self, state: ProcessState) -> None:
        calls: list[httpx.Request] = []
        validator = _validator(state, handshake_transport(200, {"success": False}, calls=calls))
        for _ in range(2):
            with pytest.raises(HandshakeRejectedError):
                await validator.validate()
        assert len(calls) == 1
        assert validator.status is HandshakeStatus.FAILED

    async def test_network_error(self, state: ProcessState) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(HandshakeError, match="connection refused"):
            await _validator(state, httpx.MockTransport(refuse)).validate()


class TestTimeout:
    async def test_timeout_cancels_request(self, state: ProcessState) -> None:
        cancelled = asyncio.Event()

        async def hang(request: httpx.Request) -> httpx.Response:
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise
            return httpx.Response(200, json={"success": True})

        validator = _validator(state, httpx.MockTransport(hang), timeout=0.05)
        with pytest.raises(HandshakeTimeoutError) as exc_info:
            await validator.validate()
        assert isinstance(exc_info.value, TimeoutError)
        assert cancelled.is_set()
        assert not state.handshake_validated
