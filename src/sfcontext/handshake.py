"""Remote access handshake.

Before any handler is registered the server proves it may run by posting
the configured secret to the login endpoint.  The outcome is memoized for
the process: concurrent first callers share one in-flight attempt, a
success is never re-checked, and a failure is never retried.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import Any

import httpx

from sfcontext.config import DEFAULT_HANDSHAKE_TIMEOUT
from sfcontext.errors import (
    HandshakeEndpointMissingError,
    HandshakeError,
    HandshakeRejectedError,
    HandshakeSecretMissingError,
    HandshakeTimeoutError,
)
from sfcontext.state import ProcessState

logger = logging.getLogger(__name__)


class HandshakeStatus(enum.StrEnum):
    NOT_VALIDATED = "not_validated"
    VALIDATING = "validating"
    VALIDATED = "validated"
    FAILED = "failed"


class HandshakeValidator:
    def __init__(
        self,
        state: ProcessState,
        *,
        login_url: str | None,
        secret: str | None,
        bypass: bool = False,
        timeout: float = DEFAULT_HANDSHAKE_TIMEOUT,
        strict_ssl: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._state = state
        self._login_url = login_url
        self._secret = secret
        self._bypass = bypass
        self._timeout = timeout
        self._strict_ssl = strict_ssl
        self._transport = transport
        self._attempt: asyncio.Future[None] | None = None
        self._status = HandshakeStatus.VALIDATED if state.handshake_validated else HandshakeStatus.NOT_VALIDATED

    @property
    def status(self) -> HandshakeStatus:
        return self._status

    async def validate(self) -> None:
        """Validate server access once; later calls return the memoized outcome.

        Raises ConfigurationError when the endpoint or secret is missing,
        HandshakeTimeoutError when the endpoint does not answer in time and
        HandshakeRejectedError when it answers with anything but success.
        """
        if self._state.handshake_validated:
            self._status = HandshakeStatus.VALIDATED
            return

        if self._attempt is None:
            if self._bypass:
                logger.warning("Handshake validation bypassed by explicit configuration")
                self._state.mark_handshake_validated()
                self._status = HandshakeStatus.VALIDATED
                return
            self._attempt = asyncio.ensure_future(self._run())

        # shield: a cancelled caller must not cancel the attempt others await.
        await asyncio.shield(self._attempt)

    async def _run(self) -> None:
        try:
            await self._perform()
        except BaseException:
            self._status = HandshakeStatus.FAILED
            raise
        self._state.mark_handshake_validated()
        self._status = HandshakeStatus.VALIDATED
        logger.info("Server access validated successfully")

    async def _perform(self) -> None:
        if not self._login_url:
            raise HandshakeEndpointMissingError()
        if not self._secret:
            raise HandshakeSecretMissingError()

        self._status = HandshakeStatus.VALIDATING
        logger.debug("Validating server access through handshake endpoint %s", self._login_url)
        try:
            async with asyncio.timeout(self._timeout):
                response = await self._post()
        except (TimeoutError, httpx.TimeoutException) as exc:
            raise HandshakeTimeoutError(self._timeout) from exc
        except httpx.HTTPError as exc:
            msg = f"Handshake request failed: {exc}"
            raise HandshakeError(msg) from exc

        payload = _json_or_none(response)
        if not (response.is_success and isinstance(payload, dict) and payload.get("success")):
            message = None
            if isinstance(payload, dict):
                message = payload.get("message")
            raise HandshakeRejectedError(
                str(message or response.reason_phrase or "Handshake validation failed."),
                status_code=response.status_code,
            )

    async def _post(self) -> httpx.Response:
        async with httpx.AsyncClient(
            verify=self._strict_ssl,
            timeout=self._timeout,
            transport=self._transport,
        ) as client:
            return await client.post(self._login_url or "", json={"password": self._secret})


def _json_or_none(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        logger.error("Failed to parse handshake response payload as JSON (HTTP %d)", response.status_code)
        return None
