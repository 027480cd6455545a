"""Exception taxonomy for the sfcontext server core.

Startup errors abort the process; the same registry errors raised while
serving a request become a structured error response for that request only.
"""

from __future__ import annotations

from typing import Any


class SfContextError(Exception):
    """Base class for every error raised by the server core."""

    code = "internal_error"


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigurationError(SfContextError):
    """Missing or invalid startup input. Fatal, never retried."""

    code = "configuration_error"


class HandshakeEndpointMissingError(ConfigurationError):
    """No login URL is configured for the access handshake."""

    def __init__(self) -> None:
        super().__init__("Handshake endpoint not configured. Set SFCONTEXT_LOGIN_URL or pass --login-url.")


class HandshakeSecretMissingError(ConfigurationError):
    """No secret is available for the access handshake."""

    def __init__(self) -> None:
        super().__init__("Invalid or missing value for $PASSWORD")


# ---------------------------------------------------------------------------
# Handler registry
# ---------------------------------------------------------------------------


class RegistryError(SfContextError):
    code = "registry_error"


class DuplicateNameError(RegistryError):
    """A handler with the same (category, name) is already registered."""

    code = "duplicate_name"

    def __init__(self, category: str, name: str) -> None:
        self.category = category
        self.name = name
        super().__init__(f"A {category} named '{name}' is already registered")


class InvalidSchemaError(RegistryError):
    """The descriptor's input schema is absent or is not a valid JSON Schema object."""

    code = "invalid_schema"

    def __init__(self, name: str, reason: str) -> None:
        self.name = name
        self.reason = reason
        super().__init__(f"Invalid input schema for '{name}': {reason}")


class HandlerNotFoundError(RegistryError, LookupError):
    code = "not_found"

    def __init__(self, category: str, name: str) -> None:
        self.category = category
        self.name = name
        super().__init__(f"Unknown {category}: {name}")


class RegistryClosedError(RegistryError):
    """Registration was attempted after the server reached READY."""

    code = "registry_closed"

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(
            f"Cannot register '{name}': handlers are sealed once the server is ready (clients may have cached the list)"
        )


# ---------------------------------------------------------------------------
# Handshake
# ---------------------------------------------------------------------------


class HandshakeError(SfContextError):
    code = "handshake_error"


class HandshakeRejectedError(HandshakeError):
    """The remote endpoint answered but did not grant access."""

    code = "handshake_rejected"

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        self.remote_message = message
        self.status_code = status_code
        super().__init__(f"Handshake rejected: {message}")


class HandshakeTimeoutError(HandshakeError, TimeoutError):
    code = "handshake_timeout"

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(f"Handshake request timed out after {timeout:g}s")


# ---------------------------------------------------------------------------
# Process state
# ---------------------------------------------------------------------------


class StateError(SfContextError):
    code = "state_error"


class PhaseOrderError(StateError):
    """An initialization phase was marked out of order."""

    def __init__(self, current: Any, requested: Any) -> None:
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move from phase {current.name} to {requested.name}: phases only advance")


class WorkspaceAlreadySetError(StateError):
    def __init__(self, current: tuple[str, ...]) -> None:
        self.current = current
        super().__init__(f"Workspace path already set to {list(current)}")


class ServerShuttingDownError(SfContextError):
    code = "shutting_down"

    def __init__(self) -> None:
        super().__init__("Server is shutting down; no new requests are accepted")


class ServerNotReadyError(SfContextError):
    code = "not_ready"

    def __init__(self, phase: str) -> None:
        self.phase = phase
        super().__init__(f"Server is not ready yet (phase: {phase})")
