"""Startup configuration.

Every input is resolved once, in order of precedence: command-line value,
then environment variable, then the built-in default below.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from sfcontext.errors import ConfigurationError

logger = logging.getLogger(__name__)

SERVER_NAME = "sfcontext"
PROTOCOL_VERSION = "2025-06-18"

DEFAULT_TRANSPORT = "stdio"
DEFAULT_LOG_LEVEL = "info"
DEFAULT_HTTP_PORT = 3000
DEFAULT_LOGIN_URL = "https://ibm-salesforce-context.netlify.app/.netlify/functions/handshake"
DEFAULT_HANDSHAKE_TIMEOUT = 8.0
DEFAULT_TEMP_SUBDIR = "tmp"
DEFAULT_RETENTION_DAYS = 7
DEFAULT_MAX_RESOURCES = 30

VALID_TRANSPORTS: frozenset[str] = frozenset({"stdio", "http"})

# MCP logging levels (RFC 5424 names) mapped onto stdlib logging levels.
LOG_LEVELS: dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "notice": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
    "alert": logging.CRITICAL,
    "emergency": logging.CRITICAL,
}

# Environment variable names
ENV_TRANSPORT = "MCP_TRANSPORT"
ENV_LOG_LEVEL = "LOG_LEVEL"
ENV_HTTP_PORT = "MCP_HTTP_PORT"
ENV_WORKSPACE = "WORKSPACE_FOLDER_PATHS"
ENV_SECRET = "PASSWORD"
ENV_LOGIN_URL = "SFCONTEXT_LOGIN_URL"
ENV_BYPASS_HANDSHAKE = "SFCONTEXT_BYPASS_HANDSHAKE"
ENV_STRICT_SSL = "SFCONTEXT_STRICT_SSL"

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off", ""})


@dataclass
class ServerConfig:
    transport: str = DEFAULT_TRANSPORT
    log_level: str = DEFAULT_LOG_LEVEL
    http_port: int = DEFAULT_HTTP_PORT
    workspace_override: str | None = None
    secret: str | None = field(default=None, repr=False)
    login_url: str | None = DEFAULT_LOGIN_URL
    bypass_handshake: bool = False
    strict_ssl: bool = True
    handshake_timeout: float = DEFAULT_HANDSHAKE_TIMEOUT
    temp_subdir: str = DEFAULT_TEMP_SUBDIR
    retention_days: int = DEFAULT_RETENTION_DAYS
    max_resources: int = DEFAULT_MAX_RESOURCES


def _pick(cli: Mapping[str, Any], key: str, environ: Mapping[str, str], env_name: str) -> Any:
    """Return the CLI value when given, else the env value, else ``None``."""
    value = cli.get(key)
    if value is not None:
        return value
    env_value = environ.get(env_name)
    if env_value is not None and env_value.strip() != "":
        return env_value
    return None


def _coerce_bool(raw: Any, name: str) -> bool:
    if isinstance(raw, bool):
        return raw
    text = str(raw).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"{name} must be a boolean (got {raw!r})")


def _coerce_port(raw: Any) -> int:
    try:
        port = int(raw)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Invalid HTTP port {raw!r}: must be an integer") from None
    if not (1 <= port <= 65535):
        raise ConfigurationError(f"HTTP port {port} out of range (1-65535)")
    return port


def load_config(cli: Mapping[str, Any] | None = None, environ: Mapping[str, str] | None = None) -> ServerConfig:
    """Build a :class:`ServerConfig` from CLI values, the environment and defaults.

    Raises :class:`ConfigurationError` for any value that cannot be used.
    """
    cli = cli or {}
    environ = os.environ if environ is None else environ
    config = ServerConfig()

    transport = _pick(cli, "transport", environ, ENV_TRANSPORT)
    if transport is not None:
        transport = str(transport).strip().lower()
        if transport not in VALID_TRANSPORTS:
            raise ConfigurationError(f"Invalid transport {transport!r}. Valid options: stdio | http")
        config.transport = transport

    log_level = _pick(cli, "log_level", environ, ENV_LOG_LEVEL)
    if log_level is not None:
        log_level = str(log_level).strip().lower()
        if log_level not in LOG_LEVELS:
            raise ConfigurationError(f"Invalid log level {log_level!r}. Valid options: {', '.join(LOG_LEVELS)}")
        config.log_level = log_level

    port = _pick(cli, "http_port", environ, ENV_HTTP_PORT)
    if port is not None:
        config.http_port = _coerce_port(port)

    workspace = _pick(cli, "workspace", environ, ENV_WORKSPACE)
    if workspace is not None:
        config.workspace_override = str(workspace)

    secret = _pick(cli, "secret", environ, ENV_SECRET)
    if secret is not None:
        config.secret = str(secret)

    login_url = _pick(cli, "login_url", environ, ENV_LOGIN_URL)
    if login_url is not None:
        config.login_url = str(login_url).strip()

    bypass = _pick(cli, "bypass_handshake", environ, ENV_BYPASS_HANDSHAKE)
    if bypass is not None:
        config.bypass_handshake = _coerce_bool(bypass, ENV_BYPASS_HANDSHAKE)

    strict_ssl = _pick(cli, "strict_ssl", environ, ENV_STRICT_SSL)
    if strict_ssl is not None:
        config.strict_ssl = _coerce_bool(strict_ssl, ENV_STRICT_SSL)

    return config


def to_logging_level(level: str) -> int:
    """Map an MCP log level name onto a stdlib logging level (default INFO)."""
    return LOG_LEVELS.get(level.lower(), logging.INFO)
