"""sfcontext: MCP tool-invocation server with phased startup and access handshake."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("sfcontext")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

__all__ = ["__version__"]
