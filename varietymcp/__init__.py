"""varietymcp - acquire missing capabilities by installing and running MCP servers."""

from varietymcp.version import __version__

__all__ = ["__version__"]
