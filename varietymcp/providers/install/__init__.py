"""Install command runners."""

from .npm_runner import NpmCommandRunner

__all__ = ["NpmCommandRunner"]
