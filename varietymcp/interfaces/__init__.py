"""Interfaces for pluggable varietymcp components."""

from .discovery_source import DiscoverySource
from .install_runner import CommandResult, InstallCommandRunner
from .llm_provider import LLMProvider, LLMResponse

__all__ = [
    "CommandResult",
    "DiscoverySource",
    "InstallCommandRunner",
    "LLMProvider",
    "LLMResponse",
]
