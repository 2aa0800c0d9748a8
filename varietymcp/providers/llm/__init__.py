"""LLM providers used by research-based discovery."""

from .cli_research_provider import CLIResearchProvider

__all__ = ["CLIResearchProvider"]
