"""LLM research source.

Asks an LLM provider to suggest MCP server packages for a capability.
Suggestions are unverified: their names still go through the package
allow-list and the installer still has to find them on the registry.
"""

from typing import Any

from loguru import logger

from varietymcp.core.types import CandidateServer, SourceOrigin
from varietymcp.core.validation import capability_keywords, is_safe_package_name
from varietymcp.interfaces.llm_provider import LLMProvider

RESEARCH_SYSTEM_PROMPT = (
    "You are an expert on the Model Context Protocol (MCP) ecosystem. "
    "You only suggest npm packages that implement MCP servers."
)

RESEARCH_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "packages": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "name": {"type": "string"},
                    "description": {"type": "string"},
                    "capabilities": {"type": "array", "items": {"type": "string"}},
                },
                "required": ["name"],
            },
        }
    },
    "required": ["packages"],
}

MAX_SUGGESTIONS = 5


def build_research_prompt(capability: str) -> str:
    return (
        f"List up to {MAX_SUGGESTIONS} npm packages that implement an MCP server "
        f"providing the capability '{capability}'. Prefer packages named "
        "'@modelcontextprotocol/server-*' or 'mcp-server-*'. For each package give "
        "its exact npm name, a one-line description and a list of capability "
        "keywords it provides."
    )


class ResearchSource:
    """Discovery source that asks an LLM for package suggestions."""

    def __init__(
        self,
        provider: LLMProvider,
        default_score: float = 40.0,
        timeout: int | None = None,
    ):
        self._provider = provider
        self._default_score = default_score
        self._timeout = timeout

    @property
    def name(self) -> str:
        return f"research:{self._provider.name}"

    @property
    def origin(self) -> SourceOrigin:
        return SourceOrigin.EXTERNAL_RESEARCH

    async def search(self, capability: str) -> list[CandidateServer]:
        result = await self._provider.complete_structured(
            build_research_prompt(capability),
            RESEARCH_SCHEMA,
            system=RESEARCH_SYSTEM_PROMPT,
            max_completion_tokens=1024,
            timeout=self._timeout,
        )

        packages = result.get("packages")
        if not isinstance(packages, list):
            raise ValueError("Research result has no 'packages' list")

        candidates = []
        for entry in packages[:MAX_SUGGESTIONS]:
            if not isinstance(entry, dict):
                continue
            package_name = entry.get("name")
            if not isinstance(package_name, str) or not is_safe_package_name(package_name):
                logger.debug(f"Dropping research suggestion {package_name!r}")
                continue

            keywords = set(capability_keywords(package_name))
            for claimed in entry.get("capabilities") or []:
                if isinstance(claimed, str):
                    keywords |= capability_keywords(claimed)

            candidates.append(
                CandidateServer(
                    package_name=package_name,
                    capabilities=frozenset(keywords),
                    score=self._default_score,
                    source_origin=self.origin,
                    description=str(entry.get("description") or ""),
                )
            )
        return candidates
