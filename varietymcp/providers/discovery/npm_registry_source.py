"""npm registry search source.

Queries the registry's search endpoint for "<capability> mcp" and keeps
results that look like MCP servers.
"""

from typing import Any

import httpx
from loguru import logger

from varietymcp.core.config.discovery_config import DEFAULT_NPM_REGISTRY_URL
from varietymcp.core.exceptions import UnsafeNameError
from varietymcp.core.types import CandidateServer, SourceOrigin
from varietymcp.core.validation import (
    capability_keywords,
    is_safe_package_name,
    validate_version,
)

SEARCH_PATH = "/-/v1/search"


def is_mcp_package(package: dict[str, Any]) -> bool:
    """Whether a registry package looks like an MCP server."""
    name = str(package.get("name") or "").lower()
    description = str(package.get("description") or "")
    keywords = [str(k).lower() for k in package.get("keywords") or []]
    return (
        "mcp" in name
        or "model context protocol" in description.lower()
        or "mcp" in keywords
        or "modelcontextprotocol" in keywords
    )


class NpmRegistrySource:
    """Discovery source backed by the npm registry search API."""

    def __init__(
        self,
        registry_url: str = DEFAULT_NPM_REGISTRY_URL,
        size: int = 10,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize registry source.

        Args:
            registry_url: Registry base URL
            size: Number of search results to request
            timeout: HTTP timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self._registry_url = registry_url.rstrip("/")
        self._size = size
        self._timeout = timeout
        self._transport = transport

    @property
    def name(self) -> str:
        return "npm-registry"

    @property
    def origin(self) -> SourceOrigin:
        return SourceOrigin.REGISTRY_SEARCH

    async def search(self, capability: str) -> list[CandidateServer]:
        """Search the registry.

        Raises:
            httpx.HTTPError: On connection failures, timeouts or error statuses
            ValueError: If the response is not a search result document
        """
        query = f"{capability.replace('_', ' ')} mcp"
        params = {"text": query, "size": str(self._size)}

        async with httpx.AsyncClient(
            base_url=self._registry_url,
            timeout=self._timeout,
            transport=self._transport,
        ) as client:
            response = await client.get(SEARCH_PATH, params=params)
            response.raise_for_status()
            data = response.json()

        if not isinstance(data, dict) or not isinstance(data.get("objects"), list):
            raise ValueError("Invalid registry search response: missing 'objects'")

        candidates = []
        for obj in data["objects"]:
            candidate = self._to_candidate(obj)
            if candidate is not None:
                candidates.append(candidate)

        logger.debug(
            f"Registry search '{query}' returned {len(data['objects'])} packages, "
            f"{len(candidates)} MCP candidates"
        )
        return candidates

    def _to_candidate(self, obj: Any) -> CandidateServer | None:
        if not isinstance(obj, dict):
            return None
        package = obj.get("package")
        if not isinstance(package, dict) or not is_mcp_package(package):
            return None

        name = package.get("name")
        if not isinstance(name, str) or not is_safe_package_name(name):
            logger.debug(f"Skipping registry result with unsafe name: {name!r}")
            return None

        raw_version = package.get("version")
        try:
            version = validate_version(raw_version if isinstance(raw_version, str) else None)
        except UnsafeNameError:
            version = "latest"

        keywords: set[str] = set(capability_keywords(name))
        for keyword in package.get("keywords") or []:
            if isinstance(keyword, str):
                keywords |= capability_keywords(keyword)

        score = obj.get("score", {})
        final = score.get("final") if isinstance(score, dict) else None
        if not isinstance(final, (int, float)):
            final = 0.5

        return CandidateServer(
            package_name=name,
            version=version,
            capabilities=frozenset(keywords),
            score=round(max(0.0, min(float(final), 1.0)) * 100.0, 2),
            source_origin=self.origin,
            description=str(package.get("description") or ""),
        )
