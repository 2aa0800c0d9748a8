"""Discovery service - turns a capability name into ranked candidate servers.

Sources are queried concurrently. A failing source is logged and
contributes nothing; the others still count. Candidates proposed by several
sources are merged into one entry per package name.

Ranking (best first):
1. number of the capability's keywords the candidate claims
2. source score
3. shorter package name, then lexical order
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Sequence
from dataclasses import replace
from typing import TYPE_CHECKING

from loguru import logger

from varietymcp.core.exceptions import DiscoveryEmptyError
from varietymcp.core.types import CandidateServer
from varietymcp.core.validation import (
    capability_keywords,
    is_safe_package_name,
    normalize_capability,
)
from varietymcp.interfaces.discovery_source import DiscoverySource

if TYPE_CHECKING:
    from varietymcp.core.config.discovery_config import DiscoveryConfig
    from varietymcp.interfaces.llm_provider import LLMProvider


def rank_key(
    requested: frozenset[str], candidate: CandidateServer
) -> tuple[int, float, int, str]:
    """Sort key implementing the matching rule (ascending = better)."""
    matches = len(requested & candidate.capabilities)
    return (-matches, -candidate.score, len(candidate.package_name), candidate.package_name)


def merge_candidates(candidates: Sequence[CandidateServer]) -> list[CandidateServer]:
    """Merge candidates with the same package name.

    Capabilities are unioned; the entry with the best score supplies the
    remaining fields.
    """
    merged: dict[str, CandidateServer] = {}
    for candidate in candidates:
        existing = merged.get(candidate.package_name)
        if existing is None:
            merged[candidate.package_name] = candidate
            continue
        best = candidate if candidate.score > existing.score else existing
        merged[candidate.package_name] = replace(
            best, capabilities=existing.capabilities | candidate.capabilities
        )
    return list(merged.values())


class DiscoveryService:
    """Queries discovery sources and ranks what they return.

    Usage:
        service = DiscoveryService([CuratedMappingSource(), NpmRegistrySource()])
        candidates = await service.discover("memory")
        best = service.select("memory", candidates)
    """

    def __init__(
        self,
        sources: Sequence[DiscoverySource],
        cache_ttl: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize discovery service.

        Args:
            sources: Candidate sources, queried concurrently
            cache_ttl: Seconds a non-empty result is reused (0 disables caching)
            clock: Monotonic time source
        """
        self._sources = list(sources)
        self._cache_ttl = cache_ttl
        self._clock = clock
        self._cache: dict[str, tuple[float, list[CandidateServer]]] = {}

    @classmethod
    def from_config(
        cls, config: DiscoveryConfig, llm_provider: LLMProvider | None = None
    ) -> DiscoveryService:
        """Build the source list described by DiscoveryConfig.

        The research source is only added when it is enabled and an LLM
        provider is available (explicitly passed or built from
        research_command).
        """
        from varietymcp.providers.discovery import (
            CuratedMappingSource,
            NpmRegistrySource,
            ResearchSource,
        )

        sources: list[DiscoverySource] = []
        if config.curated_enabled:
            sources.append(CuratedMappingSource(overrides=config.curated_overrides))
        if config.registry_enabled:
            sources.append(
                NpmRegistrySource(
                    registry_url=config.registry_url,
                    size=config.registry_search_size,
                    timeout=config.registry_timeout_seconds,
                )
            )
        if config.research_enabled:
            if llm_provider is None and config.research_command:
                from varietymcp.providers.llm import CLIResearchProvider

                llm_provider = CLIResearchProvider(
                    config.research_command,
                    timeout=int(config.research_timeout_seconds),
                )
            if llm_provider is not None:
                sources.append(
                    ResearchSource(
                        llm_provider,
                        default_score=config.research_default_score,
                        timeout=int(config.research_timeout_seconds),
                    )
                )
            else:
                logger.warning(
                    "Research discovery enabled but no research_command configured"
                )

        return cls(sources, cache_ttl=config.cache_ttl_seconds)

    @property
    def source_names(self) -> list[str]:
        return [source.name for source in self._sources]

    async def discover(
        self, capability: str, use_cache: bool = True
    ) -> list[CandidateServer]:
        """Return ranked candidates for a capability.

        Never raises for zero results; an empty list means no source had an
        answer.

        Raises:
            UnsafeNameError: If the capability name is not on the allow-list
        """
        capability = normalize_capability(capability)

        if use_cache:
            cached = self._cache_get(capability)
            if cached is not None:
                logger.debug(f"Discovery cache hit for '{capability}'")
                return list(cached)

        results = await asyncio.gather(
            *(self._search_source(source, capability) for source in self._sources)
        )

        found: list[CandidateServer] = []
        for source, candidates in zip(self._sources, results):
            for candidate in candidates:
                if not is_safe_package_name(candidate.package_name):
                    logger.warning(
                        f"Dropping candidate {candidate.package_name!r} from "
                        f"{source.name}: unsafe package name"
                    )
                    continue
                found.append(candidate)

        ranked = self.rank(capability, merge_candidates(found))
        logger.info(
            f"Discovery for '{capability}': {len(ranked)} candidates "
            f"from {len(self._sources)} sources"
        )
        if ranked and self._cache_ttl > 0:
            self._cache[capability] = (self._clock() + self._cache_ttl, ranked)
        return list(ranked)

    async def _search_source(
        self, source: DiscoverySource, capability: str
    ) -> list[CandidateServer]:
        try:
            candidates = await source.search(capability)
        except Exception as e:
            logger.warning(f"Discovery source {source.name} failed for '{capability}': {e}")
            return []
        logger.debug(f"{source.name} proposed {len(candidates)} candidates for '{capability}'")
        return list(candidates)

    @staticmethod
    def rank(capability: str, candidates: Sequence[CandidateServer]) -> list[CandidateServer]:
        """Order candidates by the matching rule."""
        requested = capability_keywords(capability)
        return sorted(candidates, key=lambda c: rank_key(requested, c))

    def select(
        self, capability: str, candidates: Sequence[CandidateServer]
    ) -> CandidateServer:
        """Pick the best candidate.

        Raises:
            DiscoveryEmptyError: If there are no candidates
        """
        if not candidates:
            raise DiscoveryEmptyError(capability)
        return self.rank(capability, candidates)[0]

    def _cache_get(self, capability: str) -> list[CandidateServer] | None:
        entry = self._cache.get(capability)
        if entry is None:
            return None
        expires_at, candidates = entry
        if self._clock() >= expires_at:
            del self._cache[capability]
            return None
        return candidates

    def clear_cache(self, capability: str | None = None) -> None:
        """Forget cached results for one capability or all of them."""
        if capability is None:
            self._cache.clear()
        else:
            self._cache.pop(capability, None)
