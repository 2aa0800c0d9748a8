"""Candidate sources for capability discovery."""

from .curated_source import CURATED_PACKAGES, CuratedMappingSource
from .npm_registry_source import NpmRegistrySource
from .research_source import ResearchSource

__all__ = [
    "CURATED_PACKAGES",
    "CuratedMappingSource",
    "NpmRegistrySource",
    "ResearchSource",
]
