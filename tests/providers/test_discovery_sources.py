"""Tests for the curated, registry and research discovery sources."""

import httpx
import pytest

from tests.helpers.fake_llm_providers import ScriptedResearchProvider
from varietymcp.core.types import SourceOrigin
from varietymcp.providers.discovery.curated_source import CuratedMappingSource
from varietymcp.providers.discovery.npm_registry_source import (
    NpmRegistrySource,
    is_mcp_package,
)
from varietymcp.providers.discovery.research_source import ResearchSource


def registry_object(name, score=0.8, **package):
    return {"package": {"name": name, **package}, "score": {"final": score}}


def registry_transport(payload, status_code=200, seen=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return httpx.Response(status_code, json=payload)

    return httpx.MockTransport(handler)


class TestCuratedSource:
    @pytest.mark.asyncio
    async def test_known_capability(self):
        source = CuratedMappingSource()

        candidates = await source.search("memory")

        assert [c.package_name for c in candidates] == [
            "@modelcontextprotocol/server-memory"
        ]
        assert candidates[0].source_origin == SourceOrigin.CURATED_MAPPING
        assert "memory" in candidates[0].capabilities

    @pytest.mark.asyncio
    async def test_earlier_entries_score_higher(self):
        candidates = await CuratedMappingSource().search("database")

        scores = [c.score for c in candidates]
        assert scores == sorted(scores, reverse=True)
        assert candidates[0].package_name == "@modelcontextprotocol/server-sqlite"

    @pytest.mark.asyncio
    async def test_unknown_capability_has_no_default(self):
        assert await CuratedMappingSource().search("quantum_teleportation") == []

    @pytest.mark.asyncio
    async def test_overrides_replace_table_entries(self):
        source = CuratedMappingSource(overrides={"Memory": ["my-memory-mcp"]})

        candidates = await source.search("memory")

        assert [c.package_name for c in candidates] == ["my-memory-mcp"]
        assert "memory" in source.known_capabilities()

    @pytest.mark.asyncio
    async def test_override_keys_are_normalized(self):
        source = CuratedMappingSource(
            overrides={"Key Value Store": ["kv-mcp"], "bad;name": ["other-mcp"]}
        )

        assert "key_value_store" in source.known_capabilities()
        assert "bad;name" not in source.known_capabilities()
        assert [c.package_name for c in await source.search("key value store")] == ["kv-mcp"]

    @pytest.mark.asyncio
    async def test_invalid_table_names_are_skipped(self):
        source = CuratedMappingSource(table={"x": ["ok-mcp", "bad name; rm"]})
        assert [c.package_name for c in await source.search("x")] == ["ok-mcp"]


class TestRegistrySource:
    def test_is_mcp_package(self):
        assert is_mcp_package({"name": "mcp-server-redis"})
        assert is_mcp_package({"name": "x", "keywords": ["mcp"]})
        assert is_mcp_package(
            {"name": "x", "description": "A Model Context Protocol server"}
        )
        assert not is_mcp_package({"name": "left-pad", "keywords": ["string"]})

    @pytest.mark.asyncio
    async def test_search_builds_query_and_maps_results(self):
        seen = []
        payload = {
            "objects": [
                registry_object(
                    "@acme/mcp-sqlite",
                    score=0.72,
                    version="1.4.0",
                    description="SQLite MCP server",
                    keywords=["sqlite", "database"],
                ),
                registry_object("left-pad", keywords=["string"]),
            ]
        }
        source = NpmRegistrySource(
            "https://registry.example.test/",
            size=5,
            transport=registry_transport(payload, seen=seen),
        )

        candidates = await source.search("file_operations")

        request = seen[0]
        assert request.url.path == "/-/v1/search"
        assert request.url.params["text"] == "file operations mcp"
        assert request.url.params["size"] == "5"

        assert len(candidates) == 1
        found = candidates[0]
        assert found.package_name == "@acme/mcp-sqlite"
        assert found.version == "1.4.0"
        assert found.score == 72.0
        assert {"sqlite", "database", "mcp"} <= found.capabilities
        assert found.source_origin == SourceOrigin.REGISTRY_SEARCH

    @pytest.mark.asyncio
    async def test_unsafe_names_and_versions_are_sanitized(self):
        payload = {
            "objects": [
                registry_object("mcp-evil; rm -rf ~"),
                registry_object("mcp-ok", version="$(whoami)"),
                {"package": "not-a-dict"},
            ]
        }
        source = NpmRegistrySource(transport=registry_transport(payload))

        candidates = await source.search("memory")

        assert [(c.package_name, c.version) for c in candidates] == [("mcp-ok", "latest")]

    @pytest.mark.asyncio
    async def test_missing_score_defaults_to_half(self):
        payload = {"objects": [{"package": {"name": "mcp-memory"}}]}
        source = NpmRegistrySource(transport=registry_transport(payload))

        candidates = await source.search("memory")

        assert candidates[0].score == 50.0

    @pytest.mark.asyncio
    async def test_http_error_raises(self):
        source = NpmRegistrySource(
            transport=registry_transport({"error": "down"}, status_code=503)
        )
        with pytest.raises(httpx.HTTPStatusError):
            await source.search("memory")

    @pytest.mark.asyncio
    async def test_malformed_document_raises(self):
        source = NpmRegistrySource(transport=registry_transport({"results": []}))
        with pytest.raises(ValueError):
            await source.search("memory")


class TestResearchSource:
    @pytest.mark.asyncio
    async def test_suggestions_become_candidates(self):
        provider = ScriptedResearchProvider(
            {
                "packages": [
                    {
                        "name": "mcp-server-redis",
                        "description": "Redis cache",
                        "capabilities": ["caching", "key value"],
                    },
                    {"name": "not a package!"},
                    "garbage",
                ]
            }
        )
        source = ResearchSource(provider, default_score=35.0, timeout=10)

        candidates = await source.search("caching")

        assert source.name == "research:fake"
        assert [c.package_name for c in candidates] == ["mcp-server-redis"]
        assert candidates[0].score == 35.0
        assert candidates[0].source_origin == SourceOrigin.EXTERNAL_RESEARCH
        assert {"caching", "key", "value", "redis"} <= candidates[0].capabilities
        assert "caching" in provider.calls[0].prompt
        assert provider.calls[0].timeout == 10

    @pytest.mark.asyncio
    async def test_missing_packages_list_raises(self):
        source = ResearchSource(ScriptedResearchProvider({"answer": "no idea"}))
        with pytest.raises(ValueError):
            await source.search("caching")

    @pytest.mark.asyncio
    async def test_provider_error_propagates(self):
        source = ResearchSource(
            ScriptedResearchProvider(error=RuntimeError("cli missing"))
        )
        with pytest.raises(RuntimeError):
            await source.search("caching")
