"""Curated capability -> package table.

Known-good MCP server packages for common capability names. Unknown
capabilities produce no candidates; there is no catch-all default.
"""

from loguru import logger

from varietymcp.core.types import CandidateServer, SourceOrigin
from varietymcp.core.validation import (
    capability_key,
    capability_keywords,
    is_safe_package_name,
)

OFFICIAL = "@modelcontextprotocol"

CURATED_PACKAGES: dict[str, list[str]] = {
    # Official reference servers
    "filesystem": [f"{OFFICIAL}/server-filesystem"],
    "github": [f"{OFFICIAL}/server-github"],
    "git": [f"{OFFICIAL}/server-git"],
    "gitlab": [f"{OFFICIAL}/server-gitlab"],
    "google_drive": [f"{OFFICIAL}/server-google-drive"],
    "postgres": [f"{OFFICIAL}/server-postgres"],
    "sqlite": [f"{OFFICIAL}/server-sqlite", "mcp-server-sqlite"],
    "slack": [f"{OFFICIAL}/server-slack"],
    "memory": [f"{OFFICIAL}/server-memory"],
    "puppeteer": [f"{OFFICIAL}/server-puppeteer"],
    "brave_search": [f"{OFFICIAL}/server-brave-search"],
    "fetch": [f"{OFFICIAL}/server-fetch"],
    # Generic capabilities
    "caching": [f"{OFFICIAL}/server-memory", "mcp-server-redis"],
    "file_operations": [
        f"{OFFICIAL}/server-filesystem",
        f"{OFFICIAL}/server-google-drive",
        "mcp-server-s3",
    ],
    "database": [
        f"{OFFICIAL}/server-sqlite",
        f"{OFFICIAL}/server-postgres",
        "mcp-server-mysql",
        "mcp-server-bigquery",
        "mcp-server-clickhouse",
    ],
    "data_transformation": [
        f"{OFFICIAL}/server-sqlite",
        f"{OFFICIAL}/server-postgres",
        "mcp-server-bigquery",
    ],
    "api": [f"{OFFICIAL}/server-fetch", "mcp-server-fastapi", "mcp-server-graphql"],
    "web": [
        f"{OFFICIAL}/server-puppeteer",
        f"{OFFICIAL}/server-brave-search",
        f"{OFFICIAL}/server-fetch",
        "mcp-server-playwright",
    ],
    "search": [
        f"{OFFICIAL}/server-brave-search",
        "mcp-server-elasticsearch",
        "mcp-server-algolia",
    ],
    "monitoring": ["mcp-server-prometheus", "mcp-server-grafana", "mcp-server-newrelic"],
    "security": ["mcp-server-vault", "mcp-server-1password", "mcp-server-aws-secrets"],
    "messaging": [
        f"{OFFICIAL}/server-slack",
        "mcp-server-discord",
        "mcp-server-telegram",
    ],
    "cloud": ["mcp-server-aws", "mcp-server-gcp", "mcp-server-azure"],
    "containerization": ["mcp-server-docker", "mcp-server-kubernetes", "mcp-server-podman"],
    "version_control": [
        f"{OFFICIAL}/server-git",
        f"{OFFICIAL}/server-github",
        f"{OFFICIAL}/server-gitlab",
    ],
    "machine_learning": ["mcp-server-lmstudio", "mcp-server-mlflow", "mcp-server-huggingface"],
}

# Score of the first listed package; later entries lose RANK_STEP each
TOP_SCORE = 90.0
RANK_STEP = 5.0


class CuratedMappingSource:
    """Discovery source backed by a static table plus user overrides.

    Overrides are consulted first and replace the built-in entry for the
    same capability.
    """

    def __init__(
        self,
        overrides: dict[str, list[str]] | None = None,
        table: dict[str, list[str]] | None = None,
    ):
        self._table = dict(CURATED_PACKAGES if table is None else table)
        for capability, packages in (overrides or {}).items():
            key = capability_key(capability)
            if key is None:
                logger.warning(f"Ignoring curated override for invalid capability: {capability!r}")
                continue
            self._table[key] = list(packages)

    @property
    def name(self) -> str:
        return "curated"

    @property
    def origin(self) -> SourceOrigin:
        return SourceOrigin.CURATED_MAPPING

    def known_capabilities(self) -> list[str]:
        return sorted(self._table)

    async def search(self, capability: str) -> list[CandidateServer]:
        capability = capability_key(capability)
        if capability is None:
            return []
        packages = self._table.get(capability, [])
        keywords = capability_keywords(capability)

        candidates = []
        for rank, package_name in enumerate(packages):
            if not is_safe_package_name(package_name):
                logger.warning(f"Ignoring invalid curated package name: {package_name!r}")
                continue
            candidates.append(
                CandidateServer(
                    package_name=package_name,
                    capabilities=keywords,
                    score=max(TOP_SCORE - rank * RANK_STEP, 0.0),
                    source_origin=self.origin,
                    description=f"Curated server for '{capability}'",
                )
            )
        return candidates
