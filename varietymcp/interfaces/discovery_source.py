"""DiscoverySource protocol - where candidate packages come from."""

from typing import Protocol

from varietymcp.core.types import CandidateServer, SourceOrigin


class DiscoverySource(Protocol):
    """Abstract protocol for candidate sources.

    A source turns one normalized capability name into zero or more
    candidates. Sources may raise; the discovery service logs the failure
    and carries on with the remaining sources.
    """

    @property
    def name(self) -> str:
        """Short source name used in logs and status output."""
        ...

    @property
    def origin(self) -> SourceOrigin:
        """Kind of source, copied onto every candidate it produces."""
        ...

    async def search(self, capability: str) -> list[CandidateServer]:
        """Return candidates believed to implement the capability."""
        ...
