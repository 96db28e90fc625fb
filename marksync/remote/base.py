"""Abstract interface to the remote bookmark store."""

from abc import ABC, abstractmethod

from ..records import Bookmark, CorrelationKey, DurableId


class RemoteStore(ABC):
    """Remote multi-writer store holding the authoritative bookmark rows.

    Implementations raise ``RemoteStoreError`` on any failure.
    """

    @abstractmethod
    async def fetch_all(self, owner_id: str) -> list[Bookmark]:
        """Fetch every bookmark for an owner, newest first."""
        ...

    @abstractmethod
    async def create(
        self,
        title: str,
        url: str,
        owner_id: str,
        correlation: CorrelationKey | None = None,
    ) -> DurableId:
        """Create a bookmark and return its durable identifier."""
        ...

    @abstractmethod
    async def delete(self, identifier: DurableId) -> None:
        """Delete a bookmark."""
        ...
