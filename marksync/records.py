"""Bookmark records and the identifiers that name them.

Two identifier spaces exist side by side. A ``TransientId`` is minted
locally for an optimistic create and is never sent to the remote store.
A ``DurableId`` is assigned by the remote store and is stable forever.
They are distinct types so one can never be mistaken for the other.
"""

from dataclasses import dataclass
from typing import Any, Union

from .errors import MalformedRecordError


@dataclass(frozen=True)
class TransientId:
    """Locally generated placeholder identifier."""

    token: str

    def __str__(self) -> str:
        return self.token


@dataclass(frozen=True)
class DurableId:
    """Identifier assigned by the remote store."""

    value: str

    def __str__(self) -> str:
        return self.value


Identifier = Union[TransientId, DurableId]


@dataclass(frozen=True)
class CorrelationKey:
    """Names one logical create action: owner plus submission order.

    ``origin`` is a per-process nonce, so keys echoed back for rows
    written by an earlier process never match a pending create here.
    """

    owner_id: str
    sequence: int
    origin: str

    @property
    def token(self) -> str:
        return f"{self.owner_id}:{self.origin}:{self.sequence}"

    @classmethod
    def parse(cls, token: Any) -> "CorrelationKey | None":
        """Parse a ``client_ref`` token, returning None if it is not one of ours."""
        if not isinstance(token, str):
            return None
        # Owner ids may themselves contain colons
        parts = token.rsplit(":", 2)
        if len(parts) != 3:
            return None
        owner_id, origin, raw_sequence = parts
        if not owner_id or not origin:
            return None
        try:
            sequence = int(raw_sequence)
        except ValueError:
            return None
        return cls(owner_id=owner_id, sequence=sequence, origin=origin)


@dataclass(frozen=True)
class Bookmark:
    """A single bookmark as held in the record store."""

    id: Identifier
    title: str
    url: str
    owner_id: str
    correlation: CorrelationKey | None = None

    @property
    def is_transient(self) -> bool:
        return isinstance(self.id, TransientId)

    def with_id(self, identifier: Identifier) -> "Bookmark":
        """Return a copy of this record under a different identifier."""
        return Bookmark(
            id=identifier,
            title=self.title,
            url=self.url,
            owner_id=self.owner_id,
            correlation=self.correlation,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the remote row shape."""
        return {
            "id": str(self.id),
            "title": self.title,
            "url": self.url,
            "user_id": self.owner_id,
            "client_ref": self.correlation.token if self.correlation else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Bookmark":
        """Create from a remote row.

        Raises:
            MalformedRecordError: If the row has no identifier.
        """
        if not isinstance(data, dict):
            raise MalformedRecordError(f"Expected a row object, got {type(data).__name__}")

        raw_id = data.get("id")
        if raw_id is None or raw_id == "":
            raise MalformedRecordError("Record is missing an identifier")

        return cls(
            id=DurableId(str(raw_id)),
            title=data.get("title") or "",
            url=data.get("url") or "",
            owner_id=data.get("user_id") or "",
            correlation=CorrelationKey.parse(data.get("client_ref")),
        )
