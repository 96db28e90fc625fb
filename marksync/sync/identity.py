"""Identity resolution between transient and durable bookmark records.

Every record arriving from the push feed or a poll passes through
``IdentityResolver.resolve_duplicate`` before it touches the store. The
resolver decides whether the record is already known, confirms an
optimistic create, or is genuinely new.
"""

import itertools
import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from ..records import Bookmark, CorrelationKey, DurableId, Identifier, TransientId

logger = logging.getLogger(__name__)


class ActionKind(Enum):
    """What to do with an incoming record."""

    IGNORE = "ignore"
    PROMOTE = "promote"
    INSERT = "insert"


@dataclass(frozen=True)
class Action:
    """Resolution of an incoming record against the current view."""

    kind: ActionKind
    transient_id: TransientId | None = None

    @classmethod
    def ignore(cls) -> "Action":
        return cls(ActionKind.IGNORE)

    @classmethod
    def insert(cls) -> "Action":
        return cls(ActionKind.INSERT)

    @classmethod
    def promote(cls, transient_id: TransientId) -> "Action":
        return cls(ActionKind.PROMOTE, transient_id)


class IdentityResolver:
    """Maps transient identifiers to durable ones and detects duplicates.

    Holds two small registries:
    - pending creates, keyed by correlation key, so a confirming record
      from any source promotes the optimistic record instead of adding a
      second copy;
    - tombstones for durable ids the user deleted, so a racing insert
      or a stale poll cannot resurrect them.
    """

    def __init__(self):
        self._origin = uuid.uuid4().hex[:12]
        self._transient_counter = itertools.count(1)
        self._submission_counter = itertools.count(1)
        self._pending: dict[CorrelationKey, TransientId] = {}
        self._cancelled: set[CorrelationKey] = set()
        self._tombstones: set[DurableId] = set()
        self.conflict_count = 0

    @property
    def origin(self) -> str:
        """Per-process nonce embedded in correlation keys."""
        return self._origin

    def reserve_transient(self) -> TransientId:
        """Mint a process-unique transient identifier."""
        return TransientId(f"tmp-{next(self._transient_counter)}-{uuid.uuid4().hex[:8]}")

    def next_correlation(self, owner_id: str) -> CorrelationKey:
        """Mint the correlation key for the next create submitted by ``owner_id``."""
        return CorrelationKey(
            owner_id=owner_id,
            sequence=next(self._submission_counter),
            origin=self._origin,
        )

    # ==================== Pending creates ====================

    def track(self, correlation: CorrelationKey, transient_id: TransientId) -> None:
        """Register an optimistic create awaiting confirmation."""
        self._pending[correlation] = transient_id

    def release(self, correlation: CorrelationKey) -> None:
        """Forget a create once it is confirmed or rolled back."""
        self._pending.pop(correlation, None)
        self._cancelled.discard(correlation)

    def cancel(self, correlation: CorrelationKey) -> None:
        """Mark a pending create as withdrawn by the user.

        Confirming records for a cancelled create are ignored until the
        create settles and the key is released.
        """
        self._pending.pop(correlation, None)
        self._cancelled.add(correlation)

    def pending_transient(self, correlation: CorrelationKey | None) -> TransientId | None:
        """Get the transient id awaiting ``correlation``, if any."""
        if correlation is None:
            return None
        return self._pending.get(correlation)

    # ==================== Deletes ====================

    def tombstone(self, identifier: DurableId) -> None:
        """Block re-insertion of a record the user deleted."""
        self._tombstones.add(identifier)

    def revive(self, identifier: DurableId) -> None:
        """Lift a tombstone after a failed delete."""
        self._tombstones.discard(identifier)

    def is_tombstoned(self, identifier: Identifier) -> bool:
        return identifier in self._tombstones

    # ==================== Resolution ====================

    def resolve_duplicate(self, incoming: Bookmark, existing: Iterable[Bookmark]) -> Action:
        """Classify an incoming record against the current view.

        Args:
            incoming: Record from the push feed or a poll.
            existing: Current store snapshot.

        Returns:
            IGNORE if the durable id is already present or tombstoned,
            PROMOTE if it confirms a pending optimistic create, INSERT
            otherwise. Records that cannot be classified are inserted.
        """
        present = {record.id for record in existing}

        if not isinstance(incoming.id, DurableId):
            return self._conflict(incoming, "record from remote source has a transient id")

        if incoming.id in present or incoming.id in self._tombstones:
            return Action.ignore()

        if incoming.correlation is None:
            return Action.insert()

        if incoming.correlation in self._cancelled:
            return Action.ignore()

        transient_id = self._pending.get(incoming.correlation)
        if transient_id is None:
            return Action.insert()

        if transient_id not in present:
            return self._conflict(
                incoming,
                f"pending create {transient_id} is no longer in the view",
            )

        return Action.promote(transient_id)

    def reset(self) -> None:
        """Drop pending creates and tombstones (session change)."""
        self._pending.clear()
        self._cancelled.clear()
        self._tombstones.clear()

    def _conflict(self, incoming: Bookmark, reason: str) -> Action:
        self.conflict_count += 1
        logger.warning(f"Identity conflict for {incoming.id}: {reason}; inserting")
        return Action.insert()
