"""In-memory record store holding the reconciled bookmark list.

The store is the single owner of the canonical ordered sequence. Records
are kept newest-first; a new record always lands at the head and a record
whose identifier is already present is updated in place.

Observers are told about a mutation only when the resulting snapshot
differs from the previous one, so idempotent writes from any source never
cause a redraw.
"""

import logging
import time
from contextlib import contextmanager
from typing import Callable, Iterator

from ..records import Bookmark, Identifier

logger = logging.getLogger(__name__)

Snapshot = tuple[Bookmark, ...]
Observer = Callable[[Snapshot], None]


class RecordStore:
    """Ordered, duplicate-free bookmark sequence with change notification."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        """Initialize an empty store.

        Args:
            clock: Monotonic time source used to age records.
        """
        self._clock = clock
        self._records: list[Bookmark] = []
        self._entered_at: dict[Identifier, float] = {}
        self._observers: list[Observer] = []
        self._published: Snapshot = ()
        self._batch_depth = 0

    # ==================== Queries ====================

    def snapshot(self) -> Snapshot:
        """Return the current ordered sequence, newest first."""
        return tuple(self._records)

    def get(self, identifier: Identifier) -> Bookmark | None:
        """Get the record with the given identifier, if present."""
        index = self._index_of(identifier)
        return self._records[index] if index is not None else None

    def age(self, identifier: Identifier) -> float | None:
        """Seconds since the record entered the store, or None if absent."""
        entered = self._entered_at.get(identifier)
        if entered is None:
            return None
        return self._clock() - entered

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._entered_at

    def __len__(self) -> int:
        return len(self._records)

    # ==================== Mutations ====================

    def upsert(self, record: Bookmark) -> None:
        """Insert a record at the head, or update it in place if present."""
        index = self._index_of(record.id)
        if index is None:
            self._records.insert(0, record)
            self._entered_at[record.id] = self._clock()
        else:
            self._records[index] = record
        self._publish()

    def remove(self, identifier: Identifier) -> None:
        """Remove a record. Unknown identifiers are ignored."""
        index = self._index_of(identifier)
        if index is None:
            return
        del self._records[index]
        self._entered_at.pop(identifier, None)
        self._publish()

    def replace(self, identifier: Identifier, with_record: Bookmark) -> None:
        """Swap a record for another in place (promotion).

        If ``with_record`` is already stored under its own identifier, the
        old entry is dropped and the existing one updated, so a Durable
        identifier is never held twice.
        """
        index = self._index_of(identifier)
        if index is None:
            return

        existing = self._index_of(with_record.id)
        if existing is not None and existing != index:
            self._records[existing] = with_record
            del self._records[index]
        else:
            self._records[index] = with_record

        self._entered_at.pop(identifier, None)
        self._entered_at[with_record.id] = self._clock()
        self._publish()

    def clear(self) -> None:
        """Remove every record."""
        self._records.clear()
        self._entered_at.clear()
        self._publish()

    @contextmanager
    def batch(self) -> Iterator["RecordStore"]:
        """Group mutations so observers are notified at most once."""
        self._batch_depth += 1
        try:
            yield self
        finally:
            self._batch_depth -= 1
            self._publish()

    # ==================== Observers ====================

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Register an observer for snapshot changes.

        Returns:
            A callable that removes the observer.
        """
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def _publish(self) -> None:
        if self._batch_depth:
            return

        current = self.snapshot()
        if current == self._published:
            return
        self._published = current

        for observer in list(self._observers):
            try:
                observer(current)
            except Exception as e:
                logger.error(f"Record store observer failed: {e}", exc_info=True)

    def _index_of(self, identifier: Identifier) -> int | None:
        if identifier not in self._entered_at:
            return None
        for i, record in enumerate(self._records):
            if record.id == identifier:
                return i
        return None
