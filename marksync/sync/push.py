"""Push event ingestion.

Push delivery is best-effort: a malformed event is logged, counted and
dropped, and never interrupts the reconciliation loop.
"""

import json
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

from jsonschema import Draft7Validator

from ..errors import MalformedPushEvent, MalformedRecordError
from ..records import Bookmark, DurableId
from ..store import RecordStore
from .identity import ActionKind, IdentityResolver

logger = logging.getLogger(__name__)


class EventKind(Enum):
    """Kinds of change event carried by the push channel."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


# Postgres-changes style payload: the row lives under "new" for inserts
# and updates, under "old" for deletes.
PUSH_EVENT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["eventType"],
    "properties": {
        "eventType": {"enum": [kind.value for kind in EventKind]},
        "new": {"type": ["object", "null"]},
        "old": {"type": ["object", "null"]},
    },
}

# Row columns mapped to Bookmark fields for partial updates
_UPDATABLE_FIELDS = {"title": "title", "url": "url", "user_id": "owner_id"}
_FULL_ROW = frozenset(_UPDATABLE_FIELDS.values())

_validator = Draft7Validator(PUSH_EVENT_SCHEMA)


@dataclass(frozen=True)
class PushEvent:
    """A decoded change event."""

    kind: EventKind
    record: Bookmark
    fields: frozenset[str] = frozenset()


def parse_push_event(payload: str | bytes | dict[str, Any]) -> PushEvent:
    """Decode a push payload into a change event.

    Raises:
        MalformedPushEvent: If the payload is not a valid change event.
    """
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise MalformedPushEvent(f"Invalid JSON: {e}") from e

    errors = sorted(_validator.iter_errors(payload), key=lambda e: [str(p) for p in e.path])
    if errors:
        messages = [
            f"{'.'.join(str(p) for p in error.path) or 'root'}: {error.message}"
            for error in errors
        ]
        raise MalformedPushEvent("; ".join(messages))

    kind = EventKind(payload["eventType"])
    row = (payload.get("old") if kind is EventKind.DELETE else payload.get("new")) or {}

    try:
        record = Bookmark.from_dict(row)
    except MalformedRecordError as e:
        raise MalformedPushEvent(f"{kind.value} event: {e}") from e

    fields = frozenset(
        field for column, field in _UPDATABLE_FIELDS.items() if column in row
    )
    return PushEvent(kind=kind, record=record, fields=fields)


class PushIngestor:
    """Applies push change events to the record store."""

    def __init__(self, store: RecordStore, resolver: IdentityResolver):
        self._store = store
        self._resolver = resolver
        self._active = False
        self.applied_count = 0
        self.malformed_count = 0

    @property
    def is_active(self) -> bool:
        return self._active

    def activate(self) -> None:
        """Start accepting events (session opened)."""
        self._active = True

    def deactivate(self) -> None:
        """Stop accepting events (session closed)."""
        self._active = False

    def on_message(self, payload: str | bytes | dict[str, Any]) -> None:
        """Decode and apply a raw push payload."""
        if not self._active:
            return

        try:
            event = parse_push_event(payload)
        except MalformedPushEvent as e:
            self.malformed_count += 1
            logger.warning(f"Dropping malformed push event: {e}")
            return

        self.on_event(event.kind, event.record, event.fields)

    def on_event(
        self,
        kind: EventKind,
        record: Bookmark,
        fields: frozenset[str] | None = None,
    ) -> None:
        """Apply a decoded change event.

        Args:
            kind: Insert, update or delete.
            record: The affected record.
            fields: For updates, the fields carried by the event. Fields
                not listed keep their current value. None means all.
        """
        if not self._active:
            logger.debug(f"Ignoring {kind.value} for {record.id}: ingestor inactive")
            return

        try:
            self._apply(kind, record, fields)
        except Exception as e:
            logger.error(f"Failed to apply {kind.value} for {record.id}: {e}", exc_info=True)
            return

        self.applied_count += 1

    def _apply(self, kind: EventKind, record: Bookmark, fields: frozenset[str] | None) -> None:
        if kind is EventKind.DELETE:
            self._store.remove(record.id)
            if isinstance(record.id, DurableId):
                # A poll fetched before the delete must not bring it back
                self._resolver.tombstone(record.id)
            return

        if kind is EventKind.UPDATE:
            if self._resolver.is_tombstoned(record.id):
                return
            current = self._store.get(record.id)
            if current is not None:
                if fields is not None:
                    record = replace(
                        current, **{name: getattr(record, name) for name in fields}
                    )
                self._store.upsert(record)
                return
            self._apply_new(record, fields, partial_ok=False)
            return

        self._apply_new(record, None, partial_ok=True)

    def _apply_new(self, record: Bookmark, fields: frozenset[str] | None, partial_ok: bool) -> None:
        """Resolve a record not yet held under its durable id."""
        action = self._resolver.resolve_duplicate(record, self._store.snapshot())

        if action.kind is ActionKind.PROMOTE:
            transient = self._store.get(action.transient_id)
            if fields is not None:
                record = replace(
                    transient,
                    id=record.id,
                    **{name: getattr(record, name) for name in fields},
                )
            self._store.replace(action.transient_id, record)
            logger.debug(f"Push promoted {action.transient_id} to {record.id}")
        elif action.kind is ActionKind.INSERT:
            if not partial_ok and fields is not None and fields != _FULL_ROW:
                logger.debug(f"Partial update for unknown {record.id}, leaving it to the poller")
                return
            self._store.upsert(record)
