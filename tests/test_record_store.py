"""Tests for the in-memory record store."""

import pytest

from conftest import make_bookmark
from marksync.records import Bookmark, DurableId, TransientId
from marksync.store import RecordStore


@pytest.fixture
def store(clock):
    return RecordStore(clock=clock)


@pytest.fixture
def notifications(store):
    """Collect every snapshot published by the store."""
    seen = []
    store.subscribe(seen.append)
    return seen


class TestUpsert:
    """Tests for inserting and updating records."""

    def test_upsert_is_idempotent(self, store, notifications):
        """Applying the same record twice yields the same snapshot."""
        record = make_bookmark("1")

        store.upsert(record)
        once = store.snapshot()
        store.upsert(record)

        assert store.snapshot() == once == (record,)
        assert len(notifications) == 1

    def test_new_records_go_to_head(self, store):
        """Newest first, regardless of insertion source."""
        r1 = make_bookmark("1")
        r2 = make_bookmark("2")

        store.upsert(r1)
        store.upsert(r2)

        assert store.snapshot() == (r2, r1)

    def test_existing_record_updated_in_place(self, store, notifications):
        """An update keeps the record's position."""
        store.upsert(make_bookmark("1", title="old"))
        store.upsert(make_bookmark("2"))

        store.upsert(make_bookmark("1", title="new"))

        assert [r.id for r in store.snapshot()] == [DurableId("2"), DurableId("1")]
        assert store.get(DurableId("1")).title == "new"
        assert len(notifications) == 3

    def test_contains_and_len(self, store):
        store.upsert(make_bookmark("1"))

        assert DurableId("1") in store
        assert TransientId("1") not in store
        assert len(store) == 1


class TestRemove:
    """Tests for removal."""

    def test_remove(self, store):
        store.upsert(make_bookmark("1"))
        store.upsert(make_bookmark("2"))

        store.remove(DurableId("1"))

        assert [r.id for r in store.snapshot()] == [DurableId("2")]
        assert store.age(DurableId("1")) is None

    def test_remove_unknown_is_noop(self, store, notifications):
        store.upsert(make_bookmark("1"))

        store.remove(DurableId("999"))

        assert len(store) == 1
        assert len(notifications) == 1


class TestReplace:
    """Tests for promotion in place."""

    def test_replace_keeps_position(self, store):
        """A promoted record stays where the transient one was."""
        transient = Bookmark(TransientId("tmp-1-aa"), "A", "u", "user-1")
        store.upsert(transient)
        store.upsert(make_bookmark("2"))

        store.replace(transient.id, transient.with_id(DurableId("1")))

        assert [r.id for r in store.snapshot()] == [DurableId("2"), DurableId("1")]
        assert transient.id not in store

    def test_replace_missing_is_noop(self, store, notifications):
        store.replace(TransientId("tmp-9-zz"), make_bookmark("1"))

        assert len(store) == 0
        assert notifications == []

    def test_replace_onto_existing_durable_does_not_duplicate(self, store):
        """If the durable record already arrived, the transient one is dropped."""
        transient = Bookmark(TransientId("tmp-1-aa"), "A", "u", "user-1")
        store.upsert(transient)
        store.upsert(make_bookmark("1", title="A", url="u"))

        store.replace(transient.id, make_bookmark("1", title="A", url="u"))

        assert [r.id for r in store.snapshot()] == [DurableId("1")]

    def test_replace_resets_age(self, store, clock):
        transient = Bookmark(TransientId("tmp-1-aa"), "A", "u", "user-1")
        store.upsert(transient)
        clock.advance(5)

        store.replace(transient.id, transient.with_id(DurableId("1")))

        assert store.age(DurableId("1")) == 0


class TestNotifications:
    """Tests for change notification."""

    def test_batch_notifies_once(self, store, notifications):
        with store.batch():
            store.upsert(make_bookmark("1"))
            store.upsert(make_bookmark("2"))
            store.remove(DurableId("1"))

        assert len(notifications) == 1
        assert notifications[0] == (make_bookmark("2"),)

    def test_noop_batch_does_not_notify(self, store, notifications):
        store.upsert(make_bookmark("1"))

        with store.batch():
            store.remove(DurableId("1"))
            store.upsert(make_bookmark("1"))

        assert len(notifications) == 1

    def test_unsubscribe(self, store):
        seen = []
        unsubscribe = store.subscribe(seen.append)
        unsubscribe()

        store.upsert(make_bookmark("1"))

        assert seen == []

    def test_observer_error_does_not_propagate(self, store):
        def broken(snapshot):
            raise RuntimeError("boom")

        store.subscribe(broken)
        store.upsert(make_bookmark("1"))

        assert len(store) == 1

    def test_clear(self, store, notifications):
        store.upsert(make_bookmark("1"))

        store.clear()
        store.clear()

        assert store.snapshot() == ()
        assert len(notifications) == 2


class TestAge:
    """Tests for record ages."""

    def test_age_tracks_clock(self, store, clock):
        store.upsert(make_bookmark("1"))
        clock.advance(1.5)

        assert store.age(DurableId("1")) == pytest.approx(1.5)

    def test_update_does_not_reset_age(self, store, clock):
        store.upsert(make_bookmark("1", title="old"))
        clock.advance(3)

        store.upsert(make_bookmark("1", title="new"))

        assert store.age(DurableId("1")) == pytest.approx(3)
