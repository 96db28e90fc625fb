"""Tests for the reconciliation poller."""

import asyncio

import pytest

from conftest import make_bookmark
from marksync.records import Bookmark, DurableId
from marksync.store import RecordStore
from marksync.sync import EventKind, IdentityResolver, PushIngestor, ReconciliationPoller


@pytest.fixture
def store(clock):
    return RecordStore(clock=clock)


@pytest.fixture
def resolver():
    return IdentityResolver()


@pytest.fixture
def poller(store, resolver, remote):
    return ReconciliationPoller(
        store=store,
        resolver=resolver,
        remote=remote,
        owner_id="user-1",
        interval_seconds=2.0,
    )


@pytest.fixture
def notifications(store):
    seen = []
    store.subscribe(seen.append)
    return seen


class TestDiffAndApply:
    """Tests for diffing a full fetch into the store."""

    def test_initial_fetch_preserves_remote_order(self, poller, store):
        remote_rows = [make_bookmark("3"), make_bookmark("2"), make_bookmark("1")]

        result = poller.diff_and_apply(remote_rows)

        assert [r.id for r in store.snapshot()] == [DurableId("3"), DurableId("2"), DurableId("1")]
        assert result.inserted == 3

    def test_noop_poll_produces_no_notification(self, poller, store, notifications):
        remote_rows = [make_bookmark("2"), make_bookmark("1")]
        poller.diff_and_apply(remote_rows)

        result = poller.diff_and_apply(list(remote_rows))

        assert len(notifications) == 1
        assert not result.changed

    def test_changed_fields_updated_in_place(self, poller, store):
        poller.diff_and_apply([make_bookmark("2"), make_bookmark("1", title="old")])

        result = poller.diff_and_apply([make_bookmark("2"), make_bookmark("1", title="new")])

        assert store.get(DurableId("1")).title == "new"
        assert [r.id for r in store.snapshot()] == [DurableId("2"), DurableId("1")]
        assert result.updated == 1

    def test_grace_window_keeps_young_record(self, poller, store, clock):
        """A record inserted recently survives a poll that lacks it."""
        store.upsert(make_bookmark("1"))
        clock.advance(1.5)

        result = poller.diff_and_apply([])

        assert DurableId("1") in store
        assert result.kept_in_grace == 1
        assert result.removed == 0

    def test_old_record_missing_remotely_is_removed(self, poller, store, clock):
        store.upsert(make_bookmark("1"))
        clock.advance(2.5)

        result = poller.diff_and_apply([])

        assert store.snapshot() == ()
        assert result.removed == 1

    def test_transient_records_exempt(self, poller, store, clock, resolver):
        transient = Bookmark(resolver.reserve_transient(), "A", "u", "user-1")
        store.upsert(transient)
        clock.advance(60)

        poller.diff_and_apply([])

        assert store.snapshot() == (transient,)

    def test_promotes_pending_create(self, poller, store, resolver):
        transient_id = resolver.reserve_transient()
        correlation = resolver.next_correlation("user-1")
        resolver.track(correlation, transient_id)
        store.upsert(make_bookmark("1"))
        store.upsert(Bookmark(transient_id, "A", "u", "user-1", correlation))

        result = poller.diff_and_apply([
            make_bookmark("7", title="A", url="u", correlation=correlation),
            make_bookmark("1"),
        ])

        assert [r.id for r in store.snapshot()] == [DurableId("7"), DurableId("1")]
        assert result.promoted == 1
        assert result.inserted == 0

    def test_tombstoned_record_not_reinserted(self, poller, store, resolver):
        resolver.tombstone(DurableId("1"))

        poller.diff_and_apply([make_bookmark("1")])

        assert store.snapshot() == ()

    def test_push_then_poll_no_duplicate(self, poller, store, resolver):
        """The same record from push and poll is held once."""
        ingestor = PushIngestor(store, resolver)
        ingestor.activate()

        ingestor.on_event(EventKind.INSERT, make_bookmark("1"))
        poller.diff_and_apply([make_bookmark("1")])
        ingestor.on_event(EventKind.INSERT, make_bookmark("1"))

        assert [r.id for r in store.snapshot()] == [DurableId("1")]

    def test_order_across_sources(self, poller, store, resolver):
        """R1 from a poll then R2 from a push yields [R2, R1]."""
        ingestor = PushIngestor(store, resolver)
        ingestor.activate()

        poller.diff_and_apply([make_bookmark("1")])
        ingestor.on_event(EventKind.INSERT, make_bookmark("2"))

        assert [r.id for r in store.snapshot()] == [DurableId("2"), DurableId("1")]


class TestTick:
    """Tests for fetching and applying."""

    @pytest.mark.asyncio
    async def test_tick_fetches_and_applies(self, poller, store, remote):
        remote.add_row("1")
        remote.add_row("2")

        result = await poller.tick()

        assert result.ok
        assert [r.id for r in store.snapshot()] == [DurableId("2"), DurableId("1")]
        assert poller.last_poll is not None

    @pytest.mark.asyncio
    async def test_fetch_failure_skips_tick(self, poller, store, remote):
        store.upsert(make_bookmark("1"))
        remote.fail_fetch = True

        first = await poller.tick()
        second = await poller.tick()

        assert not first.ok
        assert poller.consecutive_failures == 2
        assert DurableId("1") in store

        remote.fail_fetch = False
        remote.add_row("1")
        result = await poller.tick()

        assert result.ok
        assert poller.consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_only_owner_rows_fetched(self, poller, store, remote):
        remote.add_row("1", owner_id="user-1")
        remote.add_row("2", owner_id="someone-else")

        await poller.tick()

        assert [r.id for r in store.snapshot()] == [DurableId("1")]


class TestLoop:
    """Tests for the background polling task."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, store, resolver, remote):
        poller = ReconciliationPoller(store, resolver, remote, "user-1", interval_seconds=0.01)
        remote.add_row("1")

        await poller.start()
        await asyncio.sleep(0.1)
        assert poller.is_running
        assert DurableId("1") in store

        await poller.stop()
        assert not poller.is_running

        remote.add_row("2")
        await asyncio.sleep(0.05)
        assert DurableId("2") not in store

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, store, resolver, remote):
        poller = ReconciliationPoller(store, resolver, remote, "user-1", interval_seconds=10)

        await poller.start()
        task = poller._task
        await poller.start()

        assert poller._task is task
        await poller.stop()

    def test_grace_defaults_to_interval(self, store, resolver, remote):
        poller = ReconciliationPoller(store, resolver, remote, "user-1", interval_seconds=5)
        assert poller.grace == 5

        custom = ReconciliationPoller(store, resolver, remote, "user-1", interval_seconds=5, grace_seconds=1)
        assert custom.grace == 1

    def test_get_status(self, poller):
        status = poller.get_status()

        assert status["owner_id"] == "user-1"
        assert status["running"] is False
        assert status["consecutive_failures"] == 0
