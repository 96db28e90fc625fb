"""Tests for identity resolution."""

import pytest

from conftest import make_bookmark
from marksync.records import Bookmark, DurableId, TransientId
from marksync.sync.identity import Action, ActionKind, IdentityResolver


@pytest.fixture
def resolver():
    return IdentityResolver()


def pending_create(resolver, owner_id="user-1"):
    """Register a pending create and return (transient record, correlation)."""
    transient_id = resolver.reserve_transient()
    correlation = resolver.next_correlation(owner_id)
    resolver.track(correlation, transient_id)
    return Bookmark(transient_id, "A", "u", owner_id, correlation), correlation


class TestReservation:
    """Tests for minting identifiers."""

    def test_transient_ids_are_distinct(self, resolver):
        ids = {resolver.reserve_transient() for _ in range(100)}
        assert len(ids) == 100
        assert all(isinstance(i, TransientId) for i in ids)

    def test_correlation_follows_submission_order(self, resolver):
        first = resolver.next_correlation("user-1")
        second = resolver.next_correlation("user-1")

        assert second.sequence == first.sequence + 1
        assert first.origin == resolver.origin

    def test_resolvers_have_distinct_origins(self):
        assert IdentityResolver().origin != IdentityResolver().origin


class TestResolveDuplicate:
    """Tests for classifying incoming records."""

    def test_genuinely_new_record(self, resolver):
        action = resolver.resolve_duplicate(make_bookmark("1"), [])
        assert action == Action.insert()

    def test_known_durable_id_is_ignored(self, resolver):
        existing = [make_bookmark("1")]
        action = resolver.resolve_duplicate(make_bookmark("1", title="changed"), existing)
        assert action.kind is ActionKind.IGNORE

    def test_matching_correlation_promotes(self, resolver):
        transient, correlation = pending_create(resolver)

        incoming = make_bookmark("7", title="A", url="u", correlation=correlation)
        action = resolver.resolve_duplicate(incoming, [transient])

        assert action == Action.promote(transient.id)

    def test_content_equality_is_not_identity(self, resolver):
        """Same title/url without the correlation key is a distinct record."""
        transient, _ = pending_create(resolver)

        incoming = make_bookmark("7", title="A", url="u")
        action = resolver.resolve_duplicate(incoming, [transient])

        assert action.kind is ActionKind.INSERT

    def test_released_correlation_no_longer_promotes(self, resolver):
        transient, correlation = pending_create(resolver)
        resolver.release(correlation)

        incoming = make_bookmark("7", correlation=correlation)
        action = resolver.resolve_duplicate(incoming, [transient])

        assert action.kind is ActionKind.INSERT

    def test_repeated_delivery_only_first_applies(self, resolver):
        """Two pushes and a poll for the same id: only the first mutates."""
        transient, correlation = pending_create(resolver)
        incoming = make_bookmark("7", correlation=correlation)

        first = resolver.resolve_duplicate(incoming, [transient])
        after_promotion = [incoming]
        second = resolver.resolve_duplicate(incoming, after_promotion)
        third = resolver.resolve_duplicate(incoming, after_promotion)

        assert first.kind is ActionKind.PROMOTE
        assert second.kind is ActionKind.IGNORE
        assert third.kind is ActionKind.IGNORE

    def test_tombstoned_id_is_ignored(self, resolver):
        resolver.tombstone(DurableId("1"))

        action = resolver.resolve_duplicate(make_bookmark("1"), [])

        assert action.kind is ActionKind.IGNORE
        resolver.revive(DurableId("1"))
        assert resolver.resolve_duplicate(make_bookmark("1"), []).kind is ActionKind.INSERT

    def test_cancelled_create_is_ignored(self, resolver):
        transient, correlation = pending_create(resolver)
        resolver.cancel(correlation)

        incoming = make_bookmark("7", correlation=correlation)
        action = resolver.resolve_duplicate(incoming, [])

        assert action.kind is ActionKind.IGNORE

    def test_conflict_fails_open(self, resolver):
        """A pending create whose record vanished is inserted, not dropped."""
        _, correlation = pending_create(resolver)

        incoming = make_bookmark("7", correlation=correlation)
        action = resolver.resolve_duplicate(incoming, [])

        assert action.kind is ActionKind.INSERT
        assert resolver.conflict_count == 1

    def test_transient_id_from_remote_fails_open(self, resolver):
        incoming = Bookmark(TransientId("tmp-x"), "A", "u", "user-1")

        action = resolver.resolve_duplicate(incoming, [])

        assert action.kind is ActionKind.INSERT
        assert resolver.conflict_count == 1

    def test_reset_clears_registries(self, resolver):
        transient, correlation = pending_create(resolver)
        resolver.tombstone(DurableId("1"))

        resolver.reset()

        assert resolver.pending_transient(correlation) is None
        assert not resolver.is_tombstoned(DurableId("1"))
