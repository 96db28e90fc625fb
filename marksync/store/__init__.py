"""Reconciled in-memory view of the bookmark list."""

from .record_store import RecordStore, Snapshot

__all__ = ["RecordStore", "Snapshot"]
