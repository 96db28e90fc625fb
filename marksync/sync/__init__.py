"""Reconciliation of optimistic mutations, push events and polls.

All three sources feed the same record store; the identity resolver
makes their effects idempotent so the arrival order does not matter.
"""

from .identity import Action, ActionKind, IdentityResolver
from .mutations import MutationKind, MutationQueue, MutationState, PendingMutation
from .poller import PollResult, ReconciliationPoller
from .push import EventKind, PushEvent, PushIngestor, parse_push_event

__all__ = [
    "Action",
    "ActionKind",
    "IdentityResolver",
    "MutationKind",
    "MutationQueue",
    "MutationState",
    "PendingMutation",
    "PollResult",
    "ReconciliationPoller",
    "EventKind",
    "PushEvent",
    "PushIngestor",
    "parse_push_event",
]
