from reservation_sync.sync.feed_listener import ChangeFeedListener, ListenerHandle
from reservation_sync.sync.mutation_state import (
    MutationState,
    MutationStateMachine,
    MutationTrigger,
)
from reservation_sync.sync.status_mutator import MutationOutcome, StatusMutator
from reservation_sync.sync.store import ReservationStore
from reservation_sync.sync.views import ALL_STATUSES, SortOrder, ViewQuery, derive_view

__all__ = [
    "ReservationStore",
    "ChangeFeedListener",
    "ListenerHandle",
    "StatusMutator",
    "MutationOutcome",
    "MutationStateMachine",
    "MutationState",
    "MutationTrigger",
    "SortOrder",
    "ViewQuery",
    "ALL_STATUSES",
    "derive_view",
]
