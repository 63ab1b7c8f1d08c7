"""
Per-reservation state machine for optimistic mutations.

Every reservation is either idle or somewhere in one write sequence:
in_flight (optimistic value applied, remote write attempts running),
verifying (write acknowledged, re-reading the remote value), or
reverting (all attempts failed, restoring a known-good record). The
transition table is explicit so the retry/verify flow of the status
mutator can be checked without any I/O.

Usage:
    tracker = MutationStateMachine()
    tracker.transition("42", MutationTrigger.WRITE_STARTED)
    assert tracker.state_of("42") == MutationState.IN_FLIGHT
"""

import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 1000


class MutationState(str, Enum):
    """Lifecycle of one reservation's write sequence."""
    IDLE = "idle"
    IN_FLIGHT = "in_flight"
    VERIFYING = "verifying"
    REVERTING = "reverting"


class MutationTrigger(str, Enum):
    """Events that move a reservation between mutation states."""
    WRITE_STARTED = "write_started"
    WRITE_ACKNOWLEDGED = "write_acknowledged"
    WRITE_SETTLED = "write_settled"
    RETRIES_EXHAUSTED = "retries_exhausted"
    VERIFY_FINISHED = "verify_finished"
    REVERT_FINISHED = "revert_finished"
    ABANDONED = "abandoned"


@dataclass(frozen=True)
class Transition:
    """A single valid state transition."""
    from_state: MutationState
    to_state: MutationState
    trigger: MutationTrigger


@dataclass
class StateEntry:
    """Recorded history entry for a state visit."""
    reservation_id: str
    state: MutationState
    entered_at: datetime
    trigger: Optional[MutationTrigger] = None


class InvalidTransitionError(Exception):
    """Raised when a transition is not valid from the current state."""


TRANSITIONS: list[Transition] = [
    # --- Start ---
    Transition(MutationState.IDLE, MutationState.IN_FLIGHT,
               MutationTrigger.WRITE_STARTED),

    # --- Write outcome ---
    Transition(MutationState.IN_FLIGHT, MutationState.VERIFYING,
               MutationTrigger.WRITE_ACKNOWLEDGED),
    Transition(MutationState.IN_FLIGHT, MutationState.IDLE,
               MutationTrigger.WRITE_SETTLED),
    Transition(MutationState.IN_FLIGHT, MutationState.REVERTING,
               MutationTrigger.RETRIES_EXHAUSTED),

    # --- Verification / revert ---
    Transition(MutationState.VERIFYING, MutationState.IDLE,
               MutationTrigger.VERIFY_FINISHED),
    Transition(MutationState.REVERTING, MutationState.IDLE,
               MutationTrigger.REVERT_FINISHED),

    # --- Teardown ---
    Transition(MutationState.IN_FLIGHT, MutationState.IDLE,
               MutationTrigger.ABANDONED),
    Transition(MutationState.VERIFYING, MutationState.IDLE,
               MutationTrigger.ABANDONED),
    Transition(MutationState.REVERTING, MutationState.IDLE,
               MutationTrigger.ABANDONED),
]


def next_state(state: MutationState, trigger: MutationTrigger) -> MutationState:
    """
    Look up the state reached from ``state`` on ``trigger``.

    Raises:
        InvalidTransitionError: If no transition is defined.
    """
    for t in TRANSITIONS:
        if t.from_state == state and t.trigger == trigger:
            return t.to_state
    valid = [t.trigger.value for t in TRANSITIONS if t.from_state == state]
    raise InvalidTransitionError(
        f"No valid transition from '{state.value}' "
        f"with trigger '{trigger.value}'. Valid triggers: {valid}"
    )


class MutationStateMachine:
    """
    Tracks the mutation state of every reservation touched this session.

    Reservations not yet seen are idle. Returning to idle drops the
    entry, so the tracker only holds ids with live write sequences.
    The transition history keeps the most recent ``history_limit`` entries.
    """

    TRANSITIONS = TRANSITIONS

    def __init__(self, history_limit: int = HISTORY_LIMIT) -> None:
        self._states: dict[str, MutationState] = {}
        self._history: deque[StateEntry] = deque(maxlen=history_limit)

    def state_of(self, reservation_id: str) -> MutationState:
        return self._states.get(reservation_id, MutationState.IDLE)

    def is_busy(self, reservation_id: str) -> bool:
        return self.state_of(reservation_id) != MutationState.IDLE

    def busy_ids(self) -> list[str]:
        return list(self._states)

    def transition(self, reservation_id: str, trigger: MutationTrigger) -> MutationState:
        """
        Execute a state transition for one reservation.

        Returns:
            The new mutation state.

        Raises:
            InvalidTransitionError: If no valid transition exists.
        """
        old_state = self.state_of(reservation_id)
        new_state = next_state(old_state, trigger)
        if new_state == MutationState.IDLE:
            self._states.pop(reservation_id, None)
        else:
            self._states[reservation_id] = new_state

        self._history.append(StateEntry(
            reservation_id=reservation_id,
            state=new_state,
            entered_at=datetime.now(timezone.utc),
            trigger=trigger,
        ))
        logger.debug(
            "Mutation state %s: %s -> %s (trigger: %s)",
            reservation_id, old_state.value, new_state.value, trigger.value,
        )
        return new_state

    def get_history(self, reservation_id: Optional[str] = None) -> list[StateEntry]:
        """Return recorded transitions, optionally for a single reservation."""
        if reservation_id is None:
            return list(self._history)
        return [entry for entry in self._history if entry.reservation_id == reservation_id]

    def get_state_trace(self, reservation_id: str) -> list[str]:
        """Return ordered list of state names visited by one reservation."""
        return [entry.state.value for entry in self.get_history(reservation_id)]
