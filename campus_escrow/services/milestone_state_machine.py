# campus_escrow/services/milestone_state_machine.py
from __future__ import annotations

from enum import Enum
from typing import Dict, Tuple

from campus_escrow.core.errors import InvalidStateError
from campus_escrow.models.enums import MilestoneStatus


class MilestoneEvent(str, Enum):
    start = "start"
    submit = "submit"
    reject = "reject"
    approve = "approve"
    partial_release = "partial_release"
    release = "release"
    settle = "settle"  # admin payout during dispute resolution
    cancel = "cancel"


S = MilestoneStatus
E = MilestoneEvent

# (current, event) -> next
MILESTONE_TRANSITIONS: Dict[Tuple[MilestoneStatus, MilestoneEvent], MilestoneStatus] = {
    (S.pending, E.start): S.in_progress,
    (S.in_progress, E.submit): S.submitted,
    (S.submitted, E.reject): S.in_progress,
    (S.submitted, E.approve): S.approved,
    (S.approved, E.partial_release): S.approved,
    (S.approved, E.release): S.released,

    (S.pending, E.settle): S.released,
    (S.in_progress, E.settle): S.released,
    (S.submitted, E.settle): S.released,
    (S.approved, E.settle): S.released,

    (S.pending, E.cancel): S.cancelled,
    (S.in_progress, E.cancel): S.cancelled,
    (S.submitted, E.cancel): S.cancelled,
    (S.approved, E.cancel): S.cancelled,
}

TERMINAL_STATUSES = frozenset({S.released, S.cancelled})


class MilestoneStateMachine:
    """
    Pure transition table for a milestone. No store access; services ask it
    for the next status and persist the result themselves.
    """

    @staticmethod
    def next_status(current: str | MilestoneStatus, event: str | MilestoneEvent) -> MilestoneStatus:
        try:
            cur = MilestoneStatus(current)
            ev = MilestoneEvent(event)
        except ValueError:
            raise InvalidStateError(f"Unknown milestone status or event: {current!r} / {event!r}.")

        nxt = MILESTONE_TRANSITIONS.get((cur, ev))
        if nxt is None:
            raise InvalidStateError(
                f"Milestone cannot {ev.value} while {cur.value}.",
                details={"status": cur.value, "event": ev.value},
            )
        return nxt

    @staticmethod
    def can(current: str | MilestoneStatus, event: str | MilestoneEvent) -> bool:
        try:
            return (MilestoneStatus(current), MilestoneEvent(event)) in MILESTONE_TRANSITIONS
        except ValueError:
            return False

    @staticmethod
    def is_terminal(current: str | MilestoneStatus) -> bool:
        return MilestoneStatus(current) in TERMINAL_STATUSES
