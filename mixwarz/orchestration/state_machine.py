"""
Competition lifecycle state machine.

Pure functions only: given a status and a trigger, return the next status
or raise InvalidTransition. Persistence, side effects and concurrency are
handled by TransitionService.
"""

from enum import Enum
from typing import Dict, List, Optional, Tuple

from mixwarz.kernel.errors import InvalidTransition
from mixwarz.kernel.models.competition import CompetitionStatus


class Trigger(str, Enum):
    """What caused a transition attempt."""

    DEADLINE_ELAPSED = "deadline_elapsed"
    TALLY_COMPLETE = "tally_complete"
    MANUAL_OVERRIDE = "manual_override"


S = CompetitionStatus

# Lifecycle order; administrative terminals are not part of it.
_ORDER: Tuple[CompetitionStatus, ...] = (
    S.UPCOMING,
    S.OPEN_FOR_SUBMISSIONS,
    S.VOTING_ROUND1_SETUP,
    S.VOTING_ROUND1_OPEN,
    S.VOTING_ROUND1_TALLYING,
    S.VOTING_ROUND2_SETUP,
    S.VOTING_ROUND2_OPEN,
    S.VOTING_ROUND2_TALLYING,
    S.REQUIRES_MANUAL_WINNER_SELECTION,
    S.COMPLETED,
    S.ARCHIVED,
)

# (from_status, trigger) -> to_status
_TRANSITIONS: Dict[Tuple[CompetitionStatus, Trigger], CompetitionStatus] = {
    (S.UPCOMING, Trigger.DEADLINE_ELAPSED): S.OPEN_FOR_SUBMISSIONS,
    (S.OPEN_FOR_SUBMISSIONS, Trigger.DEADLINE_ELAPSED): S.VOTING_ROUND1_SETUP,
    (S.VOTING_ROUND1_SETUP, Trigger.DEADLINE_ELAPSED): S.VOTING_ROUND1_OPEN,
    (S.VOTING_ROUND1_OPEN, Trigger.DEADLINE_ELAPSED): S.VOTING_ROUND1_TALLYING,
    (S.VOTING_ROUND1_TALLYING, Trigger.TALLY_COMPLETE): S.VOTING_ROUND2_SETUP,
    (S.VOTING_ROUND2_SETUP, Trigger.DEADLINE_ELAPSED): S.VOTING_ROUND2_OPEN,
    (S.VOTING_ROUND2_OPEN, Trigger.DEADLINE_ELAPSED): S.VOTING_ROUND2_TALLYING,
    (S.VOTING_ROUND2_TALLYING, Trigger.TALLY_COMPLETE): S.COMPLETED,
    (S.REQUIRES_MANUAL_WINNER_SELECTION, Trigger.MANUAL_OVERRIDE): S.COMPLETED,
    (S.COMPLETED, Trigger.DEADLINE_ELAPSED): S.ARCHIVED,
}

# Setup and tallying states do work and move on without waiting for a deadline.
_TRANSIENT = frozenset({
    S.VOTING_ROUND1_SETUP,
    S.VOTING_ROUND1_TALLYING,
    S.VOTING_ROUND2_SETUP,
    S.VOTING_ROUND2_TALLYING,
})

_TERMINAL = frozenset({S.ARCHIVED, S.CANCELLED, S.DISQUALIFIED})

ADMINISTRATIVE_TERMINALS = frozenset({S.CANCELLED, S.DISQUALIFIED})

# Statuses that wait for a timestamp, and which competition field holds it
DEADLINE_FIELDS: Dict[CompetitionStatus, str] = {
    S.UPCOMING: "start_date",
    S.OPEN_FOR_SUBMISSIONS: "submission_deadline",
    S.VOTING_ROUND1_OPEN: "round1_voting_end",
    S.VOTING_ROUND2_OPEN: "round2_voting_end",
}


def next_state(
    current: CompetitionStatus,
    trigger: Trigger,
    *,
    tie_for_first: bool = False,
) -> CompetitionStatus:
    """
    Deterministic successor of `current` under `trigger`.

    `tie_for_first` only matters when leaving round-2 tallying: a shared
    first place routes to manual winner selection instead of completion.
    """
    target = _TRANSITIONS.get((current, trigger))
    if target is None:
        raise InvalidTransition(_value(current), _value(trigger))
    if current == S.VOTING_ROUND2_TALLYING and tie_for_first:
        return S.REQUIRES_MANUAL_WINNER_SELECTION
    return target


def administrative_close(current: CompetitionStatus, target: CompetitionStatus) -> CompetitionStatus:
    """Cancel or disqualify a competition that has not completed yet."""
    if target not in ADMINISTRATIVE_TERMINALS:
        raise InvalidTransition(_value(current), f"close_to_{_value(target)}")
    if current in _TERMINAL or current == S.COMPLETED:
        raise InvalidTransition(_value(current), f"close_to_{_value(target)}")
    return target


def valid_triggers(current: CompetitionStatus) -> List[Trigger]:
    """Triggers accepted from the given status."""
    return [trigger for (state, trigger) in _TRANSITIONS if state == current]


def trigger_for(current: CompetitionStatus) -> Optional[Trigger]:
    """The trigger the scheduler fires for a status, or None if it never fires one."""
    for trigger in (Trigger.DEADLINE_ELAPSED, Trigger.TALLY_COMPLETE):
        if (current, trigger) in _TRANSITIONS:
            return trigger
    return None


def is_transient(current: CompetitionStatus) -> bool:
    return current in _TRANSIENT


def is_terminal(current: CompetitionStatus) -> bool:
    return current in _TERMINAL


def status_rank(current: CompetitionStatus) -> int:
    """Position in the lifecycle; administrative terminals rank after everything."""
    if current in ADMINISTRATIVE_TERMINALS:
        return len(_ORDER)
    return _ORDER.index(current)


def _value(item) -> str:
    return item.value if hasattr(item, "value") else str(item)
