"""Unit tests for the competition lifecycle state machine."""

import pytest

from mixwarz.kernel.errors import InvalidTransition
from mixwarz.kernel.models.competition import CompetitionStatus as S
from mixwarz.orchestration.state_machine import (
    Trigger,
    administrative_close,
    is_terminal,
    is_transient,
    next_state,
    status_rank,
    trigger_for,
    valid_triggers,
)


class TestNextState:
    """Tests for the deterministic transition function."""

    def test_happy_path_reaches_completed(self):
        """Following the scheduler's triggers walks the whole lifecycle."""
        status = S.UPCOMING
        visited = [status]
        while status != S.COMPLETED:
            status = next_state(status, trigger_for(status))
            visited.append(status)
        assert visited == [
            S.UPCOMING,
            S.OPEN_FOR_SUBMISSIONS,
            S.VOTING_ROUND1_SETUP,
            S.VOTING_ROUND1_OPEN,
            S.VOTING_ROUND1_TALLYING,
            S.VOTING_ROUND2_SETUP,
            S.VOTING_ROUND2_OPEN,
            S.VOTING_ROUND2_TALLYING,
            S.COMPLETED,
        ]

    def test_tie_for_first_routes_to_manual_selection(self):
        target = next_state(S.VOTING_ROUND2_TALLYING, Trigger.TALLY_COMPLETE, tie_for_first=True)
        assert target == S.REQUIRES_MANUAL_WINNER_SELECTION

    def test_tie_flag_ignored_elsewhere(self):
        target = next_state(S.VOTING_ROUND1_TALLYING, Trigger.TALLY_COMPLETE, tie_for_first=True)
        assert target == S.VOTING_ROUND2_SETUP

    def test_manual_override_completes(self):
        assert next_state(S.REQUIRES_MANUAL_WINNER_SELECTION, Trigger.MANUAL_OVERRIDE) == S.COMPLETED

    def test_completed_archives_on_deadline(self):
        assert next_state(S.COMPLETED, Trigger.DEADLINE_ELAPSED) == S.ARCHIVED

    @pytest.mark.parametrize(
        "status,trigger",
        [
            (S.UPCOMING, Trigger.TALLY_COMPLETE),
            (S.VOTING_ROUND1_TALLYING, Trigger.DEADLINE_ELAPSED),
            (S.VOTING_ROUND2_OPEN, Trigger.MANUAL_OVERRIDE),
            (S.REQUIRES_MANUAL_WINNER_SELECTION, Trigger.DEADLINE_ELAPSED),
            (S.ARCHIVED, Trigger.DEADLINE_ELAPSED),
            (S.CANCELLED, Trigger.DEADLINE_ELAPSED),
        ],
    )
    def test_pairs_outside_the_graph_raise(self, status, trigger):
        with pytest.raises(InvalidTransition) as exc_info:
            next_state(status, trigger)
        assert exc_info.value.current == status.value
        assert exc_info.value.trigger == trigger.value

    def test_never_skips_a_state(self):
        """Every successor is one lifecycle step later; a clear winner bypasses the manual state."""
        for status in S:
            for trigger in valid_triggers(status):
                target = next_state(status, trigger)
                if (status, target) == (S.VOTING_ROUND2_TALLYING, S.COMPLETED):
                    continue
                assert status_rank(target) == status_rank(status) + 1


class TestAdministrativeClose:
    """Tests for cancellation and disqualification."""

    def test_cancel_open_competition(self):
        assert administrative_close(S.VOTING_ROUND1_OPEN, S.CANCELLED) == S.CANCELLED

    def test_disqualify_upcoming(self):
        assert administrative_close(S.UPCOMING, S.DISQUALIFIED) == S.DISQUALIFIED

    def test_completed_cannot_be_cancelled(self):
        with pytest.raises(InvalidTransition):
            administrative_close(S.COMPLETED, S.CANCELLED)

    def test_terminal_cannot_be_cancelled_again(self):
        with pytest.raises(InvalidTransition):
            administrative_close(S.CANCELLED, S.CANCELLED)

    def test_target_must_be_administrative(self):
        with pytest.raises(InvalidTransition):
            administrative_close(S.UPCOMING, S.COMPLETED)


class TestStatusHelpers:
    """Tests for trigger lookup and status classification."""

    def test_tallying_states_fire_tally_complete(self):
        assert trigger_for(S.VOTING_ROUND1_TALLYING) == Trigger.TALLY_COMPLETE
        assert trigger_for(S.VOTING_ROUND2_TALLYING) == Trigger.TALLY_COMPLETE

    def test_waiting_states_fire_deadline(self):
        assert trigger_for(S.OPEN_FOR_SUBMISSIONS) == Trigger.DEADLINE_ELAPSED
        assert trigger_for(S.VOTING_ROUND1_SETUP) == Trigger.DEADLINE_ELAPSED

    def test_manual_and_terminal_states_fire_nothing(self):
        assert trigger_for(S.REQUIRES_MANUAL_WINNER_SELECTION) is None
        assert trigger_for(S.ARCHIVED) is None
        assert trigger_for(S.CANCELLED) is None

    def test_manual_state_only_accepts_override(self):
        assert valid_triggers(S.REQUIRES_MANUAL_WINNER_SELECTION) == [Trigger.MANUAL_OVERRIDE]

    def test_transient_states(self):
        assert is_transient(S.VOTING_ROUND1_SETUP)
        assert is_transient(S.VOTING_ROUND2_TALLYING)
        assert not is_transient(S.VOTING_ROUND1_OPEN)
        assert not is_transient(S.REQUIRES_MANUAL_WINNER_SELECTION)

    def test_terminal_states(self):
        assert is_terminal(S.ARCHIVED)
        assert is_terminal(S.DISQUALIFIED)
        assert not is_terminal(S.COMPLETED)

    def test_rank_orders_lifecycle(self):
        assert status_rank(S.UPCOMING) < status_rank(S.VOTING_ROUND2_SETUP) < status_rank(S.COMPLETED)
        assert status_rank(S.CANCELLED) > status_rank(S.ARCHIVED)
