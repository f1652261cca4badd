"""Unit tests for score aggregation, finalist selection and final standings."""

import uuid
from datetime import datetime, timedelta, timezone

import pytest

from mixwarz.engines.tally import (
    NON_VOTER_FEEDBACK,
    Round1Tally,
    Round2Tally,
    apply_manual_selection,
    competition_rank,
    mean_score,
    top_with_ties,
)
from mixwarz.kernel.errors import InsufficientParticipants, WinnerSelectionRejected
from mixwarz.kernel.models.competition import SubmissionStatus
from mixwarz.schemas.competition import SubmissionRecord
from mixwarz.schemas.voting import VoteRecord, VotingAssignmentRecord

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
COMPETITION_ID = uuid.uuid4()


def _submission(index, **overrides):
    values = dict(
        competition_id=COMPETITION_ID,
        user_id=uuid.uuid4(),
        mix_title=f"Mix {index}",
        audio_file_path=f"mixes/{index}.wav",
        submitted_at=NOW + timedelta(minutes=index),
        status=SubmissionStatus.UNDER_REVIEW,
    )
    values.update(overrides)
    return SubmissionRecord(**values)


def _vote(submission, score, voting_round=1, voter_id=None):
    return VoteRecord(
        competition_id=COMPETITION_ID,
        submission_id=submission.id,
        voter_id=voter_id or uuid.uuid4(),
        voting_round=voting_round,
        score=score,
        cast_at=NOW,
    )


def _assignment(voter_id, targets, has_voted=True):
    return VotingAssignmentRecord(
        competition_id=COMPETITION_ID,
        voter_id=voter_id,
        voter_group_number=1,
        submission_ids=[t.id for t in targets],
        has_voted=has_voted,
        created_at=NOW,
    )


def _finalist(index, round1_score=80.0, **overrides):
    return _submission(index, advanced_to_round2=True, round1_score=round1_score, **overrides)


class TestRanking:
    """Tests for the shared ranking primitives."""

    def test_mean_of_three_scores(self):
        assert mean_score([70, 80, 90]) == 80.0

    def test_mean_of_nothing(self):
        assert mean_score([]) is None

    def test_competition_ranking_skips_after_ties(self):
        ranked = competition_rank([95, 90, 90, 80], key=lambda v: v)
        assert [rank for rank, _ in ranked] == [1, 2, 2, 4]

    def test_ranking_sorts_highest_first(self):
        ranked = competition_rank([80, 95, 90], key=lambda v: v)
        assert [value for _, value in ranked] == [95, 90, 80]

    def test_top_with_ties_extends_cutoff(self):
        ranked = competition_rank([95, 90, 90, 80], key=lambda v: v)
        assert top_with_ties(ranked, 2) == [95, 90, 90]


class TestRound1Tally:
    """Tests for round-1 scoring and finalist selection."""

    def test_top_three_advance(self):
        subs = [_submission(i) for i in range(5)]
        scores = [60, 92, 75, 88, 70]
        votes = [_vote(s, score) for s, score in zip(subs, scores)]

        result = Round1Tally(finalist_count=3).compute(COMPETITION_ID, subs, [], votes)

        assert {s.id for s in result.finalists} == {subs[1].id, subs[3].id, subs[2].id}
        by_id = {s.id: s for s in result.submissions}
        assert by_id[subs[1].id].advanced_to_round2 is True
        assert by_id[subs[0].id].advanced_to_round2 is False
        assert by_id[subs[0].id].status == SubmissionStatus.JUDGED
        assert by_id[subs[1].id].status == SubmissionStatus.UNDER_REVIEW

    def test_score_is_mean_of_votes(self):
        subs = [_submission(i) for i in range(3)]
        votes = [_vote(subs[0], 70), _vote(subs[0], 80), _vote(subs[0], 90), _vote(subs[1], 50)]
        result = Round1Tally(finalist_count=1).compute(COMPETITION_ID, subs, [], votes)
        by_id = {s.id: s for s in result.submissions}
        assert by_id[subs[0].id].round1_score == 80.0
        assert by_id[subs[1].id].round1_score == 50.0

    def test_tie_at_cutoff_admits_all_tied(self):
        subs = [_submission(i) for i in range(5)]
        scores = [90, 85, 80, 80, 70]
        votes = [_vote(s, score) for s, score in zip(subs, scores)]
        result = Round1Tally(finalist_count=3).compute(COMPETITION_ID, subs, [], votes)
        assert len(result.finalists) == 4
        assert subs[4].id not in {s.id for s in result.finalists}

    def test_unscored_entries_never_advance(self):
        subs = [_submission(i) for i in range(4)]
        votes = [_vote(subs[0], 50), _vote(subs[1], 40)]
        result = Round1Tally(finalist_count=3).compute(COMPETITION_ID, subs, [], votes)
        assert {s.id for s in result.finalists} == {subs[0].id, subs[1].id}
        assert {s.id for s in result.unscored} == {subs[2].id, subs[3].id}
        assert all(s.round1_score is None for s in result.unscored)

    def test_non_voters_disqualified_when_enabled(self):
        subs = [_submission(i) for i in range(4)]
        lazy = subs[3]
        assignments = [
            _assignment(subs[0].user_id, [subs[1]]),
            _assignment(lazy.user_id, [subs[0]], has_voted=False),
        ]
        votes = [_vote(s, 90 - i) for i, s in enumerate(subs)]

        result = Round1Tally(finalist_count=3, disqualify_non_voters=True).compute(
            COMPETITION_ID, subs, assignments, votes
        )

        assert [s.id for s in result.disqualified] == [lazy.id]
        by_id = {s.id: s for s in result.submissions}
        assert by_id[lazy.id].status == SubmissionStatus.DISQUALIFIED
        assert by_id[lazy.id].feedback == NON_VOTER_FEEDBACK
        assert lazy.id not in {s.id for s in result.finalists}

    def test_non_voters_kept_by_default(self):
        subs = [_submission(i) for i in range(3)]
        assignments = [_assignment(subs[2].user_id, [subs[0]], has_voted=False)]
        votes = [_vote(s, 80) for s in subs]
        result = Round1Tally(finalist_count=3).compute(COMPETITION_ID, subs, assignments, votes)
        assert result.disqualified == []
        assert len(result.finalists) == 3

    def test_incomplete_voters_ignored_when_required(self):
        subs = [_submission(i) for i in range(3)]
        finished = uuid.uuid4()
        partial = uuid.uuid4()
        assignments = [
            _assignment(finished, [subs[0], subs[1]]),
            _assignment(partial, [subs[1], subs[2]], has_voted=False),
        ]
        votes = [
            _vote(subs[0], 60, voter_id=finished),
            _vote(subs[1], 70, voter_id=finished),
            _vote(subs[1], 10, voter_id=partial),
        ]
        result = Round1Tally(finalist_count=3, require_complete_voters=True).compute(
            COMPETITION_ID, subs, assignments, votes
        )
        by_id = {s.id: s for s in result.submissions}
        assert by_id[subs[1].id].round1_score == 70.0
        assert by_id[subs[2].id].round1_score is None

    def test_round2_votes_not_counted(self):
        subs = [_submission(i) for i in range(2)]
        votes = [_vote(subs[0], 80), _vote(subs[1], 99, voting_round=2)]
        result = Round1Tally(finalist_count=2).compute(COMPETITION_ID, subs, [], votes)
        assert [s.id for s in result.finalists] == [subs[0].id]

    def test_no_votes_at_all(self):
        subs = [_submission(i) for i in range(3)]
        with pytest.raises(InsufficientParticipants):
            Round1Tally().compute(COMPETITION_ID, subs, [], [])

    def test_already_disqualified_entries_skipped(self):
        subs = [_submission(i) for i in range(3)]
        subs[0].status = SubmissionStatus.DISQUALIFIED
        votes = [_vote(s, 80) for s in subs]
        result = Round1Tally(finalist_count=3).compute(COMPETITION_ID, subs, [], votes)
        assert subs[0].id not in {s.id for s in result.finalists}


class TestRound2Tally:
    """Tests for round-2 ranking and winner resolution."""

    def test_clear_winner_and_podium(self):
        finalists = [_finalist(i) for i in range(4)]
        scores = [70, 95, 90, 80]
        votes = [_vote(s, score, voting_round=2) for s, score in zip(finalists, scores)]

        result = Round2Tally().compute(finalists, votes)

        assert result.winner.id == finalists[1].id
        assert result.winner.is_winner is True
        assert result.requires_manual_selection is False
        assert [s.final_rank for s in result.standings] == [1, 2, 3, 4]
        assert [s.id for s in result.winners] == [finalists[1].id, finalists[2].id, finalists[3].id]
        assert all(s.status == SubmissionStatus.JUDGED for s in result.finalists)

    def test_ties_share_rank(self):
        finalists = [_finalist(i) for i in range(4)]
        scores = [95, 90, 90, 80]
        votes = [_vote(s, score, voting_round=2) for s, score in zip(finalists, scores)]
        result = Round2Tally().compute(finalists, votes)
        ranks = {s.id: s.final_rank for s in result.finalists}
        assert [ranks[s.id] for s in finalists] == [1, 2, 2, 4]
        assert len(result.winners) == 3

    def test_tie_for_first_needs_manual_selection(self):
        finalists = [_finalist(i) for i in range(3)]
        votes = [
            _vote(finalists[0], 90, voting_round=2),
            _vote(finalists[1], 90, voting_round=2),
            _vote(finalists[2], 70, voting_round=2),
        ]
        result = Round2Tally().compute(finalists, votes)
        assert result.winner is None
        assert result.requires_manual_selection is True
        assert result.tie_for_first is True
        assert set(result.tied_leader_ids) == {finalists[0].id, finalists[1].id}
        assert not any(s.is_winner for s in result.finalists)

    def test_round1_tiebreak_resolves_tie(self):
        finalists = [_finalist(0, round1_score=70.0), _finalist(1, round1_score=85.0)]
        votes = [_vote(s, 90, voting_round=2) for s in finalists]
        result = Round2Tally(round1_tiebreak=True).compute(finalists, votes)
        assert result.winner.id == finalists[1].id

    def test_self_votes_ignored(self):
        finalists = [_finalist(0), _finalist(1)]
        votes = [
            _vote(finalists[0], 100, voting_round=2, voter_id=finalists[0].user_id),
            _vote(finalists[0], 60, voting_round=2),
            _vote(finalists[1], 80, voting_round=2),
        ]
        result = Round2Tally().compute(finalists, votes)
        assert result.winner.id == finalists[1].id
        by_id = {s.id: s for s in result.finalists}
        assert by_id[finalists[0].id].round2_score == 60.0

    def test_unvoted_finalist_unranked(self):
        finalists = [_finalist(i) for i in range(3)]
        votes = [_vote(finalists[0], 90, voting_round=2), _vote(finalists[1], 80, voting_round=2)]
        result = Round2Tally().compute(finalists, votes)
        assert result.standings[-1].id == finalists[2].id
        assert result.standings[-1].final_rank is None
        assert finalists[2].id not in {s.id for s in result.winners}

    def test_non_finalists_excluded(self):
        finalists = [_finalist(0), _submission(1, status=SubmissionStatus.JUDGED)]
        votes = [_vote(s, 90, voting_round=2) for s in finalists]
        result = Round2Tally().compute(finalists, votes)
        assert [s.id for s in result.finalists] == [finalists[0].id]

    def test_rest_of_field_ranked_after_finalists(self):
        finalists = [_finalist(i) for i in range(3)]
        judged = [
            _submission(3, status=SubmissionStatus.JUDGED, round1_score=70.0),
            _submission(4, status=SubmissionStatus.JUDGED, round1_score=75.0),
            _submission(5, status=SubmissionStatus.JUDGED, round1_score=70.0),
            _submission(6, status=SubmissionStatus.JUDGED),
        ]
        banned = [
            _submission(7, status=SubmissionStatus.DISQUALIFIED, round1_score=99.0),
            _submission(8, status=SubmissionStatus.DISQUALIFIED, advanced_to_round2=True),
        ]
        duplicate = _submission(9, status=SubmissionStatus.SUBMITTED)
        votes = [_vote(s, score, voting_round=2) for s, score in zip(finalists, [90, 80, 70])]

        result = Round2Tally().compute(finalists + judged + banned + [duplicate], votes)

        assert [s.final_rank for s in result.standings] == [1, 2, 3]
        ranks = {s.id: s.final_rank for s in result.others}
        assert ranks[judged[1].id] == 4
        assert ranks[judged[0].id] == ranks[judged[2].id] == 5
        assert ranks[judged[3].id] == 7
        assert ranks[banned[0].id] == ranks[banned[1].id] == 8
        assert duplicate.id not in ranks
        assert [s.final_rank for s in result.field_standings] == [4, 5, 5, 7, 8, 8]
        assert not any(s.is_winner for s in result.others)
        assert {s.id for s in result.winners} == {s.id for s in finalists}

    def test_rest_of_field_follows_unranked_finalists(self):
        finalists = [_finalist(0), _finalist(1)]
        other = _submission(2, status=SubmissionStatus.JUDGED, round1_score=60.0)
        votes = [_vote(finalists[0], 90, voting_round=2)]
        result = Round2Tally().compute(finalists + [other], votes)
        assert result.others[0].final_rank == 3
        assert other.id not in {s.id for s in result.winners}

    def test_summarize_keeps_stored_field_ranks(self):
        first = _finalist(0, final_rank=1, round2_score=90.0)
        other = _submission(1, status=SubmissionStatus.JUDGED, round1_score=60.0, final_rank=2)
        result = Round2Tally().summarize([other, first])
        assert [s.id for s in result.field_standings] == [other.id]
        assert [s.id for s in result.winners] == [first.id]

    def test_summarize_rebuilds_from_stored_ranks(self):
        first = _finalist(0, final_rank=1, round2_score=90.0)
        second = _finalist(1, final_rank=2, round2_score=80.0)
        result = Round2Tally().summarize([second, first])
        assert result.winner.id == first.id
        assert [s.id for s in result.standings] == [first.id, second.id]


class TestManualSelection:
    """Tests for resolving a tie by hand."""

    def _tied(self):
        return [
            _finalist(0, final_rank=1, round2_score=90.0),
            _finalist(1, final_rank=1, round2_score=90.0),
            _finalist(2, final_rank=3, round2_score=70.0),
        ]

    def test_chosen_leader_wins(self):
        finalists = self._tied()
        changed = apply_manual_selection(finalists, finalists[1].id)
        by_id = {s.id: s for s in changed}
        assert by_id[finalists[1].id].is_winner is True
        assert by_id[finalists[1].id].final_rank == 1
        assert by_id[finalists[0].id].final_rank == 2
        assert by_id[finalists[0].id].is_winner is False
        assert finalists[2].id not in by_id

    def test_non_leader_rejected(self):
        finalists = self._tied()
        with pytest.raises(WinnerSelectionRejected):
            apply_manual_selection(finalists, finalists[2].id)

    def test_unknown_submission_rejected(self):
        with pytest.raises(WinnerSelectionRejected):
            apply_manual_selection(self._tied(), uuid.uuid4())
