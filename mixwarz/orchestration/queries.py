"""
Read-side queries for competitions.

Nothing here mutates state. Audio references are always resolved through
the FileUrlService, and round-1 listening lists never reveal who made
which mix.
"""

import uuid
from typing import List

from mixwarz.engines.tally import Round2Tally
from mixwarz.kernel.errors import AssignmentNotFound, CompetitionNotFound, PhaseNotReached
from mixwarz.kernel.files import FileUrlService
from mixwarz.kernel.models.competition import CompetitionStatus
from mixwarz.kernel.store.base import CompetitionStore
from mixwarz.orchestration.state_machine import DEADLINE_FIELDS, is_terminal, status_rank
from mixwarz.schemas.competition import CompetitionRecord, SubmissionRecord
from mixwarz.schemas.results import (
    AssignedSubmissionView,
    AssignmentView,
    CompetitionStateView,
    FinalistView,
    RankedEntry,
    ResultsView,
)

S = CompetitionStatus


def _ranked_entry(submission: SubmissionRecord) -> RankedEntry:
    return RankedEntry(
        submission_id=submission.id,
        user_id=submission.user_id,
        mix_title=submission.mix_title,
        round1_score=submission.round1_score,
        round2_score=submission.round2_score,
        final_rank=submission.final_rank,
        is_winner=submission.is_winner,
        is_disqualified=submission.is_disqualified,
    )


class CompetitionQueries:
    """Views over competition state for organizers, voters and the public."""

    def __init__(self, store: CompetitionStore, files: FileUrlService):
        self.store = store
        self.files = files

    async def get_state(self, competition_id: uuid.UUID) -> CompetitionStateView:
        competition = await self._load(competition_id)
        field_name = DEADLINE_FIELDS.get(competition.status)
        return CompetitionStateView(
            competition_id=competition.id,
            title=competition.title,
            status=competition.status.value,
            status_changed_at=competition.status_changed_at,
            status_note=competition.status_note,
            next_deadline=getattr(competition, field_name) if field_name else None,
            is_terminal=is_terminal(competition.status),
        )

    async def get_finalists(self, competition_id: uuid.UUID) -> List[FinalistView]:
        """Finalists with listening URLs; available once round 2 is being set up."""
        competition = await self._load(competition_id)
        if not self._reached(competition, S.VOTING_ROUND2_SETUP):
            raise PhaseNotReached("Finalists are not available yet", competition_id)

        submissions = await self.store.list_submissions(competition_id)
        finalists = sorted(
            (s for s in submissions if s.is_finalist),
            key=lambda s: (-(s.round1_score or 0.0), str(s.id)),
        )
        return [
            FinalistView(
                submission_id=s.id,
                mix_title=s.mix_title,
                audio_url=self.files.get_access_url(s.audio_file_path),
                round1_score=s.round1_score,
            )
            for s in finalists
        ]

    async def get_results(self, competition_id: uuid.UUID) -> ResultsView:
        """Final standings of every entry; available once round 2 has been tallied."""
        competition = await self._load(competition_id)
        if competition.round2_tallied_at is None:
            raise PhaseNotReached("Results are not available yet", competition_id)

        submissions = await self.store.list_submissions(competition_id)
        result = Round2Tally().summarize(submissions)
        awaiting_decision = competition.status == S.REQUIRES_MANUAL_WINNER_SELECTION
        return ResultsView(
            competition_id=competition.id,
            status=competition.status.value,
            requires_manual_selection=awaiting_decision,
            tied_leader_ids=result.tied_leader_ids if awaiting_decision else [],
            standings=[_ranked_entry(s) for s in result.standings],
            winners=[_ranked_entry(s) for s in result.winners],
            non_finalists=[_ranked_entry(s) for s in result.field_standings],
        )

    async def get_voter_assignment(
        self,
        competition_id: uuid.UUID,
        voter_id: uuid.UUID,
    ) -> AssignmentView:
        """A voter's anonymized round-1 list, in listening order."""
        await self._load(competition_id)
        assignment = await self.store.get_assignment(competition_id, voter_id)
        if assignment is None:
            raise AssignmentNotFound("You have no round 1 assignment in this competition", competition_id)

        votes = await self.store.list_votes(competition_id, 1)
        scored = {v.submission_id for v in votes if v.voter_id == voter_id}
        items: List[AssignedSubmissionView] = []
        for submission_id in assignment.submission_ids:
            submission = await self.store.get_submission(submission_id)
            if submission is None:
                continue
            items.append(AssignedSubmissionView(
                submission_id=submission.id,
                mix_title=submission.mix_title,
                audio_url=self.files.get_access_url(submission.audio_file_path),
                already_scored=submission.id in scored,
            ))
        return AssignmentView(
            competition_id=competition_id,
            voter_group_number=assignment.voter_group_number,
            has_voted=assignment.has_voted,
            submissions=items,
        )

    async def _load(self, competition_id: uuid.UUID) -> CompetitionRecord:
        competition = await self.store.get_competition(competition_id)
        if competition is None:
            raise CompetitionNotFound(f"Competition {competition_id} not found", competition_id)
        return competition

    @staticmethod
    def _reached(competition: CompetitionRecord, status: CompetitionStatus) -> bool:
        if competition.status in (S.CANCELLED, S.DISQUALIFIED):
            return False
        return status_rank(competition.status) >= status_rank(status)
