"""
Vote casting for both rounds.

Round 1 is assignment-restricted: a voter may only score the submissions
on their own list. Round 2 is open: any participant whose own entry was
not disqualified may score any finalist except their own. Votes are
immutable in both rounds; a second vote for the same submission in the
same round is rejected. Votes are only accepted before the round's end
timestamp, even while the scheduler has yet to close the round.
"""

import uuid
from typing import List, Optional

from mixwarz.config import Settings, get_settings
from mixwarz.kernel.clock import Clock, SystemClock
from mixwarz.kernel.errors import CompetitionNotFound, InsufficientParticipants, VoteRejected
from mixwarz.kernel.models.competition import CompetitionStatus
from mixwarz.kernel.store.base import CompetitionStore
from mixwarz.logging_config import get_logger
from mixwarz.schemas.competition import CompetitionRecord, SubmissionRecord
from mixwarz.schemas.voting import VoteCreate, VoteRecord

logger = get_logger(__name__)


class VotingService:
    """Validates and records votes."""

    def __init__(
        self,
        store: CompetitionStore,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
    ):
        settings = settings or get_settings()
        self.store = store
        self.clock = clock or SystemClock()
        self.score_min = settings.score_min
        self.score_max = settings.score_max

    async def cast_round1_vote(
        self,
        competition_id: uuid.UUID,
        voter_id: uuid.UUID,
        vote: VoteCreate,
    ) -> VoteRecord:
        """Record a round-1 score for a submission on the voter's assignment."""
        competition = await self._load(competition_id)
        if competition.status != CompetitionStatus.VOTING_ROUND1_OPEN:
            raise VoteRejected("Round 1 voting is not open", competition_id)
        if self.clock.now() >= competition.round1_voting_end:
            raise VoteRejected("Round 1 voting has closed", competition_id)
        self._check_score(competition_id, vote.score)

        assignment = await self.store.get_assignment(competition_id, voter_id)
        if assignment is None:
            raise VoteRejected("You have no round 1 assignment in this competition", competition_id)
        if vote.submission_id not in assignment.submission_ids:
            raise VoteRejected("This submission is not on your round 1 list", competition_id)

        record = await self.store.add_vote(VoteRecord(
            competition_id=competition_id,
            submission_id=vote.submission_id,
            voter_id=voter_id,
            voting_round=1,
            score=vote.score,
            comment=vote.comment,
            cast_at=self.clock.now(),
        ))

        votes = await self.store.list_votes(competition_id, 1)
        scored = {v.submission_id for v in votes if v.voter_id == voter_id}
        if set(assignment.submission_ids) <= scored:
            await self.store.mark_assignment_completed(competition_id, voter_id, self.clock.now())
            logger.info(
                "Voter %s completed round 1 in competition %s",
                voter_id,
                competition_id,
                extra={"competition_id": str(competition_id)},
            )
        return record

    async def cast_round2_vote(
        self,
        competition_id: uuid.UUID,
        voter_id: uuid.UUID,
        vote: VoteCreate,
    ) -> VoteRecord:
        """Record a round-2 score for a finalist."""
        competition = await self._load(competition_id)
        if competition.status != CompetitionStatus.VOTING_ROUND2_OPEN:
            raise VoteRejected("Round 2 voting is not open", competition_id)
        if self.clock.now() >= competition.round2_voting_end:
            raise VoteRejected("Round 2 voting has closed", competition_id)
        self._check_score(competition_id, vote.score)

        submission = await self.store.get_submission(vote.submission_id)
        if submission is None or submission.competition_id != competition_id or not submission.is_finalist:
            raise VoteRejected("Only finalists can receive round 2 votes", competition_id)
        if submission.user_id == voter_id:
            raise VoteRejected("You cannot vote for your own submission", competition_id)

        entries = [s for s in await self.store.list_submissions(competition_id) if s.user_id == voter_id]
        if not entries:
            raise VoteRejected("Only competition participants can vote in round 2", competition_id)
        if all(s.is_disqualified for s in entries):
            raise VoteRejected("Disqualified participants cannot vote in round 2", competition_id)

        return await self.store.add_vote(VoteRecord(
            competition_id=competition_id,
            submission_id=vote.submission_id,
            voter_id=voter_id,
            voting_round=2,
            score=vote.score,
            comment=vote.comment,
            cast_at=self.clock.now(),
        ))

    async def open_round2(self, competition: CompetitionRecord) -> List[SubmissionRecord]:
        """
        Confirm round 2 has something to vote on.

        Raises:
            InsufficientParticipants: no finalists survived round 1
        """
        finalists = [s for s in await self.store.list_submissions(competition.id) if s.is_finalist]
        if not finalists:
            raise InsufficientParticipants(
                "Round 2 cannot open without finalists",
                competition.id,
                found=0,
                required=1,
            )
        return finalists

    async def _load(self, competition_id: uuid.UUID) -> CompetitionRecord:
        competition = await self.store.get_competition(competition_id)
        if competition is None:
            raise CompetitionNotFound(f"Competition {competition_id} not found", competition_id)
        return competition

    def _check_score(self, competition_id: uuid.UUID, score: float) -> None:
        if not (self.score_min <= score <= self.score_max):
            raise VoteRejected(
                f"Score must be between {self.score_min:g} and {self.score_max:g}",
                competition_id,
            )
