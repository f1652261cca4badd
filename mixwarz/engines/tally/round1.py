"""
Round-1 tally: aggregate peer scores and pick finalists.

Each participant's score is the mean of the round-1 votes it received.
Entries nobody scored are left unscored and never ranked. The top
`finalist_count` ranks advance, so a tie on the last finalist place lets
every tied entry through.
"""

import uuid
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Set

from mixwarz.config import Settings, get_settings
from mixwarz.engines.tally.ranking import competition_rank, mean_score, top_with_ties
from mixwarz.kernel.clock import Clock, SystemClock
from mixwarz.kernel.errors import InsufficientParticipants
from mixwarz.kernel.models.competition import SubmissionStatus
from mixwarz.kernel.models.event_log import EventType
from mixwarz.kernel.store.base import CompetitionStore
from mixwarz.logging_config import get_logger
from mixwarz.schemas.competition import CompetitionRecord, SubmissionRecord
from mixwarz.schemas.voting import VoteRecord, VotingAssignmentRecord

logger = get_logger(__name__)

NON_VOTER_FEEDBACK = "Disqualified for not voting in Round 1"


@dataclass
class Round1TallyResult:
    """Outcome of tallying round 1."""
    submissions: List[SubmissionRecord]
    finalists: List[SubmissionRecord]
    disqualified: List[SubmissionRecord] = field(default_factory=list)
    unscored: List[SubmissionRecord] = field(default_factory=list)


class Round1Tally:
    """Pure round-1 aggregation over loaded records."""

    def __init__(
        self,
        finalist_count: int = 3,
        disqualify_non_voters: bool = False,
        require_complete_voters: bool = False,
    ):
        if finalist_count < 1:
            raise ValueError("finalist_count must be at least 1")
        self.finalist_count = finalist_count
        self.disqualify_non_voters = disqualify_non_voters
        self.require_complete_voters = require_complete_voters

    @classmethod
    def from_settings(cls, settings: Settings) -> "Round1Tally":
        return cls(
            finalist_count=settings.finalist_count,
            disqualify_non_voters=settings.disqualify_non_voters,
            require_complete_voters=settings.require_complete_voters,
        )

    def compute(
        self,
        competition_id: uuid.UUID,
        submissions: Sequence[SubmissionRecord],
        assignments: Sequence[VotingAssignmentRecord],
        votes: Sequence[VoteRecord],
    ) -> Round1TallyResult:
        """
        Score participants and mark finalists.

        Raises:
            InsufficientParticipants: no participant received a single vote
        """
        working = [s.model_copy(deep=True) for s in submissions]

        assigned: Set[uuid.UUID] = set()
        for assignment in assignments:
            assigned.update(assignment.submission_ids)
        participants = [
            s for s in working
            if not s.is_disqualified and (s.id in assigned or s.status == SubmissionStatus.UNDER_REVIEW)
        ]

        completed_voters = {a.voter_id for a in assignments if a.has_voted}

        disqualified: List[SubmissionRecord] = []
        if self.disqualify_non_voters:
            non_voters = {a.voter_id for a in assignments if not a.has_voted}
            for submission in participants:
                if submission.user_id in non_voters:
                    submission.status = SubmissionStatus.DISQUALIFIED
                    submission.feedback = NON_VOTER_FEEDBACK
                    submission.advanced_to_round2 = False
                    submission.round1_score = None
                    disqualified.append(submission)
            if disqualified:
                logger.info(
                    "Disqualified %d submissions whose authors did not vote in round 1 of competition %s",
                    len(disqualified),
                    competition_id,
                    extra={"competition_id": str(competition_id)},
                )

        counted = [
            v for v in votes
            if v.voting_round == 1
            and (not self.require_complete_voters or v.voter_id in completed_voters)
        ]

        eligible = [s for s in participants if not s.is_disqualified]
        scored: List[SubmissionRecord] = []
        unscored: List[SubmissionRecord] = []
        for submission in eligible:
            submission.round1_score = mean_score(
                [v.score for v in counted if v.submission_id == submission.id]
            )
            if submission.round1_score is None:
                unscored.append(submission)
            else:
                scored.append(submission)

        scored.sort(key=lambda s: str(s.id))
        ranked = competition_rank(scored, key=lambda s: s.round1_score)
        finalists = top_with_ties(ranked, self.finalist_count)
        if not finalists:
            raise InsufficientParticipants(
                "No submission received any round 1 votes; no finalists can be selected",
                competition_id,
                found=0,
                required=1,
            )

        finalist_ids = {s.id for s in finalists}
        for submission in eligible:
            if submission.id in finalist_ids:
                submission.advanced_to_round2 = True
            else:
                submission.advanced_to_round2 = False
                submission.status = SubmissionStatus.JUDGED

        if len(finalists) > self.finalist_count:
            logger.info(
                "Tie at the finalist cutoff admits %d finalists instead of %d in competition %s",
                len(finalists),
                self.finalist_count,
                competition_id,
                extra={"competition_id": str(competition_id)},
            )

        return Round1TallyResult(
            submissions=participants,
            finalists=finalists,
            disqualified=disqualified,
            unscored=unscored,
        )


class Round1TallyService:
    """Loads round-1 data, tallies it and persists the outcome once."""

    def __init__(
        self,
        store: CompetitionStore,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
        engine: Optional[Round1Tally] = None,
    ):
        settings = settings or get_settings()
        self.store = store
        self.clock = clock or SystemClock()
        self.engine = engine or Round1Tally.from_settings(settings)

    async def tally(self, competition: CompetitionRecord) -> Optional[Round1TallyResult]:
        """
        Tally round 1 unless it was already tallied.

        Returns None when a previous attempt already persisted the tally.
        """
        competition_id = competition.id
        if competition.round1_tallied_at is not None:
            logger.info(
                "Round 1 already tallied for competition %s",
                competition_id,
                extra={"competition_id": str(competition_id)},
            )
            return None

        submissions = await self.store.list_submissions(competition_id)
        assignments = await self.store.list_assignments(competition_id)
        votes = await self.store.list_votes(competition_id, 1)

        result = self.engine.compute(competition_id, submissions, assignments, votes)

        saved = await self.store.save_round_tally(
            competition_id,
            1,
            result.submissions,
            self.clock.now(),
        )
        if not saved:
            logger.info(
                "Round 1 tally for competition %s was stored by another worker",
                competition_id,
                extra={"competition_id": str(competition_id)},
            )
            return None

        if result.disqualified:
            await self.store.log_event(
                EventType.SUBMISSIONS_DISQUALIFIED,
                competition_id,
                {
                    "submission_ids": [s.id for s in result.disqualified],
                    "reason": NON_VOTER_FEEDBACK,
                },
            )
        logger.info(
            "Round 1 tallied for competition %s: %d finalists, %d unscored",
            competition_id,
            len(result.finalists),
            len(result.unscored),
            extra={"competition_id": str(competition_id)},
        )
        return result
