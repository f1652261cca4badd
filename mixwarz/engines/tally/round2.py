"""
Round-2 tally and winner resolution.

Finalists are ranked by the mean of their round-2 scores using standard
competition ranking. A shared first place is never broken by guessing:
the competition is routed to manual winner selection instead.

Everyone else who took part in round 1 is ranked after the finalists:
first by round-1 score, then every disqualified entry sharing the last
place. Duplicate entries that never entered round 1 stay unranked.
"""

import uuid
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from mixwarz.config import Settings, get_settings
from mixwarz.engines.tally.ranking import competition_rank, mean_score
from mixwarz.kernel.clock import Clock, SystemClock
from mixwarz.kernel.errors import WinnerSelectionRejected
from mixwarz.kernel.models.competition import SubmissionStatus
from mixwarz.kernel.store.base import CompetitionStore
from mixwarz.logging_config import get_logger
from mixwarz.schemas.competition import CompetitionRecord, SubmissionRecord
from mixwarz.schemas.voting import VoteRecord

logger = get_logger(__name__)

PODIUM_SIZE = 3


def _round1_key(submission: SubmissionRecord) -> float:
    return submission.round1_score if submission.round1_score is not None else float("-inf")


@dataclass
class Round2TallyResult:
    """Final standings of the finalists and the rest of the field."""
    finalists: List[SubmissionRecord]
    others: List[SubmissionRecord] = field(default_factory=list)
    tied_leader_ids: List[uuid.UUID] = field(default_factory=list)
    winner: Optional[SubmissionRecord] = None

    @property
    def requires_manual_selection(self) -> bool:
        return self.winner is None

    @property
    def tie_for_first(self) -> bool:
        return len(self.tied_leader_ids) > 1

    @property
    def standings(self) -> List[SubmissionRecord]:
        """Ranked finalists first by rank, then unranked ones."""
        return sorted(
            self.finalists,
            key=lambda s: (s.final_rank is None, s.final_rank or 0, str(s.id)),
        )

    @property
    def winners(self) -> List[SubmissionRecord]:
        """The podium: every finalist ranked within the top three."""
        return [s for s in self.standings if s.final_rank is not None and s.final_rank <= PODIUM_SIZE]

    @property
    def field_standings(self) -> List[SubmissionRecord]:
        """Non-finalists in final rank order."""
        return sorted(
            self.others,
            key=lambda s: (s.final_rank is None, s.final_rank or 0, str(s.id)),
        )


class Round2Tally:
    """Pure round-2 ranking over loaded records."""

    def __init__(self, round1_tiebreak: bool = False):
        self.round1_tiebreak = round1_tiebreak

    @classmethod
    def from_settings(cls, settings: Settings) -> "Round2Tally":
        return cls(round1_tiebreak=settings.round1_tiebreak)

    def _key(self, submission: SubmissionRecord):
        if self.round1_tiebreak:
            return (submission.round2_score, _round1_key(submission))
        return (submission.round2_score,)

    def compute(
        self,
        submissions: Sequence[SubmissionRecord],
        votes: Sequence[VoteRecord],
    ) -> Round2TallyResult:
        """Score and rank finalists; unvoted finalists stay unranked."""
        finalists = sorted(
            (s.model_copy(deep=True) for s in submissions if s.is_finalist),
            key=lambda s: str(s.id),
        )
        owners = {s.id: s.user_id for s in finalists}

        scored: List[SubmissionRecord] = []
        for submission in finalists:
            received = [
                v.score for v in votes
                if v.voting_round == 2
                and v.submission_id == submission.id
                and v.voter_id != owners[submission.id]
            ]
            submission.round2_score = mean_score(received)
            submission.final_rank = None
            submission.is_winner = False
            submission.status = SubmissionStatus.JUDGED
            if submission.round2_score is not None:
                scored.append(submission)

        for rank, submission in competition_rank(scored, key=self._key):
            submission.final_rank = rank

        return self._resolve(finalists, self._rank_field(submissions, offset=len(finalists)))

    def _rank_field(self, submissions: Sequence[SubmissionRecord], offset: int) -> List[SubmissionRecord]:
        others = sorted(
            (
                s.model_copy(deep=True) for s in submissions
                if not s.is_finalist
                and s.status in (SubmissionStatus.JUDGED, SubmissionStatus.DISQUALIFIED)
            ),
            key=lambda s: str(s.id),
        )
        judged = [s for s in others if not s.is_disqualified]
        for rank, submission in competition_rank(judged, key=_round1_key):
            submission.final_rank = offset + rank
        last_place = offset + len(judged) + 1
        for submission in others:
            submission.is_winner = False
            if submission.is_disqualified:
                submission.final_rank = last_place
        return others

    def summarize(self, submissions: Sequence[SubmissionRecord]) -> Round2TallyResult:
        """Rebuild the result from ranks that were already persisted."""
        finalists = [s.model_copy(deep=True) for s in submissions if s.is_finalist]
        others = [
            s.model_copy(deep=True) for s in submissions
            if not s.is_finalist and s.final_rank is not None
        ]
        return self._resolve(finalists, others)

    def _resolve(
        self,
        finalists: List[SubmissionRecord],
        others: List[SubmissionRecord],
    ) -> Round2TallyResult:
        leaders = [s for s in finalists if s.final_rank == 1]
        winner = leaders[0] if len(leaders) == 1 else None
        if winner is not None:
            winner.is_winner = True
        return Round2TallyResult(
            finalists=finalists,
            others=others,
            tied_leader_ids=[s.id for s in leaders] if len(leaders) > 1 else [],
            winner=winner,
        )


def apply_manual_selection(
    submissions: Sequence[SubmissionRecord],
    chosen_id: uuid.UUID,
) -> List[SubmissionRecord]:
    """
    Make the chosen finalist the sole winner.

    When any finalist holds rank 1 the choice must be one of them; the other
    former leaders drop to rank 2. Returns the finalists that changed.

    Raises:
        WinnerSelectionRejected: the choice is not an eligible finalist
    """
    finalists = [s.model_copy(deep=True) for s in submissions if s.is_finalist]
    chosen = next((s for s in finalists if s.id == chosen_id), None)
    if chosen is None:
        raise WinnerSelectionRejected(f"Submission {chosen_id} is not a finalist")

    leaders = [s for s in finalists if s.final_rank == 1]
    if leaders and chosen.final_rank != 1:
        raise WinnerSelectionRejected(
            f"Submission {chosen_id} is not tied for first place"
        )

    changed: List[SubmissionRecord] = []
    for submission in finalists:
        if submission.id == chosen_id:
            submission.final_rank = 1
            submission.is_winner = True
            changed.append(submission)
        elif submission.final_rank == 1 or submission.is_winner:
            submission.final_rank = 2
            submission.is_winner = False
            changed.append(submission)
    return changed


class Round2TallyService:
    """Loads round-2 data, ranks finalists and persists the outcome once."""

    def __init__(
        self,
        store: CompetitionStore,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
        engine: Optional[Round2Tally] = None,
    ):
        settings = settings or get_settings()
        self.store = store
        self.clock = clock or SystemClock()
        self.engine = engine or Round2Tally.from_settings(settings)

    async def tally(self, competition: CompetitionRecord) -> Round2TallyResult:
        """
        Tally round 2, or rebuild the result if it was already tallied.

        The result is always returned so the caller can route on it, even
        when a previous attempt persisted the ranks and then failed.
        """
        competition_id = competition.id
        submissions = await self.store.list_submissions(competition_id)
        if competition.round2_tallied_at is not None:
            logger.info(
                "Round 2 already tallied for competition %s; using stored ranks",
                competition_id,
                extra={"competition_id": str(competition_id)},
            )
            return self.engine.summarize(submissions)

        votes = await self.store.list_votes(competition_id, 2)
        result = self.engine.compute(submissions, votes)

        saved = await self.store.save_round_tally(
            competition_id,
            2,
            result.finalists + result.others,
            self.clock.now(),
            winner_submission_id=result.winner.id if result.winner else None,
        )
        if not saved:
            logger.info(
                "Round 2 tally for competition %s was stored by another worker",
                competition_id,
                extra={"competition_id": str(competition_id)},
            )
            return self.engine.summarize(await self.store.list_submissions(competition_id))

        if result.requires_manual_selection:
            logger.warning(
                "Competition %s needs a manual winner decision (%d tied leaders)",
                competition_id,
                len(result.tied_leader_ids),
                extra={"competition_id": str(competition_id)},
            )
        else:
            logger.info(
                "Round 2 tallied for competition %s; winner %s",
                competition_id,
                result.winner.id,
                extra={"competition_id": str(competition_id)},
            )
        return result
