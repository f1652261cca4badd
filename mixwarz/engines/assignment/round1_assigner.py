"""
Round-1 Assignment Engine.

Every participant is both an entry and a voter. Participants are shuffled,
cut into balanced contiguous cohorts, and voter i scores the k entries that
follow it in the shuffled circle (positions i+1 .. i+k, wrapping around).

Guarantees:
- No voter is ever assigned their own submission
- Every submission gets exactly k distinct voters, every voter scores k peers
- Peers come from the voter's own cohort or the next one (the last cohort
  wraps to the first); cohorts grow past target_group_size when needed
  to hold at least k entries
- Same seed and same submissions give the same plan
"""

import random
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from mixwarz.config import Settings, get_settings
from mixwarz.engines.assignment.grouping import partition_into_groups, plan_group_count
from mixwarz.kernel.clock import Clock, SystemClock
from mixwarz.kernel.errors import AssignmentsLocked, InsufficientParticipants
from mixwarz.kernel.models.competition import SubmissionStatus
from mixwarz.kernel.models.event_log import EventType
from mixwarz.kernel.store.base import CompetitionStore
from mixwarz.logging_config import get_logger
from mixwarz.schemas.competition import CompetitionRecord, SubmissionRecord
from mixwarz.schemas.voting import SubmissionGroupRecord, VotingAssignmentRecord

logger = get_logger(__name__)


@dataclass
class AssignmentPlan:
    """A complete round-1 setup, ready to persist in one store call."""
    competition_id: uuid.UUID
    voters_per_submission: int
    group_count: int
    groups: List[SubmissionGroupRecord]
    assignments: List[VotingAssignmentRecord]
    participants: List[SubmissionRecord]
    skipped_duplicates: List[SubmissionRecord] = field(default_factory=list)


def dedupe_by_user(submissions: Sequence[SubmissionRecord]) -> tuple[List[SubmissionRecord], List[SubmissionRecord]]:
    """Keep the earliest submission per user; return (kept, dropped)."""
    kept: Dict[uuid.UUID, SubmissionRecord] = {}
    dropped: List[SubmissionRecord] = []
    for submission in sorted(submissions, key=lambda s: (s.submitted_at, str(s.id))):
        if submission.user_id in kept:
            dropped.append(submission)
        else:
            kept[submission.user_id] = submission
    return list(kept.values()), dropped


class Round1Assigner:
    """Builds assignment plans. Pure: no I/O."""

    def __init__(
        self,
        voters_per_submission: int = 3,
        target_group_size: int = 20,
        min_participants: int = 3,
        seed: Optional[int] = None,
    ):
        if voters_per_submission < 1:
            raise ValueError("voters_per_submission must be at least 1")
        self.voters_per_submission = voters_per_submission
        self.target_group_size = target_group_size
        self.min_participants = max(2, min_participants)
        self.seed = seed

    @classmethod
    def from_settings(cls, settings: Settings) -> "Round1Assigner":
        return cls(
            voters_per_submission=settings.voters_per_submission,
            target_group_size=settings.target_group_size,
            min_participants=settings.min_participants,
            seed=settings.assignment_seed,
        )

    def build_plan(
        self,
        competition_id: uuid.UUID,
        submissions: Sequence[SubmissionRecord],
        created_at: datetime,
        seed: Optional[int] = None,
    ) -> AssignmentPlan:
        """
        Build groups and per-voter assignments for a competition.

        Raises:
            InsufficientParticipants: fewer eligible submissions than min_participants
        """
        eligible = [s for s in submissions if not s.is_disqualified]
        participants, duplicates = dedupe_by_user(eligible)
        if duplicates:
            logger.warning(
                "Ignoring %d duplicate submissions in competition %s; keeping the earliest per user",
                len(duplicates),
                competition_id,
                extra={"competition_id": str(competition_id)},
            )

        n = len(participants)
        if n < self.min_participants:
            raise InsufficientParticipants(
                f"Round 1 needs at least {self.min_participants} submissions, found {n}",
                competition_id,
                found=n,
                required=self.min_participants,
            )

        k = self.voters_per_submission
        if k > n - 1:
            logger.warning(
                "Reducing voters per submission from %d to %d for competition %s",
                k,
                n - 1,
                competition_id,
                extra={"competition_id": str(competition_id)},
            )
            k = n - 1

        rng = random.Random(seed if seed is not None else self.seed)
        order = list(participants)
        rng.shuffle(order)

        # Every cohort must hold at least k entries so a voter's window never
        # skips past the next cohort
        group_count = min(plan_group_count(n, self.target_group_size), max(1, n // k))
        groups: List[SubmissionGroupRecord] = []
        group_of: Dict[uuid.UUID, int] = {}
        for number, members in enumerate(partition_into_groups(order, group_count), start=1):
            for submission in members:
                group_of[submission.id] = number
                groups.append(SubmissionGroupRecord(
                    competition_id=competition_id,
                    submission_id=submission.id,
                    group_number=number,
                ))

        assignments: List[VotingAssignmentRecord] = []
        for position, voter_entry in enumerate(order):
            targets = [order[(position + offset) % n].id for offset in range(1, k + 1)]
            rng.shuffle(targets)
            assignments.append(VotingAssignmentRecord(
                competition_id=competition_id,
                voter_id=voter_entry.user_id,
                voter_group_number=group_of[voter_entry.id],
                submission_ids=targets,
                created_at=created_at,
            ))

        under_review = []
        for submission in participants:
            updated = submission.model_copy(deep=True)
            updated.status = SubmissionStatus.UNDER_REVIEW
            under_review.append(updated)

        return AssignmentPlan(
            competition_id=competition_id,
            voters_per_submission=k,
            group_count=group_count,
            groups=groups,
            assignments=assignments,
            participants=under_review,
            skipped_duplicates=duplicates,
        )


class Round1AssignmentService:
    """Generates and persists round-1 assignments exactly once per competition."""

    def __init__(
        self,
        store: CompetitionStore,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
        assigner: Optional[Round1Assigner] = None,
    ):
        settings = settings or get_settings()
        self.store = store
        self.clock = clock or SystemClock()
        self.assigner = assigner or Round1Assigner.from_settings(settings)

    async def ensure_assignments(
        self,
        competition: CompetitionRecord,
        force: bool = False,
    ) -> Optional[AssignmentPlan]:
        """
        Create assignments unless they already exist.

        Returns the stored plan, or None when nothing was written because
        assignments were already in place.

        Raises:
            InsufficientParticipants: too few submissions
            AssignmentsLocked: force requested after round-1 votes were cast
        """
        competition_id = competition.id
        if await self.store.has_assignments(competition_id):
            if not force:
                logger.info(
                    "Round 1 assignments already exist for competition %s",
                    competition_id,
                    extra={"competition_id": str(competition_id)},
                )
                return None
            if await self.store.count_votes(competition_id, 1) > 0:
                raise AssignmentsLocked(
                    "Round 1 assignments cannot be regenerated after voting has started",
                    competition_id,
                )

        submissions = await self.store.list_submissions(competition_id)
        plan = self.assigner.build_plan(competition_id, submissions, self.clock.now())

        saved = await self.store.save_assignments(
            competition_id,
            plan.groups,
            plan.assignments,
            plan.participants,
            replace=force,
        )
        if not saved:
            logger.info(
                "Round 1 assignments for competition %s were created by another worker",
                competition_id,
                extra={"competition_id": str(competition_id)},
            )
            return None

        await self.store.log_event(
            EventType.ASSIGNMENTS_GENERATED,
            competition_id,
            {
                "participants": len(plan.participants),
                "groups": plan.group_count,
                "voters_per_submission": plan.voters_per_submission,
                "regenerated": force,
            },
        )
        logger.info(
            "Generated %d round 1 assignments in %d groups for competition %s",
            len(plan.assignments),
            plan.group_count,
            competition_id,
            extra={"competition_id": str(competition_id)},
        )
        return plan
