"""
Transition orchestrator.

Every lifecycle move goes through the same steps:
1. load the competition and confirm it still sits at the expected status
   with no succeeded job record for that boundary
2. compute the target with the pure state machine, before any side effect
3. run the side effect bound to the boundary (idempotent on retry)
4. compare-and-set the status together with the job record and audit event
5. tell the notification sink, never letting it fail the transition
"""

import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from mixwarz.config import Settings, get_settings
from mixwarz.engines.assignment import Round1AssignmentService
from mixwarz.engines.tally import Round1TallyService, Round2TallyService, apply_manual_selection
from mixwarz.engines.voting import VotingService
from mixwarz.kernel.clock import Clock, SystemClock
from mixwarz.kernel.errors import CompetitionNotFound, ConcurrencyConflict, InvalidTransition
from mixwarz.kernel.models.competition import CompetitionStatus
from mixwarz.kernel.models.event_log import EventType
from mixwarz.kernel.models.job_execution import JobOutcome
from mixwarz.kernel.notifications import LoggingNotificationSink, NotificationSink, notify_safely
from mixwarz.kernel.store.base import CompetitionStore
from mixwarz.logging_config import get_logger
from mixwarz.orchestration.state_machine import (
    Trigger,
    administrative_close,
    is_transient,
    next_state,
    trigger_for,
)
from mixwarz.schemas.competition import CompetitionRecord, SubmissionRecord
from mixwarz.schemas.voting import JobExecutionRecord

logger = get_logger(__name__)

S = CompetitionStatus

# Bounded so a bug in the graph can never spin forever.
MAX_CHAINED_STEPS = 10


@dataclass
class TransitionResult:
    """One committed status change."""
    competition: CompetitionRecord
    from_status: CompetitionStatus
    to_status: CompetitionStatus
    trigger: Trigger


@dataclass
class _SideEffect:
    changes: Dict[str, Any]
    submissions: Sequence[SubmissionRecord] = ()
    requires_manual_selection: bool = False
    tied_leader_ids: Sequence[uuid.UUID] = ()


class TransitionService:
    """Applies lifecycle transitions with their side effects."""

    def __init__(
        self,
        store: CompetitionStore,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
        notifier: Optional[NotificationSink] = None,
    ):
        settings = settings or get_settings()
        self.store = store
        self.settings = settings
        self.clock = clock or SystemClock()
        self.notifier = notifier or LoggingNotificationSink()
        self.assignments = Round1AssignmentService(store, settings, self.clock)
        self.round1 = Round1TallyService(store, settings, self.clock)
        self.round2 = Round2TallyService(store, settings, self.clock)
        self.voting = VotingService(store, settings, self.clock)

    async def attempt_transition(
        self,
        competition_id: uuid.UUID,
        expected_status: CompetitionStatus,
        trigger: Trigger,
        job_name: str = "transition",
    ) -> TransitionResult:
        """
        Move one competition across one boundary.

        Raises:
            CompetitionNotFound: unknown competition
            ConcurrencyConflict: status moved on, or the boundary was already crossed
            InvalidTransition: (status, trigger) is not in the lifecycle graph
            InsufficientParticipants: the side effect found too few entries
        """
        competition = await self._load(competition_id)
        if competition.status != expected_status:
            raise ConcurrencyConflict(
                f"Competition {competition_id} is {competition.status.value}, expected {expected_status.value}",
                competition_id,
            )
        record = await self.store.get_job_record(competition_id, expected_status)
        if record is not None and record.succeeded:
            raise ConcurrencyConflict(
                f"Boundary {expected_status.value} already crossed for competition {competition_id}",
                competition_id,
            )
        if trigger == Trigger.MANUAL_OVERRIDE:
            # Manual moves carry a human decision; they only go through select_winner.
            raise InvalidTransition(expected_status.value, trigger.value, competition_id)

        try:
            target = next_state(expected_status, trigger)
        except InvalidTransition as exc:
            exc.competition_id = competition_id
            raise

        effect = await self._run_side_effect(competition, target)
        if expected_status == S.VOTING_ROUND2_TALLYING:
            target = next_state(expected_status, trigger, tie_for_first=effect.requires_manual_selection)
            if target == S.COMPLETED:
                effect.changes["completed_at"] = self.clock.now()

        updated = await self._advance(
            competition_id,
            expected_status,
            target,
            job_name,
            changes=effect.changes,
            submissions=effect.submissions,
        )
        logger.info(
            "Competition %s moved %s -> %s",
            competition_id,
            expected_status.value,
            target.value,
            extra={"competition_id": str(competition_id), "trigger": trigger.value, "job_name": job_name},
        )

        if target == S.REQUIRES_MANUAL_WINNER_SELECTION:
            await self.store.log_event(
                EventType.MANUAL_SELECTION_REQUIRED,
                competition_id,
                {"tied_leader_ids": list(effect.tied_leader_ids)},
            )
            await notify_safely(
                self.notifier,
                EventType.MANUAL_SELECTION_REQUIRED.value,
                competition_id,
                {"tied_leader_ids": list(effect.tied_leader_ids)},
            )
        await notify_safely(
            self.notifier,
            EventType.COMPETITION_STATUS_CHANGED.value,
            competition_id,
            {"from_status": expected_status, "to_status": target},
        )
        return TransitionResult(
            competition=updated,
            from_status=expected_status,
            to_status=target,
            trigger=trigger,
        )

    async def drive(self, competition_id: uuid.UUID, job_name: str = "drive") -> List[TransitionResult]:
        """Keep stepping while the competition sits in a setup or tallying status."""
        results: List[TransitionResult] = []
        competition = await self._load(competition_id)
        for _ in range(MAX_CHAINED_STEPS):
            if not is_transient(competition.status):
                break
            trigger = trigger_for(competition.status)
            result = await self.attempt_transition(
                competition_id,
                competition.status,
                trigger,
                job_name=f"{job_name}:{competition.status.value}",
            )
            results.append(result)
            competition = result.competition
        return results

    async def select_winner(
        self,
        competition_id: uuid.UUID,
        submission_id: uuid.UUID,
        actor_id: Optional[uuid.UUID] = None,
    ) -> TransitionResult:
        """
        Resolve a tie for first place by hand and complete the competition.

        Raises:
            InvalidTransition: the competition is not awaiting a manual decision
            WinnerSelectionRejected: the chosen entry is not an eligible leader
        """
        competition = await self._load(competition_id)
        expected = competition.status
        try:
            target = next_state(expected, Trigger.MANUAL_OVERRIDE)
        except InvalidTransition as exc:
            exc.competition_id = competition_id
            raise

        submissions = await self.store.list_submissions(competition_id)
        changed = apply_manual_selection(submissions, submission_id)
        now = self.clock.now()
        updated = await self._advance(
            competition_id,
            expected,
            target,
            "manual_winner_selection",
            changes={"winner_submission_id": submission_id, "completed_at": now},
            submissions=changed,
            actor_id=actor_id,
        )
        await self.store.log_event(
            EventType.WINNER_SELECTED,
            competition_id,
            {"submission_id": submission_id, "manual": True},
            actor_id=actor_id,
        )
        logger.info(
            "Winner %s selected manually for competition %s",
            submission_id,
            competition_id,
            extra={"competition_id": str(competition_id)},
        )
        await notify_safely(
            self.notifier,
            EventType.WINNER_SELECTED.value,
            competition_id,
            {"submission_id": submission_id},
        )
        return TransitionResult(
            competition=updated,
            from_status=expected,
            to_status=target,
            trigger=Trigger.MANUAL_OVERRIDE,
        )

    async def cancel_competition(
        self,
        competition_id: uuid.UUID,
        target: CompetitionStatus = S.CANCELLED,
        reason: Optional[str] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> CompetitionRecord:
        """Administratively cancel or disqualify a competition that has not completed."""
        competition = await self._load(competition_id)
        try:
            target = administrative_close(competition.status, target)
        except InvalidTransition as exc:
            exc.competition_id = competition_id
            raise

        updated = await self._advance(
            competition_id,
            competition.status,
            target,
            "administrative_close",
            changes={"status_note": reason},
            actor_id=actor_id,
        )
        await self.store.log_event(
            EventType.COMPETITION_CANCELLED,
            competition_id,
            {"from_status": competition.status, "to_status": target, "reason": reason},
            actor_id=actor_id,
        )
        await notify_safely(
            self.notifier,
            EventType.COMPETITION_CANCELLED.value,
            competition_id,
            {"to_status": target, "reason": reason},
        )
        return updated

    async def _run_side_effect(
        self,
        competition: CompetitionRecord,
        target: CompetitionStatus,
    ) -> _SideEffect:
        now = self.clock.now()
        source = competition.status

        if source == S.VOTING_ROUND1_SETUP:
            await self.assignments.ensure_assignments(competition)
            return _SideEffect(changes={"round1_opened_at": now})

        if source == S.VOTING_ROUND1_TALLYING:
            await self.round1.tally(competition)
            return _SideEffect(changes={})

        if source == S.VOTING_ROUND2_SETUP:
            finalists = await self.voting.open_round2(competition)
            await self.store.log_event(
                EventType.ROUND2_OPENED,
                competition.id,
                {"finalist_ids": [s.id for s in finalists]},
            )
            return _SideEffect(changes={"round2_opened_at": now})

        if source == S.VOTING_ROUND2_TALLYING:
            result = await self.round2.tally(competition)
            changes: Dict[str, Any] = {}
            if result.winner is not None:
                changes["winner_submission_id"] = result.winner.id
            return _SideEffect(
                changes=changes,
                requires_manual_selection=result.requires_manual_selection,
                tied_leader_ids=result.tied_leader_ids,
            )

        return _SideEffect(changes={})

    async def _advance(
        self,
        competition_id: uuid.UUID,
        expected: CompetitionStatus,
        target: CompetitionStatus,
        job_name: str,
        changes: Optional[Dict[str, Any]] = None,
        submissions: Sequence[SubmissionRecord] = (),
        actor_id: Optional[uuid.UUID] = None,
    ) -> CompetitionRecord:
        now = self.clock.now()
        record = JobExecutionRecord(
            competition_id=competition_id,
            from_status=expected.value,
            to_status=target.value,
            job_name=job_name,
            outcome=JobOutcome.SUCCEEDED,
            attempts=1,
            last_attempted_at=now,
        )
        return await self.store.advance_status(
            competition_id,
            expected,
            target,
            record,
            changed_at=now,
            changes=changes,
            submissions=submissions,
            actor_id=actor_id,
        )

    async def _load(self, competition_id: uuid.UUID) -> CompetitionRecord:
        competition = await self.store.get_competition(competition_id)
        if competition is None:
            raise CompetitionNotFound(f"Competition {competition_id} not found", competition_id)
        return competition
