"""
Competition scheduler.

One periodic loop, independent of request traffic. Each cycle finds the
competitions whose current status is due (deadline passed, or a setup or
tallying status that should move on immediately) and drives them through
TransitionService with bounded concurrency. A failure in one competition is
logged and recorded against its current boundary; it never stops the cycle.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from mixwarz.config import Settings, get_settings
from mixwarz.kernel.clock import Clock, SystemClock
from mixwarz.kernel.errors import ConcurrencyConflict, InsufficientParticipants, InvalidTransition
from mixwarz.kernel.models.competition import CompetitionStatus
from mixwarz.kernel.models.event_log import EventType
from mixwarz.kernel.notifications import LoggingNotificationSink, NotificationSink, alert_safely
from mixwarz.kernel.store.base import CompetitionStore
from mixwarz.logging_config import correlation_scope, get_logger
from mixwarz.orchestration.state_machine import DEADLINE_FIELDS, is_transient, trigger_for
from mixwarz.orchestration.transitions import TransitionService
from mixwarz.schemas.competition import CompetitionRecord

logger = get_logger(__name__)

S = CompetitionStatus

_BASE_STATUSES = (
    S.UPCOMING,
    S.OPEN_FOR_SUBMISSIONS,
    S.VOTING_ROUND1_SETUP,
    S.VOTING_ROUND1_OPEN,
    S.VOTING_ROUND1_TALLYING,
    S.VOTING_ROUND2_SETUP,
    S.VOTING_ROUND2_OPEN,
    S.VOTING_ROUND2_TALLYING,
)


@dataclass
class CycleReport:
    """What one scheduler pass did."""
    cycle_id: str
    scanned: int = 0
    due: int = 0
    advanced: List[uuid.UUID] = field(default_factory=list)
    held: List[uuid.UUID] = field(default_factory=list)
    conflicts: List[uuid.UUID] = field(default_factory=list)
    failed: List[uuid.UUID] = field(default_factory=list)
    backing_off: List[uuid.UUID] = field(default_factory=list)


class CompetitionScheduler:
    """Periodically advances competitions whose deadlines have passed."""

    def __init__(
        self,
        store: CompetitionStore,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
        notifier: Optional[NotificationSink] = None,
        transitions: Optional[TransitionService] = None,
    ):
        self.settings = settings or get_settings()
        self.store = store
        self.clock = clock or SystemClock()
        self.notifier = notifier or LoggingNotificationSink()
        self.transitions = transitions or TransitionService(
            store, self.settings, self.clock, self.notifier
        )
        self.interval_seconds = self.settings.scheduler_interval_seconds
        self.max_concurrency = self.settings.scheduler_max_concurrency
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def scheduled_statuses(self) -> List[CompetitionStatus]:
        statuses = list(_BASE_STATUSES)
        if self.settings.archive_after_days is not None:
            statuses.append(S.COMPLETED)
        return statuses

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def deadline_for(self, competition: CompetitionRecord) -> Optional[datetime]:
        """When the competition's current status is due to end, if it waits on time."""
        if competition.status == S.COMPLETED:
            if self.settings.archive_after_days is None:
                return None
            completed_at = competition.completed_at or competition.status_changed_at
            if completed_at is None:
                return None
            return completed_at + timedelta(days=self.settings.archive_after_days)
        field_name = DEADLINE_FIELDS.get(competition.status)
        return getattr(competition, field_name) if field_name else None

    def is_due(self, competition: CompetitionRecord, now: datetime) -> bool:
        if is_transient(competition.status):
            return True
        deadline = self.deadline_for(competition)
        return deadline is not None and now >= deadline

    def backoff_delay(self, attempts: int) -> float:
        """Seconds to wait after the given number of failed attempts."""
        if attempts <= 0:
            return 0.0
        delay = self.settings.retry_backoff_seconds * (2 ** (attempts - 1))
        return min(delay, self.settings.retry_backoff_max_seconds)

    async def run_cycle(self) -> CycleReport:
        """Scan every schedulable status once and drive what is due."""
        report = CycleReport(cycle_id=f"cycle-{uuid.uuid4().hex[:12]}")
        with correlation_scope(report.cycle_id):
            now = self.clock.now()
            due: List[CompetitionRecord] = []
            for status in self.scheduled_statuses:
                competitions = await self.store.list_competitions_by_status(status)
                report.scanned += len(competitions)
                due.extend(c for c in competitions if self.is_due(c, now))
            report.due = len(due)

            semaphore = asyncio.Semaphore(self.max_concurrency)

            async def guarded(competition: CompetitionRecord) -> None:
                async with semaphore:
                    await self.process(competition, report)

            await asyncio.gather(*(guarded(c) for c in due))

            if due:
                logger.info(
                    "Scheduler cycle finished: %d due, %d advanced, %d held, %d conflicts, %d failed",
                    report.due,
                    len(report.advanced),
                    len(report.held),
                    len(report.conflicts),
                    len(report.failed),
                )
            return report

    async def process(self, competition: CompetitionRecord, report: Optional[CycleReport] = None) -> None:
        """Advance one due competition as far as it can go right now."""
        report = report or CycleReport(cycle_id="adhoc")
        competition_id = competition.id
        status = competition.status
        extra = {"competition_id": str(competition_id), "status": status.value}
        try:
            if await self._backing_off(competition):
                report.backing_off.append(competition_id)
                return
            trigger = trigger_for(status)
            await self.transitions.attempt_transition(
                competition_id,
                status,
                trigger,
                job_name=f"scheduler:{status.value}",
            )
            await self.transitions.drive(competition_id, job_name="scheduler")
            report.advanced.append(competition_id)
        except ConcurrencyConflict as exc:
            # Another worker got there first; the next cycle sees the new status.
            logger.info("Skipping competition: %s", exc.message, extra=extra)
            report.conflicts.append(competition_id)
        except InsufficientParticipants as exc:
            logger.warning("Competition held: %s", exc.message, extra=extra)
            report.held.append(competition_id)
            await self._hold(competition_id, exc)
            await self._record_failure(competition_id, exc)
        except InvalidTransition as exc:
            logger.error("Competition cannot advance: %s", exc.message, extra=extra)
            report.failed.append(competition_id)
            await self._record_failure(competition_id, exc)
        except Exception as exc:
            logger.exception("Transition failed for competition %s", competition_id, extra=extra)
            report.failed.append(competition_id)
            await self._record_failure(competition_id, exc)

    async def run_forever(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Run cycles every interval until the stop event is set or the task is cancelled."""
        stop = stop_event or asyncio.Event()
        logger.info("Competition scheduler started (interval=%ss)", self.interval_seconds)
        while not stop.is_set():
            try:
                await self.run_cycle()
            except Exception:
                logger.exception("Scheduler cycle failed")
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info("Competition scheduler stopped")

    def start(self) -> None:
        """Start the loop as a background task."""
        if self.running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(
            self.run_forever(self._stop_event),
            name="competition-scheduler",
        )

    async def stop(self, timeout: float = 10.0) -> None:
        """Ask the loop to finish its current cycle, cancelling it if it takes too long."""
        if self._task is None:
            return
        if self._stop_event is not None:
            self._stop_event.set()
        task = self._task
        self._task = None
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Scheduler did not stop within %ss; cancelling", timeout)
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                logger.info("Scheduler task cancelled")

    async def _backing_off(self, competition: CompetitionRecord) -> bool:
        record = await self.store.get_job_record(competition.id, competition.status)
        if record is None or record.succeeded or record.attempts == 0:
            return False
        retry_at = record.last_attempted_at + timedelta(seconds=self.backoff_delay(record.attempts))
        return self.clock.now() < retry_at

    async def _hold(self, competition_id: uuid.UUID, exc: InsufficientParticipants) -> None:
        try:
            await self.store.set_status_note(competition_id, exc.message)
            await self.store.log_event(
                EventType.COMPETITION_HELD,
                competition_id,
                {"reason": exc.message, "found": exc.found, "required": exc.required},
            )
        except Exception:
            logger.exception("Could not record hold for competition %s", competition_id)

    async def _record_failure(self, competition_id: uuid.UUID, error: Exception) -> None:
        """Count a failed attempt against the competition's current boundary and alert when stuck."""
        message = getattr(error, "message", None) or str(error) or type(error).__name__
        try:
            competition = await self.store.get_competition(competition_id)
            if competition is None:
                return
            status = competition.status
            record = await self.store.record_job_failure(
                competition_id,
                status,
                f"scheduler:{status.value}",
                message,
                self.clock.now(),
            )
            await self.store.log_event(
                EventType.JOB_FAILED,
                competition_id,
                {"from_status": status, "attempts": record.attempts, "error": message},
            )
        except Exception:
            logger.exception("Could not record failure for competition %s", competition_id)
            return

        if record.attempts >= self.settings.retry_alert_threshold:
            alert = (
                f"Competition {competition_id} has failed to leave {status.value} "
                f"{record.attempts} times: {message}"
            )
            await alert_safely(
                self.notifier,
                competition_id,
                alert,
                {"from_status": status, "attempts": record.attempts},
            )
            try:
                await self.store.log_event(
                    EventType.JOB_ALERT,
                    competition_id,
                    {"from_status": status, "attempts": record.attempts},
                )
            except Exception:
                logger.exception("Could not record alert for competition %s", competition_id)
