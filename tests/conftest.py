"""
Pytest fixtures for MixWarz round engine tests.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest

from mixwarz.config import Settings
from mixwarz.kernel.clock import FrozenClock
from mixwarz.kernel.models.competition import CompetitionStatus
from mixwarz.kernel.notifications import NotificationSink
from mixwarz.kernel.store.memory import InMemoryCompetitionStore
from mixwarz.orchestration.transitions import TransitionService
from mixwarz.schemas.competition import CompetitionRecord, SubmissionRecord

BASE_TIME = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class RecordingNotificationSink(NotificationSink):
    """Keeps every notification and alert for assertions."""

    def __init__(self) -> None:
        self.notifications: List[Dict[str, Any]] = []
        self.alerts: List[Dict[str, Any]] = []

    async def notify(
        self,
        event_type: str,
        competition_id: uuid.UUID,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.notifications.append({
            "event_type": event_type,
            "competition_id": competition_id,
            "payload": payload or {},
        })

    async def alert(
        self,
        competition_id: uuid.UUID,
        message: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.alerts.append({
            "competition_id": competition_id,
            "message": message,
            "payload": payload or {},
        })

    def of_type(self, event_type: str) -> List[Dict[str, Any]]:
        return [n for n in self.notifications if n["event_type"] == event_type]


class BrokenNotificationSink(NotificationSink):
    """Sink whose delivery always fails."""

    async def notify(self, event_type, competition_id, payload=None) -> None:
        raise ConnectionError("notification relay unavailable")

    async def alert(self, competition_id, message, payload=None) -> None:
        raise ConnectionError("alert relay unavailable")


@pytest.fixture
def clock() -> FrozenClock:
    """Clock pinned at BASE_TIME."""
    return FrozenClock(BASE_TIME)


@pytest.fixture
def settings() -> Settings:
    """Deterministic settings; no database or background loop."""
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        scheduler_enabled=False,
        scheduler_interval_seconds=0.05,
        assignment_seed=1234,
        voters_per_submission=3,
        min_participants=3,
        finalist_count=3,
        retry_backoff_seconds=60.0,
        retry_backoff_max_seconds=600.0,
        retry_alert_threshold=3,
        file_base_url="https://files.test",
        file_url_secret="test-secret-for-signing-audio-urls-0123456789",
        file_url_ttl_seconds=600,
    )


@pytest.fixture
def store() -> InMemoryCompetitionStore:
    return InMemoryCompetitionStore()


@pytest.fixture
def notifier() -> RecordingNotificationSink:
    return RecordingNotificationSink()


@pytest.fixture
def broken_notifier() -> BrokenNotificationSink:
    return BrokenNotificationSink()


@pytest.fixture
def transitions(store, settings, clock, notifier) -> TransitionService:
    return TransitionService(store, settings, clock, notifier)


@pytest.fixture
def competition_factory(store):
    """Create competitions whose deadlines all lie after BASE_TIME."""

    async def create(
        status: CompetitionStatus = CompetitionStatus.UPCOMING,
        **overrides: Any,
    ) -> CompetitionRecord:
        values: Dict[str, Any] = dict(
            title="Spring Mixdown",
            organizer_id=uuid.uuid4(),
            start_date=BASE_TIME + timedelta(days=1),
            submission_deadline=BASE_TIME + timedelta(days=5),
            round1_voting_end=BASE_TIME + timedelta(days=10),
            round2_voting_end=BASE_TIME + timedelta(days=15),
            status=status,
            status_changed_at=BASE_TIME,
        )
        values.update(overrides)
        return await store.add_competition(CompetitionRecord(**values))

    return create


@pytest.fixture
def submission_factory(store):
    """Create `count` submissions from distinct users."""

    async def create(
        competition: CompetitionRecord,
        count: int = 5,
        **overrides: Any,
    ) -> List[SubmissionRecord]:
        created = []
        for index in range(count):
            values: Dict[str, Any] = dict(
                competition_id=competition.id,
                user_id=uuid.uuid4(),
                mix_title=f"Mix {index + 1}",
                audio_file_path=f"competitions/{competition.id}/mix-{index + 1}.wav",
                submitted_at=BASE_TIME + timedelta(minutes=index),
            )
            values.update(overrides)
            created.append(await store.add_submission(SubmissionRecord(**values)))
        return created

    return create
