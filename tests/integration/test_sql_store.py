"""
Integration tests for the SQLAlchemy store.

Each test gets its own SQLite file so the conditional updates and unique
constraints are exercised against a real database.
"""

import uuid
from datetime import timedelta

import pytest
import pytest_asyncio

from mixwarz.database import create_engine_for_url, create_session_maker, init_db
from mixwarz.kernel.errors import ConcurrencyConflict, VoteRejected
from mixwarz.kernel.events import EventStore
from mixwarz.kernel.models import JobOutcome
from mixwarz.kernel.models.competition import CompetitionStatus as S
from mixwarz.kernel.models.competition import SubmissionStatus
from mixwarz.kernel.models.event_log import EventType
from mixwarz.kernel.store.sql import SqlCompetitionStore
from mixwarz.orchestration.state_machine import Trigger
from mixwarz.orchestration.transitions import TransitionService
from mixwarz.schemas.competition import CompetitionRecord, SubmissionRecord
from mixwarz.schemas.voting import JobExecutionRecord, VoteRecord, VotingAssignmentRecord


@pytest_asyncio.fixture
async def sql_env(tmp_path):
    engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'mixwarz.db'}")
    await init_db(engine)
    session_maker = create_session_maker(engine)
    yield SqlCompetitionStore(session_maker), session_maker
    await engine.dispose()


@pytest.fixture
def sql_store(sql_env):
    return sql_env[0]


async def _competition(store, clock, status=S.UPCOMING, **overrides):
    now = clock.now()
    values = dict(
        title="Night Drive Remix",
        organizer_id=uuid.uuid4(),
        start_date=now - timedelta(days=10),
        submission_deadline=now - timedelta(minutes=1),
        round1_voting_end=now + timedelta(days=5),
        round2_voting_end=now + timedelta(days=10),
        status=status,
        status_changed_at=now,
    )
    values.update(overrides)
    return await store.add_competition(CompetitionRecord(**values))


async def _submissions(store, clock, competition, count):
    created = []
    for index in range(count):
        created.append(await store.add_submission(SubmissionRecord(
            competition_id=competition.id,
            user_id=uuid.uuid4(),
            mix_title=f"Take {index + 1}",
            audio_file_path=f"competitions/{competition.id}/take-{index + 1}.flac",
            submitted_at=clock.now() - timedelta(hours=count - index),
        )))
    return created


def _job_record(competition_id, clock, from_status=S.UPCOMING, to_status=S.OPEN_FOR_SUBMISSIONS):
    return JobExecutionRecord(
        competition_id=competition_id,
        from_status=from_status.value,
        to_status=to_status.value,
        job_name="test",
        outcome=JobOutcome.SUCCEEDED,
        attempts=1,
        last_attempted_at=clock.now(),
    )


class TestCompetitions:
    """Competition rows and status changes."""

    @pytest.mark.asyncio
    async def test_round_trip(self, sql_store, clock):
        created = await _competition(sql_store, clock)
        loaded = await sql_store.get_competition(created.id)

        assert loaded.title == "Night Drive Remix"
        assert loaded.status == S.UPCOMING
        assert loaded.submission_deadline == created.submission_deadline
        assert loaded.submission_deadline.tzinfo is not None
        assert [c.id for c in await sql_store.list_competitions_by_status(S.UPCOMING)] == [created.id]
        assert await sql_store.get_competition(uuid.uuid4()) is None

    @pytest.mark.asyncio
    async def test_advance_status_compare_and_set(self, sql_store, clock):
        competition = await _competition(sql_store, clock)

        updated = await sql_store.advance_status(
            competition.id,
            S.UPCOMING,
            S.OPEN_FOR_SUBMISSIONS,
            _job_record(competition.id, clock),
            changed_at=clock.now(),
        )
        assert updated.status == S.OPEN_FOR_SUBMISSIONS

        with pytest.raises(ConcurrencyConflict):
            await sql_store.advance_status(
                competition.id,
                S.UPCOMING,
                S.OPEN_FOR_SUBMISSIONS,
                _job_record(competition.id, clock),
                changed_at=clock.now(),
            )

        record = await sql_store.get_job_record(competition.id, S.UPCOMING)
        assert record.succeeded
        assert record.to_status == S.OPEN_FOR_SUBMISSIONS.value

    @pytest.mark.asyncio
    async def test_advance_clears_status_note(self, sql_store, clock):
        competition = await _competition(sql_store, clock)
        await sql_store.set_status_note(competition.id, "waiting on entries")
        assert (await sql_store.get_competition(competition.id)).status_note == "waiting on entries"

        updated = await sql_store.advance_status(
            competition.id,
            S.UPCOMING,
            S.OPEN_FOR_SUBMISSIONS,
            _job_record(competition.id, clock),
            changed_at=clock.now(),
        )
        assert updated.status_note is None


class TestAssignmentsAndVotes:
    """Assignment persistence and vote uniqueness."""

    @pytest.mark.asyncio
    async def test_assignments_saved_once(self, sql_store, clock):
        competition = await _competition(sql_store, clock, S.VOTING_ROUND1_SETUP)
        submissions = await _submissions(sql_store, clock, competition, 3)
        assignment = VotingAssignmentRecord(
            competition_id=competition.id,
            voter_id=submissions[0].user_id,
            voter_group_number=1,
            submission_ids=[submissions[1].id, submissions[2].id],
            created_at=clock.now(),
        )

        assert await sql_store.save_assignments(competition.id, [], [assignment]) is True
        assert await sql_store.save_assignments(competition.id, [], [assignment]) is False

        stored = await sql_store.get_assignment(competition.id, submissions[0].user_id)
        assert stored.submission_ids == [submissions[1].id, submissions[2].id]
        assert await sql_store.has_assignments(competition.id)

    @pytest.mark.asyncio
    async def test_duplicate_vote_rejected(self, sql_store, clock):
        competition = await _competition(sql_store, clock, S.VOTING_ROUND1_OPEN)
        submissions = await _submissions(sql_store, clock, competition, 2)
        voter = submissions[0].user_id

        def vote(score):
            return VoteRecord(
                competition_id=competition.id,
                submission_id=submissions[1].id,
                voter_id=voter,
                voting_round=1,
                score=score,
                cast_at=clock.now(),
            )

        await sql_store.add_vote(vote(71))
        with pytest.raises(VoteRejected):
            await sql_store.add_vote(vote(99))

        votes = await sql_store.list_votes(competition.id, 1)
        assert [v.score for v in votes] == [71]
        assert await sql_store.count_votes(competition.id, 1) == 1
        assert await sql_store.count_votes(competition.id, 2) == 0


class TestTallyAndJobs:
    """Tally markers and job bookkeeping."""

    @pytest.mark.asyncio
    async def test_round_tally_applied_once(self, sql_store, clock):
        competition = await _competition(sql_store, clock, S.VOTING_ROUND1_TALLYING)
        submissions = await _submissions(sql_store, clock, competition, 2)
        submissions[0].round1_score = 88.0
        submissions[0].advanced_to_round2 = True
        submissions[1].round1_score = 40.0
        submissions[1].status = SubmissionStatus.JUDGED

        assert await sql_store.save_round_tally(competition.id, 1, submissions, clock.now()) is True

        submissions[1].round1_score = 99.0
        assert await sql_store.save_round_tally(competition.id, 1, submissions, clock.now()) is False

        stored = {s.id: s for s in await sql_store.list_submissions(competition.id)}
        assert stored[submissions[0].id].advanced_to_round2 is True
        assert stored[submissions[1].id].round1_score == 40.0
        assert stored[submissions[1].id].status == SubmissionStatus.JUDGED
        assert (await sql_store.get_competition(competition.id)).round1_tallied_at is not None

    @pytest.mark.asyncio
    async def test_job_failures_accumulate(self, sql_store, clock):
        competition = await _competition(sql_store, clock, S.VOTING_ROUND1_SETUP)

        first = await sql_store.record_job_failure(
            competition.id, S.VOTING_ROUND1_SETUP, "scheduler", "too few entries", clock.now()
        )
        second = await sql_store.record_job_failure(
            competition.id, S.VOTING_ROUND1_SETUP, "scheduler", "still too few", clock.now()
        )

        assert first.attempts == 1
        assert second.attempts == 2
        assert second.last_error == "still too few"
        assert not second.succeeded


class TestAuditLog:
    """Events written by the store can be read back through EventStore."""

    @pytest.mark.asyncio
    async def test_status_change_logged(self, sql_env, clock):
        sql_store, session_maker = sql_env
        competition = await _competition(sql_store, clock)
        await sql_store.advance_status(
            competition.id,
            S.UPCOMING,
            S.OPEN_FOR_SUBMISSIONS,
            _job_record(competition.id, clock),
            changed_at=clock.now(),
        )
        await sql_store.log_event(EventType.COMPETITION_HELD, competition.id, {"reason": "test"})

        async with session_maker() as session:
            events = EventStore(session)
            assert await events.count_events(entity_id=competition.id) == 2
            assert await events.count_events(
                entity_id=competition.id,
                event_type=EventType.COMPETITION_STATUS_CHANGED,
            ) == 1
            history = await events.get_entity_history(
                "competition",
                competition.id,
                event_types=[EventType.COMPETITION_STATUS_CHANGED],
            )

        assert len(history) == 1
        assert history[0].payload["from_status"] == "upcoming"
        assert history[0].payload["to_status"] == "open_for_submissions"


class TestTransitionsOverSql:
    """The transition service drives a competition through real persistence."""

    @pytest.mark.asyncio
    async def test_close_submissions_and_open_round1(self, sql_store, settings, clock, notifier):
        competition = await _competition(sql_store, clock, S.OPEN_FOR_SUBMISSIONS)
        await _submissions(sql_store, clock, competition, 4)
        service = TransitionService(sql_store, settings, clock, notifier)

        result = await service.attempt_transition(
            competition.id,
            S.OPEN_FOR_SUBMISSIONS,
            Trigger.DEADLINE_ELAPSED,
        )
        assert result.to_status == S.VOTING_ROUND1_SETUP

        steps = await service.drive(competition.id)
        assert [s.to_status for s in steps] == [S.VOTING_ROUND1_OPEN]

        assignments = await sql_store.list_assignments(competition.id)
        assert len(assignments) == 4
        assert all(len(a.submission_ids) == 3 for a in assignments)
        submissions = await sql_store.list_submissions(competition.id)
        assert {s.status for s in submissions} == {SubmissionStatus.UNDER_REVIEW}
        stored = await sql_store.get_competition(competition.id)
        assert stored.round1_opened_at == clock.now()


