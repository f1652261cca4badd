"""Unit tests for round-1 grouping and assignment."""

import uuid
from collections import Counter
from datetime import datetime, timedelta, timezone

import pytest

from mixwarz.engines.assignment import (
    Round1Assigner,
    Round1AssignmentService,
    dedupe_by_user,
    partition_into_groups,
    plan_group_count,
)
from mixwarz.kernel.errors import AssignmentsLocked, InsufficientParticipants
from mixwarz.kernel.models.competition import CompetitionStatus, SubmissionStatus
from mixwarz.kernel.models.event_log import EventType
from mixwarz.schemas.competition import SubmissionRecord
from mixwarz.schemas.voting import VoteRecord

BASE_TIME = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _submissions(count, competition_id=None):
    competition_id = competition_id or uuid.uuid4()
    return [
        SubmissionRecord(
            competition_id=competition_id,
            user_id=uuid.uuid4(),
            mix_title=f"Mix {i}",
            audio_file_path=f"mixes/{i}.wav",
            submitted_at=BASE_TIME + timedelta(minutes=i),
        )
        for i in range(count)
    ]


def _received(plan):
    return Counter(sid for a in plan.assignments for sid in a.submission_ids)


class TestGrouping:
    """Tests for cohort sizing and partitioning."""

    def test_group_count(self):
        assert plan_group_count(0, 20) == 0
        assert plan_group_count(5, 20) == 1
        assert plan_group_count(20, 20) == 1
        assert plan_group_count(45, 20) == 3

    def test_group_count_rejects_bad_target(self):
        with pytest.raises(ValueError):
            plan_group_count(10, 0)

    def test_partition_is_balanced_and_contiguous(self):
        groups = partition_into_groups(list(range(10)), 3)
        assert [len(g) for g in groups] == [4, 3, 3]
        assert groups[0] == [0, 1, 2, 3]
        assert sum(groups, []) == list(range(10))

    def test_partition_without_groups(self):
        assert partition_into_groups([1, 2, 3], 0) == []


class TestDedupe:
    """Tests for keeping one submission per user."""

    def test_keeps_earliest_submission(self):
        user_id = uuid.uuid4()
        subs = _submissions(3)
        early = subs[0].model_copy(update={"user_id": user_id})
        late = subs[2].model_copy(update={"user_id": user_id})
        kept, dropped = dedupe_by_user([late, subs[1], early])
        assert early in kept
        assert dropped == [late]
        assert len(kept) == 2


class TestRound1Assigner:
    """Tests for plan construction."""

    def test_five_submissions_three_voters_each(self):
        subs = _submissions(5)
        plan = Round1Assigner(voters_per_submission=3, seed=7).build_plan(subs[0].competition_id, subs, BASE_TIME)

        assert plan.voters_per_submission == 3
        assert len(plan.assignments) == 5
        assert all(len(a.submission_ids) == 3 for a in plan.assignments)
        assert all(count == 3 for count in _received(plan).values())
        assert set(_received(plan)) == {s.id for s in subs}

    def test_no_voter_gets_own_submission(self):
        subs = _submissions(12)
        owner = {s.id: s.user_id for s in subs}
        plan = Round1Assigner(voters_per_submission=4, seed=3).build_plan(subs[0].competition_id, subs, BASE_TIME)
        for assignment in plan.assignments:
            assert all(owner[sid] != assignment.voter_id for sid in assignment.submission_ids)
            assert len(set(assignment.submission_ids)) == 4

    def test_same_seed_same_plan(self):
        subs = _submissions(9)
        assigner = Round1Assigner(voters_per_submission=3)
        first = assigner.build_plan(subs[0].competition_id, subs, BASE_TIME, seed=99)
        second = assigner.build_plan(subs[0].competition_id, subs, BASE_TIME, seed=99)
        assert [(a.voter_id, a.submission_ids) for a in first.assignments] == [
            (a.voter_id, a.submission_ids) for a in second.assignments
        ]

    def test_disqualified_excluded(self):
        subs = _submissions(5)
        subs[0].status = SubmissionStatus.DISQUALIFIED
        plan = Round1Assigner(voters_per_submission=2, seed=1).build_plan(subs[0].competition_id, subs, BASE_TIME)
        assert subs[0].id not in _received(plan)
        assert subs[0].user_id not in {a.voter_id for a in plan.assignments}
        assert len(plan.participants) == 4

    def test_duplicate_submissions_skipped(self):
        subs = _submissions(5)
        subs[4].user_id = subs[0].user_id
        plan = Round1Assigner(voters_per_submission=2, seed=1).build_plan(subs[0].competition_id, subs, BASE_TIME)
        assert [s.id for s in plan.skipped_duplicates] == [subs[4].id]
        assert len(plan.assignments) == 4

    def test_too_few_participants(self):
        subs = _submissions(2)
        with pytest.raises(InsufficientParticipants) as exc_info:
            Round1Assigner(min_participants=3).build_plan(subs[0].competition_id, subs, BASE_TIME)
        assert exc_info.value.found == 2
        assert exc_info.value.required == 3

    def test_voters_capped_below_participants(self):
        subs = _submissions(3)
        plan = Round1Assigner(voters_per_submission=5, seed=2).build_plan(subs[0].competition_id, subs, BASE_TIME)
        assert plan.voters_per_submission == 2
        assert all(len(a.submission_ids) == 2 for a in plan.assignments)

    def test_peers_come_from_own_or_next_group(self):
        subs = _submissions(45)
        plan = Round1Assigner(voters_per_submission=3, target_group_size=20, seed=5).build_plan(
            subs[0].competition_id, subs, BASE_TIME
        )
        assert plan.group_count == 3
        sizes = Counter(g.group_number for g in plan.groups)
        assert sorted(sizes.values()) == [15, 15, 15]

        group_of = {g.submission_id: g.group_number for g in plan.groups}
        for assignment in plan.assignments:
            own = assignment.voter_group_number
            allowed = {own, own % plan.group_count + 1}
            assert {group_of[sid] for sid in assignment.submission_ids} <= allowed

    @pytest.mark.parametrize("seed", [1, 5, 42])
    def test_small_target_grows_groups_to_fit_voters(self, seed):
        subs = _submissions(10)
        plan = Round1Assigner(voters_per_submission=3, target_group_size=2, seed=seed).build_plan(
            subs[0].competition_id, subs, BASE_TIME
        )
        assert plan.group_count == 3
        sizes = Counter(g.group_number for g in plan.groups)
        assert sorted(sizes.values()) == [3, 3, 4]

        group_of = {g.submission_id: g.group_number for g in plan.groups}
        for assignment in plan.assignments:
            own = assignment.voter_group_number
            allowed = {own, own % plan.group_count + 1}
            assert {group_of[sid] for sid in assignment.submission_ids} <= allowed

    def test_participants_move_to_under_review(self):
        subs = _submissions(4)
        plan = Round1Assigner(voters_per_submission=2, seed=1).build_plan(subs[0].competition_id, subs, BASE_TIME)
        assert all(s.status == SubmissionStatus.UNDER_REVIEW for s in plan.participants)
        assert all(s.status == SubmissionStatus.SUBMITTED for s in subs)


class TestRound1AssignmentService:
    """Tests for persisting assignments exactly once."""

    @pytest.mark.asyncio
    async def test_generates_once(self, store, settings, clock, competition_factory, submission_factory):
        competition = await competition_factory(CompetitionStatus.VOTING_ROUND1_SETUP)
        await submission_factory(competition, count=5)
        service = Round1AssignmentService(store, settings, clock)

        plan = await service.ensure_assignments(competition)
        assert plan is not None
        assert len(await store.list_assignments(competition.id)) == 5
        assert len(store.events_of(competition.id, EventType.ASSIGNMENTS_GENERATED)) == 1

        again = await service.ensure_assignments(competition)
        assert again is None
        assert len(store.events_of(competition.id, EventType.ASSIGNMENTS_GENERATED)) == 1

        stored = await store.list_submissions(competition.id)
        assert all(s.status == SubmissionStatus.UNDER_REVIEW for s in stored)

    @pytest.mark.asyncio
    async def test_force_regenerates_before_votes(
        self, store, settings, clock, competition_factory, submission_factory
    ):
        competition = await competition_factory(CompetitionStatus.VOTING_ROUND1_SETUP)
        await submission_factory(competition, count=5)
        service = Round1AssignmentService(store, settings, clock)
        await service.ensure_assignments(competition)

        plan = await service.ensure_assignments(competition, force=True)
        assert plan is not None
        assert len(await store.list_assignments(competition.id)) == 5

    @pytest.mark.asyncio
    async def test_force_locked_after_votes(
        self, store, settings, clock, competition_factory, submission_factory
    ):
        competition = await competition_factory(CompetitionStatus.VOTING_ROUND1_OPEN)
        await submission_factory(competition, count=5)
        service = Round1AssignmentService(store, settings, clock)
        await service.ensure_assignments(competition)

        assignment = (await store.list_assignments(competition.id))[0]
        await store.add_vote(VoteRecord(
            competition_id=competition.id,
            submission_id=assignment.submission_ids[0],
            voter_id=assignment.voter_id,
            voting_round=1,
            score=70,
            cast_at=clock.now(),
        ))

        with pytest.raises(AssignmentsLocked):
            await service.ensure_assignments(competition, force=True)
