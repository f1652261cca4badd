"""
Competition round endpoints.
"""

import uuid
from typing import List

from fastapi import APIRouter, HTTPException, status

from mixwarz.api.deps import CurrentUserId, Queries, Store, Transitions, Voting
from mixwarz.schemas.common import ErrorResponse
from mixwarz.schemas.results import (
    AssignmentView,
    CompetitionStateView,
    FinalistView,
    ResultsView,
    VoteResponse,
)
from mixwarz.schemas.voting import VoteCreate, VoteRecord, WinnerSelection

router = APIRouter(
    responses={
        404: {"model": ErrorResponse, "description": "Competition not found"},
        409: {"model": ErrorResponse, "description": "Not available in the current phase"},
    },
)


def _vote_response(vote: VoteRecord) -> VoteResponse:
    return VoteResponse(
        vote_id=vote.id,
        submission_id=vote.submission_id,
        voting_round=vote.voting_round,
        score=vote.score,
        cast_at=vote.cast_at,
    )


@router.get("/{competition_id}/state", response_model=CompetitionStateView)
async def get_competition_state(competition_id: uuid.UUID, queries: Queries):
    """Current lifecycle status, next deadline and any hold note."""
    return await queries.get_state(competition_id)


@router.get("/{competition_id}/finalists", response_model=List[FinalistView])
async def get_finalists(competition_id: uuid.UUID, queries: Queries):
    """Round-2 finalists with time-limited listening URLs."""
    return await queries.get_finalists(competition_id)


@router.get("/{competition_id}/results", response_model=ResultsView)
async def get_results(competition_id: uuid.UUID, queries: Queries):
    """Final standings and the podium."""
    return await queries.get_results(competition_id)


@router.get("/{competition_id}/round1/assignment", response_model=AssignmentView)
async def get_round1_assignment(
    competition_id: uuid.UUID,
    user_id: CurrentUserId,
    queries: Queries,
):
    """The caller's anonymized round-1 listening list."""
    return await queries.get_voter_assignment(competition_id, user_id)


@router.post(
    "/{competition_id}/round1/votes",
    response_model=VoteResponse,
    status_code=status.HTTP_201_CREATED,
)
async def cast_round1_vote(
    competition_id: uuid.UUID,
    data: VoteCreate,
    user_id: CurrentUserId,
    voting: Voting,
):
    """Score one submission from the caller's round-1 list."""
    vote = await voting.cast_round1_vote(competition_id, user_id, data)
    return _vote_response(vote)


@router.post(
    "/{competition_id}/round2/votes",
    response_model=VoteResponse,
    status_code=status.HTTP_201_CREATED,
)
async def cast_round2_vote(
    competition_id: uuid.UUID,
    data: VoteCreate,
    user_id: CurrentUserId,
    voting: Voting,
):
    """Score one finalist in round 2."""
    vote = await voting.cast_round2_vote(competition_id, user_id, data)
    return _vote_response(vote)


@router.post("/{competition_id}/winner", response_model=ResultsView)
async def select_winner(
    competition_id: uuid.UUID,
    data: WinnerSelection,
    user_id: CurrentUserId,
    store: Store,
    transitions: Transitions,
    queries: Queries,
):
    """Resolve a tie for first place. Organizer only."""
    competition = await store.get_competition(competition_id)
    if competition is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Competition not found")
    if competition.organizer_id != user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the organizer can select the winner",
        )
    await transitions.select_winner(competition_id, data.submission_id, actor_id=user_id)
    return await queries.get_results(competition_id)
