"""
Pydantic schemas: store records and API request/response views.
"""

from mixwarz.schemas.common import ErrorResponse, HealthResponse
from mixwarz.schemas.competition import CompetitionRecord, StoreRecord, SubmissionRecord
from mixwarz.schemas.voting import (
    JobExecutionRecord,
    SubmissionGroupRecord,
    VoteCreate,
    VoteRecord,
    VotingAssignmentRecord,
    WinnerSelection,
)
from mixwarz.schemas.results import (
    AssignedSubmissionView,
    AssignmentView,
    CompetitionStateView,
    FinalistView,
    RankedEntry,
    ResultsView,
    VoteResponse,
)

__all__ = [
    # Common
    "ErrorResponse",
    "HealthResponse",
    # Records
    "StoreRecord",
    "CompetitionRecord",
    "SubmissionRecord",
    "SubmissionGroupRecord",
    "VotingAssignmentRecord",
    "VoteRecord",
    "JobExecutionRecord",
    # Requests
    "VoteCreate",
    "WinnerSelection",
    # Views
    "CompetitionStateView",
    "FinalistView",
    "RankedEntry",
    "ResultsView",
    "AssignedSubmissionView",
    "AssignmentView",
    "VoteResponse",
]
