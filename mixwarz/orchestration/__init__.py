"""Orchestration layer - lifecycle state machine, transitions, scheduler, queries."""

from mixwarz.orchestration.state_machine import Trigger, next_state
from mixwarz.orchestration.transitions import TransitionResult, TransitionService
from mixwarz.orchestration.scheduler import CompetitionScheduler, CycleReport
from mixwarz.orchestration.queries import CompetitionQueries

__all__ = [
    "Trigger",
    "next_state",
    "TransitionResult",
    "TransitionService",
    "CompetitionScheduler",
    "CycleReport",
    "CompetitionQueries",
]
