"""
Voting Engine - Round-1 assignment voting and round-2 finalist voting.
"""

from mixwarz.engines.voting.vote_service import VotingService

__all__ = [
    "VotingService",
]
