"""
Competition store contract and its adapters.
"""

from mixwarz.kernel.store.base import CompetitionStore
from mixwarz.kernel.store.memory import InMemoryCompetitionStore
from mixwarz.kernel.store.sql import SqlCompetitionStore

__all__ = [
    "CompetitionStore",
    "InMemoryCompetitionStore",
    "SqlCompetitionStore",
]
