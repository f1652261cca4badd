"""
Tally Engine - Round-1 finalist selection and round-2 final standings.
"""

from mixwarz.engines.tally.ranking import competition_rank, mean_score, top_with_ties
from mixwarz.engines.tally.round1 import (
    NON_VOTER_FEEDBACK,
    Round1Tally,
    Round1TallyResult,
    Round1TallyService,
)
from mixwarz.engines.tally.round2 import (
    PODIUM_SIZE,
    Round2Tally,
    Round2TallyResult,
    Round2TallyService,
    apply_manual_selection,
)

__all__ = [
    "competition_rank",
    "mean_score",
    "top_with_ties",
    "NON_VOTER_FEEDBACK",
    "Round1Tally",
    "Round1TallyResult",
    "Round1TallyService",
    "PODIUM_SIZE",
    "Round2Tally",
    "Round2TallyResult",
    "Round2TallyService",
    "apply_manual_selection",
]
