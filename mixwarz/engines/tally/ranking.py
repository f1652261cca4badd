"""
Score aggregation and ranking primitives shared by both rounds.
"""

import math
from typing import Callable, List, Optional, Sequence, Tuple, TypeVar

T = TypeVar("T")


def mean_score(scores: Sequence[float]) -> Optional[float]:
    """Arithmetic mean, or None when nothing was scored."""
    if not scores:
        return None
    return math.fsum(scores) / len(scores)


def competition_rank(items: Sequence[T], key: Callable[[T], object]) -> List[Tuple[int, T]]:
    """
    Standard competition ranking ("1224"), highest key first.

    Tied items share a rank and the next rank skips the tie size:
    keys [95, 90, 90, 80] give ranks [1, 2, 2, 4]. Input order is kept
    within a tie.
    """
    ordered = sorted(items, key=key, reverse=True)
    ranked: List[Tuple[int, T]] = []
    previous = None
    rank = 0
    for position, item in enumerate(ordered, start=1):
        value = key(item)
        if position == 1 or value != previous:
            rank = position
            previous = value
        ranked.append((rank, item))
    return ranked


def top_with_ties(ranked: Sequence[Tuple[int, T]], cutoff: int) -> List[T]:
    """Items ranked within the cutoff, including everything tied with the last place."""
    return [item for rank, item in ranked if rank <= cutoff]
