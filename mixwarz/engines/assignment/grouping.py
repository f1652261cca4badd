"""
Partitioning helpers for round-1 cohorts.

Groups are contiguous slices of the shuffled participant order whose sizes
differ by at most one.
"""

import math
from typing import List, Sequence, TypeVar

T = TypeVar("T")


def plan_group_count(participants: int, target_group_size: int) -> int:
    """Number of cohorts needed so none exceeds the target size."""
    if participants <= 0:
        return 0
    if target_group_size < 1:
        raise ValueError("target_group_size must be positive")
    return max(1, math.ceil(participants / target_group_size))


def partition_into_groups(items: Sequence[T], group_count: int) -> List[List[T]]:
    """
    Split items into `group_count` contiguous, balanced groups.

    The first `len(items) % group_count` groups get one extra item.
    """
    if group_count <= 0:
        return []
    base, extra = divmod(len(items), group_count)
    groups: List[List[T]] = []
    start = 0
    for index in range(group_count):
        size = base + (1 if index < extra else 0)
        groups.append(list(items[start:start + size]))
        start += size
    return groups
