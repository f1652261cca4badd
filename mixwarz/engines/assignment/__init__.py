"""
Assignment Engine - Round-1 cohorts and peer-review assignments.
"""

from mixwarz.engines.assignment.grouping import partition_into_groups, plan_group_count
from mixwarz.engines.assignment.round1_assigner import (
    AssignmentPlan,
    Round1Assigner,
    Round1AssignmentService,
    dedupe_by_user,
)

__all__ = [
    "partition_into_groups",
    "plan_group_count",
    "AssignmentPlan",
    "Round1Assigner",
    "Round1AssignmentService",
    "dedupe_by_user",
]
