"""Ordered workflow stage tokens.

The workflow ``status`` column always holds one of these tokens and names the stage
the workflow is currently in. Stage comparisons are index comparisons over
``STAGE_ORDER``; nothing else in the package compares stage strings directly.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, Optional


class WorkflowStage(str, Enum):
    ICP = "step_1_icp"
    COMPETITORS = "step_2_competitors"
    SEEDS = "step_3_seeds"
    LONGTAILS = "step_4_longtails"
    FILTERING = "step_5_filtering"
    CLUSTERING = "step_6_clustering"
    VALIDATION = "step_7_validation"
    SUBTOPICS = "step_8_subtopics"
    ARTICLES = "step_9_articles"
    LINKING = "step_10_linking"
    COMPLETED = "completed"

    @classmethod
    def parse(cls, value: str) -> "WorkflowStage":
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"Unknown workflow stage: {value!r}") from None

    @property
    def position(self) -> int:
        return STAGE_ORDER.index(self)

    @property
    def step_number(self) -> Optional[int]:
        if self is WorkflowStage.COMPLETED:
            return None
        return self.position + 1

    @property
    def label(self) -> str:
        return STEP_LABELS[self]

    def is_at_or_past(self, other: "WorkflowStage") -> bool:
        return self.position >= other.position

    def is_past(self, other: "WorkflowStage") -> bool:
        return self.position > other.position

    def is_before(self, other: "WorkflowStage") -> bool:
        return self.position < other.position


STAGE_ORDER = tuple(WorkflowStage)

STEP_LABELS: Dict[WorkflowStage, str] = {
    WorkflowStage.ICP: "ICP definition",
    WorkflowStage.COMPETITORS: "Competitor analysis",
    WorkflowStage.SEEDS: "Seed keywords",
    WorkflowStage.LONGTAILS: "Longtail expansion",
    WorkflowStage.FILTERING: "Keyword filtering",
    WorkflowStage.CLUSTERING: "Topic clustering",
    WorkflowStage.VALIDATION: "Cluster validation",
    WorkflowStage.SUBTOPICS: "Subtopic approval",
    WorkflowStage.ARTICLES: "Article queuing",
    WorkflowStage.LINKING: "Article linking",
    WorkflowStage.COMPLETED: "Completed",
}

# Stages whose completion is reported by external step runners. Later stages are
# advanced only by the approval, queuing and linking processors.
EXTERNALLY_ADVANCED_STAGES = frozenset(STAGE_ORDER[: WorkflowStage.VALIDATION.position + 1])

MIN_RESET_STEP = 1
MAX_RESET_STEP = WorkflowStage.VALIDATION.position + 1


def next_stage(stage: WorkflowStage) -> Optional[WorkflowStage]:
    position = stage.position + 1
    if position >= len(STAGE_ORDER):
        return None
    return STAGE_ORDER[position]


def stage_for_reset_step(step: int) -> WorkflowStage:
    """Map a 1-based human rejection target onto its stage token."""

    if not isinstance(step, int) or isinstance(step, bool) or not MIN_RESET_STEP <= step <= MAX_RESET_STEP:
        raise ValueError(f"reset_to_step must be between {MIN_RESET_STEP} and {MAX_RESET_STEP}")
    return STAGE_ORDER[step - 1]


def parse_status(value: Optional[str]) -> Optional[WorkflowStage]:
    """Lenient variant of ``WorkflowStage.parse`` for rows read back from storage."""

    if value is None:
        return None
    try:
        return WorkflowStage(value)
    except ValueError:
        return None
