"""Checkpoint, role and proof-kind vocabularies.

The checkpoint sequence is fixed; everything else about a checkpoint
(criteria, owner, entry requirements) lives in the checklist table loaded by
``checkgate.config.checkpoint_registry``.
"""

from __future__ import annotations

from enum import Enum
from typing import List, Optional


class Checkpoint(str, Enum):
    """Validation gates a task passes through, in order."""

    C0_COMPREHENSION = "C0_COMPREHENSION"
    C1_PLAN = "C1_PLAN"
    C2_IMPLEMENTATION = "C2_IMPLEMENTATION"
    C3_PR = "C3_PR"
    C4_POSTMERGE = "C4_POSTMERGE"

    @property
    def index(self) -> int:
        return CHECKPOINT_SEQUENCE.index(self)

    @property
    def short(self) -> str:
        """Short label, e.g. "C2"."""
        return self.value.split("_", 1)[0]


CHECKPOINT_SEQUENCE: List[Checkpoint] = [
    Checkpoint.C0_COMPREHENSION,
    Checkpoint.C1_PLAN,
    Checkpoint.C2_IMPLEMENTATION,
    Checkpoint.C3_PR,
    Checkpoint.C4_POSTMERGE,
]


def next_checkpoint(checkpoint: Checkpoint) -> Optional[Checkpoint]:
    """Return the immediate successor, or None after the last checkpoint."""
    idx = checkpoint.index + 1
    if idx >= len(CHECKPOINT_SEQUENCE):
        return None
    return CHECKPOINT_SEQUENCE[idx]


def previous_checkpoint(checkpoint: Checkpoint) -> Optional[Checkpoint]:
    """Return the immediate predecessor, or None for C0."""
    idx = checkpoint.index - 1
    if idx < 0:
        return None
    return CHECKPOINT_SEQUENCE[idx]


def parse_checkpoint(value: str) -> Checkpoint:
    """Parse a checkpoint from its full name or short label ("C2").

    Raises:
        ValueError: If the value names no checkpoint.
    """
    if isinstance(value, Checkpoint):
        return value
    text = str(value).strip().upper()
    for checkpoint in CHECKPOINT_SEQUENCE:
        if text in (checkpoint.value, checkpoint.short):
            return checkpoint
    raise ValueError(f"Unknown checkpoint: {value!r}")


class Role(str, Enum):
    """Agent roles that own checkpoints and receive handoffs."""

    MANAGER = "manager"
    PLANNER = "planner"
    IMPLEMENTER = "implementer"
    TESTER = "tester"
    REVIEWER = "reviewer"


class ProofKind(str, Enum):
    """Kinds of evidence a proof can carry."""

    SCOPE_STATEMENT = "scope-statement"
    PLAN_DOCUMENT = "plan-document"
    RISK_ASSESSMENT = "risk-assessment"
    DIFF = "diff"
    TEST_OUTPUT = "test-output"
    LINT_OUTPUT = "lint-output"
    STATIC_ANALYSIS_OUTPUT = "static-analysis-output"
    REVIEW_APPROVAL = "review-approval"
    MONITORING_SNAPSHOT = "monitoring-snapshot"
