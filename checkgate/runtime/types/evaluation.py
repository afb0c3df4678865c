"""Evaluation result types shared by the criteria evaluator and the engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ._ids import EscalationId
from .checkpoints import Checkpoint


class AttemptOutcome(str, Enum):
    """What the attempt controller decided after a failed evaluation."""

    RETRY = "retry"
    ESCALATE = "escalate"
    ROLLBACK = "rollback"


@dataclass
class EvaluationResult:
    """Outcome of judging a checkpoint's criteria against proofs.

    ``missing`` lists unsatisfied criterion ids in checklist order;
    ``missing_kinds`` maps each of them to the proof kinds that would
    satisfy it. The attempt fields are only set by ``submit_proofs`` when the
    evaluation failed.
    """

    checkpoint: Checkpoint
    satisfied: bool
    missing: List[str] = field(default_factory=list)
    missing_kinds: Dict[str, List[str]] = field(default_factory=dict)
    outcome: Optional[AttemptOutcome] = None
    attempts: int = 0
    escalation_id: Optional[EscalationId] = None

    def describe_missing(self) -> str:
        """Render the missing criteria for error messages."""
        parts = []
        for criterion_id in self.missing:
            kinds = self.missing_kinds.get(criterion_id) or []
            if kinds:
                parts.append(f"{criterion_id} (needs {' or '.join(kinds)})")
            else:
                parts.append(criterion_id)
        return ", ".join(parts)


def evaluation_result_to_dict(result: EvaluationResult) -> Dict[str, Any]:
    """Convert EvaluationResult to a dictionary for API responses."""
    return {
        "checkpoint": result.checkpoint.value,
        "satisfied": result.satisfied,
        "missing": list(result.missing),
        "missing_kinds": {k: list(v) for k, v in result.missing_kinds.items()},
        "outcome": result.outcome.value if result.outcome else None,
        "attempts": result.attempts,
        "escalation_id": result.escalation_id,
    }
