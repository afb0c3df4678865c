"""Escalation types: blocking requests for a human decision."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from ._ids import EscalationId, TaskId, generate_escalation_id
from ._time import _datetime_to_iso, _iso_to_datetime, _utcnow
from .checkpoints import Checkpoint


class Decision(str, Enum):
    """Human decision recorded on an escalation."""

    APPROVED = "approved"  # Force the blocked checkpoint to pass
    REJECTED = "rejected"  # Abandon the task
    NEEDS_REWORK = "needs-rework"  # Back to active, attempts reset


class RiskTag(str, Enum):
    """Structured reason an escalation was raised."""

    ATTEMPT_THRESHOLD = "attempt-threshold"
    ATTEMPTS_EXHAUSTED = "attempts-exhausted"
    POLICY_SIGNOFF = "policy-signoff"
    MANUAL = "manual"


@dataclass
class Escalation:
    """A durable request for a human decision.

    Attributes:
        task_id: The blocked task.
        checkpoint: The checkpoint that could not be passed automatically.
        reason: Free-text reason.
        risk_tag: Structured reason.
        id: Unique escalation identifier.
        raised_at: When the escalation was raised.
        resolved_at: When a decision was recorded (None while open).
        decision: The recorded decision (None while open).
        resolved_by: Who recorded the decision.
        note: Optional note attached to the decision.
    """

    task_id: TaskId
    checkpoint: Checkpoint
    reason: str
    risk_tag: RiskTag = RiskTag.MANUAL
    id: EscalationId = field(default_factory=generate_escalation_id)
    raised_at: datetime = field(default_factory=_utcnow)
    resolved_at: Optional[datetime] = None
    decision: Optional[Decision] = None
    resolved_by: Optional[str] = None
    note: Optional[str] = None

    @property
    def is_resolved(self) -> bool:
        return self.decision is not None


def escalation_to_dict(escalation: Escalation) -> Dict[str, Any]:
    """Convert Escalation to its record dictionary."""
    return {
        "id": escalation.id,
        "task_id": escalation.task_id,
        "checkpoint": escalation.checkpoint.value,
        "reason": escalation.reason,
        "risk_tag": escalation.risk_tag.value,
        "raised_at": _datetime_to_iso(escalation.raised_at),
        "decision": escalation.decision.value if escalation.decision else None,
        "resolved_at": _datetime_to_iso(escalation.resolved_at),
        "resolved_by": escalation.resolved_by,
        "note": escalation.note,
    }


def escalation_from_dict(data: Dict[str, Any]) -> Escalation:
    """Parse Escalation from its record dictionary."""
    decision = data.get("decision")
    return Escalation(
        id=data["id"],
        task_id=data["task_id"],
        checkpoint=Checkpoint(data["checkpoint"]),
        reason=data.get("reason", ""),
        risk_tag=RiskTag(data.get("risk_tag", RiskTag.MANUAL.value)),
        raised_at=_iso_to_datetime(data.get("raised_at")) or _utcnow(),
        resolved_at=_iso_to_datetime(data.get("resolved_at")),
        decision=Decision(decision) if decision else None,
        resolved_by=data.get("resolved_by"),
        note=data.get("note"),
    )
