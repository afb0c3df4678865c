"""Handoff types for role-to-role transitions.

A HandoffRecord is emitted on every successful checkpoint transition and is
never mutated afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List

from ._ids import ProofId, TaskId
from ._time import _datetime_to_iso, _iso_to_datetime, _utcnow
from .checkpoints import Checkpoint, Role


@dataclass(frozen=True)
class HandoffRecord:
    """Append-only record of a role transition.

    Attributes:
        from_role: Role that completed the checkpoint.
        to_role: Role that picks up the task next.
        task_id: The task being handed off.
        checkpoint_completed: The checkpoint that was passed.
        proof_refs: IDs of the proofs that carried the checkpoint.
        timestamp: When the handoff happened.
    """

    from_role: Role
    to_role: Role
    task_id: TaskId
    checkpoint_completed: Checkpoint
    proof_refs: List[ProofId] = field(default_factory=list)
    timestamp: datetime = field(default_factory=_utcnow)


HANDOFF_FIELDS = (
    "from_role",
    "to_role",
    "task_id",
    "checkpoint_completed",
    "proof_refs",
    "timestamp",
)


def handoff_record_to_dict(record: HandoffRecord) -> Dict[str, Any]:
    """Convert HandoffRecord to a dictionary for YAML/JSON serialization."""
    return {
        "from_role": record.from_role.value,
        "to_role": record.to_role.value,
        "task_id": record.task_id,
        "checkpoint_completed": record.checkpoint_completed.value,
        "proof_refs": list(record.proof_refs),
        "timestamp": _datetime_to_iso(record.timestamp),
    }


def handoff_record_from_dict(data: Dict[str, Any]) -> HandoffRecord:
    """Parse HandoffRecord from a dictionary.

    Raises:
        KeyError: If a required field is missing.
        ValueError: If a role or checkpoint value is unknown.
    """
    return HandoffRecord(
        from_role=Role(data["from_role"]),
        to_role=Role(data["to_role"]),
        task_id=str(data["task_id"]),
        checkpoint_completed=Checkpoint(data["checkpoint_completed"]),
        proof_refs=[str(ref) for ref in data.get("proof_refs") or []],
        timestamp=_iso_to_datetime(data["timestamp"]),
    )
