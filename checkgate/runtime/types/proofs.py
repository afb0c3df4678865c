"""Proof types: immutable evidence attached to a (task, checkpoint) pair."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from ._ids import ProofId, TaskId, generate_proof_id
from ._time import _datetime_to_iso, _iso_to_datetime, _utcnow
from .checkpoints import Checkpoint, ProofKind, Role


@dataclass(frozen=True)
class Proof:
    """An artifact submitted as evidence that a criterion is met.

    Attributes:
        task_id: Task the proof belongs to.
        checkpoint: Checkpoint the proof was submitted for.
        kind: What the artifact is.
        ref: Opaque content reference (blob id or URL).
        submitted_by: Role that submitted the proof.
        passed: Result of the external check for signal kinds
            (test-output, lint-output, ...). None means no result was reported.
        summary: Optional short human-readable summary.
        id: Unique proof identifier.
        submitted_at: When the proof was recorded.
    """

    task_id: TaskId
    checkpoint: Checkpoint
    kind: ProofKind
    ref: str
    submitted_by: Role
    passed: Optional[bool] = None
    summary: Optional[str] = None
    id: ProofId = field(default_factory=generate_proof_id)
    submitted_at: datetime = field(default_factory=_utcnow)


def proof_to_dict(proof: Proof) -> Dict[str, Any]:
    """Convert Proof to a dictionary for JSONL serialization."""
    return {
        "id": proof.id,
        "task_id": proof.task_id,
        "checkpoint": proof.checkpoint.value,
        "kind": proof.kind.value,
        "ref": proof.ref,
        "submitted_by": proof.submitted_by.value,
        "passed": proof.passed,
        "summary": proof.summary,
        "submitted_at": _datetime_to_iso(proof.submitted_at),
    }


def proof_from_dict(data: Dict[str, Any]) -> Proof:
    """Parse Proof from a dictionary.

    Raises:
        KeyError: If a required field is missing.
        ValueError: If an enum value is unknown.
    """
    return Proof(
        id=data["id"],
        task_id=data["task_id"],
        checkpoint=Checkpoint(data["checkpoint"]),
        kind=ProofKind(data["kind"]),
        ref=data.get("ref", ""),
        submitted_by=Role(data["submitted_by"]),
        passed=data.get("passed"),
        summary=data.get("summary"),
        submitted_at=_iso_to_datetime(data.get("submitted_at")) or _utcnow(),
    )
