"""Task types for the gate lifecycle and its audit trail.

This module contains the Task record owned by the gate engine, the
TaskEvent audit entry, and their serialization functions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from ._ids import EscalationId, TaskId
from ._time import _datetime_to_iso, _iso_to_datetime, _utcnow
from .checkpoints import Checkpoint


class TaskStatus(str, Enum):
    """Status of a task's gate lifecycle."""

    ACTIVE = "active"
    ESCALATED = "escalated"  # Waiting on a human decision
    ROLLED_BACK = "rolled_back"  # Attempt budget exhausted, waiting on a human decision
    COMPLETED = "completed"
    ABANDONED = "abandoned"


TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.ABANDONED})
BLOCKED_STATUSES = frozenset({TaskStatus.ESCALATED, TaskStatus.ROLLED_BACK})


@dataclass
class Task:
    """A unit of work moving through the checkpoint sequence.

    Attributes:
        id: Unique task identifier.
        title: Human-readable title.
        current_checkpoint: The checkpoint whose exit criteria are being worked.
        status: Lifecycle status.
        created_at: When the task was accepted.
        updated_at: When the task last changed.
        attempts: Failed-evaluation counters keyed by checkpoint value.
            Counters of completed checkpoints are kept frozen.
        completed_checkpoints: Checkpoints passed so far, in order.
        skip_postmerge: If True, passing C3_PR completes the task.
        escalation_id: The outstanding escalation, if any.
        archived: Whether the task was moved to the archive area.
        labels: Free-form labels for filtering.
    """

    id: TaskId
    title: str
    current_checkpoint: Checkpoint = Checkpoint.C0_COMPREHENSION
    status: TaskStatus = TaskStatus.ACTIVE
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    attempts: Dict[str, int] = field(default_factory=dict)
    completed_checkpoints: List[Checkpoint] = field(default_factory=list)
    skip_postmerge: bool = False
    escalation_id: Optional[EscalationId] = None
    archived: bool = False
    labels: List[str] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_blocked(self) -> bool:
        return self.status in BLOCKED_STATUSES

    def attempts_for(self, checkpoint: Checkpoint) -> int:
        return self.attempts.get(checkpoint.value, 0)


@dataclass
class TaskEvent:
    """A single entry in a task's audit log.

    Attributes:
        task_id: The task this event belongs to.
        kind: Event type (task_created, proofs_submitted, evaluation_failed,
            checkpoint_advanced, escalation_raised, escalation_resolved,
            task_rolled_back, task_completed, task_abandoned, task_archived).
        ts: When the event happened.
        checkpoint: The checkpoint the event relates to, if any.
        payload: Event-specific details.
        seq: Monotonic per-task sequence number, assigned on append.
    """

    task_id: TaskId
    kind: str
    ts: datetime = field(default_factory=_utcnow)
    checkpoint: Optional[Checkpoint] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    seq: int = 0


# =============================================================================
# Serialization Functions
# =============================================================================


def task_to_dict(task: Task) -> Dict[str, Any]:
    """Convert Task to a dictionary for serialization.

    Args:
        task: The Task to convert.

    Returns:
        Dictionary representation suitable for JSON serialization.
    """
    return {
        "id": task.id,
        "title": task.title,
        "current_checkpoint": task.current_checkpoint.value,
        "status": task.status.value,
        "created_at": _datetime_to_iso(task.created_at),
        "updated_at": _datetime_to_iso(task.updated_at),
        "attempts": dict(task.attempts),
        "completed_checkpoints": [cp.value for cp in task.completed_checkpoints],
        "skip_postmerge": task.skip_postmerge,
        "escalation_id": task.escalation_id,
        "archived": task.archived,
        "labels": list(task.labels),
    }


def task_from_dict(data: Dict[str, Any]) -> Task:
    """Parse Task from a dictionary.

    Args:
        data: Dictionary with Task fields.

    Returns:
        Parsed Task instance.

    Raises:
        KeyError: If ``id`` is missing.
        ValueError: If an enum value is unknown.
    """
    now = _utcnow()
    return Task(
        id=data["id"],
        title=data.get("title", ""),
        current_checkpoint=Checkpoint(
            data.get("current_checkpoint", Checkpoint.C0_COMPREHENSION.value)
        ),
        status=TaskStatus(data.get("status", TaskStatus.ACTIVE.value)),
        created_at=_iso_to_datetime(data.get("created_at")) or now,
        updated_at=_iso_to_datetime(data.get("updated_at")) or now,
        attempts={k: int(v) for k, v in data.get("attempts", {}).items()},
        completed_checkpoints=[
            Checkpoint(cp) for cp in data.get("completed_checkpoints", [])
        ],
        skip_postmerge=bool(data.get("skip_postmerge", False)),
        escalation_id=data.get("escalation_id"),
        archived=bool(data.get("archived", False)),
        labels=list(data.get("labels", [])),
    )


def task_event_to_dict(event: TaskEvent) -> Dict[str, Any]:
    """Convert TaskEvent to a dictionary for JSONL serialization."""
    return {
        "seq": event.seq,
        "task_id": event.task_id,
        "ts": _datetime_to_iso(event.ts),
        "kind": event.kind,
        "checkpoint": event.checkpoint.value if event.checkpoint else None,
        "payload": dict(event.payload),
    }


def task_event_from_dict(data: Dict[str, Any]) -> TaskEvent:
    """Parse TaskEvent from a dictionary."""
    checkpoint = data.get("checkpoint")
    return TaskEvent(
        task_id=data.get("task_id", ""),
        kind=data.get("kind", ""),
        ts=_iso_to_datetime(data.get("ts")) or _utcnow(),
        checkpoint=Checkpoint(checkpoint) if checkpoint else None,
        payload=dict(data.get("payload", {})),
        seq=int(data.get("seq", 0)),
    )
