"""
types - Core type definitions for the checkpoint gate runtime

This package provides the data types shared by the gate engine and its
collaborators: checkpoints, roles and proof kinds, tasks and their audit
events, proofs, escalations, handoff records and evaluation results.

All types are dataclasses with ``*_to_dict`` / ``*_from_dict`` functions so
they can be persisted as JSON (or YAML for handoffs) without a framework.

Usage:
    from checkgate.runtime.types import (
        Checkpoint, CHECKPOINT_SEQUENCE, next_checkpoint, previous_checkpoint,
        Role, ProofKind,
        Task, TaskStatus, TaskEvent, task_to_dict, task_from_dict,
        Proof, proof_to_dict, proof_from_dict,
        Escalation, Decision, RiskTag, escalation_to_dict, escalation_from_dict,
        HandoffRecord, handoff_record_to_dict, handoff_record_from_dict,
        EvaluationResult, AttemptOutcome,
        generate_task_id,
    )
"""

from __future__ import annotations

from ._ids import (
    EscalationId,
    ProofId,
    TaskId,
    generate_escalation_id,
    generate_proof_id,
    generate_task_id,
)
from .checkpoints import (
    CHECKPOINT_SEQUENCE,
    Checkpoint,
    ProofKind,
    Role,
    next_checkpoint,
    parse_checkpoint,
    previous_checkpoint,
)
from .escalations import (
    Decision,
    Escalation,
    RiskTag,
    escalation_from_dict,
    escalation_to_dict,
)
from .evaluation import AttemptOutcome, EvaluationResult, evaluation_result_to_dict
from .handoff import (
    HANDOFF_FIELDS,
    HandoffRecord,
    handoff_record_from_dict,
    handoff_record_to_dict,
)
from .proofs import Proof, proof_from_dict, proof_to_dict
from .tasks import (
    BLOCKED_STATUSES,
    TERMINAL_STATUSES,
    Task,
    TaskEvent,
    TaskStatus,
    task_event_from_dict,
    task_event_to_dict,
    task_from_dict,
    task_to_dict,
)

__all__ = [
    # IDs
    "TaskId",
    "ProofId",
    "EscalationId",
    "generate_task_id",
    "generate_proof_id",
    "generate_escalation_id",
    # Vocabularies
    "Checkpoint",
    "CHECKPOINT_SEQUENCE",
    "next_checkpoint",
    "previous_checkpoint",
    "parse_checkpoint",
    "Role",
    "ProofKind",
    # Tasks
    "Task",
    "TaskStatus",
    "TaskEvent",
    "TERMINAL_STATUSES",
    "BLOCKED_STATUSES",
    "task_to_dict",
    "task_from_dict",
    "task_event_to_dict",
    "task_event_from_dict",
    # Proofs
    "Proof",
    "proof_to_dict",
    "proof_from_dict",
    # Escalations
    "Escalation",
    "Decision",
    "RiskTag",
    "escalation_to_dict",
    "escalation_from_dict",
    # Handoffs
    "HandoffRecord",
    "HANDOFF_FIELDS",
    "handoff_record_to_dict",
    "handoff_record_from_dict",
    # Evaluation
    "EvaluationResult",
    "AttemptOutcome",
    "evaluation_result_to_dict",
]
