"""
Task endpoints for the gate API.

Provides REST endpoints for:
- Creating and listing tasks
- Submitting proofs and evaluating the current checkpoint
- Advancing, abandoning, escalating and archiving tasks
- Reading a task's proofs, handoff log and audit events
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Query, Response
from pydantic import BaseModel, Field

from ...runtime.errors import GateError
from ...runtime.handoff_io import dump_handoff_log
from ...runtime.types import (
    Proof,
    ProofKind,
    RiskTag,
    Role,
    Task,
    evaluation_result_to_dict,
    escalation_to_dict,
    handoff_record_to_dict,
    parse_checkpoint,
    proof_to_dict,
    task_event_to_dict,
    task_to_dict,
)
from ._common import get_engine, raise_http

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tasks", tags=["tasks"])


# =============================================================================
# Pydantic Models
# =============================================================================


class TaskCreateRequest(BaseModel):
    """Request to create a new task."""

    title: str = Field(..., min_length=1, description="Human-readable title")
    skip_postmerge: Optional[bool] = Field(
        None, description="Complete after C3_PR (defaults to configuration)"
    )
    labels: List[str] = Field(default_factory=list)


class TaskResponse(BaseModel):
    """Task snapshot."""

    id: str
    title: str
    current_checkpoint: str
    status: str
    created_at: str
    updated_at: str
    attempts: Dict[str, int]
    completed_checkpoints: List[str]
    skip_postmerge: bool
    escalation_id: Optional[str] = None
    archived: bool = False
    labels: List[str] = Field(default_factory=list)


class TaskListResponse(BaseModel):
    """Response for list tasks endpoint."""

    tasks: List[TaskResponse]


class ProofInput(BaseModel):
    """A proof as submitted by a role or an external runner."""

    kind: ProofKind
    ref: str = Field(..., min_length=1, description="Blob id or URL of the artifact")
    submitted_by: Role
    passed: Optional[bool] = Field(None, description="Result for test/lint/review signals")
    summary: Optional[str] = None


class ProofSubmitRequest(BaseModel):
    """Request to submit proofs for the current checkpoint."""

    checkpoint: str = Field(..., description="Checkpoint name or short label, e.g. C2")
    proofs: List[ProofInput] = Field(..., min_length=1)


class EvaluationResponse(BaseModel):
    """Result of evaluating a checkpoint."""

    checkpoint: str
    satisfied: bool
    missing: List[str]
    missing_kinds: Dict[str, List[str]]
    outcome: Optional[str] = None
    attempts: int = 0
    escalation_id: Optional[str] = None
    proof_ids: List[str] = Field(default_factory=list)


class AdvanceRequest(BaseModel):
    """Optional body for advance."""

    from_checkpoint: Optional[str] = None


class AbandonRequest(BaseModel):
    reason: Optional[str] = None


class EscalateRequest(BaseModel):
    """Request a human decision on an active task."""

    reason: str = Field(..., min_length=1)
    risk_tag: RiskTag = RiskTag.MANUAL


class EscalationResponse(BaseModel):
    """Escalation record."""

    id: str
    task_id: str
    checkpoint: str
    reason: str
    risk_tag: str
    raised_at: str
    decision: Optional[str] = None
    resolved_at: Optional[str] = None
    resolved_by: Optional[str] = None
    note: Optional[str] = None


def _task_response(task: Task) -> TaskResponse:
    return TaskResponse(**task_to_dict(task))


# =============================================================================
# Task Endpoints
# =============================================================================


@router.post("", response_model=TaskResponse, status_code=201)
def create_task(request: TaskCreateRequest):
    """Create a new task at C0_COMPREHENSION."""
    try:
        task = get_engine().create_task(
            request.title,
            skip_postmerge=request.skip_postmerge,
            labels=request.labels,
        )
    except (GateError, ValueError) as e:
        raise_http(e)
    return _task_response(task)


@router.get("", response_model=TaskListResponse)
def list_tasks(
    status: Optional[str] = Query(None, description="Filter by status"),
    include_archived: bool = False,
):
    """List tasks, oldest first."""
    try:
        tasks = get_engine().list_tasks(status=status, include_archived=include_archived)
    except (GateError, ValueError) as e:
        raise_http(e)
    return TaskListResponse(tasks=[_task_response(t) for t in tasks])


@router.get("/{task_id}", response_model=TaskResponse)
def get_task(task_id: str):
    """Get a task snapshot including attempt counters.

    Raises:
        404: Task not found.
    """
    try:
        task = get_engine().get_task(task_id)
    except GateError as e:
        raise_http(e)
    return _task_response(task)


@router.post("/{task_id}/proofs", response_model=EvaluationResponse)
def submit_proofs(task_id: str, request: ProofSubmitRequest):
    """Submit proofs for the current checkpoint and evaluate it.

    Raises:
        404: Task not found.
        409: Not the current checkpoint, or the task is blocked or closed.
        503: Proofs could not be recorded.
    """
    try:
        checkpoint = parse_checkpoint(request.checkpoint)
        proofs = [
            Proof(
                task_id=task_id,
                checkpoint=checkpoint,
                kind=p.kind,
                ref=p.ref,
                submitted_by=p.submitted_by,
                passed=p.passed,
                summary=p.summary,
            )
            for p in request.proofs
        ]
        result = get_engine().submit_proofs(task_id, checkpoint, proofs)
    except (GateError, ValueError) as e:
        raise_http(e)

    return EvaluationResponse(
        **evaluation_result_to_dict(result),
        proof_ids=[p.id for p in proofs],
    )


@router.get("/{task_id}/evaluation", response_model=EvaluationResponse)
def evaluate_task(task_id: str):
    """Evaluate the current checkpoint without changing the task."""
    try:
        result = get_engine().evaluate(task_id)
    except GateError as e:
        raise_http(e)
    return EvaluationResponse(**evaluation_result_to_dict(result))


@router.get("/{task_id}/proofs")
def list_proofs(task_id: str, checkpoint: Optional[str] = None) -> Dict[str, Any]:
    """List a task's proofs in submission order."""
    try:
        proofs = get_engine().list_proofs(task_id, checkpoint=checkpoint)
    except (GateError, ValueError) as e:
        raise_http(e)
    return {"proofs": [proof_to_dict(p) for p in proofs]}


@router.post("/{task_id}/advance", response_model=TaskResponse)
def advance_task(task_id: str, request: Optional[AdvanceRequest] = None):
    """Advance the task past its current checkpoint.

    Raises:
        404: Task not found.
        409: Task blocked or closed, or from_checkpoint is ahead of the task.
        422: Criteria not met; details list the missing proof kinds.
        503: Storage unavailable; nothing was advanced.
    """
    from_checkpoint = request.from_checkpoint if request else None
    try:
        task = get_engine().advance(task_id, from_checkpoint=from_checkpoint)
    except (GateError, ValueError) as e:
        raise_http(e)
    return _task_response(task)


@router.post("/{task_id}/abandon", response_model=TaskResponse)
def abandon_task(task_id: str, request: Optional[AbandonRequest] = None):
    """Abandon the task. Repeating the call is a no-op."""
    try:
        task = get_engine().abandon(task_id, reason=request.reason if request else None)
    except GateError as e:
        raise_http(e)
    return _task_response(task)


@router.post("/{task_id}/escalate", response_model=EscalationResponse, status_code=201)
def escalate_task(task_id: str, request: EscalateRequest):
    """Raise a manual escalation on the task."""
    try:
        escalation = get_engine().escalate(task_id, request.reason, request.risk_tag)
    except GateError as e:
        raise_http(e)
    return EscalationResponse(**escalation_to_dict(escalation))


@router.post("/{task_id}/archive", response_model=TaskResponse)
def archive_task(task_id: str):
    """Move a completed or abandoned task to the archive."""
    try:
        task = get_engine().archive(task_id)
    except GateError as e:
        raise_http(e)
    return _task_response(task)


@router.get("/{task_id}/handoffs")
def list_handoffs(task_id: str, format: str = Query("json", pattern="^(json|yaml)$")):
    """Get the task's handoff log as JSON or as the raw YAML stream."""
    try:
        records = get_engine().list_handoffs(task_id)
    except GateError as e:
        raise_http(e)

    if format == "yaml":
        return Response(content=dump_handoff_log(records), media_type="application/x-yaml")
    return {"handoffs": [handoff_record_to_dict(r) for r in records]}


@router.get("/{task_id}/events")
def list_events(task_id: str) -> Dict[str, Any]:
    """Get the task's audit events in sequence order."""
    try:
        events = get_engine().list_events(task_id)
    except GateError as e:
        raise_http(e)
    return {"events": [task_event_to_dict(e) for e in events]}
