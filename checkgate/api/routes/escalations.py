"""
Escalation endpoints for the gate API.

Provides REST endpoints for:
- Listing open, resolved and overdue escalations
- Recording a human decision on an escalation
"""

from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter
from pydantic import BaseModel

from ...runtime.errors import GateError
from ...runtime.types import Decision, escalation_to_dict
from ._common import get_engine, raise_http
from .tasks import EscalationResponse, TaskResponse, _task_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/escalations", tags=["escalations"])


class EscalationListResponse(BaseModel):
    """Response for list escalations endpoint."""

    escalations: List[EscalationResponse]


class ResolveRequest(BaseModel):
    """A human decision on an escalation."""

    decision: Decision
    resolved_by: Optional[str] = None
    note: Optional[str] = None


@router.get("", response_model=EscalationListResponse)
def list_escalations(open_only: bool = False, overdue: bool = False, task_id: Optional[str] = None):
    """List escalations, oldest first.

    Args:
        open_only: Only unresolved escalations.
        overdue: Only open escalations older than the configured SLA.
        task_id: Only escalations of this task.
    """
    engine = get_engine()
    try:
        if overdue:
            escalations = engine.overdue_escalations()
            if task_id is not None:
                escalations = [e for e in escalations if e.task_id == task_id]
        else:
            escalations = engine.list_escalations(open_only=open_only, task_id=task_id)
    except GateError as e:
        raise_http(e)
    return EscalationListResponse(
        escalations=[EscalationResponse(**escalation_to_dict(e)) for e in escalations]
    )


@router.get("/{escalation_id}", response_model=EscalationResponse)
def get_escalation(escalation_id: str):
    """Get one escalation record."""
    try:
        escalation = get_engine().get_escalation(escalation_id)
    except GateError as e:
        raise_http(e)
    return EscalationResponse(**escalation_to_dict(escalation))


@router.post("/{escalation_id}/resolve", response_model=TaskResponse)
def resolve_escalation(escalation_id: str, request: ResolveRequest):
    """Record a decision and return the task it was applied to.

    Raises:
        404: Escalation not found.
        409: Escalation already resolved.
        503: Storage unavailable.
    """
    try:
        task = get_engine().resolve_escalation(
            escalation_id,
            request.decision,
            resolved_by=request.resolved_by,
            note=request.note,
        )
    except GateError as e:
        raise_http(e)
    logger.info("Escalation %s resolved as %s via API", escalation_id, request.decision.value)
    return _task_response(task)
