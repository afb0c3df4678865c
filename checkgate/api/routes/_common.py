"""Shared helpers for the gate API routers: engine access and error mapping."""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, NoReturn

from fastapi import HTTPException

from ...runtime.errors import (
    AlreadyResolved,
    CriteriaUnsatisfied,
    DuplicateEscalation,
    EscalationNotFound,
    GateError,
    HandoffFormatError,
    InvalidCheckpoint,
    InvalidRoleTransition,
    StorageUnavailable,
    TaskBlocked,
    TaskClosed,
    TaskNotClosed,
    TaskNotFound,
)

logger = logging.getLogger(__name__)

# Exception type -> HTTP status
_STATUS_CODES = {
    TaskNotFound: 404,
    EscalationNotFound: 404,
    InvalidCheckpoint: 409,
    InvalidRoleTransition: 409,
    DuplicateEscalation: 409,
    AlreadyResolved: 409,
    TaskBlocked: 409,
    TaskClosed: 409,
    TaskNotClosed: 409,
    CriteriaUnsatisfied: 422,
    HandoffFormatError: 422,
    StorageUnavailable: 503,
}


def get_engine():
    """Get the engine the running app was created with."""
    from ..server import get_engine as _server_engine

    return _server_engine()


def _error_code(exc: Exception) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", type(exc).__name__).lower()


def _error_details(exc: Exception) -> Dict[str, Any]:
    if isinstance(exc, CriteriaUnsatisfied):
        return {
            "task_id": exc.task_id,
            "checkpoint": exc.checkpoint,
            "missing": exc.missing,
            "missing_kinds": exc.missing_kinds,
        }
    if isinstance(exc, HandoffFormatError):
        return {"errors": exc.errors}
    if isinstance(exc, StorageUnavailable):
        return {"operation": exc.operation, "retryable": True}

    details = {}
    for attr in ("task_id", "escalation_id", "status", "submitted", "current", "decision", "from_role", "to_role"):
        value = getattr(exc, attr, None)
        if value is not None:
            details[attr] = value
    return details


def raise_http(exc: Exception) -> NoReturn:
    """Re-raise a gate or validation error as a structured HTTPException."""
    if isinstance(exc, GateError):
        status_code = _STATUS_CODES.get(type(exc), 409)
        if status_code >= 500:
            logger.error("Gate storage failure: %s", exc)
        raise HTTPException(
            status_code=status_code,
            detail={
                "error": _error_code(exc),
                "message": str(exc),
                "details": _error_details(exc),
            },
        ) from exc
    if isinstance(exc, ValueError):
        raise HTTPException(
            status_code=422,
            detail={
                "error": "invalid_request",
                "message": str(exc),
                "details": {},
            },
        ) from exc
    raise exc
