"""
errors.py - Error taxonomy for the checkpoint gate runtime.

Every error here is recoverable by the caller: an operation that raises one
of them leaves the task's state untouched. StorageUnavailable is the only
infrastructure error and callers may retry it.
"""

from __future__ import annotations

from typing import Dict, List, Optional


class GateError(Exception):
    """Base exception for gate engine errors."""

    pass


class TaskNotFound(GateError):
    """Raised when a task id is unknown."""

    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Task '{task_id}' not found")


class InvalidCheckpoint(GateError):
    """Raised when proofs are submitted for a checkpoint that is not current."""

    def __init__(self, task_id: str, submitted: str, current: str):
        self.task_id = task_id
        self.submitted = submitted
        self.current = current
        super().__init__(
            f"Task '{task_id}' is at {current}; proofs for {submitted} are not accepted"
        )


class InvalidRoleTransition(GateError):
    """Raised when a handoff between two roles is not allowed."""

    def __init__(self, from_role: str, to_role: str):
        self.from_role = from_role
        self.to_role = to_role
        super().__init__(f"Handoff from '{from_role}' to '{to_role}' is not allowed")


class DuplicateEscalation(GateError):
    """Raised when a task already has an unresolved escalation."""

    def __init__(self, task_id: str, escalation_id: str):
        self.task_id = task_id
        self.escalation_id = escalation_id
        super().__init__(
            f"Task '{task_id}' already has unresolved escalation '{escalation_id}'"
        )


class EscalationNotFound(GateError):
    """Raised when an escalation id is unknown."""

    def __init__(self, escalation_id: str):
        self.escalation_id = escalation_id
        super().__init__(f"Escalation '{escalation_id}' not found")


class AlreadyResolved(GateError):
    """Raised when a decision is recorded twice on the same escalation."""

    def __init__(self, escalation_id: str, decision: str):
        self.escalation_id = escalation_id
        self.decision = decision
        super().__init__(f"Escalation '{escalation_id}' was already resolved as '{decision}'")


class CriteriaUnsatisfied(GateError):
    """Raised by advance when the current checkpoint's criteria are not met.

    Carries the missing criterion ids and, for each, the proof kinds that
    would satisfy it.
    """

    def __init__(
        self,
        task_id: str,
        checkpoint: str,
        missing: List[str],
        missing_kinds: Optional[Dict[str, List[str]]] = None,
    ):
        self.task_id = task_id
        self.checkpoint = checkpoint
        self.missing = list(missing)
        self.missing_kinds = dict(missing_kinds or {})
        details = []
        for criterion_id in self.missing:
            kinds = self.missing_kinds.get(criterion_id)
            if kinds:
                details.append(f"{criterion_id} (needs {' or '.join(kinds)})")
            else:
                details.append(criterion_id)
        super().__init__(
            f"Task '{task_id}' cannot leave {checkpoint}; missing: {', '.join(details)}"
        )


class TaskBlocked(GateError):
    """Raised when a task waits on an unresolved escalation."""

    def __init__(self, task_id: str, status: str, escalation_id: Optional[str]):
        self.task_id = task_id
        self.status = status
        self.escalation_id = escalation_id
        super().__init__(
            f"Task '{task_id}' is {status}; resolve escalation '{escalation_id}' first"
        )


class TaskClosed(GateError):
    """Raised when a mutation targets a completed or abandoned task."""

    def __init__(self, task_id: str, status: str):
        self.task_id = task_id
        self.status = status
        super().__init__(f"Task '{task_id}' is {status}")


class HandoffFormatError(GateError):
    """Raised when a serialized handoff record cannot be decoded."""

    def __init__(self, errors: List[str]):
        self.errors = errors
        super().__init__(f"Invalid handoff record: {'; '.join(errors)}")


class StorageUnavailable(GateError):
    """Raised when the proof store or handoff log cannot be read or written.

    Retryable. The operation that raised it never advanced a checkpoint.
    """

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.cause = cause
        msg = f"Storage unavailable during {operation}"
        if cause is not None:
            msg += f": {cause}"
        super().__init__(msg)


class TaskNotClosed(GateError):
    """Raised when an operation needs a completed or abandoned task."""

    def __init__(self, task_id: str, status: str):
        self.task_id = task_id
        self.status = status
        super().__init__(f"Task '{task_id}' is {status}; only closed tasks can be archived")
