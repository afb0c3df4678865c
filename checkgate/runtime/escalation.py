"""
escalation.py - Escalation Router: durable human-decision requests.

The router records escalations and decisions; it has no decision logic of
its own. The gate engine applies a recorded decision to the task. At most one
unresolved escalation exists per task.

Usage:
    from checkgate.runtime.escalation import EscalationRouter

    router = EscalationRouter(tasks_dir)
    escalation = router.raise_escalation(task, task.current_checkpoint,
                                         "lint failed three times",
                                         RiskTag.ATTEMPTS_EXHAUSTED)
    router.resolve(escalation.id, Decision.APPROVED, resolved_by="alice")
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional

from . import storage
from .errors import AlreadyResolved, DuplicateEscalation, EscalationNotFound
from .notify import EscalationNotifier, LogNotifier, deliver
from .types import Checkpoint, Decision, Escalation, RiskTag, Task, TaskId
from .types._time import _utcnow

logger = logging.getLogger(__name__)


class EscalationRouter:
    """Persists escalations under the task store and notifies a sink.

    Args:
        tasks_dir: Root of the task store.
        notifier: Where raised and resolved escalations are reported.
    """

    def __init__(self, tasks_dir: Path, notifier: Optional[EscalationNotifier] = None):
        self._tasks_dir = tasks_dir
        self._notifier = notifier or LogNotifier()

    def pending_for(self, task_id: TaskId) -> Optional[Escalation]:
        """The task's unresolved escalation, if any."""
        pending = storage.list_escalations(self._tasks_dir, task_id=task_id, open_only=True)
        return pending[0] if pending else None

    def raise_escalation(
        self,
        task: Task,
        checkpoint: Checkpoint,
        reason: str,
        risk_tag: RiskTag = RiskTag.MANUAL,
    ) -> Escalation:
        """Record a new escalation for a task.

        Raises:
            DuplicateEscalation: If the task already has an unresolved escalation.
            StorageUnavailable: If the record cannot be written.
        """
        existing = self.pending_for(task.id)
        if existing is not None:
            raise DuplicateEscalation(task.id, existing.id)

        escalation = Escalation(
            task_id=task.id,
            checkpoint=checkpoint,
            reason=reason,
            risk_tag=RiskTag(risk_tag),
        )
        storage.write_escalation(escalation, self._tasks_dir)
        logger.debug("Persisted escalation %s for task %s", escalation.id, task.id)
        deliver(self._notifier, escalation)
        return escalation

    def get(self, escalation_id: str) -> Escalation:
        """Look up an escalation.

        Raises:
            EscalationNotFound: If the id is unknown.
        """
        escalation = storage.read_escalation(escalation_id, self._tasks_dir)
        if escalation is None:
            raise EscalationNotFound(escalation_id)
        return escalation

    def resolve(
        self,
        escalation_id: str,
        decision: Decision,
        resolved_by: Optional[str] = None,
        note: Optional[str] = None,
    ) -> Escalation:
        """Record a decision on an open escalation.

        Returns:
            The resolved escalation.

        Raises:
            EscalationNotFound: If the id is unknown.
            AlreadyResolved: If a decision was already recorded.
            StorageUnavailable: If the record cannot be written.
        """
        escalation = self.get(escalation_id)
        if escalation.is_resolved:
            raise AlreadyResolved(escalation_id, escalation.decision.value)

        resolved = replace(
            escalation,
            decision=Decision(decision),
            resolved_at=_utcnow(),
            resolved_by=resolved_by,
            note=note,
        )
        storage.write_escalation(resolved, self._tasks_dir)
        deliver(self._notifier, resolved, resolved=True)
        return resolved

    def list_escalations(self, open_only: bool = False, task_id: Optional[TaskId] = None) -> List[Escalation]:
        return storage.list_escalations(self._tasks_dir, task_id=task_id, open_only=open_only)

    def overdue(self, sla_hours: Optional[float], now: Optional[datetime] = None) -> List[Escalation]:
        """Open escalations older than the SLA. Empty when no SLA is configured."""
        if sla_hours is None:
            return []
        cutoff = (now or _utcnow()) - timedelta(hours=sla_hours)
        return [e for e in self.list_escalations(open_only=True) if e.raised_at <= cutoff]
