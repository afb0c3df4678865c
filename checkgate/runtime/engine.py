"""
engine.py - GateEngine: the checkpoint gate state machine.

This module provides the GateEngine singleton that owns every task's
checkpoint lifecycle. All consumers (API, CLI, tests) should go through the
engine rather than writing the task store directly.

A task moves through C0_COMPREHENSION .. C4_POSTMERGE one checkpoint per
call. Proofs are recorded with submit_proofs(); advance() moves the task only
when the current checkpoint's criteria are met. Failed evaluations count
against an attempt budget and end in an escalation (a blocking request for a
human decision) or a rollback. Every successful transition emits exactly one
HandoffRecord.

Usage:
    from checkgate.runtime.engine import GateEngine, get_gate_engine

    engine = GateEngine.get_instance()
    task = engine.create_task("Fix flaky login test")
    engine.submit_proofs(task.id, "C0", [
        Proof(task.id, Checkpoint.C0_COMPREHENSION, ProofKind.SCOPE_STATEMENT,
              "blob:scope-1", Role.MANAGER),
    ])
    task = engine.advance(task.id)   # now at C1_PLAN, handoff manager -> planner
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Tuple, Union

from ..config.checkpoint_registry import CheckpointRegistry, get_registry
from ..config.runtime_config import GateConfig, get_gate_config
from . import handoff_io, storage
from .attempts import AttemptController
from .criteria import evaluate_with_entry, satisfying_proof_ids
from .errors import (
    AlreadyResolved,
    CriteriaUnsatisfied,
    DuplicateEscalation,
    InvalidCheckpoint,
    TaskBlocked,
    TaskClosed,
    TaskNotClosed,
    TaskNotFound,
)
from .escalation import EscalationRouter
from .notify import EscalationNotifier
from .types import (
    CHECKPOINT_SEQUENCE,
    AttemptOutcome,
    Checkpoint,
    Decision,
    Escalation,
    EvaluationResult,
    HandoffRecord,
    Proof,
    RiskTag,
    Task,
    TaskEvent,
    TaskId,
    TaskStatus,
    generate_task_id,
    next_checkpoint,
    parse_checkpoint,
)
from .types._time import _utcnow

# Module logger
logger = logging.getLogger(__name__)

CheckpointLike = Union[Checkpoint, str]


class GateEngine:
    """Checkpoint gate state machine over a file-backed task store.

    Mutations of one task are serialized by a per-task lock; unrelated tasks
    never contend. Every mutation either completes or leaves the task as it
    was: proofs and handoffs are appended before the task document is
    rewritten, so a storage failure never advances a checkpoint.

    Args:
        tasks_dir: Root of the task store. Defaults to the configured one.
        config: Runtime configuration. Defaults to gate.yaml plus environment.
        registry: Checkpoint checklist. Defaults to checkpoints.yaml.
        notifier: Escalation sink. Defaults to logging.
    """

    _instance: Optional["GateEngine"] = None

    def __init__(
        self,
        tasks_dir: Optional[Path] = None,
        config: Optional[GateConfig] = None,
        registry: Optional[CheckpointRegistry] = None,
        notifier: Optional[EscalationNotifier] = None,
    ):
        self._config = config or get_gate_config()
        self._tasks_dir = Path(tasks_dir) if tasks_dir is not None else Path(self._config.tasks_dir)
        self._registry = registry or get_registry()
        self._attempts = AttemptController.from_config(self._config)
        self._router = EscalationRouter(self._tasks_dir, notifier)
        self._locks: Dict[TaskId, threading.Lock] = {}
        self._locks_lock = threading.Lock()

    @classmethod
    def get_instance(cls, tasks_dir: Optional[Path] = None) -> "GateEngine":
        """Get the singleton instance."""
        if cls._instance is None:
            cls._instance = cls(tasks_dir)
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Reset the singleton (for testing)."""
        cls._instance = None

    @property
    def tasks_dir(self) -> Path:
        return self._tasks_dir

    @property
    def registry(self) -> CheckpointRegistry:
        return self._registry

    @property
    def config(self) -> GateConfig:
        return self._config

    # =========================================================================
    # Internal helpers
    # =========================================================================

    @contextmanager
    def _task_lock(self, task_id: TaskId) -> Iterator[None]:
        with self._locks_lock:
            lock = self._locks.get(task_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[task_id] = lock
        with lock:
            yield

    def _load(self, task_id: TaskId) -> Task:
        task = storage.read_task(task_id, self._tasks_dir)
        if task is None:
            raise TaskNotFound(task_id)
        return task

    def _save(self, task: Task) -> None:
        task.updated_at = _utcnow()
        storage.write_task(task, self._tasks_dir)

    def _emit(self, task: Task, kind: str, checkpoint: Optional[Checkpoint] = None, **payload) -> None:
        storage.append_event(
            TaskEvent(task_id=task.id, kind=kind, checkpoint=checkpoint, payload=payload),
            self._tasks_dir,
        )

    @staticmethod
    def _check_mutable(task: Task) -> None:
        if task.is_terminal:
            raise TaskClosed(task.id, task.status.value)
        if task.is_blocked:
            raise TaskBlocked(task.id, task.status.value, task.escalation_id)

    def _evaluate(self, task: Task) -> Tuple[EvaluationResult, List[Proof]]:
        """Evaluate the current checkpoint against every stored proof for it."""
        definition = self._registry.get(task.current_checkpoint)
        proofs = storage.read_proofs(task.id, self._tasks_dir, checkpoint=task.current_checkpoint)
        result = evaluate_with_entry(definition, proofs, task.completed_checkpoints)
        return result, proofs

    def _open_escalation(
        self, task: Task, checkpoint: Checkpoint, reason: str, risk_tag: RiskTag
    ) -> Escalation:
        """Raise an escalation, adopting one left open by an interrupted call.

        Only an open escalation for the same checkpoint and risk tag is
        adopted. Any other open escalation no longer describes the task and
        is closed as rejected by the system first.
        """
        pending = self._router.pending_for(task.id)
        if pending is not None:
            if pending.checkpoint == checkpoint and pending.risk_tag == risk_tag:
                logger.info("Reusing open escalation %s for task %s", pending.id, task.id)
                return pending
            logger.warning(
                "Closing stale escalation %s for task %s (%s, %s)",
                pending.id,
                task.id,
                pending.checkpoint.value,
                pending.risk_tag.value,
            )
            self._router.resolve(
                pending.id,
                Decision.REJECTED,
                resolved_by="system",
                note="superseded by a new escalation",
            )
            self._emit(
                task,
                "escalation_resolved",
                pending.checkpoint,
                escalation_id=pending.id,
                decision=Decision.REJECTED.value,
                resolved_by="system",
            )
        return self._router.raise_escalation(task, checkpoint, reason, risk_tag)

    def _block(self, task: Task, status: TaskStatus, escalation: Escalation) -> None:
        task.status = status
        task.escalation_id = escalation.id
        self._save(task)
        self._emit(
            task,
            "escalation_raised",
            escalation.checkpoint,
            escalation_id=escalation.id,
            risk_tag=escalation.risk_tag.value,
            reason=escalation.reason,
        )

    def _regress(self, task: Task, target: Checkpoint) -> None:
        """Move a task back to ``target``; later checkpoints start over."""
        if target == task.current_checkpoint:
            return
        task.current_checkpoint = target
        task.completed_checkpoints = [
            cp for cp in task.completed_checkpoints if cp.index < target.index
        ]
        for cp in CHECKPOINT_SEQUENCE[target.index:]:
            task.attempts.pop(cp.value, None)

    def _completes_task(self, task: Task, checkpoint: Checkpoint) -> bool:
        nxt = next_checkpoint(checkpoint)
        if nxt is None:
            return True
        return task.skip_postmerge and self._registry.get(nxt).optional

    def _find_unrecorded_handoff(self, task: Task) -> Optional[HandoffRecord]:
        """A handoff appended for the current checkpoint after the task was last saved.

        Left behind when a previous transition wrote its handoff but failed
        to rewrite the task; the retry adopts it instead of emitting another.
        """
        handoffs = handoff_io.read_handoffs(task.id, self._tasks_dir)
        if not handoffs:
            return None
        last = handoffs[-1]
        if last.checkpoint_completed == task.current_checkpoint and last.timestamp > task.updated_at:
            return last
        return None

    def _pass_checkpoint(self, task: Task, proof_refs: List[str], forced: bool = False) -> Task:
        """Complete the current checkpoint: one handoff, then one step forward."""
        checkpoint = task.current_checkpoint
        completes = self._completes_task(task, checkpoint)
        from_role = self._registry.owner(checkpoint)
        if completes:
            to_role = self._registry.completion_role
        else:
            to_role = self._registry.owner(next_checkpoint(checkpoint))

        record = self._find_unrecorded_handoff(task)
        if record is None:
            record = handoff_io.to_record(
                task, from_role, to_role, proof_refs=proof_refs, registry=self._registry
            )
            handoff_io.append_handoff(record, self._tasks_dir)

        if checkpoint not in task.completed_checkpoints:
            task.completed_checkpoints.append(checkpoint)
        task.escalation_id = None
        if completes:
            task.status = TaskStatus.COMPLETED
        else:
            task.status = TaskStatus.ACTIVE
            task.current_checkpoint = next_checkpoint(checkpoint)
        self._save(task)

        self._emit(
            task,
            "checkpoint_advanced",
            checkpoint,
            from_role=record.from_role.value,
            to_role=record.to_role.value,
            proof_refs=list(record.proof_refs),
            forced=forced,
        )
        logger.info(
            "Task %s passed %s (%s -> %s)%s",
            task.id,
            checkpoint.value,
            record.from_role.value,
            record.to_role.value,
            " by override" if forced else "",
        )
        if completes:
            self._emit(task, "task_completed", checkpoint)
            logger.info("Task %s completed", task.id)
        return task

    # =========================================================================
    # Task Lifecycle
    # =========================================================================

    def create_task(
        self,
        title: str,
        skip_postmerge: Optional[bool] = None,
        labels: Optional[List[str]] = None,
    ) -> Task:
        """Accept a new task at C0_COMPREHENSION.

        Args:
            title: Human-readable title.
            skip_postmerge: Complete the task after C3_PR. Defaults to config.
            labels: Free-form labels.

        Raises:
            ValueError: If the title is empty.
            StorageUnavailable: If the task cannot be written.
        """
        if not title or not title.strip():
            raise ValueError("Task title must not be empty")

        task = Task(
            id=generate_task_id(),
            title=title.strip(),
            skip_postmerge=self._config.skip_postmerge if skip_postmerge is None else skip_postmerge,
            labels=list(labels or []),
        )
        with self._task_lock(task.id):
            storage.create_task_dir(task.id, self._tasks_dir)
            storage.write_task(task, self._tasks_dir)
            self._emit(task, "task_created", task.current_checkpoint, title=task.title)
        logger.info("Created task %s: %s", task.id, task.title)
        return task

    def submit_proofs(
        self,
        task_id: TaskId,
        checkpoint: CheckpointLike,
        proofs: Sequence[Proof],
    ) -> EvaluationResult:
        """Record proofs for the current checkpoint and evaluate it.

        A failed evaluation counts against the checkpoint's attempt budget;
        the attempt outcome is applied before returning.

        Args:
            task_id: The task.
            checkpoint: Must be the task's current checkpoint.
            proofs: Proofs to record. Each must name this task and checkpoint.

        Returns:
            The evaluation, with outcome and attempt count when it failed.

        Raises:
            TaskNotFound: Unknown task.
            TaskClosed: Task is completed or abandoned.
            TaskBlocked: Task is escalated or rolled back.
            InvalidCheckpoint: ``checkpoint`` is not the current checkpoint.
            ValueError: No proofs, or a proof belongs to another task.
            StorageUnavailable: Proofs could not be recorded; nothing changed.
        """
        checkpoint = parse_checkpoint(checkpoint)
        if not proofs:
            raise ValueError("At least one proof is required")

        with self._task_lock(task_id):
            task = self._load(task_id)
            # Checkpoint mismatch wins over every task state
            if checkpoint != task.current_checkpoint:
                raise InvalidCheckpoint(task.id, checkpoint.value, task.current_checkpoint.value)
            self._check_mutable(task)
            for proof in proofs:
                if proof.task_id != task.id:
                    raise ValueError(f"Proof {proof.id} belongs to task '{proof.task_id}'")
                if proof.checkpoint != checkpoint:
                    raise InvalidCheckpoint(task.id, proof.checkpoint.value, checkpoint.value)

            storage.append_proofs(task.id, list(proofs), self._tasks_dir)
            self._emit(
                task,
                "proofs_submitted",
                checkpoint,
                proof_ids=[p.id for p in proofs],
                kinds=[p.kind.value for p in proofs],
            )

            result, _ = self._evaluate(task)
            if result.satisfied:
                result.attempts = task.attempts_for(checkpoint)
                logger.info("Task %s satisfies %s", task.id, checkpoint.value)
                return result

            outcome, count = self._attempts.record_failure(task, checkpoint)
            result.outcome = outcome
            result.attempts = count
            missing = result.describe_missing()

            if outcome == AttemptOutcome.RETRY:
                self._save(task)
                self._emit(task, "evaluation_failed", checkpoint, attempts=count, missing=result.missing)
                logger.info(
                    "Task %s failed %s (attempt %d): missing %s",
                    task.id,
                    checkpoint.value,
                    count,
                    missing,
                )
            elif outcome == AttemptOutcome.ESCALATE:
                escalation = self._open_escalation(
                    task,
                    checkpoint,
                    f"{checkpoint.short} failed {count} times; missing {missing}",
                    RiskTag.ATTEMPT_THRESHOLD,
                )
                self._emit(task, "evaluation_failed", checkpoint, attempts=count, missing=result.missing)
                self._block(task, TaskStatus.ESCALATED, escalation)
                result.escalation_id = escalation.id
            else:
                escalation = self._open_escalation(
                    task,
                    checkpoint,
                    f"{checkpoint.short} failed {count} times, attempt budget exhausted; "
                    f"missing {missing}",
                    RiskTag.ATTEMPTS_EXHAUSTED,
                )
                target = self._attempts.rollback_checkpoint(checkpoint)
                self._regress(task, target)
                self._emit(task, "evaluation_failed", checkpoint, attempts=count, missing=result.missing)
                self._block(task, TaskStatus.ROLLED_BACK, escalation)
                self._emit(task, "task_rolled_back", target, from_checkpoint=checkpoint.value)
                result.escalation_id = escalation.id
                logger.warning(
                    "Task %s rolled back at %s after %d failed attempts (now at %s)",
                    task.id,
                    checkpoint.value,
                    count,
                    target.value,
                )
            return result

    def advance(self, task_id: TaskId, from_checkpoint: Optional[CheckpointLike] = None) -> Task:
        """Move a task past its current checkpoint if the criteria are met.

        Idempotent: a failed call changes nothing, and a call naming a
        checkpoint the task already passed returns the task unchanged.

        Args:
            task_id: The task.
            from_checkpoint: The checkpoint the caller believes is current.

        Returns:
            The task after the transition.

        Raises:
            TaskNotFound: Unknown task.
            TaskClosed: Task is completed or abandoned.
            TaskBlocked: Task is escalated or rolled back.
            InvalidCheckpoint: ``from_checkpoint`` is ahead of the task.
            CriteriaUnsatisfied: Criteria are not met; carries missing kinds.
            StorageUnavailable: Nothing was advanced.
        """
        expected = parse_checkpoint(from_checkpoint) if from_checkpoint is not None else None

        with self._task_lock(task_id):
            task = self._load(task_id)
            if expected is not None and expected in task.completed_checkpoints:
                logger.debug("Task %s already passed %s", task.id, expected.value)
                return task
            self._check_mutable(task)
            if expected is not None and expected != task.current_checkpoint:
                raise InvalidCheckpoint(task.id, expected.value, task.current_checkpoint.value)

            checkpoint = task.current_checkpoint
            result, proofs = self._evaluate(task)
            if not result.satisfied:
                raise CriteriaUnsatisfied(task.id, checkpoint.value, result.missing, result.missing_kinds)

            definition = self._registry.get(checkpoint)
            if definition.human_signoff:
                escalation = self._open_escalation(
                    task,
                    checkpoint,
                    f"{checkpoint.short} requires human sign-off",
                    RiskTag.POLICY_SIGNOFF,
                )
                self._block(task, TaskStatus.ESCALATED, escalation)
                return task

            return self._pass_checkpoint(task, satisfying_proof_ids(definition, proofs))

    def get_task(self, task_id: TaskId) -> Task:
        """Read-only snapshot of a task.

        Raises:
            TaskNotFound: Unknown task.
        """
        return self._load(task_id)

    def abandon(self, task_id: TaskId, reason: Optional[str] = None) -> Task:
        """Abandon a task from any non-terminal state.

        A pending escalation is resolved as rejected. Abandoning an abandoned
        task returns it unchanged.

        Raises:
            TaskNotFound: Unknown task.
            TaskClosed: Task is completed.
        """
        with self._task_lock(task_id):
            task = self._load(task_id)
            if task.status == TaskStatus.ABANDONED:
                return task
            if task.status == TaskStatus.COMPLETED:
                raise TaskClosed(task.id, task.status.value)

            pending = self._router.pending_for(task.id)
            if pending is not None:
                self._router.resolve(
                    pending.id,
                    Decision.REJECTED,
                    resolved_by="system",
                    note=reason or "task abandoned",
                )
                self._emit(
                    task,
                    "escalation_resolved",
                    pending.checkpoint,
                    escalation_id=pending.id,
                    decision=Decision.REJECTED.value,
                )

            task.status = TaskStatus.ABANDONED
            task.escalation_id = None
            self._save(task)
            self._emit(task, "task_abandoned", task.current_checkpoint, reason=reason)
            logger.info("Task %s abandoned at %s", task.id, task.current_checkpoint.value)
            return task

    def escalate(
        self,
        task_id: TaskId,
        reason: str,
        risk_tag: Union[RiskTag, str] = RiskTag.MANUAL,
    ) -> Escalation:
        """Request a human decision on an active task.

        Raises:
            TaskNotFound: Unknown task.
            TaskClosed: Task is completed or abandoned.
            DuplicateEscalation: An unresolved escalation already exists.
        """
        with self._task_lock(task_id):
            task = self._load(task_id)
            if task.is_terminal:
                raise TaskClosed(task.id, task.status.value)
            if task.escalation_id is not None:
                raise DuplicateEscalation(task.id, task.escalation_id)

            escalation = self._open_escalation(
                task, task.current_checkpoint, reason, RiskTag(risk_tag)
            )
            self._block(task, TaskStatus.ESCALATED, escalation)
            return escalation

    def resolve_escalation(
        self,
        escalation_id: str,
        decision: Union[Decision, str],
        resolved_by: Optional[str] = None,
        note: Optional[str] = None,
    ) -> Task:
        """Record a human decision and apply it to the blocked task.

        - approved: the blocked checkpoint passes (only that one) with a handoff
        - needs-rework: active again at the same checkpoint, counter reset
        - rejected: the task is abandoned

        Raises:
            EscalationNotFound: Unknown escalation.
            AlreadyResolved: A decision was already recorded.
        """
        decision = Decision(decision)
        escalation = self._router.get(escalation_id)

        with self._task_lock(escalation.task_id):
            escalation = self._router.get(escalation_id)
            if escalation.is_resolved:
                raise AlreadyResolved(escalation.id, escalation.decision.value)
            task = self._load(escalation.task_id)

            # An escalation the task does not point at was orphaned by an
            # interrupted call; record the decision without touching the task.
            if task.escalation_id == escalation.id:
                if decision == Decision.APPROVED:
                    definition = self._registry.get(task.current_checkpoint)
                    proofs = storage.read_proofs(
                        task.id, self._tasks_dir, checkpoint=task.current_checkpoint
                    )
                    self._pass_checkpoint(task, satisfying_proof_ids(definition, proofs), forced=True)
                elif decision == Decision.NEEDS_REWORK:
                    for cp in CHECKPOINT_SEQUENCE[task.current_checkpoint.index:]:
                        if cp.value in task.attempts:
                            self._attempts.reset(task, cp)
                    task.status = TaskStatus.ACTIVE
                    task.escalation_id = None
                    self._save(task)
                    logger.info("Task %s returned to %s for rework", task.id, task.current_checkpoint.value)
                else:
                    task.status = TaskStatus.ABANDONED
                    task.escalation_id = None
                    self._save(task)
                    self._emit(task, "task_abandoned", task.current_checkpoint, reason=note)
                    logger.info("Task %s abandoned by escalation decision", task.id)

            resolved = self._router.resolve(escalation_id, decision, resolved_by, note)
            self._emit(
                task,
                "escalation_resolved",
                resolved.checkpoint,
                escalation_id=resolved.id,
                decision=decision.value,
                resolved_by=resolved_by,
            )
            return task

    def archive(self, task_id: TaskId) -> Task:
        """Move a completed or abandoned task to the archive area.

        Archived tasks stay readable. Archiving twice is a no-op.

        Raises:
            TaskNotFound: Unknown task.
            TaskNotClosed: Task is still in progress.
        """
        with self._task_lock(task_id):
            task = self._load(task_id)
            if task.archived:
                return task
            if not task.is_terminal:
                raise TaskNotClosed(task.id, task.status.value)

            # The directory may already have moved if a previous call failed to save
            if storage.task_exists_active(task.id, self._tasks_dir):
                storage.archive_task_dir(task.id, self._tasks_dir)
            task.archived = True
            self._save(task)
            self._emit(task, "task_archived")
            return task

    # =========================================================================
    # Queries
    # =========================================================================

    def list_tasks(
        self,
        status: Optional[Union[TaskStatus, str]] = None,
        include_archived: bool = False,
    ) -> List[Task]:
        """List tasks, oldest first, optionally filtered by status."""
        wanted = TaskStatus(status) if status is not None else None
        tasks = []
        for task_id in storage.list_task_ids(self._tasks_dir, include_archived=include_archived):
            task = storage.read_task(task_id, self._tasks_dir)
            if task is None:
                continue
            if wanted is not None and task.status != wanted:
                continue
            tasks.append(task)
        tasks.sort(key=lambda t: (t.created_at, t.id))
        return tasks

    def list_handoffs(self, task_id: TaskId) -> List[HandoffRecord]:
        self._load(task_id)
        return handoff_io.read_handoffs(task_id, self._tasks_dir)

    def list_proofs(self, task_id: TaskId, checkpoint: Optional[CheckpointLike] = None) -> List[Proof]:
        self._load(task_id)
        cp = parse_checkpoint(checkpoint) if checkpoint is not None else None
        return storage.read_proofs(task_id, self._tasks_dir, checkpoint=cp)

    def list_events(self, task_id: TaskId) -> List[TaskEvent]:
        self._load(task_id)
        return storage.read_events(task_id, self._tasks_dir)

    def get_escalation(self, escalation_id: str) -> Escalation:
        return self._router.get(escalation_id)

    def list_escalations(self, open_only: bool = False, task_id: Optional[TaskId] = None) -> List[Escalation]:
        return self._router.list_escalations(open_only=open_only, task_id=task_id)

    def overdue_escalations(self, now: Optional[datetime] = None) -> List[Escalation]:
        """Open escalations older than the configured SLA (reporting only)."""
        return self._router.overdue(self._config.escalation_sla_hours, now=now)

    def evaluate(self, task_id: TaskId) -> EvaluationResult:
        """Evaluate the current checkpoint without changing anything."""
        task = self._load(task_id)
        result, _ = self._evaluate(task)
        result.attempts = task.attempts_for(task.current_checkpoint)
        return result


def get_gate_engine() -> GateEngine:
    """Get the GateEngine singleton."""
    return GateEngine.get_instance()
