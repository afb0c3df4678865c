"""
attempts.py - Attempt counting and the retry / escalate / rollback policy.

Counters live on the Task (``Task.attempts``) so they persist with it; this
module only decides what a failed evaluation means.
"""

from __future__ import annotations

import logging
from typing import Optional, Tuple

from ..config.runtime_config import ROLLBACK_TARGETS, GateConfig
from .types import AttemptOutcome, Checkpoint, Task, previous_checkpoint

logger = logging.getLogger(__name__)


class AttemptController:
    """Applies the attempt budget to failed evaluations.

    Args:
        max_attempts: Failures at which the task is rolled back.
        escalate_at: Optional earlier failure count that escalates instead.
        rollback_target: "stay" or "previous".
    """

    def __init__(
        self,
        max_attempts: int = 3,
        escalate_at: Optional[int] = None,
        rollback_target: str = "stay",
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if rollback_target not in ROLLBACK_TARGETS:
            raise ValueError(f"Unknown rollback_target '{rollback_target}'")
        self.max_attempts = max_attempts
        self.escalate_at = escalate_at
        self.rollback_target = rollback_target

    @classmethod
    def from_config(cls, config: GateConfig) -> "AttemptController":
        return cls(
            max_attempts=config.max_attempts,
            escalate_at=config.escalate_at,
            rollback_target=config.rollback_target,
        )

    def decide(self, count: int) -> AttemptOutcome:
        """Map a failure count to an outcome."""
        if count >= self.max_attempts:
            return AttemptOutcome.ROLLBACK
        if self.escalate_at is not None and count >= self.escalate_at:
            return AttemptOutcome.ESCALATE
        return AttemptOutcome.RETRY

    def record_failure(self, task: Task, checkpoint: Checkpoint) -> Tuple[AttemptOutcome, int]:
        """Increment the task's counter for a checkpoint and decide.

        Mutates ``task.attempts``; the caller persists the task.
        """
        count = task.attempts_for(checkpoint) + 1
        task.attempts[checkpoint.value] = count
        outcome = self.decide(count)
        logger.debug(
            "Task %s failed %s attempt %d/%d -> %s",
            task.id,
            checkpoint.short,
            count,
            self.max_attempts,
            outcome.value,
        )
        return outcome, count

    def reset(self, task: Task, checkpoint: Checkpoint) -> None:
        task.attempts[checkpoint.value] = 0

    def rollback_checkpoint(self, checkpoint: Checkpoint) -> Checkpoint:
        """The checkpoint a rolled-back task lands on."""
        if self.rollback_target == "previous":
            return previous_checkpoint(checkpoint) or checkpoint
        return checkpoint
