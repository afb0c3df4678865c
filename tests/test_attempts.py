"""Tests for checkgate.runtime.attempts."""

import pytest

from checkgate.config.runtime_config import GateConfig
from checkgate.runtime.attempts import AttemptController
from checkgate.runtime.types import AttemptOutcome, Checkpoint, Task


class TestDecide:
    """Tests for the retry / escalate / rollback rule."""

    def test_default_budget(self):
        """Three failures roll back; earlier ones retry."""
        controller = AttemptController()

        assert controller.decide(1) == AttemptOutcome.RETRY
        assert controller.decide(2) == AttemptOutcome.RETRY
        assert controller.decide(3) == AttemptOutcome.ROLLBACK
        assert controller.decide(4) == AttemptOutcome.ROLLBACK

    def test_escalate_before_rollback(self):
        controller = AttemptController(max_attempts=4, escalate_at=2)

        assert controller.decide(1) == AttemptOutcome.RETRY
        assert controller.decide(2) == AttemptOutcome.ESCALATE
        assert controller.decide(3) == AttemptOutcome.ESCALATE
        assert controller.decide(4) == AttemptOutcome.ROLLBACK

    def test_invalid_arguments(self):
        with pytest.raises(ValueError):
            AttemptController(max_attempts=0)
        with pytest.raises(ValueError):
            AttemptController(rollback_target="sideways")

    def test_from_config(self):
        controller = AttemptController.from_config(
            GateConfig(max_attempts=5, escalate_at=3, rollback_target="previous")
        )

        assert controller.max_attempts == 5
        assert controller.escalate_at == 3
        assert controller.rollback_target == "previous"


class TestRecordFailure:
    """Tests for counter bookkeeping on the task."""

    def test_increments_per_checkpoint(self):
        task = Task(id="task-test", title="t", current_checkpoint=Checkpoint.C2_IMPLEMENTATION)
        controller = AttemptController()

        assert controller.record_failure(task, Checkpoint.C2_IMPLEMENTATION) == (AttemptOutcome.RETRY, 1)
        assert controller.record_failure(task, Checkpoint.C2_IMPLEMENTATION) == (AttemptOutcome.RETRY, 2)
        assert task.attempts_for(Checkpoint.C2_IMPLEMENTATION) == 2
        assert task.attempts_for(Checkpoint.C1_PLAN) == 0

    def test_reset(self):
        task = Task(id="task-test", title="t", attempts={"C2_IMPLEMENTATION": 3})

        AttemptController().reset(task, Checkpoint.C2_IMPLEMENTATION)

        assert task.attempts_for(Checkpoint.C2_IMPLEMENTATION) == 0


class TestRollbackCheckpoint:
    """Tests for where a rolled-back task lands."""

    def test_stay(self):
        controller = AttemptController(rollback_target="stay")

        assert controller.rollback_checkpoint(Checkpoint.C2_IMPLEMENTATION) == Checkpoint.C2_IMPLEMENTATION

    def test_previous(self):
        controller = AttemptController(rollback_target="previous")

        assert controller.rollback_checkpoint(Checkpoint.C2_IMPLEMENTATION) == Checkpoint.C1_PLAN

    def test_previous_never_below_c0(self):
        controller = AttemptController(rollback_target="previous")

        assert controller.rollback_checkpoint(Checkpoint.C0_COMPREHENSION) == Checkpoint.C0_COMPREHENSION
