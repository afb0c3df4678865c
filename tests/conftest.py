"""Shared fixtures for checkgate tests.

Every test gets an isolated task store under tmp_path and fresh config,
registry and engine singletons.
"""

from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

from checkgate.config.checkpoint_registry import get_registry, reset_registry
from checkgate.config.runtime_config import GateConfig, reset_config
from checkgate.runtime.engine import GateEngine
from checkgate.runtime.types import (
    Checkpoint,
    Proof,
    ProofKind,
    Role,
    Task,
)


# Proofs that satisfy each checkpoint of the default checklist:
# (kind, submitting role, passed)
PASSING_PROOFS: Dict[Checkpoint, List[tuple]] = {
    Checkpoint.C0_COMPREHENSION: [
        (ProofKind.SCOPE_STATEMENT, Role.MANAGER, None),
    ],
    Checkpoint.C1_PLAN: [
        (ProofKind.PLAN_DOCUMENT, Role.PLANNER, None),
        (ProofKind.RISK_ASSESSMENT, Role.PLANNER, None),
    ],
    Checkpoint.C2_IMPLEMENTATION: [
        (ProofKind.DIFF, Role.IMPLEMENTER, None),
        (ProofKind.TEST_OUTPUT, Role.IMPLEMENTER, True),
        (ProofKind.LINT_OUTPUT, Role.IMPLEMENTER, True),
    ],
    Checkpoint.C3_PR: [
        (ProofKind.DIFF, Role.TESTER, None),
        (ProofKind.TEST_OUTPUT, Role.TESTER, True),
        (ProofKind.REVIEW_APPROVAL, Role.REVIEWER, True),
    ],
    Checkpoint.C4_POSTMERGE: [
        (ProofKind.MONITORING_SNAPSHOT, Role.REVIEWER, True),
    ],
}


@pytest.fixture(autouse=True)
def _reset_singletons():
    """Drop cached config, registry and engine around every test."""
    reset_config()
    reset_registry()
    GateEngine.reset()
    yield
    reset_config()
    reset_registry()
    GateEngine.reset()


@pytest.fixture
def tasks_dir(tmp_path: Path) -> Path:
    """Root of an empty task store."""
    return tmp_path / "tasks"


@pytest.fixture
def config(tasks_dir: Path) -> GateConfig:
    """Default gate configuration pointing at the temporary store."""
    return GateConfig(tasks_dir=tasks_dir)


@pytest.fixture
def registry():
    return get_registry()


@pytest.fixture
def engine(tasks_dir: Path, config: GateConfig) -> GateEngine:
    """A GateEngine over the temporary store."""
    return GateEngine(tasks_dir=tasks_dir, config=config)


@pytest.fixture
def make_proof() -> Callable[..., Proof]:
    """Factory for proofs bound to a task and checkpoint."""

    def _make(
        task: Task,
        kind: ProofKind,
        submitted_by: Role = Role.IMPLEMENTER,
        passed: Optional[bool] = None,
        checkpoint: Optional[Checkpoint] = None,
        ref: Optional[str] = None,
    ) -> Proof:
        return Proof(
            task_id=task.id,
            checkpoint=checkpoint or task.current_checkpoint,
            kind=kind,
            ref=ref or f"blob:{kind.value}",
            submitted_by=submitted_by,
            passed=passed,
        )

    return _make


@pytest.fixture
def passing_proofs(make_proof) -> Callable[[Task], List[Proof]]:
    """Proofs that satisfy the task's current checkpoint."""

    def _passing(task: Task) -> List[Proof]:
        return [
            make_proof(task, kind, submitted_by=role, passed=passed)
            for kind, role, passed in PASSING_PROOFS[task.current_checkpoint]
        ]

    return _passing


@pytest.fixture
def drive_to(engine: GateEngine, passing_proofs) -> Callable[[Task, Checkpoint], Task]:
    """Pass checkpoints with valid proofs until the task reaches ``target``."""

    def _drive(task: Task, target: Checkpoint) -> Task:
        while task.current_checkpoint != target:
            assert task.current_checkpoint.index < target.index, "cannot drive backwards"
            engine.submit_proofs(task.id, task.current_checkpoint, passing_proofs(task))
            task = engine.advance(task.id)
        return task

    return _drive
