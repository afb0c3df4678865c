# checkgate/runtime package
# Provides the checkpoint gate state machine and its persistence.
#
# Core components:
#   - types: Core dataclasses (Task, Proof, Escalation, HandoffRecord, ...)
#   - storage: Disk I/O for tasks, proofs, escalations and events
#   - criteria: Exit-criteria evaluation
#   - attempts: Attempt budget and rollback policy
#   - escalation: EscalationRouter for human-decision requests
#   - handoff_io: Handoff record encode/decode and the handoff log
#   - engine: GateEngine singleton for orchestration
#
# Usage:
#     from checkgate.runtime import GateEngine
#     engine = GateEngine.get_instance()
#     task = engine.create_task("Fix flaky login test")
#     engine.advance(task.id)

from typing import TYPE_CHECKING

from .errors import (
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
from .storage import (
    find_task_path,
    get_task_path,
    list_task_ids,
    task_exists,
)
from .types import (
    Checkpoint,
    Decision,
    Escalation,
    HandoffRecord,
    Proof,
    ProofKind,
    RiskTag,
    Role,
    Task,
    TaskId,
    TaskStatus,
    generate_task_id,
)

# TYPE_CHECKING stubs for static type checkers
# These allow `from checkgate.runtime import GateEngine` to type-check
# correctly while the engine is imported lazily at runtime; the config
# package imports runtime.types, so importing the engine here would cycle.
if TYPE_CHECKING:
    from .engine import GateEngine as GateEngine
    from .engine import get_gate_engine as get_gate_engine

__all__ = [
    # Types
    "TaskId",
    "Task",
    "TaskStatus",
    "Checkpoint",
    "Role",
    "ProofKind",
    "Proof",
    "Escalation",
    "Decision",
    "RiskTag",
    "HandoffRecord",
    "generate_task_id",
    # Errors
    "GateError",
    "TaskNotFound",
    "InvalidCheckpoint",
    "InvalidRoleTransition",
    "DuplicateEscalation",
    "EscalationNotFound",
    "AlreadyResolved",
    "CriteriaUnsatisfied",
    "TaskBlocked",
    "TaskClosed",
    "TaskNotClosed",
    "HandoffFormatError",
    "StorageUnavailable",
    # Storage
    "get_task_path",
    "find_task_path",
    "task_exists",
    "list_task_ids",
    # Engine (imported lazily at runtime, statically available for type checking)
    "GateEngine",
    "get_gate_engine",
]


def __getattr__(name: str):
    """Lazy import for the engine to avoid circular imports."""
    if name == "GateEngine":
        from .engine import GateEngine

        return GateEngine
    if name == "get_gate_engine":
        from .engine import get_gate_engine

        return get_gate_engine
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
