"""
criteria.py - Checkpoint exit-criteria evaluation.

Pure functions over a static CheckpointDefinition and a list of proofs. A
criterion is met when at least one proof of an accepted kind is present (OR
across kinds); a checkpoint is met when every criterion is (AND across
criteria). For criteria that require a passing result, only proofs with
``passed is True`` count: a missing or failing signal is unsatisfied.

Usage:
    from checkgate.runtime.criteria import evaluate, check_entry

    result = evaluate(registry.get(task.current_checkpoint), proofs)
    if not result.satisfied:
        print(result.describe_missing())
"""

from __future__ import annotations

from typing import Iterable, List, Sequence

from ..config.checkpoint_registry import CheckpointDefinition, Criterion
from .types import Checkpoint, EvaluationResult, Proof

ENTRY_PREFIX = "entry:"


def proof_satisfies(criterion: Criterion, proof: Proof) -> bool:
    """Whether a single proof satisfies a criterion."""
    if proof.kind not in criterion.kinds:
        return False
    if criterion.requires_pass:
        return proof.passed is True
    return True


def evaluate(definition: CheckpointDefinition, proofs: Sequence[Proof]) -> EvaluationResult:
    """Evaluate a checkpoint's exit criteria against a set of proofs.

    Proofs recorded for other checkpoints are ignored.

    Args:
        definition: The checkpoint's static definition.
        proofs: Candidate proofs.

    Returns:
        EvaluationResult with ``missing`` in checklist order.
    """
    relevant = [p for p in proofs if p.checkpoint == definition.checkpoint]

    missing: List[str] = []
    missing_kinds = {}
    for criterion in definition.exit_criteria:
        if not any(proof_satisfies(criterion, p) for p in relevant):
            missing.append(criterion.id)
            missing_kinds[criterion.id] = [k.value for k in criterion.kinds]

    return EvaluationResult(
        checkpoint=definition.checkpoint,
        satisfied=not missing,
        missing=missing,
        missing_kinds=missing_kinds,
    )


def check_entry(
    definition: CheckpointDefinition,
    completed_checkpoints: Iterable[Checkpoint],
) -> List[str]:
    """Return entry criteria of a checkpoint that are not yet met.

    Each unmet entry criterion is reported as ``entry:<checkpoint>``.
    """
    completed = set(completed_checkpoints)
    return [f"{ENTRY_PREFIX}{cp.value}" for cp in definition.entry if cp not in completed]


def evaluate_with_entry(
    definition: CheckpointDefinition,
    proofs: Sequence[Proof],
    completed_checkpoints: Iterable[Checkpoint],
) -> EvaluationResult:
    """Evaluate entry and exit criteria together; entry gaps are listed first."""
    result = evaluate(definition, proofs)
    entry_missing = check_entry(definition, completed_checkpoints)
    if not entry_missing:
        return result

    missing_kinds = dict(result.missing_kinds)
    for criterion_id in entry_missing:
        missing_kinds[criterion_id] = []
    return EvaluationResult(
        checkpoint=definition.checkpoint,
        satisfied=False,
        missing=entry_missing + result.missing,
        missing_kinds=missing_kinds,
    )


def satisfying_proof_ids(definition: CheckpointDefinition, proofs: Sequence[Proof]) -> List[str]:
    """IDs of the proofs that satisfy at least one criterion, in submission order."""
    ids: List[str] = []
    for proof in proofs:
        if proof.checkpoint != definition.checkpoint:
            continue
        if any(proof_satisfies(c, proof) for c in definition.exit_criteria):
            ids.append(proof.id)
    return ids
