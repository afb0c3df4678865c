"""Tests for checkgate.runtime.criteria.

Verifies exit-criteria evaluation: OR across accepted kinds, AND across
criteria, fail-secure handling of signal proofs, and entry criteria.
"""

from typing import Optional

import pytest

from checkgate.runtime.criteria import (
    check_entry,
    evaluate,
    evaluate_with_entry,
    proof_satisfies,
    satisfying_proof_ids,
)
from checkgate.runtime.types import Checkpoint, Proof, ProofKind, Role


def _proof(
    kind: ProofKind,
    checkpoint: Checkpoint = Checkpoint.C2_IMPLEMENTATION,
    passed: Optional[bool] = None,
) -> Proof:
    return Proof(
        task_id="task-test",
        checkpoint=checkpoint,
        kind=kind,
        ref=f"blob:{kind.value}",
        submitted_by=Role.IMPLEMENTER,
        passed=passed,
    )


@pytest.fixture
def c2(registry):
    return registry.get(Checkpoint.C2_IMPLEMENTATION)


class TestEvaluate:
    """Tests for evaluate()."""

    def test_all_criteria_met(self, c2):
        """A diff, passing tests and clean lint satisfy C2."""
        result = evaluate(
            c2,
            [
                _proof(ProofKind.DIFF),
                _proof(ProofKind.TEST_OUTPUT, passed=True),
                _proof(ProofKind.LINT_OUTPUT, passed=True),
            ],
        )

        assert result.satisfied is True
        assert result.missing == []
        assert result.checkpoint == Checkpoint.C2_IMPLEMENTATION

    def test_any_accepted_kind_satisfies_criterion(self, c2):
        """Static analysis output stands in for lint output."""
        result = evaluate(
            c2,
            [
                _proof(ProofKind.DIFF),
                _proof(ProofKind.TEST_OUTPUT, passed=True),
                _proof(ProofKind.STATIC_ANALYSIS_OUTPUT, passed=True),
            ],
        )

        assert result.satisfied is True

    def test_missing_criteria_in_checklist_order(self, c2):
        """Unsatisfied criteria are listed in checklist order with their kinds."""
        result = evaluate(c2, [_proof(ProofKind.TEST_OUTPUT, passed=True)])

        assert result.satisfied is False
        assert result.missing == ["change_recorded", "lint_clean"]
        assert result.missing_kinds["lint_clean"] == ["lint-output", "static-analysis-output"]
        assert "lint-output or static-analysis-output" in result.describe_missing()

    @pytest.mark.parametrize("passed", [None, False])
    def test_signal_without_pass_is_unsatisfied(self, c2, passed):
        """A failing or unreported lint result never satisfies lint_clean."""
        result = evaluate(
            c2,
            [
                _proof(ProofKind.DIFF),
                _proof(ProofKind.TEST_OUTPUT, passed=True),
                _proof(ProofKind.LINT_OUTPUT, passed=passed),
            ],
        )

        assert result.satisfied is False
        assert result.missing == ["lint_clean"]

    def test_later_passing_signal_satisfies(self, c2):
        """An earlier failure does not block a later passing run."""
        result = evaluate(
            c2,
            [
                _proof(ProofKind.DIFF),
                _proof(ProofKind.TEST_OUTPUT, passed=True),
                _proof(ProofKind.LINT_OUTPUT, passed=False),
                _proof(ProofKind.LINT_OUTPUT, passed=True),
            ],
        )

        assert result.satisfied is True

    def test_proofs_of_other_checkpoints_ignored(self, c2):
        """Proofs recorded for C3 do not count towards C2."""
        result = evaluate(
            c2,
            [
                _proof(ProofKind.DIFF, checkpoint=Checkpoint.C3_PR),
                _proof(ProofKind.TEST_OUTPUT, checkpoint=Checkpoint.C3_PR, passed=True),
                _proof(ProofKind.LINT_OUTPUT, checkpoint=Checkpoint.C3_PR, passed=True),
            ],
        )

        assert result.satisfied is False
        assert len(result.missing) == 3

    def test_deterministic(self, c2):
        """Same inputs, same result."""
        proofs = [_proof(ProofKind.DIFF), _proof(ProofKind.LINT_OUTPUT, passed=False)]

        assert evaluate(c2, proofs) == evaluate(c2, proofs)

    def test_proof_satisfies_respects_kind(self, c2):
        tests_pass = c2.exit_criteria[1]

        assert proof_satisfies(tests_pass, _proof(ProofKind.TEST_OUTPUT, passed=True))
        assert not proof_satisfies(tests_pass, _proof(ProofKind.LINT_OUTPUT, passed=True))


class TestEntryCriteria:
    """Tests for check_entry() and evaluate_with_entry()."""

    def test_c0_has_no_entry_criteria(self, registry):
        assert check_entry(registry.get(Checkpoint.C0_COMPREHENSION), []) == []

    def test_unmet_entry_reported(self, registry):
        """C1 cannot pass before C0 is completed."""
        missing = check_entry(registry.get(Checkpoint.C1_PLAN), [])

        assert missing == ["entry:C0_COMPREHENSION"]

    def test_entry_listed_before_exit_gaps(self, registry):
        """Entry gaps come first and make the evaluation fail."""
        c1 = registry.get(Checkpoint.C1_PLAN)
        proofs = [
            _proof(ProofKind.PLAN_DOCUMENT, checkpoint=Checkpoint.C1_PLAN),
            _proof(ProofKind.RISK_ASSESSMENT, checkpoint=Checkpoint.C1_PLAN),
        ]

        result = evaluate_with_entry(c1, proofs, [])

        assert result.satisfied is False
        assert result.missing == ["entry:C0_COMPREHENSION"]

        result = evaluate_with_entry(c1, proofs, [Checkpoint.C0_COMPREHENSION])
        assert result.satisfied is True


class TestSatisfyingProofIds:
    """Tests for satisfying_proof_ids()."""

    def test_only_contributing_proofs(self, c2):
        """Failing signals and foreign checkpoints are not referenced."""
        diff = _proof(ProofKind.DIFF)
        failing = _proof(ProofKind.LINT_OUTPUT, passed=False)
        passing = _proof(ProofKind.LINT_OUTPUT, passed=True)
        foreign = _proof(ProofKind.DIFF, checkpoint=Checkpoint.C3_PR)

        ids = satisfying_proof_ids(c2, [diff, failing, passing, foreign])

        assert ids == [diff.id, passing.id]
