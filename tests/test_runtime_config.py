"""Tests for checkgate.config: runtime settings and the checkpoint checklist."""

from pathlib import Path

import pytest
import yaml

from checkgate.config import checkpoint_registry, runtime_config
from checkgate.config.checkpoint_registry import (
    CheckpointRegistry,
    RegistryError,
    checkpoint_definition_to_dict,
    get_registry,
    reset_registry,
)
from checkgate.config.runtime_config import build_gate_config, get_gate_config, reset_config
from checkgate.runtime.types import CHECKPOINT_SEQUENCE, Checkpoint, ProofKind, Role


@pytest.fixture
def checklist_data() -> dict:
    """The shipped checklist as a mutable dict."""
    with open(checkpoint_registry._CONFIG_FILE, encoding="utf-8") as f:
        return yaml.safe_load(f)


class TestBuildGateConfig:
    """Tests for build_gate_config()."""

    def test_defaults(self):
        config = build_gate_config({}, env={})

        assert config.tasks_dir == Path(".checkgate/tasks")
        assert config.max_attempts == 3
        assert config.escalate_at is None
        assert config.rollback_target == "stay"
        assert config.escalation_sla_hours is None
        assert config.skip_postmerge is False

    def test_yaml_values(self):
        data = {
            "storage": {"tasks_dir": "/srv/gate"},
            "attempts": {"max_attempts": 5, "escalate_at": 2, "rollback_target": "previous"},
            "escalation": {"sla_hours": 8},
            "postmerge": {"skip": True},
        }

        config = build_gate_config(data, env={})

        assert config.tasks_dir == Path("/srv/gate")
        assert config.max_attempts == 5
        assert config.escalate_at == 2
        assert config.rollback_target == "previous"
        assert config.escalation_sla_hours == 8.0
        assert config.skip_postmerge is True

    def test_env_overrides_yaml(self):
        data = {"attempts": {"max_attempts": 5, "escalate_at": 2}}
        env = {
            "CHECKGATE_TASKS_DIR": "/tmp/gate",
            "CHECKGATE_MAX_ATTEMPTS": "4",
            "CHECKGATE_ESCALATE_AT": "none",
            "CHECKGATE_ROLLBACK_TARGET": "PREVIOUS",
            "CHECKGATE_ESCALATION_SLA_HOURS": "1.5",
            "CHECKGATE_SKIP_POSTMERGE": "yes",
        }

        config = build_gate_config(data, env=env)

        assert config.tasks_dir == Path("/tmp/gate")
        assert config.max_attempts == 4
        assert config.escalate_at is None
        assert config.rollback_target == "previous"
        assert config.escalation_sla_hours == 1.5
        assert config.skip_postmerge is True

    def test_out_of_range_attempts_clamped(self, caplog):
        config = build_gate_config({"attempts": {"max_attempts": 500}}, env={})

        assert config.max_attempts == runtime_config.MAX_ATTEMPTS
        assert "Clamping" in caplog.text

    def test_zero_attempts_clamped_not_defaulted(self, caplog):
        """An explicit 0 is clamped up to the minimum, not replaced by the default."""
        config = build_gate_config({"attempts": {"max_attempts": 0}}, env={})

        assert config.max_attempts == runtime_config.MIN_ATTEMPTS
        assert "Clamping" in caplog.text

    def test_zero_attempts_from_env_clamped(self, caplog):
        config = build_gate_config({"attempts": {"max_attempts": 7}}, env={"CHECKGATE_MAX_ATTEMPTS": "0"})

        assert config.max_attempts == runtime_config.MIN_ATTEMPTS
        assert "Clamping" in caplog.text

    def test_escalate_at_not_below_max_is_dropped(self, caplog):
        config = build_gate_config({"attempts": {"max_attempts": 3, "escalate_at": 3}}, env={})

        assert config.escalate_at is None
        assert "rollback wins" in caplog.text

    def test_unknown_rollback_target(self):
        with pytest.raises(ValueError):
            build_gate_config({"attempts": {"rollback_target": "sideways"}}, env={})


class TestGetGateConfig:
    """Tests for the cached loader."""

    def test_cached_until_reset(self, monkeypatch):
        monkeypatch.setenv("CHECKGATE_MAX_ATTEMPTS", "7")
        first = get_gate_config()

        monkeypatch.setenv("CHECKGATE_MAX_ATTEMPTS", "9")
        assert get_gate_config() is first
        assert first.max_attempts == 7

        reset_config()
        assert get_gate_config().max_attempts == 9

    def test_missing_file_uses_defaults(self, monkeypatch, tmp_path: Path):
        monkeypatch.setattr(runtime_config, "_CONFIG_PATH", tmp_path / "absent.yaml")
        for name in ("CHECKGATE_MAX_ATTEMPTS", "CHECKGATE_TASKS_DIR"):
            monkeypatch.delenv(name, raising=False)

        assert get_gate_config().max_attempts == 3


class TestCheckpointRegistry:
    """Tests for the checklist loaded from checkpoints.yaml."""

    def test_all_checkpoints_defined_in_order(self):
        registry = get_registry()

        assert [d.checkpoint for d in registry.definitions()] == CHECKPOINT_SEQUENCE

    def test_owners(self):
        registry = get_registry()

        assert registry.owner(Checkpoint.C0_COMPREHENSION) == Role.MANAGER
        assert registry.owner(Checkpoint.C1_PLAN) == Role.PLANNER
        assert registry.owner(Checkpoint.C2_IMPLEMENTATION) == Role.IMPLEMENTER
        assert registry.completion_role == Role.MANAGER

    def test_c2_criteria(self):
        c2 = get_registry().get(Checkpoint.C2_IMPLEMENTATION)

        assert [c.id for c in c2.exit_criteria] == ["change_recorded", "tests_pass", "lint_clean"]
        assert ProofKind.STATIC_ANALYSIS_OUTPUT in c2.required_kinds
        assert c2.entry == (Checkpoint.C1_PLAN,)

    def test_post_merge_is_optional(self):
        assert get_registry().get(Checkpoint.C4_POSTMERGE).optional is True

    def test_role_adjacency(self):
        registry = get_registry()

        assert registry.is_transition_allowed(Role.MANAGER, Role.PLANNER)
        assert registry.is_transition_allowed(Role.TESTER, Role.REVIEWER)
        assert not registry.is_transition_allowed(Role.MANAGER, Role.TESTER)
        assert "planner" in registry.transitions()["manager"]

    def test_cached_until_reset(self):
        first = get_registry()

        assert get_registry() is first
        reset_registry()
        assert get_registry() is not first

    def test_missing_checkpoint_rejected(self, checklist_data):
        checklist_data["checkpoints"] = checklist_data["checkpoints"][:-1]

        with pytest.raises(RegistryError) as exc_info:
            CheckpointRegistry.from_dict(checklist_data)

        assert "C4_POSTMERGE" in str(exc_info.value)

    def test_unknown_proof_kind_rejected(self, checklist_data):
        checklist_data["checkpoints"][0]["exit_criteria"][0]["kinds"] = ["telepathy"]

        with pytest.raises(RegistryError):
            CheckpointRegistry.from_dict(checklist_data)

    def test_criterion_without_kinds_rejected(self, checklist_data):
        checklist_data["checkpoints"][0]["exit_criteria"][0]["kinds"] = []

        with pytest.raises(RegistryError):
            CheckpointRegistry.from_dict(checklist_data)

    def test_definition_to_dict(self):
        data = checkpoint_definition_to_dict(get_registry().get(Checkpoint.C3_PR))

        assert data["id"] == "C3_PR"
        assert data["owner"] == "tester"
        assert data["exit_criteria"][2]["kinds"] == ["review-approval"]
        assert data["exit_criteria"][2]["requires_pass"] is True
