"""
checkpoint_registry.py - Load the checkpoint checklist from checkpoints.yaml

This module is the single source of truth for what each checkpoint requires:
its owner role, entry criteria, ordered exit criteria with accepted proof
kinds, and the table of legal role-to-role handoffs.

Usage:
    from checkgate.config.checkpoint_registry import get_registry

    registry = get_registry()
    definition = registry.get(Checkpoint.C2_IMPLEMENTATION)
    registry.is_transition_allowed(Role.MANAGER, Role.PLANNER)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

import yaml

from ..runtime.types import CHECKPOINT_SEQUENCE, Checkpoint, ProofKind, Role

logger = logging.getLogger(__name__)

_CONFIG_FILE = Path(__file__).parent / "checkpoints.yaml"


class RegistryError(ValueError):
    """Raised when checkpoints.yaml is malformed."""

    pass


@dataclass(frozen=True)
class Criterion:
    """One named exit condition of a checkpoint.

    Attributes:
        id: Stable identifier reported in missing lists.
        description: Human-readable statement of the condition.
        kinds: Accepted proof kinds; any one of them satisfies the criterion.
        requires_pass: Only proofs with ``passed is True`` count.
    """

    id: str
    description: str
    kinds: Tuple[ProofKind, ...]
    requires_pass: bool = False


@dataclass(frozen=True)
class CheckpointDefinition:
    """Static definition of a checkpoint."""

    checkpoint: Checkpoint
    title: str
    owner: Role
    exit_criteria: Tuple[Criterion, ...]
    entry: Tuple[Checkpoint, ...] = ()
    optional: bool = False
    human_signoff: bool = False

    @property
    def required_kinds(self) -> FrozenSet[ProofKind]:
        kinds = set()
        for criterion in self.exit_criteria:
            kinds.update(criterion.kinds)
        return frozenset(kinds)


class CheckpointRegistry:
    """Registry of checkpoint definitions in sequence order."""

    def __init__(self, config_path: Path = _CONFIG_FILE):
        with open(config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        self._load(data, source=str(config_path))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CheckpointRegistry":
        """Build a registry from an already-parsed checklist (used by tests)."""
        registry = cls.__new__(cls)
        registry._load(data, source="<dict>")
        return registry

    def _load(self, data: Dict[str, Any], source: str) -> None:
        self.version = data.get("version", 1)
        self._by_checkpoint: Dict[Checkpoint, CheckpointDefinition] = {}

        try:
            self.completion_role = Role(data.get("completion_role", Role.MANAGER.value))
            self._transitions: Dict[Role, FrozenSet[Role]] = {
                Role(src): frozenset(Role(dst) for dst in (targets or []))
                for src, targets in (data.get("role_transitions") or {}).items()
            }
            for cp_data in data.get("checkpoints", []):
                definition = self._parse_checkpoint(cp_data)
                self._by_checkpoint[definition.checkpoint] = definition
        except (KeyError, ValueError, TypeError) as e:
            raise RegistryError(f"Invalid checkpoint checklist in {source}: {e}") from e

        missing = [cp.value for cp in CHECKPOINT_SEQUENCE if cp not in self._by_checkpoint]
        if missing:
            raise RegistryError(f"Checklist {source} has no definition for: {missing}")

        logger.debug(
            "Loaded checkpoint checklist v%s from %s (%d checkpoints)",
            self.version,
            source,
            len(self._by_checkpoint),
        )

    @staticmethod
    def _parse_checkpoint(cp_data: Dict[str, Any]) -> CheckpointDefinition:
        criteria = []
        for crit in cp_data.get("exit_criteria", []):
            kinds = tuple(ProofKind(k) for k in crit.get("kinds", []))
            if not kinds:
                raise ValueError(f"criterion '{crit.get('id')}' accepts no proof kinds")
            criteria.append(
                Criterion(
                    id=crit["id"],
                    description=crit.get("description", ""),
                    kinds=kinds,
                    requires_pass=bool(crit.get("requires_pass", False)),
                )
            )
        return CheckpointDefinition(
            checkpoint=Checkpoint(cp_data["id"]),
            title=cp_data.get("title", cp_data["id"]),
            owner=Role(cp_data["owner"]),
            exit_criteria=tuple(criteria),
            entry=tuple(Checkpoint(cp) for cp in cp_data.get("entry", [])),
            optional=bool(cp_data.get("optional", False)),
            human_signoff=bool(cp_data.get("human_signoff", False)),
        )

    def get(self, checkpoint: Checkpoint) -> CheckpointDefinition:
        return self._by_checkpoint[checkpoint]

    def definitions(self) -> List[CheckpointDefinition]:
        """All definitions in sequence order."""
        return [self._by_checkpoint[cp] for cp in CHECKPOINT_SEQUENCE]

    def owner(self, checkpoint: Checkpoint) -> Role:
        return self._by_checkpoint[checkpoint].owner

    def is_transition_allowed(self, from_role: Role, to_role: Role) -> bool:
        return to_role in self._transitions.get(from_role, frozenset())

    def transitions(self) -> Dict[str, List[str]]:
        return {
            src.value: sorted(dst.value for dst in targets)
            for src, targets in self._transitions.items()
        }


_registry: Optional[CheckpointRegistry] = None


def get_registry() -> CheckpointRegistry:
    """Get the process-wide registry, loading checkpoints.yaml on first use."""
    global _registry
    if _registry is None:
        _registry = CheckpointRegistry()
    return _registry


def reset_registry() -> None:
    """Drop the cached registry (for testing)."""
    global _registry
    _registry = None


def checkpoint_definition_to_dict(definition: CheckpointDefinition) -> Dict[str, Any]:
    """Convert a CheckpointDefinition to a dictionary for API responses."""
    return {
        "id": definition.checkpoint.value,
        "title": definition.title,
        "owner": definition.owner.value,
        "entry": [cp.value for cp in definition.entry],
        "optional": definition.optional,
        "human_signoff": definition.human_signoff,
        "exit_criteria": [
            {
                "id": c.id,
                "description": c.description,
                "kinds": [k.value for k in c.kinds],
                "requires_pass": c.requires_pass,
            }
            for c in definition.exit_criteria
        ],
    }
