"""Runtime configuration for the gate engine.

Provides the attempt/rollback policy, storage location, escalation SLA and
post-merge default. Environment variables take precedence over YAML config.

Usage:
    from checkgate.config.runtime_config import get_gate_config

    config = get_gate_config()
    config.max_attempts      # 3
    config.rollback_target   # "stay"

Environment overrides:
    CHECKGATE_TASKS_DIR             storage.tasks_dir
    CHECKGATE_MAX_ATTEMPTS          attempts.max_attempts
    CHECKGATE_ESCALATE_AT           attempts.escalate_at ("" or "none" disables)
    CHECKGATE_ROLLBACK_TARGET       attempts.rollback_target
    CHECKGATE_ESCALATION_SLA_HOURS  escalation.sla_hours
    CHECKGATE_SKIP_POSTMERGE        postmerge.skip
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

_CONFIG_PATH = Path(__file__).parent / "gate.yaml"
_cached_config: Optional["GateConfig"] = None

ROLLBACK_TARGETS = ("stay", "previous")

# Sanity bounds for the attempt budget
MIN_ATTEMPTS = 1
MAX_ATTEMPTS = 50


@dataclass
class GateConfig:
    """Resolved gate engine configuration.

    Attributes:
        tasks_dir: Root directory of the task store.
        max_attempts: Failed evaluations per checkpoint before rollback.
        escalate_at: Optional earlier threshold that escalates without rollback.
        rollback_target: "stay" keeps the checkpoint, "previous" regresses one.
        escalation_sla_hours: Age after which an open escalation is overdue.
        skip_postmerge: Default for new tasks.
    """

    tasks_dir: Path = Path(".checkgate/tasks")
    max_attempts: int = 3
    escalate_at: Optional[int] = None
    rollback_target: str = "stay"
    escalation_sla_hours: Optional[float] = None
    skip_postmerge: bool = False


def _default_config() -> Dict[str, Any]:
    """Return default configuration if gate.yaml doesn't exist."""
    return {
        "version": "1.0",
        "storage": {"tasks_dir": ".checkgate/tasks"},
        "attempts": {"max_attempts": 3, "escalate_at": None, "rollback_target": "stay"},
        "escalation": {"sla_hours": None},
        "postmerge": {"skip": False},
    }


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return _default_config()
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_optional_number(value: str, cast):
    text = value.strip().lower()
    if text in ("", "none", "null", "off"):
        return None
    return cast(text)


def _clamp_attempts(value: int, name: str) -> int:
    """Clamp an attempt threshold to sanity bounds with logging."""
    if value < MIN_ATTEMPTS:
        logger.warning(
            "'%s' value %d is below minimum %d. Clamping to %d.",
            name,
            value,
            MIN_ATTEMPTS,
            MIN_ATTEMPTS,
        )
        return MIN_ATTEMPTS
    if value > MAX_ATTEMPTS:
        logger.warning(
            "'%s' value %d exceeds maximum %d. Clamping to %d.",
            name,
            value,
            MAX_ATTEMPTS,
            MAX_ATTEMPTS,
        )
        return MAX_ATTEMPTS
    return value


def build_gate_config(data: Dict[str, Any], env: Optional[Dict[str, str]] = None) -> GateConfig:
    """Resolve a GateConfig from parsed YAML plus environment overrides.

    Args:
        data: Parsed gate.yaml content.
        env: Environment mapping. Defaults to os.environ.

    Returns:
        The resolved configuration.

    Raises:
        ValueError: If an override cannot be parsed or rollback_target is unknown.
    """
    env = os.environ if env is None else env
    storage = data.get("storage") or {}
    attempts = data.get("attempts") or {}
    escalation = data.get("escalation") or {}
    postmerge = data.get("postmerge") or {}

    tasks_dir = Path(env.get("CHECKGATE_TASKS_DIR") or storage.get("tasks_dir") or ".checkgate/tasks")

    max_attempts = env.get("CHECKGATE_MAX_ATTEMPTS") or None
    if max_attempts is None:
        max_attempts = attempts.get("max_attempts")
    if max_attempts is None:
        max_attempts = 3
    max_attempts = int(max_attempts)
    max_attempts = _clamp_attempts(max_attempts, "max_attempts")

    if "CHECKGATE_ESCALATE_AT" in env:
        escalate_at = _env_optional_number(env["CHECKGATE_ESCALATE_AT"], int)
    else:
        escalate_at = attempts.get("escalate_at")
    if escalate_at is not None:
        escalate_at = _clamp_attempts(int(escalate_at), "escalate_at")
        if escalate_at >= max_attempts:
            logger.warning(
                "escalate_at (%d) is not below max_attempts (%d); rollback wins, ignoring it.",
                escalate_at,
                max_attempts,
            )
            escalate_at = None

    rollback_target = str(
        env.get("CHECKGATE_ROLLBACK_TARGET") or attempts.get("rollback_target", "stay")
    ).lower()
    if rollback_target not in ROLLBACK_TARGETS:
        raise ValueError(
            f"Unknown rollback_target '{rollback_target}'. Expected one of {ROLLBACK_TARGETS}"
        )

    if "CHECKGATE_ESCALATION_SLA_HOURS" in env:
        sla_hours = _env_optional_number(env["CHECKGATE_ESCALATION_SLA_HOURS"], float)
    else:
        sla_hours = escalation.get("sla_hours")
        sla_hours = float(sla_hours) if sla_hours is not None else None

    if "CHECKGATE_SKIP_POSTMERGE" in env:
        skip_postmerge = _env_bool(env["CHECKGATE_SKIP_POSTMERGE"])
    else:
        skip_postmerge = bool(postmerge.get("skip", False))

    return GateConfig(
        tasks_dir=tasks_dir,
        max_attempts=max_attempts,
        escalate_at=escalate_at,
        rollback_target=rollback_target,
        escalation_sla_hours=sla_hours,
        skip_postmerge=skip_postmerge,
    )


def get_gate_config() -> GateConfig:
    """Load gate.yaml plus environment overrides, with caching."""
    global _cached_config
    if _cached_config is None:
        _cached_config = build_gate_config(_load_yaml(_CONFIG_PATH))
    return _cached_config


def reset_config() -> None:
    """Reset cached config (for testing)."""
    global _cached_config
    _cached_config = None
