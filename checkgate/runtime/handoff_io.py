"""
handoff_io.py - Handoff record serialization and the handoff log.

This module is the encode/decode boundary for role-transition records. All
handoff writes go through append_handoff() so that:
- role legality is checked against the adjacency table before encoding
- every record on disk passes the handoff_record JSON schema
- the log stays an append-only YAML stream

Wire format (one YAML document per record):

    from_role: manager
    to_role: planner
    task_id: task-20251208-143022-abc123
    checkpoint_completed: C0_COMPREHENSION
    proof_refs:
    - prf-0a1b2c3d4e5f
    timestamp: '2025-12-08T14:31:07.120391Z'
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import jsonschema
import yaml

from ..config.checkpoint_registry import CheckpointRegistry, get_registry
from .errors import HandoffFormatError, InvalidRoleTransition, StorageUnavailable
from .storage import HANDOFFS_FILE, _get_task_lock, find_task_path
from .types import (
    HandoffRecord,
    Role,
    Task,
    TaskId,
    handoff_record_from_dict,
    handoff_record_to_dict,
)
from .types._time import _utcnow

logger = logging.getLogger(__name__)

_SCHEMA_PATH = Path(__file__).parent.parent / "schemas" / "handoff_record.schema.json"

# Cached schema to avoid repeated file reads
_HANDOFF_SCHEMA: Optional[Dict[str, Any]] = None


def _load_handoff_schema() -> Dict[str, Any]:
    """Load the handoff record schema, caching result."""
    global _HANDOFF_SCHEMA
    if _HANDOFF_SCHEMA is None:
        with open(_SCHEMA_PATH, "r", encoding="utf-8") as f:
            _HANDOFF_SCHEMA = json.load(f)
    return _HANDOFF_SCHEMA


def validate_record(record_dict: Dict[str, Any]) -> List[str]:
    """Validate a record dict against the handoff schema.

    Returns:
        List of validation error messages (empty if valid).
    """
    validator = jsonschema.Draft7Validator(_load_handoff_schema())
    errors = []
    for error in sorted(validator.iter_errors(record_dict), key=lambda e: list(e.path)):
        location = ".".join(str(p) for p in error.path) or "<root>"
        errors.append(f"{location}: {error.message}")
    return errors


def check_role_transition(
    from_role: Role,
    to_role: Role,
    registry: Optional[CheckpointRegistry] = None,
) -> None:
    """Raise InvalidRoleTransition unless the adjacency table allows the pair."""
    registry = registry or get_registry()
    if not registry.is_transition_allowed(from_role, to_role):
        raise InvalidRoleTransition(from_role.value, to_role.value)


# =============================================================================
# Encode / Decode
# =============================================================================


def to_record(
    task: Task,
    from_role: Role,
    to_role: Role,
    proof_refs: Optional[List[str]] = None,
    checkpoint_completed=None,
    timestamp: Optional[datetime] = None,
    registry: Optional[CheckpointRegistry] = None,
) -> HandoffRecord:
    """Build a HandoffRecord for a task.

    Args:
        task: The task being handed off.
        from_role: Role handing off.
        to_role: Role receiving the task.
        proof_refs: Proof IDs that carried the completed checkpoint.
        checkpoint_completed: Defaults to the task's current checkpoint.
        timestamp: Defaults to now.
        registry: Checklist providing the role adjacency table.

    Raises:
        InvalidRoleTransition: If the role pair is not allowed.
    """
    from_role = Role(from_role)
    to_role = Role(to_role)
    check_role_transition(from_role, to_role, registry)
    return HandoffRecord(
        from_role=from_role,
        to_role=to_role,
        task_id=task.id,
        checkpoint_completed=checkpoint_completed or task.current_checkpoint,
        proof_refs=list(proof_refs or []),
        timestamp=timestamp or _utcnow(),
    )


def dump_record(record: HandoffRecord) -> bytes:
    """Encode a HandoffRecord as a UTF-8 YAML document."""
    text = yaml.safe_dump(
        handoff_record_to_dict(record),
        sort_keys=False,
        default_flow_style=False,
        allow_unicode=True,
    )
    return text.encode("utf-8")


def _record_from_mapping(data: Any) -> HandoffRecord:
    if not isinstance(data, dict):
        raise HandoffFormatError([f"expected a mapping, got {type(data).__name__}"])

    # YAML loaders turn unquoted timestamps into datetimes; the schema wants text
    normalized = dict(data)
    if isinstance(normalized.get("timestamp"), datetime):
        normalized["timestamp"] = normalized["timestamp"].isoformat()

    errors = validate_record(normalized)
    if errors:
        raise HandoffFormatError(errors)
    try:
        return handoff_record_from_dict(normalized)
    except (KeyError, TypeError, ValueError) as e:
        raise HandoffFormatError([str(e)]) from e


def from_record(data: bytes) -> HandoffRecord:
    """Decode a HandoffRecord from YAML bytes (JSON is valid YAML too).

    Raises:
        HandoffFormatError: If the input is not a valid handoff record.
    """
    try:
        text = data.decode("utf-8") if isinstance(data, (bytes, bytearray)) else str(data)
        loaded = yaml.safe_load(text)
    except (UnicodeDecodeError, yaml.YAMLError) as e:
        raise HandoffFormatError([f"unparseable record: {e}"]) from e
    return _record_from_mapping(loaded)


# =============================================================================
# Handoff Log
# =============================================================================


def append_handoff(record: HandoffRecord, tasks_dir: Path) -> None:
    """Append a record to the task's handoff log.

    Raises:
        FileNotFoundError: If the task doesn't exist.
        StorageUnavailable: If the append fails.
    """
    task_path = find_task_path(record.task_id, tasks_dir)
    if task_path is None:
        raise FileNotFoundError(f"Task not found: {record.task_id}")

    log_path = task_path / HANDOFFS_FILE
    document = b"---\n" + dump_record(record)

    lock = _get_task_lock(record.task_id)
    with lock:
        try:
            with open(log_path, "ab") as f:
                f.write(document)
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            logger.error("Failed to append handoff for task '%s' at %s: %s", record.task_id, log_path, e)
            raise StorageUnavailable("append handoff", e) from e

    logger.debug(
        "Recorded handoff %s -> %s for task %s (%s)",
        record.from_role.value,
        record.to_role.value,
        record.task_id,
        record.checkpoint_completed.value,
    )


def read_handoffs(task_id: TaskId, tasks_dir: Path) -> List[HandoffRecord]:
    """Read a task's handoff log in append order.

    Invalid documents are skipped with a warning.

    Raises:
        StorageUnavailable: If the log exists but cannot be read.
    """
    task_path = find_task_path(task_id, tasks_dir)
    if task_path is None:
        return []
    log_path = task_path / HANDOFFS_FILE
    if not log_path.exists():
        return []

    try:
        text = log_path.read_text(encoding="utf-8")
    except OSError as e:
        logger.error("Failed to read handoff log for task '%s' at %s: %s", task_id, log_path, e)
        raise StorageUnavailable("read handoffs", e) from e

    records: List[HandoffRecord] = []
    try:
        documents = list(yaml.safe_load_all(text))
    except yaml.YAMLError as e:
        logger.warning("Corrupt handoff log for task '%s' at %s: %s", task_id, log_path, e)
        return []

    for document in documents:
        if document is None:
            continue
        try:
            records.append(_record_from_mapping(document))
        except HandoffFormatError as e:
            logger.warning("Skipping invalid handoff for task '%s': %s", task_id, e)
    return records


def dump_handoff_log(records: List[HandoffRecord]) -> str:
    """Render records as one YAML stream (used by the API)."""
    return "".join("---\n" + dump_record(r).decode("utf-8") for r in records)
