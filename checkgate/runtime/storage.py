"""
storage.py - Disk I/O helpers for tasks, proofs, escalations and events.

This module persists everything the gate engine owns. The storage layout is:

    <tasks_dir>/
      <task_id>/
        task.json          # Task serialized (rewritten atomically)
        proofs.jsonl       # newline-delimited Proof objects (append-only)
        handoffs.yaml      # YAML stream of HandoffRecords (see handoff_io.py)
        events.jsonl       # newline-delimited TaskEvent objects (append-only)
      _escalations/
        <escalation_id>.json
      _archive/
        <task_id>/         # archived task directories, same layout

Nothing here is ever deleted. Archiving moves a task directory under
``_archive/`` where it stays readable.

Write failures surface as StorageUnavailable so the engine never advances a
checkpoint on a half-written store.

Usage:
    from checkgate.runtime.storage import (
        get_task_path, find_task_path, task_exists, create_task_dir,
        write_task, read_task, list_task_ids, archive_task_dir,
        append_proofs, read_proofs,
        write_escalation, read_escalation, list_escalations,
        append_event, read_events,
    )
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .errors import StorageUnavailable
from .types import (
    Checkpoint,
    Escalation,
    EscalationId,
    Proof,
    Task,
    TaskEvent,
    TaskId,
    escalation_from_dict,
    escalation_to_dict,
    proof_from_dict,
    proof_to_dict,
    task_event_from_dict,
    task_event_to_dict,
    task_from_dict,
    task_to_dict,
)

# Module logger
logger = logging.getLogger(__name__)

# File names
TASK_FILE = "task.json"
PROOFS_FILE = "proofs.jsonl"
HANDOFFS_FILE = "handoffs.yaml"
EVENTS_FILE = "events.jsonl"
ESCALATIONS_DIR = "_escalations"
ARCHIVE_DIR = "_archive"

# -----------------------------------------------------------------------------
# Per-task locking for append safety
# -----------------------------------------------------------------------------
# Appends to one task's JSONL files must not interleave. This provides
# in-process locking; cross-process locking is out of scope.

_TASK_LOCKS: Dict[TaskId, threading.Lock] = {}
_TASK_LOCKS_LOCK = threading.Lock()

# -----------------------------------------------------------------------------
# Per-task sequence tracking for monotonic event ordering
# -----------------------------------------------------------------------------

_task_sequences: Dict[str, int] = {}
_seq_lock = threading.Lock()


def _next_seq(task_id: str) -> int:
    """Get the next monotonic event sequence number for a task."""
    with _seq_lock:
        seq = _task_sequences.get(task_id, 0) + 1
        _task_sequences[task_id] = seq
        return seq


def _init_seq_from_disk(task_id: str, task_dir: Path) -> None:
    """Initialize the sequence counter from an existing events.jsonl.

    Handles restarts: scans existing events for the highest sequence number
    so new events continue from there.
    """
    events_file = task_dir / EVENTS_FILE
    if not events_file.exists():
        return

    max_seq = 0
    try:
        with open(events_file, "r", encoding="utf-8") as f:
            for line in f:
                if line.strip():
                    try:
                        event = json.loads(line)
                        max_seq = max(max_seq, event.get("seq", 0))
                    except json.JSONDecodeError:
                        continue
    except OSError:
        pass

    if max_seq > 0:
        with _seq_lock:
            current = _task_sequences.get(task_id, 0)
            if max_seq > current:
                _task_sequences[task_id] = max_seq
                logger.debug("Recovered sequence counter for task '%s': max_seq=%d", task_id, max_seq)


def _get_task_lock(task_id: TaskId) -> threading.Lock:
    """Get or create the append lock for a specific task ID."""
    with _TASK_LOCKS_LOCK:
        lock = _TASK_LOCKS.get(task_id)
        if lock is None:
            lock = threading.Lock()
            _TASK_LOCKS[task_id] = lock
        return lock


# -----------------------------------------------------------------------------
# Atomic File I/O Helpers
# -----------------------------------------------------------------------------


def _atomic_write_json(path: Path, data: Any, indent: int = 2) -> None:
    """Write JSON data to a file atomically.

    Uses a temporary file + os.replace pattern so readers never observe a
    partial document.

    Args:
        path: Destination file path.
        data: JSON-serializable data.
        indent: JSON indentation level.
    """
    parent = path.parent
    parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(
        suffix=".tmp",
        prefix=path.name + ".",
        dir=parent,
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=indent, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())

        os.replace(tmp_path, path)
    except Exception:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def _append_lines(path: Path, lines: Iterable[str]) -> None:
    """Append lines to a file and flush them to disk."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a", encoding="utf-8") as f:
        for line in lines:
            f.write(line + "\n")
        f.flush()
        os.fsync(f.fileno())


def _load_json_safe(path: Path, label: str) -> Optional[Dict[str, Any]]:
    """Load a JSON document.

    Returns None when the file doesn't exist or is corrupt (logged), so a
    damaged record reads as absent rather than as valid.

    Raises:
        StorageUnavailable: If the file exists but cannot be read.
    """
    if not path.exists():
        return None

    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        logger.warning("Corrupt %s at %s: %s (treating as missing)", label, path, e)
        return None
    except OSError as e:
        logger.error("Failed to read %s at %s: %s", label, path, e)
        raise StorageUnavailable(f"read {label}", e) from e


def _read_jsonl(path: Path, label: str) -> List[Dict[str, Any]]:
    """Read a JSONL file, skipping malformed lines.

    Raises:
        StorageUnavailable: If the file exists but cannot be read.
    """
    if not path.exists():
        return []

    rows: List[Dict[str, Any]] = []
    try:
        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    rows.append(json.loads(line))
                except json.JSONDecodeError:
                    logger.warning("Skipping malformed line in %s at %s", label, path)
                    continue
    except OSError as e:
        logger.error("Failed to read %s at %s: %s", label, path, e)
        raise StorageUnavailable(f"read {label}", e) from e
    return rows


# -----------------------------------------------------------------------------
# Path Helpers
# -----------------------------------------------------------------------------


def get_task_path(task_id: TaskId, tasks_dir: Path) -> Path:
    """Get the path for an active task directory.

    Args:
        task_id: The unique task identifier.
        tasks_dir: Root of the task store.

    Returns:
        Path to the task directory (it may not exist).
    """
    return tasks_dir / task_id


def get_archive_path(task_id: TaskId, tasks_dir: Path) -> Path:
    """Get the path a task directory occupies once archived."""
    return tasks_dir / ARCHIVE_DIR / task_id


def find_task_path(task_id: TaskId, tasks_dir: Path) -> Optional[Path]:
    """Find a task's directory, checking active tasks first, then the archive.

    Returns:
        Path to the task directory, or None if the task is unknown.
    """
    for candidate in (get_task_path(task_id, tasks_dir), get_archive_path(task_id, tasks_dir)):
        if (candidate / TASK_FILE).exists():
            return candidate
    return None


def task_exists(task_id: TaskId, tasks_dir: Path) -> bool:
    """Check if a task exists, active or archived."""
    return find_task_path(task_id, tasks_dir) is not None


def task_exists_active(task_id: TaskId, tasks_dir: Path) -> bool:
    """Check if a task exists outside the archive."""
    return (get_task_path(task_id, tasks_dir) / TASK_FILE).exists()


def create_task_dir(task_id: TaskId, tasks_dir: Path) -> Path:
    """Create the task directory structure.

    Also initializes the event sequence counter from disk, enabling recovery
    after restarts.

    Raises:
        StorageUnavailable: If the directory cannot be created.
    """
    task_path = get_task_path(task_id, tasks_dir)
    try:
        task_path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error("Failed to create task directory %s: %s", task_path, e)
        raise StorageUnavailable("create task directory", e) from e

    _init_seq_from_disk(task_id, task_path)
    return task_path


def _existing_task_path(task_id: TaskId, tasks_dir: Path) -> Path:
    path = find_task_path(task_id, tasks_dir)
    if path is None:
        raise FileNotFoundError(f"Task not found: {task_id}")
    return path


# -----------------------------------------------------------------------------
# Task I/O
# -----------------------------------------------------------------------------


def write_task(task: Task, tasks_dir: Path) -> Path:
    """Write a Task to task.json atomically.

    Archived tasks are written in place under the archive directory.

    Returns:
        Path to the written task.json file.

    Raises:
        StorageUnavailable: If the write fails.
    """
    task_path = find_task_path(task.id, tasks_dir) or create_task_dir(task.id, tasks_dir)
    task_file = task_path / TASK_FILE
    try:
        _atomic_write_json(task_file, task_to_dict(task))
    except OSError as e:
        logger.error("Failed to write task '%s' at %s: %s", task.id, task_file, e)
        raise StorageUnavailable("write task", e) from e
    return task_file


def read_task(task_id: TaskId, tasks_dir: Path) -> Optional[Task]:
    """Read a Task from task.json.

    Returns:
        The Task if it exists and is valid, None otherwise.
    """
    task_path = find_task_path(task_id, tasks_dir)
    if task_path is None:
        return None

    data = _load_json_safe(task_path / TASK_FILE, "task")
    if data is None:
        return None

    try:
        return task_from_dict(data)
    except (KeyError, TypeError, ValueError) as e:
        logger.warning("Invalid task data for '%s' at %s: %s", task_id, task_path, e)
        return None


def list_task_ids(tasks_dir: Path, include_archived: bool = False) -> List[TaskId]:
    """List task IDs in the store, sorted by ID (which sorts by creation time)."""
    ids: List[TaskId] = []
    roots = [tasks_dir]
    if include_archived:
        roots.append(tasks_dir / ARCHIVE_DIR)

    for root in roots:
        if not root.exists():
            continue
        for item in root.iterdir():
            if item.is_dir() and not item.name.startswith("_") and (item / TASK_FILE).exists():
                ids.append(item.name)

    return sorted(ids)


def archive_task_dir(task_id: TaskId, tasks_dir: Path) -> Path:
    """Move an active task directory under the archive directory.

    Returns:
        The new task directory path.

    Raises:
        FileNotFoundError: If the task is not an active task.
        StorageUnavailable: If the move fails.
    """
    source = get_task_path(task_id, tasks_dir)
    if not (source / TASK_FILE).exists():
        raise FileNotFoundError(f"Task not found: {task_id}")

    target = get_archive_path(task_id, tasks_dir)
    lock = _get_task_lock(task_id)
    with lock:
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(source), str(target))
        except OSError as e:
            logger.error("Failed to archive task '%s': %s", task_id, e)
            raise StorageUnavailable("archive task", e) from e

    logger.info("Archived task %s to %s", task_id, target)
    return target


# -----------------------------------------------------------------------------
# Proof I/O (JSONL, append-only)
# -----------------------------------------------------------------------------


def append_proofs(task_id: TaskId, proofs: List[Proof], tasks_dir: Path) -> None:
    """Append proofs to proofs.jsonl.

    All proofs of one call are written in a single append so a batch is
    never half-recorded by this process.

    Raises:
        FileNotFoundError: If the task doesn't exist.
        StorageUnavailable: If the append fails.
    """
    if not proofs:
        return
    task_path = _existing_task_path(task_id, tasks_dir)
    proofs_path = task_path / PROOFS_FILE
    lines = [json.dumps(proof_to_dict(p), ensure_ascii=False) for p in proofs]

    lock = _get_task_lock(task_id)
    with lock:
        try:
            _append_lines(proofs_path, lines)
        except OSError as e:
            logger.error("Failed to append proofs for task '%s' at %s: %s", task_id, proofs_path, e)
            raise StorageUnavailable("append proofs", e) from e


def read_proofs(
    task_id: TaskId,
    tasks_dir: Path,
    checkpoint: Optional[Checkpoint] = None,
) -> List[Proof]:
    """Read proofs in submission order, optionally for one checkpoint only.

    Malformed lines are skipped; a proof that cannot be read never counts
    towards a criterion.
    """
    task_path = find_task_path(task_id, tasks_dir)
    if task_path is None:
        return []

    proofs: List[Proof] = []
    for row in _read_jsonl(task_path / PROOFS_FILE, "proofs"):
        try:
            proof = proof_from_dict(row)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Skipping invalid proof for task '%s': %s", task_id, e)
            continue
        if checkpoint is None or proof.checkpoint == checkpoint:
            proofs.append(proof)
    return proofs


# -----------------------------------------------------------------------------
# Escalation I/O
# -----------------------------------------------------------------------------


def _escalation_path(escalation_id: EscalationId, tasks_dir: Path) -> Path:
    return tasks_dir / ESCALATIONS_DIR / f"{escalation_id}.json"


def write_escalation(escalation: Escalation, tasks_dir: Path) -> Path:
    """Write an Escalation record atomically.

    Raises:
        StorageUnavailable: If the write fails.
    """
    path = _escalation_path(escalation.id, tasks_dir)
    try:
        _atomic_write_json(path, escalation_to_dict(escalation))
    except OSError as e:
        logger.error("Failed to write escalation '%s' at %s: %s", escalation.id, path, e)
        raise StorageUnavailable("write escalation", e) from e
    return path


def read_escalation(escalation_id: EscalationId, tasks_dir: Path) -> Optional[Escalation]:
    """Read an Escalation record, or None if unknown or corrupt."""
    data = _load_json_safe(_escalation_path(escalation_id, tasks_dir), "escalation")
    if data is None:
        return None
    try:
        return escalation_from_dict(data)
    except (KeyError, TypeError, ValueError) as e:
        logger.warning("Invalid escalation data for '%s': %s", escalation_id, e)
        return None


def list_escalations(
    tasks_dir: Path,
    task_id: Optional[TaskId] = None,
    open_only: bool = False,
) -> List[Escalation]:
    """List escalations, oldest first.

    Args:
        tasks_dir: Root of the task store.
        task_id: Only escalations of this task.
        open_only: Only unresolved escalations.
    """
    root = tasks_dir / ESCALATIONS_DIR
    if not root.exists():
        return []

    escalations: List[Escalation] = []
    for path in root.glob("*.json"):
        escalation = read_escalation(path.stem, tasks_dir)
        if escalation is None:
            continue
        if task_id is not None and escalation.task_id != task_id:
            continue
        if open_only and escalation.is_resolved:
            continue
        escalations.append(escalation)

    escalations.sort(key=lambda e: (e.raised_at, e.id))
    return escalations


# -----------------------------------------------------------------------------
# TaskEvent I/O (JSONL)
# -----------------------------------------------------------------------------


def append_event(event: TaskEvent, tasks_dir: Path) -> None:
    """Append a TaskEvent to the task's events.jsonl.

    The storage layer assigns a monotonically increasing sequence number to
    each event before writing.

    Audit appends never fail the operation that emitted them: the state
    change is already durable by the time its event is written, so errors
    are logged instead of raised.
    """
    task_path = find_task_path(event.task_id, tasks_dir)
    if task_path is None:
        logger.warning("Dropping event '%s' for unknown task '%s'", event.kind, event.task_id)
        return
    events_path = task_path / EVENTS_FILE

    lock = _get_task_lock(event.task_id)
    with lock:
        if event.task_id not in _task_sequences:
            _init_seq_from_disk(event.task_id, task_path)
        try:
            event.seq = _next_seq(event.task_id)
            line = json.dumps(task_event_to_dict(event), ensure_ascii=False)
            _append_lines(events_path, [line])
        except OSError as e:
            logger.warning(
                "Failed to append event for task '%s' at %s: %s",
                event.task_id,
                events_path,
                e,
            )
        except (TypeError, ValueError) as e:
            logger.warning("Failed to serialize event for task '%s': %s", event.task_id, e)


def read_events(task_id: TaskId, tasks_dir: Path) -> List[TaskEvent]:
    """Read all events of a task in sequence order."""
    task_path = find_task_path(task_id, tasks_dir)
    if task_path is None:
        return []

    events: List[TaskEvent] = []
    for row in _read_jsonl(task_path / EVENTS_FILE, "events"):
        try:
            events.append(task_event_from_dict(row))
        except (KeyError, TypeError, ValueError):
            continue
    events.sort(key=lambda e: e.seq)
    return events
