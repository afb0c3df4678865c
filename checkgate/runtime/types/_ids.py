"""ID types and generators for the types package.

Provides task, proof and escalation ID generation, plus type aliases.
"""

from __future__ import annotations

import secrets
import string
from datetime import datetime, timezone

# Type aliases
TaskId = str
ProofId = str
EscalationId = str

_ALPHABET = string.ascii_lowercase + string.digits


def _suffix(length: int) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def generate_task_id() -> TaskId:
    """Generate a unique task ID.

    Creates IDs in the format: task-YYYYMMDD-HHMMSS-xxxxxx
    where xxxxxx is a random 6-character alphanumeric suffix.

    Returns:
        A unique task identifier string.

    Example:
        >>> task_id = generate_task_id()
        >>> task_id  # e.g., "task-20251208-143022-abc123"
    """
    now = datetime.now(timezone.utc)
    timestamp = now.strftime("%Y%m%d-%H%M%S")
    return f"task-{timestamp}-{_suffix(6)}"


def generate_proof_id() -> ProofId:
    """Generate a unique proof ID (prf-xxxxxxxxxxxx)."""
    return f"prf-{_suffix(12)}"


def generate_escalation_id() -> EscalationId:
    """Generate a unique escalation ID (esc-xxxxxxxxxxxx)."""
    return f"esc-{_suffix(12)}"
