"""
Routes package for the gate API.

This package contains the FastAPI routers for:
- tasks: Task lifecycle, proof submission, handoff log and events
- escalations: Escalation listing and decisions
"""

from .escalations import router as escalations_router
from .tasks import router as tasks_router

__all__ = [
    "tasks_router",
    "escalations_router",
]
