"""
Checkpoint Gate API - FastAPI REST API for the gate engine.

Endpoints:
    Tasks (from routes/tasks.py):
        POST   /api/tasks                    - Create task
        GET    /api/tasks                    - List tasks
        GET    /api/tasks/{id}               - Get task
        POST   /api/tasks/{id}/proofs        - Submit proofs
        POST   /api/tasks/{id}/advance       - Advance one checkpoint
        POST   /api/tasks/{id}/abandon       - Abandon task
        POST   /api/tasks/{id}/escalate      - Raise manual escalation
        POST   /api/tasks/{id}/archive       - Archive closed task
        GET    /api/tasks/{id}/handoffs      - Handoff log
        GET    /api/tasks/{id}/events        - Audit events

    Escalations (from routes/escalations.py):
        GET    /api/escalations              - List escalations
        POST   /api/escalations/{id}/resolve - Record a decision

    GET    /api/checkpoints                  - Checkpoint checklist
    GET    /api/health                       - Health check
"""

from .server import create_app, get_engine

__all__ = ["create_app", "get_engine"]
