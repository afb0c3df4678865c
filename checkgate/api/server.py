"""
FastAPI REST API server for the checkpoint gate engine.

Exposes task lifecycle, proof submission, escalations and the handoff log to
agents, CI runners and human reviewers.

Usage:
    # Run standalone
    python -m checkgate.api.server --tasks-dir .checkgate/tasks

    # Or via factory
    from checkgate.api import create_app
    app = create_app(tasks_dir=Path("/var/lib/checkgate"))
    uvicorn.run(app, port=5010)

API Structure:
    /api/tasks/           - Task endpoints (from routes/tasks.py)
    /api/escalations/     - Escalation endpoints (from routes/escalations.py)
    /api/checkpoints      - The checkpoint checklist
    /api/health           - Health check
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..config.checkpoint_registry import checkpoint_definition_to_dict
from ..runtime.engine import GateEngine

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


# =============================================================================
# Global Engine Instance
# =============================================================================

_engine: Optional[GateEngine] = None


def get_engine() -> GateEngine:
    """Get the global GateEngine instance."""
    global _engine
    if _engine is None:
        _engine = GateEngine.get_instance()
    return _engine


# =============================================================================
# FastAPI Application Factory
# =============================================================================


def create_app(
    tasks_dir: Optional[Path] = None,
    engine: Optional[GateEngine] = None,
    enable_cors: bool = True,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        tasks_dir: Task store root. Ignored when ``engine`` is given.
        engine: Engine to serve. Defaults to a new engine over ``tasks_dir``.
        enable_cors: Whether to enable CORS middleware.

    Returns:
        Configured FastAPI application.
    """
    global _engine
    if engine is not None:
        _engine = engine
    elif tasks_dir is not None:
        _engine = GateEngine(tasks_dir=tasks_dir)
    else:
        _engine = None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = get_engine()
        logger.info("Gate API server starting (tasks_dir=%s)", engine.tasks_dir)
        yield
        logger.info("Gate API server stopped")

    app = FastAPI(
        title="Checkpoint Gate API",
        description="REST API for the checkpoint gate engine - tasks, proofs, escalations and handoffs.",
        version=__version__,
        lifespan=lifespan,
    )

    # Add CORS middleware
    if enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["*"],
        )

    # -------------------------------------------------------------------------
    # Include Modular Routers
    # -------------------------------------------------------------------------
    from .routes import escalations_router, tasks_router

    app.include_router(tasks_router, prefix="/api")
    app.include_router(escalations_router, prefix="/api")

    # -------------------------------------------------------------------------
    # Request Logging Middleware
    # -------------------------------------------------------------------------

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time
        logger.info(
            "%s %s %s %.3fs",
            request.method,
            request.url.path,
            response.status_code,
            duration,
        )
        return response

    # -------------------------------------------------------------------------
    # Checklist and Health
    # -------------------------------------------------------------------------

    @app.get("/api/checkpoints")
    async def list_checkpoints() -> Dict[str, Any]:
        """Return the checkpoint checklist and the role handoff table."""
        registry = get_engine().registry
        return {
            "checkpoints": [checkpoint_definition_to_dict(d) for d in registry.definitions()],
            "role_transitions": registry.transitions(),
            "completion_role": registry.completion_role.value,
        }

    @app.get("/api/health")
    async def health_check() -> Dict[str, Any]:
        """Health check endpoint."""
        engine = get_engine()
        config = engine.config
        return {
            "status": "ok",
            "version": __version__,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "tasks_dir": str(engine.tasks_dir),
            "max_attempts": config.max_attempts,
            "open_escalations": len(engine.list_escalations(open_only=True)),
        }

    return app


# Create default app instance for uvicorn
app = create_app()


# =============================================================================
# Main Entry Point
# =============================================================================


def main():
    """Run the API server."""
    import argparse

    import uvicorn

    parser = argparse.ArgumentParser(description="Checkpoint Gate API Server")
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    parser.add_argument("--port", type=int, default=5010, help="Port to bind to")
    parser.add_argument("--tasks-dir", type=Path, default=None, help="Task store root")
    parser.add_argument("--no-cors", action="store_true", help="Disable CORS")
    args = parser.parse_args()

    global app
    app = create_app(tasks_dir=args.tasks_dir, enable_cors=not args.no_cors)

    print(f"Starting Checkpoint Gate API server at http://{args.host}:{args.port}")
    print("\nEndpoints:")
    print("  Tasks:")
    print("    POST   /api/tasks                     - Create task")
    print("    GET    /api/tasks                     - List tasks")
    print("    GET    /api/tasks/{id}                - Get task")
    print("    POST   /api/tasks/{id}/proofs         - Submit proofs")
    print("    GET    /api/tasks/{id}/evaluation     - Evaluate current checkpoint")
    print("    POST   /api/tasks/{id}/advance        - Advance one checkpoint")
    print("    POST   /api/tasks/{id}/abandon        - Abandon task")
    print("    POST   /api/tasks/{id}/escalate       - Raise manual escalation")
    print("    POST   /api/tasks/{id}/archive        - Archive closed task")
    print("    GET    /api/tasks/{id}/handoffs       - Handoff log (json or yaml)")
    print("    GET    /api/tasks/{id}/events         - Audit events")
    print("  Escalations:")
    print("    GET    /api/escalations               - List escalations")
    print("    POST   /api/escalations/{id}/resolve  - Record a decision")
    print("  Other:")
    print("    GET    /api/checkpoints               - Checkpoint checklist")
    print("    GET    /api/health                    - Health check")

    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
