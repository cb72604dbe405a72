"""
Health check endpoints for deployment.

Provides:
- /health - Basic liveness check (is the app running?)
- /ready - Readiness check with session counts
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

# Service references (set during app initialization)
_session_manager = None


def set_health_dependencies(session_manager=None):
    """Set dependencies for health checks."""
    global _session_manager
    _session_manager = session_manager


@router.get("/health")
async def health_check():
    """
    Basic liveness check - is the app running?

    This endpoint should always return 200 if the process is alive.
    """
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/ready")
async def readiness_check():
    """
    Readiness check - can the app accept sessions?

    Returns 503 until the session manager has been wired up.
    """
    if _session_manager is None:
        return JSONResponse(
            status_code=503,
            content={
                "status": "starting",
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )

    sessions = list(_session_manager.sessions.values())
    return {
        "status": "ok",
        "sessions": len(sessions),
        "games_in_progress": sum(1 for s in sessions if s.game.is_active),
        "members": sum(len(s.roster) for s in sessions),
        "connections": sum(_session_manager.hub.connection_count(s.code) for s in sessions),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
