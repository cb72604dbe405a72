"""
Session API router.

Provides read-only endpoints for:
- Listing open lobbies
- Viewing a session as a spectator would
- Exporting a session's event log
"""

import logging

from fastapi import APIRouter, HTTPException

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sessions", tags=["sessions"])

# Service instance (set during app startup)
_session_manager = None


def set_session_manager(manager) -> None:
    """Set the session manager instance."""
    global _session_manager
    _session_manager = manager


def _require_manager():
    if _session_manager is None:
        raise HTTPException(status_code=503, detail="Session service unavailable")
    return _session_manager


def _require_session(code: str):
    session = _require_manager().find_session(code)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


@router.get("")
async def list_sessions():
    """Lobbies that currently accept players."""
    sessions = _require_manager().open_sessions()
    return {"sessions": sessions, "count": len(sessions)}


@router.get("/{code}")
async def get_session(code: str):
    """Session state from a spectator's point of view (no hands)."""
    session = _require_session(code)
    async with session.lock:
        snapshot = session.snapshot(None)
    snapshot["summary"] = session.summary()
    return snapshot


@router.get("/{code}/events")
async def get_session_events(code: str):
    """Audit log of a session, oldest first."""
    session = _require_session(code)
    async with session.lock:
        events = [event.to_dict() for event in session.events]
    return {"session_code": session.code, "events": events, "count": len(events)}
