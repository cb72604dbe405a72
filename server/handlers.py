"""WebSocket message handlers for the Busfahrer server.

Each handler corresponds to a single message type from the client.
Handlers are dispatched via the HANDLERS dict in main.py. They raise
GameError subclasses for anything the client got wrong; the dispatch loop
turns those into an error reply to the sender only.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import WebSocket

from errors import ValidationError
from models.actions import parse_identity
from roster import Identity

logger = logging.getLogger(__name__)


@dataclass
class ConnectionContext:
    """State tracked per WebSocket connection."""

    websocket: WebSocket
    connection_id: str
    member_id: Optional[str] = None
    session_code: Optional[str] = None

    def enter(self, session_code: str, member_id: str) -> None:
        self.session_code = session_code
        self.member_id = member_id

    def leave(self) -> None:
        self.session_code = None
        self.member_id = None


def _identity_from(data: dict, ctx: ConnectionContext) -> Identity:
    """Identity from the message, defaulting the id to the connection id."""
    raw = data.get("player")
    if raw is None:
        raw = {"id": ctx.connection_id, "name": data.get("player_name", "Player")}
    payload = parse_identity(raw)
    return Identity(
        id=payload.id,
        name=payload.name,
        avatar=payload.avatar,
        title=payload.title,
        gender=payload.gender,
    )


def _require_membership(ctx: ConnectionContext) -> tuple[str, str]:
    if not ctx.session_code or not ctx.member_id:
        raise ValidationError("Join a session first")
    return ctx.session_code, ctx.member_id


# ---------------------------------------------------------------------------
# Lobby / Session handlers
# ---------------------------------------------------------------------------

async def handle_create_session(data: dict, ctx: ConnectionContext, *, session_manager, **kw) -> None:
    if ctx.session_code:
        raise ValidationError("Leave your current session first")

    identity = _identity_from(data, ctx)
    session = await session_manager.create_session(identity, websocket=ctx.websocket)
    ctx.enter(session.code, identity.id)

    await ctx.websocket.send_json({
        "type": "session_created",
        "session_code": session.code,
        "member_id": identity.id,
        "role": "player",
    })
    await ctx.websocket.send_json(session.snapshot(identity.id))


async def handle_join_session(data: dict, ctx: ConnectionContext, *, session_manager, **kw) -> None:
    if ctx.session_code:
        raise ValidationError("Leave your current session first")

    code = str(data.get("session_code", "")).upper()
    role = data.get("role", "player")
    identity = _identity_from(data, ctx)

    session = await session_manager.join_session(code, identity, role=role, websocket=ctx.websocket)
    ctx.enter(session.code, identity.id)

    await ctx.websocket.send_json({
        "type": "session_joined",
        "session_code": session.code,
        "member_id": identity.id,
        "role": role,
    })


async def handle_reconnect(data: dict, ctx: ConnectionContext, *, session_manager, **kw) -> None:
    code = str(data.get("session_code", "")).upper()
    member_id = data.get("member_id")
    if not member_id:
        raise ValidationError("member_id is required to reconnect")

    session = await session_manager.mark_reconnected(code, member_id, websocket=ctx.websocket)
    ctx.enter(session.code, member_id)

    await ctx.websocket.send_json({
        "type": "session_joined",
        "session_code": session.code,
        "member_id": member_id,
        "role": session.role_of(member_id),
        "reconnected": True,
    })


async def handle_leave_session(data: dict, ctx: ConnectionContext, *, session_manager, **kw) -> None:
    if ctx.session_code:
        await session_manager.leave_session(ctx.session_code, ctx.member_id)
        ctx.leave()


async def handle_kick(data: dict, ctx: ConnectionContext, *, session_manager, **kw) -> None:
    code, member_id = _require_membership(ctx)
    target_id = data.get("target_id")
    if not target_id:
        raise ValidationError("target_id is required")
    await session_manager.kick(code, member_id, target_id)


# ---------------------------------------------------------------------------
# Game handlers
# ---------------------------------------------------------------------------

async def handle_start_game(data: dict, ctx: ConnectionContext, *, session_manager, **kw) -> None:
    code, member_id = _require_membership(ctx)
    await session_manager.start_game(code, member_id, data.get("settings"))


async def handle_action(data: dict, ctx: ConnectionContext, *, session_manager, **kw) -> None:
    code, member_id = _require_membership(ctx)
    result = await session_manager.submit_action(code, member_id, data.get("payload"))
    if not result.ok and result.error is not None:
        await ctx.websocket.send_json(result.error.to_dict())


async def handle_new_game(data: dict, ctx: ConnectionContext, *, session_manager, **kw) -> None:
    code, member_id = _require_membership(ctx)
    await session_manager.new_game(code, member_id)


async def handle_end_game(data: dict, ctx: ConnectionContext, *, session_manager, **kw) -> None:
    code, member_id = _require_membership(ctx)
    await session_manager.end_game(code, member_id)
    ctx.leave()


async def handle_get_state(data: dict, ctx: ConnectionContext, *, session_manager, **kw) -> None:
    code, member_id = _require_membership(ctx)
    session = session_manager.get_session(code)
    async with session.lock:
        snapshot = session.snapshot(member_id)
    await ctx.websocket.send_json(snapshot)


# ---------------------------------------------------------------------------
# Handler dispatch table
# ---------------------------------------------------------------------------

HANDLERS = {
    "create_session": handle_create_session,
    "join_session": handle_join_session,
    "reconnect": handle_reconnect,
    "leave_session": handle_leave_session,
    "kick": handle_kick,
    "start_game": handle_start_game,
    "action": handle_action,
    "new_game": handle_new_game,
    "end_game": handle_end_game,
    "get_state": handle_get_state,
}
