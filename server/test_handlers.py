"""
Test suite for WebSocket message handlers.

Tests handler basic flows and validation using mock WebSockets and a
real SessionManager.

Run with: pytest test_handlers.py -v
"""

import pytest

from errors import AuthorizationError, SessionNotFoundError, ValidationError
from game import GamePhase
from handlers import (
    HANDLERS,
    ConnectionContext,
    handle_action,
    handle_create_session,
    handle_end_game,
    handle_get_state,
    handle_join_session,
    handle_kick,
    handle_leave_session,
    handle_reconnect,
    handle_start_game,
)
from session import SessionManager


# =============================================================================
# Mock helpers
# =============================================================================

class MockWebSocket:
    """Mock WebSocket that collects sent messages."""

    def __init__(self):
        self.messages: list[dict] = []

    async def send_json(self, data: dict):
        self.messages.append(data)

    def last_message(self) -> dict:
        return self.messages[-1] if self.messages else {}

    def messages_of_type(self, msg_type: str) -> list[dict]:
        return [m for m in self.messages if m.get("type") == msg_type]


def make_ctx(websocket=None, connection_id="conn_123"):
    """Create a ConnectionContext with sensible defaults."""
    return ConnectionContext(websocket=websocket or MockWebSocket(), connection_id=connection_id)


def player(member_id: str, name: str = None, **extra) -> dict:
    return {"id": member_id, "name": name or member_id.title(), **extra}


async def create_and_join(manager, *others):
    """GM 'host' creates a session and every id in others joins it."""
    host = make_ctx(connection_id="c_host")
    await handle_create_session({"player": player("host")}, host, session_manager=manager)
    ctxs = {"host": host}
    for member_id in others:
        ctx = make_ctx(connection_id=f"c_{member_id}")
        await handle_join_session(
            {"session_code": host.session_code, "player": player(member_id)},
            ctx,
            session_manager=manager,
        )
        ctxs[member_id] = ctx
    return host.session_code, ctxs


# =============================================================================
# Session handlers
# =============================================================================

class TestCreateSession:

    @pytest.mark.asyncio
    async def test_creates_and_enters(self):
        manager = SessionManager()
        ctx = make_ctx()
        await handle_create_session({"player": player("alice", gender="female")}, ctx, session_manager=manager)

        assert ctx.session_code in manager.sessions
        assert ctx.member_id == "alice"
        created = ctx.websocket.messages_of_type("session_created")
        assert created[0]["session_code"] == ctx.session_code
        assert ctx.websocket.last_message()["type"] == "state"

    @pytest.mark.asyncio
    async def test_defaults_identity_to_connection(self):
        manager = SessionManager()
        ctx = make_ctx(connection_id="conn_42")
        await handle_create_session({"player_name": "Bob"}, ctx, session_manager=manager)

        session = manager.get_session(ctx.session_code)
        assert session.roster.get_player("conn_42").name == "Bob"

    @pytest.mark.asyncio
    async def test_invalid_identity(self):
        manager = SessionManager()
        with pytest.raises(ValidationError):
            await handle_create_session({"player": {"id": "", "name": "X"}}, make_ctx(), session_manager=manager)
        assert manager.sessions == {}

    @pytest.mark.asyncio
    async def test_cannot_create_twice(self):
        manager = SessionManager()
        ctx = make_ctx()
        await handle_create_session({"player": player("alice")}, ctx, session_manager=manager)
        with pytest.raises(ValidationError):
            await handle_create_session({"player": player("alice")}, ctx, session_manager=manager)


class TestJoinSession:

    @pytest.mark.asyncio
    async def test_join_lowercase_code(self):
        manager = SessionManager()
        code, _ = await create_and_join(manager)
        ctx = make_ctx()
        await handle_join_session({"session_code": code.lower(), "player": player("bob")}, ctx, session_manager=manager)

        assert ctx.session_code == code
        assert ctx.websocket.messages_of_type("session_joined")[0]["role"] == "player"

    @pytest.mark.asyncio
    async def test_join_as_spectator(self):
        manager = SessionManager()
        code, _ = await create_and_join(manager)
        ctx = make_ctx()
        await handle_join_session(
            {"session_code": code, "role": "spectator", "player": player("eve")},
            ctx,
            session_manager=manager,
        )
        assert manager.get_session(code).role_of("eve") == "spectator"

    @pytest.mark.asyncio
    async def test_unknown_code(self):
        manager = SessionManager()
        ctx = make_ctx()
        with pytest.raises(SessionNotFoundError):
            await handle_join_session({"session_code": "ZZZZZ", "player": player("bob")}, ctx, session_manager=manager)
        assert ctx.session_code is None


class TestReconnect:

    @pytest.mark.asyncio
    async def test_requires_member_id(self):
        manager = SessionManager()
        code, _ = await create_and_join(manager)
        with pytest.raises(ValidationError):
            await handle_reconnect({"session_code": code}, make_ctx(), session_manager=manager)

    @pytest.mark.asyncio
    async def test_resumes_membership(self):
        manager = SessionManager()
        code, _ = await create_and_join(manager, "bob")
        await manager.mark_disconnected(code, "bob")

        ctx = make_ctx()
        await handle_reconnect({"session_code": code, "member_id": "bob"}, ctx, session_manager=manager)
        assert ctx.member_id == "bob"
        assert ctx.websocket.messages_of_type("session_joined")[0]["reconnected"] is True
        assert manager.get_session(code).roster.get_player("bob").connected


class TestLeaveAndKick:

    @pytest.mark.asyncio
    async def test_leave_clears_context(self):
        manager = SessionManager()
        code, ctxs = await create_and_join(manager, "bob")
        await handle_leave_session({}, ctxs["bob"], session_manager=manager)

        assert ctxs["bob"].session_code is None
        assert manager.get_session(code).roster.get_member("bob") is None

    @pytest.mark.asyncio
    async def test_leave_without_session_is_noop(self):
        await handle_leave_session({}, make_ctx(), session_manager=SessionManager())

    @pytest.mark.asyncio
    async def test_kick_requires_target(self):
        manager = SessionManager()
        _, ctxs = await create_and_join(manager, "bob")
        with pytest.raises(ValidationError):
            await handle_kick({}, ctxs["host"], session_manager=manager)

    @pytest.mark.asyncio
    async def test_non_master_cannot_kick(self):
        manager = SessionManager()
        _, ctxs = await create_and_join(manager, "bob", "carl")
        with pytest.raises(AuthorizationError):
            await handle_kick({"target_id": "carl"}, ctxs["bob"], session_manager=manager)


# =============================================================================
# Game handlers
# =============================================================================

class TestGameHandlers:

    @pytest.mark.asyncio
    async def test_requires_membership(self):
        manager = SessionManager()
        ctx = make_ctx()
        for handler in (handle_start_game, handle_action, handle_get_state, handle_end_game):
            with pytest.raises(ValidationError):
                await handler({}, ctx, session_manager=manager)

    @pytest.mark.asyncio
    async def test_start_game_with_settings(self):
        manager = SessionManager()
        code, ctxs = await create_and_join(manager, "bob")
        await handle_start_game({"settings": {"pyramid_height": 3, "seed": 7}}, ctxs["host"], session_manager=manager)

        session = manager.get_session(code)
        assert session.game.phase == GamePhase.PHASE1
        assert len(session.game.pyramid) == 3
        assert ctxs["bob"].websocket.last_message()["game"]["phase"] == "phase1"

    @pytest.mark.asyncio
    async def test_settings_must_be_object(self):
        manager = SessionManager()
        _, ctxs = await create_and_join(manager, "bob")
        with pytest.raises(ValidationError):
            await handle_start_game({"settings": [1, 2]}, ctxs["host"], session_manager=manager)

    @pytest.mark.asyncio
    async def test_bad_setting_value_keeps_lobby(self):
        manager = SessionManager()
        code, ctxs = await create_and_join(manager, "bob")
        with pytest.raises(ValidationError):
            await handle_start_game({"settings": {"pyramid_height": "abc"}}, ctxs["host"], session_manager=manager)
        assert manager.get_session(code).game.phase == GamePhase.LOBBY

    @pytest.mark.asyncio
    async def test_action_error_sent_to_sender_only(self):
        manager = SessionManager()
        _, ctxs = await create_and_join(manager, "bob")
        await handle_action(
            {"payload": {"action": "reveal_row", "row_index": 0}},
            ctxs["bob"],
            session_manager=manager,
        )

        error = ctxs["bob"].websocket.last_message()
        assert error == {"type": "error", "code": "INVALID_PHASE", "message": error["message"]}
        assert not ctxs["host"].websocket.messages_of_type("error")

    @pytest.mark.asyncio
    async def test_action_success_broadcasts(self):
        manager = SessionManager()
        _, ctxs = await create_and_join(manager, "bob")
        await handle_start_game({"settings": {"seed": 7}}, ctxs["host"], session_manager=manager)
        await handle_action(
            {"payload": {"action": "reveal_row", "row_index": 0}},
            ctxs["bob"],
            session_manager=manager,
        )

        for ctx in ctxs.values():
            state = ctx.websocket.last_message()
            assert state["type"] == "state"
            assert state["game"]["current_row"] == 0

    @pytest.mark.asyncio
    async def test_get_state(self):
        manager = SessionManager()
        code, ctxs = await create_and_join(manager, "bob")
        await handle_get_state({}, ctxs["bob"], session_manager=manager)

        state = ctxs["bob"].websocket.last_message()
        assert state["session_code"] == code
        assert state["you"] == "bob"
        assert state["role"] == "player"

    @pytest.mark.asyncio
    async def test_end_game_closes_session(self):
        manager = SessionManager()
        code, ctxs = await create_and_join(manager, "bob")
        await handle_end_game({}, ctxs["host"], session_manager=manager)

        assert code not in manager.sessions
        assert ctxs["host"].session_code is None
        assert ctxs["bob"].websocket.messages_of_type("session_closed")


def test_dispatch_table_covers_all_messages():
    assert set(HANDLERS) == {
        "create_session", "join_session", "reconnect", "leave_session", "kick",
        "start_game", "action", "new_game", "end_game", "get_state",
    }
