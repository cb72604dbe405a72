"""
Session management for multiplayer Busfahrer games.

A Session is one lobby: a unique code, a roster of players and
spectators, the Game they play, a TurnScheduler and an audit EventLog.
The SessionManager creates, looks up and destroys sessions and is the
only entry point for changing them.

Concurrency:
    Every mutation of a session runs under its asyncio.Lock. Per-member
    snapshots are built while the lock is held, so every member sees the
    same committed version; the snapshots are delivered after the lock is
    released so a slow connection never blocks the session.

Errors:
    Recoverable GameErrors are reported back without changing state. Any
    other exception while applying an action ends that session's game with
    a diagnostic; other sessions and the server keep running.
"""

import asyncio
import logging
import random
import string
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import partial
from typing import Optional

from config import ServerConfig, config
from errors import (
    AuthorizationError,
    GameError,
    InternalInconsistencyError,
    InvalidPhaseError,
    SessionFullError,
    SessionNotFoundError,
    ValidationError,
)
from game import Game, GamePhase, GameSettings
from logging_config import get_logger
from models.actions import parse_action, parse_settings
from models.events import EventLog, EventType
from roster import Identity, Player, Roster
from scheduler import TurnScheduler
from services.broadcast import BroadcastHub

logger = logging.getLogger(__name__)

ROLES = ("player", "spectator")

GAME_MASTER_PERMISSIONS = ["start_game", "kick", "close_row", "new_game", "end_game"]


@dataclass
class ActionResult:
    """Outcome of a submitted action."""

    ok: bool
    delta: Optional[dict] = None
    error: Optional[GameError] = None
    version: int = 0

    def to_dict(self) -> dict:
        result = {"ok": self.ok, "version": self.version, "delta": self.delta}
        if self.error is not None:
            result["error"] = self.error.to_dict()
        return result


@dataclass
class Session:
    """
    A game lobby hosting one Busfahrer game at a time.

    Attributes:
        code: Unique uppercase code for joining (e.g. "QXKPT").
        roster: Players and spectators.
        game: The current game (reset in place by new_game).
        scheduler: Turn authority and grace timers for the game.
        events: Audit log of every committed change.
        lock: Serializes all mutations of this session.
        hub: Connections used to deliver snapshots and notifications.
    """

    code: str
    hub: BroadcastHub
    roster: Roster = field(default_factory=Roster)
    game: Game = None
    scheduler: TurnScheduler = None
    events: EventLog = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    grace_seconds: float = 30.0

    def __post_init__(self):
        self.events = EventLog(self.code)
        if self.game is None:
            self.game = Game(roster=self.roster)
        self.game.set_event_emitter(self._record_game_event)
        self.scheduler = TurnScheduler(self.game, grace_seconds=self.grace_seconds)
        self.log = get_logger(__name__).with_context(session_code=self.code)

    def _record_game_event(self, event_type: EventType, player_id: Optional[str], data: dict) -> None:
        self.events.append(event_type, player_id, **data)

    # -------------------------------------------------------------------------
    # Views
    # -------------------------------------------------------------------------

    def role_of(self, member_id: str) -> Optional[str]:
        if self.roster.get_player(member_id) is not None:
            return "player"
        if self.roster.get_spectator(member_id) is not None:
            return "spectator"
        return None

    def permissions(self, member_id: str) -> list[str]:
        if not self.roster.is_game_master(member_id):
            return []
        perms = list(GAME_MASTER_PERMISSIONS)
        if self.game.settings.reveal_mode == "master":
            perms.append("reveal_row")
        return perms

    def snapshot(self, viewer_id: Optional[str] = None, delta: Optional[dict] = None) -> dict:
        """
        Full state message as one member sees it.

        A player sees their own hand; spectators and anonymous viewers see
        no hands. The game-master's view lists its extra permissions.
        """
        role = self.role_of(viewer_id) if viewer_id else None
        message = {
            "type": "state",
            "session_code": self.code,
            "version": self.game.version,
            "role": role,
            "you": viewer_id,
            "roster": self.roster.summary(),
            "game": self.game.get_state(viewer_id if role == "player" else None),
            "delta": delta,
        }
        if role == "player" and self.roster.is_game_master(viewer_id):
            message["permissions"] = self.permissions(viewer_id)
        return message

    def snapshots(self, delta: Optional[dict] = None) -> dict[str, dict]:
        """Snapshot for every member, keyed by member id. Call under the lock."""
        return {member_id: self.snapshot(member_id, delta) for member_id in self.roster.member_ids()}

    async def notify(self, message: dict) -> list[str]:
        """Send a transient notification (popup, sound cue) to every member."""
        return await self.hub.notify(self.code, message)

    def summary(self) -> dict:
        gm = self.roster.game_master()
        return {
            "code": self.code,
            "phase": self.game.phase.value,
            "players": len(self.roster.players),
            "spectators": len(self.roster.spectators),
            "game_master": gm.name if gm else None,
            "avatars": [p.identity.avatar for p in self.roster.players],
            "created_at": self.created_at.isoformat(),
        }


class SessionManager:
    """
    Manages all active sessions of this server process.

    A single SessionManager instance is used by the server; tests create
    their own with a private BroadcastHub.
    """

    def __init__(self, hub: Optional[BroadcastHub] = None, server_config: Optional[ServerConfig] = None) -> None:
        self.sessions: dict[str, Session] = {}
        self.hub = hub or BroadcastHub()
        self.config = server_config or config

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    def _generate_code(self, max_attempts: int = 100) -> str:
        """Generate a unique uppercase session code."""
        length = self.config.SESSION_CODE_LENGTH
        for _ in range(max_attempts):
            code = "".join(random.choices(string.ascii_uppercase, k=length))
            if code not in self.sessions:
                return code
        raise RuntimeError("Could not generate unique session code")

    def find_session(self, code: str) -> Optional[Session]:
        """Get a session by its code (case-insensitive), or None."""
        if not code:
            return None
        return self.sessions.get(code.upper())

    def get_session(self, code: str) -> Session:
        """
        Get a session by its code (case-insensitive).

        Raises:
            SessionNotFoundError: If no such session exists.
        """
        session = self.find_session(code)
        if session is None:
            raise SessionNotFoundError(f"Session {code} not found")
        return session

    def is_game_master(self, code: str, member_id: str) -> bool:
        session = self.find_session(code)
        return session is not None and session.roster.is_game_master(member_id)

    def open_sessions(self) -> list[dict]:
        """Lobbies that still accept players."""
        return [
            s.summary() for s in self.sessions.values()
            if s.game.phase in (GamePhase.LOBBY, GamePhase.ENDED)
        ]

    def _require_game_master(self, session: Session, actor_id: str, what: str) -> None:
        if not session.roster.is_game_master(actor_id):
            raise AuthorizationError(f"Only the game-master can {what}")

    # -------------------------------------------------------------------------
    # Delivery
    # -------------------------------------------------------------------------

    async def _publish(self, session: Session, messages: dict[str, dict]) -> None:
        """Deliver snapshots built under the lock and mark dead connections."""
        dead = await self.hub.publish(session.code, messages)
        for member_id in dead:
            await self.mark_disconnected(session.code, member_id)

    # -------------------------------------------------------------------------
    # Membership
    # -------------------------------------------------------------------------

    async def create_session(self, identity: Identity, websocket=None) -> Session:
        """
        Create a session with the creator as its first player and game-master.
        """
        code = self._generate_code()
        session = Session(
            code=code,
            hub=self.hub,
            grace_seconds=self.config.rules.PHASE3_GRACE_SECONDS,
        )
        session.roster.add_player(identity)
        self.sessions[code] = session
        session.events.append(EventType.SESSION_CREATED, identity.id)
        session.events.append(EventType.MEMBER_JOINED, identity.id, role="player")
        if websocket is not None:
            self.hub.attach(code, identity.id, websocket)
        session.log.info(f"Session created by {identity.id}")
        return session

    async def join_session(self, code: str, identity: Identity, role: str = "player", websocket=None) -> Session:
        """
        Add a member to a session.

        Players can only join while no game is running; spectators can
        join at any time.

        Raises:
            ValidationError: If role is unknown.
            SessionNotFoundError: If the session does not exist.
            InvalidPhaseError: If a player tries to join a running game.
            SessionFullError: If the role's capacity is reached.
            DuplicateIdentityError: If the id is already a member.
        """
        if role not in ROLES:
            raise ValidationError(f"Unknown role: {role}")
        session = self.get_session(code)

        async with session.lock:
            if role == "player":
                if session.game.is_active:
                    raise InvalidPhaseError("Game already in progress, join as spectator")
                if len(session.roster.players) >= self.config.MAX_PLAYERS_PER_SESSION:
                    raise SessionFullError("Session is full")
                session.roster.add_player(identity)
            else:
                if len(session.roster.spectators) >= self.config.MAX_SPECTATORS_PER_SESSION:
                    raise SessionFullError("Spectator limit reached")
                session.roster.add_spectator(identity)

            session.events.append(EventType.MEMBER_JOINED, identity.id, role=role)
            if websocket is not None:
                self.hub.attach(session.code, identity.id, websocket)
            messages = session.snapshots()
            session.log.info(f"{identity.id} joined as {role}")

        await self.hub.broadcast(session.code, {
            "type": "member_joined",
            "member": session.roster.get_member(identity.id).summary(),
            "role": role,
        }, exclude=identity.id)
        await self._publish(session, messages)
        return session

    def _remove_member(self, session: Session, member_id: str) -> Optional[str]:
        """
        Remove a member under the lock and keep the game consistent.

        Returns:
            The removed member's role, or None if they were not a member.
        """
        previous_gm = session.roster.game_master()
        removed = session.roster.remove_member(member_id)
        if removed is None:
            return None

        session.scheduler.cancel_grace(member_id)
        if isinstance(removed, Player):
            session.game.handle_departure(removed)
            session.scheduler.sync()
            new_gm = session.roster.game_master()
            if previous_gm is not None and previous_gm.id == member_id and new_gm is not None:
                session.events.append(EventType.GAME_MASTER_CHANGED, new_gm.id, previous=member_id)
            return "player"
        return "spectator"

    async def leave_session(self, code: str, member_id: str) -> bool:
        """
        Remove a member; the session is destroyed once nobody is left.

        Leaving during an active game forfeits the player's obligations.

        Returns:
            False if the member was not in the session.
        """
        session = self.find_session(code)
        if session is None:
            return False

        async with session.lock:
            previous_gm = session.roster.game_master()
            role = self._remove_member(session, member_id)
            if role is None:
                return False
            session.events.append(EventType.MEMBER_LEFT, member_id, role=role)
            self.hub.detach(session.code, member_id)
            session.log.info(f"{member_id} left ({role})")

            if session.roster.is_empty():
                await self._destroy(session, "Everyone left")
                return True
            messages = session.snapshots()
            gm = session.roster.game_master()
            gm_changed = previous_gm is not None and gm is not None and gm.id != previous_gm.id

        await self.hub.broadcast(session.code, {"type": "member_left", "member_id": member_id})
        if gm_changed:
            await self.hub.send_to(session.code, gm.id, {
                "type": "role_update",
                "is_game_master": True,
                "permissions": session.permissions(gm.id),
            })
        await self._publish(session, messages)
        await self._arm_grace(session)
        return True

    async def kick(self, code: str, actor_id: str, target_id: str) -> None:
        """
        Remove another member (game-master only).

        Raises:
            AuthorizationError: If the actor is not the game-master.
            ValidationError: If the game-master targets themselves.
            SessionNotFoundError: If the target is not a member.
        """
        session = self.get_session(code)

        async with session.lock:
            self._require_game_master(session, actor_id, "kick members")
            if target_id == actor_id:
                raise ValidationError("Use leave_session to leave your own session")
            target_ws = self.hub.get_connection(session.code, target_id)
            role = self._remove_member(session, target_id)
            if role is None:
                raise SessionNotFoundError(f"{target_id} is not in this session")
            session.events.append(EventType.MEMBER_KICKED, target_id, by=actor_id, role=role)
            self.hub.detach(session.code, target_id)
            messages = session.snapshots()
            session.log.info(f"{target_id} kicked by {actor_id}")

        if target_ws is not None:
            try:
                await target_ws.send_json({"type": "kicked", "session_code": session.code})
            except Exception as e:
                logger.debug(f"Could not tell {target_id} about the kick: {e}")
        await self.hub.broadcast(session.code, {"type": "member_left", "member_id": target_id, "kicked": True})
        await self._publish(session, messages)
        await self._arm_grace(session)

    # -------------------------------------------------------------------------
    # Game lifecycle
    # -------------------------------------------------------------------------

    async def start_game(self, code: str, actor_id: str, settings: Optional[dict] = None) -> Session:
        """
        Deal a new game (game-master only, from the lobby).

        Raises:
            AuthorizationError: If the actor is not the game-master.
            InvalidPhaseError: If a game is running or has not been reset.
            ValidationError: If too few players are present or the
                settings are malformed.
            InsufficientCardsError: If the settings cannot be dealt.
        """
        overrides = parse_settings(settings)
        session = self.get_session(code)

        async with session.lock:
            self._require_game_master(session, actor_id, "start the game")
            if session.game.phase != GamePhase.LOBBY:
                raise InvalidPhaseError("Game already started")
            if len(session.roster.players) < self.config.MIN_PLAYERS_TO_START:
                raise ValidationError(f"Need at least {self.config.MIN_PLAYERS_TO_START} players to start")

            game_settings = GameSettings.from_client_data(overrides, self.config.rules)
            session.game.start(game_settings)
            session.scheduler.reset()
            messages = session.snapshots({"action": "start_game", "player_id": actor_id})
            session.log.info(f"Game started by {actor_id}")

        await self._publish(session, messages)
        return session

    async def new_game(self, code: str, actor_id: str) -> Session:
        """
        Return an ended game to the lobby (game-master only).

        Raises:
            AuthorizationError: If the actor is not the game-master.
            InvalidPhaseError: If the game has not ended.
        """
        session = self.get_session(code)

        async with session.lock:
            self._require_game_master(session, actor_id, "reset the game")
            session.game.new_game()
            session.scheduler.reset()
            messages = session.snapshots({"action": "new_game", "player_id": actor_id})

        await self._publish(session, messages)
        return session

    async def end_game(self, code: str, actor_id: str) -> None:
        """
        Close the session for everyone (game-master only).

        Raises:
            AuthorizationError: If the actor is not the game-master.
        """
        session = self.get_session(code)

        async with session.lock:
            self._require_game_master(session, actor_id, "end the game")
            await self._destroy(session, "The game-master ended the game")

    async def _destroy(self, session: Session, reason: str) -> None:
        session.scheduler.cancel_all()
        self.sessions.pop(session.code, None)
        await self.hub.close_session(session.code, reason)
        session.log.info(f"Session destroyed: {reason}")

    # -------------------------------------------------------------------------
    # Actions
    # -------------------------------------------------------------------------

    async def submit_action(self, code: str, actor_id: str, payload) -> ActionResult:
        """
        Validate and apply one game action, then broadcast the new state.

        The payload is validated before the session is looked up. Inside
        the lock the checks run in order: membership, phase, turn,
        duplicate claim, rules. A rejected action changes nothing.
        """
        try:
            action = parse_action(payload)
            session = self.get_session(code)
        except GameError as e:
            logger.debug(f"Rejected action from {actor_id}: {e.code} {e.message}")
            return ActionResult(ok=False, error=e)

        fatal: Optional[GameError] = None
        cause: Optional[BaseException] = None
        async with session.lock:
            try:
                session.scheduler.require_turn(actor_id, action.action)
                key = session.scheduler.claim_key(actor_id, action)
                session.scheduler.check_claim(key)
                delta = session.game.apply(actor_id, action)
                session.scheduler.record(key)
            except GameError as e:
                if not isinstance(e, InternalInconsistencyError):
                    session.log.debug(f"Rejected {action.action} from {actor_id}: {e.code} {e.message}")
                    return ActionResult(ok=False, error=e, version=session.game.version)
                fatal, cause = e, e
            except Exception as e:
                fatal = InternalInconsistencyError(f"{type(e).__name__}: {e}")
                cause = e

            if fatal is not None:
                session.log.error(
                    f"Game failed while applying {action.action} from {actor_id}",
                    exc_info=cause,
                )
                session.game.fail(fatal.message)
                session.scheduler.reset()
                delta = {"action": action.action, "player_id": actor_id, "diagnostic": fatal.message}

            version = session.game.version
            messages = session.snapshots(delta)

        await self._publish(session, messages)
        if fatal is None and delta.get("finish"):
            await session.notify({"event": "finish_glass", "player_id": actor_id})
        await self._arm_grace(session)
        if fatal is not None:
            return ActionResult(ok=False, delta=delta, error=fatal, version=version)
        return ActionResult(ok=True, delta=delta, version=version)

    # -------------------------------------------------------------------------
    # Connection state
    # -------------------------------------------------------------------------

    async def _arm_grace(self, session: Session) -> None:
        """Start the grace timer if the current Busfahrer is offline."""
        driver_id = session.game.current_driver()
        if driver_id is None:
            return
        driver = session.roster.get_player(driver_id)
        if driver is not None and not driver.connected:
            session.scheduler.start_grace(driver_id, partial(self._grace_expired, session.code))

    async def _grace_expired(self, code: str, player_id: str) -> None:
        session = self.find_session(code)
        if session is None:
            return

        async with session.lock:
            if not session.game.skip_driver(player_id):
                return
            session.scheduler.sync()
            messages = session.snapshots({"action": "forfeit_duel", "player_id": player_id})
            session.log.info(f"Duel of {player_id} forfeited after grace period")

        await self._publish(session, messages)
        await self._arm_grace(session)

    async def mark_disconnected(self, code: str, member_id: str) -> bool:
        """
        Flag a member as offline without removing them.

        A disconnected Busfahrer whose duel is running gets a grace period
        before the duel is forfeited.
        """
        session = self.find_session(code)
        if session is None:
            return False

        async with session.lock:
            if not session.roster.mark_disconnected(member_id):
                return False
            self.hub.detach(session.code, member_id)
            messages = session.snapshots()
            session.log.info(f"{member_id} disconnected")

        await self._publish(session, messages)
        await self._arm_grace(session)
        return True

    async def mark_reconnected(self, code: str, member_id: str, websocket=None) -> Session:
        """
        Restore a member's connection and send them the current state.

        Raises:
            SessionNotFoundError: If the session or member is unknown.
        """
        session = self.get_session(code)

        async with session.lock:
            if not session.roster.mark_reconnected(member_id):
                raise SessionNotFoundError(f"{member_id} is not in session {session.code}")
            session.scheduler.cancel_grace(member_id)
            if websocket is not None:
                self.hub.attach(session.code, member_id, websocket)
            messages = session.snapshots()
            session.log.info(f"{member_id} reconnected")

        await self._publish(session, messages)
        return session
