"""
Turn scheduling for a Busfahrer game.

The scheduler answers "who may act now" for each action, keeps a ledger of
resources already consumed so duplicate or racing submissions are
rejected with AlreadyActedError, and runs the Phase 3 grace timers that
forfeit a disconnected Busfahrer's duel.

It reads the game but never changes it; the session applies actions and
reports committed ones back through record().
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from errors import AlreadyActedError, AuthorizationError, InvalidPhaseError, OutOfTurnError
from game import ACTION_PHASES, Game, GamePhase

logger = logging.getLogger(__name__)

GraceCallback = Callable[[str], Awaitable[None]]


class TurnScheduler:
    """
    Turn authority and claim ledger for one session's game.

    Claim keys:
        ("row", i)               pyramid row i revealed
        ("close", i)             match window of row i closed
        ("card", pid, idx)       hand card idx of pid played
        ("draw", step)           Phase 3 draw number step resolved
    """

    def __init__(self, game: Game, grace_seconds: float = 30.0):
        self.game = game
        self.grace_seconds = grace_seconds
        self._claims: set[tuple] = set()
        self._phase: GamePhase = game.phase
        self._timers: dict[str, asyncio.Task] = {}

    # -------------------------------------------------------------------------
    # Entitlement
    # -------------------------------------------------------------------------

    def entitled(self, action: str) -> set[str]:
        """Ids of players who may submit the action right now."""
        game = self.game
        if action not in ACTION_PHASES or game.phase not in ACTION_PHASES[action]:
            return set()

        if action == "reveal_row":
            if game.settings.reveal_mode == "master":
                gm = game.roster.game_master()
                return {gm.id} if gm else set()
            return {p.id for p in game.players}
        if action == "close_row":
            gm = game.roster.game_master()
            return {gm.id} if gm else set()
        if action == "lay_card":
            if game.phase == GamePhase.PHASE2:
                return {p.id for p in game.players if not game.is_busfahrer(p.id)}
            return {p.id for p in game.players}
        driver = game.current_driver()
        return {driver} if driver else set()

    def require_turn(self, actor_id: str, action: str) -> None:
        """
        Check membership, phase and turn for an action, in that order.

        Role checks (game-master only actions) are left to the game, which
        raises AuthorizationError for them.

        Raises:
            AuthorizationError: If the actor is not a player.
            InvalidPhaseError: If the action is not allowed in this phase.
            OutOfTurnError: If the actor is a player but not entitled now.
        """
        game = self.game
        if game.roster.get_player(actor_id) is None:
            raise AuthorizationError("Only players can take game actions")
        if action not in ACTION_PHASES or game.phase not in ACTION_PHASES[action]:
            raise InvalidPhaseError(f"'{action}' is not allowed in {game.phase.value}")
        if action in ("reveal_row", "close_row"):
            return
        if actor_id not in self.entitled(action):
            if action == "predict":
                raise OutOfTurnError("Only the current Busfahrer may draw")
            raise OutOfTurnError("The Busfahrer does not lay cards in Phase 2")

    # -------------------------------------------------------------------------
    # Claim ledger
    # -------------------------------------------------------------------------

    def claim_key(self, actor_id: str, action) -> Optional[tuple]:
        """Ledger key consumed by a parsed action, if any."""
        kind = action.action
        if kind == "reveal_row":
            return ("row", action.row_index)
        if kind == "close_row":
            return ("close", self.game.current_row)
        if kind == "lay_card":
            return ("card", actor_id, action.card_index)
        if kind == "predict":
            return ("draw", action.step)
        return None

    def check_claim(self, key: Optional[tuple]) -> None:
        self.sync()
        if key is not None and key in self._claims:
            raise AlreadyActedError("That action was already resolved")

    def record(self, key: Optional[tuple]) -> None:
        """
        Record a committed action's claims.

        Claims of an action that moved the game to another phase are
        dropped together with the rest of the old phase's ledger.
        """
        if self.game.phase != self._phase:
            self.sync()
            return
        if key is not None:
            self._claims.add(key)

    def is_claimed(self, key: tuple) -> bool:
        return key in self._claims

    def sync(self) -> None:
        """Drop the ledger when the game has moved to another phase."""
        if self.game.phase != self._phase:
            logger.debug(f"Claim ledger reset ({self._phase.value} -> {self.game.phase.value})")
            self._phase = self.game.phase
            self._claims.clear()

    def reset(self) -> None:
        self._claims.clear()
        self._phase = self.game.phase
        self.cancel_all()

    # -------------------------------------------------------------------------
    # Grace timers
    # -------------------------------------------------------------------------

    def needs_grace(self, player_id: str) -> bool:
        """Whether a disconnect of this player stalls the game."""
        return self.game.current_driver() == player_id

    def start_grace(self, player_id: str, on_expire: GraceCallback) -> bool:
        """
        Start the grace timer for a disconnected Busfahrer.

        Returns:
            True if a timer was started.
        """
        if not self.needs_grace(player_id) or player_id in self._timers:
            return False
        self._timers[player_id] = asyncio.create_task(self._run_grace(player_id, on_expire))
        logger.info(f"Grace timer started for {player_id} ({self.grace_seconds}s)")
        return True

    async def _run_grace(self, player_id: str, on_expire: GraceCallback) -> None:
        try:
            await asyncio.sleep(self.grace_seconds)
        except asyncio.CancelledError:
            return
        self._timers.pop(player_id, None)
        logger.info(f"Grace timer expired for {player_id}")
        await on_expire(player_id)

    def cancel_grace(self, player_id: str) -> bool:
        task = self._timers.pop(player_id, None)
        if task is None:
            return False
        task.cancel()
        logger.info(f"Grace timer cancelled for {player_id}")
        return True

    def has_grace(self, player_id: str) -> bool:
        return player_id in self._timers

    def cancel_all(self) -> None:
        for player_id in list(self._timers):
            self.cancel_grace(player_id)
