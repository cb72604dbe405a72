"""
Game logic for Busfahrer.

This module is the authoritative state machine of one game: it deals the
cards, validates every action against the current phase's rules and
applies it to the shared counters in the roster.

Busfahrer Rules Summary:
    - Phase 1 (pyramid): rows of 1, 2, 3 ... face-down cards are turned one
      at a time. While a row is open, a player holding a card of the same
      rank as one of its cards may lay it and hand out (row index + 1)
      drinks to another player. Each row card can be matched once.
    - Phase 2 (distribution): whoever holds the most unplayed cards becomes
      the Busfahrer (ties produce several). Everyone else lays their
      remaining cards one at a time: 2-10 make every Busfahrer drink that
      many, Jack/Queen/King make groups drink one, Ace makes the player
      finish their glass.
    - Phase 3 (duel): each Busfahrer in turn works through a diamond of
      face-down cards, predicting higher/lower/equal against the previous
      card. A miss costs drinks and restarts the diamond from a fresh deck.
      Clearing the last row survives; hitting the penalty limit fails.

Phase flow:
    LOBBY -> PHASE1 -> PHASE2 -> PHASE3 -> ENDED
    new_game() returns an ENDED game to LOBBY.

Validation always happens before mutation: a rejected action leaves the
game exactly as it was.
"""

import logging
import random
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

from cards import Card, Row, deal, deal_diamond, shuffle
from config import GameRules, config
from constants import ACE, DIAMOND_FACE_UP, FACE_DRINKERS, NUMERIC_RANKS
from errors import (
    AlreadyActedError,
    AuthorizationError,
    IllegalMoveError,
    InternalInconsistencyError,
    InvalidPhaseError,
    OutOfTurnError,
)
from models.actions import CloseRow, LayCard, Predict, RevealRow
from models.events import EventType
from roster import Player, Roster

logger = logging.getLogger(__name__)


class GamePhase(str, Enum):
    """
    Phases of a Busfahrer game.

    Flow: LOBBY -> PHASE1 -> PHASE2 -> PHASE3 -> ENDED
    """

    LOBBY = "lobby"      # Waiting for players, no cards dealt
    PHASE1 = "phase1"    # Pyramid reveal and matching
    PHASE2 = "phase2"    # Busfahrer chosen, others lay their rest
    PHASE3 = "phase3"    # Busfahrer duel on the diamond
    ENDED = "ended"      # Terminal until new_game()


ACTIVE_PHASES = (GamePhase.PHASE1, GamePhase.PHASE2, GamePhase.PHASE3)

# Which phases accept which action
ACTION_PHASES: dict[str, tuple[GamePhase, ...]] = {
    "reveal_row": (GamePhase.PHASE1,),
    "close_row": (GamePhase.PHASE1,),
    "lay_card": (GamePhase.PHASE1, GamePhase.PHASE2),
    "predict": (GamePhase.PHASE3,),
}


@dataclass
class GameSettings:
    """
    Per-game rule settings, chosen by the game-master at start.

    Defaults come from config.rules so house rules can be set per server.
    """

    pyramid_height: int = 4
    cards_per_player: int = 0
    reveal_mode: str = "any"
    busfahrer_mode: str = "most"
    penalty_limit: int = 30
    escalating_penalty: bool = True
    seed: Optional[int] = None

    @classmethod
    def from_rules(cls, rules: Optional[GameRules] = None) -> "GameSettings":
        rules = rules or config.rules
        return cls(
            pyramid_height=rules.PYRAMID_HEIGHT,
            cards_per_player=rules.CARDS_PER_PLAYER,
            reveal_mode=rules.REVEAL_MODE,
            busfahrer_mode=rules.BUSFAHRER_MODE,
            penalty_limit=rules.PHASE3_PENALTY_LIMIT,
            escalating_penalty=rules.PHASE3_ESCALATING_PENALTY,
        )

    @classmethod
    def from_client_data(cls, data: dict, rules: Optional[GameRules] = None) -> "GameSettings":
        """Build settings from a start_game message, clamping to sane ranges."""
        base = cls.from_rules(rules)
        reveal_mode = data.get("reveal_mode", base.reveal_mode)
        busfahrer_mode = data.get("busfahrer_mode", base.busfahrer_mode)
        seed = data.get("seed")
        return cls(
            pyramid_height=max(1, min(6, int(data.get("pyramid_height", base.pyramid_height)))),
            cards_per_player=max(0, min(20, int(data.get("cards_per_player", base.cards_per_player)))),
            reveal_mode=reveal_mode if reveal_mode in ("any", "master") else base.reveal_mode,
            busfahrer_mode=(
                busfahrer_mode if busfahrer_mode in ("most", "fewest", "random")
                else base.busfahrer_mode
            ),
            penalty_limit=max(1, int(data.get("penalty_limit", base.penalty_limit))),
            escalating_penalty=bool(data.get("escalating_penalty", base.escalating_penalty)),
            seed=int(seed) if seed is not None else None,
        )


@dataclass
class DuelOutcome:
    """How one Busfahrer's Phase 3 duel ended."""

    player_id: str
    survived: bool
    attempts: int
    drinks: int
    forfeited: bool = False


@dataclass
class Forfeit:
    """Obligations left behind by a player who quit an active game."""

    player_id: str
    name: str
    phase: str
    unplayed_cards: int
    received: int
    given: int
    pending: int


@dataclass
class PredictionResult:
    correct: bool
    card: Card
    drinks: int = 0

    def to_dict(self) -> dict:
        return {"correct": self.correct, "card": self.card.to_dict(), "drinks": self.drinks}


def _compare(card: Card, previous: Card, direction: str) -> bool:
    if direction == "higher":
        return card.rank > previous.rank
    if direction == "lower":
        return card.rank < previous.rank
    return card.rank == previous.rank


@dataclass
class Game:
    """
    Main game state and rule engine for Busfahrer.

    The roster is shared with the session; the game mutates the players'
    hands and drink counters but never membership.

    Attributes:
        roster: Players and spectators of the session.
        settings: Rule settings for the current game.
        phase: Current phase.
        version: Incremented on every committed change.
        pyramid: Phase 1 rows.
        stock: Cards left undealt in Phase 1.
        current_row: Index of the last revealed pyramid row (-1 before any).
        row_open: Whether the current row still accepts matches.
        busfahrer: Busfahrer ids in join order (Phase 2 and 3).
        driver_index: Index into busfahrer of the player duelling now.
        layout: Phase 3 diamond of the current attempt.
        duel_row: Row of the diamond the driver must draw from next.
        duel_step: Number of draws made in this phase, used as a step token.
        attempt: Attempt number of the current driver (1-based).
        last_card: Card the next prediction is compared against.
        duel_drinks: Drinks the current driver collected in this duel.
        outcomes: Finished duels.
        forfeits: Obligations of players who left mid-game.
        diagnostic: Set when the game was ended by an internal error.
    """

    roster: Roster = field(default_factory=Roster)
    settings: GameSettings = field(default_factory=GameSettings.from_rules)
    phase: GamePhase = GamePhase.LOBBY
    version: int = 0
    seed: int = 0
    pyramid: list[Row] = field(default_factory=list)
    stock: list[Card] = field(default_factory=list)
    current_row: int = -1
    row_open: bool = False
    busfahrer: list[str] = field(default_factory=list)
    driver_index: int = 0
    layout: list[Row] = field(default_factory=list)
    duel_row: int = 0
    duel_step: int = 0
    attempt: int = 0
    last_card: Optional[Card] = None
    duel_drinks: int = 0
    outcomes: list[DuelOutcome] = field(default_factory=list)
    forfeits: list[Forfeit] = field(default_factory=list)
    diagnostic: Optional[str] = None

    _rng: random.Random = field(default_factory=random.Random, repr=False, compare=False)
    _event_emitter: Optional[Callable[[EventType, Optional[str], dict], None]] = field(
        default=None, repr=False, compare=False
    )

    def set_event_emitter(self, emitter: Callable[[EventType, Optional[str], dict], None]) -> None:
        """
        Set callback for event emission.

        The emitter receives (event_type, player_id, data) for every
        committed change.
        """
        self._event_emitter = emitter

    def _emit(self, event_type: EventType, player_id: Optional[str] = None, **data: Any) -> None:
        if self._event_emitter is not None:
            self._event_emitter(event_type, player_id, data)

    def _commit(self) -> None:
        self.version += 1

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    @property
    def players(self) -> list[Player]:
        return self.roster.players

    @property
    def is_active(self) -> bool:
        return self.phase in ACTIVE_PHASES

    def current_driver(self) -> Optional[str]:
        """Id of the Busfahrer duelling now (Phase 3 only)."""
        if self.phase != GamePhase.PHASE3 or self.driver_index >= len(self.busfahrer):
            return None
        return self.busfahrer[self.driver_index]

    @property
    def result(self) -> Optional[dict]:
        """Final result once the game has ended."""
        if self.phase != GamePhase.ENDED:
            return None
        return {"outcomes": [asdict(o) for o in self.outcomes], "diagnostic": self.diagnostic}

    def is_busfahrer(self, player_id: str) -> bool:
        return player_id in self.busfahrer

    def open_row(self) -> Optional[Row]:
        if self.phase != GamePhase.PHASE1 or not self.row_open:
            return None
        return self.pyramid[self.current_row]

    def entitled_actors(self) -> set[str]:
        """Players who may act on the current step."""
        if self.phase == GamePhase.PHASE1:
            return {p.id for p in self.players}
        if self.phase == GamePhase.PHASE2:
            return {p.id for p in self.players if p.id not in self.busfahrer}
        driver = self.current_driver()
        return {driver} if driver else set()

    def _require_player(self, actor_id: str) -> Player:
        player = self.roster.get_player(actor_id)
        if player is None:
            if self.roster.get_spectator(actor_id) is not None:
                raise AuthorizationError("Spectators cannot take game actions")
            raise AuthorizationError("You are not a player in this game")
        return player

    def _require_phase(self, action: str) -> None:
        if self.phase not in ACTION_PHASES[action]:
            raise InvalidPhaseError(f"'{action}' is not allowed in {self.phase.value}")

    def check_consistency(self) -> None:
        """
        Verify the internal pointers reference existing structures.

        Raises:
            InternalInconsistencyError: If any pointer is dangling.
        """
        if self.phase == GamePhase.PHASE1:
            if not -1 <= self.current_row < len(self.pyramid):
                raise InternalInconsistencyError(f"Row pointer {self.current_row} outside pyramid")
            if self.row_open and self.current_row < 0:
                raise InternalInconsistencyError("Open row window without a revealed row")
        elif self.phase == GamePhase.PHASE3:
            driver = self.current_driver()
            if driver is None or self.roster.get_player(driver) is None:
                raise InternalInconsistencyError(f"Busfahrer {driver} is not in the roster")
            if not 0 <= self.duel_row < len(self.layout):
                raise InternalInconsistencyError(f"Duel row {self.duel_row} outside layout")
            if self.last_card is None:
                raise InternalInconsistencyError("Duel has no reference card")

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self, settings: Optional[GameSettings] = None) -> None:
        """
        Deal a new game and enter Phase 1.

        Raises:
            InvalidPhaseError: If the game is not in the lobby.
            InsufficientCardsError: If the layout cannot be dealt.
        """
        if self.phase != GamePhase.LOBBY:
            raise InvalidPhaseError("A game is already running")
        settings = settings or self.settings

        self.seed = settings.seed if settings.seed is not None else random.randint(0, 2**31 - 1)
        rng = random.Random(self.seed)
        deck = shuffle(rng.randint(0, 2**31 - 1))
        dealt = deal(
            deck,
            len(self.players),
            pyramid_height=settings.pyramid_height,
            cards_per_player=settings.cards_per_player,
        )

        self.settings = settings
        self._rng = rng
        self.roster.reset_counters()
        for player, hand in zip(self.players, dealt.hands):
            player.deal_hand(hand)
        self.pyramid = dealt.pyramid
        self.stock = dealt.stock
        self.current_row = -1
        self.row_open = False
        self.phase = GamePhase.PHASE1
        self._commit()

        logger.info(f"Game started with {len(self.players)} players (seed={self.seed})")
        self._emit(
            EventType.GAME_STARTED,
            player_order=[p.id for p in self.players],
            seed=self.seed,
            settings=asdict(settings),
        )

    def new_game(self) -> None:
        """
        Return an ended game to the lobby with a fresh state.

        Raises:
            InvalidPhaseError: If the game has not ended.
        """
        if self.phase != GamePhase.ENDED:
            raise InvalidPhaseError("The current game has not ended yet")
        self._reset()
        self.phase = GamePhase.LOBBY
        self._commit()
        self._emit(EventType.GAME_RESET)

    def _reset(self) -> None:
        self.roster.reset_counters()
        self.pyramid = []
        self.stock = []
        self.current_row = -1
        self.row_open = False
        self.busfahrer = []
        self.driver_index = 0
        self.layout = []
        self.duel_row = 0
        self.duel_step = 0
        self.attempt = 0
        self.last_card = None
        self.duel_drinks = 0
        self.outcomes = []
        self.forfeits = []
        self.diagnostic = None

    def fail(self, diagnostic: str) -> None:
        """End the game because its state can no longer be trusted."""
        self.phase = GamePhase.ENDED
        self.diagnostic = diagnostic
        self._commit()
        logger.error(f"Game ended by internal inconsistency: {diagnostic}")
        self._emit(EventType.GAME_ENDED, diagnostic=diagnostic)

    def _end(self) -> None:
        self.phase = GamePhase.ENDED
        self._emit(EventType.GAME_ENDED, outcomes=[asdict(o) for o in self.outcomes])
        logger.info("Game ended")

    # -------------------------------------------------------------------------
    # Action dispatch
    # -------------------------------------------------------------------------

    def apply(self, actor_id: str, action) -> dict:
        """
        Validate and apply a parsed action.

        Returns:
            A delta dict describing the committed change.
        """
        self._require_player(actor_id)
        self._require_phase(action.action)
        self.check_consistency()

        if isinstance(action, RevealRow):
            return self.reveal_row(actor_id, action.row_index)
        if isinstance(action, LayCard):
            return self.lay_card(actor_id, action.card_index, action.target_id)
        if isinstance(action, CloseRow):
            return self.close_row(actor_id)
        if isinstance(action, Predict):
            result = self.predict(
                actor_id, action.direction, action.step, action.column, action.second_direction
            )
            return {"action": "predict", "player_id": actor_id, **result.to_dict()}
        raise InternalInconsistencyError(f"Unhandled action {action!r}")

    # -------------------------------------------------------------------------
    # Phase 1: pyramid
    # -------------------------------------------------------------------------

    def reveal_row(self, actor_id: str, row_index: int) -> dict:
        """
        Turn the next pyramid row and open its matching window.

        Raises:
            InvalidPhaseError: Outside Phase 1.
            AuthorizationError: In master reveal mode, for anyone but the game-master.
            AlreadyActedError: If the row is already revealed.
            IllegalMoveError: If the row does not exist or is not next in order.
        """
        self._require_phase("reveal_row")
        player = self._require_player(actor_id)
        if self.settings.reveal_mode == "master" and not player.is_game_master:
            raise AuthorizationError("Only the game-master can reveal rows")
        if not 0 <= row_index < len(self.pyramid):
            raise IllegalMoveError(f"There is no row {row_index}")

        row = self.pyramid[row_index]
        if row.revealed:
            raise AlreadyActedError(f"Row {row_index} is already revealed")
        if row_index != self.current_row + 1:
            raise IllegalMoveError(f"Row {self.current_row + 1} must be revealed first")

        if self.row_open:
            self._emit(EventType.ROW_CLOSED, row_index=self.current_row)
        row.reveal()
        self.current_row = row_index
        self.row_open = True
        self._commit()
        self._emit(
            EventType.ROW_REVEALED,
            player_id=actor_id,
            row_index=row_index,
            cards=[c.to_dict() for c in row.cards],
        )
        logger.debug(f"Row {row_index} revealed by {actor_id}")

        delta = {"action": "reveal_row", "player_id": actor_id, "row": row.to_dict()}
        self._settle_row_window()
        return delta

    def _matchable_columns(self, row: Row) -> list[int]:
        """Unclaimed row columns some player could still match."""
        held = {
            p.hand[i].card.rank for p in self.players for i in p.unplayed()
        }
        return [col for col in row.unclaimed_columns() if row.cards[col].rank in held]

    def _settle_row_window(self) -> None:
        """Close the open row once no match is possible; leave Phase 1 after the last row."""
        row = self.open_row()
        if row is None or self._matchable_columns(row):
            return
        self._close_window()

    def _close_window(self) -> None:
        self.row_open = False
        self._emit(EventType.ROW_CLOSED, row_index=self.current_row)
        if self.current_row == len(self.pyramid) - 1:
            self._start_phase2()

    def close_row(self, actor_id: str) -> dict:
        """
        Close the open row's matching window early (game-master only).

        Raises:
            AuthorizationError: For anyone but the game-master.
            AlreadyActedError: If no row window is open.
        """
        self._require_phase("close_row")
        if not self.roster.is_game_master(actor_id):
            raise AuthorizationError("Only the game-master can close a row")
        if not self.row_open:
            raise AlreadyActedError("No row is open")

        row_index = self.current_row
        self._commit()
        self._close_window()
        return {"action": "close_row", "player_id": actor_id, "row_index": row_index}

    def _match_in_row(self, actor: Player, card_index: int, target_id: Optional[str]) -> dict:
        if self.current_row < 0:
            raise IllegalMoveError("No row has been revealed yet")

        # The latest row, even once closed, so a match lost to a faster
        # player is reported as already taken
        row = self.pyramid[self.current_row]
        card = actor.hand[card_index].card
        same_rank = [col for col, c in enumerate(row.cards) if c.rank == card.rank]
        free = [col for col in same_rank if col not in row.claimed_by]
        if same_rank and not free:
            raise AlreadyActedError(f"Every {card.label} in row {row.index} is already matched")
        if not self.row_open:
            raise IllegalMoveError(f"Row {row.index} is closed for matching")
        if not same_rank:
            raise IllegalMoveError(f"{card} does not match row {row.index}")
        if not target_id:
            raise IllegalMoveError("Choose a player to hand the drinks to")
        if target_id == actor.id:
            raise IllegalMoveError("You cannot hand drinks to yourself")
        if self.roster.get_player(target_id) is None:
            raise IllegalMoveError(f"No player {target_id} in this game")

        drinks = row.index + 1
        column = free[0]
        actor.hand[card_index].played = True
        row.claimed_by[column] = actor.id
        self.roster.adjust_drinks(target_id, drinks, "received")
        self.roster.adjust_drinks(actor.id, drinks, "given")
        self._commit()
        self._emit(
            EventType.CARD_MATCHED,
            player_id=actor.id,
            card=card.to_dict(),
            row_index=row.index,
            column=column,
            target_id=target_id,
            drinks=drinks,
        )

        delta = {
            "action": "lay_card",
            "player_id": actor.id,
            "card": card.to_dict(),
            "row_index": row.index,
            "column": column,
            "drinks": {target_id: drinks},
        }
        self._settle_row_window()
        return delta

    # -------------------------------------------------------------------------
    # Phase 2: distribution
    # -------------------------------------------------------------------------

    def _elect_busfahrer(self, candidates: list[Player]) -> list[str]:
        if not candidates:
            return []
        mode = self.settings.busfahrer_mode
        if mode == "random":
            return [self._rng.choice(candidates).id]
        counts = [p.unplayed_count() for p in candidates]
        target = min(counts) if mode == "fewest" else max(counts)
        return [p.id for p in candidates if p.unplayed_count() == target]

    def _start_phase2(self) -> None:
        self.phase = GamePhase.PHASE2
        self.row_open = False
        self.busfahrer = self._elect_busfahrer(self.players)
        self._emit(EventType.PHASE_CHANGED, phase=self.phase.value, busfahrer=list(self.busfahrer))
        logger.info(f"Phase 2 started, Busfahrer: {self.busfahrer}")
        self._settle_phase2()

    def _settle_phase2(self) -> None:
        """Move on to the duel once every non-Busfahrer hand is empty."""
        if self.phase != GamePhase.PHASE2:
            return
        if all(p.unplayed_count() == 0 for p in self.players if p.id not in self.busfahrer):
            self._start_phase3()

    def _lay_penalty_card(self, actor: Player, card_index: int) -> dict:
        if actor.id in self.busfahrer:
            raise OutOfTurnError("The Busfahrer does not lay cards in Phase 2")

        card = actor.hand[card_index].card
        drinks: dict[str, int] = {}
        finish = False

        if card.rank in NUMERIC_RANKS:
            for pid in self.busfahrer:
                drinks[pid] = card.rank
        elif card.rank == ACE:
            finish = True
        else:
            genders = FACE_DRINKERS[card.rank]
            for p in self.players:
                if p.gender in genders:
                    drinks[p.id] = 1

        actor.hand[card_index].played = True
        for pid, amount in drinks.items():
            self.roster.adjust_drinks(pid, amount, "received")
        handed_out = sum(amount for pid, amount in drinks.items() if pid != actor.id)
        if handed_out:
            self.roster.adjust_drinks(actor.id, handed_out, "given")
        if finish:
            self.roster.adjust_drinks(actor.id, 1, "finishes")
        self._commit()
        self._emit(
            EventType.CARD_LAID,
            player_id=actor.id,
            card=card.to_dict(),
            drinks=drinks,
            finish=finish,
        )

        delta = {
            "action": "lay_card",
            "player_id": actor.id,
            "card": card.to_dict(),
            "drinks": drinks,
            "finish": finish,
        }
        self._settle_phase2()
        return delta

    def lay_card(self, actor_id: str, card_index: int, target_id: Optional[str] = None) -> dict:
        """
        Play a card from the actor's hand.

        In Phase 1 the card must match the open row and target_id names the
        player who drinks. In Phase 2 the card's rank decides who drinks.

        Raises:
            InvalidPhaseError: Outside Phase 1 and 2.
            OutOfTurnError: If a Busfahrer tries to lay in Phase 2.
            AlreadyActedError: If the card was already played.
            IllegalMoveError: If the card does not exist or breaks the rules.
        """
        self._require_phase("lay_card")
        actor = self._require_player(actor_id)
        if self.phase == GamePhase.PHASE2 and actor_id in self.busfahrer:
            raise OutOfTurnError("The Busfahrer does not lay cards in Phase 2")
        if not 0 <= card_index < len(actor.hand):
            raise IllegalMoveError(f"You have no card at index {card_index}")
        if actor.hand[card_index].played:
            raise AlreadyActedError("That card was already played")

        if self.phase == GamePhase.PHASE1:
            return self._match_in_row(actor, card_index, target_id)
        return self._lay_penalty_card(actor, card_index)

    # -------------------------------------------------------------------------
    # Phase 3: duel
    # -------------------------------------------------------------------------

    def _start_phase3(self) -> None:
        self.phase = GamePhase.PHASE3
        self.driver_index = 0
        self.duel_step = 0
        self.outcomes = []
        self._emit(EventType.PHASE_CHANGED, phase=self.phase.value, busfahrer=list(self.busfahrer))
        logger.info("Phase 3 started")
        if self.busfahrer:
            self._start_duel()
        else:
            self._end()

    def _deal_layout(self) -> None:
        self.layout = deal_diamond(shuffle(self._rng.randint(0, 2**31 - 1)))
        self.duel_row = 0
        start_row, start_col = DIAMOND_FACE_UP[0]
        self.last_card = self.layout[start_row].cards[start_col]

    def _start_duel(self) -> None:
        self.attempt = 1
        self.duel_drinks = 0
        self._deal_layout()
        self._emit(EventType.DUEL_STARTED, player_id=self.current_driver())

    def _finish_duel(self, survived: bool, forfeited: bool = False) -> None:
        driver_id = self.current_driver()
        driver = self.roster.get_player(driver_id) if driver_id else None
        if driver is not None and driver.pending:
            self.roster.adjust_drinks(driver.id, driver.pending, "received")
            self.roster.adjust_drinks(driver.id, -driver.pending, "pending")

        outcome = DuelOutcome(
            player_id=driver_id,
            survived=survived,
            attempts=self.attempt,
            drinks=self.duel_drinks,
            forfeited=forfeited,
        )
        self.outcomes.append(outcome)
        self._emit(EventType.DUEL_ENDED, player_id=driver_id, **asdict(outcome))
        logger.info(f"Duel of {driver_id} ended (survived={survived}, forfeited={forfeited})")

        self.driver_index += 1
        if self.driver_index < len(self.busfahrer):
            self._start_duel()
        else:
            self._end()

    def predict(
        self,
        actor_id: str,
        direction: str,
        step: Optional[int] = None,
        column: Optional[int] = None,
        second_direction: Optional[str] = None,
    ) -> PredictionResult:
        """
        Draw the next diamond card after predicting it against the last one.

        Args:
            actor_id: Must be the current Busfahrer.
            direction: "higher", "lower" or "equal" (by rank).
            step: Optional draw-step token; a stale one is rejected.
            column: Card to draw in the current row; first face-down by default.
            second_direction: Last row only. The drawn card must also compare
                this way against the face-up card of that row.

        Raises:
            OutOfTurnError: If the actor is not the current Busfahrer.
            AlreadyActedError: If step names an already resolved draw.
            IllegalMoveError: For a future step, an unusable column or a
                second direction outside the last row.
        """
        self._require_phase("predict")
        self._require_player(actor_id)
        if actor_id != self.current_driver():
            raise OutOfTurnError("Only the current Busfahrer may draw")
        if step is not None and step < self.duel_step:
            raise AlreadyActedError(f"Draw {step} was already resolved")
        if step is not None and step > self.duel_step:
            raise IllegalMoveError(f"Draw {step} is not up yet (current: {self.duel_step})")
        if second_direction is not None and self.duel_row != len(self.layout) - 1:
            raise IllegalMoveError("A second guess is only allowed on the last row")

        row = self.layout[self.duel_row]
        hidden = row.hidden_columns()
        if column is None:
            if not hidden:
                raise InternalInconsistencyError(f"Duel row {row.index} has nothing to draw")
            column = hidden[0]
        elif column in row.claimed_by:
            raise AlreadyActedError(f"Card {row.index}-{column} was already drawn")
        elif column not in hidden:
            raise IllegalMoveError(f"Card {row.index}-{column} cannot be drawn")

        card = row.cards[column]
        previous = self.last_card
        correct = _compare(card, previous, direction)
        if correct and second_direction is not None:
            ref_row, ref_col = DIAMOND_FACE_UP[-1]
            correct = _compare(card, self.layout[ref_row].cards[ref_col], second_direction)

        row.claimed_by[column] = actor_id
        self.duel_step += 1
        self.last_card = card
        drinks = 0

        self._emit(
            EventType.CARD_PREDICTED,
            player_id=actor_id,
            direction=direction,
            second_direction=second_direction,
            card=card.to_dict(),
            previous=previous.to_dict(),
            correct=correct,
            row_index=row.index,
        )

        if correct:
            self.duel_row += 1
            self._commit()
            if self.duel_row >= len(self.layout):
                self._finish_duel(survived=True)
        else:
            drinks = self.duel_row + 1 if self.settings.escalating_penalty else 1
            pending = self.roster.adjust_drinks(actor_id, drinks, "pending")
            self.duel_drinks += drinks
            self._commit()
            if pending >= self.settings.penalty_limit:
                self._finish_duel(survived=False)
            else:
                self.attempt += 1
                self._deal_layout()

        return PredictionResult(correct=correct, card=card, drinks=drinks)

    def skip_driver(self, player_id: str) -> bool:
        """
        Forfeit the duel of a Busfahrer who stayed disconnected.

        Returns:
            True if the driver was skipped.
        """
        if self.current_driver() != player_id:
            return False
        player = self.roster.get_player(player_id)
        if player is not None and player.connected:
            return False
        self._commit()
        self._finish_duel(survived=False, forfeited=True)
        return True

    # -------------------------------------------------------------------------
    # Departures
    # -------------------------------------------------------------------------

    def handle_departure(self, player: Player) -> None:
        """
        Keep the game consistent after a player was removed from the roster.

        Records the leaver's outstanding obligations, drops them from the
        Busfahrer list and re-evaluates pending phase transitions.
        """
        if not self.is_active:
            return

        forfeit = Forfeit(
            player_id=player.id,
            name=player.name,
            phase=self.phase.value,
            unplayed_cards=player.unplayed_count(),
            received=player.received,
            given=player.given,
            pending=player.pending,
        )
        self.forfeits.append(forfeit)
        self._emit(EventType.OBLIGATIONS_FORFEITED, player_id=player.id, **asdict(forfeit))
        self._commit()

        if not self.players:
            self._end()
            return

        if self.phase == GamePhase.PHASE1:
            self._settle_row_window()
        elif self.phase == GamePhase.PHASE2:
            if player.id in self.busfahrer:
                self.busfahrer.remove(player.id)
                if not self.busfahrer:
                    self.busfahrer = self._elect_busfahrer(self.players)
            self._settle_phase2()
        elif self.phase == GamePhase.PHASE3 and player.id in self.busfahrer:
            index = self.busfahrer.index(player.id)
            if index == self.driver_index:
                outcome = DuelOutcome(
                    player_id=player.id,
                    survived=False,
                    attempts=self.attempt,
                    drinks=self.duel_drinks,
                    forfeited=True,
                )
                self.outcomes.append(outcome)
                self._emit(EventType.DUEL_ENDED, player_id=player.id, **asdict(outcome))
                self.busfahrer.remove(player.id)
                if self.driver_index < len(self.busfahrer):
                    self._start_duel()
                else:
                    self._end()
            elif index > self.driver_index:
                self.busfahrer.remove(player.id)

    # -------------------------------------------------------------------------
    # Snapshots
    # -------------------------------------------------------------------------

    def get_state(self, viewer_id: Optional[str] = None) -> dict:
        """
        Game state as seen by one viewer.

        The viewer's own hand is included when they are a player; other
        hands are only visible through the roster's card counts. Hidden
        row cards are sent as null.
        """
        viewer = self.roster.get_player(viewer_id) if viewer_id else None
        driver = self.current_driver()

        state = {
            "phase": self.phase.value,
            "version": self.version,
            "settings": {k: v for k, v in asdict(self.settings).items() if k != "seed"},
            "hand": [hc.to_dict() for hc in viewer.hand] if viewer else None,
            "pyramid": [row.to_dict() for row in self.pyramid],
            "current_row": self.current_row,
            "row_open": self.row_open,
            "stock_size": len(self.stock),
            "busfahrer": list(self.busfahrer),
            "entitled": sorted(self.entitled_actors()) if self.is_active else [],
            "forfeits": [asdict(f) for f in self.forfeits],
            "diagnostic": self.diagnostic,
        }

        if self.phase == GamePhase.PHASE3:
            state["duel"] = {
                "driver_id": driver,
                "attempt": self.attempt,
                "row": self.duel_row,
                "step": self.duel_step,
                "drinks": self.duel_drinks,
                "last_card": self.last_card.to_dict() if self.last_card else None,
                "layout": [row.to_dict() for row in self.layout],
            }
            state["outcomes"] = [asdict(o) for o in self.outcomes]
        state["result"] = self.result

        return state
