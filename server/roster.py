"""
Player roster for a Busfahrer session.

The roster tracks who is in a session and in which role, whether their
connection is up, and the per-player counters the game mutates: the hand,
drinks received and given, pending Phase 3 drinks and "finish your glass"
penalties.

Game-master rule: while any player remains, exactly one player holds the
game-master flag. The first admitted player gets it; when the holder
leaves, it passes to the remaining player who joined earliest.
"""

import itertools
import logging
from dataclasses import dataclass, field
from typing import Optional

from cards import Card, HandCard
from constants import GENDERS
from errors import DuplicateIdentityError, InvalidAdjustmentError, ValidationError

logger = logging.getLogger(__name__)

DRINK_COUNTERS = ("received", "given", "pending", "finishes")


@dataclass(frozen=True)
class Identity:
    """Who a member is, as supplied by the lobby (auth is external)."""

    id: str
    name: str
    avatar: str = "default.svg"
    title: Optional[str] = None
    gender: str = "other"

    def __post_init__(self):
        if not self.id:
            raise ValidationError("Identity needs an id")
        if self.gender not in GENDERS:
            raise ValidationError(f"Unknown gender flag: {self.gender}")


@dataclass
class Player:
    """
    A card-holding member of a session.

    Attributes:
        identity: Stable identity and cosmetics.
        joined_order: Admission sequence number, used for game-master succession.
        connected: Whether the player's connection is currently up.
        is_game_master: Whether this player may start games and kick members.
        hand: Cards dealt in Phase 1, each flagged once played.
        received: Drinks this player has taken.
        given: Drinks this player has handed out.
        pending: Phase 3 drinks owed but not yet confirmed.
        finishes: Times this player had to finish their glass.
    """

    identity: Identity
    joined_order: int
    connected: bool = True
    is_game_master: bool = False
    hand: list[HandCard] = field(default_factory=list)
    received: int = 0
    given: int = 0
    pending: int = 0
    finishes: int = 0

    @property
    def id(self) -> str:
        return self.identity.id

    @property
    def name(self) -> str:
        return self.identity.name

    @property
    def gender(self) -> str:
        return self.identity.gender

    def deal_hand(self, cards: list[Card]) -> None:
        self.hand = [HandCard(card) for card in cards]

    def unplayed(self) -> list[int]:
        """Indexes of hand cards not yet played."""
        return [i for i, hc in enumerate(self.hand) if not hc.played]

    def unplayed_count(self) -> int:
        return sum(1 for hc in self.hand if not hc.played)

    def summary(self) -> dict:
        """Public roster entry (no hand contents)."""
        return {
            "id": self.id,
            "name": self.name,
            "avatar": self.identity.avatar,
            "title": self.identity.title,
            "gender": self.gender,
            "connected": self.connected,
            "is_game_master": self.is_game_master,
            "cards_left": self.unplayed_count(),
            "received": self.received,
            "given": self.given,
            "pending": self.pending,
            "finishes": self.finishes,
        }


@dataclass
class Spectator:
    """A watching member: identity only, never holds cards or counters."""

    identity: Identity
    connected: bool = True

    @property
    def id(self) -> str:
        return self.identity.id

    def summary(self) -> dict:
        return {
            "id": self.id,
            "name": self.identity.name,
            "avatar": self.identity.avatar,
            "connected": self.connected,
        }


class Roster:
    """Players (in join order) and spectators of one session."""

    def __init__(self) -> None:
        self.players: list[Player] = []
        self.spectators: list[Spectator] = []
        self._join_counter = itertools.count()

    # -------------------------------------------------------------------------
    # Membership
    # -------------------------------------------------------------------------

    def _ensure_new(self, member_id: str) -> None:
        if self.get_member(member_id) is not None:
            raise DuplicateIdentityError(f"{member_id} is already in this session")

    def add_player(self, identity: Identity) -> Player:
        """
        Admit a player. The first admitted player becomes game-master.

        Raises:
            DuplicateIdentityError: If the id is already a player or spectator.
        """
        self._ensure_new(identity.id)
        player = Player(identity=identity, joined_order=next(self._join_counter))
        if not self.players:
            player.is_game_master = True
        self.players.append(player)
        return player

    def add_spectator(self, identity: Identity) -> Spectator:
        self._ensure_new(identity.id)
        spectator = Spectator(identity=identity)
        self.spectators.append(spectator)
        return spectator

    def remove_player(self, player_id: str) -> Optional[Player]:
        """
        Remove a player; no-op returning None if absent.

        Passes the game-master role to the earliest-joined remaining player
        when the removed player held it.
        """
        player = self.get_player(player_id)
        if player is None:
            return None

        self.players.remove(player)
        if player.is_game_master and self.players:
            successor = min(self.players, key=lambda p: p.joined_order)
            successor.is_game_master = True
            logger.info(f"Game-master role passed from {player.id} to {successor.id}")
        return player

    def remove_spectator(self, spectator_id: str) -> Optional[Spectator]:
        spectator = self.get_spectator(spectator_id)
        if spectator is not None:
            self.spectators.remove(spectator)
        return spectator

    def remove_member(self, member_id: str):
        """Remove a player or spectator, whichever the id belongs to."""
        return self.remove_player(member_id) or self.remove_spectator(member_id)

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    def get_player(self, player_id: str) -> Optional[Player]:
        for player in self.players:
            if player.id == player_id:
                return player
        return None

    def get_spectator(self, spectator_id: str) -> Optional[Spectator]:
        for spectator in self.spectators:
            if spectator.id == spectator_id:
                return spectator
        return None

    def get_member(self, member_id: str):
        return self.get_player(member_id) or self.get_spectator(member_id)

    def game_master(self) -> Optional[Player]:
        for player in self.players:
            if player.is_game_master:
                return player
        return None

    def is_game_master(self, member_id: str) -> bool:
        player = self.get_player(member_id)
        return player is not None and player.is_game_master

    def member_ids(self) -> list[str]:
        return [p.id for p in self.players] + [s.id for s in self.spectators]

    def is_empty(self) -> bool:
        return not self.players and not self.spectators

    def __len__(self) -> int:
        return len(self.players) + len(self.spectators)

    # -------------------------------------------------------------------------
    # Connection state
    # -------------------------------------------------------------------------

    def mark_disconnected(self, member_id: str) -> bool:
        """Flag a member as disconnected. Returns False if unknown."""
        member = self.get_member(member_id)
        if member is None:
            return False
        member.connected = False
        return True

    def mark_reconnected(self, member_id: str) -> bool:
        member = self.get_member(member_id)
        if member is None:
            return False
        member.connected = True
        return True

    # -------------------------------------------------------------------------
    # Counters
    # -------------------------------------------------------------------------

    def adjust_drinks(self, player_id: str, delta: int, kind: str = "received") -> int:
        """
        Change one drink counter of a player, clamping at zero.

        Args:
            player_id: Player whose counter changes.
            delta: Amount to add (negative to subtract).
            kind: One of "received", "given", "pending", "finishes".

        Returns:
            The counter's new value.

        Raises:
            InvalidAdjustmentError: If the player does not exist or kind is unknown.
        """
        if kind not in DRINK_COUNTERS:
            raise InvalidAdjustmentError(f"Unknown drink counter: {kind}")
        player = self.get_player(player_id)
        if player is None:
            raise InvalidAdjustmentError(f"No player {player_id} in this session")

        value = max(0, getattr(player, kind) + delta)
        setattr(player, kind, value)
        return value

    def reset_counters(self) -> None:
        """Clear hands and counters before a new game."""
        for player in self.players:
            player.hand = []
            player.received = 0
            player.given = 0
            player.pending = 0
            player.finishes = 0

    def summary(self) -> dict:
        return {
            "players": [p.summary() for p in self.players],
            "spectators": [s.summary() for s in self.spectators],
        }
