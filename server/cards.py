"""
Cards, decks and dealing for Busfahrer.

A Deck is a seeded permutation of the 52 standard cards. Dealing splits a
deck into the Phase 1 pyramid, the players' hands and an undealt stock;
Phase 3 draws its diamond layout from a fresh deck.

Every deal accounts for all cards of its deck exactly once:
    pyramid + hands + stock == deck
"""

import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from constants import DIAMOND_FACE_UP, DIAMOND_ROWS, MAX_RANK, MIN_RANK, RANK_LABELS
from errors import InsufficientCardsError


class Suit(Enum):
    """Card suits for a standard deck."""

    HEARTS = "hearts"
    DIAMONDS = "diamonds"
    CLUBS = "clubs"
    SPADES = "spades"


@dataclass(frozen=True)
class Card:
    """
    An immutable playing card.

    Attributes:
        rank: 2-10, or 11-14 for Jack, Queen, King, Ace.
        suit: One of the four suits.
    """

    rank: int
    suit: Suit

    @property
    def label(self) -> str:
        return RANK_LABELS[self.rank]

    def to_dict(self) -> dict:
        return {"rank": self.rank, "suit": self.suit.value, "label": self.label}

    @classmethod
    def from_dict(cls, d: dict) -> "Card":
        return cls(rank=int(d["rank"]), suit=Suit(d["suit"]))

    def __str__(self) -> str:
        return f"{self.label} of {self.suit.value}"


@dataclass
class HandCard:
    """A card held by a player, flagged once it has been played."""

    card: Card
    played: bool = False

    def to_dict(self) -> dict:
        return {**self.card.to_dict(), "played": self.played}


@dataclass
class Row:
    """
    A positioned group of face-down cards revealed as a unit.

    Attributes:
        index: Position of the row in its layout (0-based).
        cards: Cards of the row, left to right.
        revealed: Whether the row has been turned. Never goes back to False.
        face_up: Columns visible from the start (reference cards).
        claimed_by: Column -> player id that matched or drew that card.
    """

    index: int
    cards: list[Card]
    revealed: bool = False
    face_up: set[int] = field(default_factory=set)
    claimed_by: dict[int, str] = field(default_factory=dict)

    def reveal(self) -> None:
        self.revealed = True

    def is_visible(self, column: int) -> bool:
        return self.revealed or column in self.face_up or column in self.claimed_by

    def hidden_columns(self) -> list[int]:
        """Columns that are neither reference cards nor already drawn."""
        return [
            col for col in range(len(self.cards))
            if col not in self.face_up and col not in self.claimed_by
        ]

    def unclaimed_columns(self) -> list[int]:
        return [col for col in range(len(self.cards)) if col not in self.claimed_by]

    def to_dict(self) -> dict:
        """Client view: hidden cards are sent as null."""
        return {
            "index": self.index,
            "revealed": self.revealed,
            "cards": [
                card.to_dict() if self.is_visible(col) else None
                for col, card in enumerate(self.cards)
            ],
            "claimed": {str(col): pid for col, pid in self.claimed_by.items()},
        }


class Deck:
    """
    A shuffled standard 52-card deck.

    The permutation is fully determined by the seed, which is stored so a
    game can be replayed. The module-level random state is never touched.
    """

    def __init__(self, seed: Optional[int] = None) -> None:
        self.seed: int = seed if seed is not None else random.randint(0, 2**31 - 1)
        self.cards: list[Card] = [
            Card(rank, suit)
            for suit in Suit
            for rank in range(MIN_RANK, MAX_RANK + 1)
        ]
        random.Random(self.seed).shuffle(self.cards)

    def __len__(self) -> int:
        return len(self.cards)


def shuffle(seed: Optional[int] = None) -> Deck:
    """Return a freshly shuffled deck."""
    return Deck(seed)


@dataclass
class Deal:
    """Result of dealing a Phase 1 layout."""

    pyramid: list[Row]
    hands: list[list[Card]]
    stock: list[Card]

    def all_cards(self) -> list[Card]:
        cards = [card for row in self.pyramid for card in row.cards]
        for hand in self.hands:
            cards.extend(hand)
        cards.extend(self.stock)
        return cards


def pyramid_capacity(pyramid_height: int) -> int:
    """Number of cards in a pyramid of the given height."""
    return pyramid_height * (pyramid_height + 1) // 2


def deal(
    deck: Deck,
    player_count: int,
    pyramid_height: int = 4,
    cards_per_player: int = 0,
) -> Deal:
    """
    Split a deck into pyramid rows, player hands and leftover stock.

    Rows hold 1, 2, ... pyramid_height cards. Each player then receives
    cards_per_player cards, or an even share of what is left when
    cards_per_player is 0. Hands are dealt round-robin.

    Args:
        deck: Deck to deal from. It is not modified.
        player_count: Number of players receiving a hand.
        pyramid_height: Number of pyramid rows.
        cards_per_player: Fixed hand size, or 0 for an even split.

    Returns:
        A Deal whose pyramid, hands and stock together hold every card.

    Raises:
        InsufficientCardsError: If the layout leaves fewer than one card
            per player, or less than the requested hand size.
    """
    if player_count < 1:
        raise InsufficientCardsError("At least one player is needed to deal")
    if pyramid_height < 1:
        raise InsufficientCardsError("Pyramid needs at least one row")

    cards = list(deck.cards)
    capacity = pyramid_capacity(pyramid_height)
    remaining = len(cards) - capacity
    if remaining < player_count:
        raise InsufficientCardsError(
            f"{len(cards)} cards cannot cover a {pyramid_height}-row pyramid "
            f"and {player_count} players"
        )

    per_player = cards_per_player or remaining // player_count
    if per_player * player_count > remaining:
        raise InsufficientCardsError(
            f"Cannot deal {per_player} cards to {player_count} players "
            f"({remaining} left after the pyramid)"
        )

    pyramid = []
    pos = 0
    for index in range(pyramid_height):
        size = index + 1
        pyramid.append(Row(index=index, cards=cards[pos:pos + size]))
        pos += size

    hands: list[list[Card]] = [[] for _ in range(player_count)]
    for i in range(per_player * player_count):
        hands[i % player_count].append(cards[pos + i])
    pos += per_player * player_count

    return Deal(pyramid=pyramid, hands=hands, stock=cards[pos:])


def deal_diamond(deck: Deck) -> list[Row]:
    """
    Lay out the Phase 3 diamond from the top of a deck.

    Raises:
        InsufficientCardsError: If the deck is too small for the diamond.
    """
    needed = sum(DIAMOND_ROWS)
    if len(deck.cards) < needed:
        raise InsufficientCardsError(f"Diamond layout needs {needed} cards")

    rows = []
    pos = 0
    for index, size in enumerate(DIAMOND_ROWS):
        face_up = {col for row, col in DIAMOND_FACE_UP if row == index}
        rows.append(Row(index=index, cards=deck.cards[pos:pos + size], face_up=face_up))
        pos += size
    return rows
