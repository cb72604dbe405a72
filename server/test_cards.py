"""
Test suite for cards, decks and dealing.

Covers:
- Deck composition and seeded shuffling
- Pyramid/hand/stock split and its card accounting
- Phase 3 diamond layout and hidden-card views

Run with: pytest test_cards.py -v
"""

import random
from collections import Counter

import pytest

from cards import Card, Deck, Row, Suit, deal, deal_diamond, pyramid_capacity, shuffle
from constants import ACE, DIAMOND_ROWS, JACK
from errors import InsufficientCardsError


# =============================================================================
# Deck
# =============================================================================

class TestDeck:

    def test_deck_has_52_distinct_cards(self):
        deck = shuffle(1)
        assert len(deck) == 52
        assert len(set(deck.cards)) == 52

    def test_each_rank_appears_four_times(self):
        counts = Counter(card.rank for card in shuffle(7).cards)
        assert set(counts) == set(range(2, 15))
        assert all(n == 4 for n in counts.values())

    def test_same_seed_same_order(self):
        assert shuffle(42).cards == shuffle(42).cards

    def test_different_seeds_differ(self):
        assert shuffle(1).cards != shuffle(2).cards

    def test_seeded_shuffle_leaves_global_random_alone(self):
        random.seed(5)
        expected = random.random()

        random.seed(5)
        shuffle(123)
        assert random.random() == expected

    def test_seed_is_recorded(self):
        deck = Deck(seed=99)
        assert deck.seed == 99


class TestCard:

    def test_labels(self):
        assert Card(ACE, Suit.SPADES).label == "A"
        assert Card(JACK, Suit.HEARTS).label == "J"
        assert Card(10, Suit.CLUBS).label == "10"

    def test_dict_form(self):
        card = Card(12, Suit.DIAMONDS)
        assert card.to_dict() == {"rank": 12, "suit": "diamonds", "label": "Q"}
        assert Card.from_dict(card.to_dict()) == card


# =============================================================================
# Dealing
# =============================================================================

class TestDeal:

    def test_four_players_default_pyramid(self):
        deck = shuffle(3)
        dealt = deal(deck, 4)

        assert [len(row.cards) for row in dealt.pyramid] == [1, 2, 3, 4]
        assert [len(hand) for hand in dealt.hands] == [10, 10, 10, 10]
        assert len(dealt.stock) == 2

    def test_union_is_exactly_the_deck(self):
        deck = shuffle(11)
        dealt = deal(deck, 3, pyramid_height=5)

        cards = dealt.all_cards()
        assert len(cards) == 52
        assert Counter(cards) == Counter(deck.cards)

    def test_fixed_hand_size_leaves_stock(self):
        dealt = deal(shuffle(4), 4, cards_per_player=5)
        assert all(len(hand) == 5 for hand in dealt.hands)
        assert len(dealt.stock) == 52 - pyramid_capacity(4) - 20

    def test_round_robin_dealing(self):
        deck = shuffle(8)
        dealt = deal(deck, 2, pyramid_height=1, cards_per_player=2)
        rest = deck.cards[1:]
        assert dealt.hands[0] == [rest[0], rest[2]]
        assert dealt.hands[1] == [rest[1], rest[3]]

    def test_deck_is_not_modified(self):
        deck = shuffle(5)
        before = list(deck.cards)
        deal(deck, 4)
        assert deck.cards == before

    def test_rows_start_hidden(self):
        dealt = deal(shuffle(6), 2)
        assert not any(row.revealed for row in dealt.pyramid)
        assert [row.index for row in dealt.pyramid] == [0, 1, 2, 3]

    def test_no_players_rejected(self):
        with pytest.raises(InsufficientCardsError):
            deal(shuffle(1), 0)

    def test_pyramid_too_large_rejected(self):
        with pytest.raises(InsufficientCardsError):
            deal(shuffle(1), 2, pyramid_height=10)

    def test_hand_size_too_large_rejected(self):
        with pytest.raises(InsufficientCardsError):
            deal(shuffle(1), 4, cards_per_player=20)


# =============================================================================
# Diamond layout
# =============================================================================

class TestDiamond:

    def test_row_sizes(self):
        layout = deal_diamond(shuffle(2))
        assert [len(row.cards) for row in layout] == list(DIAMOND_ROWS)

    def test_reference_cards_face_up(self):
        layout = deal_diamond(shuffle(2))
        assert layout[0].face_up == {1}
        assert layout[-1].face_up == {0}
        assert all(not row.face_up for row in layout[1:-1])

    def test_hidden_columns_skip_reference_cards(self):
        layout = deal_diamond(shuffle(2))
        assert layout[0].hidden_columns() == [0]
        assert layout[4].hidden_columns() == [0, 1, 2, 3, 4]

    def test_view_hides_face_down_cards(self):
        layout = deal_diamond(shuffle(2))
        view = layout[0].to_dict()
        assert view["cards"][0] is None
        assert view["cards"][1] == layout[0].cards[1].to_dict()

    def test_layout_cards_are_distinct(self):
        layout = deal_diamond(shuffle(9))
        cards = [card for row in layout for card in row.cards]
        assert len(set(cards)) == len(cards) == sum(DIAMOND_ROWS)


class TestRowView:

    def test_revealed_row_shows_everything(self):
        row = Row(index=0, cards=[Card(3, Suit.HEARTS), Card(4, Suit.CLUBS)])
        assert row.to_dict()["cards"] == [None, None]

        row.reveal()
        assert row.to_dict()["cards"] == [c.to_dict() for c in row.cards]

    def test_claims_are_listed(self):
        row = Row(index=1, cards=[Card(3, Suit.HEARTS)], revealed=True)
        row.claimed_by[0] = "p1"
        assert row.to_dict()["claimed"] == {"0": "p1"}
        assert row.unclaimed_columns() == []
