"""
Card and layout constants for Busfahrer.

Ranks run 2-14; 11-14 are the face ranks Jack, Queen, King and Ace.

Layouts:
    Phase 1 pyramid: rows of 1, 2, ... PYRAMID_HEIGHT cards, revealed in
    that order. Revealing row i (0-based) is worth i + 1 drinks per match.

    Phase 3 diamond: nine rows of 2, 2, 3, 4, 5, 4, 3, 2, 2 cards.
        row 0:   [ ][X]       <- X is the face-up starting card
        row 1-7: widening then narrowing rows
        row 8:   [X][ ]       <- X is face-up
"""

JACK = 11
QUEEN = 12
KING = 13
ACE = 14

MIN_RANK = 2
MAX_RANK = 14

NUMERIC_RANKS = range(2, 11)

RANK_LABELS: dict[int, str] = {
    **{r: str(r) for r in NUMERIC_RANKS},
    JACK: "J",
    QUEEN: "Q",
    KING: "K",
    ACE: "A",
}

# Row sizes of the Phase 3 diamond, top to bottom
DIAMOND_ROWS: tuple[int, ...] = (2, 2, 3, 4, 5, 4, 3, 2, 2)

# (row, column) of cards that start face-up in the diamond
DIAMOND_FACE_UP: tuple[tuple[int, int], ...] = ((0, 1), (8, 0))

# Player gender flags used by the Jack/Queen group rules
GENDERS = ("male", "female", "other")

# Which face ranks make a gender drink in Phase 2
FACE_DRINKERS: dict[int, tuple[str, ...]] = {
    JACK: ("male", "other"),
    QUEEN: ("female", "other"),
    KING: ("male", "female", "other"),
}
