"""
Error taxonomy for the Busfahrer game server.

Every rejection a client can trigger is a GameError subclass carrying a
stable machine-readable code plus a human-readable message. They are raised
inside the core and turned into typed results at the session boundary, so
none of them terminates a session.

InternalInconsistencyError is the exception: it signals corrupted game
state and ends the affected session's game with a diagnostic flag.
"""

from typing import Optional


class GameError(Exception):
    """Base exception for game-related errors."""

    code = "GAME_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        self.message = message
        if code is not None:
            self.code = code
        super().__init__(f"[{self.code}] {message}")

    def to_dict(self) -> dict:
        """Error message as sent to the client."""
        return {"type": "error", "code": self.code, "message": self.message}


class ValidationError(GameError):
    """Malformed payload, rejected before any lookup."""

    code = "VALIDATION_ERROR"


class AuthorizationError(GameError):
    """Actor lacks the role required for the action."""

    code = "NOT_AUTHORIZED"


class OutOfTurnError(GameError):
    """Actor is not entitled to act on the current step."""

    code = "NOT_YOUR_TURN"


class InvalidPhaseError(GameError):
    """Action does not belong to the current phase."""

    code = "INVALID_PHASE"


class AlreadyActedError(GameError):
    """The discrete step targeted by the action was already resolved."""

    code = "ALREADY_ACTED"


class DuplicateIdentityError(GameError):
    """Identity is already a member of the session."""

    code = "DUPLICATE_IDENTITY"


class InsufficientCardsError(GameError):
    """The deck cannot cover the requested layout and player count."""

    code = "INSUFFICIENT_CARDS"


class InvalidAdjustmentError(GameError):
    """Drink adjustment targets a player that does not exist."""

    code = "INVALID_ADJUSTMENT"


class IllegalMoveError(GameError):
    """Well-formed, in-turn action that the rules forbid."""

    code = "ILLEGAL_MOVE"


class SessionNotFoundError(GameError):
    code = "SESSION_NOT_FOUND"


class SessionFullError(GameError):
    code = "SESSION_FULL"


class InternalInconsistencyError(GameError):
    """Game state references something that cannot exist. Fatal for the session."""

    code = "INTERNAL_ERROR"
