"""
Client action payloads.

Payloads are validated here, before any session or player lookup. A
payload that does not fit one of these shapes is rejected with
errors.ValidationError.
"""

from typing import Annotated, Literal, Optional, Union

import pydantic
from pydantic import BaseModel, Field, TypeAdapter

from errors import ValidationError


class RevealRow(BaseModel):
    """Turn the next pyramid row (Phase 1)."""
    action: Literal["reveal_row"]
    row_index: int = Field(ge=0)


class LayCard(BaseModel):
    """Play a hand card: a row match in Phase 1, a penalty card in Phase 2."""
    action: Literal["lay_card"]
    card_index: int = Field(ge=0)
    target_id: Optional[str] = None


class CloseRow(BaseModel):
    """Close the open row's matching window (Phase 1, game-master)."""
    action: Literal["close_row"]


Direction = Literal["higher", "lower", "equal"]


class Predict(BaseModel):
    """
    Guess the next diamond card against the previous one (Phase 3).

    step is the draw number the guess is meant for, so a repeated or
    racing submission of the same guess is rejected. second_direction is
    only allowed on the last row, where the card is also compared with the
    face-up card beside it.
    """
    action: Literal["predict"]
    direction: Direction
    step: int = Field(ge=0)
    column: Optional[int] = Field(default=None, ge=0)
    second_direction: Optional[Direction] = None


ActionPayload = Annotated[
    Union[RevealRow, LayCard, CloseRow, Predict],
    Field(discriminator="action"),
]

_adapter = TypeAdapter(ActionPayload)


def _describe(what: str, error: pydantic.ValidationError) -> str:
    """First pydantic error as a one-line client message."""
    first = error.errors()[0]
    where = ".".join(str(part) for part in first.get("loc", ())) or what
    return f"Invalid {what} ({where}): {first.get('msg', 'invalid')}"


def parse_action(payload) -> Union[RevealRow, LayCard, CloseRow, Predict]:
    """
    Validate a raw client payload.

    Raises:
        ValidationError: If the payload matches no action shape.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Action payload must be an object")
    try:
        return _adapter.validate_python(payload)
    except pydantic.ValidationError as e:
        raise ValidationError(_describe("action", e)) from e


class IdentityPayload(BaseModel):
    """Member identity as sent with create_session/join_session."""
    id: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=32)
    avatar: str = "default.svg"
    title: Optional[str] = None
    gender: Literal["male", "female", "other"] = "other"


def parse_identity(payload) -> IdentityPayload:
    """
    Validate a member identity.

    Raises:
        ValidationError: If required fields are missing or malformed.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Identity must be an object")
    try:
        return IdentityPayload.model_validate(payload)
    except pydantic.ValidationError as e:
        raise ValidationError(_describe("identity", e)) from e


class SettingsPayload(BaseModel):
    """
    Rule overrides sent with start_game.

    Missing or null fields fall back to the server's rules; ranges are
    clamped later by GameSettings.from_client_data.
    """
    pyramid_height: Optional[int] = None
    cards_per_player: Optional[int] = None
    reveal_mode: Optional[str] = None
    busfahrer_mode: Optional[str] = None
    penalty_limit: Optional[int] = None
    escalating_penalty: Optional[bool] = None
    seed: Optional[int] = None


def parse_settings(payload) -> dict:
    """
    Validate start_game settings.

    Returns:
        Only the fields the client actually set.

    Raises:
        ValidationError: If a field has the wrong type.
    """
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("settings must be an object")
    try:
        settings = SettingsPayload.model_validate(payload)
    except pydantic.ValidationError as e:
        raise ValidationError(_describe("settings", e)) from e
    return settings.model_dump(exclude_none=True)
