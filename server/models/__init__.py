"""Models package for the Busfahrer server."""

from .actions import (
    CloseRow,
    IdentityPayload,
    LayCard,
    Predict,
    RevealRow,
    SettingsPayload,
    parse_action,
    parse_identity,
    parse_settings,
)
from .events import EventLog, EventType, GameEvent

__all__ = [
    "CloseRow",
    "IdentityPayload",
    "LayCard",
    "Predict",
    "RevealRow",
    "SettingsPayload",
    "parse_action",
    "parse_identity",
    "parse_settings",
    "EventLog",
    "EventType",
    "GameEvent",
]
