"""
Event definitions for the Busfahrer session audit log.

Every committed mutation of a session is recorded as an immutable event,
enabling:
- Audit of drink totals (including obligations forfeited by leavers)
- Replay of a game from its seed and action sequence
- Post-game statistics

The log is held in memory for the lifetime of the session.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Iterator, Optional


class EventType(str, Enum):
    """All possible event types in a Busfahrer session."""

    # Lifecycle events
    SESSION_CREATED = "session_created"
    MEMBER_JOINED = "member_joined"
    MEMBER_LEFT = "member_left"
    MEMBER_KICKED = "member_kicked"
    GAME_MASTER_CHANGED = "game_master_changed"
    GAME_STARTED = "game_started"
    PHASE_CHANGED = "phase_changed"
    GAME_ENDED = "game_ended"
    GAME_RESET = "game_reset"

    # Gameplay events
    ROW_REVEALED = "row_revealed"
    ROW_CLOSED = "row_closed"
    CARD_MATCHED = "card_matched"
    CARD_LAID = "card_laid"
    CARD_PREDICTED = "card_predicted"
    DUEL_STARTED = "duel_started"
    DUEL_ENDED = "duel_ended"
    OBLIGATIONS_FORFEITED = "obligations_forfeited"


@dataclass
class GameEvent:
    """
    An immutable record of something that happened in a session.

    Attributes:
        event_type: The type of event (from EventType enum).
        session_code: Code of the session this event belongs to.
        sequence_num: Monotonically increasing sequence number within the session.
        timestamp: When the event occurred (UTC).
        player_id: ID of the member who triggered the event (if applicable).
        data: Event-specific payload data.
    """

    event_type: EventType
    session_code: str
    sequence_num: int
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    player_id: Optional[str] = None
    data: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Serialize event to dictionary for JSON storage."""
        return {
            "event_type": self.event_type.value,
            "session_code": self.session_code,
            "sequence_num": self.sequence_num,
            "timestamp": self.timestamp.isoformat(),
            "player_id": self.player_id,
            "data": self.data,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, d: dict) -> "GameEvent":
        """Deserialize event from dictionary."""
        timestamp = d["timestamp"]
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)

        return cls(
            event_type=EventType(d["event_type"]),
            session_code=d["session_code"],
            sequence_num=d["sequence_num"],
            timestamp=timestamp,
            player_id=d.get("player_id"),
            data=d.get("data", {}),
        )

    @classmethod
    def from_json(cls, json_str: str) -> "GameEvent":
        return cls.from_dict(json.loads(json_str))


class EventLog:
    """Append-only, in-memory event log of one session."""

    def __init__(self, session_code: str) -> None:
        self.session_code = session_code
        self._events: list[GameEvent] = []

    def append(self, event_type: EventType, player_id: Optional[str] = None, **data) -> GameEvent:
        event = GameEvent(
            event_type=event_type,
            session_code=self.session_code,
            sequence_num=len(self._events) + 1,
            player_id=player_id,
            data=data,
        )
        self._events.append(event)
        return event

    def of_type(self, event_type: EventType) -> list[GameEvent]:
        return [e for e in self._events if e.event_type == event_type]

    def __iter__(self) -> Iterator[GameEvent]:
        return iter(self._events)

    def __len__(self) -> int:
        return len(self._events)
