"""
Broadcast hub for Busfahrer sessions.

Keeps the live WebSocket of every session member and fans state updates
out to them. Each member gets their own snapshot (players see their own
hand, spectators none), so publishing takes one message per member.

Sends run concurrently; a connection that fails to receive is dropped and
its member id is reported back so the session can mark it disconnected.
"""

import asyncio
import logging
from typing import Dict, List, Optional

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class BroadcastHub:
    """
    Live connections of all sessions.

    A member has at most one connection; attaching a new one (reconnect
    from another tab) replaces the old.
    """

    def __init__(self):
        # session_code -> member_id -> websocket
        self._connections: Dict[str, Dict[str, WebSocket]] = {}

    def attach(self, session_code: str, member_id: str, websocket: WebSocket) -> None:
        """Register a member's connection for a session."""
        self._connections.setdefault(session_code, {})[member_id] = websocket
        logger.debug(f"Attached {member_id} to {session_code}")

    def detach(self, session_code: str, member_id: str, websocket: Optional[WebSocket] = None) -> bool:
        """
        Forget a member's connection.

        When websocket is given, only that exact connection is removed, so a
        stale socket closing late cannot detach a newer one.

        Returns:
            True if a connection was removed.
        """
        members = self._connections.get(session_code)
        if not members or member_id not in members:
            return False
        if websocket is not None and members[member_id] is not websocket:
            return False

        del members[member_id]
        if not members:
            del self._connections[session_code]
        return True

    def get_connection(self, session_code: str, member_id: str) -> Optional[WebSocket]:
        return self._connections.get(session_code, {}).get(member_id)

    def connection_count(self, session_code: str) -> int:
        return len(self._connections.get(session_code, {}))

    def connected_members(self, session_code: str) -> list[str]:
        return list(self._connections.get(session_code, {}))

    async def _send(self, session_code: str, member_id: str, websocket: WebSocket, message: dict) -> bool:
        try:
            await websocket.send_json(message)
            return True
        except Exception as e:
            logger.debug(f"Failed to send to {member_id} in {session_code}: {e}")
            return False

    async def send_to(self, session_code: str, member_id: str, message: dict) -> bool:
        """
        Send one message to one member.

        Returns:
            False if the member has no live connection or the send failed.
        """
        websocket = self.get_connection(session_code, member_id)
        if websocket is None:
            return False
        if await self._send(session_code, member_id, websocket, message):
            return True
        self.detach(session_code, member_id, websocket)
        return False

    async def publish(self, session_code: str, messages: Dict[str, dict]) -> List[str]:
        """
        Deliver per-member messages concurrently.

        Args:
            session_code: Session to publish in.
            messages: member_id -> message for that member.

        Returns:
            Ids of members whose connection failed and was dropped.
        """
        targets = [
            (member_id, websocket, messages[member_id])
            for member_id, websocket in self._connections.get(session_code, {}).items()
            if member_id in messages
        ]
        if not targets:
            return []

        results = await asyncio.gather(*(
            self._send(session_code, member_id, websocket, message)
            for member_id, websocket, message in targets
        ))

        dead_members: List[str] = []
        for (member_id, websocket, _), delivered in zip(targets, results):
            if not delivered:
                self.detach(session_code, member_id, websocket)
                dead_members.append(member_id)
        if dead_members:
            logger.info(f"Dropped dead connections in {session_code}: {dead_members}")
        return dead_members

    async def broadcast(self, session_code: str, message: dict, exclude: Optional[str] = None) -> List[str]:
        """Send the same message to every member (except exclude)."""
        messages = {
            member_id: message
            for member_id in self.connected_members(session_code)
            if member_id != exclude
        }
        return await self.publish(session_code, messages)

    async def notify(self, session_code: str, message: dict) -> List[str]:
        """
        Send a transient notification (popup, sound cue) to the session.

        Notifications are not part of the game state and are not replayed
        on reconnect.
        """
        return await self.broadcast(session_code, {"type": "notify", **message})

    async def close_session(self, session_code: str, reason: str = "Session closed") -> None:
        """Tell every member the session is gone and forget its connections."""
        members = self._connections.pop(session_code, {})
        if not members:
            return
        await asyncio.gather(*(
            self._send(session_code, member_id, websocket, {"type": "session_closed", "reason": reason})
            for member_id, websocket in members.items()
        ))
        logger.info(f"Closed {len(members)} connection(s) for session {session_code}")


# Global instance
_broadcast_hub: Optional[BroadcastHub] = None


def get_broadcast_hub() -> BroadcastHub:
    """Get the global broadcast hub instance."""
    global _broadcast_hub
    if _broadcast_hub is None:
        _broadcast_hub = BroadcastHub()
    return _broadcast_hub


def close_broadcast_hub() -> None:
    global _broadcast_hub
    _broadcast_hub = None
