"""Services package for the Busfahrer server."""

from .broadcast import BroadcastHub, close_broadcast_hub, get_broadcast_hub

__all__ = [
    "BroadcastHub",
    "get_broadcast_hub",
    "close_broadcast_hub",
]
