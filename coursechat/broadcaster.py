import asyncio
import logging

from .room_registry import RoomRegistry
from .schemas import RoomKey

logger = logging.getLogger(__name__)


class Broadcaster:
    """Fans a payload out to every open connection in a room."""

    def __init__(self, registry: RoomRegistry, *, send_timeout: float | None = 5.0):
        self.registry = registry
        self.send_timeout = send_timeout

    async def broadcast(self, room_key: RoomKey, payload: dict) -> int:
        """Deliver *payload* to the room's current members. Returns how many got it.

        The room lock is held for the whole fan-out so membership cannot change
        mid-delivery and consecutive broadcasts reach each member in order.
        Members that are closing, closed, or fail to accept the frame in time
        are skipped.
        """
        async with self.registry.locked_members(room_key) as members:
            targets = [conn for conn in members if conn.is_open]
            if not targets:
                return 0
            results = await asyncio.gather(
                *(conn.send(payload, timeout=self.send_timeout) for conn in targets)
            )
        delivered = sum(1 for ok in results if ok)
        skipped = len(members) - delivered
        if skipped:
            logger.debug("Broadcast in room %s skipped %d member(s)", room_key, skipped)
        return delivered
