import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from .connection import Connection
from .schemas import RoomKey

logger = logging.getLogger(__name__)


@dataclass
class _Room:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    members: list[Connection] = field(default_factory=list)
    # Tasks currently holding or waiting on ``lock``; the entry is only
    # dropped once this is zero and the room is empty.
    pending: int = 0


class RoomRegistry:
    """In-memory room membership, one lock per room.

    A connection belongs to at most one room. Rooms are independent: nothing
    here takes more than one room lock at a time.
    """

    def __init__(self):
        self._rooms: dict[RoomKey, _Room] = {}
        self._membership: dict[Connection, RoomKey] = {}

    @asynccontextmanager
    async def _locked(self, room_key: RoomKey):
        room = self._rooms.get(room_key)
        if room is None:
            room = self._rooms[room_key] = _Room()
        room.pending += 1
        try:
            async with room.lock:
                yield room
        finally:
            room.pending -= 1
            if room.pending == 0 and not room.members and self._rooms.get(room_key) is room:
                del self._rooms[room_key]

    async def register(self, room_key: RoomKey, connection: Connection) -> bool:
        """Add a connection to a room. Returns False if it was already there."""
        async with self._locked(room_key) as room:
            current = self._membership.get(connection)
            if current is not None and current != room_key:
                raise ValueError(
                    f"Connection for user {connection.user_id} is already in room {current}"
                )
            if any(member is connection for member in room.members):
                return False
            room.members.append(connection)
            self._membership[connection] = room_key
            logger.debug("Room %s now has %d member(s)", room_key, len(room.members))
            return True

    async def deregister(self, room_key: RoomKey, connection: Connection) -> bool:
        """Remove a connection by identity. Unknown rooms or members are a no-op."""
        if room_key not in self._rooms:
            return False
        async with self._locked(room_key) as room:
            for i, member in enumerate(room.members):
                if member is connection:
                    del room.members[i]
                    self._membership.pop(connection, None)
                    logger.debug("Room %s now has %d member(s)", room_key, len(room.members))
                    return True
            return False

    async def members_of(self, room_key: RoomKey) -> tuple[Connection, ...]:
        """Snapshot of a room's members; an unknown room has none."""
        if room_key not in self._rooms:
            return ()
        async with self._locked(room_key) as room:
            return tuple(room.members)

    @asynccontextmanager
    async def locked_members(self, room_key: RoomKey):
        """Hold the room lock and yield its members for the duration of a fan-out."""
        if room_key not in self._rooms:
            yield ()
            return
        async with self._locked(room_key) as room:
            yield tuple(room.members)

    def room_count(self) -> int:
        return sum(1 for room in self._rooms.values() if room.members)

    def connection_count(self) -> int:
        return len(self._membership)
