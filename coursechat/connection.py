import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from .schemas import RoomKey
from .ws_constants import CLOSE_SEND_FAILED

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class Connection:
    """One live websocket plus the identity it was verified as.

    Compared and hashed by identity: two connections of the same user in the
    same room are distinct members.
    """

    websocket: WebSocket
    user_id: str
    room_key: RoomKey
    role: str | None = None
    sender_name: str | None = None
    _alive: bool = field(default=True, repr=False)
    _send_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)
    _close_task: asyncio.Future | None = field(default=None, repr=False)

    @property
    def is_open(self) -> bool:
        if not self._alive:
            return False
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    def mark_closed(self) -> None:
        self._alive = False

    def _abandon(self) -> None:
        """Stop sending to this client and close its socket.

        The close makes the client's receive loop end, which deregisters it.
        """
        if not self._alive:
            return
        self._alive = False
        self._close_task = asyncio.ensure_future(self._close_quietly())

    async def _close_quietly(self) -> None:
        try:
            await self.websocket.close(code=CLOSE_SEND_FAILED)
        except (WebSocketDisconnect, RuntimeError, OSError):
            pass

    async def _send_unlocked(self, data: dict, *, timeout: float | None = None) -> bool:
        if not self.is_open:
            return False
        try:
            await asyncio.wait_for(self.websocket.send_json(data), timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning("Send to user %s in room %s timed out, closing", self.user_id, self.room_key)
            self._abandon()
            return False
        except (WebSocketDisconnect, RuntimeError, OSError):
            self._abandon()
            return False

    async def send(self, data: dict, *, timeout: float | None = None) -> bool:
        """Send JSON to the client, return False if it is gone or too slow.

        ``timeout`` bounds the lock wait and the send together.
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        try:
            await asyncio.wait_for(self._send_lock.acquire(), timeout)
        except asyncio.TimeoutError:
            # Still busy with an exclusive send (history); the client is not dead.
            logger.debug("Send lock for user %s busy, dropping frame", self.user_id)
            return False
        try:
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                logger.debug("No time left to send to user %s, dropping frame", self.user_id)
                return False
            return await self._send_unlocked(data, timeout=remaining)
        finally:
            self._send_lock.release()

    @asynccontextmanager
    async def exclusive(self):
        """Hold the send lock, yielding a sender that bypasses it.

        Frames queued through ``send()`` by other tasks wait until the block
        exits, so whatever is sent inside reaches the client first.
        """
        async with self._send_lock:
            yield self._send_unlocked
