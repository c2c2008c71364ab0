"""WebSocket chat handler: one ``ChatSession`` per connection.

A session moves through ``CONNECTING -> JOINED -> CLOSED``. The handshake
(query-string token and room ids) is checked before anything touches the
room registry; after joining, the session replays the room's history to its
own client, then persists and broadcasts each inbound message in order.
The main entry point is ``websocket_chat()``, which server.py mounts at
``/ws``.
"""

import enum
import logging
from datetime import datetime, timezone

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from .auth import AuthError, verify_token
from .broadcaster import Broadcaster
from .config import ChatSettings
from .connection import Connection
from .message_store import MessageStore, PersistenceError
from .room_registry import RoomRegistry
from .schemas import (
    HistoryPayload,
    InboundMessage,
    MessagePayload,
    RoomKey,
    dump_history,
    dump_payload,
)
from .ws_constants import (
    CLOSE_HANDSHAKE_ERROR,
    CLOSE_UNAUTHORIZED,
    PARAM_COURSE_ID,
    PARAM_TOKEN,
    PARAM_VIDEO_ID,
)

logger = logging.getLogger(__name__)


class HandshakeError(Exception):
    """Required connection parameters are missing from the query string."""


class ConnectionState(enum.Enum):
    CONNECTING = "connecting"
    JOINED = "joined"
    CLOSED = "closed"


def parse_handshake(query_params, *, video_scoped: bool) -> tuple[str, RoomKey]:
    """Pull the token and room key out of the connection URI's query string."""
    token = (query_params.get(PARAM_TOKEN) or "").strip()
    course_id = (query_params.get(PARAM_COURSE_ID) or "").strip()
    if not token:
        raise HandshakeError("Missing token")
    if not course_id:
        raise HandshakeError(f"Missing {PARAM_COURSE_ID}")
    video_id = None
    if video_scoped:
        video_id = (query_params.get(PARAM_VIDEO_ID) or "").strip()
        if not video_id:
            raise HandshakeError(f"Missing {PARAM_VIDEO_ID}")
    return token, RoomKey(course_id=course_id, video_id=video_id)


def _broadcast_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


class ChatSession:
    """Holds the state of a single chat connection."""

    def __init__(
        self,
        websocket: WebSocket,
        *,
        registry: RoomRegistry,
        store: MessageStore,
        broadcaster: Broadcaster,
        settings: ChatSettings,
    ):
        self.ws = websocket
        self.registry = registry
        self.store = store
        self.broadcaster = broadcaster
        self.settings = settings

        self.state = ConnectionState.CONNECTING
        self.connection: Connection | None = None

    # ------------------------------------------------------------------
    # Connecting -> Joined
    # ------------------------------------------------------------------

    async def _reject(self, code: int, reason: str) -> None:
        self.state = ConnectionState.CLOSED
        try:
            await self.ws.close(code=code, reason=reason)
        except (WebSocketDisconnect, RuntimeError):
            pass

    async def _resolve_sender_name(self, user_id: str) -> str | None:
        try:
            return await self.store.get_user_name(user_id)
        except PersistenceError:
            logger.exception("Failed to look up display name for user %s", user_id)
            return None

    async def join(self) -> bool:
        """Validate the handshake, register, and replay history.

        Returns False if the connection was rejected and closed. Rejections
        happen before any registry call.
        """
        try:
            token, room_key = parse_handshake(
                self.ws.query_params, video_scoped=self.settings.video_scoped
            )
        except HandshakeError as e:
            logger.debug("Rejected websocket handshake: %s", e)
            await self._reject(CLOSE_HANDSHAKE_ERROR, "Bad handshake")
            return False

        try:
            claims = verify_token(
                token, secret=self.settings.jwt_secret, algorithm=self.settings.jwt_algorithm
            )
        except AuthError as e:
            client = self.ws.client.host if self.ws.client else "unknown"
            logger.warning("Websocket auth failed for room %s from %s: %s", room_key, client, e)
            await self._reject(CLOSE_UNAUTHORIZED, "Unauthorized")
            return False

        sender_name = None
        if self.settings.sender_names:
            sender_name = await self._resolve_sender_name(claims.id)

        self.connection = Connection(
            websocket=self.ws,
            user_id=claims.id,
            role=claims.role,
            room_key=room_key,
            sender_name=sender_name,
        )
        # History must be the first frame this client sees, so broadcasts
        # queue behind it.
        async with self.connection.exclusive() as send:
            await self.registry.register(room_key, self.connection)
            self.state = ConnectionState.JOINED
            logger.info("User %s joined room %s", claims.id, room_key)
            await self._send_history(send)
        return True

    async def _send_history(self, send) -> None:
        room_key = self.connection.room_key
        try:
            messages = await self.store.history(
                room_key, with_sender_names=self.settings.sender_names
            )
        except PersistenceError:
            logger.exception("Failed to load history for room %s", room_key)
            return
        frame = dump_history(
            HistoryPayload(messages=messages),
            video_scoped=self.settings.video_scoped,
            sender_names=self.settings.sender_names,
        )
        await send(frame, timeout=self.settings.send_timeout)

    # ------------------------------------------------------------------
    # Joined: inbound messages
    # ------------------------------------------------------------------

    async def handle_payload(self, raw: str) -> None:
        """Persist one inbound frame and broadcast it to the room.

        Frames that are not a JSON object with a non-empty string ``content``
        are dropped without a reply.
        """
        try:
            inbound = InboundMessage.model_validate_json(raw)
        except ValidationError:
            return

        conn = self.connection
        room_key = conn.room_key
        try:
            await self.store.append(
                course_id=room_key.course_id,
                video_id=room_key.video_id,
                sender_id=conn.user_id,
                content=inbound.content,
            )
        except PersistenceError:
            logger.exception("Dropping message from user %s in room %s", conn.user_id, room_key)
            return

        payload = MessagePayload(
            content=inbound.content,
            course_id=room_key.course_id,
            video_id=room_key.video_id,
            sender_id=conn.user_id,
            sender_name=conn.sender_name,
            created_at=_broadcast_timestamp(),
        )
        await self.broadcaster.broadcast(
            room_key,
            dump_payload(
                payload,
                video_scoped=self.settings.video_scoped,
                sender_names=self.settings.sender_names,
            ),
        )

    async def run(self) -> None:
        """Main receive loop. Frames are handled one at a time, in arrival order."""
        try:
            while True:
                message = await self.ws.receive()
                if message["type"] == "websocket.disconnect":
                    break

                raw = message.get("text")
                if raw is None and message.get("bytes") is not None:
                    try:
                        raw = message["bytes"].decode("utf-8")
                    except UnicodeDecodeError:
                        continue
                if raw is None:
                    continue

                try:
                    await self.handle_payload(raw)
                except Exception:
                    logger.exception("Unexpected error handling message in room %s",
                                     self.connection.room_key)
        except (WebSocketDisconnect, RuntimeError):
            pass

    # ------------------------------------------------------------------
    # Closed
    # ------------------------------------------------------------------

    async def cleanup(self) -> None:
        """Leave the room. Safe to call more than once."""
        if self.state is ConnectionState.CLOSED:
            return
        self.state = ConnectionState.CLOSED
        if self.connection is None:
            return
        self.connection.mark_closed()
        removed = await self.registry.deregister(self.connection.room_key, self.connection)
        if removed:
            logger.info("User %s left room %s", self.connection.user_id, self.connection.room_key)


# ------------------------------------------------------------------
# FastAPI endpoint: this is what server.py mounts at /ws
# ------------------------------------------------------------------

async def websocket_chat(
    websocket: WebSocket,
    *,
    registry: RoomRegistry,
    store: MessageStore,
    broadcaster: Broadcaster,
    settings: ChatSettings,
) -> None:
    """WebSocket endpoint handler for /ws."""
    await websocket.accept()

    session = ChatSession(
        websocket,
        registry=registry,
        store=store,
        broadcaster=broadcaster,
        settings=settings,
    )
    try:
        if await session.join():
            await session.run()
    finally:
        await session.cleanup()
