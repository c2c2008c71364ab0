import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from starlette.requests import Request

from .auth import Claims, require_user
from .broadcaster import Broadcaster
from .config import ChatSettings, load_settings
from .message_store import MessageStore, PersistenceError
from .room_registry import RoomRegistry
from .schemas import RoomKey, dump_messages
from .ws_handler import websocket_chat

logger = logging.getLogger(__name__)


def create_app(
    settings: ChatSettings | None = None,
    *,
    store: MessageStore | None = None,
    registry: RoomRegistry | None = None,
) -> FastAPI:
    """Build the application with its own registry, store and broadcaster."""
    settings = settings or load_settings()
    store = store or MessageStore(settings.db_path)
    registry = registry or RoomRegistry()
    broadcaster = Broadcaster(registry, send_timeout=settings.send_timeout)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await store.initialize()
        if not settings.jwt_secret:
            logger.warning("COURSECHAT_JWT_SECRET is not set; every token will be rejected")
        logger.info("Chat rooms scoped by %s (sender names %s)",
                    settings.room_scope, "on" if settings.sender_names else "off")
        yield

    app = FastAPI(lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.registry = registry
    app.state.broadcaster = broadcaster

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/health")
    async def health(request: Request):
        reg: RoomRegistry = request.app.state.registry
        return {
            "status": "ok",
            "room_scope": settings.room_scope,
            "rooms": reg.room_count(),
            "connections": reg.connection_count(),
        }

    @app.get("/api/courses/{course_id}/messages")
    async def course_messages(
        course_id: str,
        video_id: str | None = None,
        user: Claims = Depends(require_user),
    ):
        if settings.video_scoped and not video_id:
            raise HTTPException(status_code=400, detail="video_id is required")
        room_key = RoomKey(course_id=course_id, video_id=video_id if settings.video_scoped else None)
        try:
            messages = await store.history(room_key, with_sender_names=settings.sender_names)
        except PersistenceError:
            logger.exception("Failed to load history for room %s (user %s)", room_key, user.id)
            raise HTTPException(status_code=503, detail="Message store unavailable")
        return {
            "messages": dump_messages(
                messages,
                video_scoped=settings.video_scoped,
                sender_names=settings.sender_names,
            )
        }

    @app.websocket("/ws")
    async def chat_socket(websocket: WebSocket):
        await websocket_chat(
            websocket,
            registry=registry,
            store=store,
            broadcaster=broadcaster,
            settings=settings,
        )

    return app


app = create_app()
