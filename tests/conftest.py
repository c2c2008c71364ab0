"""Shared fixtures for the course chat test suite."""

import sys
import time
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import jwt
import pytest
from httpx import ASGITransport, AsyncClient
from starlette.websockets import WebSocketState

# Ensure the project root is on sys.path so 'coursechat' package resolves
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from coursechat.config import ChatSettings  # noqa: E402
from coursechat.connection import Connection  # noqa: E402
from coursechat.message_store import MessageStore  # noqa: E402
from coursechat.schemas import RoomKey  # noqa: E402

TEST_SECRET = "course-chat-test-secret-0123456789abcdef"


def make_token(user_id="user-1", *, role="student", secret=TEST_SECRET, expires_in=3600, **extra):
    """Sign a token the way the login service does: id and role claims."""
    now = int(time.time())
    payload = {"id": user_id, "role": role, "iat": now, "exp": now + expires_in, **extra}
    return jwt.encode(payload, secret, algorithm="HS256")


def make_ws():
    """An AsyncMock websocket that reports itself as connected."""
    ws = AsyncMock()
    ws.client_state = WebSocketState.CONNECTED
    ws.application_state = WebSocketState.CONNECTED
    ws.query_params = {}
    ws.client = MagicMock(host="127.0.0.1")
    return ws


def make_connection(user_id="user-1", room_key=None, *, sender_name=None):
    return Connection(
        websocket=make_ws(),
        user_id=user_id,
        room_key=room_key or RoomKey("c1"),
        sender_name=sender_name,
    )


def sent_frames(ws_mock, msg_type: str | None = None) -> list[dict]:
    """Every dict passed to ws.send_json(), optionally filtered by ``type``."""
    frames = [c[0][0] for c in ws_mock.send_json.call_args_list]
    if msg_type is None:
        return frames
    return [f for f in frames if isinstance(f, dict) and f.get("type") == msg_type]


# ---------------------------------------------------------------------------
# Bare Object Factory: skip __init__ for ChatSession
# ---------------------------------------------------------------------------

def make_bare_chat_session(*, settings=None, query_params=None):
    """Create a ChatSession with __new__ and mocked collaborators.

    The registry and broadcaster are AsyncMocks so tests can assert exactly
    which calls happened (or did not) during a handshake.
    """
    from coursechat.ws_handler import ChatSession, ConnectionState

    session = ChatSession.__new__(ChatSession)
    session.ws = make_ws()
    session.ws.query_params = query_params or {}
    session.registry = AsyncMock()
    session.store = AsyncMock()
    session.store.history = AsyncMock(return_value=[])
    session.store.get_user_name = AsyncMock(return_value=None)
    session.broadcaster = AsyncMock()
    session.settings = settings or ChatSettings(jwt_secret=TEST_SECRET)
    session.state = ConnectionState.CONNECTING
    session.connection = None
    return session


@pytest.fixture
def course_settings(tmp_path):
    return ChatSettings(
        jwt_secret=TEST_SECRET,
        room_scope="course",
        db_path=tmp_path / "chat.db",
        send_timeout=2.0,
    )


@pytest.fixture
def video_settings(tmp_path):
    return ChatSettings(
        jwt_secret=TEST_SECRET,
        room_scope="video",
        db_path=tmp_path / "chat.db",
        send_timeout=2.0,
    )


@pytest.fixture
async def store(tmp_path):
    """An initialized MessageStore on a temporary SQLite file."""
    message_store = MessageStore(tmp_path / "chat.db")
    await message_store.initialize()
    return message_store


@pytest.fixture
def course_app(course_settings):
    from coursechat.server import create_app

    return create_app(course_settings)


@pytest.fixture
def video_app(video_settings):
    from coursechat.server import create_app

    return create_app(video_settings)


@pytest.fixture
async def client(course_app):
    """Async HTTP client for REST endpoints. ASGITransport skips lifespan."""
    await course_app.state.store.initialize()
    transport = ASGITransport(app=course_app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac
