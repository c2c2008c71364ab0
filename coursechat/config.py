"""Runtime configuration, read from environment variables."""

import os
from dataclasses import dataclass, field
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

ROOM_SCOPE_COURSE = "course"
ROOM_SCOPE_VIDEO = "video"
_ROOM_SCOPES = (ROOM_SCOPE_COURSE, ROOM_SCOPE_VIDEO)

_TRUTHY = {"1", "true", "yes", "on"}


def _get_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in _TRUTHY


def _get_cors_origins() -> list[str]:
    """Get CORS origins from environment variable or use default."""
    cors_origins_str = os.environ.get("COURSECHAT_CORS_ORIGINS", "http://localhost:3000")
    origins = [origin.strip() for origin in cors_origins_str.split(",") if origin.strip()]
    return origins if origins else ["http://localhost:3000"]


@dataclass
class ChatSettings:
    jwt_secret: str | None = None
    jwt_algorithm: str = "HS256"
    room_scope: str = ROOM_SCOPE_COURSE
    # None means "follow the scope": names are resolved for video rooms only
    sender_names: bool | None = None
    db_path: Path = BASE_DIR / "data" / "coursechat.db"
    send_timeout: float = 5.0
    cors_origins: list[str] = field(default_factory=lambda: ["http://localhost:3000"])

    def __post_init__(self):
        if self.room_scope not in _ROOM_SCOPES:
            raise ValueError(
                f"Invalid room scope {self.room_scope!r}; expected one of {_ROOM_SCOPES}"
            )
        if self.sender_names is None:
            self.sender_names = self.room_scope == ROOM_SCOPE_VIDEO
        self.db_path = Path(self.db_path)

    @property
    def video_scoped(self) -> bool:
        return self.room_scope == ROOM_SCOPE_VIDEO


def load_settings() -> ChatSettings:
    """Build settings from ``COURSECHAT_*`` environment variables."""
    scope = os.environ.get("COURSECHAT_ROOM_SCOPE", ROOM_SCOPE_COURSE).strip().lower()
    names_default = scope == ROOM_SCOPE_VIDEO
    return ChatSettings(
        jwt_secret=os.environ.get("COURSECHAT_JWT_SECRET") or None,
        jwt_algorithm=os.environ.get("COURSECHAT_JWT_ALGORITHM", "HS256"),
        room_scope=scope,
        sender_names=_get_bool("COURSECHAT_SENDER_NAMES", names_default),
        db_path=Path(os.environ.get("COURSECHAT_DB_PATH", str(BASE_DIR / "data" / "coursechat.db"))),
        send_timeout=float(os.environ.get("COURSECHAT_SEND_TIMEOUT", "5.0")),
        cors_origins=_get_cors_origins(),
    )
