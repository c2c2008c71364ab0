"""Wire models: room keys, inbound payloads and the outbound frame variants."""

from dataclasses import dataclass
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from .ws_constants import MSG_HISTORY, MSG_MESSAGE


@dataclass(frozen=True)
class RoomKey:
    """Identifies a chat room: a course, or a (course, video) pair."""

    course_id: str
    video_id: str | None = None

    def __str__(self) -> str:
        if self.video_id is None:
            return self.course_id
        return f"{self.course_id}/{self.video_id}"


class InboundMessage(BaseModel):
    """The only client -> server payload. Anything besides ``content`` is ignored."""

    model_config = ConfigDict(extra="ignore", strict=True)

    content: str = Field(min_length=1)


class ChatMessage(BaseModel):
    """A persisted chat message as stored and replayed in history."""

    id: int
    course_id: str
    video_id: str | None = None
    sender_id: str
    content: str
    created_at: str
    sender_name: str | None = None


class HistoryPayload(BaseModel):
    type: Literal["history"] = MSG_HISTORY
    messages: list[ChatMessage] = Field(default_factory=list)


class MessagePayload(BaseModel):
    type: Literal["message"] = MSG_MESSAGE
    content: str
    course_id: str
    video_id: str | None = None
    sender_id: str
    sender_name: str | None = None
    created_at: str


# Keys a deployment does not use are left out of the JSON frames entirely,
# so course-scoped rooms never see "video_id": null.

def _unused_keys(*, video_scoped: bool, sender_names: bool) -> set[str]:
    unused = set()
    if not video_scoped:
        unused.add("video_id")
    if not sender_names:
        unused.add("sender_name")
    return unused


def dump_messages(messages: list[ChatMessage], *, video_scoped: bool, sender_names: bool) -> list[dict]:
    unused = _unused_keys(video_scoped=video_scoped, sender_names=sender_names)
    return [m.model_dump(exclude=unused) for m in messages]


def dump_history(history: HistoryPayload, *, video_scoped: bool, sender_names: bool) -> dict:
    unused = _unused_keys(video_scoped=video_scoped, sender_names=sender_names)
    if not unused:
        return history.model_dump()
    return history.model_dump(exclude={"messages": {"__all__": unused}})


def dump_payload(payload: MessagePayload, *, video_scoped: bool, sender_names: bool) -> dict:
    return payload.model_dump(
        exclude=_unused_keys(video_scoped=video_scoped, sender_names=sender_names)
    )
