from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Literal, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex}"


def to_iso8601(value: datetime) -> str:
    """UTCのミリ秒精度ISO-8601文字列に変換する（例: 2024-12-20T18:00:00.000Z）。"""

    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class User(_WireModel):
    id: str
    name: str
    email: str


class Event(_WireModel):
    id: str
    name: str
    location: str
    start_time: datetime
    attendees: list[User] = Field(default_factory=list)


def sort_attendees(users: list[User]) -> list[User]:
    return sorted(users, key=lambda u: (u.name, u.email))


# Realtime messages. Room names are shared with the Socket.IO clients.

EVENT_ROOM_PREFIX = "event-"


def event_topic(event_id: str) -> str:
    return f"{EVENT_ROOM_PREFIX}{event_id}"


class MemberJoined(_WireModel):
    kind: Literal["member_joined"] = Field(default="member_joined", exclude=True)
    event_id: str
    user: User
    attendees: list[User]

    @property
    def wire_name(self) -> str:
        return "userJoined"

    @property
    def topic(self) -> str | None:
        return event_topic(self.event_id)


class MemberLeft(_WireModel):
    kind: Literal["member_left"] = Field(default="member_left", exclude=True)
    event_id: str
    user: User
    attendees: list[User]

    @property
    def wire_name(self) -> str:
        return "userLeft"

    @property
    def topic(self) -> str | None:
        return event_topic(self.event_id)


class EventChanged(_WireModel):
    kind: Literal["event_changed"] = Field(default="event_changed", exclude=True)
    event_id: str
    attendees: list[User]

    @property
    def wire_name(self) -> str:
        return "eventUpdated"

    @property
    def topic(self) -> str | None:
        return None


BroadcastMessage = Annotated[
    Union[MemberJoined, MemberLeft, EventChanged], Field(discriminator="kind")
]


def wire_payload(message: MemberJoined | MemberLeft | EventChanged) -> dict:
    return message.model_dump(mode="json", by_alias=True)
