from __future__ import annotations

from collections.abc import Callable
from typing import Annotated, Optional, TypeVar

import strawberry
from graphql import GraphQLError
from starlette.concurrency import run_in_threadpool
from strawberry.types import Info

from . import domain
from .errors import CheckinError
from .service import MembershipService

T = TypeVar("T")


async def _call(fn: Callable[..., T], *args: str) -> T:
    # ストア呼び出しはブロッキングなのでイベントループ外で実行する
    try:
        return await run_in_threadpool(fn, *args)
    except CheckinError as exc:
        raise GraphQLError(exc.message, extensions={"code": exc.code.value}) from exc


def _service(info: Info) -> MembershipService:
    return info.context["service"]


@strawberry.type(name="User", description="Represents a user in the event check-in system")
class UserType:
    id: strawberry.ID = strawberry.field(description="Unique identifier for the user")
    name: str = strawberry.field(
        description="Display name of the user, typically derived from their email"
    )
    email: str = strawberry.field(
        description="Email address of the user, used as unique identifier for authentication"
    )

    @classmethod
    def from_domain(cls, user: domain.User) -> "UserType":
        return cls(id=strawberry.ID(user.id), name=user.name, email=user.email)


@strawberry.type(name="Event", description="Represents an event that users can join or leave")
class EventType:
    id: strawberry.ID = strawberry.field(description="Unique identifier for the event")
    name: str = strawberry.field(description="Name or title of the event")
    location: str = strawberry.field(
        description="Physical or virtual location where the event takes place"
    )
    start_time: str = strawberry.field(
        description="ISO 8601 formatted date and time when the event starts"
    )
    attendees: list[UserType] = strawberry.field(
        description="List of users who have joined this event"
    )

    @classmethod
    def from_domain(cls, event: domain.Event) -> "EventType":
        return cls(
            id=strawberry.ID(event.id),
            name=event.name,
            location=event.location,
            start_time=domain.to_iso8601(event.start_time),
            attendees=[UserType.from_domain(u) for u in event.attendees],
        )


@strawberry.type(description="Read operations on events and users")
class Query:
    @strawberry.field(
        description="Retrieves all available events with their attendees, ordered by start time"
    )
    async def events(self, info: Info) -> list[EventType]:
        events = await _call(_service(info).list_events)
        return [EventType.from_domain(e) for e in events]

    @strawberry.field(
        description=(
            "Retrieves or creates a user by email address. "
            "If the user doesn't exist, creates a new user with the provided email."
        )
    )
    async def me(
        self,
        info: Info,
        email: Annotated[
            str,
            strawberry.argument(description="Email address of the user to retrieve or create"),
        ],
    ) -> Optional[UserType]:
        user = await _call(_service(info).get_or_create_user, email)
        return UserType.from_domain(user)


@strawberry.type(description="Membership changes; each successful change is broadcast in realtime")
class Mutation:
    @strawberry.mutation(
        description=(
            "Adds a user to an event's attendee list. "
            "If the user is already attending, returns the current event state. "
            "Creates a new user if one doesn't exist with the provided email."
        )
    )
    async def join_event(
        self,
        info: Info,
        event_id: Annotated[
            strawberry.ID, strawberry.argument(description="Unique identifier of the event to join")
        ],
        user_email: Annotated[
            str, strawberry.argument(description="Email address of the user joining the event")
        ],
    ) -> EventType:
        event = await _call(_service(info).join_event, str(event_id), user_email)
        return EventType.from_domain(event)

    @strawberry.mutation(
        description=(
            "Removes a user from an event's attendee list. "
            "If the user is not attending, returns the current event state."
        )
    )
    async def leave_event(
        self,
        info: Info,
        event_id: Annotated[
            strawberry.ID, strawberry.argument(description="Unique identifier of the event to leave")
        ],
        user_email: Annotated[
            str, strawberry.argument(description="Email address of the user leaving the event")
        ],
    ) -> EventType:
        event = await _call(_service(info).leave_event, str(event_id), user_email)
        return EventType.from_domain(event)


schema = strawberry.Schema(query=Query, mutation=Mutation)
