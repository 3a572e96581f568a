"""イベント参加/退出のサービス層。変更の有無はストアの書き込み結果で判定する。"""

from __future__ import annotations

import logging
import re

from .domain import Event, EventChanged, MemberJoined, MemberLeft, User
from .errors import EventNotFoundError, InvalidInputError, UserNotFoundError
from .realtime import Broadcaster
from .store import Store

logger = logging.getLogger(__name__)

_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")


def display_name_from_email(email: str) -> str:
    """メールのローカル部から英数字以外を除いた表示名。空なら "User"。"""

    return _NON_ALNUM.sub("", email.split("@")[0]) or "User"


def local_part(email: str) -> str:
    return email.split("@")[0]


class MembershipService:
    def __init__(self, store: Store, broadcaster: Broadcaster) -> None:
        self._store = store
        self._broadcaster = broadcaster

    def list_events(self) -> list[Event]:
        events = self._store.list_events()
        logger.info("Retrieved %d events", len(events))
        return events

    def get_or_create_user(self, email: str) -> User:
        if not email or "@" not in email:
            raise InvalidInputError("Valid email is required")

        user = self._store.find_user_by_email(email)
        if user is None:
            logger.info("Creating new user for email: %s", email)
            user = self._store.get_or_create_user(email, display_name_from_email(email))
        return user

    def join_event(self, event_id: str, user_email: str) -> Event:
        self._require(event_id, user_email)
        self._require_event(event_id)

        # joinEvent keeps the raw local part as the name (see get_or_create_user)
        user = self._store.find_user_by_email(user_email)
        if user is None:
            user = self._store.get_or_create_user(user_email, local_part(user_email))

        created = self._store.upsert_membership(event_id, user)
        event = self._require_event(event_id)
        if not created:
            logger.debug("%s already attends %s", user_email, event_id)
            return event

        logger.info("%s joined %s (%d attendees)", user_email, event_id, len(event.attendees))
        self._publish(
            MemberJoined(event_id=event_id, user=user, attendees=event.attendees),
            EventChanged(event_id=event_id, attendees=event.attendees),
        )
        return event

    def leave_event(self, event_id: str, user_email: str) -> Event:
        self._require(event_id, user_email)
        self._require_event(event_id)

        user = self._store.find_user_by_email(user_email)
        if user is None:
            raise UserNotFoundError(user_email)

        removed = self._store.delete_membership(event_id, user)
        event = self._require_event(event_id)
        if not removed:
            logger.debug("%s does not attend %s", user_email, event_id)
            return event

        logger.info("%s left %s (%d attendees)", user_email, event_id, len(event.attendees))
        self._publish(
            MemberLeft(event_id=event_id, user=user, attendees=event.attendees),
            EventChanged(event_id=event_id, attendees=event.attendees),
        )
        return event

    @staticmethod
    def _require(event_id: str, user_email: str) -> None:
        if not event_id or not user_email:
            raise InvalidInputError("Event ID and user email are required")

    def _require_event(self, event_id: str) -> Event:
        event = self._store.find_event(event_id)
        if event is None:
            raise EventNotFoundError(event_id)
        return event

    def _publish(self, *messages: MemberJoined | MemberLeft | EventChanged) -> None:
        for message in messages:
            try:
                self._broadcaster.publish(message)
            except Exception:
                logger.exception(
                    "Broadcast of %s for %s failed", message.wire_name, message.event_id
                )
