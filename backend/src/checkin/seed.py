from __future__ import annotations

import logging
from datetime import datetime, timezone

from .domain import Event
from .store import Store

logger = logging.getLogger(__name__)

SAMPLE_USERS = [
    ("Alice Johnson", "alice@example.com"),
    ("Bob Smith", "bob@example.com"),
    ("Charlie Brown", "charlie@example.com"),
]

# (name, location, start_time, attendee emails)
SAMPLE_EVENTS = [
    (
        "Tech Meetup",
        "Downtown Hall",
        datetime(2024, 12, 20, 18, 0, tzinfo=timezone.utc),
        ["alice@example.com", "bob@example.com"],
    ),
    (
        "Music Festival",
        "City Park",
        datetime(2024, 12, 22, 15, 0, tzinfo=timezone.utc),
        ["alice@example.com"],
    ),
    (
        "Food Fair",
        "Main Street",
        datetime(2024, 12, 25, 12, 0, tzinfo=timezone.utc),
        [],
    ),
]


def reset_store(store: Store) -> None:
    store.clear()
    logger.info("Store cleared")


def seed_sample_data(store: Store) -> list[Event]:
    """既存データを消してサンプルのユーザーとイベントを投入する。"""

    reset_store(store)
    users = {email: store.get_or_create_user(email, name) for name, email in SAMPLE_USERS}

    events: list[Event] = []
    for name, location, start_time, attendee_emails in SAMPLE_EVENTS:
        event = store.create_event(name, location, start_time)
        for email in attendee_emails:
            store.upsert_membership(event.id, users[email])
        events.append(event)

    logger.info("Seeded %d users and %d events", len(users), len(events))
    return events
