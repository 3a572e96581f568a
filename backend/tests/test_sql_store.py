from __future__ import annotations

from datetime import datetime, timezone

import pytest

from checkin.errors import StoreUnavailableError
from checkin.sql_store import SqlStore

START = datetime(2024, 12, 20, 18, 0, tzinfo=timezone.utc)


@pytest.fixture
def sql_store(tmp_path):
    store = SqlStore.from_url(f"sqlite:///{tmp_path / 'checkin.db'}")
    yield store
    store.close()


def test_membership_edge_is_unique(sql_store):
    """同じ(ユーザー, イベント)の組は1件しか保存されない。"""

    event = sql_store.create_event("Tech Meetup", "Downtown Hall", START)
    user = sql_store.get_or_create_user("a@x.com", "a")

    assert sql_store.upsert_membership(event.id, user) is True
    assert sql_store.upsert_membership(event.id, user) is False
    assert sql_store.count_members(event.id) == 1


def test_delete_membership_reports_whether_removed(sql_store):
    event = sql_store.create_event("Tech Meetup", "Downtown Hall", START)
    user = sql_store.get_or_create_user("a@x.com", "a")
    sql_store.upsert_membership(event.id, user)

    assert sql_store.delete_membership(event.id, user) is True
    assert sql_store.delete_membership(event.id, user) is False
    assert sql_store.find_event(event.id).attendees == []


def test_get_or_create_user_keeps_first_name(sql_store):
    """既存ユーザーがいれば名前は上書きしない。"""

    first = sql_store.get_or_create_user("a@x.com", "first")
    second = sql_store.get_or_create_user("a@x.com", "second")

    assert second == first
    assert second.name == "first"


def test_membership_requires_existing_event(sql_store):
    """存在しないイベントへの参加は外部キーで弾かれる。"""

    user = sql_store.get_or_create_user("a@x.com", "a")

    assert sql_store.upsert_membership("evt_missing", user) is False


def test_events_round_trip_with_utc_start_time(sql_store):
    later = sql_store.create_event("Food Fair", "Main Street", datetime(2024, 12, 25, 12, tzinfo=timezone.utc))
    earlier = sql_store.create_event("Tech Meetup", "Downtown Hall", START)

    events = sql_store.list_events()

    assert [e.id for e in events] == [earlier.id, later.id]
    assert events[0].start_time == START
    assert events[0].start_time.tzinfo is not None


def test_attendees_sorted_by_name(sql_store):
    event = sql_store.create_event("Tech Meetup", "Downtown Hall", START)
    for email, name in [("c@x.com", "Charlie"), ("a@x.com", "Alice"), ("b@x.com", "Bob")]:
        sql_store.upsert_membership(event.id, sql_store.get_or_create_user(email, name))

    assert [a.name for a in sql_store.find_event(event.id).attendees] == ["Alice", "Bob", "Charlie"]


def test_clear_removes_everything(sql_store):
    event = sql_store.create_event("Tech Meetup", "Downtown Hall", START)
    sql_store.upsert_membership(event.id, sql_store.get_or_create_user("a@x.com", "a"))

    sql_store.clear()

    assert sql_store.list_events() == []
    assert sql_store.find_user_by_email("a@x.com") is None


def test_unreachable_database_maps_to_store_unavailable(tmp_path):
    """DBに接続できない場合はStoreUnavailableになる。"""

    with pytest.raises(StoreUnavailableError):
        SqlStore.from_url(f"sqlite:///{tmp_path / 'missing' / 'dir' / 'checkin.db'}")
