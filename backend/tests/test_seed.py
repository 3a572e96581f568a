from __future__ import annotations

from checkin.seed import reset_store, seed_sample_data


def test_seed_replaces_existing_data(store, service, event):
    """シードは既存データを消してサンプルの3イベントを作る。"""

    service.join_event(event.id, "someone@x.com")

    events = seed_sample_data(store)

    assert store.find_event(event.id) is None
    assert store.find_user_by_email("someone@x.com") is None
    assert [e.name for e in store.list_events()] == ["Tech Meetup", "Music Festival", "Food Fair"]
    assert [store.count_members(e.id) for e in events] == [2, 1, 0]


def test_reset_store_clears_everything(store, event):
    reset_store(store)

    assert store.list_events() == []
