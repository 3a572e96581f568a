from __future__ import annotations

from datetime import datetime, timedelta, timezone

from checkin.domain import EventChanged, event_topic, to_iso8601, wire_payload


def test_to_iso8601_normalizes_to_utc_with_millis():
    jst = timezone(timedelta(hours=9))

    assert to_iso8601(datetime(2024, 12, 21, 3, 0, tzinfo=jst)) == "2024-12-20T18:00:00.000Z"
    assert to_iso8601(datetime(2024, 12, 20, 18, 0)) == "2024-12-20T18:00:00.000Z"


def test_event_changed_goes_to_every_client():
    """EventChangedはroom指定なし（全クライアント宛て）。"""

    message = EventChanged(event_id="evt_1", attendees=[])

    assert message.topic is None
    assert message.wire_name == "eventUpdated"
    assert wire_payload(message) == {"eventId": "evt_1", "attendees": []}
    assert event_topic("evt_1") == "event-evt_1"
