from __future__ import annotations

import asyncio

import pytest

from checkin.schema import schema

INTROSPECTION = """
{
  __schema {
    types {
      name
      description
      fields {
        name
        description
        args { name description }
      }
    }
  }
}
"""

JOIN = """
mutation Join($eventId: ID!, $userEmail: String!) {
  joinEvent(eventId: $eventId, userEmail: $userEmail) {
    id name location startTime attendees { id name email }
  }
}
"""

LEAVE = """
mutation Leave($eventId: ID!, $userEmail: String!) {
  leaveEvent(eventId: $eventId, userEmail: $userEmail) { id attendees { email } }
}
"""


@pytest.fixture
def run(service):
    def _run(query: str, **variables):
        return asyncio.run(
            schema.execute(query, variable_values=variables, context_value={"service": service})
        )

    return _run


def test_every_field_and_argument_is_documented():
    """公開するtype・フィールド・引数にはすべて説明文がある。"""

    result = asyncio.run(schema.execute(INTROSPECTION))
    assert result.errors is None

    types = {t["name"]: t for t in result.data["__schema"]["types"]}
    for name in ("User", "Event"):
        assert types[name]["description"]
    for name in ("User", "Event", "Query", "Mutation"):
        for field in types[name]["fields"]:
            assert field["description"], f"{name}.{field['name']}"
            for arg in field["args"]:
                assert arg["description"], f"{name}.{field['name']}({arg['name']})"

    assert {f["name"] for f in types["Query"]["fields"]} == {"events", "me"}
    assert {f["name"] for f in types["Mutation"]["fields"]} == {"joinEvent", "leaveEvent"}
    assert {f["name"] for f in types["Event"]["fields"]} == {
        "id", "name", "location", "startTime", "attendees"
    }


def test_events_query_serializes_start_time_as_iso8601(run, event):
    result = run("{ events { id name location startTime attendees { email } } }")

    assert result.errors is None
    assert result.data["events"] == [
        {
            "id": event.id,
            "name": "Tech Meetup",
            "location": "Downtown Hall",
            "startTime": "2024-12-20T18:00:00.000Z",
            "attendees": [],
        }
    ]


def test_join_and_leave_mutations(run, event, broadcaster):
    joined = run(JOIN, eventId=event.id, userEmail="a@x.com")
    assert joined.errors is None
    assert [a["email"] for a in joined.data["joinEvent"]["attendees"]] == ["a@x.com"]
    assert joined.data["joinEvent"]["attendees"][0]["name"] == "a"

    left = run(LEAVE, eventId=event.id, userEmail="a@x.com")
    assert left.errors is None
    assert left.data["leaveEvent"] == {"id": event.id, "attendees": []}
    assert [m.kind for m in broadcaster.messages] == [
        "member_joined", "event_changed", "member_left", "event_changed"
    ]


def test_me_creates_user(run):
    result = run('query Me($email: String!) { me(email: $email) { id name email } }', email="bob.s@x.com")

    assert result.errors is None
    assert result.data["me"]["name"] == "bobs"
    assert result.data["me"]["email"] == "bob.s@x.com"


@pytest.mark.parametrize(
    "query, variables, message, code",
    [
        (
            'query Me($email: String!) { me(email: $email) { id } }',
            {"email": "not-an-email"},
            "Valid email is required",
            "INVALID_INPUT",
        ),
        (JOIN, {"eventId": "bad-id", "userEmail": "a@x.com"}, "Event not found", "NOT_FOUND"),
        (LEAVE, {"eventId": "", "userEmail": "a@x.com"}, "Event ID and user email are required", "INVALID_INPUT"),
    ],
)
def test_service_errors_surface_as_request_errors(run, query, variables, message, code):
    result = run(query, **variables)

    assert result.errors is not None
    assert result.errors[0].message == message
    assert result.errors[0].extensions["code"] == code


def test_leave_with_unknown_email_is_user_not_found(run, event):
    result = run(LEAVE, eventId=event.id, userEmail="nonexistent@x.com")

    assert result.errors[0].message == "User not found"
    assert result.errors[0].extensions["code"] == "USER_NOT_FOUND"
