from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Protocol

import boto3
from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import BotoCoreError, ClientError

from .domain import Event, User, new_id, sort_attendees
from .errors import EventNotFoundError, StoreUnavailableError
from .sql_store import SqlStore

if TYPE_CHECKING:
    from .config import Settings

logger = logging.getLogger(__name__)


class Store(Protocol):
    def list_events(self) -> list[Event]: ...

    def find_event(self, event_id: str) -> Event | None: ...

    def create_event(self, name: str, location: str, start_time: datetime) -> Event: ...

    def find_user_by_email(self, email: str) -> User | None: ...

    def get_or_create_user(self, email: str, name: str) -> User: ...

    def upsert_membership(self, event_id: str, user: User) -> bool: ...

    def delete_membership(self, event_id: str, user: User) -> bool: ...

    def count_members(self, event_id: str) -> int: ...

    def clear(self) -> None: ...

    def ping(self) -> None: ...

    def close(self) -> None: ...


@dataclass
class InMemoryStore(Store):
    users: dict[str, User]
    events: dict[str, Event]
    memberships: set[tuple[str, str]]
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @classmethod
    def create(cls) -> "InMemoryStore":
        return cls(users={}, events={}, memberships=set())

    def _materialize(self, event: Event) -> Event:
        users_by_id = {u.id: u for u in self.users.values()}
        attendees = [
            users_by_id[uid] for (eid, uid) in self.memberships if eid == event.id
        ]
        return event.model_copy(update={"attendees": sort_attendees(attendees)})

    def list_events(self) -> list[Event]:
        with self._lock:
            events = sorted(self.events.values(), key=lambda e: (e.start_time, e.id))
            return [self._materialize(e) for e in events]

    def find_event(self, event_id: str) -> Event | None:
        with self._lock:
            event = self.events.get(event_id)
            return None if event is None else self._materialize(event)

    def create_event(self, name: str, location: str, start_time: datetime) -> Event:
        event = Event(id=new_id("evt"), name=name, location=location, start_time=start_time)
        with self._lock:
            self.events[event.id] = event
        return event

    def find_user_by_email(self, email: str) -> User | None:
        with self._lock:
            return self.users.get(email)

    def get_or_create_user(self, email: str, name: str) -> User:
        with self._lock:
            user = self.users.get(email)
            if user is None:
                user = User(id=new_id("usr"), name=name, email=email)
                self.users[email] = user
            return user

    def upsert_membership(self, event_id: str, user: User) -> bool:
        key = (event_id, user.id)
        with self._lock:
            if event_id not in self.events or self.users.get(user.email) != user:
                return False
            if key in self.memberships:
                return False
            self.memberships.add(key)
            return True

    def delete_membership(self, event_id: str, user: User) -> bool:
        key = (event_id, user.id)
        with self._lock:
            if key not in self.memberships:
                return False
            self.memberships.remove(key)
            return True

    def count_members(self, event_id: str) -> int:
        with self._lock:
            return sum(1 for (eid, _) in self.memberships if eid == event_id)

    def clear(self) -> None:
        with self._lock:
            self.memberships.clear()
            self.events.clear()
            self.users.clear()

    def ping(self) -> None:
        return None

    def close(self) -> None:
        return None


@contextmanager
def _dynamodb_errors(action: str) -> Iterator[None]:
    try:
        yield
    except (BotoCoreError, ClientError) as exc:
        logger.error("DynamoDB %s failed: %s", action, exc)
        raise StoreUnavailableError(f"DynamoDB {action} failed") from exc


def _is_conditional_failure(exc: ClientError) -> bool:
    return exc.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException"


def _cancellation_codes(exc: ClientError, count: int) -> list[str | None]:
    reasons = exc.response.get("CancellationReasons") or []
    codes = [r.get("Code") for r in reasons][:count]
    return codes + [None] * (count - len(codes))


# 単一テーブルのキー構成:
#   USER#<email> / META
#   EVENT#<id>   / META
#   EVENT#<id>   / MEMBER#<user_id>
TABLE_KEY_SCHEMA = {
    "AttributeDefinitions": [
        {"AttributeName": "pk", "AttributeType": "S"},
        {"AttributeName": "sk", "AttributeType": "S"},
    ],
    "KeySchema": [
        {"AttributeName": "pk", "KeyType": "HASH"},
        {"AttributeName": "sk", "KeyType": "RANGE"},
    ],
}

TRANSACT_ATTEMPTS = 3


@dataclass
class DynamoDBStore(Store):
    table_name: str

    @classmethod
    def from_settings(cls, settings: "Settings") -> "DynamoDBStore":
        table_name = settings.ddb_table_name.strip()
        if not table_name:
            raise RuntimeError("DDB_TABLE_NAME is required for dynamodb store")
        return cls(table_name=table_name)

    @property
    def _table(self):
        ddb = boto3.resource("dynamodb")
        return ddb.Table(self.table_name)

    def _event_from_items(self, event_id: str, items: list[dict]) -> Event | None:
        meta = None
        attendees: list[User] = []
        for it in items:
            if it["sk"] == "META":
                meta = it
            elif it["sk"].startswith("MEMBER#"):
                attendees.append(User(id=it["user_id"], name=it["name"], email=it["email"]))
        if meta is None:
            return None
        return Event(
            id=event_id,
            name=meta["name"],
            location=meta["location"],
            start_time=datetime.fromisoformat(meta["start_time"]),
            attendees=sort_attendees(attendees),
        )

    def _query_event_items(self, event_id: str) -> list[dict]:
        table = self._table
        items: list[dict] = []
        kwargs = {
            "KeyConditionExpression": Key("pk").eq(f"EVENT#{event_id}"),
            "ConsistentRead": True,
        }
        while True:
            resp = table.query(**kwargs)
            items.extend(resp.get("Items", []))
            last_key = resp.get("LastEvaluatedKey")
            if not last_key:
                return items
            kwargs["ExclusiveStartKey"] = last_key

    def _scan(self, **kwargs) -> list[dict]:
        table = self._table
        items: list[dict] = []
        while True:
            resp = table.scan(**kwargs)
            items.extend(resp.get("Items", []))
            last_key = resp.get("LastEvaluatedKey")
            if not last_key:
                return items
            kwargs["ExclusiveStartKey"] = last_key

    def list_events(self) -> list[Event]:
        with _dynamodb_errors("list_events"):
            metas = self._scan(
                FilterExpression=Attr("sk").eq("META") & Attr("pk").begins_with("EVENT#")
            )
            events: list[Event] = []
            for meta in metas:
                event_id = meta["pk"].split("#", 1)[1]
                event = self._event_from_items(event_id, self._query_event_items(event_id))
                if event is not None:
                    events.append(event)
        return sorted(events, key=lambda e: (e.start_time, e.id))

    def find_event(self, event_id: str) -> Event | None:
        with _dynamodb_errors("find_event"):
            return self._event_from_items(event_id, self._query_event_items(event_id))

    def create_event(self, name: str, location: str, start_time: datetime) -> Event:
        if start_time.tzinfo is None:
            start_time = start_time.replace(tzinfo=timezone.utc)
        event = Event(id=new_id("evt"), name=name, location=location, start_time=start_time)
        with _dynamodb_errors("create_event"):
            self._table.put_item(
                Item={
                    "pk": f"EVENT#{event.id}",
                    "sk": "META",
                    "name": event.name,
                    "location": event.location,
                    "start_time": event.start_time.isoformat(),
                }
            )
        return event

    def find_user_by_email(self, email: str) -> User | None:
        with _dynamodb_errors("find_user_by_email"):
            resp = self._table.get_item(
                Key={"pk": f"USER#{email}", "sk": "META"}, ConsistentRead=True
            )
        item = resp.get("Item")
        if not item:
            return None
        return User(id=item["id"], name=item["name"], email=item["email"])

    def get_or_create_user(self, email: str, name: str) -> User:
        user = User(id=new_id("usr"), name=name, email=email)
        try:
            self._table.put_item(
                Item={
                    "pk": f"USER#{email}",
                    "sk": "META",
                    "id": user.id,
                    "name": user.name,
                    "email": user.email,
                },
                ConditionExpression="attribute_not_exists(pk)",
            )
        except ClientError as exc:
            if not _is_conditional_failure(exc):
                logger.error("DynamoDB get_or_create_user failed: %s", exc)
                raise StoreUnavailableError("DynamoDB get_or_create_user failed") from exc
            existing = self.find_user_by_email(email)
            if existing is None:
                raise StoreUnavailableError("DynamoDB user vanished during creation") from exc
            return existing
        except BotoCoreError as exc:
            logger.error("DynamoDB get_or_create_user failed: %s", exc)
            raise StoreUnavailableError("DynamoDB get_or_create_user failed") from exc
        return user

    def upsert_membership(self, event_id: str, user: User) -> bool:
        # イベントのMETAが存在することと、メンバー行が未作成であることを同一トランザクションで確認する
        items = [
            {
                "ConditionCheck": {
                    "TableName": self.table_name,
                    "Key": {"pk": f"EVENT#{event_id}", "sk": "META"},
                    "ConditionExpression": "attribute_exists(pk)",
                }
            },
            {
                "Put": {
                    "TableName": self.table_name,
                    "Item": {
                        "pk": f"EVENT#{event_id}",
                        "sk": f"MEMBER#{user.id}",
                        "user_id": user.id,
                        "name": user.name,
                        "email": user.email,
                    },
                    "ConditionExpression": "attribute_not_exists(pk)",
                }
            },
        ]
        client = self._table.meta.client
        for attempt in range(1, TRANSACT_ATTEMPTS + 1):
            try:
                client.transact_write_items(TransactItems=items)
                return True
            except ClientError as exc:
                if exc.response.get("Error", {}).get("Code") != "TransactionCanceledException":
                    logger.error("DynamoDB upsert_membership failed: %s", exc)
                    raise StoreUnavailableError("DynamoDB upsert_membership failed") from exc
                event_check, member_put = _cancellation_codes(exc, len(items))
                if event_check == "ConditionalCheckFailed":
                    raise EventNotFoundError(event_id) from exc
                if member_put == "ConditionalCheckFailed":
                    return False
                logger.warning(
                    "DynamoDB upsert_membership cancelled (%s, %s), attempt %d",
                    event_check, member_put, attempt,
                )
            except BotoCoreError as exc:
                logger.error("DynamoDB upsert_membership failed: %s", exc)
                raise StoreUnavailableError("DynamoDB upsert_membership failed") from exc
        raise StoreUnavailableError("DynamoDB upsert_membership failed")

    def delete_membership(self, event_id: str, user: User) -> bool:
        with _dynamodb_errors("delete_membership"):
            resp = self._table.delete_item(
                Key={"pk": f"EVENT#{event_id}", "sk": f"MEMBER#{user.id}"},
                ReturnValues="ALL_OLD",
            )
        return bool(resp.get("Attributes"))

    def count_members(self, event_id: str) -> int:
        kwargs = {
            "KeyConditionExpression": Key("pk").eq(f"EVENT#{event_id}")
            & Key("sk").begins_with("MEMBER#"),
            "Select": "COUNT",
            "ConsistentRead": True,
        }
        total = 0
        with _dynamodb_errors("count_members"):
            table = self._table
            while True:
                resp = table.query(**kwargs)
                total += int(resp.get("Count", 0))
                last_key = resp.get("LastEvaluatedKey")
                if not last_key:
                    return total
                kwargs["ExclusiveStartKey"] = last_key

    def clear(self) -> None:
        with _dynamodb_errors("clear"):
            keys = self._scan(ProjectionExpression="pk, sk")
            with self._table.batch_writer() as batch:
                for it in keys:
                    batch.delete_item(Key={"pk": it["pk"], "sk": it["sk"]})

    def ensure_table(self, wait: bool = True) -> bool:
        """テーブルが無ければ作成する。作成した場合はTrue。"""

        client = self._table.meta.client
        with _dynamodb_errors("ensure_table"):
            try:
                client.describe_table(TableName=self.table_name)
                return False
            except ClientError as exc:
                if exc.response.get("Error", {}).get("Code") != "ResourceNotFoundException":
                    raise
            client.create_table(
                TableName=self.table_name,
                BillingMode="PAY_PER_REQUEST",
                **TABLE_KEY_SCHEMA,
            )
            if wait:
                client.get_waiter("table_exists").wait(TableName=self.table_name)
        logger.info("Created DynamoDB table %s", self.table_name)
        return True

    def ping(self) -> None:
        with _dynamodb_errors("ping"):
            boto3.client("dynamodb").describe_table(TableName=self.table_name)

    def close(self) -> None:
        return None


def build_store(settings: "Settings") -> Store:
    kind = settings.store_backend
    if kind == "dynamodb":
        return DynamoDBStore.from_settings(settings)
    if kind == "sql":
        return SqlStore.from_url(settings.database_url)
    return InMemoryStore.create()
