from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    String,
    Table,
    create_engine,
    delete,
    event,
    func,
    insert,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    Session,
    mapped_column,
    relationship,
    selectinload,
    sessionmaker,
)

from .domain import Event, User, new_id, sort_attendees
from .errors import StoreUnavailableError

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


event_attendees = Table(
    "event_attendees",
    Base.metadata,
    Column("event_id", String(64), ForeignKey("events.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", String(64), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)


class UserRecord(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)

    def to_domain(self) -> User:
        return User(id=self.id, name=self.name, email=self.email)


class EventRecord(Base):
    __tablename__ = "events"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    location: Mapped[str] = mapped_column(String(255), nullable=False)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True, nullable=False)

    attendees: Mapped[list[UserRecord]] = relationship(secondary=event_attendees)

    def to_domain(self) -> Event:
        return Event(
            id=self.id,
            name=self.name,
            location=self.location,
            start_time=_as_utc(self.start_time),
            attendees=sort_attendees([u.to_domain() for u in self.attendees]),
        )


def _as_utc(value: datetime) -> datetime:
    # SQLite は tzinfo を保持しない
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _enable_sqlite_foreign_keys(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class SqlStore:
    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._sessions = sessionmaker(bind=engine, expire_on_commit=False)

    @classmethod
    def from_url(cls, url: str, **engine_kwargs) -> "SqlStore":
        if url.startswith("sqlite"):
            engine_kwargs.setdefault("connect_args", {"check_same_thread": False, "timeout": 30})
        engine = create_engine(url, **engine_kwargs)
        if engine.dialect.name == "sqlite":
            event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        store = cls(engine)
        store.create_schema()
        logger.info("SQL store ready at %s", engine.url.render_as_string(hide_password=True))
        return store

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with self._sessions() as session:
                yield session
        except IntegrityError:
            raise
        except (DBAPIError, SQLAlchemyError) as exc:
            logger.error("SQL store operation failed: %s", exc)
            raise StoreUnavailableError("Database operation failed") from exc

    def create_schema(self) -> None:
        with self._session():
            Base.metadata.create_all(self._engine)

    def list_events(self) -> list[Event]:
        with self._session() as session:
            rows = session.scalars(
                select(EventRecord)
                .options(selectinload(EventRecord.attendees))
                .order_by(EventRecord.start_time, EventRecord.id)
            ).all()
            return [r.to_domain() for r in rows]

    def find_event(self, event_id: str) -> Event | None:
        with self._session() as session:
            row = session.scalars(
                select(EventRecord)
                .where(EventRecord.id == event_id)
                .options(selectinload(EventRecord.attendees))
            ).one_or_none()
            return None if row is None else row.to_domain()

    def create_event(self, name: str, location: str, start_time: datetime) -> Event:
        row = EventRecord(id=new_id("evt"), name=name, location=location, start_time=start_time)
        with self._session() as session, session.begin():
            session.add(row)
        return Event(id=row.id, name=name, location=location, start_time=_as_utc(start_time))

    def find_user_by_email(self, email: str) -> User | None:
        with self._session() as session:
            row = session.scalars(select(UserRecord).where(UserRecord.email == email)).one_or_none()
            return None if row is None else row.to_domain()

    def get_or_create_user(self, email: str, name: str) -> User:
        existing = self.find_user_by_email(email)
        if existing is not None:
            return existing
        user_id = new_id("usr")
        try:
            with self._session() as session, session.begin():
                session.execute(insert(UserRecord).values(id=user_id, name=name, email=email))
        except IntegrityError:
            # 同じメールで並行に作成された
            winner = self.find_user_by_email(email)
            if winner is None:
                raise StoreUnavailableError("Database operation failed")
            return winner
        return User(id=user_id, name=name, email=email)

    def upsert_membership(self, event_id: str, user: User) -> bool:
        try:
            with self._session() as session, session.begin():
                session.execute(insert(event_attendees).values(event_id=event_id, user_id=user.id))
        except IntegrityError:
            return False
        return True

    def delete_membership(self, event_id: str, user: User) -> bool:
        with self._session() as session, session.begin():
            result = session.execute(
                delete(event_attendees).where(
                    event_attendees.c.event_id == event_id,
                    event_attendees.c.user_id == user.id,
                )
            )
            return result.rowcount > 0

    def count_members(self, event_id: str) -> int:
        with self._session() as session:
            return session.scalar(
                select(func.count()).select_from(event_attendees).where(
                    event_attendees.c.event_id == event_id
                )
            ) or 0

    def clear(self) -> None:
        with self._session() as session, session.begin():
            session.execute(delete(event_attendees))
            session.execute(delete(EventRecord))
            session.execute(delete(UserRecord))

    def ping(self) -> None:
        with self._session() as session:
            session.execute(text("SELECT 1"))

    def close(self) -> None:
        self._engine.dispose()
