"""
Document store abstraction for SQL databases and an in-memory test implementation.

Handlers talk to three collections (users, events, joins) through the
``Collection`` interface. Documents are plain dicts keyed by their wire
field names, with a generated string ``_id``.

Filters are dicts ANDed over their keys. A value is either matched exactly
or is an operator dict using ``$gte``, ``$in`` or ``$icontains``
(case-insensitive literal substring).
"""

from __future__ import annotations

import copy
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Protocol

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    select,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Sort = list[tuple[str, int]]

ASCENDING = 1
DESCENDING = -1


class DuplicateKeyError(Exception):
    """Raised when a write violates a unique key."""


class Collection(Protocol):
    """Operations the handlers need from one collection."""

    def find_one(self, query: dict) -> Optional[dict]:
        ...

    def find_many(
        self,
        query: dict,
        sort: Optional[Sort] = None,
        limit: int = 0,
        projection: Optional[dict] = None,
    ) -> list[dict]:
        ...

    def insert_one(self, doc: dict) -> dict:
        ...

    def update_one(self, query: dict, patch: dict, upsert: bool = False) -> int:
        ...

    def find_one_and_update(
        self, query: dict, patch: dict, return_updated: bool = True
    ) -> Optional[dict]:
        ...

    def delete_one(self, query: dict) -> int:
        ...


class DocumentStore(Protocol):
    users: Collection
    events: Collection
    joins: Collection


def new_id() -> str:
    return uuid.uuid4().hex


def utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime (naive values are taken as UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _normalize(value: Any) -> Any:
    if isinstance(value, datetime):
        return utc(value)
    return value


def _is_operator(condition: Any) -> bool:
    return (
        isinstance(condition, dict)
        and bool(condition)
        and all(str(key).startswith("$") for key in condition)
    )


def _equalities(query: dict) -> dict:
    return {
        key: _normalize(value)
        for key, value in query.items()
        if not _is_operator(value)
    }


def apply_projection(doc: dict, projection: Optional[dict]) -> dict:
    """
    Shape ``doc`` with an inclusion or exclusion projection.

    ``_id`` is kept unless the projection sets it to 0.
    """
    if not projection:
        return dict(doc)
    included = [
        key for key, flag in projection.items() if flag and key != "_id"
    ]
    if included:
        result = {}
        if projection.get("_id", 1) and "_id" in doc:
            result["_id"] = doc["_id"]
        for key in included:
            if key in doc:
                result[key] = doc[key]
        return result
    excluded = {key for key, flag in projection.items() if not flag}
    return {key: value for key, value in doc.items() if key not in excluded}


def _match_condition(value: Any, condition: Any) -> bool:
    if not _is_operator(condition):
        return _normalize(value) == _normalize(condition)
    for op, operand in condition.items():
        if op == "$gte":
            if value is None or _normalize(value) < _normalize(operand):
                return False
        elif op == "$in":
            if _normalize(value) not in [_normalize(item) for item in operand]:
                return False
        elif op == "$icontains":
            if not isinstance(value, str):
                return False
            if str(operand).casefold() not in value.casefold():
                return False
        else:
            raise ValueError(f"Unsupported filter operator: {op}")
    return True


def matches(doc: dict, query: dict) -> bool:
    return all(
        _match_condition(doc.get(key), condition)
        for key, condition in query.items()
    )


def _sort_docs(docs: list[dict], sort: Sort) -> list[dict]:
    # Stable sorts applied from the last key to the first.
    for field, direction in reversed(sort):
        docs.sort(
            key=lambda doc: (doc.get(field) is not None, doc.get(field)),
            reverse=direction < 0,
        )
    return docs


class InMemoryCollection:
    """List-backed collection with optional unique keys."""

    def __init__(self, unique: Iterable[tuple[str, ...]] = ()):
        self.documents: list[dict] = []
        self.unique = [tuple(key) for key in unique]
        self._lock = threading.RLock()

    def _first(self, query: dict) -> Optional[dict]:
        for doc in self.documents:
            if matches(doc, query):
                return doc
        return None

    def _check_unique(self, candidate: dict) -> None:
        for doc in self.documents:
            if doc["_id"] == candidate["_id"]:
                raise DuplicateKeyError(f"duplicate _id {candidate['_id']}")
            for key in self.unique:
                if all(doc.get(part) == candidate.get(part) for part in key):
                    raise DuplicateKeyError(f"duplicate key {key}")

    def find_one(self, query: dict) -> Optional[dict]:
        with self._lock:
            doc = self._first(query)
            return copy.deepcopy(doc) if doc is not None else None

    def find_many(
        self,
        query: dict,
        sort: Optional[Sort] = None,
        limit: int = 0,
        projection: Optional[dict] = None,
    ) -> list[dict]:
        with self._lock:
            found = [copy.deepcopy(doc) for doc in self.documents if matches(doc, query)]
        if sort:
            found = _sort_docs(found, sort)
        if limit and limit > 0:
            found = found[:limit]
        return [apply_projection(doc, projection) for doc in found]

    def insert_one(self, doc: dict) -> dict:
        stored = {key: _normalize(value) for key, value in copy.deepcopy(doc).items()}
        stored.setdefault("_id", new_id())
        with self._lock:
            self._check_unique(stored)
            self.documents.append(stored)
        return copy.deepcopy(stored)

    def update_one(self, query: dict, patch: dict, upsert: bool = False) -> int:
        with self._lock:
            doc = self._first(query)
            if doc is not None:
                doc.update(
                    {key: _normalize(value) for key, value in copy.deepcopy(patch).items()}
                )
                return 1
            if upsert:
                self.insert_one({**_equalities(query), **patch})
                return 1
        return 0

    def find_one_and_update(
        self, query: dict, patch: dict, return_updated: bool = True
    ) -> Optional[dict]:
        with self._lock:
            doc = self._first(query)
            if doc is None:
                return None
            before = copy.deepcopy(doc)
            doc.update(
                {key: _normalize(value) for key, value in copy.deepcopy(patch).items()}
            )
            return copy.deepcopy(doc) if return_updated else before

    def delete_one(self, query: dict) -> int:
        with self._lock:
            doc = self._first(query)
            if doc is None:
                return 0
            self.documents.remove(doc)
            return 1


class InMemoryDocumentStore:
    """Simple in-memory document store for development and tests."""

    def __init__(self):
        self.users = InMemoryCollection(unique=[("email",)])
        self.events = InMemoryCollection()
        self.joins = InMemoryCollection(unique=[("eventId", "userEmail")])

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        for collection in (self.users, self.events, self.joins):
            collection.documents.clear()


def _escape_like(value: str) -> str:
    return (
        value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    )


def _from_db(value: Any) -> Any:
    # SQLite hands back naive datetimes; everything is stored as UTC.
    if isinstance(value, datetime):
        return utc(value)
    return value


class SqlCollection:
    """Maps one table onto the ``Collection`` interface."""

    def __init__(self, session_factory: sessionmaker, row_cls: type, fields: dict[str, str]):
        self.Session = session_factory
        self.row_cls = row_cls
        self.fields = fields

    def _column(self, key: str):
        try:
            return getattr(self.row_cls, self.fields[key])
        except KeyError:
            raise ValueError(
                f"Unknown field {key!r} for table {self.row_cls.__tablename__}"
            ) from None

    def _clauses(self, query: dict) -> list:
        clauses = []
        for key, condition in query.items():
            column = self._column(key)
            if not _is_operator(condition):
                clauses.append(column == _normalize(condition))
                continue
            for op, operand in condition.items():
                if op == "$gte":
                    clauses.append(column >= _normalize(operand))
                elif op == "$in":
                    clauses.append(column.in_([_normalize(item) for item in operand]))
                elif op == "$icontains":
                    clauses.append(
                        column.ilike(f"%{_escape_like(str(operand))}%", escape="\\")
                    )
                else:
                    raise ValueError(f"Unsupported filter operator: {op}")
        return clauses

    def _to_doc(self, row: Any) -> dict:
        return {
            key: _from_db(getattr(row, attr)) for key, attr in self.fields.items()
        }

    def _apply(self, row: Any, patch: dict) -> None:
        for key, value in patch.items():
            if key == "_id":
                continue
            self._column(key)
            setattr(row, self.fields[key], _normalize(value))

    def _first_row(self, session: Session, query: dict):
        stmt = select(self.row_cls).where(*self._clauses(query)).limit(1)
        return session.execute(stmt).scalars().first()

    def find_one(self, query: dict) -> Optional[dict]:
        with self.Session() as session:
            row = self._first_row(session, query)
            return self._to_doc(row) if row is not None else None

    def find_many(
        self,
        query: dict,
        sort: Optional[Sort] = None,
        limit: int = 0,
        projection: Optional[dict] = None,
    ) -> list[dict]:
        stmt = select(self.row_cls).where(*self._clauses(query))
        for key, direction in sort or []:
            column = self._column(key)
            stmt = stmt.order_by(column.desc() if direction < 0 else column.asc())
        if limit and limit > 0:
            stmt = stmt.limit(limit)
        with self.Session() as session:
            rows = session.execute(stmt).scalars().all()
            return [apply_projection(self._to_doc(row), projection) for row in rows]

    def insert_one(self, doc: dict) -> dict:
        stored = dict(doc)
        stored.setdefault("_id", new_id())
        values = {}
        for key, value in stored.items():
            self._column(key)
            values[self.fields[key]] = _normalize(value)
        with self.Session() as session:
            row = self.row_cls(**values)
            session.add(row)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise DuplicateKeyError(str(exc.orig)) from exc
            return self._to_doc(row)

    def update_one(self, query: dict, patch: dict, upsert: bool = False) -> int:
        with self.Session() as session:
            row = self._first_row(session, query)
            if row is not None:
                self._apply(row, patch)
                session.commit()
                return 1
        if upsert:
            self.insert_one({**_equalities(query), **patch})
            return 1
        return 0

    def find_one_and_update(
        self, query: dict, patch: dict, return_updated: bool = True
    ) -> Optional[dict]:
        with self.Session() as session:
            row = self._first_row(session, query)
            if row is None:
                return None
            before = self._to_doc(row)
            self._apply(row, patch)
            session.commit()
            return self._to_doc(row) if return_updated else before

    def delete_one(self, query: dict) -> int:
        with self.Session() as session:
            row = self._first_row(session, query)
            if row is None:
                return 0
            session.delete(row)
            session.commit()
            return 1


class SqlDocumentStore:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for SqlDocumentStore")
        if database_url.startswith("sqlite") and ":memory:" in database_url:
            # Every pooled connection would otherwise open its own empty database.
            self.engine = create_engine(
                database_url,
                future=True,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        else:
            self.engine = create_engine(
                database_url,
                future=True,
                pool_pre_ping=True,
                pool_recycle=1800,
            )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)
        self.users = SqlCollection(self.Session, UserRow, USER_FIELDS)
        self.events = SqlCollection(self.Session, EventRow, EVENT_FIELDS)
        self.joins = SqlCollection(self.Session, JoinRow, JOIN_FIELDS)


Base = declarative_base()


class UserRow(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    email = Column(String, nullable=False, unique=True)
    display_name = Column(String, nullable=True)
    photo_url = Column(Text, nullable=True)
    preferences = Column(JSON, nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)


class EventRow(Base):
    __tablename__ = "events"

    id = Column(String, primary_key=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    event_type = Column(String, nullable=False, index=True)
    thumbnail_image = Column(Text, nullable=True)
    location = Column(String, nullable=False)
    event_date = Column(DateTime(timezone=True), nullable=False, index=True)
    user_email = Column(String, nullable=False, index=True)
    user_name = Column(String, nullable=True)
    user_photo_url = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)


class JoinRow(Base):
    __tablename__ = "joined_events"
    __table_args__ = (
        UniqueConstraint("event_id", "user_email", name="uq_joined_events_event_user"),
    )

    id = Column(String, primary_key=True)
    event_id = Column(String, nullable=False, index=True)
    user_email = Column(String, nullable=False, index=True)
    user_name = Column(String, nullable=True)
    user_photo_url = Column(Text, nullable=True)
    joined_at = Column(DateTime(timezone=True), nullable=True)


USER_FIELDS = {
    "_id": "id",
    "email": "email",
    "displayName": "display_name",
    "photoURL": "photo_url",
    "preferences": "preferences",
    "updatedAt": "updated_at",
}

EVENT_FIELDS = {
    "_id": "id",
    "title": "title",
    "description": "description",
    "eventType": "event_type",
    "thumbnailImage": "thumbnail_image",
    "location": "location",
    "eventDate": "event_date",
    "userEmail": "user_email",
    "userName": "user_name",
    "userPhotoURL": "user_photo_url",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
}

JOIN_FIELDS = {
    "_id": "id",
    "eventId": "event_id",
    "userEmail": "user_email",
    "userName": "user_name",
    "userPhotoURL": "user_photo_url",
    "joinedAt": "joined_at",
}
