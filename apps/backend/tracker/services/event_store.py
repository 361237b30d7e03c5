from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator, List, Optional, Tuple

from sqlalchemy import desc, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import InstrumentedAttribute, Session

from tracker.db import make_session_factory
from tracker.models.event import Event
from tracker.schemas.events import EventRecord, StoredEvent

HOUR_BUCKET_FORMAT = "%Y-%m-%d %H:00:00"

# canonical attribute name -> column, for equality filters and grouping
_COLUMNS: dict[str, InstrumentedAttribute] = {
    name: getattr(Event, name) for name in StoredEvent.model_fields
}

# empty visitor_id means anonymous: fall back to the source IP
_VISITOR_KEY = func.coalesce(func.nullif(Event.visitor_id, ""), Event.source_ip)
_HOUR_START = (Event.occurred_at - Event.occurred_at % 3600).label("hour_start")

_STRING_FIELDS = ("source_ip", "user_agent", "page_url", "referrer_url", "visitor_id")


class StoreUnavailable(RuntimeError):
    """The database could not be written or read."""


def _column(name: str) -> InstrumentedAttribute:
    try:
        return _COLUMNS[name]
    except KeyError:
        raise ValueError(f"unknown event field: {name!r}") from None


def _format_hour(start: int) -> str:
    return datetime.fromtimestamp(start, tz=timezone.utc).strftime(HOUR_BUCKET_FORMAT)


def _to_stored(row: Event) -> StoredEvent:
    data = {name: getattr(row, name) for name in StoredEvent.model_fields}
    # rows written before a column existed carry NULLs
    for name in _STRING_FIELDS:
        if data[name] is None:
            data[name] = ""
    data["event_type"] = data["event_type"] or "page_view"
    data["delivery_kind"] = data["delivery_kind"] or "pixel"
    return StoredEvent.model_construct(**data)


class EventView:
    """
    Read primitives bound to one session (one read transaction).
    The store does filtering and counting; ranking/shaping is the
    aggregator's job.
    """

    def __init__(self, session: Session):
        self.session = session

    def _where(self, since: int, filters: dict[str, Any]) -> list:
        crit = [Event.occurred_at >= since]
        for name, value in filters.items():
            crit.append(_column(name) == value)
        return crit

    def query(self, since: int, **filters: Any) -> Iterator[StoredEvent]:
        stmt = select(Event).where(*self._where(since, filters)).order_by(Event.id)
        for row in self.session.scalars(stmt):
            yield _to_stored(row)

    def since_id(self, min_id: int) -> List[StoredEvent]:
        stmt = select(Event).where(Event.id >= min_id).order_by(Event.id)
        return [_to_stored(r) for r in self.session.scalars(stmt)]

    def count(self, since: int, **filters: Any) -> int:
        stmt = select(func.count(Event.id)).where(*self._where(since, filters))
        return self.session.execute(stmt).scalar_one() or 0

    def count_distinct_visitors(self, since: int) -> int:
        stmt = select(func.count(func.distinct(_VISITOR_KEY))).where(Event.occurred_at >= since)
        return self.session.execute(stmt).scalar_one() or 0

    def count_by(
        self,
        field: str,
        since: int,
        limit: Optional[int] = None,
        exclude_null: bool = False,
        **filters: Any,
    ) -> List[Tuple[Optional[str], int]]:
        """(value, count) pairs, most frequent first, ties by value."""
        col = _column(field)
        crit = self._where(since, filters)
        if exclude_null:
            crit.append(col.is_not(None))

        n = func.count(Event.id).label("n")
        stmt = select(col, n).where(*crit).group_by(col).order_by(desc(n), col)
        if limit is not None:
            stmt = stmt.limit(limit)
        return [(key, int(c)) for key, c in self.session.execute(stmt)]

    def count_by_hour(self, since: int) -> List[Tuple[str, int]]:
        """
        Per-hour counts (UTC), oldest first. Hours without events are
        absent from the result, not zero-filled.
        """
        stmt = (
            select(_HOUR_START, func.count(Event.id))
            .where(Event.occurred_at >= since)
            .group_by(_HOUR_START)
            .order_by(_HOUR_START)
        )
        return [(_format_hour(int(start)), int(c)) for start, c in self.session.execute(stmt)]


class EventStore:
    """
    Durable append-only event log. One instance per process, built at
    startup and handed to request handlers; safe to share across threads
    (each call checks out its own connection).
    """

    def __init__(self, engine: Engine):
        self.engine = engine
        self._session_factory = make_session_factory(engine)

    def append(self, record: EventRecord) -> int:
        row = Event(**record.model_dump())
        try:
            with self._session_factory() as session, session.begin():
                session.add(row)
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"append failed: {e}") from e
        return row.id

    @contextmanager
    def snapshot(self) -> Iterator[EventView]:
        session = self._session_factory()
        try:
            with session.begin():
                yield EventView(session)
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"read failed: {e}") from e
        finally:
            session.close()

    def query(self, since: int, **filters: Any) -> Iterator[StoredEvent]:
        """Raw rows in the window, oldest first. Filters are equality on field names."""
        for name in filters:
            _column(name)  # fail at call time, not on first next()
        return self._iter_query(since, filters)

    def _iter_query(self, since: int, filters: dict[str, Any]) -> Iterator[StoredEvent]:
        with self.snapshot() as view:
            yield from view.query(since, **filters)

    def since_id(self, min_id: int) -> List[StoredEvent]:
        with self.snapshot() as view:
            return view.since_id(min_id)

    def count(self, since: int, **filters: Any) -> int:
        with self.snapshot() as view:
            return view.count(since, **filters)

    def count_distinct_visitors(self, since: int) -> int:
        with self.snapshot() as view:
            return view.count_distinct_visitors(since)

    def count_by(self, field: str, since: int, limit: Optional[int] = None, exclude_null: bool = False, **filters: Any):
        with self.snapshot() as view:
            return view.count_by(field, since, limit=limit, exclude_null=exclude_null, **filters)

    def count_by_hour(self, since: int) -> List[Tuple[str, int]]:
        with self.snapshot() as view:
            return view.count_by_hour(since)

    def ping(self) -> None:
        try:
            with self.engine.connect() as conn:
                conn.exec_driver_sql("SELECT 1")
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"ping failed: {e}") from e

    def dispose(self) -> None:
        self.engine.dispose()
